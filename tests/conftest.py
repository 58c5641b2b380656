"""
Shared pytest fixtures for site-spine tests.

This module provides:
- A simulated clock for the readiness gate
- An in-memory stack double (see ``tests._support.stack``)
- Sample credentials and a provisioning config factory
- Logging reset between tests

No container runtime is needed anywhere in the suite.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import structlog

# Ensure sitespine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sitespine.provision.config import (  # noqa: E402
    Credentials,
    ProvisionConfig,
    default_readiness_targets,
)
from tests._support.stack import SITE, FakeClock, FakeStack  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo any logging configuration a test applied."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stack() -> FakeStack:
    return FakeStack()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(root_password="root-pw-123", admin_password="admin-pw-456")


@pytest.fixture
def make_config(credentials):
    """Factory for a ProvisionConfig with short readiness budgets."""

    def _make(**kwargs) -> ProvisionConfig:
        kwargs.setdefault("site_id", SITE)
        kwargs.setdefault("credentials", credentials)
        kwargs.setdefault(
            "readiness",
            default_readiness_targets(max_wait_seconds=10, poll_interval_seconds=2),
        )
        return ProvisionConfig(**kwargs)

    return _make
