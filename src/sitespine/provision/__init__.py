"""provision — Idempotent site provisioning and reconciliation.

Turns a declared site (name, desired configuration, one-time credentials)
into a running site on a compose stack, whatever state the stack is in:
no site yet, a site with stale cache/queue endpoints, or a site that is
already correct. Every run waits for the backing services, probes for the
site, then either creates it or reconciles it, and finally verifies the
result by reading the configuration back.

Key Concepts:
    ProvisionConfig: Pydantic model with the site, desired settings,
        credentials, and readiness targets. ``from_env()`` for installers.
    SiteOrchestrator: High-level state machine. Config in, ``RunResult`` out.
    ReadinessGate: Bounded polling of one backing service.
    StateProber: Read-only ``exists`` / ``absent`` / ``probe_failed`` query.
    ConfigurationReconciler: Readback, plan, and per-key ``set-config``.
    SiteProvisioner: ``new-site`` without a force flag, then remaining keys.
    StackRunner: ``docker compose up`` / ``down`` / ``ps``.
    BenchClient: Subprocess wrapper around ``docker compose exec``.

Architecture Decisions:
    - subprocess-only: site commands are opaque pass-through commands run
      through the ``docker`` CLI, as in every other stack operation.
    - Results, not exceptions: each component returns a pydantic result;
      ``RunResult.raise_for_status()`` is there for callers who want errors.
    - Frozen dataclasses for the service registry; pydantic for anything
      validated or serialized.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │                   SiteOrchestrator                            │
    ├──────────────┬──────────────┬──────────────┬─────────────────┤
    │  Readiness   │    State     │ Configuration│      Site       │
    │    Gate      │    Prober    │  Reconciler  │   Provisioner   │
    ├──────────────┴──────────────┴──────────────┴─────────────────┤
    │          BenchClient (docker compose exec subprocess)         │
    ├──────────────────────────────────────────────────────────────┤
    │   Service Registry │ Env File Renderer │ Result Models        │
    └──────────────────────────────────────────────────────────────┘

Tags:
    provision, reconcile, idempotent, compose, readiness, site

Example:
    >>> from sitespine.provision import SiteSettings
    >>> SiteSettings(cache_endpoint="redis://redis-cache:6379").as_desired()
    {'cache_endpoint': 'redis://redis-cache:6379'}
"""

from __future__ import annotations

from sitespine.provision.bench import BenchClient
from sitespine.provision.compose import render_env_file, write_env_file
from sitespine.provision.config import (
    Credentials,
    ProvisionConfig,
    ReadinessTarget,
    ServiceEndpoint,
    SiteSettings,
    default_readiness_targets,
)
from sitespine.provision.prober import StateProber
from sitespine.provision.provisioner import SiteProvisioner
from sitespine.provision.readiness import ReadinessGate
from sitespine.provision.reconciler import ConfigurationReconciler, ReconciliationPlan
from sitespine.provision.results import (
    CreateResult,
    FailureReason,
    Phase,
    ProbeResult,
    ReadinessResult,
    ReconcileResult,
    RunResult,
    ServiceStatus,
    StackResult,
    VerifyResult,
)
from sitespine.provision.workflow import SiteOrchestrator, StackRunner

__all__ = [
    "BenchClient",
    "ConfigurationReconciler",
    "CreateResult",
    "Credentials",
    "FailureReason",
    "Phase",
    "ProbeResult",
    "ProvisionConfig",
    "ReadinessGate",
    "ReadinessResult",
    "ReadinessTarget",
    "ReconcileResult",
    "ReconciliationPlan",
    "RunResult",
    "ServiceEndpoint",
    "ServiceStatus",
    "SiteOrchestrator",
    "SiteProvisioner",
    "SiteSettings",
    "StackResult",
    "StackRunner",
    "StateProber",
    "VerifyResult",
    "default_readiness_targets",
    "render_env_file",
    "write_env_file",
]
