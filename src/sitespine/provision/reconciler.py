"""Configuration reconciler for existing sites.

Brings an existing site's configuration in line with the desired map:

1. Read back the site's current config (``sites/<site>/site_config.json``).
2. Compute a :class:`ReconciliationPlan`: the desired keys whose value differs.
3. Apply each planned key with ``bench --site SITE set-config``.

Every ``set-config`` is idempotent, so a partially applied plan is resumed
by simply running the reconciler again: keys that landed show up as
unchanged on the next readback. If the readback itself fails the plan
falls back to every desired key.

Desired keys are translated to the backend's key names through
:data:`sitespine.provision.services.SETTING_KEYS` (``cache_endpoint`` is
stored as ``redis_cache`` and so on). Results report desired key names.

Tags:
    reconcile, set-config, idempotent, plan, readback
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sitespine.core.errors import CommandError
from sitespine.core.logging import get_logger
from sitespine.provision.bench import BenchClient
from sitespine.provision.results import ReconcileResult
from sitespine.provision.services import SETTING_KEYS, site_config_key

logger = get_logger(__name__)


def values_equal(current: Any, desired: Any) -> bool:
    """Compare a stored value with a desired one (``"3306"`` equals ``3306``)."""
    return current == desired or (current is not None and str(current) == str(desired))


@dataclass(frozen=True)
class ReconciliationPlan:
    """Ordered (desired key, value) pairs that differ from current state."""

    items: tuple[tuple[str, Any], ...] = ()
    unchanged: tuple[str, ...] = ()
    readback_failed: bool = False

    @property
    def keys(self) -> list[str]:
        return [key for key, _ in self.items]

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class _Outcome:
    applied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


class ConfigurationReconciler:
    """Applies desired configuration keys to an existing site."""

    def __init__(self, client: BenchClient, timeout: int | None = None) -> None:
        self.client = client
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Readback
    # ------------------------------------------------------------------

    def read_config(self, site_id: str) -> dict[str, Any]:
        """Return the site's stored config.

        Raises
        ------
        CommandError
            If the config cannot be read or is not a JSON object.
        """
        result = self.client.exec(
            ["cat", f"sites/{site_id}/site_config.json"],
            timeout=self.timeout,
        )
        if result.returncode != 0:
            raise CommandError(
                f"config readback for {site_id} exited {result.returncode}: "
                f"{result.stderr.strip()[:200]}"
            )
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise CommandError(f"config readback for {site_id} is not JSON", cause=exc) from exc
        if not isinstance(data, dict):
            raise CommandError(f"config readback for {site_id} is not a JSON object")
        return data

    def read_settings(self, site_id: str) -> dict[str, Any]:
        """Current values for the desired keys, by desired-key name."""
        stored = self.read_config(site_id)
        return {key: stored.get(site_config_key(key)) for key in SETTING_KEYS}

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, site_id: str, desired: Mapping[str, Any]) -> ReconciliationPlan:
        """Compare *desired* against the readback."""
        unknown = [k for k in desired if k not in SETTING_KEYS]
        if unknown:
            raise KeyError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        try:
            current = self.read_settings(site_id)
        except CommandError as exc:
            logger.warning("reconcile.readback_failed", site_id=site_id, error=exc.message)
            return ReconciliationPlan(items=tuple(desired.items()), readback_failed=True)

        items = []
        unchanged = []
        for key, value in desired.items():
            if values_equal(current.get(key), value):
                unchanged.append(key)
            else:
                items.append((key, value))
        return ReconciliationPlan(items=tuple(items), unchanged=tuple(unchanged))

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def set_key(self, site_id: str, key: str, value: Any) -> str | None:
        """Apply one desired key. Returns an error message, or None on success."""
        config_key, parse = SETTING_KEYS[key]
        args = ["set-config"]
        if parse:
            args.append("--parse")
            rendered = json.dumps(value)
        else:
            rendered = str(value)
        args.extend([config_key, rendered])

        try:
            result = self.client.bench(*args, site=site_id, timeout=self.timeout)
        except CommandError as exc:
            return exc.message
        if result.returncode != 0:
            return result.stderr.strip()[:200] or f"set-config exited {result.returncode}"
        return None

    def apply(self, site_id: str, items: Mapping[str, Any]) -> tuple[list[str], list[str], dict[str, str]]:
        """Apply each item; returns (applied, failed, errors)."""
        outcome = _Outcome()
        for key, value in items.items():
            error = self.set_key(site_id, key, value)
            if error is None:
                outcome.applied.append(key)
                logger.info("reconcile.key_applied", site_id=site_id, key=key)
            else:
                outcome.failed.append(key)
                outcome.errors[key] = error
                logger.warning("reconcile.key_failed", site_id=site_id, key=key, error=error)
        return outcome.applied, outcome.failed, outcome.errors

    def reconcile(self, site_id: str, desired: Mapping[str, Any]) -> ReconcileResult:
        plan = self.plan(site_id, desired)
        applied, failed, errors = self.apply(site_id, dict(plan.items))

        result = ReconcileResult(
            site_id=site_id,
            status="partial_failure" if failed else "applied",
            applied_keys=applied,
            failed_keys=failed,
            unchanged_keys=list(plan.unchanged),
            errors=errors,
            readback_failed=plan.readback_failed,
        )
        logger.info(
            "reconcile.complete",
            site_id=site_id,
            status=result.status,
            applied=len(applied),
            failed=len(failed),
            unchanged=len(plan.unchanged),
        )
        return result
