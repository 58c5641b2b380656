"""Site provisioner: create a new site from scratch.

Runs ``bench new-site`` in the backend with the one-time credentials and
the database endpoint, then sets the remaining desired keys (cache, queue,
realtime) so a fresh site needs no reconciliation afterwards.

Preconditions:
    The prober returned ``absent`` immediately before. Nothing here makes
    probe-then-create atomic; callers serialize runs per site. ``new-site``
    is never given a force flag, so the backend itself refuses to overwrite
    an existing site. That refusal is reported as a conflict.

Failures are not rolled back. Whatever the failed creation left behind
(a half-created site directory, a site without its cache settings) is
listed in ``CreateResult.partial_state``.

Tags:
    provision, new-site, credentials, create-if-absent
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sitespine.core.errors import CommandError
from sitespine.core.logging import get_logger
from sitespine.provision.bench import BenchClient
from sitespine.provision.config import Credentials
from sitespine.provision.reconciler import ConfigurationReconciler
from sitespine.provision.results import CreateResult

logger = get_logger(__name__)

# Desired keys passed as new-site flags rather than set afterwards
CREATION_FLAGS = {
    "database_host": "--db-host",
    "database_port": "--db-port",
}
_CONFLICT_MARKERS = ("already exists",)


class SiteProvisioner:
    """Creates sites."""

    def __init__(
        self,
        client: BenchClient,
        reconciler: ConfigurationReconciler | None = None,
        timeout: int | None = None,
    ) -> None:
        self.client = client
        self.reconciler = reconciler or ConfigurationReconciler(client, timeout=timeout)
        self.timeout = timeout

    def new_site_args(
        self,
        site_id: str,
        credentials: Credentials,
        desired: Mapping[str, Any],
    ) -> list[str]:
        args = [
            "new-site",
            site_id,
            "--mariadb-root-password",
            credentials.root_password.get_secret_value(),
            "--admin-password",
            credentials.admin_password.get_secret_value(),
        ]
        for key, flag in CREATION_FLAGS.items():
            if desired.get(key) is not None:
                args.extend([flag, str(desired[key])])
        return args

    def create_site(
        self,
        site_id: str,
        credentials: Credentials,
        desired: Mapping[str, Any],
    ) -> CreateResult:
        logger.info("provision.started", site_id=site_id)
        args = self.new_site_args(site_id, credentials, desired)

        try:
            result = self.client.bench(*args, timeout=self.timeout)
        except CommandError as exc:
            return self._failed(site_id, exc.message)

        if result.returncode != 0:
            output = f"{result.stdout}\n{result.stderr}"
            conflict = any(marker in output.lower() for marker in _CONFLICT_MARKERS)
            reason = result.stderr.strip()[-300:] or f"new-site exited {result.returncode}"
            return self._failed(site_id, reason, conflict=conflict)

        remaining = {
            key: value
            for key, value in desired.items()
            if key not in CREATION_FLAGS and value is not None
        }
        applied, failed, errors = self.reconciler.apply(site_id, remaining)
        configured = [k for k in CREATION_FLAGS if desired.get(k) is not None] + applied

        if failed:
            reason = "; ".join(f"{k}: {v}" for k, v in errors.items())
            logger.error("provision.config_failed", site_id=site_id, failed=failed)
            return CreateResult(
                site_id=site_id,
                status="create_failed",
                reason=f"site created but configuration failed: {reason}",
                partial_state=[f"site {site_id} exists", *(f"unapplied: {k}" for k in failed)],
                configured_keys=configured,
            )

        logger.info("provision.created", site_id=site_id, configured=len(configured))
        return CreateResult(site_id=site_id, status="created", configured_keys=configured)

    def _failed(self, site_id: str, reason: str, conflict: bool = False) -> CreateResult:
        partial: list[str] = []
        if not conflict and self._site_dir_exists(site_id):
            partial.append(f"sites/{site_id}")
        logger.error(
            "provision.failed",
            site_id=site_id,
            conflict=conflict,
            reason=reason,
            partial_state=partial,
        )
        return CreateResult(
            site_id=site_id,
            status="create_failed",
            conflict=conflict,
            reason=reason,
            partial_state=partial,
        )

    def _site_dir_exists(self, site_id: str) -> bool:
        try:
            result = self.client.exec(["test", "-d", f"sites/{site_id}"], timeout=30)
        except CommandError:
            return False
        return result.returncode == 0
