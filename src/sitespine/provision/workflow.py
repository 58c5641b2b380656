"""Orchestrators for site provisioning.

``SiteOrchestrator`` sequences one run::

    start → awaiting_dependencies → probing ─┬─ absent → provisioning ─┐
                                              └─ exists → reconciling ─┴→ verifying → done
                                                         (any failure) → failed

``StackRunner`` brings the compose stack up or down and reports service
status. It is the mechanical half of an installation; the orchestrator is
the part with decisions.

Key Concepts:
    SiteOrchestrator: ProvisionConfig in, RunResult out. Components are
        injectable; defaults are built on one shared BenchClient.
    Phase history: every state entered is recorded on the RunResult.
    StackRunner: ``docker compose up -d`` / ``down`` / ``ps``.

Architecture Decisions:
    - No retries at this level. Only the readiness gate polls; every other
      failure ends the run with a reason, and re-running is the caller's
      decision. Reconciliation is resumable because each key-set is
      idempotent.
    - Readiness targets are awaited one after another; the first timeout
      ends the run before anything is probed or mutated.
    - ``probe_failed`` is fatal. It is never treated as ``absent``.
    - Not safe to run concurrently for the same site: probe-then-create is
      not atomic. Callers serialize per site.

Related Modules:
    - :mod:`sitespine.provision.readiness` — ReadinessGate
    - :mod:`sitespine.provision.prober` — StateProber
    - :mod:`sitespine.provision.reconciler` — ConfigurationReconciler
    - :mod:`sitespine.provision.provisioner` — SiteProvisioner
    - :mod:`sitespine.provision.results` — RunResult, StackResult

Tags:
    workflow, orchestration, state-machine, provisioning, compose
"""

from __future__ import annotations

import json

from sitespine.core.errors import CommandError
from sitespine.core.logging import LogContext, get_logger
from sitespine.provision.bench import BenchClient
from sitespine.provision.config import ProvisionConfig, ReadinessTarget
from sitespine.provision.prober import StateProber
from sitespine.provision.provisioner import SiteProvisioner
from sitespine.provision.readiness import ReadinessGate
from sitespine.provision.reconciler import ConfigurationReconciler, values_equal
from sitespine.provision.results import (
    FailureReason,
    Phase,
    RunResult,
    ServiceStatus,
    StackResult,
    VerifyResult,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Site orchestrator
# ---------------------------------------------------------------------------


class SiteOrchestrator:
    """Brings one site into its desired state.

    Parameters
    ----------
    config
        Provisioning configuration.
    client
        Command runner shared by the default components.
    gate, prober, reconciler, provisioner
        Component overrides (tests inject fakes here).

    Example::

        result = SiteOrchestrator(config).run()
        print(result.summary)
        result.raise_for_status()
    """

    def __init__(
        self,
        config: ProvisionConfig,
        client: BenchClient | None = None,
        gate: ReadinessGate | None = None,
        prober: StateProber | None = None,
        reconciler: ConfigurationReconciler | None = None,
        provisioner: SiteProvisioner | None = None,
    ) -> None:
        self.config = config
        self.client = client or BenchClient.from_config(config)
        self.gate = gate or ReadinessGate()
        self.prober = prober or StateProber(self.client, timeout=config.probe_timeout_seconds)
        self.reconciler = reconciler or ConfigurationReconciler(
            self.client, timeout=config.command_timeout_seconds
        )
        self.provisioner = provisioner or SiteProvisioner(
            self.client, reconciler=self.reconciler, timeout=config.command_timeout_seconds
        )

    def run(self) -> RunResult:
        """Execute the run. Always returns a terminal RunResult."""
        result = RunResult(run_id=self.config.run_id, site_id=self.config.site_id)

        with LogContext(run_id=self.config.run_id, site_id=self.config.site_id):
            logger.info("orchestrator.started")
            self._run_phases(result)
            result.mark_complete()
            if result.done:
                logger.info("orchestrator.complete", summary=result.summary)
            else:
                logger.error(
                    "orchestrator.failed",
                    summary=result.summary,
                    reason=result.reason.value if result.reason else None,
                )
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _enter(self, result: RunResult, phase: Phase) -> None:
        logger.info("orchestrator.transition", from_phase=result.phase.value, to_phase=phase.value)
        result.enter(phase)

    def _run_phases(self, result: RunResult) -> None:
        site_id = self.config.site_id
        desired = self.config.desired

        self._enter(result, Phase.AWAITING_DEPENDENCIES)
        for target in self.config.readiness:
            readiness = self.gate.await_target(target, self.client)
            result.readiness.append(readiness)
            if not readiness.ready:
                result.fail(
                    FailureReason.DEPENDENCY_UNREADY,
                    f"{target.name} not ready within {target.max_wait_seconds:g}s"
                    + (f": {readiness.last_error}" if readiness.last_error else ""),
                )
                return

        self._enter(result, Phase.PROBING)
        probe = self.prober.probe(site_id)
        result.probe = probe
        if probe.status == "probe_failed":
            result.fail(FailureReason.PROBE_AMBIGUOUS, probe.reason or "site existence unknown")
            return

        if probe.status == "absent":
            result.branch = "provision"
            self._enter(result, Phase.PROVISIONING)
            create = self.provisioner.create_site(site_id, self.config.credentials, desired)
            result.create = create
            if not create.created:
                reason = (
                    FailureReason.CREATION_CONFLICT
                    if create.conflict
                    else FailureReason.CREATION_FAILED
                )
                result.fail(reason, create.reason or "site creation failed")
                return
        else:
            result.branch = "reconcile"
            self._enter(result, Phase.RECONCILING)
            reconcile = self.reconciler.reconcile(site_id, desired)
            result.reconcile = reconcile
            if not reconcile.applied:
                result.fail(
                    FailureReason.RECONCILE_INCOMPLETE,
                    f"{len(reconcile.failed_keys)} configuration key(s) not applied",
                    unapplied_keys=reconcile.failed_keys,
                )
                return

        self._enter(result, Phase.VERIFYING)
        verify = self.verify(site_id, desired)
        result.verify = verify
        if not verify.ok:
            result.fail(FailureReason.VERIFICATION_MISMATCH, verify.error or "verification failed")
            return

        result.succeed()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _backend_target(self) -> ReadinessTarget | None:
        for target in self.config.readiness:
            if self.config.backend_service in (target.service, target.name):
                return target
        return None

    def verify(self, site_id: str, desired: dict) -> VerifyResult:
        """Re-check the backend and compare a config readback with *desired*."""
        verify = VerifyResult(site_id=site_id)

        target = self._backend_target()
        if target is not None:
            verify.readiness = self.gate.await_target(target, self.client)
            if not verify.readiness.ready:
                verify.error = f"{target.name} not ready during verification"
                return verify

        try:
            current = self.reconciler.read_settings(site_id)
        except CommandError as exc:
            verify.error = f"config readback failed: {exc.message}"
            return verify

        for key, value in desired.items():
            if not values_equal(current.get(key), value):
                verify.mismatched[key] = {"desired": value, "actual": current.get(key)}

        if verify.mismatched:
            verify.error = f"readback mismatch for: {', '.join(verify.mismatched)}"
            logger.error("verify.mismatch", keys=list(verify.mismatched))
            return verify

        verify.ok = True
        return verify


# ---------------------------------------------------------------------------
# Stack runner (compose lifecycle)
# ---------------------------------------------------------------------------


class StackRunner:
    """Starts, stops, and inspects the compose stack."""

    def __init__(self, client: BenchClient, timeout: int = 600) -> None:
        self.client = client
        self.timeout = timeout

    def up(self, build: bool = False, services: list[str] | None = None) -> StackResult:
        result = StackResult(mode="up")
        args = ["up", "-d"]
        if build:
            args.append("--build")
        args.extend(services or [])
        self._run(result, args)
        if result.ok:
            self._collect_status(result)
        result.mark_complete()
        return result

    def down(self) -> StackResult:
        result = StackResult(mode="down")
        self._run(result, ["down"])
        result.mark_complete()
        return result

    def status(self) -> StackResult:
        result = StackResult(mode="status")
        self._collect_status(result)
        result.mark_complete()
        return result

    def _run(self, result: StackResult, args: list[str]) -> None:
        try:
            proc = self.client.compose(*args, timeout=self.timeout)
        except CommandError as exc:
            result.error = exc.message
            return
        if proc.returncode != 0:
            result.error = proc.stderr.strip() or f"compose {args[0]} exited {proc.returncode}"
            logger.error("stack.failed", mode=result.mode, error=result.error[:300])

    def _collect_status(self, result: StackResult) -> None:
        try:
            proc = self.client.compose("ps", "--all", "--format", "json", timeout=30)
        except CommandError as exc:
            result.error = exc.message
            return
        if proc.returncode != 0:
            result.error = proc.stderr.strip() or "compose ps failed"
            return
        result.services = parse_compose_ps(proc.stdout)


def parse_compose_ps(output: str) -> list[ServiceStatus]:
    """Parse ``docker compose ps --format json`` (one object per line, or one array)."""
    text = output.strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            rows = json.loads(text)
        except json.JSONDecodeError:
            rows = []
    else:
        rows = []
        for line in text.splitlines():
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                continue

    services = []
    for data in rows:
        if not isinstance(data, dict):
            continue
        state = data.get("Health") or data.get("State", "")
        services.append(
            ServiceStatus(
                name=data.get("Service", data.get("Name", "unknown")),
                container_name=data.get("Name"),
                image=data.get("Image"),
                status=_map_compose_status(state),
            )
        )
    return services


def _map_compose_status(state: str) -> str:
    """Map Docker Compose state to our status values."""
    state = state.lower()
    if state in ("running", "healthy"):
        return state
    if "unhealthy" in state:
        return "unhealthy"
    if "exit" in state:
        return "exited"
    if "starting" in state or "created" in state:
        return "starting"
    return "not_found"
