"""Result models for site provisioning.

Every component returns one of these instead of raising for expected
failures. The orchestrator aggregates them into a :class:`RunResult`,
which names the terminal status, the failing phase, and for incomplete
reconciliation the exact keys that were not applied.

Key Concepts:
    ReadinessResult: ``ready`` or ``timed_out`` for one backing service.
    ProbeResult: ``exists`` / ``absent`` / ``probe_failed``.
    ReconcileResult: ``applied`` or ``partial_failure`` with applied and
        failed key sets.
    CreateResult: ``created`` or ``create_failed`` (``conflict`` set when the
        site turned out to exist).
    VerifyResult: readback comparison and final readiness re-check.
    RunResult: terminal ``done`` / ``failed`` with reason, phase history,
        and every component result for diagnostics.

Related Modules:
    - :mod:`sitespine.provision.workflow` — produces RunResult
    - :mod:`sitespine.core.errors` — error classes behind ``raise_for_status()``

Tags:
    results, models, pydantic, status, reporting
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from sitespine.core import errors

# ---------------------------------------------------------------------------
# Shared enums
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    """Orchestrator states."""

    START = "start"
    AWAITING_DEPENDENCIES = "awaiting_dependencies"
    PROBING = "probing"
    PROVISIONING = "provisioning"
    RECONCILING = "reconciling"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (Phase.DONE, Phase.FAILED)


class FailureReason(str, Enum):
    """Why a run ended in ``failed``."""

    DEPENDENCY_UNREADY = "DependencyUnready"
    PROBE_AMBIGUOUS = "ProbeAmbiguous"
    CREATION_CONFLICT = "CreationConflict"
    CREATION_FAILED = "CreationFailed"
    RECONCILE_INCOMPLETE = "ReconcileIncomplete"
    VERIFICATION_MISMATCH = "VerificationMismatch"


_ERROR_TYPES: dict[FailureReason, type[errors.SiteSpineError]] = {
    FailureReason.DEPENDENCY_UNREADY: errors.DependencyUnready,
    FailureReason.PROBE_AMBIGUOUS: errors.ProbeAmbiguous,
    FailureReason.CREATION_CONFLICT: errors.CreationConflict,
    FailureReason.CREATION_FAILED: errors.CreationFailed,
    FailureReason.RECONCILE_INCOMPLETE: errors.ReconcileIncomplete,
    FailureReason.VERIFICATION_MISMATCH: errors.VerificationMismatch,
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Component results
# ---------------------------------------------------------------------------


class ReadinessResult(BaseModel):
    """Outcome of waiting on one backing service."""

    service: str
    status: Literal["ready", "timed_out"]
    attempts: int = 0
    waited_seconds: float = 0.0
    last_error: str | None = None

    @property
    def ready(self) -> bool:
        return self.status == "ready"


class ProbeResult(BaseModel):
    """Outcome of the site existence query."""

    site_id: str
    status: Literal["exists", "absent", "probe_failed"]
    reason: str | None = None
    known_sites: list[str] = Field(default_factory=list)


class ReconcileResult(BaseModel):
    """Outcome of applying a reconciliation plan."""

    site_id: str
    status: Literal["applied", "partial_failure"] = "applied"
    applied_keys: list[str] = Field(default_factory=list)
    failed_keys: list[str] = Field(default_factory=list)
    unchanged_keys: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    readback_failed: bool = False

    @property
    def applied(self) -> bool:
        return self.status == "applied"


class CreateResult(BaseModel):
    """Outcome of creating a new site."""

    site_id: str
    status: Literal["created", "create_failed"]
    conflict: bool = False
    reason: str | None = None
    partial_state: list[str] = Field(
        default_factory=list,
        description="What the failed creation left behind (not cleaned up)",
    )
    configured_keys: list[str] = Field(default_factory=list)

    @property
    def created(self) -> bool:
        return self.status == "created"


class VerifyResult(BaseModel):
    """Outcome of the post-apply check."""

    site_id: str
    ok: bool = False
    mismatched: dict[str, dict[str, Any]] = Field(default_factory=dict)
    readiness: ReadinessResult | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Stack status
# ---------------------------------------------------------------------------


class ServiceStatus(BaseModel):
    """Status of a single compose service."""

    name: str
    container_name: str | None = None
    image: str | None = None
    status: Literal["running", "healthy", "unhealthy", "exited", "starting", "not_found"] = "not_found"


class StackResult(BaseModel):
    """Result of a stack operation (up/down/status)."""

    mode: str
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0
    services: list[ServiceStatus] = Field(default_factory=list)
    error: str | None = None
    summary: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    def mark_complete(self) -> None:
        self.completed_at = _now()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()
        healthy = sum(1 for s in self.services if s.status in ("running", "healthy"))
        self.summary = f"{healthy}/{len(self.services)} services running"


# ---------------------------------------------------------------------------
# Terminal run result
# ---------------------------------------------------------------------------


class RunResult(BaseModel):
    """Terminal result of one orchestrator run."""

    run_id: str
    site_id: str
    status: Literal["done", "failed", "running"] = "running"
    phase: Phase = Phase.START
    branch: Literal["provision", "reconcile"] | None = None
    reason: FailureReason | None = None
    failed_phase: Phase | None = None
    detail: str | None = None
    unapplied_keys: list[str] = Field(default_factory=list)
    history: list[Phase] = Field(default_factory=lambda: [Phase.START])

    readiness: list[ReadinessResult] = Field(default_factory=list)
    probe: ProbeResult | None = None
    reconcile: ReconcileResult | None = None
    create: CreateResult | None = None
    verify: VerifyResult | None = None

    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0
    summary: str = ""

    @property
    def done(self) -> bool:
        return self.status == "done"

    def enter(self, phase: Phase) -> None:
        """Record a transition. A finished run cannot move again."""
        if self.phase.terminal:
            raise ValueError(f"run already ended in {self.phase.value}")
        self.phase = phase
        self.history.append(phase)

    def fail(self, reason: FailureReason, detail: str, unapplied_keys: list[str] | None = None) -> None:
        """Transition to ``failed`` from the current phase."""
        self.failed_phase = self.phase
        self.reason = reason
        self.detail = detail
        self.unapplied_keys = list(unapplied_keys or [])
        self.status = "failed"
        self.enter(Phase.FAILED)

    def succeed(self) -> None:
        self.status = "done"
        self.enter(Phase.DONE)

    def mark_complete(self) -> None:
        """Finalize run: compute duration and summary."""
        self.completed_at = _now()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        if self.status == "done":
            self.summary = (
                f"{self.site_id}: done via {self.branch} in {self.duration_seconds:.1f}s"
            )
        else:
            phase = self.failed_phase.value if self.failed_phase else "unknown"
            reason = self.reason.value if self.reason else "unknown"
            self.summary = f"{self.site_id}: failed at {phase} ({reason})"
            if self.unapplied_keys:
                self.summary += f"; unapplied keys: {', '.join(self.unapplied_keys)}"

    def raise_for_status(self) -> None:
        """Raise the typed error matching ``reason`` if the run failed."""
        if self.status != "failed" or self.reason is None:
            return
        error_cls = _ERROR_TYPES[self.reason]
        message = self.detail or self.reason.value
        context = errors.ErrorContext(
            run_id=self.run_id,
            site_id=self.site_id,
            phase=self.failed_phase.value if self.failed_phase else None,
        )
        if self.reason is FailureReason.RECONCILE_INCOMPLETE:
            applied = self.reconcile.applied_keys if self.reconcile else []
            raise errors.ReconcileIncomplete(
                message,
                failed_keys=self.unapplied_keys,
                applied_keys=applied,
                context=context,
            )
        if self.reason is FailureReason.VERIFICATION_MISMATCH:
            mismatched = self.verify.mismatched if self.verify else {}
            raise errors.VerificationMismatch(message, mismatched=mismatched, context=context)
        raise error_cls(message, context=context)
