"""
Structured error types for site-spine.

Provides a small hierarchy of typed errors with metadata for retry
decisions, error categorization, and root cause analysis through error
chaining.

Components in :mod:`sitespine.provision` report expected failures as result
values, not exceptions. The classes here exist for three reasons:

- **Transport failures:** :class:`CommandError` is raised by the command
  runner when a pass-through command cannot run at all (binary missing,
  timeout). Components catch it at their boundary.
- **Validation:** :class:`InvalidEndpointError` is raised from pydantic
  validators, so it is a ``ValueError``.
- **Caller convenience:** ``RunResult.raise_for_status()`` turns a failed
  terminal result into the matching typed error.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      SiteSpineError                              │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │  CommandError          DependencyUnready     ProbeAmbiguous      │
        │  (TRANSPORT)           (DEPENDENCY)          (PROBE)             │
        │                                                                  │
        │  CreationConflict      CreationFailed        ReconcileIncomplete │
        │  (CREATION)            (CREATION)            (RECONCILE)         │
        │                                                                  │
        │  VerificationMismatch  InvalidEndpointError (+ ValueError)       │
        │  (VERIFICATION)        (VALIDATION)                              │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ReconcileIncomplete("2 keys failed", failed_keys=["redis_cache"])
    >>> error.failed_keys
    ['redis_cache']
    >>> error.category.value
    'RECONCILE'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    site-spine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    TRANSPORT = "TRANSPORT"  # Command runner could not execute
    DEPENDENCY = "DEPENDENCY"  # Backing service never became ready
    PROBE = "PROBE"  # Site existence undeterminable
    CREATION = "CREATION"  # new-site failed or collided
    RECONCILE = "RECONCILE"  # set-config failed for some keys
    VERIFICATION = "VERIFICATION"  # Readback differs from desired
    VALIDATION = "VALIDATION"  # Bad input configuration
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only set what is relevant; ``to_dict()`` drops ``None`` fields.
    Never store secrets here.
    """

    run_id: str | None = None
    site_id: str | None = None
    phase: str | None = None
    service: str | None = None
    command: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "site_id", "phase", "service", "command"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SiteSpineError(Exception):
    """Base exception for all site-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SiteSpineError:
        """Add context fields, returning self for chaining.

        Unknown keys go to ``context.metadata``.
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging or JSON output."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            data["context"] = context
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class CommandError(SiteSpineError):
    """A pass-through command could not be executed (missing binary, timeout)."""

    default_category = ErrorCategory.TRANSPORT
    default_retryable = True


class DependencyUnready(SiteSpineError):
    """A backing service never became reachable within its timeout."""

    default_category = ErrorCategory.DEPENDENCY
    default_retryable = True


class ProbeAmbiguous(SiteSpineError):
    """Existence of the site could not be determined. Never means absent."""

    default_category = ErrorCategory.PROBE


class CreationConflict(SiteSpineError):
    """Creation attempted against a site that already exists."""

    default_category = ErrorCategory.CREATION


class CreationFailed(SiteSpineError):
    """The provisioning call itself failed; partial state is left in place."""

    default_category = ErrorCategory.CREATION


class ReconcileIncomplete(SiteSpineError):
    """One or more configuration keys failed to apply."""

    default_category = ErrorCategory.RECONCILE
    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        failed_keys: list[str] | None = None,
        applied_keys: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.failed_keys = list(failed_keys or [])
        self.applied_keys = list(applied_keys or [])

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["failed_keys"] = self.failed_keys
        data["applied_keys"] = self.applied_keys
        return data


class VerificationMismatch(SiteSpineError):
    """Post-application readback does not match the desired configuration."""

    default_category = ErrorCategory.VERIFICATION

    def __init__(
        self,
        message: str,
        *,
        mismatched: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.mismatched = dict(mismatched or {})

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["mismatched"] = self.mismatched
        return data


class InvalidEndpointError(SiteSpineError, ValueError):
    """An endpoint value is malformed, most commonly missing its scheme."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, key: str, value: Any, message: str | None = None) -> None:
        super().__init__(message or f"Invalid endpoint for {key}: {value!r}")
        self.key = key
        self.value = value


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SiteSpineError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SiteSpineError",
    "CommandError",
    "DependencyUnready",
    "ProbeAmbiguous",
    "CreationConflict",
    "CreationFailed",
    "ReconcileIncomplete",
    "VerificationMismatch",
    "InvalidEndpointError",
    "is_retryable",
]
