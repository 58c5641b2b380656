"""Site-Spine Core -- error types and structured logging shared by every module.

Modules:
    errors.py          Typed error hierarchy (SiteSpineError and the provisioning taxonomy)
    logging.py         Structured logging (structlog)
"""

from sitespine.core.errors import (
    CommandError,
    CreationConflict,
    CreationFailed,
    DependencyUnready,
    ErrorCategory,
    ErrorContext,
    InvalidEndpointError,
    ProbeAmbiguous,
    ReconcileIncomplete,
    SiteSpineError,
    VerificationMismatch,
)
from sitespine.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "CommandError",
    "CreationConflict",
    "CreationFailed",
    "DependencyUnready",
    "ErrorCategory",
    "ErrorContext",
    "InvalidEndpointError",
    "LogContext",
    "ProbeAmbiguous",
    "ReconcileIncomplete",
    "SiteSpineError",
    "VerificationMismatch",
    "configure_logging",
    "get_logger",
]
