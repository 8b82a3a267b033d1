# Core Module - Shared Utilities
#
# Core module provides shared functionality across all accault modules:
# - Audit / activity logging
# - SQLite connection helper
# - Error taxonomy and structured results

from .audit_log import (
    ActivityAction,
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
)
from .errors import (
    ActionResult,
    ConfigurationError,
    DecryptionError,
    LockoutError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
    ValidationError,
    VaultError,
    action_boundary,
    report_store_error,
    store_failure,
)

__all__ = [
    # Audit Logging
    "ActivityAction",
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    # Errors
    "ActionResult",
    "ConfigurationError",
    "DecryptionError",
    "LockoutError",
    "NotFoundError",
    "StoreError",
    "UnauthorizedError",
    "ValidationError",
    "VaultError",
    "action_boundary",
    "report_store_error",
    "store_failure",
]
