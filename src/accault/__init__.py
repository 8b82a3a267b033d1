# accault - Main Package
#
# Multi-tenant account vault: encrypted credentials organised into groups,
# linked to email identities and guarded by a per-session security PIN.

__version__ = "0.3.0"
__description__ = "Multi-user encrypted account vault"

from .core import (
    ActionResult,
    EventSeverity,
    EventType,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "ActionResult",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
