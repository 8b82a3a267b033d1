# Vault - Activity & Audit Logging
#
# Append-only structured log of everything a user does to their vault.
# Events carry timestamps, the acting user id and a short description.
# Passwords, PINs and the encryption key are never part of an event.

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of vault events that can be logged."""

    # System
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"

    # PIN / session lock
    PIN_SET = "pin.set"
    PIN_VERIFIED = "pin.verified"
    PIN_FAILED = "pin.failed"
    PIN_LOCKOUT = "pin.lockout"
    SESSION_LOCKED = "session.locked"

    # Accounts
    ACCOUNT_CREATED = "account.created"
    ACCOUNT_UPDATED = "account.updated"
    ACCOUNT_DELETED = "account.deleted"
    ACCOUNT_PASSWORD_REVEALED = "account.password.revealed"

    # Groups
    GROUP_CREATED = "group.created"
    GROUP_RENAMED = "group.renamed"
    GROUP_DELETED = "group.deleted"

    # Emails
    EMAIL_CREATED = "email.created"

    # Bulk operations
    BULK_MOVE = "bulk.move"
    BULK_EJECT = "bulk.eject"
    BULK_DELETE = "bulk.delete"

    # Transfer
    IMPORT = "transfer.import"
    EXPORT = "transfer.export"

    # Failures
    DECRYPT_FAILED = "crypto.decrypt.failed"
    STORE_ERROR = "store.error"


class EventSeverity(str, Enum):
    """Severity levels for vault events."""

    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"
    CRITICAL = "critical"


class ActivityAction(str, Enum):
    """Coarse action recorded in the per-user activity table."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditLogger:
    """
    Append-only audit logger for vault events.

    Features:
    - Structured JSON logging via structlog
    - Automatic timestamp and event ID
    - Daily log file under ``log_dir``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger("accault.audit")

    def _setup_file_handler(self):
        """Attach a file handler for today's log file."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(message)s"))

        audit_logger = logging.getLogger("accault.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a vault event.

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            user_id: Acting user, when known
            details: Additional event details (never secrets!)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        self.logger.info(
            "vault_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            user_id=user_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details or {},
        )
        return event_id

    def log_activity(
        self,
        user_id: str,
        action: ActivityAction,
        entity: str,
        message: str,
        event_type: EventType,
        failed: bool = False,
    ) -> str:
        """Log a user-facing activity line (the same text stored per user)."""
        return self.log_event(
            event_type=event_type,
            severity=EventSeverity.WARNING if failed else EventSeverity.INFO,
            message=message,
            user_id=user_id,
            details={"action": action.value, "entity": entity, "failed": failed},
        )


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
