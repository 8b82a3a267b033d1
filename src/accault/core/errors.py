# Core Module - Error taxonomy and structured results
#
# Components raise VaultError subclasses internally. Public operations
# convert them into ActionResult objects at their boundary so no raw
# fault (or internal detail) ever reaches the caller.

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .audit_log import EventSeverity, EventType, get_audit_logger

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong. Please try again."


class ConfigurationError(RuntimeError):
    """Fatal startup misconfiguration (e.g. missing ENCRYPTION_KEY)."""


class VaultError(Exception):
    """Base class for all recoverable vault errors."""

    code = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(VaultError):
    code = "validation"


class UnauthorizedError(VaultError):
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFoundError(VaultError):
    """Entity is absent or owned by someone else. Both look the same."""

    code = "not_found"


class LockoutError(VaultError):
    code = "lockout"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message or f"Too many attempts. Try again in {retry_after}s")
        self.retry_after = retry_after


class DecryptionError(VaultError):
    code = "decryption"

    def __init__(self, message: str = "Unable to decrypt value"):
        super().__init__(message)


class StoreError(VaultError):
    """Persistence failure. The message shown to callers is always generic."""

    code = "store"

    def __init__(self, message: str = GENERIC_FAILURE, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class ActionResult:
    """Outcome of a public vault operation."""

    success: bool
    message: str = ""
    data: Any = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", data: Any = None, **extra) -> "ActionResult":
        return cls(success=True, message=message, data=data, extra=extra)

    @classmethod
    def fail(cls, exc: VaultError, data: Any = None, **extra) -> "ActionResult":
        if isinstance(exc, LockoutError):
            extra.setdefault("retry_after", exc.retry_after)
            extra.setdefault("locked_out", True)
        message = GENERIC_FAILURE if isinstance(exc, StoreError) else exc.message
        return cls(success=False, message=message, data=data, error=exc.code, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": self.success, "message": self.message}
        if self.data is not None:
            body["data"] = self.data
        if self.error:
            body["error"] = self.error
        body.update(self.extra)
        return body


def report_store_error(operation: str, failure_message: str, exc: "StoreError") -> None:
    """Log a store failure for operators and emit a STORE_ERROR audit event."""
    logger.error("%s failed: %r", operation, exc.__cause__ or exc)
    get_audit_logger().log_event(
        event_type=EventType.STORE_ERROR,
        severity=EventSeverity.CRITICAL,
        message=failure_message,
        details={"operation": operation, "retryable": exc.retryable},
    )


def store_failure(operation: str, failure_message: str, exc: "StoreError",
                  data: Any = None) -> ActionResult:
    """Report ``exc`` and return the generic failure result for it."""
    report_store_error(operation, failure_message, exc)
    result = ActionResult.fail(exc, data=data)
    result.message = failure_message
    return result


def action_boundary(failure_message: str):
    """Decorator: translate VaultError (and StoreError) into ActionResult.

    ``failure_message`` replaces the generic store message so users see a
    short, actionable line such as "Failed Delete Accounts".
    """

    def decorator(func: Callable[..., ActionResult]):
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> ActionResult:
            try:
                return func(*args, **kwargs)
            except StoreError as exc:
                return store_failure(func.__name__, failure_message, exc)
            except VaultError as exc:
                return ActionResult.fail(exc)

        return wrapper

    return decorator
