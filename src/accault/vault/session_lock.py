# Vault - Session Lock
#
# Per-session gate in front of every read that exposes account or email
# contents. The unlock flag lives in the caller's session (a signed cookie
# in the HTTP app) and is reached only through a SessionLockPort, never
# through module-level state.
#
#   NO_PIN_CONFIGURED  -> data always allowed
#   LOCKED             -> PIN configured, flag absent: reads return empty
#   UNLOCKED           -> PIN verified in this session, until lock()

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional, TypeVar

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..core.errors import ActionResult, UnauthorizedError
from .pin_guard import PinGuard

T = TypeVar("T")


class LockState(str, Enum):
    NO_PIN_CONFIGURED = "no_pin"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class SessionLockPort(ABC):
    """Capability over one session's unlock flag."""

    @abstractmethod
    def set_unlocked(self) -> None:
        pass

    @abstractmethod
    def clear_unlocked(self) -> None:
        pass

    @abstractmethod
    def is_unlocked(self) -> bool:
        pass


class MemorySessionLock(SessionLockPort):
    """Flag held in a plain object (CLI callers, tests)."""

    def __init__(self, unlocked: bool = False):
        self._unlocked = unlocked

    def set_unlocked(self) -> None:
        self._unlocked = True

    def clear_unlocked(self) -> None:
        self._unlocked = False

    def is_unlocked(self) -> bool:
        return self._unlocked


class SessionLockGate:
    """
    Decides whether protected reads may run for a session.

    Args:
        pin_guard: PIN guard used for ``has_pin`` and verification
    """

    def __init__(self, pin_guard: PinGuard):
        self.pin_guard = pin_guard
        self.logger = get_audit_logger()

    def state(self, user_id: Optional[str], port: SessionLockPort) -> LockState:
        if not self.pin_guard.has_pin(user_id):
            return LockState.NO_PIN_CONFIGURED
        if port.is_unlocked():
            return LockState.UNLOCKED
        return LockState.LOCKED

    def allows_data(self, user_id: Optional[str], port: SessionLockPort) -> bool:
        """False for anonymous callers and for locked sessions."""
        if not user_id:
            return False
        return self.state(user_id, port) != LockState.LOCKED

    def run(
        self,
        user_id: Optional[str],
        port: SessionLockPort,
        fetch: Callable[[], T],
        empty: Callable[[], T],
    ) -> T:
        """
        Execute ``fetch`` only when the session may see data.

        Locked or anonymous sessions get ``empty()`` and the query is never
        issued.
        """
        if not self.allows_data(user_id, port):
            return empty()
        return fetch()

    def status(self, user_id: Optional[str], port: SessionLockPort) -> dict:
        state = self.state(user_id, port)
        return {
            "has_pin": state != LockState.NO_PIN_CONFIGURED,
            "is_unlocked": state != LockState.LOCKED,
            "state": state.value,
        }

    def unlock(self, user_id: Optional[str], port: SessionLockPort, pin: str) -> ActionResult:
        """Verify ``pin``; on success set the session's unlock flag."""
        result = self.pin_guard.verify(user_id, pin)
        if result.success:
            port.set_unlocked()
        return result

    def lock(self, user_id: Optional[str], port: SessionLockPort) -> ActionResult:
        """Clear the unlock flag immediately, whatever the PIN state."""
        if not user_id:
            return ActionResult.fail(UnauthorizedError())
        port.clear_unlocked()
        self.logger.log_event(
            event_type=EventType.SESSION_LOCKED,
            severity=EventSeverity.INFO,
            message="Session locked",
            user_id=user_id,
        )
        return ActionResult.ok("Session locked")
