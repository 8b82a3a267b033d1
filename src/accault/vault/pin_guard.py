# Vault - PIN Guard
#
# Secondary 6-digit PIN in front of an already authenticated session.
# Failed attempts are counted in the users table (not in memory) so the
# counter survives restarts and is shared by every server process.
#
# Throttling: after MAX_PIN_ATTEMPTS consecutive misses the user is locked
# out for a fixed LOCKOUT_SECONDS and the counter starts over. The window
# does not grow between cycles.

import math
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..config import LOCKOUT_SECONDS, MAX_PIN_ATTEMPTS, PIN_LENGTH
from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..core.errors import (
    ActionResult,
    LockoutError,
    UnauthorizedError,
    ValidationError,
    action_boundary,
)
from .encryption import EncryptionService
from .store import Eq, VaultStore

PIN_PATTERN = re.compile(r"[0-9]{%d}" % PIN_LENGTH)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def ensure_user(tx, user_id: str) -> dict:
    """Return the user's security row, creating an empty one if needed."""
    row = tx.get("users", [Eq("id", user_id)])
    if row is None:
        row = {
            "id": user_id,
            "security_pin": None,
            "pin_attempts": 0,
            "lockout_until": None,
            "pin_generation": 0,
        }
        tx.insert("users", row)
    return row


class PinGuard:
    """
    Verifies PINs and enforces the attempt limit.

    Args:
        store: Vault store holding the users table
        cipher: Encryption service used for the stored PIN
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        store: VaultStore,
        cipher: EncryptionService,
        clock: Clock = utcnow,
        max_attempts: int = MAX_PIN_ATTEMPTS,
        lockout_seconds: int = LOCKOUT_SECONDS,
    ):
        self.store = store
        self.cipher = cipher
        self.clock = clock
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.logger = get_audit_logger()

    def has_pin(self, user_id: Optional[str]) -> bool:
        """True iff the user has a PIN configured."""
        if not user_id:
            return False
        row = self.store.get("users", [Eq("id", user_id)])
        return bool(row and row["security_pin"])

    def pin_generation(self, user_id: Optional[str]) -> int:
        """Counter bumped by every set_pin; 0 before the first PIN."""
        if not user_id:
            return 0
        row = self.store.get("users", [Eq("id", user_id)])
        return row["pin_generation"] if row else 0

    @action_boundary("Failed to set PIN")
    def set_pin(self, user_id: Optional[str], raw_pin: str) -> ActionResult:
        """
        Store a new PIN (encrypted) and clear any attempts/lockout.

        Returns:
            ActionResult; fails with ``validation`` unless the PIN is
            exactly six decimal digits.
        """
        if not user_id:
            raise UnauthorizedError()
        if not isinstance(raw_pin, str) or not PIN_PATTERN.fullmatch(raw_pin):
            raise ValidationError(f"PIN must be {PIN_LENGTH} digits number")

        encrypted = self.cipher.encrypt(raw_pin)
        with self.store.transaction(immediate=True) as tx:
            row = ensure_user(tx, user_id)
            tx.update_where(
                "users",
                [Eq("id", user_id)],
                {
                    "security_pin": encrypted,
                    "pin_attempts": 0,
                    "lockout_until": None,
                    # unlock flags issued under the old PIN stop matching
                    "pin_generation": (row["pin_generation"] or 0) + 1,
                },
            )

        self.logger.log_event(
            event_type=EventType.PIN_SET,
            severity=EventSeverity.INFO,
            message="Security PIN configured",
            user_id=user_id,
        )
        return ActionResult.ok("PIN Setup Successful")

    @action_boundary("Failed to verify PIN")
    def verify(self, user_id: Optional[str], candidate_pin: str) -> ActionResult:
        """
        Check a candidate PIN.

        The whole read-compare-write runs inside one IMMEDIATE transaction,
        so two concurrent attempts cannot both increment from the same
        stale counter.

        Returns:
            ActionResult(success=True) when the PIN matches; the caller is
            then responsible for setting the session unlock flag.
            On failure ``extra`` carries ``attempts_remaining`` or
            ``retry_after`` (seconds) and ``locked_out``.
        """
        if not user_id:
            raise UnauthorizedError()

        now = self.clock()
        with self.store.transaction(immediate=True) as tx:
            row = tx.get("users", [Eq("id", user_id)])
            if not row or not row["security_pin"]:
                raise ValidationError("PIN not set")

            lockout_until = _parse_ts(row["lockout_until"])
            if lockout_until and now < lockout_until:
                remaining = math.ceil((lockout_until - now).total_seconds())
                self.logger.log_event(
                    event_type=EventType.PIN_FAILED,
                    severity=EventSeverity.ALERT,
                    message=f"PIN attempt during lockout period ({remaining}s remaining)",
                    user_id=user_id,
                )
                raise LockoutError(remaining)

            stored_pin = self.cipher.decrypt(row["security_pin"])
            candidate = candidate_pin if isinstance(candidate_pin, str) else ""

            if secrets.compare_digest(candidate.encode("utf-8"), stored_pin.encode("utf-8")):
                tx.update_where(
                    "users", [Eq("id", user_id)], {"pin_attempts": 0, "lockout_until": None}
                )
                matched, attempts, new_lockout = True, 0, None
            else:
                attempts = row["pin_attempts"] + 1
                new_lockout = None
                if attempts >= self.max_attempts:
                    new_lockout = now + timedelta(seconds=self.lockout_seconds)
                tx.update_where(
                    "users",
                    [Eq("id", user_id)],
                    {
                        "pin_attempts": 0 if new_lockout else attempts,
                        "lockout_until": new_lockout.isoformat() if new_lockout else None,
                    },
                )
                matched = False

        if matched:
            self.logger.log_event(
                event_type=EventType.PIN_VERIFIED,
                severity=EventSeverity.INFO,
                message="Session unlocked with PIN",
                user_id=user_id,
            )
            return ActionResult.ok("PIN verified")

        if new_lockout:
            self.logger.log_event(
                event_type=EventType.PIN_LOCKOUT,
                severity=EventSeverity.ALERT,
                message=f"PIN locked out for {self.lockout_seconds}s after {attempts} failed attempts",
                user_id=user_id,
            )
            return ActionResult.fail(
                LockoutError(
                    self.lockout_seconds,
                    f"Too many attempts. Locked out for {self.lockout_seconds}s",
                )
            )

        remaining_attempts = self.max_attempts - attempts
        self.logger.log_event(
            event_type=EventType.PIN_FAILED,
            severity=EventSeverity.WARNING,
            message=f"Incorrect PIN (attempt {attempts})",
            user_id=user_id,
        )
        return ActionResult(
            success=False,
            message=f"Incorrect PIN. {remaining_attempts} attempts left.",
            error="invalid_pin",
            extra={"attempts_remaining": remaining_attempts, "locked_out": False},
        )
