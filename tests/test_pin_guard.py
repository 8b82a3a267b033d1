# Tests for PIN setup, verification and lockout throttling

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from accault.vault.pin_guard import PinGuard
from accault.vault.store import Eq, VaultStore

USER = "user-a"


@pytest.fixture
def pin_clock(frozen_clock):
    return frozen_clock


@pytest.fixture
def guard(store, cipher, pin_clock):
    return PinGuard(store, cipher, clock=pin_clock)


@pytest.fixture
def guard_with_pin(guard):
    assert guard.set_pin(USER, "123456").success
    return guard


def _user_row(store):
    return store.get("users", [Eq("id", USER)])


class TestSetPin:

    def test_set_pin_success(self, guard):
        result = guard.set_pin(USER, "123456")
        assert result.success
        assert result.message == "PIN Setup Successful"
        assert guard.has_pin(USER)

    def test_pin_stored_encrypted(self, guard, store, cipher):
        guard.set_pin(USER, "123456")
        stored = _user_row(store)["security_pin"]
        assert stored != "123456"
        assert cipher.decrypt(stored) == "123456"

    def test_generation_bumped_per_pin(self, guard):
        assert guard.pin_generation(USER) == 0
        guard.set_pin(USER, "123456")
        assert guard.pin_generation(USER) == 1
        guard.set_pin(USER, "654321")
        assert guard.pin_generation(USER) == 2
        assert guard.pin_generation(None) == 0

    @pytest.mark.parametrize("pin", ["12345", "1234567", "12a456", "", " 123456", "１２３４５６"])
    def test_rejects_malformed_pin(self, guard, pin):
        result = guard.set_pin(USER, pin)
        assert not result.success
        assert result.error == "validation"
        assert result.message == "PIN must be 6 digits number"
        assert not guard.has_pin(USER)

    def test_requires_user(self, guard):
        result = guard.set_pin(None, "123456")
        assert not result.success
        assert result.error == "unauthorized"

    def test_reset_clears_attempts(self, guard_with_pin, store):
        guard_with_pin.verify(USER, "000000")
        guard_with_pin.verify(USER, "000000")
        assert _user_row(store)["pin_attempts"] == 2

        guard_with_pin.set_pin(USER, "654321")
        row = _user_row(store)
        assert row["pin_attempts"] == 0
        assert row["lockout_until"] is None


class TestVerify:

    def test_correct_pin(self, guard_with_pin):
        result = guard_with_pin.verify(USER, "123456")
        assert result.success
        assert result.message == "PIN verified"

    def test_pin_not_set(self, guard):
        result = guard.verify(USER, "123456")
        assert not result.success
        assert result.message == "PIN not set"

    def test_wrong_pin_counts_down(self, guard_with_pin):
        result = guard_with_pin.verify(USER, "000000")
        assert not result.success
        assert result.error == "invalid_pin"
        assert result.message == "Incorrect PIN. 4 attempts left."
        assert result.extra == {"attempts_remaining": 4, "locked_out": False}

        result = guard_with_pin.verify(USER, "000000")
        assert result.extra["attempts_remaining"] == 3

    def test_correct_pin_resets_counter(self, guard_with_pin, store):
        for _ in range(3):
            guard_with_pin.verify(USER, "000000")
        assert guard_with_pin.verify(USER, "123456").success
        assert _user_row(store)["pin_attempts"] == 0

    def test_non_string_candidate_is_wrong(self, guard_with_pin):
        result = guard_with_pin.verify(USER, None)
        assert not result.success
        assert result.error == "invalid_pin"

    def test_counters_are_per_user(self, guard_with_pin):
        guard_with_pin.set_pin("user-b", "111111")
        for _ in range(4):
            guard_with_pin.verify(USER, "000000")
        result = guard_with_pin.verify("user-b", "000000")
        assert result.extra["attempts_remaining"] == 4


class TestLockout:

    def _fail(self, guard, times):
        results = [guard.verify(USER, "000000") for _ in range(times)]
        return results[-1]

    def test_fifth_failure_locks_out(self, guard_with_pin):
        result = self._fail(guard_with_pin, 5)
        assert not result.success
        assert result.error == "lockout"
        assert result.extra["locked_out"] is True
        assert result.extra["retry_after"] == 60

    def test_counter_resets_when_locked(self, guard_with_pin, store):
        self._fail(guard_with_pin, 5)
        row = _user_row(store)
        assert row["pin_attempts"] == 0
        assert row["lockout_until"] is not None

    def test_attempt_during_lockout_is_rejected_without_counting(
        self, guard_with_pin, store, pin_clock
    ):
        self._fail(guard_with_pin, 5)
        before = _user_row(store)

        pin_clock.advance(30)
        result = guard_with_pin.verify(USER, "000000")
        assert not result.success
        assert result.error == "lockout"
        assert result.extra["retry_after"] == 30
        assert _user_row(store) == before

    def test_correct_pin_during_lockout_is_rejected(self, guard_with_pin, pin_clock):
        self._fail(guard_with_pin, 5)
        pin_clock.advance(30)
        result = guard_with_pin.verify(USER, "123456")
        assert not result.success
        assert result.error == "lockout"

    def test_lockout_timing_scenario(self, guard_with_pin, store, pin_clock):
        # five wrong PINs at t=0
        self._fail(guard_with_pin, 5)

        # t=30s: still locked out
        pin_clock.advance(30)
        assert guard_with_pin.verify(USER, "123456").error == "lockout"

        # t=61s: correct PIN succeeds and attempts are back to 0
        pin_clock.advance(31)
        assert guard_with_pin.verify(USER, "123456").success
        row = _user_row(store)
        assert row["pin_attempts"] == 0
        assert row["lockout_until"] is None

    def test_lockout_does_not_escalate(self, guard_with_pin, pin_clock):
        self._fail(guard_with_pin, 5)
        pin_clock.advance(61)
        result = self._fail(guard_with_pin, 5)
        assert result.extra["retry_after"] == 60

    def test_after_lockout_full_attempts_available(self, guard_with_pin, pin_clock):
        self._fail(guard_with_pin, 5)
        pin_clock.advance(61)
        result = guard_with_pin.verify(USER, "000000")
        assert result.extra["attempts_remaining"] == 4


class TestConcurrentVerify:
    """Simultaneous wrong guesses must each count exactly once."""

    def _race(self, guard, n):
        barrier = threading.Barrier(n)

        def attempt():
            barrier.wait()
            return guard.verify(USER, "000000")

        with ThreadPoolExecutor(max_workers=n) as pool:
            futures = [pool.submit(attempt) for _ in range(n)]
            return [f.result() for f in futures]

    def test_no_lost_increments(self, guard_with_pin, store):
        results = self._race(guard_with_pin, 4)
        assert [r.error for r in results] == ["invalid_pin"] * 4
        assert sorted(r.extra["attempts_remaining"] for r in results) == [1, 2, 3, 4]
        assert _user_row(store)["pin_attempts"] == 4

    def test_exactly_one_lockout(self, guard_with_pin, store):
        results = self._race(guard_with_pin, 7)
        errors = [r.error for r in results]
        assert errors.count("invalid_pin") == 4
        assert errors.count("lockout") == 3
        triggered = [r for r in results if r.message.startswith("Too many attempts. Locked out")]
        assert len(triggered) == 1
        assert _user_row(store)["pin_attempts"] == 0


class TestPinGenerationMigration:

    def test_legacy_users_table_gains_column(self, tmp_path, cipher, pin_clock):
        db_path = tmp_path / "legacy.db"
        conn = sqlite3.connect(str(db_path))
        conn.execute(
            "CREATE TABLE users (id TEXT PRIMARY KEY, security_pin TEXT, "
            "pin_attempts INTEGER NOT NULL DEFAULT 0, lockout_until TEXT)"
        )
        conn.execute("INSERT INTO users (id, security_pin) VALUES (?, ?)",
                     (USER, cipher.encrypt("123456")))
        conn.commit()
        conn.close()

        store = VaultStore(db_path)
        guard = PinGuard(store, cipher, clock=pin_clock)
        assert guard.pin_generation(USER) == 0
        assert guard.verify(USER, "123456").success
        guard.set_pin(USER, "654321")
        assert guard.pin_generation(USER) == 1
