"""
Shared pytest fixtures for the accault test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger  -> temp directory  (prevents test events in ./audit_logs)
  - Vault manager -> reset singleton (prevents routes reusing another test's vault)
"""

from datetime import datetime, timedelta, timezone

import pytest

from accault.vault import (
    AccountInput,
    EncryptionService,
    MemorySessionLock,
    VaultManager,
    VaultStore,
)


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import accault.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_vault_manager():
    """Reset the route-level VaultManager singleton around every test."""
    import accault.api.vault_routes as routes_mod

    old_manager = routes_mod._vault_manager
    routes_mod._vault_manager = None

    yield

    routes_mod._vault_manager = old_manager


class FakeClock:
    """Controllable UTC clock. ``tick`` is added after every reading."""

    def __init__(self, start=None, tick=timedelta(0)):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.tick = tick

    def __call__(self):
        current = self.now
        self.now += self.tick
        return current

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class VaultSeeder:
    """Shortcuts for populating a vault through the public manager API."""

    def __init__(self, manager: VaultManager):
        self.manager = manager

    def email(self, user_id, address="owner@example.com", **kwargs):
        result = self.manager.add_email(user_id, address, **kwargs)
        assert result.success, result.message
        return result.data["id"]

    def group(self, user_id, name="Work"):
        result = self.manager.add_group(user_id, name)
        assert result.success, result.message
        return result.data["id"]

    def account(
        self,
        user_id,
        platform="GitHub",
        username="alice",
        password="s3cret!",
        email_id=None,
        group_id=None,
        categories=("Social",),
    ):
        data = AccountInput(
            platform=platform,
            username=username,
            password=password,
            no_password=password is None,
            email_id=email_id,
            no_email=email_id is None,
            group_id=group_id,
            categories=list(categories),
        )
        result = self.manager.add_account(user_id, data)
        assert result.success, result.message
        return result.data["id"]


@pytest.fixture
def encryption_key():
    return EncryptionService.generate_key()


@pytest.fixture
def cipher(encryption_key):
    return EncryptionService(encryption_key)


@pytest.fixture
def store(tmp_path):
    return VaultStore(tmp_path / "vault.db")


@pytest.fixture
def clock():
    """Ticks one second per reading so creation timestamps are distinct."""
    return FakeClock(tick=timedelta(seconds=1))


@pytest.fixture
def frozen_clock():
    """Only moves when advanced explicitly."""
    return FakeClock()


@pytest.fixture
def invalidated():
    """Records every batch of views passed to the invalidate hook."""
    return []


@pytest.fixture
def manager(store, cipher, clock, invalidated):
    return VaultManager(store, cipher, clock=clock, invalidate=invalidated.append)


@pytest.fixture
def seed(manager):
    return VaultSeeder(manager)


@pytest.fixture
def port():
    return MemorySessionLock()
