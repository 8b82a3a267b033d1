# Tests for account, group and email management

import pytest

from accault.core.errors import StoreError
from accault.vault import AccountFilter, AccountInput, MemorySessionLock
from accault.vault.store import Eq
from accault.vault.vault_manager import public_account

USER = "user-a"
OTHER = "user-b"


@pytest.fixture
def open_port():
    return MemorySessionLock(unlocked=True)


def _row(store, account_id):
    return store.get("accounts", [Eq("id", account_id)])


class TestAddAccount:

    def test_add_and_reveal(self, manager, store, open_port, seed):
        email_id = seed.email(USER)
        result = manager.add_account(USER, AccountInput(
            platform="GitHub", username="alice", password="s3cret!",
            email_id=email_id, categories=["Dev"],
        ))
        assert result.success
        assert result.message == "Account Add Success!"

        stored = _row(store, result.data["id"])
        assert stored["encrypted_password"] is not None
        assert stored["encrypted_password"] != "s3cret!"

        revealed = manager.reveal_password(USER, open_port, result.data["id"])
        assert revealed.success
        assert revealed.data == {"password": "s3cret!"}

    @pytest.mark.parametrize("overrides,message", [
        ({"platform": ""}, "Platform & Username are required"),
        ({"username": "   "}, "Platform & Username are required"),
        ({"categories": []}, "Select at least 1 category"),
        ({"categories": ["", "  "]}, "Select at least 1 category"),
        ({"password": None}, "Password is required"),
        ({"no_email": False}, "Email is required"),
    ])
    def test_validation(self, manager, overrides, message):
        fields = dict(platform="GitHub", username="alice", password="pw",
                      no_email=True, categories=["Dev"])
        fields.update(overrides)
        result = manager.add_account(USER, AccountInput(**fields))
        assert not result.success
        assert result.error == "validation"
        assert result.message == message

    def test_no_password_flag_wins(self, manager, store):
        result = manager.add_account(USER, AccountInput(
            platform="Wiki", username="a", password="ignored", no_password=True,
            no_email=True, categories=["Misc"],
        ))
        assert _row(store, result.data["id"])["encrypted_password"] is None

    def test_no_email_flag_wins(self, manager, store, seed):
        email_id = seed.email(USER)
        result = manager.add_account(USER, AccountInput(
            platform="Wiki", username="a", password="pw", email_id=email_id,
            no_email=True, categories=["Misc"],
        ))
        assert _row(store, result.data["id"])["email_id"] is None

    def test_foreign_email_rejected(self, manager, seed):
        foreign_email = seed.email(OTHER, "bob@example.com")
        result = manager.add_account(USER, AccountInput(
            platform="X", username="a", password="pw", email_id=foreign_email,
            categories=["Misc"],
        ))
        assert result.error == "not_found"

    def test_foreign_group_rejected(self, manager, seed):
        foreign_group = seed.group(OTHER)
        result = manager.add_account(USER, AccountInput(
            platform="X", username="a", password="pw", no_email=True,
            group_id=foreign_group, categories=["Misc"],
        ))
        assert result.error == "not_found"

    def test_anonymous_rejected(self, manager):
        result = manager.add_account(None, AccountInput(platform="X", username="a"))
        assert result.error == "unauthorized"

    def test_public_projection_hides_ciphertext(self, manager, store, seed):
        account_id = seed.account(USER)
        view = public_account(_row(store, account_id))
        assert "encrypted_password" not in view
        assert "user_id" not in view
        assert view["has_password"] is True


class TestUpdateAccount:

    @pytest.fixture
    def account_id(self, seed):
        return seed.account(USER, "GitHub", password="original")

    def _update(self, manager, account_id, **fields):
        base = dict(platform="GitHub", username="alice", no_email=True, categories=["Dev"])
        base.update(fields)
        return manager.update_account(USER, account_id, AccountInput(**base))

    def test_blank_password_keeps_existing(self, manager, open_port, account_id):
        assert self._update(manager, account_id, password="   ").success
        assert manager.reveal_password(USER, open_port, account_id).data == {
            "password": "original"
        }

    def test_new_password_replaces(self, manager, open_port, account_id):
        self._update(manager, account_id, password="changed")
        assert manager.reveal_password(USER, open_port, account_id).data["password"] == "changed"

    def test_no_password_clears(self, manager, store, open_port, account_id):
        self._update(manager, account_id, no_password=True)
        assert _row(store, account_id)["encrypted_password"] is None
        result = manager.reveal_password(USER, open_port, account_id)
        assert result.error == "not_found"
        assert result.data == {"password": ""}

    def test_redirect_path(self, manager, seed, account_id):
        group_id = seed.group(USER)
        result = self._update(manager, account_id, group_id=group_id)
        assert result.data == {"redirect_path": f"/dashboard/group/{group_id}"}
        result = self._update(manager, account_id)
        assert result.data == {"redirect_path": "/dashboard"}

    def test_icon_cleared(self, manager, store, account_id):
        self._update(manager, account_id, icon="data:image/png;base64,AAA")
        assert _row(store, account_id)["icon"] == "data:image/png;base64,AAA"
        self._update(manager, account_id, icon_deleted=True)
        assert _row(store, account_id)["icon"] is None

    def test_foreign_account_not_found(self, manager, seed):
        foreign = seed.account(OTHER)
        result = self._update(manager, foreign, platform="Hijacked")
        assert result.error == "not_found"

    def test_email_required_unless_flagged(self, manager, account_id):
        result = self._update(manager, account_id, no_email=False)
        assert result.message == "Email is Required"


class TestSingleAccountOperations:

    def test_delete(self, manager, store, seed):
        account_id = seed.account(USER)
        assert manager.delete_account(USER, account_id).success
        assert _row(store, account_id) is None

    def test_delete_foreign(self, manager, store, seed):
        foreign = seed.account(OTHER)
        result = manager.delete_account(USER, foreign)
        assert result.error == "not_found"
        assert _row(store, foreign) is not None

    def test_move_and_eject(self, manager, store, seed):
        group_id = seed.group(USER, "Work")
        account_id = seed.account(USER)
        result = manager.move_account_to_group(USER, account_id, group_id)
        assert result.message == "Account Successfully Moved to Work"
        assert _row(store, account_id)["group_id"] == group_id

        assert manager.remove_account_from_group(USER, account_id).success
        assert _row(store, account_id)["group_id"] is None

    def test_eject_ungrouped_fails(self, manager, seed):
        account_id = seed.account(USER)
        result = manager.remove_account_from_group(USER, account_id)
        assert not result.success
        assert result.message == "Account is not inside of group"

    def test_corrupt_password_degrades(self, manager, store, open_port, seed):
        account_id = seed.account(USER)
        store.update_where("accounts", [Eq("id", account_id)],
                           {"encrypted_password": "bm90IGEgcmVhbCBjaXBoZXJ0ZXh0IGF0IGFsbA=="})
        result = manager.reveal_password(USER, open_port, account_id)
        assert not result.success
        assert result.error == "decryption"
        assert result.data == {"password": ""}

    def test_reveal_foreign(self, manager, open_port, seed):
        foreign = seed.account(OTHER)
        result = manager.reveal_password(USER, open_port, foreign)
        assert result.error == "not_found"


class TestGroups:

    def test_add_requires_name(self, manager):
        result = manager.add_group(USER, "   ")
        assert result.message == "Group Name Required"

    def test_rename(self, manager, store, seed):
        group_id = seed.group(USER, "Old")
        assert manager.rename_group(USER, group_id, "New").success
        assert store.get("account_groups", [Eq("id", group_id)])["name"] == "New"
        latest = manager.activity.recent(USER, limit=1)[0]
        assert latest["details"] == "Group Name Update From Old To New"

    def test_rename_foreign(self, manager, seed):
        foreign = seed.group(OTHER)
        assert manager.rename_group(USER, foreign, "Mine").error == "not_found"

    def test_delete_keeps_accounts(self, manager, store, seed):
        group_id = seed.group(USER)
        members = [seed.account(USER, f"M{i}", group_id=group_id) for i in range(2)]
        assert manager.delete_group(USER, group_id).success
        assert store.get("account_groups", [Eq("id", group_id)]) is None
        for account_id in members:
            assert _row(store, account_id)["group_id"] is None


class TestEmails:

    def test_add_email(self, manager, store):
        result = manager.add_email(USER, "me@example.com", name="Me", is_2fa_enabled=True)
        assert result.success
        row = store.get("email_identities", [Eq("id", result.data["id"])])
        assert row["is_2fa_enabled"] == 1
        assert row["is_verified"] == 0

    def test_invalid_email(self, manager):
        assert manager.add_email(USER, "not-an-email").error == "validation"

    def test_foreign_recovery_email(self, manager, seed):
        foreign = seed.email(OTHER, "bob@example.com")
        result = manager.add_email(USER, "me@example.com", recovery_email_id=foreign)
        assert result.error == "not_found"


class TestActivity:

    def test_mutations_are_recorded(self, manager, open_port, seed):
        group_id = seed.group(USER, "Work")
        seed.account(USER, "GitHub", group_id=group_id)
        entries = manager.get_activity(USER, open_port)
        assert [e["details"] for e in entries] == [
            "Create New Account GitHub",
            "Create New Group: Work",
        ]
        assert entries[0]["entity"] == "Account"

    def test_activity_is_per_user(self, manager, open_port, seed):
        seed.group(OTHER)
        assert manager.get_activity(USER, open_port) == []

    def test_failed_mutation_recorded(self, manager, open_port, seed):
        foreign = seed.group(OTHER)
        manager.rename_group(USER, foreign, "Mine")
        assert manager.get_activity(USER, open_port)[0]["details"] == "Failed Update Group"


class TestStoreFailuresOnReads:

    @pytest.fixture
    def broken_store(self, manager, monkeypatch):
        def broken(*args, **kwargs):
            raise StoreError(retryable=True)

        monkeypatch.setattr(manager.store, "get", broken)
        monkeypatch.setattr(manager.store, "find", broken)
        monkeypatch.setattr(manager.store, "transaction", broken)

    def test_reveal_returns_generic_result(self, manager, open_port, broken_store):
        result = manager.reveal_password(USER, open_port, "some-id")
        assert not result.success
        assert result.error == "store"
        assert result.message == "Failed Reveal Password"
        assert result.data == {"password": ""}

    def test_listing_fails_closed(self, manager, open_port, broken_store):
        with pytest.raises(StoreError):
            manager.list_accounts(USER, open_port, AccountFilter())
        with pytest.raises(StoreError):
            manager.get_activity(USER, open_port)
