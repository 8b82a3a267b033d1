# Tests for bulk move / eject / delete across selected ids

import pytest

from accault.vault.store import Eq

USER = "user-a"
OTHER = "user-b"


def _account(store, account_id):
    return store.get("accounts", [Eq("id", account_id)])


@pytest.fixture
def vault(seed):
    group_a = seed.group(USER, "Alpha")
    group_b = seed.group(USER, "Beta")
    accounts = [seed.account(USER, f"Acc {i}") for i in range(3)]
    grouped = [seed.account(USER, f"In A {i}", group_id=group_a) for i in range(2)]
    foreign_group = seed.group(OTHER, "Theirs")
    foreign = seed.account(OTHER, "Theirs", group_id=foreign_group)
    return {
        "group_a": group_a,
        "group_b": group_b,
        "accounts": accounts,
        "grouped": grouped,
        "foreign_group": foreign_group,
        "foreign": foreign,
    }


class TestMoveToGroup:

    def test_moves_owned_accounts(self, manager, store, vault):
        result = manager.bulk.move_to_group(USER, vault["accounts"], vault["group_b"])
        assert result.success
        assert result.message == "3 Accounts Moved to Beta"
        assert result.data == {"affected": 3}
        for account_id in vault["accounts"]:
            assert _account(store, account_id)["group_id"] == vault["group_b"]

    def test_foreign_id_silently_excluded(self, manager, store, vault):
        ids = vault["accounts"][:2] + [vault["foreign"]]
        result = manager.bulk.move_to_group(USER, ids, vault["group_b"])
        assert result.success
        assert result.data == {"affected": 2}
        assert _account(store, vault["foreign"])["group_id"] == vault["foreign_group"]

    def test_foreign_target_group_not_found(self, manager, store, vault):
        result = manager.bulk.move_to_group(USER, vault["accounts"], vault["foreign_group"])
        assert not result.success
        assert result.error == "not_found"
        assert result.message == "Group Destination Not Found"
        assert all(_account(store, a)["group_id"] is None for a in vault["accounts"])

    def test_empty_selection(self, manager, vault):
        result = manager.bulk.move_to_group(USER, [], vault["group_b"])
        assert not result.success
        assert result.error == "validation"

    def test_requires_user(self, manager, vault):
        result = manager.bulk.move_to_group(None, vault["accounts"], vault["group_b"])
        assert result.error == "unauthorized"

    def test_invalidates_views(self, manager, vault, invalidated):
        invalidated.clear()
        manager.bulk.move_to_group(USER, vault["accounts"], vault["group_b"])
        assert invalidated == [["/dashboard", f"/dashboard/group/{vault['group_b']}"]]

    def test_records_activity(self, manager, store, vault):
        manager.bulk.move_to_group(USER, vault["accounts"], vault["group_b"])
        latest = manager.activity.recent(USER, limit=1)[0]
        assert latest["details"] == "Move 3 Accounts to Beta"
        assert latest["action"] == "UPDATE"


class TestEject:

    def test_ejects_only_grouped(self, manager, store, vault):
        ids = vault["grouped"] + vault["accounts"][:1]
        result = manager.bulk.eject_from_group(USER, ids)
        assert result.success
        assert result.data == {"affected": 2}
        assert all(_account(store, a)["group_id"] is None for a in vault["grouped"])

    def test_foreign_untouched(self, manager, store, vault):
        result = manager.bulk.eject_from_group(USER, [vault["foreign"]])
        assert result.success
        assert result.data == {"affected": 0}
        assert _account(store, vault["foreign"])["group_id"] == vault["foreign_group"]

    def test_invalidates_source_groups(self, manager, vault, invalidated):
        invalidated.clear()
        manager.bulk.eject_from_group(USER, vault["grouped"])
        assert invalidated == [["/dashboard", f"/dashboard/group/{vault['group_a']}"]]


class TestDeleteAccounts:

    def test_deletes_owned(self, manager, store, vault):
        result = manager.bulk.delete_accounts(USER, vault["accounts"] + [vault["foreign"]])
        assert result.success
        assert result.message == "3 Accounts Successfully Deleted"
        assert all(_account(store, a) is None for a in vault["accounts"])
        assert _account(store, vault["foreign"]) is not None

    def test_duplicate_ids_counted_once(self, manager, vault):
        account_id = vault["accounts"][0]
        result = manager.bulk.delete_accounts(USER, [account_id, account_id])
        assert result.data == {"affected": 1}


class TestDeleteGroups:

    def test_cascade_safety(self, manager, store, vault):
        result = manager.bulk.delete_groups(USER, [vault["group_a"]])
        assert result.success
        assert result.data == {"affected": 1, "ejected_accounts": 2}
        for account_id in vault["grouped"]:
            account = _account(store, account_id)
            assert account is not None
            assert account["group_id"] is None
        assert store.get("account_groups", [Eq("id", vault["group_a"])]) is None

    def test_foreign_group_untouched(self, manager, store, vault):
        result = manager.bulk.delete_groups(USER, [vault["group_b"], vault["foreign_group"]])
        assert result.data["affected"] == 1
        assert store.get("account_groups", [Eq("id", vault["foreign_group"])]) is not None
        assert _account(store, vault["foreign"])["group_id"] == vault["foreign_group"]

    def test_store_failure_returns_generic_result(self, manager, vault, monkeypatch):
        from accault.core.errors import StoreError

        def broken(*args, **kwargs):
            raise StoreError(retryable=True)

        monkeypatch.setattr(manager.store, "transaction", broken)
        result = manager.bulk.delete_groups(USER, [vault["group_a"]])
        assert not result.success
        assert result.error == "store"
        assert result.message == "Failed Delete Groups"
