# Vault - Bulk Mutations
#
# Move / eject / delete across a set of selected ids. Each operation is a
# single transaction whose WHERE clause always includes the caller's
# user id, so ids belonging to someone else are silently left out.

from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from ..core.audit_log import ActivityAction, EventType
from ..core.errors import (
    ActionResult,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    action_boundary,
)
from .activity import ActivityLog
from .store import AnyOf, Eq, NotNull, VaultStore

DASHBOARD_VIEW = "/dashboard"

Invalidate = Callable[[List[str]], None]


def group_view(group_id: str) -> str:
    return f"/dashboard/group/{group_id}"


def _clean_ids(ids: Optional[Iterable[str]]) -> List[str]:
    cleaned = [i for i in dict.fromkeys(ids or ()) if isinstance(i, str) and i]
    if not cleaned:
        raise ValidationError("No items selected")
    return cleaned


class BulkMutationCoordinator:
    """
    Applies batch writes scoped to one user.

    After every committed batch the ``invalidate`` hook receives the
    views whose cached listings are now stale.

    Args:
        store: Vault store
        activity: Activity recorder
        invalidate: Optional cache-invalidation hook
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: VaultStore,
        activity: ActivityLog,
        invalidate: Optional[Invalidate] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.activity = activity
        self.invalidate = invalidate or (lambda views: None)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _failed(self, user_id, action, entity, details, event_type):
        if user_id:
            self.activity.record(user_id, action, entity, details, event_type, failed=True)

    @action_boundary("Failed Move Accounts to Group")
    def move_to_group(
        self, user_id: Optional[str], account_ids: Iterable[str], group_id: str
    ) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        ids = _clean_ids(account_ids)
        try:
            with self.store.transaction(immediate=True) as tx:
                group = tx.get("account_groups", [Eq("id", group_id), Eq("user_id", user_id)])
                if group is None:
                    raise NotFoundError("Group Destination Not Found")
                moved = tx.update_where(
                    "accounts",
                    [AnyOf("id", ids), Eq("user_id", user_id)],
                    {"group_id": group_id, "updated_at": self.clock().isoformat()},
                )
        except Exception:
            self._failed(user_id, ActivityAction.UPDATE, "Account",
                         "Failed Move Accounts to Group", EventType.BULK_MOVE)
            raise

        self.invalidate([DASHBOARD_VIEW, group_view(group_id)])
        message = f"{moved} Accounts Moved to {group['name']}"
        self.activity.record(user_id, ActivityAction.UPDATE, "Account",
                             f"Move {moved} Accounts to {group['name']}", EventType.BULK_MOVE)
        return ActionResult.ok(message, data={"affected": moved})

    @action_boundary("Failed Remove Accounts From Their Group")
    def eject_from_group(self, user_id: Optional[str], account_ids: Iterable[str]) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        ids = _clean_ids(account_ids)
        try:
            with self.store.transaction(immediate=True) as tx:
                source_groups = {
                    row["group_id"]
                    for row in tx.find(
                        "accounts",
                        [AnyOf("id", ids), Eq("user_id", user_id), NotNull("group_id")],
                        columns=("group_id",),
                    )
                }
                ejected = tx.update_where(
                    "accounts",
                    [AnyOf("id", ids), Eq("user_id", user_id), NotNull("group_id")],
                    {"group_id": None, "updated_at": self.clock().isoformat()},
                )
        except Exception:
            self._failed(user_id, ActivityAction.UPDATE, "Account",
                         "Failed Remove Accounts From Their Group", EventType.BULK_EJECT)
            raise

        self.invalidate([DASHBOARD_VIEW] + [group_view(g) for g in sorted(source_groups)])
        self.activity.record(user_id, ActivityAction.UPDATE, "Account",
                             f"Remove {ejected} Accounts From Their Group", EventType.BULK_EJECT)
        return ActionResult.ok(
            f"{ejected} Accounts Ejected From Their Group", data={"affected": ejected}
        )

    @action_boundary("Failed Delete Accounts")
    def delete_accounts(self, user_id: Optional[str], account_ids: Iterable[str]) -> ActionResult:
        """Permanent delete; there is no undo."""
        if not user_id:
            raise UnauthorizedError()
        ids = _clean_ids(account_ids)
        try:
            deleted = self.store.delete_where(
                "accounts", [AnyOf("id", ids), Eq("user_id", user_id)]
            )
        except Exception:
            self._failed(user_id, ActivityAction.DELETE, "Account",
                         "Failed Delete Accounts", EventType.BULK_DELETE)
            raise

        self.invalidate([DASHBOARD_VIEW])
        self.activity.record(user_id, ActivityAction.DELETE, "Account",
                             f"Delete {deleted} Accounts", EventType.BULK_DELETE)
        return ActionResult.ok(f"{deleted} Accounts Successfully Deleted", data={"affected": deleted})

    @action_boundary("Failed Delete Groups")
    def delete_groups(self, user_id: Optional[str], group_ids: Iterable[str]) -> ActionResult:
        """
        Delete groups without touching their accounts.

        Members are ejected first (group_id -> NULL) in the same
        transaction, then the groups are removed.
        """
        if not user_id:
            raise UnauthorizedError()
        ids = _clean_ids(group_ids)
        try:
            with self.store.transaction(immediate=True) as tx:
                ejected = tx.update_where(
                    "accounts",
                    [AnyOf("group_id", ids), Eq("user_id", user_id)],
                    {"group_id": None, "updated_at": self.clock().isoformat()},
                )
                deleted = tx.delete_where(
                    "account_groups", [AnyOf("id", ids), Eq("user_id", user_id)]
                )
        except Exception:
            self._failed(user_id, ActivityAction.DELETE, "Group",
                         "Failed Delete Groups", EventType.BULK_DELETE)
            raise

        self.invalidate([DASHBOARD_VIEW] + [group_view(g) for g in ids])
        self.activity.record(user_id, ActivityAction.DELETE, "Group",
                             f"Delete {deleted} Groups", EventType.BULK_DELETE)
        return ActionResult.ok(
            f"{deleted} Groups Deleted", data={"affected": deleted, "ejected_accounts": ejected}
        )
