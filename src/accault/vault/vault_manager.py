# Vault Manager - accounts, groups and email identities
#
# Wires the store, cipher, PIN guard, session gate, query engine and bulk
# coordinator together and exposes the operations the API layer calls.
#
# Conventions:
# - every read that exposes account/email contents goes through
#   SessionLockGate.run(); a locked session gets an empty result
# - a store failure during a listing read raises StoreError, never an
#   empty page; the API app turns it into a 503 ``store`` result
# - every write (and reveal_password) returns an ActionResult and never
#   raises past this class
# - every statement carries the owning user's id

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..config import VaultConfig
from ..core.audit_log import ActivityAction, EventSeverity, EventType
from ..core.errors import (
    ActionResult,
    DecryptionError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
    ValidationError,
    action_boundary,
    store_failure,
)
from .activity import ActivityLog
from .bulk import DASHBOARD_VIEW, BulkMutationCoordinator, Invalidate, group_view
from .encryption import EncryptionService
from .pin_guard import PinGuard, utcnow
from .query_engine import AccountFilter, Page, QueryEngine, ScopeType, SortOrder
from .session_lock import SessionLockGate, SessionLockPort
from .store import Eq, NotNull, VaultStore


@dataclass
class AccountInput:
    """Form fields for creating or updating an account.

    ``no_password`` / ``no_email`` win over a supplied password / email.
    """

    platform: str = ""
    username: str = ""
    password: Optional[str] = None
    no_password: bool = False
    email_id: Optional[str] = None
    no_email: bool = False
    group_id: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    website: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    icon_deleted: bool = False

    def __post_init__(self):
        self.platform = (self.platform or "").strip()
        self.username = (self.username or "").strip()
        self.categories = [c.strip() for c in (self.categories or []) if c and c.strip()]


def public_account(row: Dict[str, Any]) -> Dict[str, Any]:
    """Projection sent to clients: no ciphertext, no internal sequence."""
    view = {k: v for k, v in row.items() if k not in ("encrypted_password", "seq", "user_id")}
    view["has_password"] = row.get("encrypted_password") is not None
    return view


def public_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k not in ("seq", "user_id")}


class VaultManager:
    """
    Manages a multi-user credential vault.

    Security:
    - Passwords and PINs encrypted with AES-256-GCM (process-wide key)
    - Passwords decrypted only on explicit reveal/export
    - Reads suppressed while the session is PIN-locked
    - Activity + audit logging for all mutations
    """

    def __init__(
        self,
        store: VaultStore,
        cipher: EncryptionService,
        clock: Callable[[], datetime] = utcnow,
        accounts_per_page: int = 12,
        groups_per_page: int = 8,
        emails_per_page: int = 10,
        invalidate: Optional[Invalidate] = None,
    ):
        self.store = store
        self.cipher = cipher
        self.clock = clock
        self.invalidate = invalidate or (lambda views: None)

        self.activity = ActivityLog(store, clock)
        self.pin_guard = PinGuard(store, cipher, clock)
        self.gate = SessionLockGate(self.pin_guard)
        self.queries = QueryEngine(store, accounts_per_page, groups_per_page, emails_per_page)
        self.bulk = BulkMutationCoordinator(store, self.activity, self.invalidate, clock)
        self.logger = self.activity.audit

    @classmethod
    def from_config(cls, config: VaultConfig, **kwargs) -> "VaultManager":
        return cls(
            store=VaultStore(config.db_path, timeout=config.db_timeout),
            cipher=EncryptionService(config.encryption_key),
            accounts_per_page=config.accounts_per_page,
            groups_per_page=config.groups_per_page,
            emails_per_page=config.emails_per_page,
            **kwargs,
        )

    def timestamp(self) -> str:
        return self.clock().isoformat()

    def _require_owned(self, tx, table: str, entity_id: Optional[str], user_id: str, label: str):
        row = tx.get(table, [Eq("id", entity_id), Eq("user_id", user_id)]) if entity_id else None
        if row is None:
            raise NotFoundError(f"{label} Not Found")
        return row

    def _record_failure(self, user_id, action, entity, details, event_type):
        if user_id:
            self.activity.record(user_id, action, entity, details, event_type, failed=True)

    # ── Accounts: writes ─────────────────────────────────────────────

    @action_boundary("Account Add Failed!")
    def add_account(self, user_id: Optional[str], data: AccountInput) -> ActionResult:
        """
        Create an account.

        Validation:
        - platform and username required
        - at least one category
        - password required unless ``no_password``
        - email identity required unless ``no_email``
        """
        if not user_id:
            raise UnauthorizedError()
        if not data.platform or not data.username:
            raise ValidationError("Platform & Username are required")
        if not data.categories:
            raise ValidationError("Select at least 1 category")

        encrypted_password = None
        if not data.no_password:
            if not data.password:
                raise ValidationError("Password is required")
            encrypted_password = self.cipher.encrypt(data.password)

        email_id = None
        if not data.no_email:
            if not data.email_id:
                raise ValidationError("Email is required")
            email_id = data.email_id

        account_id = str(uuid.uuid4())
        now = self.timestamp()
        try:
            with self.store.transaction() as tx:
                if email_id:
                    self._require_owned(tx, "email_identities", email_id, user_id, "Email")
                if data.group_id:
                    self._require_owned(tx, "account_groups", data.group_id, user_id, "Group")
                tx.insert(
                    "accounts",
                    {
                        "id": account_id,
                        "user_id": user_id,
                        "platform_name": data.platform,
                        "username": data.username,
                        "encrypted_password": encrypted_password,
                        "categories": data.categories,
                        "email_id": email_id,
                        "group_id": data.group_id or None,
                        "website": data.website or None,
                        "description": data.description or None,
                        "icon": data.icon or None,
                        "created_at": now,
                        "updated_at": now,
                    },
                )
        except Exception:
            self._record_failure(user_id, ActivityAction.CREATE, "Account",
                                 "Failed Create Account", EventType.ACCOUNT_CREATED)
            raise

        self.invalidate([DASHBOARD_VIEW])
        self.activity.record(user_id, ActivityAction.CREATE, "Account",
                             f"Create New Account {data.platform}", EventType.ACCOUNT_CREATED)
        return ActionResult.ok("Account Add Success!", data={"id": account_id})

    @action_boundary("Account Update Failed!")
    def update_account(
        self, user_id: Optional[str], account_id: str, data: AccountInput
    ) -> ActionResult:
        """
        Replace the account's editable fields.

        - password: cleared by ``no_password``, replaced by a non-blank
          value, otherwise left unchanged
        - email: cleared by ``no_email``, otherwise required
        - icon: replaced when given, cleared by ``icon_deleted``
        - group: set to ``group_id`` (None ungroups)
        """
        if not user_id:
            raise UnauthorizedError()
        if not data.platform or not data.username:
            raise ValidationError("Platform Name & Username are Required")
        if not data.categories:
            raise ValidationError("Select at least 1 category")

        values: Dict[str, Any] = {
            "platform_name": data.platform,
            "username": data.username,
            "categories": data.categories,
            "group_id": data.group_id or None,
            "website": data.website or None,
            "description": data.description or None,
            "updated_at": self.timestamp(),
        }
        if data.no_password:
            values["encrypted_password"] = None
        elif data.password and data.password.strip():
            values["encrypted_password"] = self.cipher.encrypt(data.password)

        if data.no_email:
            values["email_id"] = None
        elif not data.email_id:
            raise ValidationError("Email is Required")
        else:
            values["email_id"] = data.email_id

        if data.icon:
            values["icon"] = data.icon
        elif data.icon_deleted:
            values["icon"] = None

        try:
            with self.store.transaction() as tx:
                if values["email_id"]:
                    self._require_owned(tx, "email_identities", values["email_id"], user_id, "Email")
                if values["group_id"]:
                    self._require_owned(tx, "account_groups", values["group_id"], user_id, "Group")
                updated = tx.update_where(
                    "accounts", [Eq("id", account_id), Eq("user_id", user_id)], values
                )
                if not updated:
                    raise NotFoundError("Account Not Found")
        except Exception:
            self._record_failure(user_id, ActivityAction.UPDATE, "Account",
                                 "Failed Update Account", EventType.ACCOUNT_UPDATED)
            raise

        redirect_path = group_view(values["group_id"]) if values["group_id"] else DASHBOARD_VIEW
        self.invalidate([DASHBOARD_VIEW, f"/dashboard/account/{account_id}"])
        self.activity.record(user_id, ActivityAction.UPDATE, "Account",
                             f"Update {data.platform}", EventType.ACCOUNT_UPDATED)
        return ActionResult.ok("Account Update Success!", data={"redirect_path": redirect_path})

    @action_boundary("Account Delete Failed!")
    def delete_account(self, user_id: Optional[str], account_id: str) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        try:
            with self.store.transaction() as tx:
                account = self._require_owned(tx, "accounts", account_id, user_id, "Account")
                tx.delete_where("accounts", [Eq("id", account_id), Eq("user_id", user_id)])
        except Exception:
            self._record_failure(user_id, ActivityAction.DELETE, "Account",
                                 "Failed Delete Account", EventType.ACCOUNT_DELETED)
            raise

        self.invalidate([DASHBOARD_VIEW])
        self.activity.record(user_id, ActivityAction.DELETE, "Account",
                             f"Delete {account['platform_name']}", EventType.ACCOUNT_DELETED)
        return ActionResult.ok("Account Deleted")

    @action_boundary("Failed Move Account to Group")
    def move_account_to_group(
        self, user_id: Optional[str], account_id: str, group_id: str
    ) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        with self.store.transaction() as tx:
            account = self._require_owned(tx, "accounts", account_id, user_id, "Account")
            group = self._require_owned(tx, "account_groups", group_id, user_id, "Group")
            tx.update_where(
                "accounts",
                [Eq("id", account_id), Eq("user_id", user_id)],
                {"group_id": group_id, "updated_at": self.timestamp()},
            )

        self.invalidate([DASHBOARD_VIEW, group_view(group_id)])
        self.activity.record(user_id, ActivityAction.UPDATE, "Account",
                             f"Move {account['platform_name']} to {group['name']}",
                             EventType.ACCOUNT_UPDATED)
        return ActionResult.ok(f"Account Successfully Moved to {group['name']}")

    @action_boundary("Failed Eject Account")
    def remove_account_from_group(self, user_id: Optional[str], account_id: str) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        with self.store.transaction() as tx:
            account = self._require_owned(tx, "accounts", account_id, user_id, "Account")
            if not account["group_id"]:
                raise ValidationError("Account is not inside of group")
            tx.update_where(
                "accounts",
                [Eq("id", account_id), Eq("user_id", user_id)],
                {"group_id": None, "updated_at": self.timestamp()},
            )

        self.invalidate([DASHBOARD_VIEW, group_view(account["group_id"]),
                         f"/dashboard/account/{account_id}"])
        self.activity.record(user_id, ActivityAction.UPDATE, "Account",
                             f"Remove {account['platform_name']} from group",
                             EventType.ACCOUNT_UPDATED)
        return ActionResult.ok("Account Ejected From Group")

    # ── Accounts: reads (gated) ──────────────────────────────────────

    def list_accounts(
        self, user_id: Optional[str], port: SessionLockPort, flt: AccountFilter
    ) -> Page:
        """Filtered, paginated accounts; locked sessions see an empty page."""
        return self.gate.run(
            user_id, port, lambda: self.queries.list_accounts(user_id, flt), Page.empty
        )

    def account_ids(
        self, user_id: Optional[str], port: SessionLockPort, flt: AccountFilter
    ) -> List[str]:
        """Ids for "select all matching filter"."""
        return self.gate.run(
            user_id, port, lambda: self.queries.account_ids(user_id, flt), list
        )

    def get_account(
        self, user_id: Optional[str], port: SessionLockPort, account_id: str
    ) -> Optional[Dict[str, Any]]:
        def fetch():
            row = self.store.get("accounts", [Eq("id", account_id), Eq("user_id", user_id)])
            if row is None:
                return None
            return self.queries.attach_summaries(user_id, [row])[0]

        return self.gate.run(user_id, port, fetch, lambda: None)

    def reveal_password(
        self, user_id: Optional[str], port: SessionLockPort, account_id: str
    ) -> ActionResult:
        """
        Decrypt one account's password on demand.

        A corrupt ciphertext yields ``success=False`` with an empty
        password rather than an error.
        """
        empty = {"password": ""}
        if not user_id:
            return ActionResult.fail(UnauthorizedError(), data=empty)
        try:
            if not self.gate.allows_data(user_id, port):
                return ActionResult(
                    success=False, message="Vault is locked", data=empty, error="locked"
                )
            account = self.store.get(
                "accounts",
                [Eq("id", account_id), Eq("user_id", user_id), NotNull("encrypted_password")],
            )
        except StoreError as exc:
            return store_failure("reveal_password", "Failed Reveal Password", exc, data=empty)
        if account is None:
            return ActionResult.fail(NotFoundError("Password Not Found"), data=empty)

        try:
            password = self.cipher.decrypt(account["encrypted_password"])
        except DecryptionError as exc:
            self.logger.log_event(
                event_type=EventType.DECRYPT_FAILED,
                severity=EventSeverity.ALERT,
                message=f"Password decrypt failed: {account['platform_name']}",
                user_id=user_id,
                details={"account_id": account_id},
            )
            return ActionResult.fail(exc, data=empty)

        self.logger.log_event(
            event_type=EventType.ACCOUNT_PASSWORD_REVEALED,
            severity=EventSeverity.INFO,
            message=f"Password revealed: {account['platform_name']}",
            user_id=user_id,
            details={"account_id": account_id},
        )
        return ActionResult.ok(data={"password": password})

    # ── Groups ───────────────────────────────────────────────────────

    @action_boundary("Failed Create Group")
    def add_group(self, user_id: Optional[str], name: str) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group Name Required")

        group_id = str(uuid.uuid4())
        try:
            self.store.insert(
                "account_groups",
                {"id": group_id, "user_id": user_id, "name": name, "created_at": self.timestamp()},
            )
        except Exception:
            self._record_failure(user_id, ActivityAction.CREATE, "Group",
                                 "Failed Create Group", EventType.GROUP_CREATED)
            raise

        self.invalidate([DASHBOARD_VIEW])
        self.activity.record(user_id, ActivityAction.CREATE, "Group",
                             f"Create New Group: {name}", EventType.GROUP_CREATED)
        return ActionResult.ok("Group Created Successfully!", data={"id": group_id})

    @action_boundary("Failed Update Group")
    def rename_group(self, user_id: Optional[str], group_id: str, name: str) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group Name Required")

        try:
            with self.store.transaction() as tx:
                group = self._require_owned(tx, "account_groups", group_id, user_id, "Group")
                tx.update_where(
                    "account_groups", [Eq("id", group_id), Eq("user_id", user_id)], {"name": name}
                )
        except Exception:
            self._record_failure(user_id, ActivityAction.UPDATE, "Group",
                                 "Failed Update Group", EventType.GROUP_RENAMED)
            raise

        self.invalidate([DASHBOARD_VIEW, group_view(group_id)])
        self.activity.record(user_id, ActivityAction.UPDATE, "Group",
                             f"Group Name Update From {group['name']} To {name}",
                             EventType.GROUP_RENAMED)
        return ActionResult.ok("Group Updated Successfully")

    @action_boundary("Failed Delete Group")
    def delete_group(self, user_id: Optional[str], group_id: str) -> ActionResult:
        """Eject every member account, then delete the group itself."""
        if not user_id:
            raise UnauthorizedError()
        try:
            with self.store.transaction(immediate=True) as tx:
                group = self._require_owned(tx, "account_groups", group_id, user_id, "Group")
                tx.update_where(
                    "accounts",
                    [Eq("group_id", group_id), Eq("user_id", user_id)],
                    {"group_id": None, "updated_at": self.timestamp()},
                )
                tx.delete_where("account_groups", [Eq("id", group_id), Eq("user_id", user_id)])
        except Exception:
            self._record_failure(user_id, ActivityAction.DELETE, "Group",
                                 "Failed Delete Group", EventType.GROUP_DELETED)
            raise

        self.invalidate([DASHBOARD_VIEW, group_view(group_id)])
        self.activity.record(user_id, ActivityAction.DELETE, "Group",
                             f"Delete Group {group['name']}", EventType.GROUP_DELETED)
        return ActionResult.ok("Group Deleted")

    def list_groups(
        self,
        user_id: Optional[str],
        port: SessionLockPort,
        query: str = "",
        sort: SortOrder = SortOrder.NEWEST,
        page: int = 1,
        scope: ScopeType = ScopeType.ALL,
    ) -> Page:
        return self.gate.run(
            user_id,
            port,
            lambda: self.queries.list_groups(user_id, query, sort, page, scope),
            Page.empty,
        )

    def group_ids(self, user_id: Optional[str], port: SessionLockPort, query: str = "") -> List[str]:
        return self.gate.run(user_id, port, lambda: self.queries.group_ids(user_id, query), list)

    def get_group_detail(
        self,
        user_id: Optional[str],
        port: SessionLockPort,
        group_id: str,
        query: str = "",
        page: int = 1,
    ) -> Optional[Dict[str, Any]]:
        """The group plus one page of its accounts, or None."""

        def fetch():
            group = self.store.get("account_groups", [Eq("id", group_id), Eq("user_id", user_id)])
            if group is None:
                return None
            accounts = self.queries.list_group_accounts(user_id, group_id, query, page)
            return {"group": group, "accounts": accounts.items, "metadata": accounts.metadata}

        return self.gate.run(user_id, port, fetch, lambda: None)

    def group_account_ids(
        self, user_id: Optional[str], port: SessionLockPort, group_id: str, query: str = ""
    ) -> List[str]:
        return self.gate.run(
            user_id, port, lambda: self.queries.group_account_ids(user_id, group_id, query), list
        )

    # ── Email identities ─────────────────────────────────────────────

    @action_boundary("Failed Create Email")
    def add_email(
        self,
        user_id: Optional[str],
        email: str,
        name: Optional[str] = None,
        phone_number: Optional[str] = None,
        is_verified: bool = False,
        is_2fa_enabled: bool = False,
        recovery_email_id: Optional[str] = None,
    ) -> ActionResult:
        if not user_id:
            raise UnauthorizedError()
        email = (email or "").strip()
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required")

        email_id = str(uuid.uuid4())
        with self.store.transaction() as tx:
            if recovery_email_id:
                self._require_owned(tx, "email_identities", recovery_email_id, user_id,
                                    "Recovery Email")
            tx.insert(
                "email_identities",
                {
                    "id": email_id,
                    "user_id": user_id,
                    "email": email,
                    "name": name or None,
                    "phone_number": phone_number or None,
                    "is_verified": int(bool(is_verified)),
                    "is_2fa_enabled": int(bool(is_2fa_enabled)),
                    "recovery_email_id": recovery_email_id or None,
                    "created_at": self.timestamp(),
                },
            )

        self.invalidate([DASHBOARD_VIEW])
        self.activity.record(user_id, ActivityAction.CREATE, "Email",
                             f"Create New Email {email}", EventType.EMAIL_CREATED)
        return ActionResult.ok("Email Add Success!", data={"id": email_id})

    def list_emails(self, user_id: Optional[str], port: SessionLockPort, page: int = 1) -> Page:
        return self.gate.run(
            user_id, port, lambda: self.queries.list_emails(user_id, page), Page.empty
        )

    # ── Activity ─────────────────────────────────────────────────────

    def get_activity(
        self, user_id: Optional[str], port: SessionLockPort, limit: int = 50
    ) -> List[Dict[str, Any]]:
        return self.gate.run(user_id, port, lambda: self.activity.recent(user_id, limit), list)
