# Vault - Import / Export
#
# Pure data shaping over rows already fetched from the store. File formats
# (CSV, XLSX, JSON) are the client's business; this module only produces
# and consumes lists of flat dictionaries.

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..core.audit_log import ActivityAction, EventSeverity, EventType
from ..core.errors import (
    ActionResult,
    DecryptionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    action_boundary,
)
from .bulk import DASHBOARD_VIEW, group_view
from .session_lock import SessionLockPort
from .store import Eq, OrderBy
from .vault_manager import VaultManager

DEFAULT_IMPORT_CATEGORY = "Imported"


class ExportScope(str, Enum):
    ALL = "all"
    GROUP = "group"
    SINGLE = "single"
    EMAILS = "emails"


@dataclass
class ImportRow:
    platform_name: str = ""
    username: str = ""
    password: Optional[str] = None
    email: Optional[str] = None
    group: Optional[str] = None
    categories: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ImportRow":
        """Accept both camelCase (export format) and snake_case keys."""

        def pick(*keys):
            for key in keys:
                value = raw.get(key)
                if value is not None and str(value).strip() != "":
                    return str(value).strip()
            return None

        return cls(
            platform_name=pick("platformName", "platform_name", "platform") or "",
            username=pick("username") or "",
            password=pick("password"),
            email=pick("email"),
            group=pick("group"),
            categories=pick("categories"),
            website=pick("website"),
            description=pick("description"),
        )


def _yes_no(flag) -> str:
    return "Yes" if flag else "No"


def split_categories(raw: Optional[str]) -> List[str]:
    if not raw:
        return [DEFAULT_IMPORT_CATEGORY]
    parts = [c.strip() for c in raw.split(",") if c.strip()]
    return parts or [DEFAULT_IMPORT_CATEGORY]


class TransferService:
    """Builds export rows and applies imports for one vault."""

    def __init__(self, manager: VaultManager):
        self.manager = manager
        self.store = manager.store
        self.cipher = manager.cipher
        self.activity = manager.activity

    def _decrypt_or_blank(self, account: Mapping[str, Any]) -> Optional[str]:
        if account.get("encrypted_password") is None:
            return None
        try:
            return self.cipher.decrypt(account["encrypted_password"])
        except DecryptionError:
            self.manager.logger.log_event(
                event_type=EventType.DECRYPT_FAILED,
                severity=EventSeverity.ALERT,
                message=f"Password decrypt error during export: {account['platform_name']}",
                user_id=account.get("user_id"),
                details={"account_id": account.get("id")},
            )
            return ""

    def format_account(self, account: Mapping[str, Any]) -> Dict[str, Any]:
        """One export row. ``account`` must carry ``email``/``group`` summaries."""
        email = account.get("email") or {}
        group = account.get("group") or {}
        return {
            "platformName": account["platform_name"],
            "username": account["username"],
            "password": self._decrypt_or_blank(account),
            "email": email.get("email") or None,
            "group": group.get("name") or None,
            "categories": ", ".join(account.get("categories") or []),
            "website": account.get("website") or None,
            "description": account.get("description") or None,
        }

    @staticmethod
    def format_email(email: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "Name": email.get("name") or "-",
            "Email": email["email"],
            "Phone Number": email.get("phone_number") or "-",
            "2FA Enabled": _yes_no(email.get("is_2fa_enabled")),
            "Verified": _yes_no(email.get("is_verified")),
            "Recovery Email": email.get("recovery_email") or "-",
            "Total Accounts": email.get("account_count", 0),
        }

    @action_boundary("Failed Getting Export Data")
    def export_data(
        self,
        user_id: Optional[str],
        port: SessionLockPort,
        scope: ExportScope = ExportScope.ALL,
        entity_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Export accounts (``all``/``group``/``single``) or email identities.

        Rows are newest first. A password that cannot be decrypted is
        exported as an empty string; the remaining rows are unaffected.
        """
        if not user_id:
            raise UnauthorizedError()
        try:
            scope = ExportScope(scope)
        except ValueError:
            raise ValidationError("Unknown export scope") from None
        if not self.manager.gate.allows_data(user_id, port):
            return ActionResult(success=False, message="Vault is locked", error="locked", data=[])

        newest = [OrderBy("created_at", descending=True), OrderBy("seq")]
        queries = self.manager.queries

        if scope == ExportScope.EMAILS:
            emails = self.store.find("email_identities", [Eq("user_id", user_id)], newest)
            rows = [self.format_email(e) for e in queries.attach_email_summaries(user_id, emails)]
            self.activity.record(user_id, ActivityAction.CREATE, "Email",
                                 f"Exported {len(rows)} Emails", EventType.EXPORT)
            return ActionResult.ok(data=rows)

        predicates = [Eq("user_id", user_id)]
        if scope in (ExportScope.GROUP, ExportScope.SINGLE):
            if not entity_id:
                raise ValidationError("An id is required for this export scope")
            predicates.append(Eq("group_id" if scope == ExportScope.GROUP else "id", entity_id))

        accounts = self.store.find("accounts", predicates, newest)
        rows = [self.format_account(a) for a in queries.attach_summaries(user_id, accounts)]
        self.activity.record(user_id, ActivityAction.CREATE, "Account",
                             "Exported Accounts", EventType.EXPORT)
        return ActionResult.ok(data=rows)

    @action_boundary("Failed Import Account")
    def import_accounts(
        self,
        user_id: Optional[str],
        rows: Iterable[Mapping[str, Any]],
        target_group_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Create accounts from import rows in one transaction.

        - rows without platform or username are counted as failed
        - the group is ``target_group_id`` if given, else found by name
          or created
        - an email is linked only if the user already has that identity
        """
        if not user_id:
            raise UnauthorizedError()

        success_count = fail_count = 0
        now = self.manager.timestamp()
        try:
            with self.store.transaction(immediate=True) as tx:
                if target_group_id:
                    owned = tx.get(
                        "account_groups", [Eq("id", target_group_id), Eq("user_id", user_id)]
                    )
                    if owned is None:
                        raise NotFoundError("Group Not Found")

                group_cache: Dict[str, str] = {}
                for raw in rows:
                    row = ImportRow.from_mapping(raw)
                    if not row.platform_name or not row.username:
                        fail_count += 1
                        continue

                    group_id = target_group_id
                    if not group_id and row.group:
                        group_id = group_cache.get(row.group)
                        if group_id is None:
                            existing = tx.get(
                                "account_groups", [Eq("name", row.group), Eq("user_id", user_id)]
                            )
                            if existing:
                                group_id = existing["id"]
                            else:
                                group_id = str(uuid.uuid4())
                                tx.insert(
                                    "account_groups",
                                    {"id": group_id, "user_id": user_id,
                                     "name": row.group, "created_at": now},
                                )
                            group_cache[row.group] = group_id

                    email_id = None
                    if row.email:
                        identity = tx.get(
                            "email_identities", [Eq("email", row.email), Eq("user_id", user_id)]
                        )
                        if identity:
                            email_id = identity["id"]

                    tx.insert(
                        "accounts",
                        {
                            "id": str(uuid.uuid4()),
                            "user_id": user_id,
                            "platform_name": row.platform_name,
                            "username": row.username,
                            "encrypted_password": (
                                self.cipher.encrypt(row.password) if row.password else None
                            ),
                            "categories": split_categories(row.categories),
                            "email_id": email_id,
                            "group_id": group_id,
                            "website": row.website,
                            "description": row.description,
                            "icon": None,
                            "created_at": now,
                            "updated_at": now,
                        },
                    )
                    success_count += 1
        except Exception:
            self.activity.record(user_id, ActivityAction.CREATE, "Account",
                                 "Failed Import Account", EventType.IMPORT, failed=True)
            raise

        views = [DASHBOARD_VIEW]
        if target_group_id:
            views.append(group_view(target_group_id))
        self.manager.invalidate(views)

        summary = f"{success_count} Success, {fail_count} Failed"
        self.activity.record(user_id, ActivityAction.CREATE, "Account",
                             f"Accounts Imported: {summary}", EventType.IMPORT)
        return ActionResult.ok(
            f"Import Done: {summary}",
            data={"imported": success_count, "failed": fail_count},
        )
