# Vault Query Engine - filter / sort / paginate
#
# Turns a dashboard filter into predicates (always scoped to one user),
# then runs either a paginated listing or an ids-only variant. Both
# variants are built from the same predicate list, which is also what
# refine() evaluates in memory, so the three can never disagree.

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .store import (
    AnyOf,
    ContainsText,
    Eq,
    HasSome,
    IsNull,
    NotNull,
    OrderBy,
    Predicate,
    VaultStore,
    matches_all,
    sort_rows,
)


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    AZ = "az"
    ZA = "za"


class GroupStatus(str, Enum):
    ALL = "all"
    INSIDE = "inside"
    OUTSIDE = "outside"


class Presence(str, Enum):
    ALL = "all"
    YES = "yes"
    NO = "no"


class ScopeType(str, Enum):
    ALL = "all"
    ACCOUNT = "account"
    GROUP = "group"


def _coerce(enum_cls, value, default):
    """Unknown or empty values fall back to the default option."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return default


@dataclass
class AccountFilter:
    """Dashboard filter. Unknown option strings fall back to the defaults."""

    query: str = ""
    page: int = 1
    sort: SortOrder = SortOrder.NEWEST
    group_status: GroupStatus = GroupStatus.ALL
    categories: List[str] = field(default_factory=list)
    has_email: Presence = Presence.ALL
    has_password: Presence = Presence.ALL
    scope: ScopeType = ScopeType.ALL

    def __post_init__(self):
        self.query = (self.query or "").strip()
        self.sort = _coerce(SortOrder, self.sort, SortOrder.NEWEST)
        self.group_status = _coerce(GroupStatus, self.group_status, GroupStatus.ALL)
        self.has_email = _coerce(Presence, self.has_email, Presence.ALL)
        self.has_password = _coerce(Presence, self.has_password, Presence.ALL)
        self.scope = _coerce(ScopeType, self.scope, ScopeType.ALL)
        self.categories = [c for c in (self.categories or []) if c]


@dataclass
class PageMetadata:
    total_count: int = 0
    total_pages: int = 1
    current_page: int = 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalCount": self.total_count,
            "totalPages": self.total_pages,
            "currentPage": self.current_page,
        }


@dataclass
class Page:
    items: List[Dict[str, Any]] = field(default_factory=list)
    metadata: PageMetadata = field(default_factory=PageMetadata)

    @classmethod
    def empty(cls, current_page: int = 1) -> "Page":
        return cls(items=[], metadata=PageMetadata(current_page=current_page))


def total_pages(total_count: int, page_size: int) -> int:
    """ceil(total / size), never less than 1."""
    return max(1, math.ceil(total_count / page_size))


# ── Predicate builders ───────────────────────────────────────────────

TEXT_FIELDS = ("platform_name", "username")


def account_predicates(user_id: str, flt: AccountFilter) -> Optional[List[Predicate]]:
    """
    Build the AND-ed predicate list for an account filter.

    Returns None when the filter can never match (scope "group"), so
    callers skip the query entirely.
    """
    if flt.scope == ScopeType.GROUP:
        return None

    predicates: List[Predicate] = [Eq("user_id", user_id)]

    if flt.query:
        predicates.append(ContainsText(TEXT_FIELDS, flt.query))

    if flt.group_status == GroupStatus.INSIDE:
        predicates.append(NotNull("group_id"))
    elif flt.group_status == GroupStatus.OUTSIDE:
        predicates.append(IsNull("group_id"))
    elif not flt.query and flt.scope != ScopeType.ACCOUNT:
        # Grouped accounts surface through their group card instead.
        predicates.append(IsNull("group_id"))

    if flt.categories:
        predicates.append(HasSome("categories", flt.categories))

    if flt.has_email == Presence.YES:
        predicates.append(NotNull("email_id"))
    elif flt.has_email == Presence.NO:
        predicates.append(IsNull("email_id"))

    if flt.has_password == Presence.YES:
        predicates.append(NotNull("encrypted_password"))
    elif flt.has_password == Presence.NO:
        predicates.append(IsNull("encrypted_password"))

    return predicates


def group_account_predicates(user_id: str, group_id: str, query: str = "") -> List[Predicate]:
    """Accounts inside one group, optionally narrowed by text search."""
    predicates: List[Predicate] = [Eq("user_id", user_id), Eq("group_id", group_id)]
    if query and query.strip():
        predicates.append(ContainsText(TEXT_FIELDS, query.strip()))
    return predicates


def ordering(sort: SortOrder, name_field: str) -> List[OrderBy]:
    """Sort keys; ``seq`` (insertion order) breaks ties."""
    if sort == SortOrder.OLDEST:
        primary = OrderBy("created_at")
    elif sort == SortOrder.AZ:
        primary = OrderBy(name_field, locale=True)
    elif sort == SortOrder.ZA:
        primary = OrderBy(name_field, descending=True, locale=True)
    else:
        primary = OrderBy("created_at", descending=True)
    return [primary, OrderBy("seq")]


def refine(
    rows: Iterable[Mapping[str, Any]], user_id: str, flt: AccountFilter
) -> List[Mapping[str, Any]]:
    """
    Apply a filter to rows already held in memory (e.g. a cached page),
    using the very same predicates and ordering as the database query.
    """
    predicates = account_predicates(user_id, flt)
    if predicates is None:
        return []
    kept = [row for row in rows if matches_all(row, predicates)]
    return sort_rows(kept, ordering(flt.sort, "platform_name"))


# ── Engine ───────────────────────────────────────────────────────────


class QueryEngine:
    """
    Executes filtered, paginated reads against the vault store.

    The engine does not check the session lock; callers reach it only
    through SessionLockGate.
    """

    def __init__(
        self,
        store: VaultStore,
        accounts_per_page: int = 12,
        groups_per_page: int = 8,
        emails_per_page: int = 10,
    ):
        self.store = store
        self.accounts_per_page = accounts_per_page
        self.groups_per_page = groups_per_page
        self.emails_per_page = emails_per_page

    def _paginate(
        self,
        table: str,
        predicates: Sequence[Predicate],
        order: Sequence[OrderBy],
        page: int,
        page_size: int,
    ) -> Page:
        with self.store.transaction() as tx:
            total = tx.count(table, predicates)
            # out-of-range pages never reach the OFFSET binding
            if page < 1 or (page - 1) * page_size >= total:
                rows = []
            else:
                rows = tx.find(
                    table, predicates, order, limit=page_size, offset=(page - 1) * page_size
                )
        return Page(
            items=rows,
            metadata=PageMetadata(
                total_count=total,
                total_pages=total_pages(total, page_size),
                current_page=page,
            ),
        )

    # Accounts

    def list_accounts(self, user_id: str, flt: AccountFilter) -> Page:
        predicates = account_predicates(user_id, flt)
        if predicates is None:
            return Page.empty(current_page=flt.page)
        page = self._paginate(
            "accounts",
            predicates,
            ordering(flt.sort, "platform_name"),
            flt.page,
            self.accounts_per_page,
        )
        page.items = self.attach_summaries(user_id, page.items)
        return page

    def account_ids(self, user_id: str, flt: AccountFilter) -> List[str]:
        """Every id matching ``flt`` across all pages, in listing order."""
        predicates = account_predicates(user_id, flt)
        if predicates is None:
            return []
        rows = self.store.find(
            "accounts", predicates, ordering(flt.sort, "platform_name"), columns=("id",)
        )
        return [row["id"] for row in rows]

    def list_group_accounts(
        self, user_id: str, group_id: str, query: str = "", page: int = 1
    ) -> Page:
        result = self._paginate(
            "accounts",
            group_account_predicates(user_id, group_id, query),
            ordering(SortOrder.NEWEST, "platform_name"),
            page,
            self.accounts_per_page,
        )
        result.items = self.attach_summaries(user_id, result.items)
        return result

    def group_account_ids(self, user_id: str, group_id: str, query: str = "") -> List[str]:
        rows = self.store.find(
            "accounts",
            group_account_predicates(user_id, group_id, query),
            ordering(SortOrder.NEWEST, "platform_name"),
            columns=("id",),
        )
        return [row["id"] for row in rows]

    # Groups

    def list_groups(
        self,
        user_id: str,
        query: str = "",
        sort: SortOrder = SortOrder.NEWEST,
        page: int = 1,
        scope: ScopeType = ScopeType.ALL,
    ) -> Page:
        """Groups with derived ``account_count``; empty for scope "account"."""
        scope = _coerce(ScopeType, scope, ScopeType.ALL)
        if scope == ScopeType.ACCOUNT:
            return Page.empty(current_page=page)
        predicates: List[Predicate] = [Eq("user_id", user_id)]
        if query and query.strip():
            predicates.append(ContainsText(("name",), query.strip()))
        sort = _coerce(SortOrder, sort, SortOrder.NEWEST)
        result = self._paginate(
            "account_groups", predicates, ordering(sort, "name"), page, self.groups_per_page
        )
        result.items = self.attach_group_counts(user_id, result.items)
        return result

    def group_ids(self, user_id: str, query: str = "") -> List[str]:
        predicates: List[Predicate] = [Eq("user_id", user_id)]
        if query and query.strip():
            predicates.append(ContainsText(("name",), query.strip()))
        rows = self.store.find(
            "account_groups", predicates, ordering(SortOrder.NEWEST, "name"), columns=("id",)
        )
        return [row["id"] for row in rows]

    # Emails

    def list_emails(self, user_id: str, page: int = 1) -> Page:
        result = self._paginate(
            "email_identities",
            [Eq("user_id", user_id)],
            ordering(SortOrder.NEWEST, "email"),
            page,
            self.emails_per_page,
        )
        result.items = self.attach_email_summaries(user_id, result.items)
        return result

    # Read-model projections

    def attach_summaries(
        self, user_id: str, accounts: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Resolve email_id / group_id into ``email`` / ``group`` summaries."""
        email_ids = {a["email_id"] for a in accounts if a.get("email_id")}
        group_ids = {a["group_id"] for a in accounts if a.get("group_id")}
        emails, groups = {}, {}
        if email_ids:
            emails = {
                row["id"]: {"email": row["email"], "name": row["name"]}
                for row in self.store.find(
                    "email_identities",
                    [Eq("user_id", user_id), AnyOf("id", email_ids)],
                    columns=("id", "email", "name"),
                )
            }
        if group_ids:
            groups = {
                row["id"]: {"id": row["id"], "name": row["name"]}
                for row in self.store.find(
                    "account_groups",
                    [Eq("user_id", user_id), AnyOf("id", group_ids)],
                    columns=("id", "name"),
                )
            }
        for account in accounts:
            account["email"] = emails.get(account.get("email_id"))
            account["group"] = groups.get(account.get("group_id"))
        return accounts

    def attach_group_counts(
        self, user_id: str, groups: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        if not groups:
            return groups
        members = self.store.find(
            "accounts",
            [Eq("user_id", user_id), AnyOf("group_id", [g["id"] for g in groups])],
            columns=("group_id",),
        )
        counts: Dict[str, int] = {}
        for row in members:
            counts[row["group_id"]] = counts.get(row["group_id"], 0) + 1
        for group in groups:
            group["account_count"] = counts.get(group["id"], 0)
        return groups

    def attach_email_summaries(
        self, user_id: str, emails: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        if not emails:
            return emails
        ids = [e["id"] for e in emails]
        linked = self.store.find(
            "accounts", [Eq("user_id", user_id), AnyOf("email_id", ids)], columns=("email_id",)
        )
        counts: Dict[str, int] = {}
        for row in linked:
            counts[row["email_id"]] = counts.get(row["email_id"], 0) + 1

        recovery_ids = {e["recovery_email_id"] for e in emails if e.get("recovery_email_id")}
        recovery = {}
        if recovery_ids:
            recovery = {
                row["id"]: row["email"]
                for row in self.store.find(
                    "email_identities",
                    [Eq("user_id", user_id), AnyOf("id", recovery_ids)],
                    columns=("id", "email"),
                )
            }
        for email in emails:
            email["account_count"] = counts.get(email["id"], 0)
            email["recovery_email"] = recovery.get(email.get("recovery_email_id"))
        return emails
