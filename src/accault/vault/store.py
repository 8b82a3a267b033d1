# Vault Store - SQLite persistence for accounts, groups, emails, users
#
# The rest of the vault talks to the database only through VaultStore:
# count / find / get / insert / update_where / delete_where, composed with
# predicate objects. Every predicate can render itself as SQL *and*
# evaluate itself against an in-memory row, so the server query and any
# client-side refinement share one definition of "matches".

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..core.db import DEFAULT_TIMEOUT, casefold, connect as db_connect, locale_key
from ..core.errors import StoreError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    security_pin TEXT,
    pin_attempts INTEGER NOT NULL DEFAULT 0 CHECK (pin_attempts >= 0),
    lockout_until TEXT,
    pin_generation INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS account_groups (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS email_identities (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    user_id TEXT NOT NULL,
    email TEXT NOT NULL,
    name TEXT,
    phone_number TEXT,
    is_verified INTEGER NOT NULL DEFAULT 0,
    is_2fa_enabled INTEGER NOT NULL DEFAULT 0,
    recovery_email_id TEXT REFERENCES email_identities (id) ON DELETE SET NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    user_id TEXT NOT NULL,
    platform_name TEXT NOT NULL,
    username TEXT NOT NULL,
    encrypted_password TEXT,
    categories TEXT NOT NULL DEFAULT '[]',
    email_id TEXT REFERENCES email_identities (id) ON DELETE SET NULL,
    group_id TEXT REFERENCES account_groups (id),
    website TEXT,
    description TEXT,
    icon TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS activity_logs (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    user_id TEXT NOT NULL,
    action TEXT NOT NULL,
    entity TEXT NOT NULL,
    details TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_accounts_user_id ON accounts (user_id);
CREATE INDEX IF NOT EXISTS idx_accounts_group_id ON accounts (group_id);
CREATE INDEX IF NOT EXISTS idx_groups_user_id ON account_groups (user_id);
CREATE INDEX IF NOT EXISTS idx_emails_user_id ON email_identities (user_id);
CREATE INDEX IF NOT EXISTS idx_activity_user_id ON activity_logs (user_id);
"""

# Column whitelist per table. Field names in predicates and orderings are
# checked against it before being interpolated into SQL.
TABLES: Dict[str, Tuple[str, ...]] = {
    "users": ("id", "security_pin", "pin_attempts", "lockout_until", "pin_generation"),
    "account_groups": ("seq", "id", "user_id", "name", "created_at"),
    "email_identities": (
        "seq", "id", "user_id", "email", "name", "phone_number",
        "is_verified", "is_2fa_enabled", "recovery_email_id", "created_at",
    ),
    "accounts": (
        "seq", "id", "user_id", "platform_name", "username", "encrypted_password",
        "categories", "email_id", "group_id", "website", "description", "icon",
        "created_at", "updated_at",
    ),
    "activity_logs": ("seq", "id", "user_id", "action", "entity", "details", "created_at"),
}

JSON_COLUMNS = {("accounts", "categories")}


def _check_column(table: str, column: str) -> str:
    if column not in TABLES[table]:
        raise ValueError(f"Unknown column {table}.{column}")
    return column


# ── Predicates ───────────────────────────────────────────────────────


class Predicate(ABC):
    """A filter condition usable in SQL and against a row mapping."""

    @abstractmethod
    def sql(self, table: str) -> Tuple[str, List[Any]]:
        """Render as a WHERE fragment plus its bound parameters."""

    @abstractmethod
    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate against an in-memory row."""


class Eq(Predicate):
    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value

    def sql(self, table):
        return f"{table}.{_check_column(table, self.field)} = ?", [self.value]

    def matches(self, row):
        return row.get(self.field) == self.value

    def __repr__(self):
        return f"Eq({self.field!r}, {self.value!r})"


class IsNull(Predicate):
    def __init__(self, field: str):
        self.field = field

    def sql(self, table):
        return f"{table}.{_check_column(table, self.field)} IS NULL", []

    def matches(self, row):
        return row.get(self.field) is None

    def __repr__(self):
        return f"IsNull({self.field!r})"


class NotNull(Predicate):
    def __init__(self, field: str):
        self.field = field

    def sql(self, table):
        return f"{table}.{_check_column(table, self.field)} IS NOT NULL", []

    def matches(self, row):
        return row.get(self.field) is not None

    def __repr__(self):
        return f"NotNull({self.field!r})"


class AnyOf(Predicate):
    """Scalar column value is one of ``values`` (SQL ``IN``)."""

    def __init__(self, field: str, values: Iterable[Any]):
        self.field = field
        self.values = list(dict.fromkeys(values))

    def sql(self, table):
        column = _check_column(table, self.field)
        if not self.values:
            return "0", []
        marks = ", ".join("?" for _ in self.values)
        return f"{table}.{column} IN ({marks})", list(self.values)

    def matches(self, row):
        return row.get(self.field) in self.values

    def __repr__(self):
        return f"AnyOf({self.field!r}, {self.values!r})"


class HasSome(Predicate):
    """JSON array column shares at least one element with ``values``."""

    def __init__(self, field: str, values: Iterable[str]):
        self.field = field
        self.values = list(dict.fromkeys(values))

    def sql(self, table):
        column = _check_column(table, self.field)
        if not self.values:
            return "0", []
        marks = ", ".join("?" for _ in self.values)
        return (
            f"EXISTS (SELECT 1 FROM json_each({table}.{column}) AS tag "
            f"WHERE tag.value IN ({marks}))",
            list(self.values),
        )

    def matches(self, row):
        return bool(set(row.get(self.field) or ()) & set(self.values))

    def __repr__(self):
        return f"HasSome({self.field!r}, {self.values!r})"


class ContainsText(Predicate):
    """Case-insensitive substring match on any of ``fields``."""

    def __init__(self, fields: Sequence[str], text: str):
        self.fields = tuple(fields)
        self.text = text

    def sql(self, table):
        needle = casefold(self.text)
        clauses = [
            f"instr(CASEFOLD({table}.{_check_column(table, f)}), ?) > 0"
            for f in self.fields
        ]
        return "(" + " OR ".join(clauses) + ")", [needle] * len(self.fields)

    def matches(self, row):
        needle = casefold(self.text)
        return any(needle in casefold(row.get(f)) for f in self.fields)

    def __repr__(self):
        return f"ContainsText({self.fields!r}, {self.text!r})"


def matches_all(row: Mapping[str, Any], predicates: Iterable[Predicate]) -> bool:
    """Evaluate an implicitly AND-ed predicate list against one row."""
    return all(p.matches(row) for p in predicates)


class OrderBy:
    """One sort key. ``locale`` applies the LOCALE collation."""

    def __init__(self, field: str, descending: bool = False, locale: bool = False):
        self.field = field
        self.descending = descending
        self.locale = locale

    def sql(self, table: str) -> str:
        column = f"{table}.{_check_column(table, self.field)}"
        if self.locale:
            column += " COLLATE LOCALE"
        return column + (" DESC" if self.descending else " ASC")

    def key(self, row: Mapping[str, Any]):
        value = row.get(self.field)
        return locale_key(value) if self.locale else value

    def __repr__(self):
        return f"OrderBy({self.field!r}, descending={self.descending}, locale={self.locale})"


def sort_rows(rows: Iterable[Mapping[str, Any]], order: Sequence[OrderBy]) -> List[Mapping[str, Any]]:
    """Sort rows in memory exactly like ``ORDER BY`` over ``order`` would."""
    result = list(rows)
    for clause in reversed(order):
        result.sort(key=clause.key, reverse=clause.descending)
    return result


def _where(table: str, predicates: Sequence[Predicate]) -> Tuple[str, List[Any]]:
    if not predicates:
        return "", []
    clauses, params = [], []
    for predicate in predicates:
        clause, args = predicate.sql(table)
        clauses.append(clause)
        params.extend(args)
    return " WHERE " + " AND ".join(clauses), params


# ── Sessions ─────────────────────────────────────────────────────────


class StoreSession:
    """Operations bound to one open connection (optionally in a transaction)."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _decode(table: str, row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        for column in list(data):
            if (table, column) in JSON_COLUMNS and data[column] is not None:
                data[column] = json.loads(data[column])
        return data

    @staticmethod
    def _encode(table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        encoded = {}
        for column, value in values.items():
            _check_column(table, column)
            if (table, column) in JSON_COLUMNS and value is not None:
                value = json.dumps(list(value))
            encoded[column] = value
        return encoded

    def count(self, table: str, predicates: Sequence[Predicate] = ()) -> int:
        where, params = _where(table, predicates)
        row = self.conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()
        return row[0]

    def find(
        self,
        table: str,
        predicates: Sequence[Predicate] = (),
        order: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        offset: int = 0,
        columns: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        if columns:
            select = ", ".join(f"{table}.{_check_column(table, c)}" for c in columns)
        else:
            select = f"{table}.*"
        where, params = _where(table, predicates)
        query = f"SELECT {select} FROM {table}{where}"
        if order:
            query += " ORDER BY " + ", ".join(o.sql(table) for o in order)
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = params + [limit, offset]
        rows = self.conn.execute(query, params).fetchall()
        return [self._decode(table, row) for row in rows]

    def get(self, table: str, predicates: Sequence[Predicate]) -> Optional[Dict[str, Any]]:
        rows = self.find(table, predicates, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        encoded = self._encode(table, values)
        columns = ", ".join(encoded)
        marks = ", ".join("?" for _ in encoded)
        self.conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({marks})", list(encoded.values())
        )
        return dict(values)

    def update_where(
        self, table: str, predicates: Sequence[Predicate], values: Mapping[str, Any]
    ) -> int:
        if not predicates:
            raise ValueError("Refusing to update without a predicate")
        encoded = self._encode(table, values)
        assignments = ", ".join(f"{column} = ?" for column in encoded)
        where, params = _where(table, predicates)
        cur = self.conn.execute(
            f"UPDATE {table} SET {assignments}{where}", list(encoded.values()) + params
        )
        return cur.rowcount

    def delete_where(self, table: str, predicates: Sequence[Predicate]) -> int:
        if not predicates:
            raise ValueError("Refusing to delete without a predicate")
        where, params = _where(table, predicates)
        cur = self.conn.execute(f"DELETE FROM {table}{where}", params)
        return cur.rowcount


class VaultStore:
    """
    SQLite-backed persistent store.

    Every call opens a fresh connection (so the store is safe to share
    between request threads) and fails closed: any sqlite error,
    including a busy-timeout, is raised as StoreError.

    Args:
        db_path: Path to SQLite file. Defaults to data/accault.db.
        timeout: Seconds to wait for a locked database.
    """

    def __init__(self, db_path: Optional[Path] = None, timeout: float = DEFAULT_TIMEOUT):
        self.db_path = Path(db_path) if db_path else Path("data/accault.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._init_database()

    def _init_database(self):
        with self._translate_errors():
            conn = db_connect(self.db_path, timeout=self.timeout)
            try:
                conn.executescript(SCHEMA)

                # Migration: add pin_generation column (v0.3.0)
                user_columns = {row[1] for row in conn.execute("PRAGMA table_info(users)")}
                if "pin_generation" not in user_columns:
                    conn.execute(
                        "ALTER TABLE users ADD COLUMN pin_generation INTEGER NOT NULL DEFAULT 0"
                    )
            finally:
                conn.close()

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.OperationalError as exc:
            retryable = "locked" in str(exc) or "busy" in str(exc)
            logger.error("Store operation failed (retryable=%s): %s", retryable, exc)
            raise StoreError(retryable=retryable) from exc
        except sqlite3.Error as exc:
            logger.error("Store operation failed: %s", exc)
            raise StoreError() from exc

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[StoreSession]:
        """
        Run several operations atomically.

        ``immediate=True`` takes the write lock up front (BEGIN IMMEDIATE),
        which serializes read-modify-write sequences such as the PIN
        attempt counter across processes.

        Usage:
            with store.transaction() as tx:
                tx.update_where(...)
                tx.delete_where(...)
        """
        with self._translate_errors():
            conn = db_connect(self.db_path, row_factory=True, timeout=self.timeout)
            try:
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
                try:
                    yield StoreSession(conn)
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    def count(self, table, predicates=()):
        with self.transaction() as tx:
            return tx.count(table, predicates)

    def find(self, table, predicates=(), order=(), limit=None, offset=0, columns=None):
        with self.transaction() as tx:
            return tx.find(table, predicates, order, limit, offset, columns)

    def get(self, table, predicates):
        with self.transaction() as tx:
            return tx.get(table, predicates)

    def insert(self, table, values):
        with self.transaction() as tx:
            return tx.insert(table, values)

    def update_where(self, table, predicates, values):
        with self.transaction() as tx:
            return tx.update_where(table, predicates, values)

    def delete_where(self, table, predicates):
        with self.transaction() as tx:
            return tx.delete_where(table, predicates)
