# Core Module - Central SQLite Connection Helper
#
# Every accault SQLite database should use `connect()` from this module
# instead of raw `sqlite3.connect()`. This ensures:
#
#   - WAL journal mode (concurrent readers + one writer)
#   - busy_timeout derived from the caller's timeout, so contention
#     surfaces as an error instead of an indefinite wait
#   - foreign_keys enforcement on every connection
#   - the LOCALE collation used for A-Z / Z-A ordering
#   - the CASEFOLD function used by case-insensitive search

import sqlite3
import unicodedata
from pathlib import Path
from typing import Union

DEFAULT_TIMEOUT = 5.0


def locale_key(value: str) -> tuple:
    """Sort key approximating a locale-aware comparison.

    Accents and case are folded for the primary comparison; the raw
    string breaks ties so the ordering stays total.
    """
    value = value or ""
    folded = unicodedata.normalize("NFKD", value)
    folded = "".join(c for c in folded if not unicodedata.combining(c))
    return (folded.casefold(), value)


def casefold(value):
    """Case-insensitive form used by text search, in SQL and in Python."""
    return (value or "").casefold()


def _locale_collation(left: str, right: str) -> int:
    lk, rk = locale_key(left), locale_key(right)
    return (lk > rk) - (lk < rk)


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
    timeout: float = DEFAULT_TIMEOUT,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().
        timeout: Seconds to wait on a locked database before failing.

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(
        str(db_path),
        check_same_thread=check_same_thread,
        timeout=timeout,
        isolation_level=None,
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.create_collation("LOCALE", _locale_collation)
    conn.create_function("CASEFOLD", 1, casefold, deterministic=True)
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn
