# Vault Module - Multi-user credential vault
#
# Accounts, groups and email identities stored in SQLite with passwords
# and PINs encrypted under AES-256-GCM, behind a per-session PIN lock.

from .encryption import EncryptionService
from .query_engine import AccountFilter, Page, PageMetadata, QueryEngine
from .session_lock import LockState, MemorySessionLock, SessionLockGate, SessionLockPort
from .store import VaultStore
from .transfer import ExportScope, TransferService
from .vault_manager import AccountInput, VaultManager

__all__ = [
    "AccountFilter",
    "AccountInput",
    "EncryptionService",
    "ExportScope",
    "LockState",
    "MemorySessionLock",
    "Page",
    "PageMetadata",
    "QueryEngine",
    "SessionLockGate",
    "SessionLockPort",
    "TransferService",
    "VaultManager",
    "VaultStore",
]
