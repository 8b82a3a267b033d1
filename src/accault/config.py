# Config Module - Runtime configuration
#
# All settings come from the environment (optionally seeded from a .env
# file). ENCRYPTION_KEY is the only required value; without it the
# process refuses to start.

import base64
import binascii
import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .core.errors import ConfigurationError

# PIN policy
PIN_LENGTH = 6
MAX_PIN_ATTEMPTS = 5
LOCKOUT_SECONDS = 60

# Page sizes used by the dashboard
ACCOUNTS_PER_PAGE = 12
GROUPS_PER_PAGE = 8
EMAILS_PER_PAGE = 10

KEY_LENGTH = 32


def parse_encryption_key(raw: Optional[str]) -> bytes:
    """Decode ENCRYPTION_KEY (64 hex chars or base64 of 32 bytes)."""
    if not raw:
        raise ConfigurationError("ENCRYPTION_KEY environment variable is required")
    raw = raw.strip()

    if len(raw) == KEY_LENGTH * 2:
        try:
            return bytes.fromhex(raw)
        except ValueError:
            pass

    for decoder in (base64.urlsafe_b64decode, base64.b64decode):
        try:
            key = decoder(raw.encode("ascii"))
        except (binascii.Error, ValueError):
            continue
        if len(key) == KEY_LENGTH:
            return key

    raise ConfigurationError(
        "ENCRYPTION_KEY must be 32 bytes encoded as hex or base64"
    )


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer") from None
    if parsed < 1:
        raise ConfigurationError(f"{name} must be positive")
    return parsed


@dataclass(frozen=True)
class VaultConfig:
    """Resolved process configuration.

    ``encryption_key`` is excluded from repr so it never ends up in logs.
    """

    encryption_key: bytes
    session_secret: str
    db_path: Path = Path("data/accault.db")
    db_timeout: float = 5.0
    production: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    accounts_per_page: int = ACCOUNTS_PER_PAGE
    groups_per_page: int = GROUPS_PER_PAGE
    emails_per_page: int = EMAILS_PER_PAGE

    def __repr__(self) -> str:
        return (
            f"VaultConfig(db_path={str(self.db_path)!r}, production={self.production}, "
            f"host={self.host!r}, port={self.port})"
        )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "VaultConfig":
        """Build the configuration from environment variables.

        Raises:
            ConfigurationError: if ENCRYPTION_KEY is missing or malformed,
                or a numeric setting is not a positive integer.
        """
        load_dotenv(env_file)

        key = parse_encryption_key(os.getenv("ENCRYPTION_KEY"))
        session_secret = os.getenv("SESSION_SECRET") or hashlib.sha256(
            b"accault-session-cookie" + key
        ).hexdigest()

        try:
            db_timeout = float(os.getenv("ACCAULT_DB_TIMEOUT", "5.0"))
        except ValueError:
            raise ConfigurationError("ACCAULT_DB_TIMEOUT must be a number") from None

        return cls(
            encryption_key=key,
            session_secret=session_secret,
            db_path=Path(os.getenv("ACCAULT_DB_PATH", "data/accault.db")),
            db_timeout=db_timeout,
            production=os.getenv("ACCAULT_ENV", "development").lower() == "production",
            host=os.getenv("ACCAULT_HOST", "127.0.0.1"),
            port=_int_env("ACCAULT_PORT", 8000),
            accounts_per_page=_int_env("ACCAULT_ACCOUNTS_PER_PAGE", ACCOUNTS_PER_PAGE),
            groups_per_page=_int_env("ACCAULT_GROUPS_PER_PAGE", GROUPS_PER_PAGE),
            emails_per_page=_int_env("ACCAULT_EMAILS_PER_PAGE", EMAILS_PER_PAGE),
        )
