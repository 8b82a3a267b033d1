# API Security - caller identity and the signed unlock cookie
#
# Authentication happens upstream: a trusted proxy forwards the caller's
# id in the X-User-Id header. This module only reads it.
#
# The PIN unlock flag is kept client-side in a session cookie. Its value
# is signed with SESSION_SECRET and carries the user id, the user's PIN
# generation and a random nonce:
# - a cookie issued to one user never unlocks another
# - a tampered cookie reads as "locked"
# - changing the PIN revokes every cookie issued under the old one

import logging
import secrets
from typing import Callable, Optional

from fastapi import Depends, Header, Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer

from ..vault.session_lock import SessionLockPort

logger = logging.getLogger(__name__)

UNLOCK_COOKIE = "accault_session_unlocked"
UNLOCK_SALT = "accault.session-unlock"

PinGeneration = Callable[[str], int]

_serializer: Optional[URLSafeTimedSerializer] = None
_secure_cookies: bool = False
_pin_generation: Optional[PinGeneration] = None


def configure_session_cookies(
    secret: str, pin_generation: PinGeneration, secure: bool = False
) -> URLSafeTimedSerializer:
    """
    Set up cookie signing for this backend instance.

    Args:
        secret: SESSION_SECRET used to sign the unlock cookie
        pin_generation: Returns a user's current PIN generation
        secure: Add the Secure attribute (production only)

    Returns:
        The serializer used for signing
    """
    global _serializer, _secure_cookies, _pin_generation
    _serializer = URLSafeTimedSerializer(secret, salt=UNLOCK_SALT)
    _secure_cookies = secure
    _pin_generation = pin_generation
    return _serializer


def get_serializer() -> URLSafeTimedSerializer:
    """
    Raises:
        RuntimeError: If cookie signing hasn't been configured
    """
    if _serializer is None or _pin_generation is None:
        raise RuntimeError(
            "Session cookies not configured. Call configure_session_cookies() first."
        )
    return _serializer


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """
    FastAPI dependency returning the authenticated user id, or None.

    A missing id is not rejected here: reads degrade to empty results and
    writes fail with 401 through the usual result mapping.
    """
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


class CookieSessionLock(SessionLockPort):
    """Unlock flag stored in a signed, HTTP-only session cookie."""

    def __init__(
        self,
        request: Request,
        response: Response,
        serializer: URLSafeTimedSerializer,
        user_id: Optional[str],
        pin_generation: PinGeneration,
        secure: bool = False,
    ):
        self.request = request
        self.response = response
        self.serializer = serializer
        self.user_id = user_id
        self.pin_generation = pin_generation
        self.secure = secure

    def is_unlocked(self) -> bool:
        if not self.user_id:
            return False
        token = self.request.cookies.get(UNLOCK_COOKIE)
        if not token:
            return False
        try:
            payload = self.serializer.loads(token)
        except BadSignature:
            logger.warning("Rejected unlock cookie with a bad signature")
            return False
        if not isinstance(payload, dict) or payload.get("uid") != self.user_id:
            return False
        return payload.get("gen") == self.pin_generation(self.user_id)

    def set_unlocked(self) -> None:
        token = self.serializer.dumps({
            "uid": self.user_id,
            "gen": self.pin_generation(self.user_id),
            "nonce": secrets.token_urlsafe(12),
        })
        # No max_age: the flag lives as long as the browser session.
        self.response.set_cookie(
            UNLOCK_COOKIE,
            token,
            httponly=True,
            samesite="lax",
            secure=self.secure,
            path="/",
        )

    def clear_unlocked(self) -> None:
        self.response.delete_cookie(
            UNLOCK_COOKIE, path="/", httponly=True, samesite="lax", secure=self.secure
        )


async def get_session_lock(
    request: Request,
    response: Response,
    user_id: Optional[str] = Depends(get_current_user_id),
) -> CookieSessionLock:
    """FastAPI dependency: the session lock port for this request."""
    return CookieSessionLock(
        request, response, get_serializer(), user_id, _pin_generation, _secure_cookies
    )
