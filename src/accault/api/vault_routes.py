# Vault API - REST endpoints for the account vault
#
# Every route resolves the caller from X-User-Id and the session lock from
# the signed unlock cookie, then delegates to VaultManager.
#
# - writes return ActionResult.to_dict(); failures become HTTPException
#   with the status taken from the result's error code
# - reads of accounts, groups, emails and activity are empty while the
#   session is PIN-locked

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.errors import ActionResult
from ..vault import AccountFilter, AccountInput, ExportScope, TransferService, VaultManager
from ..vault.vault_manager import public_account, public_row
from .security import CookieSessionLock, get_current_user_id, get_session_lock

router = APIRouter(prefix="/api/vault", tags=["vault"])

# ── Singletons ────────────────────────────────────────────────────────

_vault_manager: Optional[VaultManager] = None


def get_vault_manager() -> VaultManager:
    """Get the VaultManager configured by create_app()."""
    if _vault_manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vault not initialized",
        )
    return _vault_manager


def set_vault_manager(manager: Optional[VaultManager]):
    """Allow DI for testing."""
    global _vault_manager
    _vault_manager = manager


# Result error code -> HTTP status
ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "invalid_pin": status.HTTP_401_UNAUTHORIZED,
    "not_found": status.HTTP_404_NOT_FOUND,
    "lockout": status.HTTP_423_LOCKED,
    "locked": status.HTTP_423_LOCKED,
    "store": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _respond(result: ActionResult) -> Dict[str, Any]:
    """Return the result body, or raise the matching HTTPException."""
    if result.success:
        return result.to_dict()
    headers = None
    if "retry_after" in result.extra:
        headers = {"Retry-After": str(result.extra["retry_after"])}
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST),
        detail=result.to_dict(),
        headers=headers,
    )


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id


def _require_unlocked(manager: VaultManager, user_id: str, port: CookieSessionLock):
    if not manager.gate.allows_data(user_id, port):
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail="Vault is locked")


def _split(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


# Request/Response Models

class PinRequest(BaseModel):
    pin: str = Field(..., min_length=1, max_length=32)


class AccountRequest(BaseModel):
    platform: str = Field(..., min_length=1, max_length=200)
    username: str = Field(..., min_length=1, max_length=200)
    password: Optional[str] = None
    no_password: bool = False
    email_id: Optional[str] = None
    no_email: bool = False
    group_id: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    website: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    icon_deleted: bool = False


class MoveAccountRequest(BaseModel):
    group_id: str


class GroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class EmailRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    name: Optional[str] = None
    phone_number: Optional[str] = None
    is_verified: bool = False
    is_2fa_enabled: bool = False
    recovery_email_id: Optional[str] = None


class BulkIdsRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)


class BulkMoveRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)
    group_id: str


class ImportRequest(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    target_group_id: Optional[str] = None


class SecurityStatusResponse(BaseModel):
    has_pin: bool
    is_unlocked: bool
    state: str


# ── Security ──────────────────────────────────────────────────────────

@router.get("/security/status", response_model=SecurityStatusResponse)
async def get_security_status(
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Whether the user has a PIN and whether this session is unlocked."""
    return manager.gate.status(_require_user(user_id), port)


@router.post("/security/pin")
async def set_security_pin(
    request: PinRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """
    Set or change the 6-digit PIN.

    Changing an existing PIN requires an unlocked session.
    """
    user_id = _require_user(user_id)
    _require_unlocked(manager, user_id, port)
    return _respond(manager.pin_guard.set_pin(user_id, request.pin))


@router.post("/security/verify")
async def verify_security_pin(
    request: PinRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """
    Verify the PIN and, on success, issue the unlock cookie.

    401 with ``attempts_remaining`` on a wrong PIN; 423 with a
    Retry-After header while locked out.
    """
    return _respond(manager.gate.unlock(_require_user(user_id), port, request.pin))


@router.post("/security/lock")
async def lock_session(
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Clear the unlock cookie."""
    return _respond(manager.gate.lock(user_id, port))


# ── Accounts ──────────────────────────────────────────────────────────

@router.get("/accounts")
async def list_accounts(
    q: str = "",
    page: int = 1,
    sort: str = "newest",
    group_status: str = "all",
    categories: Optional[str] = Query(None, description="Comma-separated categories"),
    has_email: str = "all",
    has_password: str = "all",
    scope: str = "all",
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """
    Dashboard listing of accounts.

    Without a search query and without a group filter, accounts inside a
    group are left out (they appear through their group card).
    """
    flt = AccountFilter(
        query=q, page=page, sort=sort, group_status=group_status,
        categories=_split(categories), has_email=has_email,
        has_password=has_password, scope=scope,
    )
    result = manager.list_accounts(user_id, port, flt)
    return {
        "accounts": [public_account(a) for a in result.items],
        "metadata": result.metadata.to_dict(),
    }


@router.get("/accounts/ids")
async def list_account_ids(
    q: str = "",
    sort: str = "newest",
    group_status: str = "all",
    categories: Optional[str] = None,
    has_email: str = "all",
    has_password: str = "all",
    scope: str = "all",
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Every account id matching the filter (for "select all")."""
    flt = AccountFilter(
        query=q, sort=sort, group_status=group_status,
        categories=_split(categories), has_email=has_email,
        has_password=has_password, scope=scope,
    )
    return {"ids": manager.account_ids(user_id, port, flt)}


@router.post("/accounts")
async def create_account(
    request: AccountRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.add_account(user_id, AccountInput(**request.model_dump())))


@router.get("/accounts/{account_id}")
async def get_account(
    account_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Account detail without the password."""
    user_id = _require_user(user_id)
    _require_unlocked(manager, user_id, port)
    account = manager.get_account(user_id, port, account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return public_account(account)


@router.put("/accounts/{account_id}")
async def update_account(
    account_id: str,
    request: AccountRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(
        manager.update_account(user_id, account_id, AccountInput(**request.model_dump()))
    )


@router.delete("/accounts/{account_id}")
async def delete_account(
    account_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.delete_account(user_id, account_id))


@router.post("/accounts/{account_id}/reveal")
async def reveal_password(
    account_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """
    Decrypted password of one account.

    A password that cannot be decrypted comes back as ``""`` with
    ``success: false`` (HTTP 200).
    """
    result = manager.reveal_password(user_id, port, account_id)
    if result.error == "decryption":
        return result.to_dict()
    return _respond(result)


@router.post("/accounts/{account_id}/move")
async def move_account(
    account_id: str,
    request: MoveAccountRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.move_account_to_group(user_id, account_id, request.group_id))


@router.post("/accounts/{account_id}/eject")
async def eject_account(
    account_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.remove_account_from_group(user_id, account_id))


# ── Groups ────────────────────────────────────────────────────────────

@router.get("/groups")
async def list_groups(
    q: str = "",
    sort: str = "newest",
    page: int = 1,
    scope: str = "all",
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Groups with their account counts."""
    result = manager.list_groups(user_id, port, query=q, sort=sort, page=page, scope=scope)
    return {
        "groups": [public_row(g) for g in result.items],
        "metadata": result.metadata.to_dict(),
    }


@router.get("/groups/ids")
async def list_group_ids(
    q: str = "",
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    return {"ids": manager.group_ids(user_id, port, q)}


@router.post("/groups")
async def create_group(
    request: GroupRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.add_group(user_id, request.name))


@router.get("/groups/{group_id}")
async def get_group(
    group_id: str,
    q: str = "",
    page: int = 1,
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """The group plus one page of its accounts."""
    user_id = _require_user(user_id)
    _require_unlocked(manager, user_id, port)
    detail = manager.get_group_detail(user_id, port, group_id, query=q, page=page)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")
    return {
        "group": public_row(detail["group"]),
        "accounts": [public_account(a) for a in detail["accounts"]],
        "metadata": detail["metadata"].to_dict(),
    }


@router.get("/groups/{group_id}/account-ids")
async def list_group_account_ids(
    group_id: str,
    q: str = "",
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    return {"ids": manager.group_account_ids(user_id, port, group_id, q)}


@router.patch("/groups/{group_id}")
async def rename_group(
    group_id: str,
    request: GroupRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.rename_group(user_id, group_id, request.name))


@router.delete("/groups/{group_id}")
async def delete_group(
    group_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Delete the group; its accounts are kept and become ungrouped."""
    return _respond(manager.delete_group(user_id, group_id))


# ── Email identities ──────────────────────────────────────────────────

@router.get("/emails")
async def list_emails(
    page: int = 1,
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    result = manager.list_emails(user_id, port, page)
    return {
        "emails": [public_row(e) for e in result.items],
        "metadata": result.metadata.to_dict(),
    }


@router.post("/emails")
async def create_email(
    request: EmailRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.add_email(user_id, **request.model_dump()))


# ── Bulk ──────────────────────────────────────────────────────────────

@router.post("/bulk/move")
async def bulk_move(
    request: BulkMoveRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.bulk.move_to_group(user_id, request.ids, request.group_id))


@router.post("/bulk/eject")
async def bulk_eject(
    request: BulkIdsRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.bulk.eject_from_group(user_id, request.ids))


@router.post("/bulk/delete-accounts")
async def bulk_delete_accounts(
    request: BulkIdsRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.bulk.delete_accounts(user_id, request.ids))


@router.post("/bulk/delete-groups")
async def bulk_delete_groups(
    request: BulkIdsRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    return _respond(manager.bulk.delete_groups(user_id, request.ids))


# ── Import / Export ───────────────────────────────────────────────────

@router.get("/export")
async def export_data(
    scope: str = "all",
    entity_id: Optional[str] = Query(None, alias="id"),
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Rows for the client to write out as CSV / XLSX / JSON."""
    try:
        export_scope = ExportScope(scope)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown export scope")
    result = TransferService(manager).export_data(user_id, port, export_scope, entity_id)
    return _respond(result)


@router.post("/import")
async def import_accounts(
    request: ImportRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    manager: VaultManager = Depends(get_vault_manager),
):
    result = TransferService(manager).import_accounts(
        user_id, request.rows, request.target_group_id
    )
    return _respond(result)


# ── Activity ──────────────────────────────────────────────────────────

@router.get("/activity")
async def get_activity(
    limit: int = Query(50, ge=1, le=500),
    user_id: Optional[str] = Depends(get_current_user_id),
    port: CookieSessionLock = Depends(get_session_lock),
    manager: VaultManager = Depends(get_vault_manager),
):
    return {"activity": manager.get_activity(user_id, port, limit)}
