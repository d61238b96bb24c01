# Vault API - REST endpoints for the local UI
#
# - Setup / unlock / lock / change master password
# - Entry CRUD, search, import and export
# - Preferences
# Every route requires the X-Session-Token header. Entry routes require the
# vault to be unlocked.

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..vault import VaultSession
from ..vault.exceptions import (
    AuthenticationFailure,
    DecodeError,
    EntryNotFoundError,
    StorageFailure,
    ValidationFailure,
    VaultError,
    VaultLockedError,
    VaultStateError,
)
from ..vault.session import (
    MSG_ALREADY_UNLOCKED,
    MSG_CHANGE_FAILED,
    MSG_INCORRECT_PASSWORD,
    MSG_NO_VAULT,
    MSG_SETUP_FAILED,
    MSG_VAULT_EXISTS,
)
from .security import verify_session_token

router = APIRouter(prefix="/api/vault", tags=["vault"])

# Session singleton, wired by the app on startup
_vault_session: Optional[VaultSession] = None


def get_vault_session() -> Optional[VaultSession]:
    return _vault_session


def set_vault_session(session: Optional[VaultSession]) -> None:
    global _vault_session
    _vault_session = session


def require_session() -> VaultSession:
    session = get_vault_session()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vault session not started"
        )
    return session


def _http_error(exc: VaultError) -> HTTPException:
    """Map a vault exception to the HTTP status the UI expects."""
    if isinstance(exc, VaultLockedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, VaultStateError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, EntryNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ValidationFailure):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, AuthenticationFailure):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, (StorageFailure, DecodeError)):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operation failed, retry"
        )
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


# Request/Response Models
class MasterPasswordRequest(BaseModel):
    master_password: str


class ChangePasswordRequest(BaseModel):
    new_password: str


class EntryCreateRequest(BaseModel):
    title: str = ""
    url: str = ""
    username: str = ""
    password: str = ""
    notes: str = ""
    tags: List[str] = Field(default_factory=list)


class EntryUpdateRequest(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None


class ImportRequest(BaseModel):
    entries: List[Dict[str, Any]]


class PreferencesUpdateRequest(BaseModel):
    auto_lock_timeout: Optional[int] = None
    clipboard_clear_time: Optional[int] = None
    dark_mode: Optional[bool] = None
    locale: Optional[str] = None


class VaultStatusResponse(BaseModel):
    is_initialized: bool
    is_unlocked: bool
    is_loading: bool
    entry_count: int


# Endpoints

@router.get("/status", response_model=VaultStatusResponse)
def get_vault_status(token: str = Depends(verify_session_token)):
    """Whether the vault exists and is unlocked."""
    session = require_session()
    try:
        initialized = session.is_initialized
    except VaultError as e:
        raise _http_error(e)
    return VaultStatusResponse(
        is_initialized=initialized,
        is_unlocked=not session.is_locked,
        is_loading=session.is_loading,
        entry_count=len(session.entries),
    )


@router.post("/setup")
def setup_vault(
    request: MasterPasswordRequest,
    token: str = Depends(verify_session_token)
):
    """
    Create the vault with a master password and unlock it.

    Password requirements: at least the configured minimum length, not
    weak, not a common password.
    """
    session = require_session()
    success, message = session.setup(request.master_password)

    if not success:
        if message == MSG_VAULT_EXISTS:
            code = status.HTTP_409_CONFLICT
        elif message == MSG_SETUP_FAILED:
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        else:
            code = status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=message)

    return {"success": True, "message": message}


@router.post("/unlock")
def unlock_vault(
    request: MasterPasswordRequest,
    token: str = Depends(verify_session_token)
):
    """Unlock with the master password. Unreadable records are skipped."""
    session = require_session()
    success, message = session.unlock(request.master_password)

    if not success:
        if message == MSG_INCORRECT_PASSWORD:
            code = status.HTTP_401_UNAUTHORIZED
        elif message in (MSG_NO_VAULT, MSG_ALREADY_UNLOCKED):
            code = status.HTTP_409_CONFLICT
        else:
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        raise HTTPException(status_code=code, detail=message)

    return {"success": True, "message": message, "entry_count": len(session.entries)}


@router.post("/lock")
def lock_vault(token: str = Depends(verify_session_token)):
    require_session().lock()
    return {"success": True, "message": "Vault locked"}


@router.post("/activity")
def record_activity(token: str = Depends(verify_session_token)):
    """User-activity signal from the UI; restarts the idle countdown."""
    require_session().record_activity()
    return {"success": True}


@router.post("/password")
def change_master_password(
    request: ChangePasswordRequest,
    token: str = Depends(verify_session_token)
):
    """
    Re-encrypt the vault under a new master password.

    All-or-nothing: on failure the current password still opens the vault.
    """
    session = require_session()
    if session.is_locked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vault is locked. Unlock vault first."
        )

    success, message = session.change_password(request.new_password)

    if not success:
        if session.is_locked:
            code = status.HTTP_401_UNAUTHORIZED
        elif message == MSG_CHANGE_FAILED:
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        else:
            code = status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=message)

    return {"success": True, "message": message}


@router.get("/entries")
def list_entries(
    q: Optional[str] = None,
    token: str = Depends(verify_session_token)
):
    """
    List entries, newest updated first, optionally filtered by ``q``.

    Passwords are not included; use GET /entries/{id}.
    """
    session = require_session()
    if session.is_locked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vault is locked"
        )

    entries = session.search_entries(q or "")
    return {"entries": [_summary(e.to_dict()) for e in entries]}


@router.post("/entries", status_code=status.HTTP_201_CREATED)
def add_entry(
    request: EntryCreateRequest,
    token: str = Depends(verify_session_token)
):
    session = require_session()
    try:
        entry = session.add_entry(request.model_dump())
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "entry": entry.to_dict()}


@router.post("/entries/import")
def import_entries(
    request: ImportRequest,
    token: str = Depends(verify_session_token)
):
    """Bulk-add parsed entries; items without title, username or password are skipped."""
    session = require_session()
    try:
        imported = session.import_entries(request.entries)
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "imported": imported, "skipped": len(request.entries) - imported}


@router.get("/entries/export")
def export_entries(token: str = Depends(verify_session_token)):
    session = require_session()
    try:
        return {"entries": session.export_entries()}
    except VaultError as e:
        raise _http_error(e)


@router.get("/entries/{entry_id}")
def get_entry(
    entry_id: str,
    token: str = Depends(verify_session_token)
):
    """Get one entry including its password."""
    session = require_session()
    try:
        return session.get_entry(entry_id).to_dict()
    except VaultError as e:
        raise _http_error(e)


@router.patch("/entries/{entry_id}")
def update_entry(
    entry_id: str,
    request: EntryUpdateRequest,
    token: str = Depends(verify_session_token)
):
    session = require_session()
    try:
        entry = session.update_entry(entry_id, request.model_dump(exclude_unset=True))
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "entry": entry.to_dict()}


@router.delete("/entries/{entry_id}")
def delete_entry(
    entry_id: str,
    token: str = Depends(verify_session_token)
):
    session = require_session()
    try:
        existed = session.delete_entry(entry_id)
    except VaultError as e:
        raise _http_error(e)

    if not existed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Entry not found"
        )

    return {"success": True, "message": "Entry deleted"}


@router.get("/preferences")
def get_preferences(token: str = Depends(verify_session_token)):
    return require_session().preferences.to_dict()


@router.put("/preferences")
def update_preferences(
    request: PreferencesUpdateRequest,
    token: str = Depends(verify_session_token)
):
    """Update any subset of preferences. The idle timer is rescheduled immediately."""
    session = require_session()
    try:
        if request.auto_lock_timeout is not None:
            session.set_auto_lock_timeout(request.auto_lock_timeout)
        if request.clipboard_clear_time is not None:
            session.set_clipboard_clear_time(request.clipboard_clear_time)
        if request.dark_mode is not None:
            session.set_dark_mode(request.dark_mode)
        if request.locale is not None:
            session.set_locale(request.locale)
    except VaultError as e:
        raise _http_error(e)
    return session.preferences.to_dict()


def _summary(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if k != "password"}
