# Reference Server: Auth API
#
# - POST /auth/register  {email, authSalt, keyAuth} -> 200 | 400
# - POST /auth/login     {email, keyAuth}           -> 200 + cookie | 401
# - POST /auth/salt      {email}                    -> 200 {salt} | 404
# - POST /auth/logout                               -> 200
#
# keyAuth is the client's derived auth key (base64). It is only ever
# stored as a bcrypt hash. The salt endpoint is unauthenticated because the
# client needs the salt before it can derive anything; its 404 reveals
# whether an account exists.

import asyncio
from typing import Optional

import bcrypt
from fastapi import APIRouter, HTTPException, Request, Response, status
from pydantic import BaseModel

from ..core import EventSeverity, EventType, get_audit_logger
from ..vault.encryption import KEY_LENGTH, SALT_LENGTH, EncryptionService
from .store import DuplicateEmail

router = APIRouter(prefix="/auth", tags=["auth"])


# Request Models
class RegisterRequest(BaseModel):
    email: Optional[str] = None
    authSalt: Optional[str] = None
    keyAuth: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    keyAuth: Optional[str] = None


class SaltRequest(BaseModel):
    email: Optional[str] = None


def _normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _decoded_length(value: str) -> int:
    try:
        return len(EncryptionService.decode_from_storage(value))
    except ValueError:
        return -1


def hash_auth_key(key_auth: str, rounds: int) -> str:
    """bcrypt hash of the base64 auth key."""
    return bcrypt.hashpw(key_auth.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_auth_key(key_auth: str, password_hash: str) -> bool:
    """Check a base64 auth key against its stored bcrypt hash."""
    try:
        return bcrypt.checkpw(key_auth.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _start_session(request: Request, response: Response, user_id: str, email: str) -> None:
    settings = request.app.state.settings
    token = request.app.state.sessions.create(user_id, email)
    response.set_cookie(
        key=settings.SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.SESSION_TTL_MINUTES * 60,
    )


# Endpoints

@router.post("/register")
async def register(body: RegisterRequest, request: Request, response: Response):
    """
    Create an account from a client-generated salt and derived auth key.

    Starts a session on success so the client can upload its first vault.
    """
    email = _normalize_email(body.email)
    if not email or not body.authSalt or not body.keyAuth:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields"
        )

    if _decoded_length(body.authSalt) != SALT_LENGTH or _decoded_length(body.keyAuth) != KEY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid key material"
        )

    settings = request.app.state.settings
    store = request.app.state.store
    audit = get_audit_logger()

    password_hash = await asyncio.to_thread(hash_auth_key, body.keyAuth, settings.BCRYPT_ROUNDS)

    try:
        user_id = await asyncio.to_thread(store.create_user, email, body.authSalt, password_hash)
    except DuplicateEmail:
        audit.log_event(
            event_type=EventType.ACCOUNT_REGISTER_FAILED,
            severity=EventSeverity.INVESTIGATE,
            message="Registration rejected: account exists",
            details={"email": email},
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists"
        )

    _start_session(request, response, user_id, email)

    audit.log_event(
        event_type=EventType.ACCOUNT_REGISTERED,
        severity=EventSeverity.INFO,
        message="Account registered",
        details={"email": email, "user_id": user_id},
    )
    return {"ok": True}


@router.post("/login")
async def login(body: LoginRequest, request: Request, response: Response):
    """
    Verify the auth key against the stored bcrypt hash and start a session.

    Unknown email and wrong key return the same 401. A dummy bcrypt check
    runs for unknown emails to keep response times alike.
    """
    email = _normalize_email(body.email)
    store = request.app.state.store
    audit = get_audit_logger()

    user = await asyncio.to_thread(store.get_user, email) if email else None
    key_auth = body.keyAuth or ""

    if user is None:
        await asyncio.to_thread(verify_auth_key, key_auth, request.app.state.dummy_hash)
        valid = False
    else:
        valid = await asyncio.to_thread(verify_auth_key, key_auth, user["password_hash"])

    if not valid:
        audit.log_event(
            event_type=EventType.LOGIN_FAILED,
            severity=EventSeverity.ALERT,
            message="Login rejected",
            details={"email": email},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    _start_session(request, response, user["id"], user["email"])

    audit.log_event(
        event_type=EventType.LOGIN_SUCCEEDED,
        severity=EventSeverity.INFO,
        message="Login succeeded",
        details={"email": user["email"]},
    )
    return {"ok": True}


@router.post("/salt")
async def get_salt(body: SaltRequest, request: Request):
    """Return the account's public salt (unauthenticated)."""
    email = _normalize_email(body.email)
    user = await asyncio.to_thread(request.app.state.store.get_user, email) if email else None

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return {"salt": user["auth_salt"]}


@router.post("/logout")
async def logout(request: Request, response: Response):
    """End the current session (idempotent) and clear the cookie."""
    settings = request.app.state.settings
    sessions = request.app.state.sessions
    token = request.cookies.get(settings.SESSION_COOKIE)

    info = sessions.get(token)
    if sessions.revoke(token) and info is not None:
        get_audit_logger().log_event(
            event_type=EventType.LOGOUT,
            severity=EventSeverity.INFO,
            message="Logged out",
            details={"email": info.email},
        )

    response.delete_cookie(settings.SESSION_COOKIE)
    return {"ok": True}
