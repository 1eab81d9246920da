# Reference Server: Session Security
#
# Issues a random opaque token per successful login/registration and keeps
# the token -> user mapping in memory. The token travels in an HttpOnly
# cookie; it asserts "this request belongs to user U" and nothing else.
# The server never holds anything that can decrypt a vault.

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import HTTPException, Request, status


@dataclass
class SessionInfo:
    """An authenticated server session."""
    user_id: str
    email: str
    expires_at: datetime


class SessionManager:
    """In-memory session registry with a fixed TTL."""

    def __init__(self, ttl_minutes: int = 720):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._sessions: Dict[str, SessionInfo] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str, email: str) -> str:
        """
        Start a session for a user.

        Security: 256-bit random token (secrets.token_urlsafe).
        Expired sessions are purged on every create so tokens that are
        never presented again do not accumulate.

        Returns:
            The session token to place in the cookie
        """
        token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        with self._lock:
            self._purge_expired(now)
            self._sessions[token] = SessionInfo(
                user_id=user_id,
                email=email,
                expires_at=now + self.ttl,
            )
        return token

    def _purge_expired(self, now: datetime) -> None:
        # caller holds self._lock
        expired = [t for t, info in self._sessions.items() if now >= info.expires_at]
        for t in expired:
            del self._sessions[t]

    def get(self, token: Optional[str]) -> Optional[SessionInfo]:
        """Resolve a token to its session, dropping it if expired."""
        if not token:
            return None
        with self._lock:
            info = self._sessions.get(token)
            if info is None:
                return None
            if datetime.now(timezone.utc) >= info.expires_at:
                del self._sessions[token]
                return None
            return info

    def revoke(self, token: Optional[str]) -> bool:
        """End a session. Returns True if the token was live."""
        if not token:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


async def get_current_session(request: Request) -> SessionInfo:
    """
    FastAPI dependency resolving the session cookie to a SessionInfo.

    Raises:
        HTTPException: 401 if the cookie is missing, unknown or expired
    """
    settings = request.app.state.settings
    sessions: SessionManager = request.app.state.sessions

    info = sessions.get(request.cookies.get(settings.SESSION_COOKIE))
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
    return info
