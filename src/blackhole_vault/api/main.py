# Reference Server - FastAPI Backend
#
# Minimal zero-knowledge sync server: credential store (email -> salt +
# bcrypt hash), opaque envelope store (user -> envelope + revision) and
# cookie sessions. It never receives a passcode or a vault key.

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..core import EventSeverity, EventType, Settings, get_audit_logger, get_settings
from .auth_routes import hash_auth_key
from .auth_routes import router as auth_router
from .security import SessionManager
from .store import AccountStore
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)

# Hashed once per app so logins for unknown emails still pay for a bcrypt check
_DUMMY_AUTH_KEY = "A" * 43 + "="


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the server application.

    Args:
        settings: Configuration (defaults to get_settings())

    Returns:
        FastAPI app with auth and vault routers registered
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_START,
            severity=EventSeverity.INFO,
            message="Vault server started",
            details={"db_path": str(settings.DB_PATH)},
        )
        yield
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Vault server stopped",
        )

    app = FastAPI(
        title="Blackhole Vault API",
        description="Zero-knowledge vault sync server",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = AccountStore(str(settings.DB_PATH))
    app.state.sessions = SessionManager(ttl_minutes=settings.SESSION_TTL_MINUTES)
    app.state.dummy_hash = hash_auth_key(_DUMMY_AUTH_KEY, settings.BCRYPT_ROUNDS)

    app.include_router(auth_router)
    app.include_router(vault_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    logger.info("Vault server app created (db=%s)", settings.DB_PATH)
    return app
