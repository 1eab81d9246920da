# Reference Server: Vault API
#
# - GET  /vault  -> 200 {vault: Envelope, revision} | 404 | 401
# - POST /vault  {vault: Envelope, expectedRevision?} -> 200 {ok, revision} | 401 | 409 | 500
#
# The envelope is opaque to the server: it is stored and returned verbatim.
# Without expectedRevision the write is last-writer-wins; concurrent saves
# from two sessions race and the later one silently replaces the earlier.

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..core import EventSeverity, EventType, get_audit_logger
from .security import SessionInfo, get_current_session
from .store import RevisionMismatch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vault", tags=["vault"])


# Request/Response Models
class EnvelopeModel(BaseModel):
    version: int
    kdf: str
    iterations: int = Field(..., ge=1)
    salt: str = Field(..., min_length=1)
    iv: str = Field(..., min_length=1)
    ciphertext: str = Field(..., min_length=1)
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class PutVaultRequest(BaseModel):
    vault: EnvelopeModel
    expectedRevision: Optional[int] = Field(None, ge=0)


# Endpoints

@router.get("")
async def get_vault(request: Request, session: SessionInfo = Depends(get_current_session)):
    """Return the account's envelope and its server revision."""
    record = await asyncio.to_thread(request.app.state.store.get_vault, session.user_id)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vault not found"
        )

    envelope, revision = record
    return {"vault": envelope, "revision": revision}


@router.post("")
async def put_vault(
    body: PutVaultRequest,
    request: Request,
    session: SessionInfo = Depends(get_current_session),
):
    """
    Replace the account's envelope and bump the revision counter.

    With expectedRevision the write only succeeds if the stored revision
    still matches (0 = no vault yet); otherwise 409.
    """
    store = request.app.state.store
    audit = get_audit_logger()

    try:
        revision = await asyncio.to_thread(
            store.put_vault,
            session.user_id,
            body.vault.model_dump(),
            body.expectedRevision,
        )
    except RevisionMismatch as e:
        audit.log_event(
            event_type=EventType.VAULT_CONFLICT,
            severity=EventSeverity.INVESTIGATE,
            message="Conditional vault write rejected",
            details={"email": session.email, "expected": e.expected, "actual": e.actual},
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Vault was modified"
        )
    except Exception:
        logger.exception("Vault save failed for user %s", session.user_id)
        audit.log_event(
            event_type=EventType.VAULT_SAVE_FAILED,
            severity=EventSeverity.CRITICAL,
            message="Vault save failed",
            details={"email": session.email},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save"
        )

    audit.log_vault_event(
        EventType.VAULT_CREATED if revision == 1 else EventType.VAULT_SAVED,
        "envelope stored",
        details={"email": session.email, "revision": revision},
    )
    return {"ok": True, "revision": revision}
