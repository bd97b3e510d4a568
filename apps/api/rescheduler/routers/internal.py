"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions).
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from rescheduler.core.config import settings
from rescheduler.core.deps import get_db
from rescheduler.schemas.reschedule import ExpireProposalsResponse
from rescheduler.services import negotiation_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not hmac.compare_digest(x_internal_secret.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


@router.post(
    "/expire-proposals",
    response_model=ExpireProposalsResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def expire_proposals(db: Session = Depends(get_db)):
    """
    Sweep pending reschedule proposals past PROPOSAL_TTL_HOURS to expired.

    Their decide links stop working because the proposal is no longer pending.
    """
    expired = negotiation_service.expire_stale_proposals(
        db, ttl_hours=settings.PROPOSAL_TTL_HOURS
    )
    return ExpireProposalsResponse(expired=expired)
