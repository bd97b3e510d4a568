"""Public reschedule router - magic-link endpoints for hosts and guests.

Unauthenticated endpoints; the token is the capability:
- View a booking and propose a new time (propose link)
- View a proposal and agree / counter-propose / cancel (decide link)
"""

from fastapi import APIRouter, Depends, Query, Request

from rescheduler.core.deps import get_negotiator
from rescheduler.core.rate_limit import PUBLIC_LIMIT, limiter
from rescheduler.db.enums import ProposalStatus
from rescheduler.schemas.reschedule import (
    BookingView,
    DecisionRequest,
    DecisionResponse,
    DecisionView,
    ProposeRequest,
    ProposeResponse,
)
from rescheduler.services.negotiation_service import RescheduleNegotiator

router = APIRouter()


# =============================================================================
# Propose link
# =============================================================================

@router.get("", response_model=BookingView)
def view_booking(
    token: str = Query(..., min_length=1),
    negotiator: RescheduleNegotiator = Depends(get_negotiator),
):
    """Current booking times for the holder of a propose link."""
    view = negotiator.view_booking(token)
    return BookingView(
        booking_id=view.booking_id,
        uid=view.uid,
        start_utc=view.start_utc,
        end_utc=view.end_utc,
        status=view.status,
        actor_role=view.actor_role.value,
    )


@router.post("/propose", response_model=ProposeResponse)
@limiter.limit(PUBLIC_LIMIT)
async def propose_new_time(
    request: Request,
    data: ProposeRequest,
    negotiator: RescheduleNegotiator = Depends(get_negotiator),
):
    """
    Propose a new time.

    The counterparty receives a decide link by email.
    """
    proposal = await negotiator.propose(
        data.token,
        data.proposed_start_utc,
        data.proposed_end_utc,
        note=data.note,
    )
    return ProposeResponse(status=ProposalStatus.PENDING.value, proposal_id=proposal.id)


# =============================================================================
# Decide link
# =============================================================================

@router.get("/decision", response_model=DecisionView)
def view_decision(
    t: str = Query(..., min_length=1),
    negotiator: RescheduleNegotiator = Depends(get_negotiator),
):
    """Proposal details for the holder of a decide link."""
    view = negotiator.view_decision(t)
    return DecisionView(
        booking_id=view.booking_id,
        proposal_id=view.proposal_id,
        current_start_utc=view.current_start_utc,
        current_end_utc=view.current_end_utc,
        proposed_start_utc=view.proposed_start_utc,
        proposed_end_utc=view.proposed_end_utc,
        proposed_by=view.proposed_by,
        note=view.note,
        status=view.status,
        actor_role=view.actor_role.value,
    )


@router.post("/decision", response_model=DecisionResponse)
@limiter.limit(PUBLIC_LIMIT)
async def submit_decision(
    request: Request,
    data: DecisionRequest,
    negotiator: RescheduleNegotiator = Depends(get_negotiator),
):
    """Agree, counter-propose or cancel. The decide link is single-use."""
    result = await negotiator.decide(
        data.token,
        data.action,
        proposed_start_utc=data.proposed_start_utc,
        proposed_end_utc=data.proposed_end_utc,
        note=data.note,
    )
    return DecisionResponse(ok=result.ok, status=result.status.value)
