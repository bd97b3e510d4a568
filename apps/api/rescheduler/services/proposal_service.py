"""Proposal store - pending reschedule proposals and their decisions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rescheduler.core.structured_logging import build_log_context
from rescheduler.db.enums import ActorRole, ProposalStatus
from rescheduler.db.models import Booking, PendingProposal
from rescheduler.services.booking_service import validate_interval
from rescheduler.services.errors import PreconditionFailedError, ProposalNotFoundError

logger = logging.getLogger(__name__)


def create_proposal(
    db: Session,
    *,
    booking: Booking,
    proposed_by: ActorRole,
    proposer_email: str,
    proposed_start_utc: datetime,
    proposed_end_utc: datetime,
    note: str | None = None,
) -> PendingProposal:
    """Create a pending proposal. Flushes, does not commit."""
    proposed_start_utc, proposed_end_utc = validate_interval(
        proposed_start_utc, proposed_end_utc
    )
    proposal = PendingProposal(
        booking_id=booking.id,
        uid=booking.ics_uid,
        proposed_by=ActorRole(proposed_by).value,
        proposer_email=proposer_email,
        proposed_start_utc=proposed_start_utc,
        proposed_end_utc=proposed_end_utc,
        note=(note or "").strip() or None,
        status=ProposalStatus.PENDING.value,
    )
    db.add(proposal)
    db.flush()
    logger.info(
        "Proposal created",
        extra=build_log_context(
            booking_id=booking.id,
            proposal_id=proposal.id,
            actor_role=proposal.proposed_by,
        ),
    )
    return proposal


def get_proposal(db: Session, proposal_id: UUID) -> PendingProposal | None:
    return db.execute(
        select(PendingProposal)
        .where(PendingProposal.id == proposal_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def require_proposal(db: Session, proposal_id: UUID) -> PendingProposal:
    proposal = get_proposal(db, proposal_id)
    if not proposal:
        raise ProposalNotFoundError()
    return proposal


def mark_proposal_decision(
    db: Session,
    proposal_id: UUID,
    status: ProposalStatus,
    approved_by: ActorRole | None,
) -> None:
    """
    Move a proposal out of pending.

    Compare-and-set on status = 'pending': zero rows affected means someone
    else already decided (or the sweep expired it) and the caller loses.
    Flushes, does not commit.
    """
    status = ProposalStatus(status)
    if status == ProposalStatus.PENDING:
        raise ValueError("A decision must move the proposal out of pending")

    result = db.execute(
        update(PendingProposal)
        .where(
            PendingProposal.id == proposal_id,
            PendingProposal.status == ProposalStatus.PENDING.value,
        )
        .values(
            status=status.value,
            approved_by=approved_by.value if approved_by else None,
            decision_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        raise PreconditionFailedError()
    db.flush()


def decline_pending_for_booking(db: Session, booking_id: UUID) -> int:
    """Decline every still-pending proposal of a booking. Flushes, does not commit."""
    result = db.execute(
        update(PendingProposal)
        .where(
            PendingProposal.booking_id == booking_id,
            PendingProposal.status == ProposalStatus.PENDING.value,
        )
        .values(
            status=ProposalStatus.DECLINED.value,
            approved_by=None,
            decision_at=datetime.now(timezone.utc),
        )
    )
    db.flush()
    if result.rowcount:
        logger.info(
            "Declined %s open proposals",
            result.rowcount,
            extra=build_log_context(booking_id=booking_id),
        )
    return result.rowcount


def expire_stale_proposals(db: Session, older_than: datetime) -> int:
    """Expire pending proposals created before `older_than`. Returns count."""
    result = db.execute(
        update(PendingProposal)
        .where(
            PendingProposal.status == ProposalStatus.PENDING.value,
            PendingProposal.created_at < older_than,
        )
        .values(
            status=ProposalStatus.EXPIRED.value,
            decision_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    updated = result.rowcount
    if updated:
        db.commit()
        logger.info("Expired %s stale proposals", updated)
    return updated
