"""Reschedule negotiation - propose / decide over magic links.

Flow:
1. Either party opens a propose link from their invite and submits a new time.
2. The counterparty receives a single-use decide link.
3. They agree (booking moves, sequence bumps), counter-propose (new
   proposal, decide link goes back), or cancel the booking.

State transitions are committed before any email goes out. A failed
decision rolls back as a unit, so the decide token is only burnt when the
decision actually lands.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from rescheduler.core.structured_logging import build_log_context
from rescheduler.db.enums import (
    ActorRole,
    BookingStatus,
    DecisionAction,
    IcsMethod,
    MagicLinkPurpose,
    ProposalStatus,
)
from rescheduler.db.models import Booking, PendingProposal
from rescheduler.services import (
    booking_service,
    magic_link_service,
    notification_service,
    proposal_service,
)
from rescheduler.services.delivery_service import DeliveryChannel
from rescheduler.services.errors import (
    IdentityNotFoundError,
    InvalidProposalError,
    PreconditionFailedError,
    ProposalNotFoundError,
    PurposeMismatchError,
)
from rescheduler.services.identity_service import IdentityLookup
from rescheduler.services.notification_service import NotificationConfig
from rescheduler.services.token_codec import MagicTokenPayload, TokenCodec, hash_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingView:
    booking_id: str
    uid: str
    start_utc: datetime
    end_utc: datetime
    status: str
    actor_role: ActorRole


@dataclass(frozen=True)
class DecisionView:
    booking_id: str
    proposal_id: str
    current_start_utc: datetime
    current_end_utc: datetime
    proposed_start_utc: datetime
    proposed_end_utc: datetime
    proposed_by: str
    note: str | None
    status: str
    actor_role: ActorRole


@dataclass(frozen=True)
class DecisionResult:
    ok: bool
    status: ProposalStatus
    booking_sequence: int
    counter_proposal_id: str | None = None


class RescheduleNegotiator:
    """
    Propose/decide state machine for one request.

    Collaborators are injected so the HTTP layer and tests can supply
    their own delivery channel and identity directory.
    """

    def __init__(
        self,
        db: Session,
        *,
        codec: TokenCodec,
        identity: IdentityLookup,
        channel: DeliveryChannel,
        config: NotificationConfig,
    ):
        self.db = db
        self.codec = codec
        self.identity = identity
        self.channel = channel
        self.config = config

    # -------------------------------------------------------------------------
    # Views (tokens are not consumed)
    # -------------------------------------------------------------------------

    def _booking_for(self, payload: MagicTokenPayload) -> Booking:
        booking = booking_service.require_booking(self.db, payload.booking_id)
        if booking.ics_uid != payload.uid:
            # Token minted for a different calendar identity
            raise PurposeMismatchError()
        return booking

    def view_booking(self, token: str) -> BookingView:
        payload = magic_link_service.validate_magic_token(
            self.db, self.codec, token, MagicLinkPurpose.RESCHEDULE_PROPOSE
        )
        booking = self._booking_for(payload)
        return BookingView(
            booking_id=str(booking.id),
            uid=booking.ics_uid,
            start_utc=booking.start_utc,
            end_utc=booking.end_utc,
            status=booking.status,
            actor_role=payload.actor_role,
        )

    def _proposal_for(self, payload: MagicTokenPayload) -> PendingProposal:
        if payload.proposal_id is None:
            raise ProposalNotFoundError()
        proposal = proposal_service.require_proposal(self.db, payload.proposal_id)
        if proposal.booking_id != payload.booking_id:
            raise ProposalNotFoundError()
        return proposal

    def view_decision(self, token: str) -> DecisionView:
        payload = magic_link_service.validate_magic_token(
            self.db, self.codec, token, MagicLinkPurpose.RESCHEDULE_DECIDE
        )
        booking = self._booking_for(payload)
        proposal = self._proposal_for(payload)
        return DecisionView(
            booking_id=str(booking.id),
            proposal_id=str(proposal.id),
            current_start_utc=booking.start_utc,
            current_end_utc=booking.end_utc,
            proposed_start_utc=proposal.proposed_start_utc,
            proposed_end_utc=proposal.proposed_end_utc,
            proposed_by=proposal.proposed_by,
            note=proposal.note,
            status=proposal.status,
            actor_role=payload.actor_role,
        )

    # -------------------------------------------------------------------------
    # Propose
    # -------------------------------------------------------------------------

    async def propose(
        self,
        token: str,
        proposed_start_utc: datetime,
        proposed_end_utc: datetime,
        note: str | None = None,
    ) -> PendingProposal:
        """
        Submit a new time for the booking behind a propose token.

        The propose token stays valid; the counterparty gets a decide link.
        """
        payload = magic_link_service.validate_magic_token(
            self.db, self.codec, token, MagicLinkPurpose.RESCHEDULE_PROPOSE
        )
        booking = self._booking_for(payload)
        if booking.status != BookingStatus.BOOKED.value:
            raise PreconditionFailedError("Booking is no longer active")

        proposal = proposal_service.create_proposal(
            self.db,
            booking=booking,
            proposed_by=payload.actor_role,
            proposer_email=payload.actor_email,
            proposed_start_utc=proposed_start_utc,
            proposed_end_utc=proposed_end_utc,
            note=note,
        )
        self.db.commit()

        await self._request_decision(proposal, booking)
        return proposal

    # -------------------------------------------------------------------------
    # Decide
    # -------------------------------------------------------------------------

    async def decide(
        self,
        token: str,
        action: DecisionAction,
        proposed_start_utc: datetime | None = None,
        proposed_end_utc: datetime | None = None,
        note: str | None = None,
    ) -> DecisionResult:
        """
        Apply a decision to the proposal behind a decide token.

        Raises:
            MagicLinkUsedError: token already consumed
            PreconditionFailedError: proposal no longer pending (first writer wins)
            InvalidProposalError: counter-proposal without a valid interval
        """
        action = DecisionAction(action)
        payload = magic_link_service.validate_magic_token(
            self.db, self.codec, token, MagicLinkPurpose.RESCHEDULE_DECIDE
        )
        booking = self._booking_for(payload)
        proposal = self._proposal_for(payload)
        if proposal.status != ProposalStatus.PENDING.value:
            raise PreconditionFailedError()

        decider = payload.actor_role
        if action == DecisionAction.PROPOSE:
            if booking.status != BookingStatus.BOOKED.value:
                raise PreconditionFailedError("Booking is no longer active")
            if proposed_start_utc is None or proposed_end_utc is None:
                raise InvalidProposalError("A counter-proposal needs a start and end time")
            proposed_start_utc, proposed_end_utc = booking_service.validate_interval(
                proposed_start_utc, proposed_end_utc
            )

        log_ctx = build_log_context(
            booking_id=booking.id,
            proposal_id=proposal.id,
            purpose=MagicLinkPurpose.RESCHEDULE_DECIDE.value,
            actor_role=decider.value,
        )

        counter: PendingProposal | None = None
        try:
            magic_link_service.mark_used(self.db, hash_token(token))

            if action == DecisionAction.AGREE:
                status = ProposalStatus.APPROVED
                proposal_service.mark_proposal_decision(
                    self.db, proposal.id, status, approved_by=decider
                )
                booking = booking_service.apply_reschedule(
                    self.db,
                    booking.id,
                    proposal.proposed_start_utc,
                    proposal.proposed_end_utc,
                )
            elif action == DecisionAction.CANCEL:
                status = ProposalStatus.DECLINED
                proposal_service.mark_proposal_decision(
                    self.db, proposal.id, status, approved_by=None
                )
                booking = booking_service.cancel_booking(self.db, booking.id)
                # Other open proposals die with the booking; their decide links
                # stay unused so holders see "no longer pending", not "used".
                proposal_service.decline_pending_for_booking(self.db, booking.id)
                magic_link_service.invalidate_booking_links(
                    self.db, booking.id, MagicLinkPurpose.RESCHEDULE_PROPOSE
                )
            else:
                status = ProposalStatus.DECLINED
                proposal_service.mark_proposal_decision(
                    self.db, proposal.id, status, approved_by=None
                )
                counter = proposal_service.create_proposal(
                    self.db,
                    booking=booking,
                    proposed_by=decider,
                    proposer_email=payload.actor_email,
                    proposed_start_utc=proposed_start_utc,
                    proposed_end_utc=proposed_end_utc,
                    note=note,
                )
            self.db.commit()
        except Exception as exc:
            logger.warning(
                "Proposal decision failed: %s", exc.__class__.__name__, extra=log_ctx
            )
            self.db.rollback()
            raise

        logger.info("Proposal decided: %s", action.value, extra=log_ctx)

        if action == DecisionAction.AGREE:
            await self._notify(booking, IcsMethod.REQUEST)
        elif action == DecisionAction.CANCEL:
            await self._notify(booking, IcsMethod.CANCEL)
        elif counter is not None:
            await self._request_decision(counter, booking)

        return DecisionResult(
            ok=True,
            status=status,
            booking_sequence=booking.ics_sequence,
            counter_proposal_id=str(counter.id) if counter else None,
        )

    # -------------------------------------------------------------------------
    # Post-commit notifications (never undo the state transition)
    # -------------------------------------------------------------------------

    async def _request_decision(self, proposal: PendingProposal, booking: Booking) -> None:
        try:
            await notification_service.send_decision_request(
                self.db,
                proposal,
                booking,
                codec=self.codec,
                identity=self.identity,
                channel=self.channel,
                config=self.config,
            )
        except IdentityNotFoundError:
            logger.exception(
                "Decision request not sent: participant lookup failed",
                extra=build_log_context(booking_id=booking.id, proposal_id=proposal.id),
            )
        except Exception as exc:
            self.db.rollback()
            logger.exception(
                "Decision request not sent: %s",
                exc.__class__.__name__,
                extra=build_log_context(booking_id=booking.id, proposal_id=proposal.id),
            )

    async def _notify(self, booking: Booking, method: IcsMethod) -> None:
        try:
            outcomes = await notification_service.dispatch_calendar_update(
                self.db,
                booking,
                method,
                codec=self.codec,
                identity=self.identity,
                channel=self.channel,
                config=self.config,
            )
        except IdentityNotFoundError:
            logger.exception(
                "Calendar update not sent: participant lookup failed",
                extra=build_log_context(booking_id=booking.id, method=method.value),
            )
            return
        except Exception as exc:
            self.db.rollback()
            logger.exception(
                "Calendar update not sent: %s",
                exc.__class__.__name__,
                extra=build_log_context(booking_id=booking.id, method=method.value),
            )
            return
        failed = [o for o in outcomes if not o.sent]
        if failed:
            logger.warning(
                "%s of %s calendar notifications failed",
                len(failed),
                len(outcomes),
                extra=build_log_context(
                    booking_id=booking.id, method=method.value, sequence=booking.ics_sequence
                ),
            )


def expire_stale_proposals(
    db: Session,
    *,
    ttl_hours: int,
    now: datetime | None = None,
) -> int:
    """Sweep pending proposals older than ttl_hours to expired."""
    now = now or datetime.now(timezone.utc)
    return proposal_service.expire_stale_proposals(db, now - timedelta(hours=ttl_hours))
