"""Notification service - calendar invites and decision requests.

Provides:
- Calendar invite dispatch (REQUEST / CANCEL) with claim-before-send
- Decision-request emails carrying a single-use decide link
- Email subject/body building with per-attendee reschedule links

Delivery failures are recorded and logged, never raised: by the time a
notification goes out the booking state has already been committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

from sqlalchemy.orm import Session

from rescheduler.core.structured_logging import build_log_context
from rescheduler.db.enums import ActorRole, IcsMethod, MagicLinkPurpose
from rescheduler.db.models import Booking, PendingProposal
from rescheduler.services import magic_link_service, notification_ledger
from rescheduler.services.booking_context import BookingContext, build_booking_context
from rescheduler.services.delivery_service import DeliveryChannel
from rescheduler.services.errors import DeliveryFailedError
from rescheduler.services.ics_builder import Attendee, build_ics
from rescheduler.services.identity_service import IdentityLookup
from rescheduler.services.token_codec import MagicTokenPayload, TokenCodec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationConfig:
    """Static notification settings (built from app settings in deps)."""
    frontend_url: str
    organizer: Attendee
    session_title: str = "Practice Session"
    enabled: bool = True


@dataclass(frozen=True)
class EmailMessage:
    to: Attendee
    subject: str
    text: str
    ics_body: str | None = None
    method: IcsMethod | None = None


@dataclass(frozen=True)
class DispatchOutcome:
    """What happened for one attendee."""
    attendee_email: str
    method: IcsMethod
    sequence: int
    sent: bool
    skipped_duplicate: bool = False
    provider_message_id: str | None = None
    error: str | None = None


def build_reschedule_url(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/reschedule?token={quote(token, safe='')}"


def build_decision_url(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/decision?t={quote(token, safe='')}"


def _base_subject(config: NotificationConfig, counterparty_name: str | None) -> str:
    if counterparty_name:
        return f"{config.session_title} with {counterparty_name}"
    return config.session_title


def build_email(
    db: Session,
    *,
    codec: TokenCodec,
    config: NotificationConfig,
    ctx: BookingContext,
    attendee: Attendee,
    method: IcsMethod,
) -> EmailMessage:
    """
    Build the invite email for one attendee.

    REQUEST invites carry a fresh propose-purpose link so the recipient can
    ask for a different time. The ICS lists only this attendee.
    """
    role = ctx.role_of(attendee.email)
    counterparty = ctx.attendee_for(role.counterparty)
    subject = _base_subject(config, counterparty.name)

    if method == IcsMethod.CANCEL:
        prefix = "Cancelled"
    elif ctx.sequence > 0:
        prefix = "Rescheduled"
    else:
        prefix = "Booked"
    subject = f"{prefix}: {subject}"

    if method == IcsMethod.CANCEL:
        body = "Your session has been cancelled."
    else:
        issued = magic_link_service.issue_magic_link(
            db,
            codec,
            MagicTokenPayload(
                uid=ctx.ics_uid,
                booking_id=ctx.booking_id,
                actor_email=attendee.email,
                actor_role=role,
                purpose=MagicLinkPurpose.RESCHEDULE_PROPOSE,
            ),
        )
        db.commit()
        link = build_reschedule_url(config.frontend_url, issued.token)
        body = (
            "You have a scheduled session.\n\n"
            f"If you need to reschedule, use this link: {link}"
        )

    ics = build_ics(
        uid=ctx.ics_uid,
        method=method,
        sequence=ctx.sequence,
        start_utc=ctx.start_utc,
        end_utc=ctx.end_utc,
        summary=subject,
        organizer=ctx.organizer,
        attendee=attendee,
        description=body,
    )
    return EmailMessage(to=attendee, subject=subject, text=body, ics_body=ics, method=method)


async def _deliver_to_attendee(
    db: Session,
    *,
    codec: TokenCodec,
    channel: DeliveryChannel,
    config: NotificationConfig,
    ctx: BookingContext,
    attendee: Attendee,
    method: IcsMethod,
) -> DispatchOutcome:
    key = notification_ledger.NotificationSendKey(
        uid=ctx.ics_uid,
        sequence=ctx.sequence,
        attendee_email=attendee.email,
        method=method,
    ).normalized()
    log_ctx = build_log_context(
        booking_id=ctx.booking_id, method=method.value, sequence=ctx.sequence
    )

    claim = notification_ledger.claim_send(db, key)
    if claim.already_sent:
        return DispatchOutcome(
            attendee_email=key.attendee_email,
            method=method,
            sequence=ctx.sequence,
            sent=True,
            skipped_duplicate=True,
            provider_message_id=claim.record.provider_message_id,
        )

    record_id = claim.record.id
    try:
        email = build_email(
            db, codec=codec, config=config, ctx=ctx, attendee=attendee, method=method
        )
        provider_message_id = await channel.send(
            to_email=attendee.email,
            subject=email.subject,
            text=email.text,
            ics_body=email.ics_body,
            method=method,
            idempotency_key=key.idempotency_key(),
        )
    except DeliveryFailedError as exc:
        error = str(exc)
        logger.warning("Calendar notification failed: %s", error, extra=log_ctx)
    except Exception as exc:
        # Unexpected failures are recorded like provider errors; the booking
        # state has already been committed.
        db.rollback()
        error = exc.__class__.__name__
        logger.exception("Calendar notification failed: %s", error, extra=log_ctx)
    else:
        error = None

    if error is not None:
        notification_ledger.record_failure(db, record_id, error)
        return DispatchOutcome(
            attendee_email=key.attendee_email,
            method=method,
            sequence=ctx.sequence,
            sent=False,
            error=error,
        )

    notification_ledger.mark_sent(db, record_id, provider_message_id)
    logger.info("Calendar notification sent", extra=log_ctx)
    return DispatchOutcome(
        attendee_email=key.attendee_email,
        method=method,
        sequence=ctx.sequence,
        sent=True,
        provider_message_id=provider_message_id,
    )


async def dispatch_calendar_update(
    db: Session,
    booking: Booking,
    method: IcsMethod,
    *,
    codec: TokenCodec,
    identity: IdentityLookup,
    channel: DeliveryChannel,
    config: NotificationConfig,
) -> list[DispatchOutcome]:
    """
    Send the current revision of a booking to host and guest.

    Each attendee goes through the claim ledger, so calling this again for
    the same (uid, sequence, method) only resends what has not been sent.
    """
    method = IcsMethod(method)
    ctx = build_booking_context(booking, identity, config.organizer)

    if not config.enabled:
        logger.info(
            "Notifications disabled, skipping calendar update (dry run)",
            extra=build_log_context(
                booking_id=booking.id, method=method.value, sequence=ctx.sequence
            ),
        )
        return []

    outcomes = []
    for attendee in (ctx.host, ctx.guest):
        outcomes.append(
            await _deliver_to_attendee(
                db,
                codec=codec,
                channel=channel,
                config=config,
                ctx=ctx,
                attendee=attendee,
                method=method,
            )
        )
    return outcomes


async def send_decision_request(
    db: Session,
    proposal: PendingProposal,
    booking: Booking,
    *,
    codec: TokenCodec,
    identity: IdentityLookup,
    channel: DeliveryChannel,
    config: NotificationConfig,
) -> magic_link_service.IssuedMagicLink:
    """
    Issue a decide link to the proposer's counterparty and email it.

    The link is committed before sending so it is valid even if the email
    fails and is re-sent out of band. Returns the issued link.
    """
    ctx = build_booking_context(booking, identity, config.organizer)
    proposer_role = ActorRole(proposal.proposed_by)
    recipient_role = proposer_role.counterparty
    recipient = ctx.attendee_for(recipient_role)
    proposer = ctx.attendee_for(proposer_role)

    issued = magic_link_service.issue_magic_link(
        db,
        codec,
        MagicTokenPayload(
            uid=booking.ics_uid,
            booking_id=booking.id,
            proposal_id=proposal.id,
            proposed_start_utc=proposal.proposed_start_utc,
            proposed_end_utc=proposal.proposed_end_utc,
            actor_email=recipient.email,
            actor_role=recipient_role,
            purpose=MagicLinkPurpose.RESCHEDULE_DECIDE,
        ),
    )
    db.commit()

    log_ctx = build_log_context(
        booking_id=booking.id, proposal_id=proposal.id, actor_role=recipient_role.value
    )
    if not config.enabled:
        logger.info("Notifications disabled, skipping decision request (dry run)", extra=log_ctx)
        return issued

    decision_url = build_decision_url(config.frontend_url, issued.token)
    subject = f"New Time Proposed: {_base_subject(config, proposer.name)}"
    text = f"A new time was proposed for your session.\n\nOpen to decide: {decision_url}"
    if proposal.note:
        text = f"{text}\n\nNote: {proposal.note}"

    try:
        await channel.send(
            to_email=recipient.email,
            subject=subject,
            text=text,
            idempotency_key=f"decision/{proposal.id}",
        )
    except DeliveryFailedError as exc:
        logger.warning("Decision request email failed: %s", exc, extra=log_ctx)
    except Exception as exc:
        logger.exception(
            "Decision request email failed: %s", exc.__class__.__name__, extra=log_ctx
        )
    else:
        logger.info("Decision request sent", extra=log_ctx)
    return issued
