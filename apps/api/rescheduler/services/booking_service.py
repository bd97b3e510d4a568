"""Booking service - the booking row and its calendar revision counter.

All mutations are single-row conditional updates that bump ics_sequence in
SQL (`ics_sequence = ics_sequence + 1`) so concurrent writers cannot both
reuse the same revision number.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rescheduler.core.structured_logging import build_log_context
from rescheduler.db.enums import BookingStatus
from rescheduler.db.models import Booking
from rescheduler.services.errors import (
    BookingNotFoundError,
    InvalidProposalError,
    PreconditionFailedError,
)

logger = logging.getLogger(__name__)

ICS_UID_DOMAIN = "rescheduler"


def ensure_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime (naive input is taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_interval(start_utc: datetime, end_utc: datetime) -> tuple[datetime, datetime]:
    start_utc = ensure_utc(start_utc)
    end_utc = ensure_utc(end_utc)
    if end_utc <= start_utc:
        raise InvalidProposalError("End time must be after start time")
    return start_utc, end_utc


def generate_ics_uid() -> str:
    """Stable calendar UID for a new booking."""
    return f"{uuid.uuid4().hex}@{ICS_UID_DOMAIN}"


def get_booking(db: Session, booking_id: UUID) -> Booking | None:
    return db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def require_booking(db: Session, booking_id: UUID) -> Booking:
    booking = get_booking(db, booking_id)
    if not booking:
        raise BookingNotFoundError()
    return booking


def book_session(
    db: Session,
    host_id: UUID,
    guest_id: UUID,
    start_utc: datetime,
    end_utc: datetime,
) -> Booking:
    """Create a booking at revision 0."""
    if host_id == guest_id:
        raise ValueError("Host and guest must be different participants")
    start_utc, end_utc = validate_interval(start_utc, end_utc)

    booking = Booking(
        ics_uid=generate_ics_uid(),
        ics_sequence=0,
        start_utc=start_utc,
        end_utc=end_utc,
        host_id=host_id,
        guest_id=guest_id,
        status=BookingStatus.BOOKED.value,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def apply_reschedule(
    db: Session,
    booking_id: UUID,
    start_utc: datetime,
    end_utc: datetime,
) -> Booking:
    """Move a booked session and bump its revision. Flushes, does not commit."""
    start_utc, end_utc = validate_interval(start_utc, end_utc)
    result = db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.BOOKED.value,
        )
        .values(
            start_utc=start_utc,
            end_utc=end_utc,
            ics_sequence=Booking.ics_sequence + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise PreconditionFailedError("Booking is no longer active")

    booking = require_booking(db, booking_id)
    logger.info(
        "Booking rescheduled",
        extra=build_log_context(booking_id=booking_id, sequence=booking.ics_sequence),
    )
    return booking


def cancel_booking(db: Session, booking_id: UUID) -> Booking:
    """Cancel a booked session and bump its revision. Flushes, does not commit."""
    result = db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.BOOKED.value,
        )
        .values(
            status=BookingStatus.CANCELLED.value,
            ics_sequence=Booking.ics_sequence + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise PreconditionFailedError("Booking is no longer active")

    booking = require_booking(db, booking_id)
    logger.info(
        "Booking cancelled",
        extra=build_log_context(booking_id=booking_id, sequence=booking.ics_sequence),
    )
    return booking
