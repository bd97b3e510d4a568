"""Booking context builder - who is involved in a booking and when.

Resolves the host/guest identities and the organizer address so the
notification service can build one invite per attendee.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from rescheduler.db.enums import ActorRole
from rescheduler.db.models import Booking
from rescheduler.services.ics_builder import Attendee
from rescheduler.services.identity_service import IdentityLookup


_NAMED_ADDRESS = re.compile(r"^(.*)<(.+?)>\s*$")


@dataclass(frozen=True)
class BookingContext:
    booking_id: UUID
    ics_uid: str
    sequence: int
    start_utc: datetime
    end_utc: datetime
    organizer: Attendee
    host: Attendee
    guest: Attendee

    def attendee_for(self, role: ActorRole) -> Attendee:
        return self.host if role == ActorRole.HOST else self.guest

    def role_of(self, email: str) -> ActorRole:
        if email.strip().lower() == self.host.email.strip().lower():
            return ActorRole.HOST
        return ActorRole.GUEST

    @property
    def attendees(self) -> dict[ActorRole, Attendee]:
        return {ActorRole.HOST: self.host, ActorRole.GUEST: self.guest}


def parse_organizer(from_address: str) -> Attendee:
    """Parse `Name <email>` (or a bare email) into an Attendee."""
    if not from_address or not from_address.strip():
        raise ValueError("NOTIFICATIONS_FROM_EMAIL is required")

    match = _NAMED_ADDRESS.match(from_address)
    if match:
        name = match.group(1).strip().strip('"')
        email = match.group(2).strip()
        return Attendee(email=email, name=name or None)
    return Attendee(email=from_address.strip())


def build_booking_context(
    booking: Booking,
    identity: IdentityLookup,
    organizer: Attendee,
) -> BookingContext:
    host = Attendee(
        email=identity.get_email_by_user_id(booking.host_id),
        name=identity.get_display_name_by_user_id(booking.host_id),
    )
    guest = Attendee(
        email=identity.get_email_by_user_id(booking.guest_id),
        name=identity.get_display_name_by_user_id(booking.guest_id),
    )
    return BookingContext(
        booking_id=booking.id,
        ics_uid=booking.ics_uid,
        sequence=booking.ics_sequence or 0,
        start_utc=booking.start_utc,
        end_utc=booking.end_utc,
        organizer=organizer,
        host=host,
        guest=guest,
    )
