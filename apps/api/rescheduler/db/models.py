"""SQLAlchemy ORM models for bookings, magic links, proposals and notification sends."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rescheduler.db.base import Base
from rescheduler.db.enums import (
    DEFAULT_PROPOSAL_STATUS,
    BookingStatus,
    NotificationStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Participants & Bookings
# =============================================================================

class Participant(Base):
    """
    Directory entry for a host or guest.

    Read-only from this service's point of view; profiles are managed elsewhere.
    """

    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("email", name="uq_participant_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


class Booking(Base):
    """
    A booked two-party session and its calendar identity.

    ics_uid never changes; ics_sequence is bumped on every confirmed
    reschedule or cancellation so calendar clients can order updates.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("ics_uid", name="uq_booking_ics_uid"),
        Index("idx_bookings_host", "host_id"),
        Index("idx_bookings_guest", "guest_id"),
        CheckConstraint("ics_sequence >= 0", name="ck_booking_sequence_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ics_uid: Mapped[str] = mapped_column(String(255), nullable=False)
    ics_sequence: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )

    # Scheduling (stored in UTC)
    start_utc: Mapped[datetime] = mapped_column(nullable=False)
    end_utc: Mapped[datetime] = mapped_column(nullable=False)

    host_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("participants.id", ondelete="RESTRICT"), nullable=False
    )
    guest_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("participants.id", ondelete="RESTRICT"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=BookingStatus.BOOKED.value,
        server_default=text(f"'{BookingStatus.BOOKED.value}'"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    host: Mapped["Participant"] = relationship(foreign_keys=[host_id])
    guest: Mapped["Participant"] = relationship(foreign_keys=[guest_id])


# =============================================================================
# Magic Links
# =============================================================================

class MagicLink(Base):
    """
    Ledger entry for an issued capability token.

    Only the SHA-256 of the token is stored. A row with used_at set or
    expires_at in the past is inactive. Rows are never deleted (audit trail).
    """

    __tablename__ = "magic_links"
    __table_args__ = (
        UniqueConstraint("token_hash", name="uq_magic_link_token_hash"),
        Index("idx_magic_links_booking", "booking_id", "purpose"),
        Index("idx_magic_links_proposal", "proposal_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    uid: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(String(40), nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    proposal_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("pending_proposals.id", ondelete="SET NULL"), nullable=True
    )
    actor_email: Mapped[str] = mapped_column(String(320), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(10), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


# =============================================================================
# Proposals
# =============================================================================

class PendingProposal(Base):
    """
    A proposed new time for a booking.

    Lifecycle: pending → approved | declined | expired (terminal, immutable).
    """

    __tablename__ = "pending_proposals"
    __table_args__ = (
        Index("idx_pending_proposals_booking", "booking_id", "status"),
        Index("idx_pending_proposals_status_created", "status", "created_at"),
        CheckConstraint(
            "proposed_end_utc > proposed_start_utc", name="ck_proposal_valid_interval"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    uid: Mapped[str] = mapped_column(String(255), nullable=False)

    proposed_by: Mapped[str] = mapped_column(String(10), nullable=False)
    proposer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    proposed_start_utc: Mapped[datetime] = mapped_column(nullable=False)
    proposed_end_utc: Mapped[datetime] = mapped_column(nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_PROPOSAL_STATUS.value,
        server_default=text(f"'{DEFAULT_PROPOSAL_STATUS.value}'"),
        nullable=False,
    )
    approved_by: Mapped[str | None] = mapped_column(String(10), nullable=True)
    decision_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    booking: Mapped["Booking"] = relationship()


# =============================================================================
# Notification Sends (claim-before-send ledger)
# =============================================================================

class NotificationSend(Base):
    """
    Idempotency ledger for calendar notifications.

    One row per (uid, sequence, attendee_email, method). Whoever claims the
    row first performs the send; later claimants see status=sent and skip.
    """

    __tablename__ = "notification_sends"
    __table_args__ = (
        UniqueConstraint(
            "uid", "sequence", "attendee_email", "method",
            name="uq_notification_send_key",
        ),
        Index("idx_notification_sends_status", "status"),
        CheckConstraint("attempts >= 0", name="ck_notification_attempts_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    uid: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    attendee_email: Mapped[str] = mapped_column(String(320), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=NotificationStatus.PENDING.value,
        server_default=text(f"'{NotificationStatus.PENDING.value}'"),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )
