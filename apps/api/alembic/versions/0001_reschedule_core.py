"""Reschedule core tables: participants, bookings, magic links, proposals, notification sends.

Revision ID: 0001_reschedule_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_reschedule_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create the reschedule negotiation tables."""

    op.create_table(
        "participants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email", name="uq_participant_email"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("ics_uid", sa.String(255), nullable=False),
        sa.Column("ics_sequence", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("start_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "host_id",
            sa.Uuid(),
            sa.ForeignKey("participants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "guest_id",
            sa.Uuid(),
            sa.ForeignKey("participants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), server_default=sa.text("'booked'"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("ics_uid", name="uq_booking_ics_uid"),
        sa.CheckConstraint("ics_sequence >= 0", name="ck_booking_sequence_non_negative"),
    )
    op.create_index("idx_bookings_host", "bookings", ["host_id"])
    op.create_index("idx_bookings_guest", "bookings", ["guest_id"])

    op.create_table(
        "pending_proposals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "booking_id",
            sa.Uuid(),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("uid", sa.String(255), nullable=False),
        sa.Column("proposed_by", sa.String(10), nullable=False),
        sa.Column("proposer_email", sa.String(320), nullable=False),
        sa.Column("proposed_start_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("proposed_end_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("approved_by", sa.String(10), nullable=True),
        sa.Column("decision_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "proposed_end_utc > proposed_start_utc", name="ck_proposal_valid_interval"
        ),
    )
    op.create_index(
        "idx_pending_proposals_booking", "pending_proposals", ["booking_id", "status"]
    )
    op.create_index(
        "idx_pending_proposals_status_created", "pending_proposals", ["status", "created_at"]
    )

    op.create_table(
        "magic_links",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("uid", sa.String(255), nullable=False),
        sa.Column("purpose", sa.String(40), nullable=False),
        sa.Column(
            "booking_id",
            sa.Uuid(),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "proposal_id",
            sa.Uuid(),
            sa.ForeignKey("pending_proposals.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("actor_email", sa.String(320), nullable=False),
        sa.Column("actor_role", sa.String(10), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("token_hash", name="uq_magic_link_token_hash"),
    )
    op.create_index("idx_magic_links_booking", "magic_links", ["booking_id", "purpose"])
    op.create_index("idx_magic_links_proposal", "magic_links", ["proposal_id"])

    op.create_table(
        "notification_sends",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("uid", sa.String(255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("attendee_email", sa.String(320), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "uid", "sequence", "attendee_email", "method",
            name="uq_notification_send_key",
        ),
        sa.CheckConstraint("attempts >= 0", name="ck_notification_attempts_non_negative"),
    )
    op.create_index("idx_notification_sends_status", "notification_sends", ["status"])


def downgrade():
    op.drop_index("idx_notification_sends_status", table_name="notification_sends")
    op.drop_table("notification_sends")
    op.drop_index("idx_magic_links_proposal", table_name="magic_links")
    op.drop_index("idx_magic_links_booking", table_name="magic_links")
    op.drop_table("magic_links")
    op.drop_index("idx_pending_proposals_status_created", table_name="pending_proposals")
    op.drop_index("idx_pending_proposals_booking", table_name="pending_proposals")
    op.drop_table("pending_proposals")
    op.drop_index("idx_bookings_guest", table_name="bookings")
    op.drop_index("idx_bookings_host", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("participants")
