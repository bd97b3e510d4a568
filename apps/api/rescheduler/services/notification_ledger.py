"""Notification claim ledger - claim-before-send idempotency for calendar invites.

A notification is identified by (uid, sequence, attendee_email, method).
Callers claim the key before sending; if the claimed row is already `sent`
the send is skipped. Two racing claimants converge on the same row. Both
may observe `pending` inside a narrow window before either marks it sent,
so delivery is at-least-once, bounded by the key rather than by retries.

Each function here is its own unit of work and commits.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import NamedTuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rescheduler.core.structured_logging import build_log_context
from rescheduler.db.enums import IcsMethod, NotificationStatus
from rescheduler.db.models import NotificationSend

logger = logging.getLogger(__name__)

KEY_COLUMNS = ("uid", "sequence", "attendee_email", "method")
MAX_ERROR_LENGTH = 1000


class NotificationSendKey(NamedTuple):
    """Identity of one calendar notification."""
    uid: str
    sequence: int
    attendee_email: str
    method: IcsMethod

    def normalized(self) -> "NotificationSendKey":
        return self._replace(
            attendee_email=self.attendee_email.strip().lower(),
            method=IcsMethod(self.method),
        )

    def idempotency_key(self) -> str:
        """Stable key for the delivery provider's own dedupe."""
        key = self.normalized()
        return f"ics/{key.uid}/{key.sequence}/{key.method.value}/{key.attendee_email}"


class ClaimResult(NamedTuple):
    already_sent: bool
    record: NotificationSend


def _key_filter(key: NotificationSendKey):
    return (
        NotificationSend.uid == key.uid,
        NotificationSend.sequence == key.sequence,
        NotificationSend.attendee_email == key.attendee_email,
        NotificationSend.method == key.method.value,
    )


def get_send_by_key(db: Session, key: NotificationSendKey) -> NotificationSend | None:
    key = key.normalized()
    return db.execute(
        select(NotificationSend)
        .where(*_key_filter(key))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def get_send(db: Session, record_id: UUID) -> NotificationSend | None:
    return db.execute(
        select(NotificationSend)
        .where(NotificationSend.id == record_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _insert_ignoring_conflict(db: Session, key: NotificationSendKey) -> None:
    now = datetime.now(timezone.utc)
    values = {
        "id": uuid.uuid4(),
        "uid": key.uid,
        "sequence": key.sequence,
        "attendee_email": key.attendee_email,
        "method": key.method.value,
        "status": NotificationStatus.PENDING.value,
        "attempts": 0,
        "created_at": now,
        "updated_at": now,
    }

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(NotificationSend).values(**values).on_conflict_do_nothing(
            index_elements=list(KEY_COLUMNS)
        )
        db.execute(stmt)
        return
    if dialect == "sqlite":
        stmt = sqlite_insert(NotificationSend).values(**values).on_conflict_do_nothing(
            index_elements=list(KEY_COLUMNS)
        )
        db.execute(stmt)
        return

    # No native upsert: let the unique constraint decide, then fetch.
    try:
        with db.begin_nested():
            db.add(NotificationSend(**values))
    except IntegrityError:
        logger.debug("Notification send already claimed (unique key)")


def claim_send(db: Session, key: NotificationSendKey) -> ClaimResult:
    """
    Insert-or-fetch the ledger row for a notification.

    Never raises on a duplicate key. Callers must skip the send when
    `already_sent` is True and reuse `record.provider_message_id`.
    """
    key = key.normalized()
    _insert_ignoring_conflict(db, key)
    db.commit()

    record = get_send_by_key(db, key)
    if record is None:
        # Only possible if the row vanished between insert and read
        raise RuntimeError("Failed to claim notification send record")

    already_sent = record.status == NotificationStatus.SENT.value
    if already_sent:
        logger.info(
            "Notification already sent, suppressing duplicate",
            extra=build_log_context(method=key.method.value, sequence=key.sequence),
        )
    return ClaimResult(already_sent=already_sent, record=record)


def mark_sent(db: Session, record_id: UUID, provider_message_id: str | None) -> NotificationSend:
    """Record a successful send. Safe to call more than once."""
    db.execute(
        update(NotificationSend)
        .where(NotificationSend.id == record_id)
        .values(
            status=NotificationStatus.SENT.value,
            provider_message_id=provider_message_id,
            last_error=None,
            updated_at=datetime.now(timezone.utc),
        )
    )
    db.commit()
    record = get_send(db, record_id)
    if record is None:
        raise RuntimeError("Notification send record not found")
    return record


def record_failure(db: Session, record_id: UUID, error: str) -> NotificationSend:
    """
    Record a failed attempt.

    Leaves the row retryable: a later claim_send on the same key sees
    `failed` (not `sent`) and may resend.
    """
    db.execute(
        update(NotificationSend)
        .where(
            NotificationSend.id == record_id,
            NotificationSend.status != NotificationStatus.SENT.value,
        )
        .values(
            attempts=NotificationSend.attempts + 1,
            status=NotificationStatus.FAILED.value,
            last_error=(error or "unknown error")[:MAX_ERROR_LENGTH],
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    record = get_send(db, record_id)
    if record is None:
        raise RuntimeError("Notification send record not found")
    return record
