"""Tests for the claim-before-send notification ledger."""

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from rescheduler.db.base import Base
from rescheduler.db.enums import IcsMethod, NotificationStatus
from rescheduler.db.models import NotificationSend
from rescheduler.services import notification_ledger
from rescheduler.services.notification_ledger import NotificationSendKey


KEY = NotificationSendKey(
    uid="u1@rescheduler",
    sequence=0,
    attendee_email="a@x",
    method=IcsMethod.REQUEST,
)


def _count(db) -> int:
    return db.execute(select(func.count()).select_from(NotificationSend)).scalar_one()


def test_claim_send_then_duplicate_is_suppressed(db):
    first = notification_ledger.claim_send(db, KEY)
    assert first.already_sent is False
    assert first.record.status == NotificationStatus.PENDING.value

    notification_ledger.mark_sent(db, first.record.id, "pm-1")

    second = notification_ledger.claim_send(db, KEY)
    assert second.already_sent is True
    assert second.record.id == first.record.id
    assert second.record.provider_message_id == "pm-1"
    assert _count(db) == 1


def test_claim_normalizes_attendee_email(db):
    first = notification_ledger.claim_send(db, KEY._replace(attendee_email="A@X "))
    second = notification_ledger.claim_send(db, KEY)
    assert first.record.id == second.record.id
    assert second.record.attendee_email == "a@x"


def test_each_key_component_is_distinct(db):
    notification_ledger.claim_send(db, KEY)
    notification_ledger.claim_send(db, KEY._replace(sequence=1))
    notification_ledger.claim_send(db, KEY._replace(method=IcsMethod.CANCEL))
    notification_ledger.claim_send(db, KEY._replace(attendee_email="b@x"))
    notification_ledger.claim_send(db, KEY._replace(uid="u2@rescheduler"))
    assert _count(db) == 5


def test_mark_sent_is_idempotent(db):
    claim = notification_ledger.claim_send(db, KEY)

    notification_ledger.mark_sent(db, claim.record.id, "pm-1")
    record = notification_ledger.mark_sent(db, claim.record.id, "pm-1")

    assert record.status == NotificationStatus.SENT.value
    assert record.provider_message_id == "pm-1"


def test_record_failure_leaves_key_retryable(db):
    claim = notification_ledger.claim_send(db, KEY)

    record = notification_ledger.record_failure(db, claim.record.id, "timeout")
    assert record.status == NotificationStatus.FAILED.value
    assert record.attempts == 1
    assert record.last_error == "timeout"

    retry = notification_ledger.claim_send(db, KEY)
    assert retry.already_sent is False
    assert retry.record.id == claim.record.id

    record = notification_ledger.record_failure(db, claim.record.id, "x" * 5000)
    assert record.attempts == 2
    assert len(record.last_error) == notification_ledger.MAX_ERROR_LENGTH

    record = notification_ledger.mark_sent(db, claim.record.id, "pm-2")
    assert record.status == NotificationStatus.SENT.value
    assert record.last_error is None


def test_record_failure_does_not_downgrade_sent(db):
    claim = notification_ledger.claim_send(db, KEY)
    notification_ledger.mark_sent(db, claim.record.id, "pm-1")

    record = notification_ledger.record_failure(db, claim.record.id, "late failure")

    assert record.status == NotificationStatus.SENT.value
    assert record.attempts == 0


def test_idempotency_key_is_derived_from_claim_key():
    assert KEY.idempotency_key() == "ics/u1@rescheduler/0/REQUEST/a@x"
    assert KEY._replace(attendee_email="A@X").idempotency_key() == KEY.idempotency_key()


def test_concurrent_claims_converge_on_one_row(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def claim(_):
        with Session() as session:
            return notification_ledger.claim_send(session, KEY).record.id

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = set(pool.map(claim, range(16)))

    with Session() as session:
        assert _count(session) == 1
    assert len(ids) == 1
    engine.dispose()


@pytest.mark.parametrize("method", ["REQUEST", "CANCEL"])
def test_method_accepts_plain_strings(db, method):
    claim = notification_ledger.claim_send(db, KEY._replace(method=method))
    assert claim.record.method == method
