"""Tests for the magic link ledger."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from rescheduler.db.enums import ActorRole, MagicLinkPurpose
from rescheduler.db.models import MagicLink
from rescheduler.services import magic_link_service
from rescheduler.services.errors import (
    MagicLinkExpiredError,
    MagicLinkNotFoundError,
    MagicLinkUsedError,
    PurposeMismatchError,
    TokenInactiveOrUnknownError,
)
from rescheduler.services.token_codec import TokenCodec, hash_token

from conftest import issue_token


def test_issue_stores_hash_not_token(db, codec, booking):
    token = issue_token(db, codec, booking, ActorRole.GUEST, MagicLinkPurpose.RESCHEDULE_PROPOSE)

    record = magic_link_service.get_magic_link_by_hash(db, hash_token(token))
    assert record is not None
    assert record.token_hash != token
    assert record.used_at is None
    assert record.actor_role == ActorRole.GUEST.value
    assert record.purpose == MagicLinkPurpose.RESCHEDULE_PROPOSE.value
    assert record.expires_at > datetime.now(timezone.utc)


def test_validate_returns_payload(db, codec, booking):
    token = issue_token(db, codec, booking, ActorRole.HOST, MagicLinkPurpose.RESCHEDULE_PROPOSE)

    payload = magic_link_service.validate_magic_token(
        db, codec, token, MagicLinkPurpose.RESCHEDULE_PROPOSE
    )

    assert payload.booking_id == booking.id
    assert payload.actor_email == "host@practice.test"


def test_validate_rejects_wrong_purpose(db, codec, booking):
    token = issue_token(db, codec, booking, ActorRole.HOST, MagicLinkPurpose.RESCHEDULE_PROPOSE)

    with pytest.raises(PurposeMismatchError):
        magic_link_service.validate_magic_token(
            db, codec, token, MagicLinkPurpose.RESCHEDULE_DECIDE
        )


def test_signed_but_unrecorded_token_is_not_found(db, codec, booking):
    token = codec.sign(
        {
            "uid": booking.ics_uid,
            "booking_id": booking.id,
            "actor_email": "guest@practice.test",
            "actor_role": ActorRole.GUEST,
            "purpose": MagicLinkPurpose.RESCHEDULE_PROPOSE,
        }
    )

    with pytest.raises(MagicLinkNotFoundError):
        magic_link_service.validate_magic_token(
            db, codec, token, MagicLinkPurpose.RESCHEDULE_PROPOSE
        )


def test_mark_used_is_single_use(db, codec, booking):
    token = issue_token(db, codec, booking, ActorRole.GUEST, MagicLinkPurpose.RESCHEDULE_DECIDE)
    token_hash = hash_token(token)

    magic_link_service.mark_used(db, token_hash)
    db.commit()

    with pytest.raises(MagicLinkUsedError):
        magic_link_service.mark_used(db, token_hash)
    with pytest.raises(MagicLinkUsedError):
        magic_link_service.require_active(db, token_hash, MagicLinkPurpose.RESCHEDULE_DECIDE)


def test_ledger_expiry_is_checked_independently(db, codec, booking):
    token = issue_token(db, codec, booking, ActorRole.GUEST, MagicLinkPurpose.RESCHEDULE_PROPOSE)
    db.execute(
        update(MagicLink)
        .where(MagicLink.token_hash == hash_token(token))
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
    db.commit()

    with pytest.raises(MagicLinkExpiredError):
        magic_link_service.validate_magic_token(
            db, codec, token, MagicLinkPurpose.RESCHEDULE_PROPOSE
        )


def test_inactive_errors_share_a_base_class():
    assert issubclass(MagicLinkNotFoundError, TokenInactiveOrUnknownError)
    assert issubclass(MagicLinkUsedError, TokenInactiveOrUnknownError)
    assert issubclass(MagicLinkExpiredError, TokenInactiveOrUnknownError)


def test_invalidate_booking_links(db, codec, booking):
    propose = issue_token(db, codec, booking, ActorRole.GUEST, MagicLinkPurpose.RESCHEDULE_PROPOSE)
    decide = issue_token(db, codec, booking, ActorRole.HOST, MagicLinkPurpose.RESCHEDULE_DECIDE)

    count = magic_link_service.invalidate_booking_links(
        db, booking.id, MagicLinkPurpose.RESCHEDULE_PROPOSE
    )
    db.commit()

    assert count == 1
    with pytest.raises(MagicLinkUsedError):
        magic_link_service.require_active(
            db, hash_token(propose), MagicLinkPurpose.RESCHEDULE_PROPOSE
        )
    assert magic_link_service.require_active(
        db, hash_token(decide), MagicLinkPurpose.RESCHEDULE_DECIDE
    )


def test_issue_with_preset_exp_in_the_past(db, booking):
    codec = TokenCodec("another-secret", ttl_seconds=60)
    token = issue_token(
        db,
        codec,
        booking,
        ActorRole.GUEST,
        MagicLinkPurpose.RESCHEDULE_PROPOSE,
        exp=codec.now() - 1,
    )
    record = magic_link_service.get_magic_link_by_hash(db, hash_token(token))
    assert record.expires_at < datetime.now(timezone.utc)
