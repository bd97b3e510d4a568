"""Magic link ledger - issuance, validation and single-use tracking.

Handles:
- Issuing signed tokens and persisting their hash
- Purpose + active-record checks layered on top of the codec
- Consuming a token exactly once for state-changing actions
- Administrative invalidation of a booking's outstanding links

Functions here flush but do not commit; the calling service owns the
transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, NamedTuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rescheduler.core.structured_logging import build_log_context
from rescheduler.db.enums import MagicLinkPurpose
from rescheduler.db.models import MagicLink
from rescheduler.services.errors import (
    MagicLinkExpiredError,
    MagicLinkNotFoundError,
    MagicLinkUsedError,
    PurposeMismatchError,
)
from rescheduler.services.token_codec import MagicTokenPayload, TokenCodec, hash_token

logger = logging.getLogger(__name__)


class IssuedMagicLink(NamedTuple):
    """Result of issuing a link. Only `token` ever leaves the server."""
    token: str
    expires_at: datetime
    record: MagicLink


def issue_magic_link(
    db: Session,
    codec: TokenCodec,
    claims: MagicTokenPayload | Mapping[str, Any],
) -> IssuedMagicLink:
    """Sign claims and record the token hash in the ledger."""
    token, payload = codec.seal(claims)
    expires_at = datetime.fromtimestamp(payload.exp, tz=timezone.utc)

    record = MagicLink(
        uid=payload.uid,
        purpose=payload.purpose.value,
        booking_id=payload.booking_id,
        proposal_id=payload.proposal_id,
        actor_email=payload.actor_email,
        actor_role=payload.actor_role.value,
        token_hash=hash_token(token),
        expires_at=expires_at,
    )
    db.add(record)
    db.flush()

    logger.info(
        "Issued magic link",
        extra=build_log_context(
            booking_id=payload.booking_id,
            proposal_id=payload.proposal_id,
            purpose=payload.purpose.value,
            actor_role=payload.actor_role.value,
        ),
    )
    return IssuedMagicLink(token=token, expires_at=expires_at, record=record)


def get_magic_link_by_hash(db: Session, token_hash: str) -> MagicLink | None:
    return db.execute(
        select(MagicLink)
        .where(MagicLink.token_hash == token_hash)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def require_active(
    db: Session,
    token_hash: str,
    expected_purpose: MagicLinkPurpose,
) -> MagicLink:
    """Return the ledger record for a token hash if it can still be used."""
    record = get_magic_link_by_hash(db, token_hash)
    if not record:
        raise MagicLinkNotFoundError()
    if record.purpose != expected_purpose.value:
        raise PurposeMismatchError()
    if record.used_at is not None:
        raise MagicLinkUsedError()
    if record.expires_at <= datetime.now(timezone.utc):
        raise MagicLinkExpiredError()
    return record


def validate_magic_token(
    db: Session,
    codec: TokenCodec,
    token: str,
    expected_purpose: MagicLinkPurpose,
) -> MagicTokenPayload:
    """
    Full validation for an inbound token.

    Cryptographic check first, then purpose, then the ledger. Does not
    consume the token; see mark_used.
    """
    payload = codec.verify(token)
    if payload.purpose != expected_purpose:
        raise PurposeMismatchError()
    require_active(db, hash_token(token), expected_purpose)
    return payload


def mark_used(db: Session, token_hash: str) -> None:
    """
    Consume a token.

    Conditional on used_at being unset, so of two concurrent submits of the
    same token only one gets here without MagicLinkUsedError.
    """
    now = datetime.now(timezone.utc)
    result = db.execute(
        update(MagicLink)
        .where(
            MagicLink.token_hash == token_hash,
            MagicLink.used_at.is_(None),
        )
        .values(used_at=now)
    )
    if result.rowcount == 0:
        raise MagicLinkUsedError()
    db.flush()


def invalidate_booking_links(
    db: Session,
    booking_id: UUID,
    purpose: MagicLinkPurpose | None = None,
) -> int:
    """Mark every still-active link of a booking as used. Returns count."""
    now = datetime.now(timezone.utc)
    stmt = (
        update(MagicLink)
        .where(
            MagicLink.booking_id == booking_id,
            MagicLink.used_at.is_(None),
            MagicLink.expires_at > now,
        )
        .values(used_at=now)
    )
    if purpose:
        stmt = stmt.where(MagicLink.purpose == purpose.value)
    result = db.execute(stmt)
    db.flush()
    if result.rowcount:
        logger.info(
            "Invalidated %s magic links",
            result.rowcount,
            extra=build_log_context(
                booking_id=booking_id,
                purpose=purpose.value if purpose else None,
            ),
        )
    return result.rowcount
