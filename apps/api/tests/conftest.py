"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite database per test
- Participants, a booking and a token codec
- A recording delivery channel (no network)
- HTTPX AsyncClient wired to the app with dependency overrides
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

# Must be set before rescheduler.core.config is imported
os.environ.setdefault("MAGIC_LINKS_SECRET", "test-magic-links-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INTERNAL_SECRET", "test-internal-secret")
os.environ["TESTING"] = "1"
os.environ["NOTIFICATIONS_ENABLED"] = "False"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rescheduler.core.deps import (
    get_db,
    get_delivery_channel,
    get_notification_config,
    get_token_codec,
)
from rescheduler.core.rate_limit import limiter
from rescheduler.db.base import Base
from rescheduler.db.enums import ActorRole, IcsMethod, MagicLinkPurpose
from rescheduler.db.models import Booking, Participant, PendingProposal
from rescheduler.main import app
from rescheduler.services import booking_service, magic_link_service
from rescheduler.services.errors import DeliveryFailedError
from rescheduler.services.ics_builder import Attendee
from rescheduler.services.identity_service import ParticipantDirectory
from rescheduler.services.negotiation_service import RescheduleNegotiator
from rescheduler.services.notification_service import NotificationConfig
from rescheduler.services.token_codec import MagicTokenPayload, TokenCodec


TEST_SECRET = "test-magic-links-secret"
FRONTEND_URL = "https://app.practice.test"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    """Session on a throwaway database; app code may commit freely."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture(scope="function")
def host(db: Session) -> Participant:
    participant = Participant(email="host@practice.test", display_name="Dana Host")
    db.add(participant)
    db.commit()
    return participant


@pytest.fixture(scope="function")
def guest(db: Session) -> Participant:
    participant = Participant(email="guest@practice.test", display_name="Gil Guest")
    db.add(participant)
    db.commit()
    return participant


@pytest.fixture(scope="function")
def booking(db: Session, host: Participant, guest: Participant) -> Booking:
    start = datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)
    return booking_service.book_session(
        db, host.id, guest.id, start, start + timedelta(hours=1)
    )


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, ttl_seconds=3600)


class RecordingChannel:
    """DeliveryChannel fake that records every send."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()
        self.fail_all = False
        self.crash_with: Exception | None = None
        self._counter = 0

    async def send(
        self,
        *,
        to_email: str,
        subject: str,
        text: str,
        ics_body: str | None = None,
        method: IcsMethod | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        if self.crash_with is not None:
            raise self.crash_with
        if self.fail_all or to_email in self.fail_for:
            raise DeliveryFailedError("Resend API error 503: unavailable")
        self._counter += 1
        message_id = f"pm-{self._counter}"
        self.sent.append(
            {
                "to_email": to_email,
                "subject": subject,
                "text": text,
                "ics_body": ics_body,
                "method": method,
                "idempotency_key": idempotency_key,
                "message_id": message_id,
            }
        )
        return message_id


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def notification_config() -> NotificationConfig:
    return NotificationConfig(
        frontend_url=FRONTEND_URL,
        organizer=Attendee(email="notifications@practice.test", name="Practice Hub"),
        session_title="Practice Session",
        enabled=True,
    )


@pytest.fixture
def negotiator(
    db: Session,
    codec: TokenCodec,
    channel: RecordingChannel,
    notification_config: NotificationConfig,
) -> RescheduleNegotiator:
    return RescheduleNegotiator(
        db,
        codec=codec,
        identity=ParticipantDirectory(db),
        channel=channel,
        config=notification_config,
    )


def issue_token(
    db: Session,
    codec: TokenCodec,
    booking: Booking,
    role: ActorRole,
    purpose: MagicLinkPurpose,
    proposal: PendingProposal | None = None,
    **overrides,
) -> str:
    """Issue and commit a magic link for one party of a booking."""
    email = booking.host.email if role == ActorRole.HOST else booking.guest.email
    claims = {
        "uid": booking.ics_uid,
        "booking_id": booking.id,
        "actor_email": email,
        "actor_role": role,
        "purpose": purpose,
    }
    if proposal is not None:
        claims.update(
            proposal_id=proposal.id,
            proposed_start_utc=proposal.proposed_start_utc,
            proposed_end_utc=proposal.proposed_end_utc,
        )
    claims.update(overrides)
    issued = magic_link_service.issue_magic_link(db, codec, MagicTokenPayload(**claims))
    db.commit()
    return issued.token


# =============================================================================
# HTTP Client
# =============================================================================

@pytest.fixture
async def client(
    db: Session,
    codec: TokenCodec,
    channel: RecordingChannel,
    notification_config: NotificationConfig,
) -> AsyncGenerator[AsyncClient, None]:
    """Client against the app with the test database and fakes injected."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_codec] = lambda: codec
    app.dependency_overrides[get_delivery_channel] = lambda: channel
    app.dependency_overrides[get_notification_config] = lambda: notification_config
    limiter.reset()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="https://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
