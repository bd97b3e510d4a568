"""FastAPI dependencies for database sessions and the reschedule services."""

from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from rescheduler.core.config import settings
from rescheduler.db.session import SessionLocal
from rescheduler.services.booking_context import parse_organizer
from rescheduler.services.delivery_service import DeliveryChannel, ResendDeliveryChannel
from rescheduler.services.identity_service import IdentityLookup, ParticipantDirectory
from rescheduler.services.negotiation_service import RescheduleNegotiator
from rescheduler.services.notification_service import NotificationConfig
from rescheduler.services.token_codec import TokenCodec


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_token_codec() -> TokenCodec:
    """Codec over MAGIC_LINKS_SECRET. Raises ConfigurationError if unset."""
    return TokenCodec(
        settings.MAGIC_LINKS_SECRET,
        ttl_seconds=settings.magic_link_ttl_seconds,
    )


def get_identity(db: Session = Depends(get_db)) -> IdentityLookup:
    return ParticipantDirectory(db)


class DryRunDeliveryChannel:
    """Channel used while notifications are disabled; dispatch never reaches it."""

    async def send(self, **kwargs) -> str:
        raise RuntimeError("Notifications are disabled")


def get_delivery_channel() -> DeliveryChannel:
    if not settings.NOTIFICATIONS_ENABLED:
        return DryRunDeliveryChannel()
    return ResendDeliveryChannel(
        settings.RESEND_API_KEY,
        settings.NOTIFICATIONS_FROM_EMAIL,
    )


def get_notification_config() -> NotificationConfig:
    return NotificationConfig(
        frontend_url=settings.frontend_base_url,
        organizer=parse_organizer(settings.NOTIFICATIONS_FROM_EMAIL),
        session_title=settings.SESSION_TITLE,
        enabled=settings.NOTIFICATIONS_ENABLED,
    )


def get_negotiator(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    identity: IdentityLookup = Depends(get_identity),
    channel: DeliveryChannel = Depends(get_delivery_channel),
    config: NotificationConfig = Depends(get_notification_config),
) -> RescheduleNegotiator:
    return RescheduleNegotiator(
        db,
        codec=codec,
        identity=identity,
        channel=channel,
        config=config,
    )
