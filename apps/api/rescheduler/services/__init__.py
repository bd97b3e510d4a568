"""Service layer modules."""

from rescheduler.services.booking_service import (
    book_session,
    get_booking,
    require_booking,
)
from rescheduler.services.negotiation_service import (
    RescheduleNegotiator,
    expire_stale_proposals,
)
from rescheduler.services.token_codec import (
    MagicTokenPayload,
    TokenCodec,
    hash_token,
)
