"""Domain error taxonomy for magic links and reschedule negotiation.

Each error carries a public message that is safe to return to an
unauthenticated caller, plus the HTTP status the router maps it to.
"""


class RescheduleError(Exception):
    """Base class for all domain errors raised by the reschedule services."""

    status_code = 400
    public_message = "Invalid request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class ConfigurationError(Exception):
    """Raised when required configuration is missing."""


# =============================================================================
# Cryptographic layer (token codec)
# =============================================================================

class TokenError(RescheduleError):
    """Token failed stateless verification."""

    public_message = "Invalid or expired token"


class MalformedTokenError(TokenError):
    status_code = 400
    public_message = "Malformed token"


class InvalidSignatureError(TokenError):
    status_code = 401
    public_message = "Invalid token"


class TokenExpiredError(TokenError):
    status_code = 410
    public_message = "Link has expired"


# =============================================================================
# Ledger layer (magic link records)
# =============================================================================

class PurposeMismatchError(RescheduleError):
    status_code = 403
    public_message = "Token not valid for this action"


class TokenInactiveOrUnknownError(RescheduleError):
    """No active ledger record for the token (absent, used, or expired)."""

    status_code = 404
    public_message = "Token not found or already used"


class MagicLinkNotFoundError(TokenInactiveOrUnknownError):
    status_code = 404
    public_message = "Token not found"


class MagicLinkUsedError(TokenInactiveOrUnknownError):
    status_code = 409
    public_message = "Link has already been used"


class MagicLinkExpiredError(TokenInactiveOrUnknownError):
    status_code = 410
    public_message = "Link has expired"


# =============================================================================
# State machine / validation
# =============================================================================

class PreconditionFailedError(RescheduleError):
    """The proposal (or booking) is no longer in a state that allows the action."""

    status_code = 409
    public_message = "This proposal has already been decided"


class InvalidProposalError(RescheduleError):
    status_code = 400
    public_message = "Invalid proposed time"


class BookingNotFoundError(RescheduleError):
    status_code = 404
    public_message = "Booking not found"


class ProposalNotFoundError(RescheduleError):
    status_code = 404
    public_message = "Proposal not found"


# =============================================================================
# External collaborators
# =============================================================================

class IdentityNotFoundError(RescheduleError):
    status_code = 502
    public_message = "Participant lookup failed"


class DeliveryFailedError(RescheduleError):
    """Outbound email failed. Recorded in the claim ledger, never returned to callers."""

    status_code = 502
    public_message = "Notification delivery failed"
