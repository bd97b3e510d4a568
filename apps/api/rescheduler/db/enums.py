"""Enum definitions for magic links, proposals and notifications."""

from enum import Enum


class ActorRole(str, Enum):
    """The two parties of a booked session."""

    HOST = "host"
    GUEST = "guest"

    @property
    def counterparty(self) -> "ActorRole":
        return ActorRole.GUEST if self is ActorRole.HOST else ActorRole.HOST


class MagicLinkPurpose(str, Enum):
    """
    What a capability token is allowed to do.

    A token is only accepted by the endpoint matching its purpose.
    """

    RESCHEDULE_PROPOSE = "reschedule_propose"  # View booking, submit a new time
    RESCHEDULE_DECIDE = "reschedule_decide"  # Agree / counter / cancel a proposal


class ProposalStatus(str, Enum):
    """
    Reschedule proposal lifecycle.

    Flow: pending → approved
              ↘ declined
              ↘ expired
    """

    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"  # Set only by the time-based sweep


class DecisionAction(str, Enum):
    """Actions available on a decision link."""

    AGREE = "agree"
    PROPOSE = "propose"  # Counter-proposal
    CANCEL = "cancel"


class BookingStatus(str, Enum):
    BOOKED = "booked"
    CANCELLED = "cancelled"


class IcsMethod(str, Enum):
    """iTIP methods used for calendar invites (RFC 5546)."""

    REQUEST = "REQUEST"
    CANCEL = "CANCEL"


class NotificationStatus(str, Enum):
    """Delivery state of a claimed notification."""

    PENDING = "pending"  # Claimed, send in flight (or crashed mid-send)
    SENT = "sent"  # Terminal success
    FAILED = "failed"  # Retryable


DEFAULT_PROPOSAL_STATUS = ProposalStatus.PENDING
