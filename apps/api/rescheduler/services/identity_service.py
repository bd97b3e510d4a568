"""Participant lookups for notification building."""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from rescheduler.db.models import Participant
from rescheduler.services.errors import IdentityNotFoundError


class IdentityLookup(Protocol):
    def get_email_by_user_id(self, user_id: UUID) -> str:
        """Return the participant's email or raise IdentityNotFoundError."""

    def get_display_name_by_user_id(self, user_id: UUID) -> str | None:
        """Return the participant's display name (may be None)."""


class ParticipantDirectory:
    """IdentityLookup backed by the participants table."""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, user_id: UUID) -> Participant:
        participant = self.db.get(Participant, user_id)
        if not participant:
            raise IdentityNotFoundError(f"Participant {user_id} not found")
        return participant

    def get_email_by_user_id(self, user_id: UUID) -> str:
        email = (self._get(user_id).email or "").strip()
        if not email:
            raise IdentityNotFoundError(f"Participant {user_id} has no email")
        return email

    def get_display_name_by_user_id(self, user_id: UUID) -> str | None:
        return self._get(user_id).display_name or None
