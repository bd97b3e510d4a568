"""Reschedule schemas - Pydantic models for the magic-link reschedule API."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# Requests
# =============================================================================

class ProposeRequest(BaseModel):
    """Submit a new time using a propose link."""
    token: str = Field(..., min_length=1)
    proposed_start_utc: datetime
    proposed_end_utc: datetime
    note: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def check_interval(self) -> "ProposeRequest":
        if self.proposed_end_utc <= self.proposed_start_utc:
            raise ValueError("proposed_end_utc must be after proposed_start_utc")
        return self


class DecisionRequest(BaseModel):
    """Agree, counter-propose or cancel using a decide link."""
    token: str = Field(..., min_length=1)
    action: Literal["agree", "propose", "cancel"]
    proposed_start_utc: datetime | None = None
    proposed_end_utc: datetime | None = None
    note: str | None = Field(None, max_length=2000)


# =============================================================================
# Responses
# =============================================================================

class BookingView(BaseModel):
    booking_id: UUID
    uid: str
    start_utc: datetime
    end_utc: datetime
    status: str
    actor_role: str


class DecisionView(BaseModel):
    booking_id: UUID
    proposal_id: UUID
    current_start_utc: datetime
    current_end_utc: datetime
    proposed_start_utc: datetime
    proposed_end_utc: datetime
    proposed_by: str
    note: str | None
    status: str
    actor_role: str


class ProposeResponse(BaseModel):
    ok: bool = True
    status: str
    proposal_id: UUID


class DecisionResponse(BaseModel):
    ok: bool = True
    status: str


class ExpireProposalsResponse(BaseModel):
    expired: int
