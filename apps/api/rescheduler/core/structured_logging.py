"""Structured logging helpers (token-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    booking_id: UUID | str | None = None,
    proposal_id: UUID | str | None = None,
    purpose: str | None = None,
    method: str | None = None,
    sequence: int | None = None,
    actor_role: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict.

    Never pass raw tokens or token hashes here; ids and enum values only.
    """
    context: dict[str, Any] = {}
    if booking_id:
        context["booking_id"] = str(booking_id)
    if proposal_id:
        context["proposal_id"] = str(proposal_id)
    if purpose:
        context["purpose"] = purpose
    if method:
        context["method"] = method
    if sequence is not None:
        context["sequence"] = sequence
    if actor_role:
        context["actor_role"] = actor_role
    return context
