"""Capability token signing and verification.

Wire format::

    base64url(JSON(payload)) + "." + hex(HMAC-SHA256(secret, base64url(JSON(payload))))

The codec is stateless. Single-use and administrative invalidation are
layered on top by the magic link ledger (see magic_link_service).
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from datetime import datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationError

from rescheduler.db.enums import ActorRole, MagicLinkPurpose
from rescheduler.services.errors import (
    ConfigurationError,
    InvalidSignatureError,
    MalformedTokenError,
    TokenExpiredError,
)


DEFAULT_TTL_SECONDS = 7 * 86400
NONCE_BYTES = 8


class MagicTokenPayload(BaseModel):
    """Claims carried by a capability token."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    uid: str
    booking_id: UUID
    proposal_id: UUID | None = None
    proposed_start_utc: datetime | None = None
    proposed_end_utc: datetime | None = None
    actor_email: str
    actor_role: ActorRole
    purpose: MagicLinkPurpose
    exp: int | None = None
    nonce: str | None = None


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _canonical_json(payload: MagicTokenPayload) -> bytes:
    data = payload.model_dump(mode="json", exclude_none=True)
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def hash_token(token: str) -> str:
    """One-way digest stored in the ledger in place of the raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """HMAC-SHA256 signer for magic link tokens.

    The secret is passed in explicitly so tests (and key rotation tooling)
    can run several codecs side by side.
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ConfigurationError("MAGIC_LINKS_SECRET is required")
        if ttl_seconds <= 0:
            raise ConfigurationError("Magic link TTL must be positive")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def _digest(self, data: str) -> str:
        return hmac.new(self._secret, data.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign(self, claims: MagicTokenPayload | Mapping[str, Any]) -> str:
        """Sign claims, filling in exp and nonce when absent."""
        token, _ = self.seal(claims)
        return token

    def seal(
        self, claims: MagicTokenPayload | Mapping[str, Any]
    ) -> tuple[str, MagicTokenPayload]:
        """Like sign, but also return the payload exactly as signed."""
        if isinstance(claims, MagicTokenPayload):
            payload = claims
        else:
            payload = MagicTokenPayload.model_validate(dict(claims))

        updates: dict[str, Any] = {}
        if payload.exp is None:
            updates["exp"] = self.now() + self.ttl_seconds
        if not payload.nonce:
            updates["nonce"] = secrets.token_hex(NONCE_BYTES)
        if updates:
            payload = payload.model_copy(update=updates)

        data = _b64encode(_canonical_json(payload))
        return f"{data}.{self._digest(data)}", payload

    def verify(self, token: str) -> MagicTokenPayload:
        """Check signature and expiry; return the decoded payload.

        Raises:
            MalformedTokenError: token cannot be split or decoded
            InvalidSignatureError: digest mismatch
            TokenExpiredError: exp is in the past
        """
        if not token or not isinstance(token, str):
            raise MalformedTokenError()

        parts = token.split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise MalformedTokenError()
        data, signature = parts

        expected = self._digest(data)
        if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
            raise InvalidSignatureError()

        try:
            raw = json.loads(_b64decode(data))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise MalformedTokenError() from exc
        if not isinstance(raw, dict):
            raise MalformedTokenError()

        try:
            payload = MagicTokenPayload.model_validate(raw)
        except ValidationError as exc:
            raise MalformedTokenError() from exc

        if payload.exp is None or not payload.nonce:
            raise MalformedTokenError()
        if payload.exp <= self.now():
            raise TokenExpiredError()

        return payload
