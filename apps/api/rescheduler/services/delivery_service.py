"""Outbound email delivery for session notifications.

Sends plain-text emails (optionally with a calendar invite attached) via the
Resend API with retry/backoff. Failures surface as DeliveryFailedError so the
notification service can record them in the claim ledger.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import random
from typing import Awaitable, Callable, Protocol

import httpx

from rescheduler.db.enums import IcsMethod
from rescheduler.services.errors import ConfigurationError, DeliveryFailedError

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_MAX_ATTEMPTS = 3
RESEND_RETRY_BASE_DELAY = 0.5
RESEND_RETRY_MAX_DELAY = 4.0
RESEND_TIMEOUT_SECONDS = 20.0

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
ICS_FILENAME = "invite.ics"


class DeliveryChannel(Protocol):
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
        """Send one email and return the provider message id."""


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = RESEND_MAX_ATTEMPTS,
    base_delay: float = RESEND_RETRY_BASE_DELAY,
    max_delay: float = RESEND_RETRY_MAX_DELAY,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff on transport errors and retryable statuses."""
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning("Email provider request failed, retrying", exc_info=exc)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Email provider returned %s, retrying", response.status_code
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response


class ResendDeliveryChannel:
    """DeliveryChannel implementation for the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        *,
        send_url: str = RESEND_SEND_URL,
        timeout: float = RESEND_TIMEOUT_SECONDS,
        max_attempts: int = RESEND_MAX_ATTEMPTS,
        base_delay: float = RESEND_RETRY_BASE_DELAY,
        max_delay: float = RESEND_RETRY_MAX_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ConfigurationError("RESEND_API_KEY is required")
        if not from_address:
            raise ConfigurationError("NOTIFICATIONS_FROM_EMAIL is required")
        self.api_key = api_key
        self.from_address = from_address
        self.send_url = send_url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._transport = transport

    def _build_payload(
        self,
        *,
        to_email: str,
        subject: str,
        text: str,
        ics_body: str | None,
        method: IcsMethod | None,
    ) -> dict[str, object]:
        payload: dict[str, object] = {
            "from": self.from_address,
            "to": [to_email],
            "subject": subject,
            "text": text,
        }
        if ics_body:
            ics_method = IcsMethod(method or IcsMethod.REQUEST).value
            payload["attachments"] = [
                {
                    "filename": ICS_FILENAME,
                    "content": base64.b64encode(ics_body.encode("utf-8")).decode("ascii"),
                    "content_type": f"text/calendar; method={ics_method}; charset=UTF-8",
                }
            ]
        return payload

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
        payload = self._build_payload(
            to_email=to_email,
            subject=subject,
            text=text,
            ics_body=ics_body,
            method=method,
        )
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(self.send_url, headers=headers, json=payload)

                response = await request_with_retries(
                    request_fn,
                    max_attempts=self.max_attempts,
                    base_delay=self.base_delay,
                    max_delay=self.max_delay,
                )
        except httpx.TimeoutException as exc:
            raise DeliveryFailedError("Connection timeout") from exc
        except httpx.RequestError as exc:
            raise DeliveryFailedError(f"Connection error: {exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("message")
            except ValueError:
                detail = None
            raise DeliveryFailedError(
                f"Resend API error {response.status_code}: {detail or 'unknown error'}"
            )

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
        if not message_id:
            raise DeliveryFailedError("Resend API returned no message id")
        return str(message_id)
