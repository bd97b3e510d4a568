"""Tests for the Resend delivery channel and its retry helper."""

import base64
import json

import httpx
import pytest

from rescheduler.db.enums import IcsMethod
from rescheduler.services.delivery_service import ResendDeliveryChannel, request_with_retries
from rescheduler.services.errors import ConfigurationError, DeliveryFailedError


def _channel(handler, **kwargs) -> ResendDeliveryChannel:
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("max_delay", 0)
    return ResendDeliveryChannel(
        "re_test_key",
        "Practice Hub <hub@practice.test>",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_send_posts_payload_with_ics_attachment():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "pm-1"})

    message_id = await _channel(handler).send(
        to_email="guest@practice.test",
        subject="Booked: Practice Session",
        text="See you",
        ics_body="BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n",
        method=IcsMethod.REQUEST,
        idempotency_key="ics/u/0/REQUEST/guest@practice.test",
    )

    assert message_id == "pm-1"
    assert captured["headers"]["Authorization"] == "Bearer re_test_key"
    assert captured["headers"]["Idempotency-Key"] == "ics/u/0/REQUEST/guest@practice.test"
    body = captured["body"]
    assert body["to"] == ["guest@practice.test"]
    assert body["from"] == "Practice Hub <hub@practice.test>"
    attachment = body["attachments"][0]
    assert attachment["filename"] == "invite.ics"
    assert attachment["content_type"] == "text/calendar; method=REQUEST; charset=UTF-8"
    assert base64.b64decode(attachment["content"]).startswith(b"BEGIN:VCALENDAR")


@pytest.mark.asyncio
async def test_send_without_ics_has_no_attachment():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "pm-2"})

    await _channel(handler).send(to_email="a@x.test", subject="s", text="t")
    assert "attachments" not in captured["body"]


@pytest.mark.asyncio
async def test_send_retries_then_succeeds():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503, json={"message": "busy"})
        return httpx.Response(200, json={"id": "pm-3"})

    assert await _channel(handler).send(to_email="a@x.test", subject="s", text="t") == "pm-3"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_send_raises_delivery_failed_on_client_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "invalid from"})

    with pytest.raises(DeliveryFailedError, match="422"):
        await _channel(handler).send(to_email="a@x.test", subject="s", text="t")


@pytest.mark.asyncio
async def test_send_raises_delivery_failed_on_connection_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(DeliveryFailedError, match="Connection error"):
        await _channel(handler, max_attempts=2).send(to_email="a@x.test", subject="s", text="t")


def test_channel_requires_api_key():
    with pytest.raises(ConfigurationError):
        ResendDeliveryChannel("", "hub@practice.test")


@pytest.mark.asyncio
async def test_request_with_retries_returns_last_response_after_max_attempts():
    req = httpx.Request("POST", "https://example.com")
    calls = {"count": 0}

    async def request_fn():
        calls["count"] += 1
        return httpx.Response(500, request=req)

    response = await request_with_retries(
        request_fn,
        max_attempts=3,
        base_delay=0,
        max_delay=0,
    )

    assert calls["count"] == 3
    assert response.status_code == 500
