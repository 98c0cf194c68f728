# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""NotifyHub client retry behaviour."""

import json

import httpx
import pytest

from uitdeitp_server.errors import DeliveryError
from uitdeitp_server.services.sms import NotifyHubClient, verification_message

pytestmark = pytest.mark.anyio


def _client(handler, **kwargs) -> NotifyHubClient:
    return NotifyHubClient(
        "https://ntf.example.test/",
        "secret",
        backoff_base=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def test_sends_with_bearer_and_template():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "messageId": "m1"})

    await _client(handler).send_verification_code(
        "+40712345678", "012345", sender_name="ITP Cluj", expiry_minutes=10
    )
    assert len(seen) == 1
    req = seen[0]
    assert req.url == "https://ntf.example.test/api/send"
    assert req.headers["Authorization"] == "Bearer secret"
    body = json.loads(req.content)
    assert body["to"] == "+40712345678"
    assert body["templateId"] == "verification_code"
    assert "012345" in body["message"]


async def test_retries_server_errors_then_succeeds():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, json={"error": "provider down"})
        return httpx.Response(200, json={"success": True})

    result = await _client(handler).send_sms("+40712345678", "hi")
    assert result == {"success": True}
    assert len(calls) == 3


async def test_network_errors_exhaust_retries():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(DeliveryError):
        await _client(handler, max_retries=2).send_sms("+40712345678", "hi")
    assert len(calls) == 2


async def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(DeliveryError):
        await _client(handler).send_sms("+40712345678", "hi")
    assert len(calls) == 1


async def test_unsuccessful_body_is_a_failure():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "invalid number"})

    with pytest.raises(DeliveryError):
        await _client(handler).send_sms("+40712345678", "hi")


def test_message_is_plain_ascii():
    msg = verification_message("004211", "uitdeitp.ro", 10)
    assert msg.isascii()
    assert "004211" in msg and "10 minute" in msg
