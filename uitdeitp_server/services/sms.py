# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""SMS delivery through the NotifyHub gateway. Logs instead of sending when not configured."""

import asyncio
import logging
from functools import lru_cache
from typing import Any, Protocol

import httpx

from uitdeitp_server.config import settings
from uitdeitp_server.errors import DeliveryError
from uitdeitp_server.services.phone import mask_phone

logger = logging.getLogger(__name__)


def verification_message(code: str, sender_name: str, expiry_minutes: int) -> str:
    """SMS body, GSM-7 only (no diacritics) so it fits a single part."""
    return (
        f"Codul tau {sender_name}: {code}\n"
        f"Expira in {expiry_minutes} minute.\n"
        "Nu ai cerut? Ignora."
    )


class SmsSender(Protocol):
    async def send_verification_code(
        self, phone: str, code: str, *, sender_name: str, expiry_minutes: int
    ) -> None: ...


class NotifyHubClient:
    """
    POST {base_url}/api/send with bearer auth.

    Network errors and 5xx responses are retried with exponential backoff
    (backoff_base * 1, 2, 4 ... seconds); 4xx responses are not retried.
    Each attempt is bounded by `timeout`. Raises DeliveryError on final failure.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        )

    async def send_sms(
        self,
        to: str,
        message: str,
        template_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"to": to, "message": message}
        if template_id:
            payload["templateId"] = template_id
        if data:
            payload["data"] = data
        last_error = "SMS sending failed"
        async with self._client() as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    r = await client.post("/api/send", json=payload)
                except httpx.HTTPError as e:
                    last_error = f"network error: {e.__class__.__name__}"
                    logger.warning("NotifyHub attempt %d/%d failed: %s", attempt, self.max_retries, last_error)
                else:
                    if r.status_code < 400:
                        body = _json_or_empty(r)
                        if body.get("success") is False:
                            logger.error("NotifyHub refused SMS to %s: %s", mask_phone(to), body.get("error"))
                            raise DeliveryError()
                        if attempt > 1:
                            logger.info("NotifyHub succeeded on attempt %d/%d", attempt, self.max_retries)
                        return body
                    last_error = _json_or_empty(r).get("error") or f"HTTP {r.status_code}"
                    if r.status_code < 500:
                        logger.error("NotifyHub rejected SMS to %s: %s", mask_phone(to), last_error)
                        raise DeliveryError()
                    logger.warning("NotifyHub attempt %d/%d failed: HTTP %d", attempt, self.max_retries, r.status_code)
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))
        logger.error("NotifyHub gave up on SMS to %s: %s", mask_phone(to), last_error)
        raise DeliveryError()

    async def send_verification_code(
        self, phone: str, code: str, *, sender_name: str, expiry_minutes: int
    ) -> None:
        await self.send_sms(
            phone,
            verification_message(code, sender_name, expiry_minutes),
            template_id="verification_code",
            data={"code": code, "stationName": sender_name},
        )


class LoggingSmsSender:
    """Used when NotifyHub is not configured (local development)."""

    async def send_verification_code(
        self, phone: str, code: str, *, sender_name: str, expiry_minutes: int
    ) -> None:
        logger.info("SMS (NotifyHub not configured): To=%s Sender=%s", mask_phone(phone), sender_name)
        logger.debug("SMS body: %s", verification_message(code, sender_name, expiry_minutes))


def _json_or_empty(r: httpx.Response) -> dict[str, Any]:
    try:
        body = r.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@lru_cache
def get_sms_sender() -> SmsSender:
    """FastAPI dependency: the configured SMS channel."""
    if settings.notifyhub_url and settings.notifyhub_api_key:
        return NotifyHubClient(
            settings.notifyhub_url,
            settings.notifyhub_api_key,
            timeout=settings.notifyhub_timeout_seconds,
            max_retries=settings.notifyhub_max_retries,
        )
    logger.info("NOTIFYHUB_URL / NOTIFYHUB_API_KEY not set - SMS will be logged, not sent")
    return LoggingSmsSender()
