from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

import httpx
from sqlalchemy.orm import Session

from app.core.config import (
    WAHA_API_KEY,
    WAHA_BASE_URL,
    WAHA_RETRIES,
    WAHA_TIMEOUT_MEDIA_SECONDS,
    WAHA_TIMEOUT_TEXT_SECONDS,
)
from app.models.merchant import Merchant
from app.models.whatsapp_message_log import WhatsAppMessageLog
from app.whatsapp.base import create_message_log, mask_chat_id

logger = logging.getLogger(__name__)


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in (500, 502, 503, 504)
    return False


def _backoff_seconds(attempt: int, base: float) -> float:
    # base, 2*base, 4*base... capped at 5s
    return min(base * (2 ** max(0, attempt - 1)), 5.0)


def _provider_message_id(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    raw_id = data.get("id")
    if isinstance(raw_id, dict):
        raw_id = raw_id.get("_serialized") or raw_id.get("id")
    return str(raw_id) if raw_id else None


class WahaWhatsAppProvider:
    """Sends through a WAHA (WhatsApp HTTP API) server, routed by the merchant's session."""

    name = "waha"

    def __init__(
        self,
        base_url: str = WAHA_BASE_URL,
        api_key: str = WAHA_API_KEY,
        *,
        text_timeout: float = WAHA_TIMEOUT_TEXT_SECONDS,
        media_timeout: float = WAHA_TIMEOUT_MEDIA_SECONDS,
        retries: int = WAHA_RETRIES,
        backoff_base: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.text_timeout = text_timeout
        self.media_timeout = media_timeout
        self.retries = max(0, retries)
        self.backoff_base = backoff_base
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def send_text(
        self,
        db: Session,
        *,
        merchant: Merchant,
        chat_id: str,
        text: str,
    ) -> WhatsAppMessageLog:
        payload = {"session": merchant.waha_session, "chatId": chat_id, "text": text.strip()}
        return await self._send(
            db,
            merchant=merchant,
            endpoint="/api/sendText",
            payload=payload,
            message_type="text",
            timeout=self.text_timeout,
        )

    async def send_document(
        self,
        db: Session,
        *,
        merchant: Merchant,
        chat_id: str,
        filename: str,
        content: bytes,
        caption: str = "",
        mimetype: str = "application/pdf",
    ) -> WhatsAppMessageLog:
        payload = {
            "session": merchant.waha_session,
            "chatId": chat_id,
            "file": {
                "mimetype": mimetype,
                "filename": filename,
                "data": base64.b64encode(content).decode("ascii"),
            },
            "caption": caption,
        }
        return await self._send(
            db,
            merchant=merchant,
            endpoint="/api/sendFile",
            payload=payload,
            message_type="document",
            timeout=self.media_timeout,
        )

    async def _post(self, client: httpx.AsyncClient, endpoint: str, payload: dict[str, Any]) -> Any:
        response = await client.post(
            f"{self.base_url}{endpoint}",
            json=payload,
            headers={"Content-Type": "application/json", "X-API-KEY": self.api_key},
        )
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text[:200]}

    async def _send(
        self,
        db: Session,
        *,
        merchant: Merchant,
        endpoint: str,
        payload: dict[str, Any],
        message_type: str,
        timeout: float,
    ) -> WhatsAppMessageLog:
        chat_id = payload["chatId"]
        if not self.is_configured or not merchant.waha_session:
            return create_message_log(
                db,
                merchant_id=merchant.id,
                direction="out",
                chat_id=chat_id,
                message_type=message_type,
                payload=payload,
                status="failed",
                error="WAHA not configured for this merchant",
            )

        attempts = self.retries + 1
        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            for attempt in range(1, attempts + 1):
                try:
                    data = await self._post(client, endpoint, payload)
                except httpx.HTTPError as exc:
                    last_error = exc
                    logger.warning(
                        "WAHA %s failed session=%s chat_id=%s attempt=%s/%s error=%s",
                        endpoint,
                        merchant.waha_session,
                        mask_chat_id(chat_id),
                        attempt,
                        attempts,
                        exc,
                        extra={"merchant_id": merchant.id},
                    )
                    if attempt < attempts and _should_retry(exc):
                        await asyncio.sleep(_backoff_seconds(attempt, self.backoff_base))
                        continue
                    break

                logger.info(
                    "WAHA %s sent session=%s chat_id=%s",
                    endpoint,
                    merchant.waha_session,
                    mask_chat_id(chat_id),
                    extra={"merchant_id": merchant.id},
                )
                return create_message_log(
                    db,
                    merchant_id=merchant.id,
                    direction="out",
                    chat_id=chat_id,
                    message_type=message_type,
                    payload=payload,
                    status="sent",
                    provider_message_id=_provider_message_id(data),
                )

        return create_message_log(
            db,
            merchant_id=merchant.id,
            direction="out",
            chat_id=chat_id,
            message_type=message_type,
            payload=payload,
            status="failed",
            error=f"{endpoint}: {last_error}",
        )
