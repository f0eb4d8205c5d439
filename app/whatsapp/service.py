from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models.merchant import Merchant
from app.models.whatsapp_message_log import WhatsAppMessageLog
from app.whatsapp.base import WhatsAppProvider, create_message_log, mask_chat_id, normalize_chat_id
from app.whatsapp.mock_provider import MockWhatsAppProvider
from app.whatsapp.waha_provider import WahaWhatsAppProvider

logger = logging.getLogger(__name__)


class WhatsAppService:
    def __init__(
        self,
        waha_provider: WahaWhatsAppProvider | None = None,
        mock_provider: MockWhatsAppProvider | None = None,
    ) -> None:
        self._waha_provider = waha_provider or WahaWhatsAppProvider()
        self._mock_provider = mock_provider or MockWhatsAppProvider()

    def _select_provider(self, merchant: Merchant) -> WhatsAppProvider:
        if self._waha_provider.is_configured and merchant.waha_session:
            return self._waha_provider
        return self._mock_provider

    async def send_text(
        self,
        db: Session,
        *,
        merchant: Merchant,
        chat_id: str,
        text: str,
    ) -> WhatsAppMessageLog | None:
        target = normalize_chat_id(chat_id)
        if not target or not (text or "").strip():
            logger.warning("outbound text skipped chat_id=%s", mask_chat_id(chat_id), extra={"merchant_id": merchant.id})
            return None
        provider = self._select_provider(merchant)
        log_entry = await provider.send_text(db, merchant=merchant, chat_id=target, text=text)
        if log_entry.status == "failed":
            logger.error(
                "outbound text failed provider=%s chat_id=%s error=%s",
                provider.name,
                mask_chat_id(target),
                log_entry.error,
                extra={"merchant_id": merchant.id},
            )
        return log_entry

    async def send_document(
        self,
        db: Session,
        *,
        merchant: Merchant,
        chat_id: str,
        filename: str,
        content: bytes,
        caption: str = "",
    ) -> WhatsAppMessageLog | None:
        target = normalize_chat_id(chat_id)
        if not target:
            return None
        provider = self._select_provider(merchant)
        log_entry = await provider.send_document(
            db,
            merchant=merchant,
            chat_id=target,
            filename=filename,
            content=content,
            caption=caption,
        )
        if log_entry.status == "failed":
            logger.error(
                "outbound document failed provider=%s chat_id=%s error=%s",
                provider.name,
                mask_chat_id(target),
                log_entry.error,
                extra={"merchant_id": merchant.id},
            )
        return log_entry

    def log_inbound(
        self,
        db: Session,
        *,
        merchant_id: int | None,
        chat_id: str | None,
        payload: dict[str, Any],
        provider_message_id: str | None = None,
    ) -> WhatsAppMessageLog:
        return create_message_log(
            db,
            merchant_id=merchant_id,
            direction="in",
            chat_id=chat_id,
            message_type="text",
            payload=payload,
            status="received",
            provider_message_id=provider_message_id,
        )


_default_service: WhatsAppService | None = None


def get_whatsapp_service() -> WhatsAppService:
    global _default_service
    if _default_service is None:
        _default_service = WhatsAppService()
    return _default_service
