from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from app.models.merchant import Merchant
from app.models.whatsapp_message_log import WhatsAppMessageLog
from app.whatsapp.base import create_message_log


class MockWhatsAppProvider:
    """Logs outbound messages without sending them (dev, tests, merchants without a session)."""

    name = "mock"

    async def send_text(
        self,
        db: Session,
        *,
        merchant: Merchant,
        chat_id: str,
        text: str,
    ) -> WhatsAppMessageLog:
        return create_message_log(
            db,
            merchant_id=merchant.id,
            direction="out",
            chat_id=chat_id,
            message_type="text",
            payload={"type": "text", "chatId": chat_id, "text": text},
            status="sent",
            provider_message_id=f"mock-{uuid.uuid4().hex[:10]}",
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
        return create_message_log(
            db,
            merchant_id=merchant.id,
            direction="out",
            chat_id=chat_id,
            message_type="document",
            payload={
                "type": "document",
                "chatId": chat_id,
                "filename": filename,
                "mimetype": mimetype,
                "size": len(content),
                "caption": caption,
            },
            status="sent",
            provider_message_id=f"mock-{uuid.uuid4().hex[:10]}",
        )
