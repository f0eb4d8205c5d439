from __future__ import annotations

import json
import re
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.models.merchant import Merchant
from app.models.whatsapp_message_log import WhatsAppMessageLog


class WhatsAppProvider(Protocol):
    name: str

    async def send_text(
        self,
        db: Session,
        *,
        merchant: Merchant,
        chat_id: str,
        text: str,
    ) -> WhatsAppMessageLog:
        ...

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
        ...


SENSITIVE_KEYS = {"api_key", "x-api-key", "authorization", "token", "secret"}
BINARY_KEYS = {"data"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        if key.lower() in BINARY_KEYS and isinstance(value, str):
            return f"<{len(value)} chars>"
        return _sanitize(value)

    return _sanitize(payload)


def safe_json(payload: dict[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return "{}"


def normalize_chat_id(value: str | None) -> str | None:
    """Phone number or chat id -> WhatsApp chat id ('2250700000000@c.us')."""
    if not value:
        return None
    text = str(value).strip()
    if "@" in text:
        if text.endswith("@s.whatsapp.net"):
            return text.replace("@s.whatsapp.net", "@c.us")
        return text
    digits = re.sub(r"\D", "", text)
    if len(digits) < 8:
        return None
    return f"{digits}@c.us"


def mask_chat_id(chat_id: str | None) -> str | None:
    if not chat_id:
        return chat_id
    return re.sub(r"(\d{3})\d+(@.+)?$", lambda m: f"{m.group(1)}XXXXX{m.group(2) or ''}", chat_id)


def create_message_log(
    db: Session,
    *,
    merchant_id: int | None,
    direction: str,
    chat_id: str | None,
    message_type: str,
    payload: dict[str, Any],
    status: str,
    provider_message_id: str | None = None,
    error: str | None = None,
) -> WhatsAppMessageLog:
    log_entry = WhatsAppMessageLog(
        merchant_id=merchant_id,
        direction=direction,
        chat_id=chat_id,
        message_type=message_type,
        payload_json=safe_json(sanitize_payload(payload)),
        status=status,
        error=error,
        provider_message_id=provider_message_id,
    )
    db.add(log_entry)
    db.commit()
    return log_entry
