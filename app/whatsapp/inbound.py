"""Normalize the two inbound webhook dialects into one ``InboundMessage``.

* simple: ``{"from": "+225...", "to": "+225...", "text": "..."}``, routed by
  the merchant's business number;
* WAHA: ``{"event": "message", "session": "...", "payload": {...}}``, routed
  by the WAHA session name.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from app.services.customers import normalize_phone
from app.whatsapp.base import normalize_chat_id

ROUTE_BY_NUMBER = "number"
ROUTE_BY_SESSION = "session"


@dataclass(frozen=True)
class InboundMessage:
    customer_key: str
    text: str
    reply_chat_id: str
    route_kind: str
    route_key: str
    message_id: str | None = None


def chat_id_to_phone(chat_id: str | None) -> str | None:
    """'2250700000000@c.us' -> '+2250700000000'. ``@lid`` ids are not phone numbers."""
    if not chat_id:
        return None
    local, _, suffix = str(chat_id).partition("@")
    if suffix in ("lid", "g.us") or "broadcast" in suffix:
        return None
    return normalize_phone(local)


def phone_to_chat_id(phone: str | None) -> str | None:
    digits = re.sub(r"\D", "", phone or "")
    return f"{digits}@c.us" if digits else None


def is_broadcast(chat_id: str | None) -> bool:
    return bool(chat_id) and "status@broadcast" in str(chat_id)


def parse_simple_payload(body: Any) -> InboundMessage | None:
    if not isinstance(body, dict):
        return None
    customer_phone = normalize_phone(body.get("from"))
    business_phone = normalize_phone(body.get("to"))
    text = str(body.get("text") or "").strip()
    if not customer_phone or not business_phone or not text:
        return None
    return InboundMessage(
        customer_key=customer_phone,
        text=text,
        reply_chat_id=phone_to_chat_id(customer_phone),
        route_kind=ROUTE_BY_NUMBER,
        route_key=business_phone,
        message_id=str(body["id"]) if body.get("id") else None,
    )


def _waha_text(payload: dict[str, Any]) -> str:
    message = payload.get("message")
    candidates = (
        payload.get("body"),
        payload.get("text"),
        message.get("text") if isinstance(message, dict) else message,
    )
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def _waha_message_id(payload: dict[str, Any]) -> str | None:
    raw_id = payload.get("id")
    if isinstance(raw_id, dict):
        raw_id = raw_id.get("_serialized") or raw_id.get("id")
    return str(raw_id) if raw_id else None


def parse_waha_payload(body: Any) -> InboundMessage | None:
    if not isinstance(body, dict):
        return None
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else body

    event = body.get("event") or payload.get("event")
    if event and event != "message":
        return None
    if payload.get("fromMe") is True:
        return None

    session = body.get("session") or payload.get("session")
    if not session:
        return None

    text = _waha_text(payload)
    if not text:
        return None

    sender = payload.get("sender") if isinstance(payload.get("sender"), dict) else {}
    raw_from = payload.get("from") or sender.get("id") or payload.get("author") or payload.get("participant")
    remote = payload.get("id", {}).get("remote") if isinstance(payload.get("id"), dict) else None
    raw_chat = payload.get("chatId") or remote or payload.get("conversation") or payload.get("to")

    from_chat_id = normalize_chat_id(raw_from)
    chat_id = normalize_chat_id(raw_chat)
    if is_broadcast(from_chat_id) or is_broadcast(chat_id):
        return None

    # Groups are answered in the group, everything else to the sender
    reply_chat_id = chat_id if chat_id and chat_id.endswith("@g.us") else from_chat_id
    if not reply_chat_id:
        return None

    if reply_chat_id.endswith("@g.us"):
        author = normalize_chat_id(payload.get("author") or payload.get("participant"))
        customer_key = chat_id_to_phone(author) or author or reply_chat_id
    else:
        customer_key = chat_id_to_phone(from_chat_id) or from_chat_id

    return InboundMessage(
        customer_key=customer_key,
        text=text,
        reply_chat_id=reply_chat_id,
        route_kind=ROUTE_BY_SESSION,
        route_key=str(session),
        message_id=_waha_message_id(payload),
    )
