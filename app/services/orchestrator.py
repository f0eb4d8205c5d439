"""Per-message entry point.

Each inbound message goes through a fixed sequence of short-circuits before
the agent is consulted: opt-out, human handoff, cancel/confirm at the order
summary, the answer to a pending question, then the catalog keywords. Only
when none of them applies is the agent called and its actions applied.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.ai.base import AgentProvider
from app.ai.service import build_agent_input, get_agent_provider, run_agent
from app.conversation import engine, intents, messages
from app.conversation.states import ConversationState
from app.core.logging_setup import mask_personal_data
from app.core.request_context import set_request_context
from app.models.customer import Customer
from app.models.merchant import Merchant
from app.services.actions import apply_action
from app.services.cart import list_active_products
from app.services.catalog_export import CatalogExportError, CatalogExporter, get_catalog_exporter
from app.services.conversation_store import get_conversation_state, merge_conversation_state
from app.services.customers import find_or_create_customer
from app.whatsapp.inbound import InboundMessage
from app.whatsapp.service import WhatsAppService, get_whatsapp_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandledMessage:
    flow: str
    reply: str | None = None
    delivery_status: str | None = None


async def handle_incoming_message(
    db: Session,
    merchant: Merchant,
    inbound: InboundMessage,
    agent: AgentProvider | None = None,
    gateway: WhatsAppService | None = None,
    exporter: CatalogExporter | None = None,
    now: datetime | None = None,
) -> HandledMessage:
    gateway = gateway or get_whatsapp_service()
    set_request_context(merchant_id=merchant.id)
    logger.info("inbound message text=%s", mask_personal_data(inbound.text), extra={"merchant_id": merchant.id})

    try:
        customer = find_or_create_customer(db, merchant.id, inbound.customer_key)
        set_request_context(customer_id=customer.id)
        handled = await _route(db, merchant, customer, inbound, agent, gateway, exporter, now)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("database error while handling message", extra={"merchant_id": merchant.id})
        handled = HandledMessage(flow="error", reply=messages.TECHNICAL_ERROR)
    except Exception:
        logger.exception("unexpected error while handling message", extra={"merchant_id": merchant.id})
        handled = HandledMessage(flow="error", reply=messages.TECHNICAL_ERROR)

    if not handled.reply:
        return handled

    log_entry = await gateway.send_text(db, merchant=merchant, chat_id=inbound.reply_chat_id, text=handled.reply)
    return HandledMessage(
        flow=handled.flow,
        reply=handled.reply,
        delivery_status=log_entry.status if log_entry is not None else "failed",
    )


async def _route(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    inbound: InboundMessage,
    agent: AgentProvider | None,
    gateway: WhatsAppService,
    exporter: CatalogExporter | None,
    now: datetime | None,
) -> HandledMessage:
    text = inbound.text
    state = get_conversation_state(db, merchant.id, customer.id)

    if intents.is_opt_out(text):
        merge_conversation_state(db, merchant.id, customer.id, {"opted_out": True})
        logger.info("customer opted out")
        return HandledMessage(flow="opt_out", reply=messages.OPTED_OUT)
    if state.opted_out:
        if intents.is_opt_in(text):
            merge_conversation_state(db, merchant.id, customer.id, {"opted_out": None})
            logger.info("customer opted back in")
            return HandledMessage(flow="opt_in", reply=messages.OPTED_IN)
        return HandledMessage(flow="opted_out")

    if state.is_handed_off:
        logger.info("conversation waiting for a human, message not answered")
        return HandledMessage(flow="handoff")

    if state.awaiting_confirmation:
        if intents.is_cancel_intent(text):
            return HandledMessage(flow="cancel", reply=engine.cancel_pending_order(db, merchant, customer, state))
        if intents.is_confirm_intent(text):
            return HandledMessage(flow="confirm", reply=engine.confirm_order(db, merchant, customer, state, now))

    if state.waiting_field:
        reply = engine.handle_structured_reply(db, merchant, customer, state, text, now)
        if reply is not None:
            return HandledMessage(flow="structured", reply=reply)

    if intents.is_catalog_intent(text):
        return await _send_catalog(db, merchant, inbound, gateway, exporter or get_catalog_exporter())
    if intents.is_listing_intent(text):
        products = list_active_products(db, merchant.id)
        return HandledMessage(flow="listing", reply=messages.product_listing(products))

    return await _ask_agent(db, merchant, customer, state, text, agent or get_agent_provider(), now)


async def _send_catalog(
    db: Session,
    merchant: Merchant,
    inbound: InboundMessage,
    gateway: WhatsAppService,
    exporter: CatalogExporter,
) -> HandledMessage:
    try:
        document = await exporter.export(db, merchant)
    except CatalogExportError as exc:
        logger.warning("catalog export failed: %s", exc, extra={"merchant_id": merchant.id})
        return HandledMessage(flow="catalog", reply=messages.CATALOG_UNAVAILABLE)

    log_entry = await gateway.send_document(
        db,
        merchant=merchant,
        chat_id=inbound.reply_chat_id,
        filename=document.filename,
        content=document.content,
        caption=messages.CATALOG_CAPTION,
    )
    if log_entry is None or log_entry.status == "failed":
        return HandledMessage(flow="catalog", reply=messages.CATALOG_UNAVAILABLE)
    return HandledMessage(flow="catalog", delivery_status=log_entry.status)


async def _ask_agent(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    state: ConversationState,
    text: str,
    agent: AgentProvider,
    now: datetime | None,
) -> HandledMessage:
    agent_input = build_agent_input(db, merchant, customer, state, text)
    response = await run_agent(agent, agent_input)

    reply = response.message
    for action in response.actions:
        result = apply_action(db, action, merchant, customer, now)
        if result.message:
            reply = result.message
    return HandledMessage(flow="agent", reply=reply or None)
