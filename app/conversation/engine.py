"""Order-collection state machine.

Both input channels end up here: the structured reply handler (the customer
answers a question we asked) and the action applicator (the agent asked for
CONFIRM_ORDER, ASK_INFO, ...). Whatever the channel, the next question is
always picked by ``next_missing_field`` so the two agree on ordering.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from sqlalchemy.orm import Session

from app.conversation import messages
from app.conversation.delivery_dates import is_past, parse_delivery_date, parse_stored_timestamp
from app.conversation.states import ConversationState, LoopGuard
from app.conversation.validators import (
    RECIPIENT_SELF,
    parse_recipient_mode,
    validate,
)
from app.core.config import LOOP_GUARD_MAX_ATTEMPTS
from app.models.customer import Customer
from app.models.merchant import Merchant
from app.services.cart import clear_cart, get_cart, get_cart_items
from app.services.conversation_store import reset_conversation_state, save_conversation_state
from app.services.customers import (
    fill_customer_profile,
    find_or_create_customer,
    normalize_phone,
    update_customer_field,
)
from app.services.orders import EmptyCartError, OrderSnapshot, create_order_from_cart

logger = logging.getLogger(__name__)

# Fields the structured reply handler knows how to store
STRUCTURED_FIELDS = (
    "recipient_mode",
    "name",
    "recipient_name",
    "recipient_phone",
    "recipient_address",
    "address",
    "payment_method",
    "delivery_requested_raw",
)


def next_missing_field(state: ConversationState, customer: Customer) -> str | None:
    draft = state.draft
    if draft.recipient_mode is None:
        return "recipient_mode"
    if draft.recipient_mode == RECIPIENT_SELF:
        if not validate("name", customer.name or ""):
            return "name"
    else:
        if not draft.recipient_name:
            return "recipient_name"
        if not draft.recipient_phone:
            return "recipient_phone"
        if not draft.recipient_address:
            return "recipient_address"
    if not customer.payment_method:
        return "payment_method"
    if not draft.delivery_requested_raw or not draft.delivery_requested_at:
        return "delivery_requested_raw"
    return None


def _save(db: Session, merchant: Merchant, customer: Customer, state: ConversationState) -> ConversationState:
    return save_conversation_state(db, merchant.id, customer.id, state)


def ask_field(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    state: ConversationState,
    field: str,
    *,
    loop_guard: LoopGuard | None = None,
) -> str:
    _save(
        db,
        merchant,
        customer,
        ConversationState.asking(field, state.draft, loop_guard=loop_guard, opted_out=state.opted_out),
    )
    return messages.question_for(field)


def register_failure(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    state: ConversationState,
    field: str,
    message: str | None = None,
) -> str:
    """Re-ask ``field`` or hand off to a human once the same question failed too often."""
    key = f"{field}_question"
    guard = state.loop_guard.bump(key) if state.loop_guard else LoopGuard(key=key)
    if guard.count > LOOP_GUARD_MAX_ATTEMPTS:
        _save(db, merchant, customer, ConversationState.needs_human(state.draft, guard))
        logger.warning(
            "conversation handed off after %s failed answers to %s",
            guard.count,
            key,
            extra={"merchant_id": merchant.id, "customer_id": customer.id},
        )
        return messages.HANDOFF

    _save(
        db,
        merchant,
        customer,
        ConversationState.asking(field, state.draft, loop_guard=guard, opted_out=state.opted_out),
    )
    return message or messages.clarification_for(field)


def _recipient(state: ConversationState, customer: Customer) -> dict:
    if state.draft.is_third_party:
        return {
            "name": state.draft.recipient_name,
            "phone": state.draft.recipient_phone,
            "address": state.draft.recipient_address,
        }
    return {"name": customer.name, "phone": None, "address": customer.address}


def advance(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    state: ConversationState,
    now: datetime | None = None,
) -> str:
    """Ask the next missing field, or show the summary and wait for confirmation."""
    missing = next_missing_field(state, customer)
    if missing:
        return ask_field(db, merchant, customer, state, missing)

    cart = get_cart(db, merchant.id, customer.id)
    if not cart["items"]:
        _save(db, merchant, customer, ConversationState.unset(state.draft, opted_out=state.opted_out))
        return messages.EMPTY_CART

    _save(db, merchant, customer, ConversationState.awaiting_confirmation_of(state.draft, opted_out=state.opted_out))
    return messages.order_summary(
        cart,
        _recipient(state, customer),
        customer.payment_method,
        state.draft.delivery_requested_raw,
    )


def handle_structured_reply(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    state: ConversationState,
    text: str,
    now: datetime | None = None,
) -> str | None:
    """Store the answer to the pending question. Returns None when the field is not ours to handle."""
    field = state.waiting_field
    if field not in STRUCTURED_FIELDS:
        return None

    answer = (text or "").strip()
    if not validate(field, answer):
        return register_failure(db, merchant, customer, state, field)

    draft = state.draft
    if field == "recipient_mode":
        mode = parse_recipient_mode(answer)
        if mode is None:
            return register_failure(db, merchant, customer, state, field)
        draft = replace(draft, recipient_mode=mode)
        if mode == RECIPIENT_SELF:
            draft = replace(draft, recipient_name=None, recipient_phone=None, recipient_address=None)
    elif field in ("name", "address", "payment_method"):
        update_customer_field(db, customer, field, answer)
    elif field == "recipient_name":
        draft = replace(draft, recipient_name=answer)
    elif field == "recipient_phone":
        draft = replace(draft, recipient_phone=normalize_phone(answer))
    elif field == "recipient_address":
        draft = replace(draft, recipient_address=answer)
    elif field == "delivery_requested_raw":
        resolved = parse_delivery_date(answer, now)
        if resolved is None:
            return register_failure(db, merchant, customer, state, field)
        if is_past(resolved, now):
            return register_failure(db, merchant, customer, state, field, messages.DELIVERY_IN_PAST)
        draft = replace(draft, delivery_requested_raw=answer, delivery_requested_at=resolved.isoformat())

    # A good answer clears the loop guard
    return advance(db, merchant, customer, ConversationState.unset(draft, opted_out=state.opted_out), now)


def _snapshot(db: Session, merchant: Merchant, customer: Customer, state: ConversationState) -> OrderSnapshot:
    draft = state.draft
    delivery_at = parse_stored_timestamp(draft.delivery_requested_at)

    if draft.is_third_party:
        recipient = find_or_create_customer(db, merchant.id, draft.recipient_phone)
        fill_customer_profile(db, recipient, name=draft.recipient_name, address=draft.recipient_address)
        return OrderSnapshot(
            recipient_mode=draft.recipient_mode,
            recipient_customer_id=recipient.id,
            recipient_name=draft.recipient_name,
            recipient_phone=draft.recipient_phone,
            recipient_address=draft.recipient_address,
            delivery_address=draft.recipient_address,
            delivery_requested_raw=draft.delivery_requested_raw,
            delivery_requested_at=delivery_at,
            payment_method=customer.payment_method,
        )

    return OrderSnapshot(
        recipient_mode=RECIPIENT_SELF,
        recipient_customer_id=customer.id,
        recipient_name=customer.name,
        recipient_phone=customer.phone,
        recipient_address=customer.address,
        delivery_address=customer.address,
        delivery_requested_raw=draft.delivery_requested_raw,
        delivery_requested_at=delivery_at,
        payment_method=customer.payment_method,
    )


def _empty_cart(db: Session, merchant: Merchant, customer: Customer, state: ConversationState) -> str:
    _save(db, merchant, customer, ConversationState.unset(state.draft, opted_out=state.opted_out))
    return messages.EMPTY_CART


def confirm_order(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    state: ConversationState,
    now: datetime | None = None,
) -> str:
    if not state.awaiting_confirmation:
        return advance(db, merchant, customer, state, now)

    missing = next_missing_field(state, customer)
    if missing:
        return ask_field(db, merchant, customer, state, missing)

    if is_past(state.draft.delivery_requested_at, now):
        past = ConversationState.unset(state.draft.without_delivery(), opted_out=state.opted_out)
        ask_field(db, merchant, customer, past, "delivery_requested_raw")
        return messages.DELIVERY_IN_PAST

    # Checked before the snapshot, which may create the third-party recipient
    if not get_cart_items(db, merchant.id, customer.id):
        return _empty_cart(db, merchant, customer, state)

    snapshot = _snapshot(db, merchant, customer, state)
    try:
        order = create_order_from_cart(db, merchant.id, customer.id, snapshot)
    except EmptyCartError:
        return _empty_cart(db, merchant, customer, state)

    reset_conversation_state(db, merchant.id, customer.id, ConversationState.completed().to_document())
    return messages.order_confirmed(order, snapshot.recipient_name, state.draft.is_third_party)


def cancel_pending_order(db: Session, merchant: Merchant, customer: Customer, state: ConversationState) -> str:
    """Customer backed out at the summary: empty the cart and forget the collected draft."""
    clear_cart(db, merchant.id, customer.id)
    reset_conversation_state(db, merchant.id, customer.id, {"opted_out": state.opted_out or None})
    logger.info("pending order canceled by customer", extra={"merchant_id": merchant.id, "customer_id": customer.id})
    return messages.ORDER_CANCELED_BY_CUSTOMER
