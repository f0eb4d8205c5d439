from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.ai.schema import (
    Action,
    AddToCart,
    AskInfo,
    CancelLastOrder,
    ClearCart,
    ConfirmOrder,
    ModifyLastOrder,
    RemoveFromCart,
    SetState,
    ShowLastOrder,
    UpdateCustomer,
)
from app.conversation import engine, messages
from app.conversation.states import ConversationState
from app.conversation.validators import validate
from app.models.customer import Customer
from app.models.merchant import Merchant
from app.services import cart as cart_service
from app.services import orders as order_service
from app.services.conversation_store import (
    get_conversation_state,
    merge_conversation_state,
    save_conversation_state,
)
from app.services.customers import update_customer_field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    message: str | None = None


def apply_action(
    db: Session,
    action: Action,
    merchant: Merchant,
    customer: Customer,
    now: datetime | None = None,
) -> ActionResult:
    """Execute one validated action. A returned message overrides the agent's own reply."""
    log_extra = {"merchant_id": merchant.id, "customer_id": customer.id}
    logger.info("applying action %s", action.type, extra=log_extra)

    if isinstance(action, AddToCart):
        try:
            cart_service.add_to_cart(db, merchant.id, customer.id, action.product_id, action.quantity)
        except cart_service.ProductNotFoundError:
            logger.warning("ADD_TO_CART unknown product_id=%s", action.product_id, extra=log_extra)
            return ActionResult(messages.PRODUCT_NOT_FOUND)
        return ActionResult()

    if isinstance(action, RemoveFromCart):
        try:
            cart_service.remove_from_cart(db, merchant.id, customer.id, action.product_id, action.quantity)
        except cart_service.ProductNotFoundError:
            logger.warning("REMOVE_FROM_CART unknown product_id=%s", action.product_id, extra=log_extra)
            return ActionResult(messages.PRODUCT_NOT_FOUND)
        return ActionResult()

    if isinstance(action, ClearCart):
        cart_service.clear_cart(db, merchant.id, customer.id)
        return ActionResult()

    if isinstance(action, SetState):
        if not action.state:
            return ActionResult()
        merged = merge_conversation_state(db, merchant.id, customer.id, action.state)
        # Agent patches can be loose; store the normalized version
        save_conversation_state(db, merchant.id, customer.id, ConversationState.from_document(merged))
        return ActionResult()

    state = get_conversation_state(db, merchant.id, customer.id)

    if isinstance(action, UpdateCustomer):
        if not validate(action.field, action.value):
            logger.info("UPDATE_CUSTOMER %s rejected, asking again", action.field, extra=log_extra)
            return ActionResult(engine.register_failure(db, merchant, customer, state, action.field))
        update_customer_field(db, customer, action.field, action.value)
        return ActionResult()

    if isinstance(action, AskInfo):
        save_conversation_state(
            db,
            merchant.id,
            customer.id,
            ConversationState.asking(
                action.field,
                state.draft,
                loop_guard=state.loop_guard,
                opted_out=state.opted_out,
            ),
        )
        return ActionResult()

    if isinstance(action, ShowLastOrder):
        order = order_service.get_last_order(db, merchant.id, customer.id)
        return ActionResult(messages.order_details(order) if order else messages.NO_LAST_ORDER)

    if isinstance(action, CancelLastOrder):
        try:
            order = order_service.cancel_last_order(db, merchant.id, customer.id)
        except order_service.OrderLockedError as exc:
            return ActionResult(messages.order_locked(exc.order, "annulée"))
        return ActionResult(messages.order_canceled(order) if order else messages.NO_LAST_ORDER)

    if isinstance(action, ModifyLastOrder):
        try:
            reloaded = order_service.reload_last_order_into_cart(db, merchant.id, customer.id)
        except order_service.OrderLockedError as exc:
            return ActionResult(messages.order_locked(exc.order, "modifiée"))
        if reloaded is None:
            return ActionResult(messages.NO_LAST_ORDER)
        order, skipped = reloaded
        save_conversation_state(
            db,
            merchant.id,
            customer.id,
            ConversationState.unset(state.draft, opted_out=state.opted_out),
        )
        return ActionResult(messages.order_reloaded(order, skipped))

    if isinstance(action, ConfirmOrder):
        return ActionResult(engine.confirm_order(db, merchant, customer, state, now))

    logger.warning("action %s has no handler", getattr(action, "type", action), extra=log_extra)
    return ActionResult()
