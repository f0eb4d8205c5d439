from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from app.ai.schema import AddToCart, AgentResponse, parse_action, parse_actions
from app.conversation import engine, messages
from app.conversation.states import ASKING_INFO
from app.models.order import Order
from app.services.actions import apply_action
from app.services.cart import add_to_cart, get_cart
from app.services.conversation_store import (
    get_conversation_document,
    get_conversation_state,
    merge_conversation_state,
)
from app.services.orders import OrderSnapshot, create_order_from_cart, get_last_order, update_order_status
from tests.db_helpers import add_customer, add_merchant, add_product, new_session

NOW = datetime(2025, 12, 1, 10, 0, tzinfo=ZoneInfo("Africa/Abidjan"))


def _setup():
    db = new_session()
    merchant = add_merchant(db)
    customer = add_customer(db, merchant)
    rice = add_product(db, merchant, "Riz 5kg", "5000")
    return db, merchant, customer, rice


def _apply(db, merchant, customer, raw):
    action = parse_action(raw)
    assert action is not None, raw
    return apply_action(db, action, merchant, customer, NOW)


def _place_order(db, merchant, customer, product):
    add_to_cart(db, merchant.id, customer.id, product.id, 2)
    snapshot = OrderSnapshot(
        recipient_mode="self",
        recipient_customer_id=customer.id,
        recipient_name="Awa",
        recipient_phone=customer.phone,
        recipient_address=None,
        delivery_address=None,
        delivery_requested_raw="demain",
        delivery_requested_at=None,
        payment_method="Wave",
    )
    return create_order_from_cart(db, merchant.id, customer.id, snapshot)


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "ADD_TO_CART", "product_id": "3"},
        {"type": "ADD_TO_CART", "product_id": 0},
        {"type": "ADD_TO_CART", "product_id": 3, "quantity": -1},
        {"type": "ADD_TO_CART"},
        {"type": "UPDATE_CUSTOMER", "field": "email", "value": "a@b.c"},
        {"type": "UPDATE_CUSTOMER", "field": "name", "value": "   "},
        {"type": "DROP_TABLES"},
        "ADD_TO_CART",
    ],
)
def test_malformed_actions_are_dropped(raw):
    assert parse_action(raw) is None


def test_parse_actions_keeps_the_valid_ones_in_order():
    actions = parse_actions(
        [
            {"type": "ADD_TO_CART", "product_id": 1, "quantity": 2},
            {"type": "NOPE"},
            {"type": "CLEAR_CART", "extra": True},
        ]
    )

    assert [action.type for action in actions] == ["ADD_TO_CART", "CLEAR_CART"]
    assert actions[0] == AddToCart(type="ADD_TO_CART", product_id=1, quantity=2)
    assert parse_actions({"type": "CLEAR_CART"}) == []


def test_agent_response_accepts_text_as_message():
    response = AgentResponse.from_payload({"text": " Salut ", "actions": None})

    assert response.message == "Salut"
    assert response.actions == []


def test_add_and_remove_from_cart():
    db, merchant, customer, rice = _setup()

    assert _apply(db, merchant, customer, {"type": "ADD_TO_CART", "product_id": rice.id, "quantity": 2}).message is None
    assert get_cart(db, merchant.id, customer.id)["items"][0]["quantity"] == 2

    assert _apply(db, merchant, customer, {"type": "REMOVE_FROM_CART", "product_id": rice.id}).message is None
    assert get_cart(db, merchant.id, customer.id)["items"] == []


def test_remove_from_cart_with_a_quantity_decrements_the_line():
    db, merchant, customer, rice = _setup()
    add_to_cart(db, merchant.id, customer.id, rice.id, 3)

    _apply(db, merchant, customer, {"type": "REMOVE_FROM_CART", "product_id": rice.id, "quantity": 1})
    item = get_cart(db, merchant.id, customer.id)["items"][0]
    assert item["quantity"] == 2
    assert item["total_price"] == Decimal("10000")

    _apply(db, merchant, customer, {"type": "REMOVE_FROM_CART", "product_id": rice.id, "quantity": 5})
    assert get_cart(db, merchant.id, customer.id)["items"] == []


def test_unknown_product_overrides_the_agent_message():
    db, merchant, customer, _ = _setup()

    result = _apply(db, merchant, customer, {"type": "ADD_TO_CART", "product_id": 999})

    assert result.message == messages.PRODUCT_NOT_FOUND


def test_empty_set_state_is_a_no_op():
    db, merchant, customer, _ = _setup()
    merge_conversation_state(db, merchant.id, customer.id, {"recipient_mode": "self", "agent_note": "vip"})

    _apply(db, merchant, customer, {"type": "SET_STATE", "state": {}})
    _apply(db, merchant, customer, {"type": "SET_STATE"})

    assert get_conversation_document(db, merchant.id, customer.id) == {"recipient_mode": "self", "agent_note": "vip"}


def test_set_state_is_merged_and_normalized():
    db, merchant, customer, _ = _setup()
    merge_conversation_state(db, merchant.id, customer.id, {"recipient_mode": "self"})

    _apply(db, merchant, customer, {"type": "SET_STATE", "state": {"waiting_field": "self_name"}})

    document = get_conversation_document(db, merchant.id, customer.id)
    assert document["step"] == ASKING_INFO
    assert document["waiting_field"] == "name"
    assert document["recipient_mode"] == "self"


def test_set_state_with_an_unreadable_delivery_timestamp_asks_for_the_date_again():
    db, merchant, customer, rice = _setup()
    customer.name = "Awa Traoré"
    customer.payment_method = "Wave"
    db.commit()
    add_to_cart(db, merchant.id, customer.id, rice.id)

    _apply(
        db,
        merchant,
        customer,
        {
            "type": "SET_STATE",
            "state": {
                "step": "AWAITING_CONFIRMATION",
                "recipient_mode": "self",
                "delivery_requested_raw": "31/12/2025",
                "delivery_requested_at": "31/12/2025 13:00",
            },
        },
    )

    state = get_conversation_state(db, merchant.id, customer.id)
    assert state.draft.delivery_requested_at is None
    assert "delivery_requested_at" not in get_conversation_document(db, merchant.id, customer.id)

    reply = engine.confirm_order(db, merchant, customer, state, NOW)

    assert reply == messages.question_for("delivery_requested_raw")
    assert get_conversation_state(db, merchant.id, customer.id).waiting_field == "delivery_requested_raw"
    assert db.query(Order).count() == 0


def test_set_state_drops_values_too_long_for_the_order():
    db, merchant, customer, _ = _setup()

    _apply(
        db,
        merchant,
        customer,
        {
            "type": "SET_STATE",
            "state": {"recipient_mode": "third_party", "recipient_name": "A" * 300, "recipient_address": "Cocody"},
        },
    )

    state = get_conversation_state(db, merchant.id, customer.id)
    assert state.draft.recipient_name is None
    assert state.draft.recipient_address == "Cocody"


def test_update_customer_revalidates_the_value():
    db, merchant, customer, _ = _setup()

    result = _apply(db, merchant, customer, {"type": "UPDATE_CUSTOMER", "field": "name", "value": "ok"})

    assert result.message == messages.clarification_for("name")
    db.refresh(customer)
    assert customer.name is None
    state = get_conversation_state(db, merchant.id, customer.id)
    assert state.step == ASKING_INFO
    assert state.waiting_field == "name"


def test_update_customer_stores_canonical_payment_method():
    db, merchant, customer, _ = _setup()

    assert _apply(db, merchant, customer, {"type": "UPDATE_CUSTOMER", "field": "payment_method", "value": "wave"}).message is None

    db.refresh(customer)
    assert customer.payment_method == "Wave"


def test_ask_info_waits_for_the_field():
    db, merchant, customer, _ = _setup()

    _apply(db, merchant, customer, {"type": "ASK_INFO", "field": "address"})

    state = get_conversation_state(db, merchant.id, customer.id)
    assert state.step == ASKING_INFO
    assert state.waiting_field == "address"


def test_last_order_actions():
    db, merchant, customer, rice = _setup()
    assert _apply(db, merchant, customer, {"type": "SHOW_LAST_ORDER"}).message == messages.NO_LAST_ORDER

    order = _place_order(db, merchant, customer, rice)
    shown = _apply(db, merchant, customer, {"type": "SHOW_LAST_ORDER"}).message
    assert f"Commande #{order.id}" in shown
    assert "10 000 XOF" in shown

    update_order_status(db, merchant.id, order.id, "DELIVERED")
    locked = _apply(db, merchant, customer, {"type": "CANCEL_LAST_ORDER"}).message
    assert locked == messages.order_locked(order, "annulée")
    assert "livrée" in locked


def test_modify_last_order_reloads_the_cart():
    db, merchant, customer, rice = _setup()
    order = _place_order(db, merchant, customer, rice)

    result = _apply(db, merchant, customer, {"type": "MODIFY_LAST_ORDER"})

    assert result.message == messages.order_reloaded(order, 0)
    assert get_last_order(db, merchant.id, customer.id).status == "CANCELED"
    assert get_cart(db, merchant.id, customer.id)["items"][0]["quantity"] == 2


def test_cancel_last_order():
    db, merchant, customer, rice = _setup()
    order = _place_order(db, merchant, customer, rice)

    result = _apply(db, merchant, customer, {"type": "CANCEL_LAST_ORDER"})

    assert result.message == messages.order_canceled(order)
    assert get_last_order(db, merchant.id, customer.id).status == "CANCELED"


def test_confirm_order_starts_collecting_details():
    db, merchant, customer, rice = _setup()
    add_to_cart(db, merchant.id, customer.id, rice.id)

    result = _apply(db, merchant, customer, {"type": "CONFIRM_ORDER"})

    assert result.message == messages.question_for("recipient_mode")
    assert get_conversation_state(db, merchant.id, customer.id).waiting_field == "recipient_mode"
