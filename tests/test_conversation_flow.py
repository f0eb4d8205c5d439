from datetime import datetime
from zoneinfo import ZoneInfo

from app.conversation import engine, messages
from app.conversation.states import (
    ASKING_INFO,
    AWAITING_CONFIRMATION,
    COMPLETED,
    NEEDS_HUMAN,
    ConversationState,
    OrderDraft,
)
from app.models.customer import Customer
from app.models.order import Order
from app.services.cart import add_to_cart, get_cart
from app.services.conversation_store import get_conversation_document, get_conversation_state
from tests.db_helpers import add_customer, add_merchant, add_product, new_session

NOW = datetime(2025, 12, 1, 10, 0, tzinfo=ZoneInfo("Africa/Abidjan"))


def _setup():
    db = new_session()
    merchant = add_merchant(db)
    customer = add_customer(db, merchant)
    rice = add_product(db, merchant, "Riz 5kg", "5000")
    add_to_cart(db, merchant.id, customer.id, rice.id)
    return db, merchant, customer


def _reply(db, merchant, customer, text):
    state = get_conversation_state(db, merchant.id, customer.id)
    return engine.handle_structured_reply(db, merchant, customer, state, text, NOW)


def test_self_order_reaches_confirmation_with_summary():
    db, merchant, customer = _setup()

    first = engine.confirm_order(db, merchant, customer, ConversationState(), NOW)
    assert first == messages.question_for("recipient_mode")

    assert _reply(db, merchant, customer, "1") == messages.question_for("name")
    assert _reply(db, merchant, customer, "Awa Traoré") == messages.question_for("payment_method")
    assert _reply(db, merchant, customer, "orange money") == messages.question_for("delivery_requested_raw")
    summary = _reply(db, merchant, customer, "demain à 15h")

    state = get_conversation_state(db, merchant.id, customer.id)
    assert state.step == AWAITING_CONFIRMATION
    assert state.waiting_field is None
    assert state.draft.delivery_requested_raw == "demain à 15h"
    assert state.draft.delivery_requested_at == "2025-12-02T15:00:00+00:00"
    assert "5 000 XOF" in summary
    assert "demain à 15h" in summary
    assert messages.CONFIRMATION_PROMPT in summary

    db.refresh(customer)
    assert customer.name == "Awa Traoré"
    assert customer.payment_method == "Orange Money"


def test_confirmation_creates_the_order_and_completes():
    db, merchant, customer = _setup()
    engine.confirm_order(db, merchant, customer, ConversationState(), NOW)
    for answer in ("1", "Awa Traoré", "wave", "demain à 15h"):
        _reply(db, merchant, customer, answer)

    state = get_conversation_state(db, merchant.id, customer.id)
    reply = engine.confirm_order(db, merchant, customer, state, NOW)

    order = db.query(Order).one()
    assert "confirmée" in reply
    assert f"#{order.id}" in reply
    assert order.recipient_mode == "self"
    assert order.recipient_customer_id == customer.id
    assert order.payment_method_snapshot == "Wave"
    assert get_cart(db, merchant.id, customer.id)["items"] == []
    assert get_conversation_state(db, merchant.id, customer.id).step == COMPLETED
    assert get_conversation_document(db, merchant.id, customer.id) == {"step": "COMPLETED", "order_completed": True}


def test_known_customer_skips_known_fields():
    db, merchant, customer = _setup()
    customer.name = "Awa"
    customer.payment_method = "Wave"
    db.commit()

    state = ConversationState(draft=OrderDraft(recipient_mode="self"))
    assert engine.advance(db, merchant, customer, state, NOW) == messages.question_for("delivery_requested_raw")


def test_third_party_order_records_the_recipient():
    db, merchant, customer = _setup()
    customer.payment_method = "Wave"
    db.commit()
    engine.confirm_order(db, merchant, customer, ConversationState(), NOW)

    assert _reply(db, merchant, customer, "2") == messages.question_for("recipient_name")
    assert _reply(db, merchant, customer, "Fatou Koné") == messages.question_for("recipient_phone")
    assert _reply(db, merchant, customer, "07 07 07 07 07") == messages.question_for("recipient_address")
    assert _reply(db, merchant, customer, "Yopougon Niangon") == messages.question_for("delivery_requested_raw")
    summary = _reply(db, merchant, customer, "le 25 décembre")
    assert "Fatou Koné" in summary

    state = get_conversation_state(db, merchant.id, customer.id)
    reply = engine.confirm_order(db, merchant, customer, state, NOW)

    order = db.query(Order).one()
    recipient = db.query(Customer).filter(Customer.phone == "+0707070707").one()
    assert "pour Fatou Koné" in reply
    assert order.recipient_mode == "third_party"
    assert order.recipient_customer_id == recipient.id
    assert order.delivery_address == "Yopougon Niangon"
    assert recipient.name == "Fatou Koné"
    assert recipient.address == "Yopougon Niangon"


def test_four_bad_answers_hand_off_to_a_human():
    db, merchant, customer = _setup()
    engine.confirm_order(db, merchant, customer, ConversationState(), NOW)
    for answer in ("2", "Fatou Koné", "0707070707"):
        _reply(db, merchant, customer, answer)

    replies = [_reply(db, merchant, customer, "ok") for _ in range(4)]

    assert replies[:3] == [messages.clarification_for("recipient_address")] * 3
    assert replies[3] == messages.HANDOFF
    document = get_conversation_document(db, merchant.id, customer.id)
    assert document["step"] == NEEDS_HUMAN
    assert document["loop_guard"] == {"key": "recipient_address_question", "count": 4}
    assert "waiting_field" not in document


def test_a_good_answer_resets_the_loop_guard():
    db, merchant, customer = _setup()
    engine.confirm_order(db, merchant, customer, ConversationState(), NOW)
    _reply(db, merchant, customer, "1")

    assert _reply(db, merchant, customer, "👍") == messages.clarification_for("name")
    assert get_conversation_state(db, merchant.id, customer.id).loop_guard.count == 1
    _reply(db, merchant, customer, "Awa")

    assert get_conversation_state(db, merchant.id, customer.id).loop_guard is None


def test_unreadable_recipient_mode_is_asked_again():
    db, merchant, customer = _setup()
    engine.confirm_order(db, merchant, customer, ConversationState(), NOW)

    assert _reply(db, merchant, customer, "bof") == messages.clarification_for("recipient_mode")
    state = get_conversation_state(db, merchant.id, customer.id)
    assert state.step == ASKING_INFO
    assert state.waiting_field == "recipient_mode"


def test_past_delivery_date_is_refused():
    db, merchant, customer = _setup()
    customer.name = "Awa"
    customer.payment_method = "Wave"
    db.commit()
    engine.advance(db, merchant, customer, ConversationState(draft=OrderDraft(recipient_mode="self")), NOW)

    assert _reply(db, merchant, customer, "01/01/2020") == messages.DELIVERY_IN_PAST
    assert get_conversation_state(db, merchant.id, customer.id).waiting_field == "delivery_requested_raw"


def test_confirming_after_the_date_has_passed_asks_again():
    db, merchant, customer = _setup()
    customer.name = "Awa"
    customer.payment_method = "Wave"
    db.commit()
    draft = OrderDraft(
        recipient_mode="self",
        delivery_requested_raw="aujourd'hui 9h",
        delivery_requested_at="2025-12-01T09:00:00+00:00",
    )

    reply = engine.confirm_order(db, merchant, customer, ConversationState.awaiting_confirmation_of(draft), NOW)

    state = get_conversation_state(db, merchant.id, customer.id)
    assert reply == messages.DELIVERY_IN_PAST
    assert state.waiting_field == "delivery_requested_raw"
    assert state.draft.delivery_requested_at is None
    assert db.query(Order).count() == 0


def test_empty_cart_at_summary():
    db = new_session()
    merchant = add_merchant(db)
    customer = add_customer(db, merchant, name="Awa", payment_method="Wave")
    draft = OrderDraft(
        recipient_mode="self",
        delivery_requested_raw="demain",
        delivery_requested_at="2025-12-02T14:00:00+00:00",
    )

    reply = engine.advance(db, merchant, customer, ConversationState(draft=draft), NOW)

    assert reply == messages.EMPTY_CART
    assert get_conversation_state(db, merchant.id, customer.id).step is None


def test_empty_cart_at_confirmation_does_not_create_the_recipient():
    db = new_session()
    merchant = add_merchant(db)
    customer = add_customer(db, merchant, name="Awa", payment_method="Wave")
    draft = OrderDraft(
        recipient_mode="third_party",
        recipient_name="Fatou Koné",
        recipient_phone="+0707070707",
        recipient_address="Yopougon Niangon",
        delivery_requested_raw="demain",
        delivery_requested_at="2025-12-02T14:00:00+00:00",
    )

    reply = engine.confirm_order(db, merchant, customer, ConversationState.awaiting_confirmation_of(draft), NOW)

    assert reply == messages.EMPTY_CART
    assert db.query(Customer).count() == 1
    assert db.query(Order).count() == 0
    assert get_conversation_state(db, merchant.id, customer.id).step is None


def test_cancel_pending_order_clears_cart_and_draft():
    db, merchant, customer = _setup()
    draft = OrderDraft(recipient_mode="self", delivery_requested_raw="demain")

    reply = engine.cancel_pending_order(db, merchant, customer, ConversationState.awaiting_confirmation_of(draft))

    assert reply == messages.ORDER_CANCELED_BY_CUSTOMER
    assert get_cart(db, merchant.id, customer.id)["items"] == []
    assert get_conversation_document(db, merchant.id, customer.id) == {}


def test_structured_reply_ignores_fields_it_does_not_own():
    db, merchant, customer = _setup()
    state = ConversationState.asking("favorite_color")

    assert engine.handle_structured_reply(db, merchant, customer, state, "bleu", NOW) is None
