from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.ai.schema import AgentResponse
from app.ai.service import get_agent_provider
from app.conversation.states import ConversationState, LoopGuard, OrderDraft
from app.core import config
from app.core.database import get_db
from app.models.whatsapp_message_log import WhatsAppMessageLog
from app.routers.conversations import router as conversations_router
from app.routers.orders import router as orders_router
from app.routers.webhook import router as webhook_router
from app.services.cart import add_to_cart
from app.services.catalog_cache import CatalogDocument
from app.services.catalog_export import catalog_cache, get_catalog_exporter
from app.services.conversation_store import get_conversation_state, save_conversation_state
from app.services.orders import OrderSnapshot, create_order_from_cart
from app.whatsapp.base import create_message_log
from app.whatsapp.mock_provider import MockWhatsAppProvider
from app.whatsapp.service import WhatsAppService, get_whatsapp_service
from tests.db_helpers import add_customer, add_merchant, add_product, build_session_factory
from tests.fixtures_data import SIMPLE_INBOUND, WAHA_INBOUND

ADMIN_HEADERS = {"X-Admin-Key": "secret"}


class _FakeAgent:
    name = "fake"

    def __init__(self, message="Bonjour, que veux-tu commander ?"):
        self.message = message
        self.calls = 0

    async def generate(self, agent_input):
        self.calls += 1
        return AgentResponse(message=self.message)


class _FailingProvider(MockWhatsAppProvider):
    name = "failing"

    async def send_text(self, db, *, merchant, chat_id, text):
        return create_message_log(
            db,
            merchant_id=merchant.id,
            direction="out",
            chat_id=chat_id,
            message_type="text",
            payload={"chatId": chat_id, "text": text},
            status="failed",
            error="gateway unreachable",
        )


class _FakeExporter:
    async def export(self, db, merchant):
        return CatalogDocument(filename="catalogue.pdf", content=b"%PDF")


def _build_client(session_factory, agent=None, provider=None):
    app = FastAPI()
    app.include_router(webhook_router)
    app.include_router(orders_router)
    app.include_router(conversations_router)

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    gateway = WhatsAppService(mock_provider=provider or MockWhatsAppProvider())
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_agent_provider] = lambda: agent or _FakeAgent()
    app.dependency_overrides[get_whatsapp_service] = lambda: gateway
    app.dependency_overrides[get_catalog_exporter] = lambda: _FakeExporter()
    return TestClient(app)


def _setup(**merchant_overrides):
    session_factory = build_session_factory()
    db = session_factory()
    merchant = add_merchant(db, **merchant_overrides)
    return session_factory, db, merchant


def _outbound_texts(db):
    return [
        log.payload_json
        for log in db.query(WhatsAppMessageLog).filter(WhatsAppMessageLog.direction == "out").all()
    ]


def test_webhook_answers_through_the_agent():
    session_factory, db, merchant = _setup()
    agent = _FakeAgent()
    client = _build_client(session_factory, agent=agent)

    response = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "flow": "agent", "delivery": "sent"}
    assert agent.calls == 1
    directions = sorted(log.direction for log in db.query(WhatsAppMessageLog).all())
    assert directions == ["in", "out"]
    assert "que veux-tu commander" in _outbound_texts(db)[0]


def test_webhook_ignores_unknown_merchants():
    session_factory, _, _ = _setup(whatsapp_number="+2250999999999")
    client = _build_client(session_factory)

    response = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)

    assert response.json() == {"status": "ignored", "reason": "unknown_merchant"}


def test_webhook_deduplicates_message_ids():
    session_factory, _, _ = _setup()
    agent = _FakeAgent()
    client = _build_client(session_factory, agent=agent)

    first = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)
    second = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)

    assert first.json()["status"] == "ok"
    assert second.json() == {"status": "duplicate"}
    assert agent.calls == 1


def test_webhook_does_not_answer_for_suspended_merchants():
    session_factory, db, _ = _setup(is_suspended=True)
    agent = _FakeAgent()
    client = _build_client(session_factory, agent=agent)

    response = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)

    assert response.json() == {"status": "ignored", "reason": "merchant_inactive"}
    assert agent.calls == 0
    assert _outbound_texts(db) == []


def test_webhook_does_not_answer_after_subscription_expiry():
    expired = datetime.now(timezone.utc) - timedelta(days=1)
    session_factory, _, _ = _setup(subscription_expires_at=expired)
    client = _build_client(session_factory)

    response = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)

    assert response.json()["reason"] == "merchant_inactive"


def test_webhook_rejects_invalid_json():
    session_factory, _, _ = _setup()
    client = _build_client(session_factory)

    response = client.post(
        "/webhook/whatsapp",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_webhook_ignores_unsupported_payloads():
    session_factory, _, _ = _setup()
    client = _build_client(session_factory)

    response = client.post("/webhook/whatsapp", json={"hello": "world"})

    assert response.json() == {"status": "ignored", "reason": "unsupported_payload"}


def test_waha_webhook_routes_by_session():
    session_factory, db, merchant = _setup()
    client = _build_client(session_factory)

    response = client.post("/webhook/waha", json=WAHA_INBOUND)

    assert response.json()["status"] == "ok"
    inbound_log = db.query(WhatsAppMessageLog).filter(WhatsAppMessageLog.direction == "in").one()
    assert inbound_log.merchant_id == merchant.id
    assert inbound_log.chat_id == "2250700000001@c.us"


def test_failed_delivery_is_reported_as_error():
    session_factory, _, _ = _setup()
    client = _build_client(session_factory, provider=_FailingProvider())

    response = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)

    assert response.status_code == 200
    assert response.json() == {"status": "error", "flow": "agent", "delivery": "failed"}


def test_admin_routes_are_disabled_without_a_key(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "")
    session_factory, _, merchant = _setup()
    client = _build_client(session_factory)

    response = client.get(f"/api/merchants/{merchant.id}/orders", headers=ADMIN_HEADERS)

    assert response.status_code == 503


def test_admin_routes_reject_a_bad_key(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "secret")
    session_factory, _, merchant = _setup()
    client = _build_client(session_factory)

    assert client.get(f"/api/merchants/{merchant.id}/orders").status_code == 401
    response = client.get(f"/api/merchants/{merchant.id}/orders", headers={"X-Admin-Key": "nope"})
    assert response.status_code == 401


def _place_order(db, merchant):
    customer = add_customer(db, merchant, name="Awa Traoré")
    rice = add_product(db, merchant, "Riz 5kg", "5000")
    add_to_cart(db, merchant.id, customer.id, rice.id, 2)
    snapshot = OrderSnapshot(
        recipient_mode="self",
        recipient_customer_id=customer.id,
        recipient_name=customer.name,
        recipient_phone=customer.phone,
        recipient_address="Cocody Angré",
        delivery_address="Cocody Angré",
        delivery_requested_raw="demain 15h",
        delivery_requested_at=None,
        payment_method="Wave",
    )
    return create_order_from_cart(db, merchant.id, customer.id, snapshot)


def test_admin_can_list_read_and_update_orders(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "secret")
    session_factory, db, merchant = _setup()
    order = _place_order(db, merchant)
    client = _build_client(session_factory)
    base = f"/api/merchants/{merchant.id}/orders"

    listed = client.get(base, headers=ADMIN_HEADERS)
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [order.id]
    assert listed.json()[0]["items"][0]["quantity"] == 2

    detail = client.get(f"{base}/{order.id}", headers=ADMIN_HEADERS)
    assert detail.json()["total_amount"] in ("10000", "10000.00")

    updated = client.put(f"{base}/{order.id}/status", json={"status": "delivered"}, headers=ADMIN_HEADERS)
    assert updated.status_code == 200
    assert updated.json()["status"] == "DELIVERED"

    filtered = client.get(base, params={"status": "pending"}, headers=ADMIN_HEADERS)
    assert filtered.json() == []


def test_admin_order_errors(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "secret")
    session_factory, db, merchant = _setup()
    order = _place_order(db, merchant)
    client = _build_client(session_factory)
    base = f"/api/merchants/{merchant.id}/orders"

    assert client.get(f"{base}/9999", headers=ADMIN_HEADERS).status_code == 404
    assert client.get("/api/merchants/9999/orders", headers=ADMIN_HEADERS).status_code == 404
    invalid = client.put(f"{base}/{order.id}/status", json={"status": "LOST"}, headers=ADMIN_HEADERS)
    assert invalid.status_code == 422


def test_reset_hands_the_conversation_back_to_the_bot(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "secret")
    session_factory, db, merchant = _setup()
    customer = add_customer(db, merchant)
    save_conversation_state(
        db,
        merchant.id,
        customer.id,
        ConversationState.needs_human(OrderDraft(recipient_mode="self"), LoopGuard("address_question", 4)),
    )
    agent = _FakeAgent()
    client = _build_client(session_factory, agent=agent)

    silent = client.post("/webhook/whatsapp", json=SIMPLE_INBOUND)
    assert silent.json() == {"status": "ok", "flow": "handoff", "delivery": None}

    response = client.post(
        f"/api/merchants/{merchant.id}/customers/{customer.id}/conversation/reset",
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "previous_step": "NEEDS_HUMAN", "state": {}}
    db.expire_all()
    assert get_conversation_state(db, merchant.id, customer.id) == ConversationState()

    answered = client.post("/webhook/whatsapp", json={**SIMPLE_INBOUND, "id": "msg-0002"})
    assert answered.json()["flow"] == "agent"
    assert agent.calls == 1


def test_reset_unknown_customer(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "secret")
    session_factory, _, merchant = _setup()
    client = _build_client(session_factory)

    response = client.post(
        f"/api/merchants/{merchant.id}/customers/9999/conversation/reset",
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 404


def test_catalog_invalidation(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "secret")
    session_factory, _, merchant = _setup()
    catalog_cache.put(merchant.id, CatalogDocument(filename="old.pdf", content=b"%PDF"))
    client = _build_client(session_factory)

    response = client.post(f"/api/merchants/{merchant.id}/catalog/invalidate", headers=ADMIN_HEADERS)

    assert response.json() == {"status": "ok"}
    assert catalog_cache.get(merchant.id) is None
