from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.ai.agent_client import FALLBACK_MESSAGE, HttpAgentProvider
from app.ai.base import AgentProvider
from app.ai.mock_provider import MockAgentProvider
from app.ai.schema import AgentResponse
from app.conversation.states import ConversationState
from app.core.config import AGENT_API_URL
from app.models.customer import Customer
from app.models.merchant import Merchant
from app.services.cart import get_cart, list_active_products

logger = logging.getLogger(__name__)


def get_agent_provider() -> AgentProvider:
    if AGENT_API_URL:
        return HttpAgentProvider(AGENT_API_URL)
    return MockAgentProvider()


def _number(value: Any) -> float | int:
    value = Decimal(str(value or 0))
    return int(value) if value == value.to_integral_value() else float(value)


def build_agent_input(
    db: Session,
    merchant: Merchant,
    customer: Customer,
    state: ConversationState,
    text: str,
) -> dict[str, Any]:
    cart = get_cart(db, merchant.id, customer.id)
    products = list_active_products(db, merchant.id)
    return {
        "message": text,
        "merchant": {"id": merchant.id, "name": merchant.name},
        "customer": {
            "id": customer.id,
            "phone": customer.phone,
            "name": customer.name,
            "known_fields": {
                "address": customer.address,
                "payment_method": customer.payment_method,
            },
        },
        "cart": {
            "items": [
                {
                    "product_id": item["product_id"],
                    "name": item["name"],
                    "quantity": item["quantity"],
                    "unit_price": _number(item["unit_price"]),
                    "total_price": _number(item["total_price"]),
                }
                for item in cart["items"]
            ],
            "total": _number(cart["total"]),
            "currency": cart["currency"],
        },
        "products": [
            {
                "id": product.id,
                "name": product.name,
                "description": product.description,
                "price": _number(product.price),
                "currency": product.currency,
                "code": product.code,
                "category": product.category,
            }
            for product in products
        ],
        "conversation_state": state.to_document(),
    }


async def run_agent(provider: AgentProvider, agent_input: dict[str, Any]) -> AgentResponse:
    try:
        return await provider.generate(agent_input)
    except Exception:
        logger.exception("agent provider %s failed", getattr(provider, "name", "?"))
        return AgentResponse(message=FALLBACK_MESSAGE)
