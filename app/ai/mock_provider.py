from __future__ import annotations

import re
from typing import Any

from app.ai.schema import AgentResponse, parse_actions
from app.conversation.text import fold

_QUANTITY_WORDS = {
    "un": 1,
    "une": 1,
    "deux": 2,
    "trois": 3,
    "quatre": 4,
    "cinq": 5,
    "six": 6,
    "sept": 7,
    "huit": 8,
    "neuf": 9,
    "dix": 10,
}

_GREETINGS = ("bonjour", "bonsoir", "salut", "hello", "coucou", "bjr", "slt")
_ORDER_WORDS = ("commander", "je valide", "valider", "passer commande", "c'est tout", "finaliser")


def _has(text: str, *words: str) -> bool:
    return any(re.search(rf"(?<![\w']){re.escape(word)}(?![\w'])", text) for word in words)


def _extract_quantity(text: str, product_name: str) -> int:
    # Ignore digits that belong to the product name ("Riz 5kg")
    name_tokens = set(fold(product_name).split())
    for token in text.split():
        if token in name_tokens:
            continue
        if token.isdigit():
            return max(int(token), 1)
        if token.endswith("x") and token[:-1].isdigit():
            return max(int(token[:-1]), 1)
        if token in _QUANTITY_WORDS:
            return _QUANTITY_WORDS[token]
    return 1


def _pick_product(text: str, products: list[dict[str, Any]]) -> dict[str, Any] | None:
    scored: list[tuple[dict[str, Any], int]] = []
    tokens = set(text.split())
    for product in products:
        name = fold(str(product.get("name") or ""))
        if not name:
            continue
        if name in text:
            scored.append((product, 100 + len(name)))
            continue
        code = fold(str(product.get("code") or ""))
        if code and code in tokens:
            scored.append((product, 50))
            continue
        overlap = len(tokens & {token for token in name.split() if len(token) > 2})
        if overlap:
            scored.append((product, overlap))
    if not scored:
        return None
    scored.sort(key=lambda entry: entry[1], reverse=True)
    return scored[0][0]


class MockAgentProvider:
    """Keyword agent used when no external agent is configured (dev and tests)."""

    name = "mock"

    async def generate(self, agent_input: dict[str, Any]) -> AgentResponse:
        return AgentResponse(**self.decide(agent_input))

    def decide(self, agent_input: dict[str, Any]) -> dict[str, Any]:
        text = fold(agent_input.get("message") or "")
        products = agent_input.get("products") or []
        merchant_name = (agent_input.get("merchant") or {}).get("name") or "notre boutique"

        if _has(text, "derniere commande", "ma commande"):
            if _has(text, "annuler", "annule"):
                return self._reply("", [{"type": "CANCEL_LAST_ORDER"}])
            if _has(text, "modifier", "changer"):
                return self._reply("", [{"type": "MODIFY_LAST_ORDER"}])
            return self._reply("", [{"type": "SHOW_LAST_ORDER"}])

        if _has(text, "vider", "vide le panier"):
            return self._reply("Ton panier a été vidé 🗑️.", [{"type": "CLEAR_CART"}])

        if _has(text, *_ORDER_WORDS):
            return self._reply("", [{"type": "CONFIRM_ORDER"}])

        product = _pick_product(text, products)
        if product is not None:
            if _has(text, "retire", "retirer", "enleve", "enlever", "supprime"):
                return self._reply(
                    f"J'ai retiré {product['name']} de ton panier.",
                    [{"type": "REMOVE_FROM_CART", "product_id": product["id"]}],
                )
            quantity = _extract_quantity(text, str(product.get("name") or ""))
            return self._reply(
                f"C'est noté ✅ : {quantity} x {product['name']} ajouté(s) au panier. "
                "Écris *commander* quand tu as fini.",
                [{"type": "ADD_TO_CART", "product_id": product["id"], "quantity": quantity}],
            )

        if _has(text, "panier"):
            cart = agent_input.get("cart") or {}
            items = cart.get("items") or []
            if not items:
                return self._reply("Ton panier est vide 🛒.", [])
            lines = [f"• {item['quantity']} x {item['name']}" for item in items]
            return self._reply("🛒 Ton panier :\n" + "\n".join(lines), [])

        if _has(text, *_GREETINGS):
            return self._reply(
                f"Bonjour 👋, bienvenue chez {merchant_name} ! "
                "Écris *catalogue* pour recevoir notre catalogue ou *liste* pour voir les produits.",
                [],
            )

        return self._reply(
            "Je n'ai pas bien compris 🙏. Écris *liste* pour voir nos produits ou le nom d'un produit pour l'ajouter.",
            [],
        )

    def _reply(self, message: str, actions: list[dict[str, Any]]) -> dict[str, Any]:
        return {"message": message, "actions": parse_actions(actions)}
