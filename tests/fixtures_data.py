"""Reusable payloads for webhook and agent scenarios."""

SIMPLE_INBOUND = {
    "from": "+225 07 00 00 00 01",
    "to": "+2250102030405",
    "text": "Bonjour",
    "id": "msg-0001",
}

WAHA_INBOUND = {
    "event": "message",
    "session": "Boutique-Awa",
    "payload": {
        "id": "false_2250700000001@c.us_3EB0C767D0",
        "from": "2250700000001@s.whatsapp.net",
        "body": "Bonjour",
        "fromMe": False,
    },
}

WAHA_GROUP_INBOUND = {
    "event": "message",
    "session": "boutique-awa",
    "payload": {
        "id": "false_120363000000000@g.us_AAAA",
        "from": "120363000000000@g.us",
        "participant": "2250700000002@c.us",
        "body": "Je veux 2 riz",
    },
}

N8N_WRAPPED_RESPONSE = [
    {
        "json": {
            "message": "C'est noté ✅",
            "actions": [{"type": "ADD_TO_CART", "product_id": 1, "quantity": 2}],
        }
    }
]
