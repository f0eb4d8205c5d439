from decimal import Decimal

from app.core.config import DEFAULT_CURRENCY

QUESTIONS = {
    "recipient_mode": "C'est pour qui la commande ?\nRéponds *1* = pour toi-même, *2* = pour une autre personne.",
    "name": "D'accord 😊. Quel est ton nom (et prénom) ?",
    "recipient_name": "Très bien. Donne-moi le *nom et prénom* de la personne qui recevra la commande.",
    "recipient_phone": "Super. Donne-moi maintenant son *numéro WhatsApp* (format 225XXXXXXXXXX).",
    "recipient_address": "Merci. Et l'*adresse de livraison* du destinataire (commune, quartier, repère) ?",
    "address": "Quelle est ton *adresse de livraison* (commune, quartier, repère) ?",
    "payment_method": "Comment veux-tu payer ? (Orange Money, MTN MoMo, Moov, Wave, carte ou espèces)",
    "delivery_requested_raw": "Pour quand veux-tu la livraison ? (ex : demain 15h, 24 décembre, 31/12/2025 10h)",
}

CLARIFICATIONS = {
    "recipient_mode": "Je n'ai pas compris 🙏. Réponds *1* = pour toi-même, *2* = pour une autre personne.",
    "name": "Merci d'envoyer ton *nom et prénom* (au moins 2 lettres).",
    "recipient_name": "Merci d'envoyer le *nom et prénom* du destinataire.",
    "recipient_phone": "Numéro invalide. Envoie le numéro au format : 225XXXXXXXXXX",
    "recipient_address": "Je n'ai pas compris l'adresse. Donne la commune et le quartier (ex : Cocody Angré, près de la pharmacie).",
    "address": "Je n'ai pas compris l'adresse. Donne la commune et le quartier (ex : Yopougon Niangon, carrefour Siporex).",
    "payment_method": "Je n'ai pas reconnu le moyen de paiement. Choisis : Orange Money, MTN MoMo, Moov, Wave, carte ou espèces.",
    "delivery_requested_raw": "Je n'ai pas compris la date. Exemples : *demain 15h*, *24 décembre*, *31/12/2025 10h*.",
}

GENERIC_CLARIFICATION = "Je n'ai pas bien reçu. Peux-tu répéter ?"
DELIVERY_IN_PAST = "Cette date est déjà passée ⏰. Pour quand veux-tu la livraison ?"
HANDOFF = "Je transmets ta demande à un conseiller 🙏. Il va te répondre très vite."
EMPTY_CART = "Ton panier est vide 🛒. Dis-moi quels produits tu veux commander."
ORDER_CANCELED_BY_CUSTOMER = "D'accord, la commande est annulée et ton panier a été vidé. Écris *catalogue* pour revoir nos produits."
CONFIRMATION_PROMPT = "Réponds *OUI* pour confirmer ou *ANNULER* pour annuler."
OPTED_OUT = "C'est noté, tu ne recevras plus de messages. Écris *START* pour reprendre."
OPTED_IN = "Content de te revoir 😊 ! Que veux-tu commander aujourd'hui ?"
TECHNICAL_ERROR = "Désolé, nous avons un souci technique pour le moment. Merci de réessayer dans quelques instants 🙂"
PRODUCT_NOT_FOUND = "Je ne trouve pas ce produit dans le catalogue. Écris *liste* pour voir les produits disponibles."
CATALOG_UNAVAILABLE = "Le catalogue PDF n'est pas disponible pour le moment 🙏. Écris *liste* pour recevoir la liste des produits par message."
CATALOG_CAPTION = "Voici notre catalogue 📄"
NO_PRODUCTS = "Aucun produit n'est disponible pour le moment."
NO_LAST_ORDER = "Tu n'as pas encore passé de commande."

STATUS_LABELS = {
    "PENDING": "en attente",
    "CONFIRMED": "confirmée",
    "DELIVERED": "livrée",
    "CANCELED": "annulée",
}


def format_amount(amount, currency: str | None = None) -> str:
    """5000 -> '5 000 XOF'."""
    value = Decimal(str(amount or 0))
    if value == value.to_integral_value():
        text = f"{int(value):,}".replace(",", " ")
    else:
        text = f"{value:,.2f}".replace(",", " ")
    return f"{text} {currency or DEFAULT_CURRENCY}"


def question_for(field: str) -> str:
    return QUESTIONS.get(field, GENERIC_CLARIFICATION)


def clarification_for(field: str) -> str:
    return CLARIFICATIONS.get(field, GENERIC_CLARIFICATION)


def format_cart_lines(cart: dict) -> list[str]:
    return [
        f"• {item['quantity']} x {item['name']} = {format_amount(item['total_price'], cart['currency'])}"
        for item in cart["items"]
    ]


def order_summary(cart: dict, recipient: dict, payment_method: str | None, delivery_raw: str | None) -> str:
    lines = ["🧾 *Récapitulatif de ta commande*", ""]
    lines.extend(format_cart_lines(cart))
    lines.append(f"*Total : {format_amount(cart['total'], cart['currency'])}*")
    lines.append("")
    who = recipient.get("name") or "toi"
    lines.append(f"👤 Destinataire : {who}")
    if recipient.get("phone"):
        lines.append(f"📞 Téléphone : {recipient['phone']}")
    if recipient.get("address"):
        lines.append(f"📍 Adresse : {recipient['address']}")
    lines.append(f"💳 Paiement : {payment_method or '-'}")
    lines.append(f"🚚 Livraison : {delivery_raw or '-'}")
    lines.append("")
    lines.append(CONFIRMATION_PROMPT)
    return "\n".join(lines)


def order_confirmed(order, recipient_name: str | None, third_party: bool) -> str:
    total = format_amount(order.total_amount, order.currency)
    if third_party:
        who = f"pour {recipient_name}" if recipient_name else "pour le destinataire"
        return f"Parfait ✅. Commande #{order.id} confirmée {who}. Total : {total}."
    name = f" {recipient_name}" if recipient_name else ""
    return f"Merci{name} ✅. Ta commande #{order.id} est confirmée. Total : {total}."


def order_details(order) -> str:
    status = STATUS_LABELS.get(order.status, order.status)
    lines = [f"📦 Commande #{order.id} ({status})"]
    for item in order.items:
        lines.append(f"• {item.quantity} x {item.product_name} = {format_amount(item.total_price, order.currency)}")
    lines.append(f"Total : {format_amount(order.total_amount, order.currency)}")
    if order.delivery_requested_raw:
        lines.append(f"Livraison : {order.delivery_requested_raw}")
    return "\n".join(lines)


def order_locked(order, verb: str) -> str:
    status = STATUS_LABELS.get(order.status, order.status)
    return f"La commande #{order.id} est déjà {status}, elle ne peut plus être {verb}."


def order_canceled(order) -> str:
    return f"C'est fait, la commande #{order.id} est annulée."


def order_reloaded(order, skipped: int) -> str:
    message = f"J'ai remis les articles de la commande #{order.id} dans ton panier 🛒. Dis-moi ce que tu veux changer."
    if skipped:
        message += f"\n({skipped} article(s) ne sont plus disponibles.)"
    return message


def product_listing(products, currency: str | None = None) -> str:
    if not products:
        return NO_PRODUCTS
    lines = ["🛍️ *Nos produits*", ""]
    for product in products:
        code = f" [{product.code}]" if product.code else ""
        lines.append(f"{product.id}. {product.name}{code} : {format_amount(product.price, product.currency or currency)}")
    lines.append("")
    lines.append("Dis-moi le produit et la quantité pour l'ajouter au panier.")
    return "\n".join(lines)
