from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.config import DEFAULT_CURRENCY
from app.models.cart_item import CartItem
from app.models.order import ORDER_STATUSES, TERMINAL_ORDER_STATUSES, Order
from app.models.order_item import OrderItem
from app.models.product import Product
from app.services.cart import get_active_product

logger = logging.getLogger(__name__)


class EmptyCartError(Exception):
    pass


class OrderNotFoundError(LookupError):
    pass


class InvalidOrderStatusError(ValueError):
    pass


class OrderLockedError(Exception):
    def __init__(self, order: Order):
        super().__init__(f"order {order.id} is {order.status}")
        self.order = order


@dataclass(frozen=True)
class OrderSnapshot:
    """Recipient, payment and delivery data copied onto the order header."""

    recipient_mode: str
    recipient_customer_id: int | None
    recipient_name: str | None
    recipient_phone: str | None
    recipient_address: str | None
    delivery_address: str | None
    delivery_requested_raw: str | None
    delivery_requested_at: datetime | None
    payment_method: str | None


def create_order_from_cart(db: Session, merchant_id: int, customer_id: int, snapshot: OrderSnapshot) -> Order:
    """Turn the customer's cart into an order in one transaction.

    Cart rows are locked and read, the header and lines are written and exactly
    the rows read are deleted. A line added concurrently after the read stays
    in the cart for the next order.
    """
    try:
        cart_items = (
            db.query(CartItem)
            .filter(CartItem.merchant_id == merchant_id, CartItem.customer_id == customer_id)
            .order_by(CartItem.id.asc())
            .with_for_update()
            .all()
        )
        if not cart_items:
            raise EmptyCartError()

        products = {
            product.id: product
            for product in db.query(Product).filter(Product.id.in_([item.product_id for item in cart_items])).all()
        }
        currency = next(
            (product.currency for product in products.values() if product.currency),
            DEFAULT_CURRENCY,
        )
        total = sum((Decimal(item.total_price) for item in cart_items), Decimal("0"))

        order = Order(
            merchant_id=merchant_id,
            customer_id=customer_id,
            recipient_customer_id=snapshot.recipient_customer_id,
            recipient_mode=snapshot.recipient_mode,
            recipient_name=snapshot.recipient_name,
            recipient_phone=snapshot.recipient_phone,
            recipient_address=snapshot.recipient_address,
            delivery_address=snapshot.delivery_address,
            delivery_requested_raw=snapshot.delivery_requested_raw,
            delivery_requested_at=snapshot.delivery_requested_at,
            payment_method_snapshot=snapshot.payment_method,
            total_amount=total,
            currency=currency,
            status="PENDING",
        )
        db.add(order)
        db.flush()

        for item in cart_items:
            product = products.get(item.product_id)
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    product_name=product.name if product is not None else f"#{item.product_id}",
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
            )

        (
            db.query(CartItem)
            .filter(CartItem.id.in_([item.id for item in cart_items]))
            .delete(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "order created order_id=%s lines=%s total=%s",
        order.id,
        len(cart_items),
        total,
        extra={"merchant_id": merchant_id, "customer_id": customer_id},
    )
    return order


def get_last_order(db: Session, merchant_id: int, customer_id: int) -> Order | None:
    return (
        db.query(Order)
        .filter(Order.merchant_id == merchant_id, Order.customer_id == customer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .first()
    )


def get_order(db: Session, merchant_id: int, order_id: int) -> Order:
    order = db.query(Order).filter(Order.merchant_id == merchant_id, Order.id == order_id).first()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def list_orders(db: Session, merchant_id: int, status: str | None = None, limit: int = 100) -> list[Order]:
    query = db.query(Order).filter(Order.merchant_id == merchant_id)
    if status:
        query = query.filter(Order.status == status.upper())
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def update_order_status(db: Session, merchant_id: int, order_id: int, status: str) -> Order:
    normalized = (status or "").strip().upper()
    if normalized not in ORDER_STATUSES:
        raise InvalidOrderStatusError(status)
    order = get_order(db, merchant_id, order_id)
    order.status = normalized
    db.commit()
    db.refresh(order)
    logger.info("order status updated order_id=%s status=%s", order.id, normalized, extra={"merchant_id": merchant_id})
    return order


def cancel_last_order(db: Session, merchant_id: int, customer_id: int) -> Order | None:
    order = get_last_order(db, merchant_id, customer_id)
    if order is None:
        return None
    if order.status in TERMINAL_ORDER_STATUSES:
        raise OrderLockedError(order)
    order.status = "CANCELED"
    db.commit()
    db.refresh(order)
    return order


def reload_last_order_into_cart(db: Session, merchant_id: int, customer_id: int) -> tuple[Order, int] | None:
    """Replace the cart with the last order's lines at current prices and cancel that order.

    Returns the order and the number of lines skipped because the product is
    no longer sold.
    """
    order = get_last_order(db, merchant_id, customer_id)
    if order is None:
        return None
    if order.status in TERMINAL_ORDER_STATUSES:
        raise OrderLockedError(order)

    try:
        clear_cart_rows = (
            db.query(CartItem)
            .filter(CartItem.merchant_id == merchant_id, CartItem.customer_id == customer_id)
            .delete(synchronize_session=False)
        )
        skipped = 0
        for item in order.items:
            product = get_active_product(db, merchant_id, item.product_id) if item.product_id else None
            if product is None:
                skipped += 1
                continue
            unit_price = Decimal(product.price)
            db.add(
                CartItem(
                    merchant_id=merchant_id,
                    customer_id=customer_id,
                    product_id=product.id,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    total_price=unit_price * item.quantity,
                )
            )
        order.status = "CANCELED"
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "order reloaded into cart order_id=%s replaced_lines=%s skipped=%s",
        order.id,
        clear_cart_rows,
        skipped,
        extra={"merchant_id": merchant_id, "customer_id": customer_id},
    )
    return order, skipped


def serialize_order(order: Order) -> dict:
    return {
        "id": order.id,
        "merchant_id": order.merchant_id,
        "customer_id": order.customer_id,
        "recipient_customer_id": order.recipient_customer_id,
        "recipient_mode": order.recipient_mode,
        "recipient_name": order.recipient_name,
        "recipient_phone": order.recipient_phone,
        "recipient_address": order.recipient_address,
        "delivery_address": order.delivery_address,
        "delivery_requested_raw": order.delivery_requested_raw,
        "delivery_requested_at": order.delivery_requested_at.isoformat() if order.delivery_requested_at else None,
        "payment_method": order.payment_method_snapshot,
        "total_amount": str(order.total_amount),
        "currency": order.currency,
        "status": order.status,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "items": [
            {
                "product_id": item.product_id,
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "total_price": str(item.total_price),
            }
            for item in order.items
        ],
    }
