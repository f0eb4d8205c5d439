from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.core.config import DEFAULT_CURRENCY
from app.models.cart_item import CartItem
from app.models.product import Product

logger = logging.getLogger(__name__)


class ProductNotFoundError(LookupError):
    def __init__(self, product_id: int):
        super().__init__(f"product {product_id} not found")
        self.product_id = product_id


def get_active_product(db: Session, merchant_id: int, product_id: int) -> Product | None:
    return (
        db.query(Product)
        .filter(
            Product.merchant_id == merchant_id,
            Product.id == product_id,
            Product.is_active.is_(True),
        )
        .first()
    )


def list_active_products(db: Session, merchant_id: int) -> list[Product]:
    return (
        db.query(Product)
        .filter(Product.merchant_id == merchant_id, Product.is_active.is_(True))
        .order_by(Product.category.asc(), Product.name.asc())
        .all()
    )


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"cart upsert not supported on {dialect}")


def add_to_cart(db: Session, merchant_id: int, customer_id: int, product_id: int, quantity: int = 1) -> None:
    """Atomic add: a second add of the same product increments the line in the database."""
    product = get_active_product(db, merchant_id, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)

    unit_price = Decimal(product.price)
    insert = _insert_for(db)
    statement = insert(CartItem).values(
        merchant_id=merchant_id,
        customer_id=customer_id,
        product_id=product_id,
        quantity=quantity,
        unit_price=unit_price,
        total_price=unit_price * quantity,
    )
    new_quantity = CartItem.quantity + statement.excluded.quantity
    statement = statement.on_conflict_do_update(
        index_elements=[CartItem.merchant_id, CartItem.customer_id, CartItem.product_id],
        set_={
            "quantity": new_quantity,
            "unit_price": statement.excluded.unit_price,
            "total_price": statement.excluded.unit_price * new_quantity,
        },
    )
    db.execute(statement)
    db.commit()
    logger.info(
        "cart item added product_id=%s quantity=%s",
        product_id,
        quantity,
        extra={"merchant_id": merchant_id, "customer_id": customer_id},
    )


def remove_from_cart(
    db: Session,
    merchant_id: int,
    customer_id: int,
    product_id: int,
    quantity: int | None = None,
) -> int:
    """Remove ``quantity`` units of a line, or the whole line when quantity is None or covers it."""
    if get_active_product(db, merchant_id, product_id) is None:
        existing = (
            db.query(Product)
            .filter(Product.merchant_id == merchant_id, Product.id == product_id)
            .first()
        )
        if existing is None:
            raise ProductNotFoundError(product_id)
    line = db.query(CartItem).filter(
        CartItem.merchant_id == merchant_id,
        CartItem.customer_id == customer_id,
        CartItem.product_id == product_id,
    )
    removed = 0
    if quantity is not None:
        # Decrement in SQL so a concurrent add is not overwritten
        remaining = CartItem.quantity - quantity
        removed = line.filter(CartItem.quantity > quantity).update(
            {CartItem.quantity: remaining, CartItem.total_price: CartItem.unit_price * remaining},
            synchronize_session=False,
        )
    if not removed:
        removed = line.delete(synchronize_session=False)
    db.commit()
    return removed


def clear_cart(db: Session, merchant_id: int, customer_id: int) -> int:
    removed = (
        db.query(CartItem)
        .filter(CartItem.merchant_id == merchant_id, CartItem.customer_id == customer_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return removed


def get_cart_items(db: Session, merchant_id: int, customer_id: int) -> list[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.merchant_id == merchant_id, CartItem.customer_id == customer_id)
        .order_by(CartItem.id.asc())
        .all()
    )


def get_cart(db: Session, merchant_id: int, customer_id: int) -> dict:
    items = get_cart_items(db, merchant_id, customer_id)
    currency = DEFAULT_CURRENCY
    lines = []
    total = Decimal("0")
    for item in items:
        product = item.product
        if product is not None and product.currency:
            currency = product.currency
        total += Decimal(item.total_price)
        lines.append(
            {
                "product_id": item.product_id,
                "name": product.name if product is not None else f"#{item.product_id}",
                "quantity": item.quantity,
                "unit_price": Decimal(item.unit_price),
                "total_price": Decimal(item.total_price),
            }
        )
    return {"items": lines, "total": total, "currency": currency}
