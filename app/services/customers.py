from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.conversation.validators import normalize_payment_method
from app.models.customer import Customer

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "address", "payment_method")


def normalize_phone(value: str | None) -> str | None:
    """'225 07 00 00 00 00' -> '+2250700000000'."""
    if not value:
        return None
    digits = re.sub(r"\D", "", str(value))
    return f"+{digits}" if digits else None


def get_customer(db: Session, merchant_id: int, customer_id: int) -> Customer | None:
    return (
        db.query(Customer)
        .filter(Customer.merchant_id == merchant_id, Customer.id == customer_id)
        .first()
    )


def find_or_create_customer(db: Session, merchant_id: int, phone: str) -> Customer:
    customer = (
        db.query(Customer)
        .filter(Customer.merchant_id == merchant_id, Customer.phone == phone)
        .first()
    )
    if customer:
        return customer

    customer = Customer(merchant_id=merchant_id, phone=phone)
    db.add(customer)
    try:
        db.commit()
    except IntegrityError:
        # Another message from the same number created it first
        db.rollback()
        return (
            db.query(Customer)
            .filter(Customer.merchant_id == merchant_id, Customer.phone == phone)
            .one()
        )
    db.refresh(customer)
    logger.info("customer created", extra={"merchant_id": merchant_id, "customer_id": customer.id})
    return customer


def update_customer_field(db: Session, customer: Customer, field: str, value: str) -> Customer:
    if field not in UPDATABLE_FIELDS:
        raise ValueError(f"field {field!r} cannot be updated")
    value = value.strip()
    if field == "payment_method":
        value = normalize_payment_method(value) or value
    setattr(customer, field, value)
    db.commit()
    db.refresh(customer)
    return customer


def fill_customer_profile(
    db: Session,
    customer: Customer,
    *,
    name: str | None = None,
    address: str | None = None,
) -> Customer:
    """Fill empty profile fields only; what the person said about themselves wins."""
    changed = False
    if name and not customer.name:
        customer.name = name
        changed = True
    if address and not customer.address:
        customer.address = address
        changed = True
    if changed:
        db.commit()
        db.refresh(customer)
    return customer
