from __future__ import annotations

from sqlalchemy.orm import Session

from app.models.merchant import Merchant
from app.services.customers import normalize_phone


def normalize_session(value: str | None) -> str | None:
    if not value:
        return None
    session = str(value).strip().lower()
    return session or None


def find_merchant_by_whatsapp_number(db: Session, number: str | None) -> Merchant | None:
    phone = normalize_phone(number)
    if not phone:
        return None
    return db.query(Merchant).filter(Merchant.whatsapp_number == phone).first()


def find_merchant_by_session(db: Session, session: str | None) -> Merchant | None:
    normalized = normalize_session(session)
    if not normalized:
        return None
    return db.query(Merchant).filter(Merchant.waha_session == normalized).first()


def get_merchant(db: Session, merchant_id: int) -> Merchant | None:
    return db.query(Merchant).filter(Merchant.id == merchant_id).first()
