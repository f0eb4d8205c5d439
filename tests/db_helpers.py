from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.customer import Customer
from app.models.merchant import Merchant
from app.models.product import Product


def build_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def new_session() -> Session:
    return build_session_factory()()


def add_merchant(db: Session, **overrides) -> Merchant:
    values = {
        "name": "Boutique Awa",
        "whatsapp_number": "+2250102030405",
        "waha_session": "boutique-awa",
    }
    values.update(overrides)
    merchant = Merchant(**values)
    db.add(merchant)
    db.commit()
    db.refresh(merchant)
    return merchant


def add_customer(db: Session, merchant: Merchant, phone: str = "+2250700000001", **overrides) -> Customer:
    customer = Customer(merchant_id=merchant.id, phone=phone, **overrides)
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


def add_product(db: Session, merchant: Merchant, name: str, price: str, **overrides) -> Product:
    values = {"currency": "XOF", "is_active": True}
    values.update(overrides)
    product = Product(merchant_id=merchant.id, name=name, price=Decimal(price), **values)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product
