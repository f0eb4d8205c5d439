from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import relationship

from app.core.database import Base

ORDER_STATUSES = ("PENDING", "CONFIRMED", "DELIVERED", "CANCELED")
TERMINAL_ORDER_STATUSES = ("DELIVERED", "CANCELED")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    # Recipient snapshot (self or third party)
    recipient_customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    recipient_mode = Column(String(20), nullable=False, default="self")
    recipient_name = Column(String(160), nullable=True)
    recipient_phone = Column(String(120), nullable=True)
    recipient_address = Column(Text, nullable=True)
    delivery_address = Column(Text, nullable=True)

    delivery_requested_raw = Column(String(200), nullable=True)
    delivery_requested_at = Column(DateTime(timezone=True), nullable=True)
    payment_method_snapshot = Column(String(60), nullable=True)

    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="XOF")
    status = Column(String(20), nullable=False, default="PENDING", index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
