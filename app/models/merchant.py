from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from app.core.database import Base


class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(Integer, primary_key=True)
    name = Column(String(160), nullable=False)
    email = Column(String(200), nullable=True, unique=True)

    # Routing keys: E.164 business number and the WAHA session name
    whatsapp_number = Column(String(30), nullable=True, unique=True, index=True)
    waha_session = Column(String(120), nullable=True, unique=True, index=True)

    is_suspended = Column(Boolean, nullable=False, default=False)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    products = relationship("Product", back_populates="merchant")

    def is_active(self, now: datetime | None = None) -> bool:
        if self.is_suspended:
            return False
        expires_at = self.subscription_expires_at
        if expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > now
