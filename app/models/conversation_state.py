import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB

from app.core.database import Base


class ConversationStateRecord(Base):
    __tablename__ = "conversation_states"
    __table_args__ = (
        UniqueConstraint("merchant_id", "customer_id", name="uq_conversation_states_owner"),
    )

    id = Column(Integer, primary_key=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    state = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
