from sqlalchemy import Column, DateTime, String, func

from app.core.database import Base


class ProcessedMessage(Base):
    __tablename__ = "processed_messages"

    message_id = Column(String(200), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
