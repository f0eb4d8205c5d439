from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func

from app.core.database import Base


class WhatsAppMessageLog(Base):
    __tablename__ = "whatsapp_message_log"

    id = Column(Integer, primary_key=True)
    merchant_id = Column(Integer, nullable=True, index=True)
    direction = Column(String, nullable=False)
    chat_id = Column(String, nullable=True)
    message_type = Column(String, nullable=False)
    payload_json = Column(Text, nullable=True)
    status = Column(String, nullable=False)
    error = Column(Text, nullable=True)
    provider_message_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


Index("ix_whatsapp_message_log_merchant_created", WhatsAppMessageLog.merchant_id, WhatsAppMessageLog.created_at)
Index("ix_whatsapp_message_log_chat_id", WhatsAppMessageLog.chat_id)
