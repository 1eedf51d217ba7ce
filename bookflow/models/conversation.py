# bookflow/models/conversation.py
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .base import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    whatsapp_instance_id = Column(
        Integer, ForeignKey("whatsapp_instances.id", ondelete="CASCADE"), nullable=False
    )

    phone_number = Column(String(20), nullable=False)
    contact_name = Column(String(100), nullable=True)
    message_count = Column(Integer, default=0)

    last_message_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    messages = relationship("Message", back_populates="conversation", order_by="Message.id")

    __table_args__ = (
        Index("ix_conversations_instance_phone", "whatsapp_instance_id", "phone_number"),
        Index("ix_conversations_company", "company_id"),
    )
