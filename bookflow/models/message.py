from sqlalchemy import Column, String, DateTime, JSON, Text, Boolean, Integer, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from bookflow.models.base import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    message_id = Column(String(100), nullable=True)  # gateway id, used for dedup
    role = Column(String(20), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    message_type = Column(String(50), default="text")
    message_metadata = Column(JSON, default=dict)  # e.g. structured booking proposal
    delivered = Column(Boolean, default=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_conversation", "conversation_id", "id"),
        Index("ix_messages_gateway_id", "message_id"),
    )
