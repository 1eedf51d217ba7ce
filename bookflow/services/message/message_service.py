# bookflow/services/message/message_service.py
"""Append-only conversation messages"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from bookflow.models.conversation import Conversation
from bookflow.models.message import Message

logger = logging.getLogger(__name__)


class MessageService:
    @staticmethod
    def create_message(
            db: Session,
            conversation_id: int,
            role: str,
            content: str,
            message_id: Optional[str] = None,
            message_type: str = "text",
            delivered: bool = False,
            message_metadata: Optional[Dict] = None,
    ) -> Message:
        """Persist a message and bump the conversation counters"""
        now = datetime.now(timezone.utc)
        message = Message(
            conversation_id=conversation_id,
            message_id=message_id,
            role=role,
            content=content,
            message_type=message_type,
            delivered=delivered,
            message_metadata=message_metadata or {},
            timestamp=now,
        )
        db.add(message)

        conversation = db.get(Conversation, conversation_id)
        if conversation is not None:
            conversation.message_count = (conversation.message_count or 0) + 1
            conversation.last_message_at = now

        db.commit()
        db.refresh(message)

        logger.info(f"Message logged: {message.id} role={role} conversation={conversation_id}")
        return message

    @staticmethod
    def find_by_gateway_id(db: Session, conversation_id: int, message_id: str) -> Optional[Message]:
        """The stored message for a gateway id, if this delivery was seen before"""
        return db.query(Message).filter(
            Message.conversation_id == conversation_id,
            Message.message_id == message_id
        ).first()

    @staticmethod
    def has_reply_after(db: Session, conversation_id: int, message_pk: int) -> bool:
        return db.query(Message.id).filter(
            Message.conversation_id == conversation_id,
            Message.role == "assistant",
            Message.id > message_pk
        ).first() is not None

    @staticmethod
    def get_conversation_messages(db: Session, conversation_id: int, limit: Optional[int] = None) -> List[Message]:
        """Messages oldest first; with ``limit`` only the most recent ones"""
        stmt = select(Message).where(Message.conversation_id == conversation_id).order_by(Message.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        result = db.execute(stmt).scalars().all()
        return list(reversed(result))

    @staticmethod
    def last_assistant_message(db: Session, conversation_id: int, before_id: Optional[int] = None) -> Optional[Message]:
        query = db.query(Message).filter(
            Message.conversation_id == conversation_id,
            Message.role == "assistant"
        )
        if before_id is not None:
            query = query.filter(Message.id < before_id)
        return query.order_by(Message.id.desc()).first()

    @staticmethod
    def format_messages_for_ai(messages: List[Message]) -> List[Dict]:
        """Convert stored messages into the OpenAI chat format"""
        return [
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
            for m in messages
        ]
