# ============================================================================
# bookflow/services/conversation/conversation_service.py
# ============================================================================
"""Conversation lookup for inbound WhatsApp messages"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from bookflow.models.conversation import Conversation
from bookflow.models.whatsapp_instance import WhatsAppInstance

logger = logging.getLogger(__name__)


class ConversationService:
    """WhatsApp conversations keyed by company, instance and phone"""

    @staticmethod
    def get_instance(db: Session, instance_name: str) -> Optional[WhatsAppInstance]:
        return db.query(WhatsAppInstance).filter(
            WhatsAppInstance.instance_name == instance_name
        ).first()

    @staticmethod
    def find_or_create_conversation(
            db: Session,
            instance: WhatsAppInstance,
            phone_number: str,
            contact_name: Optional[str] = None
    ) -> Conversation:
        """Find the conversation for this phone on this instance or create it"""
        conversation = db.query(Conversation).filter(
            Conversation.whatsapp_instance_id == instance.id,
            Conversation.phone_number == phone_number
        ).first()

        if conversation:
            if contact_name and not conversation.contact_name:
                conversation.contact_name = contact_name
                db.commit()
            return conversation

        conversation = Conversation(
            company_id=instance.company_id,
            whatsapp_instance_id=instance.id,
            phone_number=phone_number,
            contact_name=contact_name,
            message_count=0,
        )

        db.add(conversation)
        db.commit()
        db.refresh(conversation)

        logger.info(f"Created new conversation: {conversation.id} ({phone_number})")
        return conversation
