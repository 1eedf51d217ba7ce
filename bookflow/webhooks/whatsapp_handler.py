# bookflow/webhooks/whatsapp_handler.py
"""WhatsApp (Evolution API) webhook handler - queuing only"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from bookflow.config.database import get_db
from bookflow.schemas.webhook_events import EvolutionWebhookEvent
from bookflow.services.conversation.conversation_service import ConversationService
from bookflow.tasks.conversation_tasks import process_whatsapp_message
from bookflow.utils.phone import is_group_jid

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/whatsapp/{instance_name}")
async def handle_whatsapp_event(instance_name: str, request: Request, db: Session = Depends(get_db)):
    """Handle an Evolution API event - queue inbound text messages"""
    try:
        event = EvolutionWebhookEvent(**(await request.json()))
    except (ValueError, TypeError, ValidationError):
        raise HTTPException(status_code=400, detail="Malformed Evolution API event")

    if not event.is_message_upsert or event.data is None:
        return {"status": "ignored"}

    data = event.data
    if data.key.fromMe or is_group_jid(data.key.remoteJid):
        return {"status": "ignored"}

    text = data.text
    if not text or not text.strip():
        logger.info(f"Ignoring non-text message {data.key.id} ({data.messageType})")
        return {"status": "ignored"}

    if ConversationService.get_instance(db, instance_name) is None:
        raise HTTPException(status_code=404, detail="WhatsApp instance not found")

    correlation_id = getattr(request.state, "correlation_id", "unknown")

    try:
        process_whatsapp_message.delay(
            instance_name=instance_name,
            remote_jid=data.key.remoteJid,
            message_id=data.key.id,
            message_body=text,
            contact_name=data.pushName,
            correlation_id=correlation_id
        )
    except Exception as e:
        logger.error(f"Error queuing WhatsApp message {data.key.id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    logger.info(f"Queued WhatsApp message {data.key.id} from instance {instance_name}")
    return {"status": "received"}
