"""Conversation processing tasks"""
import json
import logging
from datetime import datetime, timedelta, timezone

from bookflow.config.celery_config import celery_app
from bookflow.config.database import get_db
from bookflow.config.settings import get_settings
from bookflow.config.tenant import resolve_tenant_config
from bookflow.core.exceptions import MessagingGatewayError
from bookflow.models.message import Message
from bookflow.models.whatsapp_instance import WhatsAppInstance
from bookflow.services.ai.ai_service import AIService
from bookflow.services.company.company_service import CompanyService
from bookflow.services.conversation.booking_flow_service import BookingFlowService
from bookflow.services.conversation.conversation_service import ConversationService
from bookflow.services.message.message_service import MessageService
from bookflow.services.payment.payment_link_service import as_utc
from bookflow.services.whatsapp.whatsapp_service import WhatsAppService
from bookflow.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS = 5
FALLBACK_REPLY = "Desculpe, não consegui entender. Pode repetir, por favor?"


def run_assistant(db, config, conversation, ai_service=None):
    """
    Ask the assistant for the next reply, executing its tool calls.

    Returns (content, metadata). A successful propose_booking ends the loop with
    the rendered confirmation summary.
    """
    ai_service = ai_service or AIService(config)
    history = MessageService.get_conversation_messages(db, conversation.id, limit=config.openai_history_limit)
    formatted_messages = MessageService.format_messages_for_ai(history)
    context = {"contact_name": conversation.contact_name}

    ai_response = ai_service.generate_response(formatted_messages, context)

    for _ in range(MAX_TOOL_ROUNDS):
        tool_call = ai_response.get("tool_call")
        if not tool_call:
            break

        function_name = tool_call["name"]
        function_args = tool_call["arguments"]
        logger.info(f"Executing function: {function_name} with args: {function_args}")

        if function_name == "propose_booking":
            function_result = ai_service.propose_booking(db, function_args)
            if function_result.get("success"):
                return function_result["summary_text"], {
                    "kind": "booking_proposal",
                    "booking_proposal": function_result["proposal"],
                }
        elif function_name == "list_services":
            function_result = {"services": ai_service.list_services(db)}
        elif function_name == "list_professionals":
            function_result = {"professionals": ai_service.list_professionals(db)}
        elif function_name == "get_available_slots":
            function_result = ai_service.get_available_slots(
                db,
                professional_name=function_args.get("professional"),
                service_name=function_args.get("service"),
                day=function_args.get("date", "")
            )
        else:
            function_result = {"success": False, "message": f"Unknown function: {function_name}"}
            logger.warning(f"Unknown function called: {function_name}")

        # Add tool call and result to message history
        formatted_messages.append({
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": tool_call["id"],
                "type": "function",
                "function": {"name": function_name, "arguments": json.dumps(function_args)},
            }],
        })
        formatted_messages.append({
            "role": "tool",
            "tool_call_id": tool_call["id"],
            "content": json.dumps(function_result, default=str),
        })

        ai_response = ai_service.generate_response(formatted_messages, context)

    return ai_response.get("content") or FALLBACK_REPLY, {"kind": "assistant_reply"}


def _previous_assistant(db, conversation, timeout_hours: int, before_id: int = None):
    """Last assistant message, unless the conversation went cold since"""
    previous = MessageService.last_assistant_message(db, conversation.id, before_id=before_id)
    if previous is None or previous.timestamp is None:
        return previous
    if datetime.now(timezone.utc) - as_utc(previous.timestamp) > timedelta(hours=timeout_hours):
        logger.info(f"Conversation {conversation.id} inactive for over {timeout_hours}h, summary discarded")
        return None
    return previous


@celery_app.task(bind=True, max_retries=3)
def process_whatsapp_message(
        self, instance_name: str, remote_jid: str, message_id: str,
        message_body: str, contact_name: str = None, correlation_id: str = None
):
    """Process an inbound WhatsApp message and reply"""
    try:
        logger.info(f"Processing WhatsApp message {message_id} on {instance_name}")

        db = next(get_db())

        try:
            # 1. Instance and company
            instance = ConversationService.get_instance(db, instance_name)
            if not instance:
                logger.error(f"WhatsApp instance not found: {instance_name}")
                return {"status": "failed", "reason": "instance_not_found"}

            company = CompanyService.get_company(db, instance.company_id)
            if not company:
                logger.error(f"Company {instance.company_id} not found or inactive")
                return {"status": "failed", "reason": "company_not_found"}

            config = resolve_tenant_config(company, instance)
            settings = get_settings()

            # 2. Conversation, skipping redeliveries
            phone = normalize_phone(remote_jid)
            conversation = ConversationService.find_or_create_conversation(db, instance, phone, contact_name)

            # A stored message without a reply after it is a retry of a failed run
            stored = MessageService.find_by_gateway_id(db, conversation.id, message_id)
            if stored is not None and MessageService.has_reply_after(db, conversation.id, stored.id):
                logger.info(f"Duplicate WhatsApp message {message_id}, skipping")
                return {"status": "duplicate", "message_id": message_id}

            previous_assistant = _previous_assistant(
                db, conversation, settings.CONVERSATION_TIMEOUT_HOURS,
                before_id=stored.id if stored is not None else None
            )

            # 3. Store the customer message
            if stored is None:
                MessageService.create_message(
                    db=db,
                    conversation_id=conversation.id,
                    role="user",
                    content=message_body,
                    message_id=message_id,
                    delivered=True,
                )
            else:
                logger.info(f"Resuming WhatsApp message {message_id}, no reply was stored for it")

            # 4. Confirmation handshake first, assistant otherwise
            flow_reply = BookingFlowService(config).handle_user_message(
                db, conversation, instance, message_body, previous_assistant
            )
            if flow_reply is not None:
                content = flow_reply.text
                metadata = {"kind": flow_reply.kind, **flow_reply.metadata}
            else:
                content, metadata = run_assistant(db, config, conversation)

            # 5. Store, then send the reply
            reply = MessageService.create_message(
                db=db,
                conversation_id=conversation.id,
                role="assistant",
                content=content,
                message_metadata=metadata,
            )

            messenger = WhatsAppService(config)
            try:
                result = messenger.send_text(instance.instance_name, phone, content)
            except MessagingGatewayError as e:
                logger.error(f"Reply {reply.id} not delivered, queuing retry: {e}")
                deliver_message.delay(message_pk=reply.id, correlation_id=correlation_id)
            else:
                reply.message_id = result.get("message_id")
                reply.delivered = True
                db.commit()
            finally:
                messenger.close()

            logger.info(f"Successfully processed WhatsApp message {message_id} ({metadata.get('kind')})")
            return {"status": "completed", "message_id": message_id, "reply_kind": metadata.get("kind")}

        finally:
            db.close()

    except Exception as exc:
        logger.error(f"Error processing WhatsApp message {message_id}: {str(exc)}", exc_info=True)
        raise self.retry(countdown=60 * (self.request.retries + 1))


@celery_app.task(bind=True, max_retries=5)
def deliver_message(self, message_pk: int, correlation_id: str = None):
    """Retry sending a stored assistant message that the gateway refused"""
    db = next(get_db())
    try:
        message = db.get(Message, message_pk)
        if message is None or message.delivered:
            return {"status": "skipped", "message_pk": message_pk}

        conversation = message.conversation
        instance = db.get(WhatsAppInstance, conversation.whatsapp_instance_id)
        company = CompanyService.get_company(db, conversation.company_id)
        if company is None or instance is None:
            logger.error(f"Cannot deliver message {message_pk}: company or instance missing")
            return {"status": "failed", "message_pk": message_pk}

        messenger = WhatsAppService(resolve_tenant_config(company, instance))
        try:
            result = messenger.send_text(instance.instance_name, conversation.phone_number, message.content)
        except MessagingGatewayError as exc:
            if self.request.retries >= self.max_retries:
                logger.error(f"Giving up on message {message_pk}: {exc}")
                return {"status": "failed", "message_pk": message_pk}
            raise self.retry(countdown=60 * (self.request.retries + 1))
        finally:
            messenger.close()

        message.message_id = result.get("message_id")
        message.delivered = True
        db.commit()
        return {"status": "delivered", "message_pk": message_pk}
    finally:
        db.close()
