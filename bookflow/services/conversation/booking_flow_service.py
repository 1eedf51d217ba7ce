# ============================================================================
# bookflow/services/conversation/booking_flow_service.py
# ============================================================================
"""Turns a confirmed booking summary into a payment link or a direct booking"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from bookflow.config.tenant import TenantConfig
from bookflow.core.exceptions import (
    NotFoundError, PaymentConfigurationError, PaymentProviderError, SlotUnavailableError,
)
from bookflow.models.appointment import AppointmentStatus
from bookflow.models.conversation import Conversation
from bookflow.models.message import Message
from bookflow.models.whatsapp_instance import WhatsAppInstance
from bookflow.services.appointment.appointment_service import AppointmentService
from bookflow.services.conversation.booking_extraction import (
    BookingSummary, ExtractionOutcome, detect_confirmation,
)
from bookflow.services.payment.payment_link_service import PaymentLinkService
from bookflow.services.whatsapp import message_templates

logger = logging.getLogger(__name__)


@dataclass
class FlowReply:
    """Message the flow wants sent back to the user"""
    text: str
    kind: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class BookingFlowService:
    """Confirmation handshake between the assistant's summary and the payment link"""

    def __init__(self, config: TenantConfig, link_service: Optional[PaymentLinkService] = None):
        self.config = config
        self.link_service = link_service or PaymentLinkService(config)

    def _resolve_ids(self, db: Session, summary: BookingSummary, proposal: Optional[Dict]) -> Optional[Dict]:
        company_id = self.config.company_id
        proposal = proposal or {}

        service_id = proposal.get("service_id")
        professional_id = proposal.get("professional_id")
        if not service_id:
            service = AppointmentService.find_service_by_name(db, company_id, summary.service)
            service_id = service.id if service else None
        if not professional_id:
            professional = AppointmentService.find_professional_by_name(db, company_id, summary.professional)
            professional_id = professional.id if professional else None

        if not service_id or not professional_id:
            logger.warning(
                f"Confirmed summary names unknown service '{summary.service}' "
                f"or professional '{summary.professional}' (company {company_id})"
            )
            return None
        return {"service_id": service_id, "professional_id": professional_id}

    def handle_user_message(
            self,
            db: Session,
            conversation: Conversation,
            instance: WhatsAppInstance,
            user_text: str,
            previous_assistant: Optional[Message],
    ) -> Optional[FlowReply]:
        """
        Check whether ``user_text`` confirms the previous assistant summary.

        Returns None when it does not, so the caller continues with a normal
        assistant reply.
        """
        if previous_assistant is None:
            return None

        metadata = previous_assistant.message_metadata or {}
        check = detect_confirmation(previous_assistant.content, user_text, metadata)

        if check.outcome == ExtractionOutcome.NOT_CONFIRMATION:
            return None
        if check.outcome == ExtractionOutcome.PARTIAL:
            return FlowReply(
                message_templates.REPROMPT_SUMMARY, "reprompt",
                {"missing_fields": list(check.missing_fields)}
            )

        summary = check.summary
        ids = self._resolve_ids(db, summary, metadata.get("booking_proposal"))
        if ids is None:
            return FlowReply(message_templates.REPROMPT_SUMMARY, "reprompt", {"reason": "unknown_catalog_item"})

        logger.info(
            f"Booking confirmed in conversation {conversation.id} ({check.source}): "
            f"{summary.service} with {summary.professional} on {summary.date} {summary.time}"
        )

        if self.config.payments_available:
            return self._issue_link(db, conversation, instance, summary, ids)
        return self._book_directly(db, conversation, summary, ids)

    def _issue_link(self, db, conversation, instance, summary: BookingSummary, ids: Dict) -> FlowReply:
        try:
            link = self.link_service.issue_for_booking(
                db,
                service_id=ids["service_id"],
                professional_id=ids["professional_id"],
                client_name=summary.client,
                phone=conversation.phone_number,
                appointment_date=date.fromisoformat(summary.date),
                appointment_time=summary.time,
                conversation_id=conversation.id,
                whatsapp_instance_id=instance.id,
            )
        except SlotUnavailableError:
            return FlowReply(message_templates.SLOT_TAKEN, "slot_taken")
        except NotFoundError as e:
            logger.warning(f"Cannot issue payment link: {e}")
            return FlowReply(message_templates.REPROMPT_SUMMARY, "reprompt", {"reason": "unknown_catalog_item"})
        except (PaymentConfigurationError, PaymentProviderError) as e:
            logger.error(f"Payment link generation failed for conversation {conversation.id}: {e}")
            return FlowReply(message_templates.PAYMENT_LINK_FAILED, "payment_link_failed", {"error": str(e)[:200]})

        return FlowReply(
            message_templates.payment_link_message(link.checkout_url, link.amount),
            "payment_link",
            {"reference": link.reference, "checkout_url": link.checkout_url},
        )

    def _book_directly(self, db, conversation, summary: BookingSummary, ids: Dict) -> FlowReply:
        try:
            appointment = AppointmentService.create_appointment(
                db,
                company_id=self.config.company_id,
                service_id=ids["service_id"],
                professional_id=ids["professional_id"],
                client_name=summary.client,
                client_phone=conversation.phone_number,
                appointment_date=date.fromisoformat(summary.date),
                appointment_time=summary.time,
                status=AppointmentStatus.SCHEDULED,
                booking_source="whatsapp",
            )
        except SlotUnavailableError:
            return FlowReply(message_templates.SLOT_TAKEN, "slot_taken")
        except NotFoundError as e:
            logger.warning(f"Cannot book directly: {e}")
            return FlowReply(message_templates.REPROMPT_SUMMARY, "reprompt", {"reason": "unknown_catalog_item"})

        return FlowReply(
            message_templates.booking_confirmation_message(appointment),
            "booking_confirmation",
            {"appointment_id": appointment.id},
        )
