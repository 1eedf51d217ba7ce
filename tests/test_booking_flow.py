from decimal import Decimal

import pytest

from bookflow.core.exceptions import PaymentProviderError
from bookflow.models.appointment import Appointment, AppointmentStatus
from bookflow.models.payment_reference import PaymentReference
from bookflow.services.appointment.appointment_service import AppointmentService
from bookflow.services.conversation.booking_flow_service import BookingFlowService
from bookflow.services.message.message_service import MessageService
from bookflow.services.payment.payment_link_service import PaymentLinkService
from bookflow.services.whatsapp import message_templates

SUMMARY = (
    "✅ Cliente: Maria\n👨 Profissional: João\n🔧 Serviço: Corte\n"
    "⏰ {day} 14:00\n💰 R$5,00\n\nPosso confirmar? Responda *sim* para confirmar."
)


@pytest.fixture
def flow(config, mp_client):
    return BookingFlowService(config, link_service=PaymentLinkService(config, client=mp_client))


@pytest.fixture
def proposal_message(db, conversation, service, professional, booking_day):
    return MessageService.create_message(
        db, conversation.id, "assistant", SUMMARY.format(day=booking_day.isoformat()),
        message_metadata={"kind": "assistant_reply"},
    )


def test_confirmation_issues_one_payment_link(db, flow, conversation, instance, proposal_message, mp_sdk):
    reply = flow.handle_user_message(db, conversation, instance, "sim", proposal_message)

    assert reply.kind == "payment_link"
    assert reply.metadata["checkout_url"] in reply.text
    # the amount charged is the catalog price, not the R$5,00 the chat showed
    assert "R$ 50,00" in reply.text
    assert len(mp_sdk.preference_calls) == 1

    link_message = MessageService.create_message(
        db, conversation.id, "assistant", reply.text, message_metadata={"kind": reply.kind, **reply.metadata}
    )
    assert flow.handle_user_message(db, conversation, instance, "sim", link_message) is None
    assert len(mp_sdk.preference_calls) == 1

    row = db.query(PaymentReference).one()
    assert row.reference == reply.metadata["reference"]
    assert row.conversation_id == conversation.id
    assert row.whatsapp_instance_id == instance.id


def test_ordinary_reply_falls_through(db, flow, conversation, instance, proposal_message):
    assert flow.handle_user_message(db, conversation, instance, "tem horário amanhã?", proposal_message) is None
    assert flow.handle_user_message(db, conversation, instance, "sim", None) is None


def test_partial_summary_reprompts(db, flow, conversation, instance, mp_sdk):
    previous = MessageService.create_message(
        db, conversation.id, "assistant", "✅ Cliente: Maria\n👨 Profissional: João\n🔧 Serviço: Corte"
    )

    reply = flow.handle_user_message(db, conversation, instance, "sim", previous)

    assert reply.kind == "reprompt"
    assert reply.text == message_templates.REPROMPT_SUMMARY
    assert mp_sdk.preference_calls == []


def test_unknown_professional_reprompts(db, flow, conversation, instance, service, professional, booking_day):
    previous = MessageService.create_message(
        db, conversation.id, "assistant",
        SUMMARY.format(day=booking_day.isoformat()).replace("João", "Pedro"),
    )

    reply = flow.handle_user_message(db, conversation, instance, "sim", previous)

    assert reply.kind == "reprompt"
    assert reply.metadata == {"reason": "unknown_catalog_item"}


def test_taken_slot_is_reported(db, flow, company, conversation, instance, service, professional,
                               booking_day, proposal_message):
    AppointmentService.create_appointment(
        db, company.id, service.id, professional.id, "Ana", "5511988887777", booking_day, "14:00"
    )

    reply = flow.handle_user_message(db, conversation, instance, "sim", proposal_message)

    assert reply.kind == "slot_taken"


def test_provider_failure_tells_the_customer(db, config, conversation, instance, proposal_message):
    class FailingClient:
        def create_preference(self, preference_data, idempotency_key=None):
            raise PaymentProviderError("Mercado Pago unreachable", status_code=503)

    flow = BookingFlowService(config, link_service=PaymentLinkService(config, client=FailingClient()))

    reply = flow.handle_user_message(db, conversation, instance, "sim", proposal_message)

    assert reply.kind == "payment_link_failed"
    assert reply.text == message_templates.PAYMENT_LINK_FAILED


def test_company_without_payments_books_directly(db, config, conversation, instance, proposal_message, mp_client):
    no_payments = config.model_copy(update={"mercadopago_enabled": False})
    flow = BookingFlowService(no_payments, link_service=PaymentLinkService(no_payments, client=mp_client))

    reply = flow.handle_user_message(db, conversation, instance, "sim", proposal_message)

    assert reply.kind == "booking_confirmation"
    appointment = db.get(Appointment, reply.metadata["appointment_id"])
    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.booking_source == "whatsapp"
    assert appointment.total_price == Decimal("50.00")
    assert appointment.client_phone == conversation.phone_number
