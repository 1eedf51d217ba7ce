from datetime import datetime, time, timedelta

import pytest
from celery.exceptions import Retry

from bookflow.core.exceptions import MessagingGatewayError
from bookflow.models.appointment import AppointmentStatus
from bookflow.models.message import Message
from bookflow.models.payment_reference import PaymentReference, PaymentReferenceStatus
from bookflow.services.ai.ai_service import AIService
from bookflow.services.appointment.appointment_service import AppointmentService
from bookflow.services.conversation.booking_flow_service import BookingFlowService
from bookflow.services.payment.payment_link_service import PaymentLinkService
from bookflow.services.payment.payment_webhook_service import PaymentWebhookService
from bookflow.tasks import conversation_tasks, payment_tasks, reminder_tasks

from tests.fakes import FakeMessenger, FakeOpenAI, chat_reply


def _proposal_args(booking_day):
    return {
        "client_name": "Maria",
        "professional": "João",
        "service": "Corte",
        "date": booking_day.isoformat(),
        "time": "14:00",
    }


# ---------------------------------------------------------------------------
# assistant loop
# ---------------------------------------------------------------------------

def test_propose_booking_returns_summary(db, config, conversation, service, professional, booking_day):
    fake = FakeOpenAI([chat_reply(tool_name="propose_booking", arguments=_proposal_args(booking_day))])

    content, metadata = conversation_tasks.run_assistant(db, config, conversation, AIService(config, client=fake))

    assert metadata["kind"] == "booking_proposal"
    assert metadata["booking_proposal"]["service_id"] == service.id
    assert metadata["booking_proposal"]["professional_id"] == professional.id
    assert metadata["booking_proposal"]["price"] == "50.00"
    assert "Posso confirmar?" in content
    assert len(fake.requests) == 1


def test_tool_results_are_fed_back(db, config, conversation, service, professional):
    fake = FakeOpenAI([
        chat_reply(tool_name="list_services"),
        chat_reply(content="Temos Corte por R$ 50,00."),
    ])

    content, metadata = conversation_tasks.run_assistant(db, config, conversation, AIService(config, client=fake))

    assert content == "Temos Corte por R$ 50,00."
    assert metadata == {"kind": "assistant_reply"}
    followup = fake.requests[1]["messages"]
    assert followup[-1]["role"] == "tool"
    assert "Corte" in followup[-1]["content"]
    assert followup[-2]["tool_calls"][0]["function"]["name"] == "list_services"


def test_empty_reply_uses_fallback(db, config, conversation):
    fake = FakeOpenAI([chat_reply(content=None)])

    content, metadata = conversation_tasks.run_assistant(db, config, conversation, AIService(config, client=fake))

    assert content == conversation_tasks.FALLBACK_REPLY
    assert metadata == {"kind": "assistant_reply"}


# ---------------------------------------------------------------------------
# inbound WhatsApp processing
# ---------------------------------------------------------------------------

@pytest.fixture
def whatsapp_task(monkeypatch, task_db, config, mp_client):
    """Run process_whatsapp_message against the test database with fake gateways"""
    task_db(conversation_tasks)
    messenger = FakeMessenger()
    fake_openai = FakeOpenAI([])

    monkeypatch.setattr(conversation_tasks, "WhatsAppService", lambda config: messenger)
    monkeypatch.setattr(conversation_tasks, "AIService", lambda config: AIService(config, client=fake_openai))
    monkeypatch.setattr(
        conversation_tasks, "BookingFlowService",
        lambda config: BookingFlowService(config, link_service=PaymentLinkService(config, client=mp_client)),
    )

    def run(message_id, text):
        return conversation_tasks.process_whatsapp_message(
            instance_name="barbearia-central",
            remote_jid="5511999998888@s.whatsapp.net",
            message_id=message_id,
            message_body=text,
            contact_name="Maria",
        )

    run.messenger = messenger
    run.openai = fake_openai
    return run


def test_booking_conversation_end_to_end(db, whatsapp_task, mp_sdk, service, professional, instance, booking_day):
    whatsapp_task.openai.replies.append(chat_reply(tool_name="propose_booking", arguments=_proposal_args(booking_day)))
    result = whatsapp_task("msg-1", f"Quero um corte com o João dia {booking_day.isoformat()} às 14h")
    assert result == {"status": "completed", "message_id": "msg-1", "reply_kind": "booking_proposal"}

    result = whatsapp_task("msg-2", "Sim")
    assert result["reply_kind"] == "payment_link"
    assert len(mp_sdk.preference_calls) == 1

    # a second "sim" after the link goes back to the assistant
    whatsapp_task.openai.replies.append(chat_reply(content="Seu link já foi enviado!"))
    result = whatsapp_task("msg-3", "sim")
    assert result["reply_kind"] == "assistant_reply"
    assert len(mp_sdk.preference_calls) == 1

    sent = whatsapp_task.messenger.sent
    assert [m["phone"] for m in sent] == ["5511999998888"] * 3
    assert "Posso confirmar?" in sent[0]["text"]
    assert "https://mp.test/checkout/pref-1" in sent[1]["text"]

    db.expire_all()
    assert db.query(PaymentReference).count() == 1
    assert db.query(Message).filter(Message.role == "assistant", Message.delivered == True).count() == 3


def test_redelivered_message_is_skipped(db, whatsapp_task):
    whatsapp_task.openai.replies.append(chat_reply(content="Olá! Como posso ajudar?"))
    assert whatsapp_task("msg-1", "oi")["status"] == "completed"

    assert whatsapp_task("msg-1", "oi") == {"status": "duplicate", "message_id": "msg-1"}
    assert len(whatsapp_task.messenger.sent) == 1


def test_message_that_failed_before_replying_is_answered_on_retry(db, monkeypatch, whatsapp_task):
    real_run_assistant = conversation_tasks.run_assistant
    calls = []

    def flaky_run_assistant(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("openai timeout")
        return real_run_assistant(*args, **kwargs)

    monkeypatch.setattr(conversation_tasks, "run_assistant", flaky_run_assistant)
    whatsapp_task.openai.replies.append(chat_reply(content="Olá! Como posso ajudar?"))

    with pytest.raises(Retry):
        whatsapp_task("msg-1", "oi")
    assert whatsapp_task.messenger.sent == []

    result = whatsapp_task("msg-1", "oi")
    assert result["status"] == "completed"
    assert [m["text"] for m in whatsapp_task.messenger.sent] == ["Olá! Como posso ajudar?"]

    db.expire_all()
    assert db.query(Message).filter(Message.role == "user", Message.message_id == "msg-1").count() == 1
    assert whatsapp_task("msg-1", "oi")["status"] == "duplicate"


def test_unknown_instance(task_db, company):
    task_db(conversation_tasks)

    result = conversation_tasks.process_whatsapp_message(
        instance_name="nope", remote_jid="5511999998888@s.whatsapp.net", message_id="x", message_body="oi"
    )

    assert result == {"status": "failed", "reason": "instance_not_found"}


def test_failed_send_is_queued_for_delivery(db, monkeypatch, whatsapp_task, instance):
    whatsapp_task.messenger.fail_with = MessagingGatewayError("gateway down")
    queued = []
    monkeypatch.setattr(conversation_tasks.deliver_message, "delay", lambda **kwargs: queued.append(kwargs))
    whatsapp_task.openai.replies.append(chat_reply(content="Olá! Como posso ajudar?"))

    assert whatsapp_task("msg-1", "oi")["status"] == "completed"

    [call] = queued
    db.expire_all()
    reply = db.get(Message, call["message_pk"])
    assert reply.delivered is False

    whatsapp_task.messenger.fail_with = None
    assert conversation_tasks.deliver_message(message_pk=reply.id)["status"] == "delivered"
    db.expire_all()
    assert db.get(Message, reply.id).delivered is True
    assert whatsapp_task.messenger.sent[0]["text"] == "Olá! Como posso ajudar?"


# ---------------------------------------------------------------------------
# payments
# ---------------------------------------------------------------------------

@pytest.fixture
def issued_reference(db, config, mp_client, conversation, instance, service, professional, booking_day):
    link = PaymentLinkService(config, client=mp_client).issue_for_booking(
        db,
        service_id=service.id,
        professional_id=professional.id,
        client_name="Maria",
        phone=conversation.phone_number,
        appointment_date=booking_day,
        appointment_time="14:00",
        conversation_id=conversation.id,
        whatsapp_instance_id=instance.id,
    )
    return link.reference


def test_payment_notification_to_confirmation(db, monkeypatch, task_db, company, mp_client, mp_sdk, issued_reference):
    task_db(payment_tasks)
    monkeypatch.setattr(
        payment_tasks, "PaymentWebhookService", lambda config: PaymentWebhookService(config, client=mp_client)
    )
    messenger = FakeMessenger()
    monkeypatch.setattr(payment_tasks, "WhatsAppService", lambda config: messenger)
    queued = []
    monkeypatch.setattr(payment_tasks.send_payment_confirmation, "delay", lambda **kwargs: queued.append(kwargs))
    mp_sdk.add_payment("987", "approved", issued_reference)

    result = payment_tasks.process_payment_notification(company_id=company.id, payment_id="987")

    assert result["status"] == "approved"
    [call] = queued
    assert call["company_id"] == company.id

    task_db(payment_tasks)
    payment_tasks.send_payment_confirmation(**call)

    assert len(messenger.sent) == 1
    assert messenger.closed
    db.expire_all()
    row = db.query(PaymentReference).one()
    assert row.status == PaymentReferenceStatus.FINALIZED
    appointment = AppointmentService.get_appointment(db, company.id, row.appointment_id)
    assert appointment.status == AppointmentStatus.CONFIRMED


def test_pending_payment_sends_nothing(monkeypatch, task_db, company, mp_client, mp_sdk, issued_reference):
    task_db(payment_tasks)
    monkeypatch.setattr(
        payment_tasks, "PaymentWebhookService", lambda config: PaymentWebhookService(config, client=mp_client)
    )
    queued = []
    monkeypatch.setattr(payment_tasks.send_payment_confirmation, "delay", lambda **kwargs: queued.append(kwargs))
    mp_sdk.add_payment("988", "in_process", issued_reference)

    result = payment_tasks.process_payment_notification(company_id=company.id, payment_id="988")

    assert result["status"] == "waiting"
    assert queued == []


def test_payment_for_unknown_company(task_db, db):
    task_db(payment_tasks)

    result = payment_tasks.process_payment_notification(company_id=404, payment_id="1")

    assert result == {"status": "failed", "reason": "company_not_found"}


# ---------------------------------------------------------------------------
# reminders
# ---------------------------------------------------------------------------

def _book(db, company, service, professional, day, hhmm, phone="5511999998888"):
    return AppointmentService.create_appointment(
        db, company_id=company.id, service_id=service.id, professional_id=professional.id,
        client_name="Maria", client_phone=phone, appointment_date=day, appointment_time=hhmm,
    )


def test_reminders_go_out_once(db, monkeypatch, company, instance, service, professional, booking_day):
    soon = _book(db, company, service, professional, booking_day, "14:00")
    _book(db, company, service, professional, booking_day + timedelta(days=2), "14:00", phone="5511988887777")
    cancelled = _book(db, company, service, professional, booking_day, "16:00", phone="5511977776666")
    AppointmentService.change_status(db, company.id, cancelled.id, AppointmentStatus.CANCELLED)
    monkeypatch.setattr(reminder_tasks, "local_now", lambda tz: datetime.combine(booking_day, time(9, 0)))

    messengers = []

    def factory(config):
        messengers.append(FakeMessenger(config))
        return messengers[-1]

    assert reminder_tasks.remind_company(db, company, 24, messenger_factory=factory) == 1
    assert [m["phone"] for m in messengers[0].sent] == ["5511999998888"]
    assert messengers[0].closed
    db.refresh(soon)
    assert soon.reminder_sent is True

    assert reminder_tasks.remind_company(db, company, 24, messenger_factory=factory) == 0


def test_reminder_failures_are_retried_next_run(db, monkeypatch, company, instance, service, professional, booking_day):
    appointment = _book(db, company, service, professional, booking_day, "14:00")
    monkeypatch.setattr(reminder_tasks, "local_now", lambda tz: datetime.combine(booking_day, time(9, 0)))

    failing = lambda config: FakeMessenger(config, fail_with=MessagingGatewayError("offline"))
    assert reminder_tasks.remind_company(db, company, 24, messenger_factory=failing) == 0
    db.refresh(appointment)
    assert appointment.reminder_sent is False


def test_company_without_instance_gets_no_reminders(db, company, service, professional, booking_day):
    _book(db, company, service, professional, booking_day, "14:00")

    assert reminder_tasks.remind_company(db, company, 24 * 30) == 0


def test_local_now_falls_back_on_unknown_timezone():
    assert isinstance(reminder_tasks.local_now("Mars/Olympus"), datetime)
