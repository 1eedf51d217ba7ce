import pytest

from bookflow.config.settings import get_settings
from bookflow.utils.webhook_signature import sign_notification
from bookflow.webhooks import payment_handler, whatsapp_handler


class DelayRecorder:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.calls.append(kwargs)


@pytest.fixture
def payment_delay(monkeypatch):
    recorder = DelayRecorder()
    monkeypatch.setattr(payment_handler.process_payment_notification, "delay", recorder)
    return recorder


@pytest.fixture
def whatsapp_delay(monkeypatch):
    recorder = DelayRecorder()
    monkeypatch.setattr(whatsapp_handler.process_whatsapp_message, "delay", recorder)
    return recorder


def _evolution_event(text="Oi, quero marcar um corte", from_me=False, jid="5511999998888@s.whatsapp.net"):
    return {
        "event": "messages.upsert",
        "instance": "barbearia-central",
        "data": {
            "key": {"remoteJid": jid, "fromMe": from_me, "id": "3EB0C767D26A"},
            "pushName": "Maria",
            "message": {"conversation": text},
            "messageType": "conversation",
        },
    }


# ---------------------------------------------------------------------------
# Mercado Pago
# ---------------------------------------------------------------------------

def test_payment_notification_is_queued(client, company, payment_delay):
    response = client.post(
        f"/webhooks/mercadopago?company_id={company.id}",
        json={"type": "payment", "action": "payment.updated", "data": {"id": 123}},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "received"}
    [call] = payment_delay.calls
    assert call["company_id"] == company.id
    assert call["payment_id"] == "123"


def test_legacy_ipn_query_parameters(client, company, payment_delay):
    response = client.post(f"/webhooks/mercadopago?company_id={company.id}&topic=payment&id=456")

    assert response.status_code == 200
    assert payment_delay.calls[0]["payment_id"] == "456"


def test_other_topics_are_ignored(client, company, payment_delay):
    response = client.post(
        f"/webhooks/mercadopago?company_id={company.id}",
        json={"type": "merchant_order", "data": {"id": "9"}},
    )

    assert response.json() == {"status": "ignored"}
    assert payment_delay.calls == []


@pytest.mark.parametrize("path,body,expected", [
    ("/webhooks/mercadopago", {"type": "payment", "data": {"id": "1"}}, 400),
    ("/webhooks/mercadopago?company_id={company}", "not json", 400),
    ("/webhooks/mercadopago?company_id={company}", [1, 2], 400),
    ("/webhooks/mercadopago?company_id={company}", {"type": "payment"}, 400),
    ("/webhooks/mercadopago?company_id=999", {"type": "payment", "data": {"id": "1"}}, 404),
])
def test_bad_payment_notifications(client, company, payment_delay, path, body, expected):
    url = path.format(company=company.id)
    if isinstance(body, str):
        response = client.post(url, content=body, headers={"Content-Type": "application/json"})
    else:
        response = client.post(url, json=body)

    assert response.status_code == expected
    assert payment_delay.calls == []


def test_queue_failure_returns_500(client, company, monkeypatch):
    monkeypatch.setattr(
        payment_handler.process_payment_notification, "delay", DelayRecorder(error=ConnectionError("broker down"))
    )

    response = client.post(
        f"/webhooks/mercadopago?company_id={company.id}",
        json={"type": "payment", "data": {"id": "123"}},
    )

    assert response.status_code == 500


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(get_settings(), "MERCADOPAGO_WEBHOOK_SECRET", "mp-secret")
    return "mp-secret"


def test_signed_notification_is_queued(client, company, payment_delay, webhook_secret):
    signature = sign_notification(webhook_secret, "123", "req-1", "1704908010")

    response = client.post(
        f"/webhooks/mercadopago?company_id={company.id}&data.id=123&type=payment",
        json={"type": "payment", "data": {"id": "123"}},
        headers={"x-signature": f"ts=1704908010,v1={signature}", "x-request-id": "req-1"},
    )

    assert response.json() == {"status": "received"}
    assert payment_delay.calls[0]["payment_id"] == "123"


@pytest.mark.parametrize("headers", [
    {},
    {"x-signature": "ts=1704908010", "x-request-id": "req-1"},
    {"x-signature": "ts=1704908010,v1=deadbeef", "x-request-id": "req-1"},
])
def test_unsigned_or_forged_notifications_are_rejected(client, company, payment_delay, webhook_secret, headers):
    response = client.post(
        f"/webhooks/mercadopago?company_id={company.id}&data.id=123&type=payment",
        json={"type": "payment", "data": {"id": "123"}},
        headers=headers,
    )

    assert response.status_code == 401
    assert payment_delay.calls == []


def test_signature_covers_the_payment_id(client, company, payment_delay, webhook_secret):
    signature = sign_notification(webhook_secret, "123", "req-1", "1704908010")

    response = client.post(
        f"/webhooks/mercadopago?company_id={company.id}&data.id=999&type=payment",
        json={"type": "payment", "data": {"id": "999"}},
        headers={"x-signature": f"ts=1704908010,v1={signature}", "x-request-id": "req-1"},
    )

    assert response.status_code == 401


# ---------------------------------------------------------------------------
# WhatsApp
# ---------------------------------------------------------------------------

def test_whatsapp_text_is_queued(client, instance, whatsapp_delay):
    response = client.post("/webhooks/whatsapp/barbearia-central", json=_evolution_event())

    assert response.json() == {"status": "received"}
    [call] = whatsapp_delay.calls
    assert call["message_id"] == "3EB0C767D26A"
    assert call["message_body"] == "Oi, quero marcar um corte"
    assert call["contact_name"] == "Maria"


@pytest.mark.parametrize("event", [
    _evolution_event(from_me=True),
    _evolution_event(jid="120363025@g.us"),
    _evolution_event(text=""),
    {"event": "connection.update", "data": None},
])
def test_whatsapp_events_that_are_ignored(client, instance, whatsapp_delay, event):
    response = client.post("/webhooks/whatsapp/barbearia-central", json=event)

    assert response.json() == {"status": "ignored"}
    assert whatsapp_delay.calls == []


def test_whatsapp_unknown_instance(client, instance, whatsapp_delay):
    response = client.post("/webhooks/whatsapp/nope", json=_evolution_event())

    assert response.status_code == 404


def test_whatsapp_malformed_event(client, instance, whatsapp_delay):
    response = client.post("/webhooks/whatsapp/barbearia-central", json={"data": {}})

    assert response.status_code == 400
