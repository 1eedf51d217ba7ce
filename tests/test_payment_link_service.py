from decimal import Decimal

import pytest

from bookflow.core.exceptions import (
    BookflowError, PaymentConfigurationError, PaymentProviderError, SlotUnavailableError,
)
from bookflow.models.appointment import AppointmentStatus
from bookflow.models.payment_reference import PaymentReference, PaymentReferenceStatus
from bookflow.services.appointment.appointment_service import AppointmentService
from bookflow.services.payment.payment_link_service import (
    PaymentLinkService, resolve_excluded_payment_types, validate_notification_url,
)


def _issue(db, service_obj, professional, day, link_service, time="14:00"):
    return link_service.issue_for_booking(
        db,
        service_id=service_obj.id,
        professional_id=professional.id,
        client_name="Maria",
        phone="5511999998888",
        appointment_date=day,
        appointment_time=time,
    )


def test_link_charges_the_service_price(db, config, service, professional, booking_day, mp_client, mp_sdk):
    link = _issue(db, service, professional, booking_day, PaymentLinkService(config, client=mp_client))

    assert link.amount == Decimal("50.00")
    assert link.reference.startswith("temp_")
    assert link.checkout_url == "https://mp.test/checkout/pref-1"

    [preference] = mp_sdk.preference_calls
    assert preference["items"][0]["unit_price"] == 50.0
    assert preference["items"][0]["title"] == "Corte com João - Barbearia Central"
    assert preference["external_reference"] == link.reference
    assert preference["notification_url"] == (
        f"https://api.bookflow.test/webhooks/mercadopago?company_id={config.company_id}"
    )
    assert preference["payment_methods"]["installments"] == 1
    excluded = {t["id"] for t in preference["payment_methods"]["excluded_payment_types"]}
    assert {"ticket", "atm"} <= excluded
    assert "bank_transfer" not in excluded
    assert preference["expires"] is True


def test_reference_row_snapshots_the_booking(db, config, service, professional, booking_day, mp_client):
    link = _issue(db, service, professional, booking_day, PaymentLinkService(config, client=mp_client))

    row = db.query(PaymentReference).filter(PaymentReference.reference == link.reference).one()
    assert row.status == PaymentReferenceStatus.PENDING
    assert row.preference_id == "pref-1"
    assert row.booking == {
        "service_id": service.id,
        "professional_id": professional.id,
        "client_name": "Maria",
        "client_phone": "5511999998888",
        "appointment_date": booking_day.isoformat(),
        "appointment_time": "14:00",
    }


@pytest.mark.parametrize("base_url", ["http://localhost:8000", "http://127.0.0.1", "http://0.0.0.0:8000", ""])
def test_unreachable_notification_url_is_refused(db, config, service, professional, booking_day,
                                                 mp_client, mp_sdk, base_url):
    local_config = config.model_copy(update={"public_base_url": base_url})

    with pytest.raises(PaymentConfigurationError):
        _issue(db, service, professional, booking_day, PaymentLinkService(local_config, client=mp_client))

    assert mp_sdk.preference_calls == []


def test_public_notification_url_is_accepted():
    url = "https://api.bookflow.com.br/webhooks/mercadopago?company_id=1"
    assert validate_notification_url(url) == url


def test_pix_cannot_be_excluded():
    with pytest.raises(PaymentConfigurationError):
        resolve_excluded_payment_types(["credit_card", "bank_transfer"])
    assert resolve_excluded_payment_types(["credit_card"]) == ["credit_card", "ticket", "atm"]


def test_disabled_company_cannot_issue(db, config, service, professional, booking_day, mp_client):
    disabled = config.model_copy(update={"mercadopago_enabled": False})

    with pytest.raises(PaymentConfigurationError):
        _issue(db, service, professional, booking_day, PaymentLinkService(disabled, client=mp_client))


def test_provider_error_is_not_retried_for_client_errors(db, config, service, professional, booking_day,
                                                         mp_client, mp_sdk):
    mp_sdk.preference_responses.append({"status": 400, "response": {"message": "invalid unit_price"}})

    with pytest.raises(PaymentProviderError) as exc_info:
        _issue(db, service, professional, booking_day, PaymentLinkService(config, client=mp_client))

    assert exc_info.value.status_code == 400
    assert len(mp_sdk.preference_calls) == 1
    row = db.query(PaymentReference).one()
    assert row.status == PaymentReferenceStatus.EXPIRED


def test_provider_outage_is_retried_with_backoff(db, config, service, professional, booking_day, mp_sdk):
    from bookflow.services.payment.mercadopago_client import MercadoPagoClient

    sleeps = []
    client = MercadoPagoClient("TEST-token", retry_attempts=3, backoff_seconds=1.0, sdk=mp_sdk, sleep=sleeps.append)
    mp_sdk.preference_responses.extend([{"status": 503, "response": {}}] * 3)

    with pytest.raises(PaymentProviderError):
        _issue(db, service, professional, booking_day, PaymentLinkService(config, client=client))

    assert len(mp_sdk.preference_calls) == 3
    assert sleeps == [1.0, 2.0]


def test_taken_slot_never_reaches_the_provider(db, config, company, service, professional, booking_day,
                                               mp_client, mp_sdk):
    AppointmentService.create_appointment(
        db, company.id, service.id, professional.id, "Ana", "5511988887777", booking_day, "14:00"
    )

    with pytest.raises(SlotUnavailableError):
        _issue(db, service, professional, booking_day, PaymentLinkService(config, client=mp_client))

    assert mp_sdk.preference_calls == []


def test_existing_appointment_link_is_reused(db, config, company, service, professional, booking_day,
                                            mp_client, mp_sdk):
    appointment = AppointmentService.create_appointment(
        db, company.id, service.id, professional.id, "Maria", "5511999998888", booking_day, "14:00"
    )
    link_service = PaymentLinkService(config, client=mp_client)

    first = link_service.issue_for_appointment(db, appointment.id)
    second = link_service.issue_for_appointment(db, appointment.id)

    assert first.reference == str(appointment.id)
    assert second.reused is True
    assert second.checkout_url == first.checkout_url
    assert len(mp_sdk.preference_calls) == 1


def test_only_scheduled_appointments_get_links(db, config, company, service, professional, booking_day, mp_client):
    appointment = AppointmentService.create_appointment(
        db, company.id, service.id, professional.id, "Maria", "5511999998888", booking_day, "14:00",
        status=AppointmentStatus.CONFIRMED
    )

    with pytest.raises(BookflowError):
        PaymentLinkService(config, client=mp_client).issue_for_appointment(db, appointment.id)
