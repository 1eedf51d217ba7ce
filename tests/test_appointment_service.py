from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from bookflow.core.exceptions import InvalidStatusTransition, NotFoundError, SlotUnavailableError
from bookflow.models.appointment import Appointment, AppointmentStatus
from bookflow.services.appointment.appointment_service import AppointmentService


def _book(db, company, service, professional, day, time="14:00", **kwargs):
    return AppointmentService.create_appointment(
        db,
        company_id=company.id,
        service_id=service.id,
        professional_id=professional.id,
        client_name=kwargs.pop("client_name", "Maria"),
        client_phone=kwargs.pop("client_phone", "5511999998888"),
        appointment_date=day,
        appointment_time=time,
        **kwargs
    )


def test_price_and_duration_come_from_service(db, company, service, professional, booking_day):
    appointment = _book(db, company, service, professional, booking_day, time="9:30")

    assert appointment.total_price == Decimal("50.00")
    assert appointment.duration == 30
    assert appointment.appointment_time == "09:30"
    assert appointment.status == AppointmentStatus.SCHEDULED


def test_overlapping_slot_is_rejected(db, company, service, professional, booking_day):
    first = _book(db, company, service, professional, booking_day, time="14:00")

    with pytest.raises(SlotUnavailableError) as exc_info:
        _book(db, company, service, professional, booking_day, time="14:15", client_name="Ana")

    assert exc_info.value.conflicting_id == first.id
    # back-to-back is fine
    _book(db, company, service, professional, booking_day, time="14:30", client_name="Ana")


def test_unique_slot_key_guards_concurrent_inserts(db, company, service, professional, booking_day, monkeypatch):
    _book(db, company, service, professional, booking_day)
    # simulate a second worker that checked the agenda before the first one committed
    monkeypatch.setattr(AppointmentService, "find_conflict", staticmethod(lambda *args, **kwargs: None))

    with pytest.raises(SlotUnavailableError):
        _book(db, company, service, professional, booking_day, client_name="Ana")

    assert db.query(Appointment).count() == 1


def test_cancelling_frees_the_slot(db, company, service, professional, booking_day):
    appointment = _book(db, company, service, professional, booking_day)

    cancelled = AppointmentService.change_status(db, company.id, appointment.id, AppointmentStatus.CANCELLED)

    assert cancelled.slot_key is None
    assert AppointmentService.is_slot_available(db, company.id, professional.id, booking_day, "14:00", 30)
    _book(db, company, service, professional, booking_day, client_name="Ana")


def test_illegal_status_transition(db, company, service, professional, booking_day):
    appointment = _book(db, company, service, professional, booking_day)
    AppointmentService.change_status(db, company.id, appointment.id, AppointmentStatus.COMPLETED)

    with pytest.raises(InvalidStatusTransition) as exc_info:
        AppointmentService.change_status(db, company.id, appointment.id, AppointmentStatus.CONFIRMED)

    assert exc_info.value.current == "completed"
    assert exc_info.value.target == "confirmed"


def test_confirm_if_scheduled_only_once(db, company, service, professional, booking_day):
    appointment = _book(db, company, service, professional, booking_day)

    assert AppointmentService.confirm_if_scheduled(db, company.id, appointment.id) is True
    db.commit()
    assert AppointmentService.confirm_if_scheduled(db, company.id, appointment.id) is False


def test_other_company_cannot_see_appointment(db, company, service, professional, booking_day):
    appointment = _book(db, company, service, professional, booking_day)

    with pytest.raises(NotFoundError):
        AppointmentService.get_appointment(db, company.id + 1, appointment.id)


def test_moving_onto_a_taken_slot_is_rejected(db, company, service, professional, booking_day):
    _book(db, company, service, professional, booking_day, time="10:00")
    other = _book(db, company, service, professional, booking_day, time="11:00", client_name="Ana")

    with pytest.raises(SlotUnavailableError):
        AppointmentService.update_appointment(db, company.id, other.id, {"appointment_time": "10:00"})


def test_update_normalizes_time_for_the_slot_guard(db, company, service, professional, booking_day, monkeypatch):
    _book(db, company, service, professional, booking_day, time="09:00")
    other = _book(db, company, service, professional, booking_day, time="11:00", client_name="Ana")

    moved = AppointmentService.update_appointment(db, company.id, other.id, {"appointment_time": "9:30"})
    assert moved.appointment_time == "09:30"
    assert moved.slot_key.endswith(":09:30")

    monkeypatch.setattr(AppointmentService, "find_conflict", staticmethod(lambda *args, **kwargs: None))
    with pytest.raises(SlotUnavailableError):
        AppointmentService.update_appointment(db, company.id, other.id, {"appointment_time": "9:00"})


def test_due_for_reminder_window(db, company, service, professional):
    now = datetime(2030, 3, 4, 10, 0)
    soon = _book(db, company, service, professional, now.date(), time="15:00")
    _book(db, company, service, professional, (now + timedelta(days=3)).date(), time="15:00", client_name="Ana")
    _book(db, company, service, professional, now.date(), time="09:00", client_name="Bia")

    due = AppointmentService.due_for_reminder(db, now, 24, company_id=company.id)

    assert [a.id for a in due] == [soon.id]
