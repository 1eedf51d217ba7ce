# ============================================================================
# bookflow/services/appointment/appointment_service.py
# Pure business logic - no FastAPI dependencies, fully testable
# ============================================================================
"""Service for managing appointments"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookflow.core.exceptions import NotFoundError, SlotUnavailableError
from bookflow.models.appointment import (
    Appointment, AppointmentStatus, ACTIVE_STATUSES, build_slot_key,
)
from bookflow.models.professional import Professional
from bookflow.models.service import Service

logger = logging.getLogger(__name__)

SLOT_FIELDS = ("professional_id", "appointment_date", "appointment_time", "duration")


def time_to_minutes(value: str) -> int:
    """'HH:MM' -> minutes since midnight"""
    hours, minutes = value.split(":")
    hours, minutes = int(hours), int(minutes)
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time: {value}")
    return hours * 60 + minutes


def normalize_hhmm(value: str) -> str:
    minutes = time_to_minutes(value)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _match_name(items, name: Optional[str]):
    """Exact case-insensitive match, else a unique partial match"""
    wanted = (name or "").strip().lower()
    if not wanted:
        return None
    for item in items:
        if item.name.lower() == wanted:
            return item
    matches = [item for item in items if wanted in item.name.lower()]
    return matches[0] if len(matches) == 1 else None


class AppointmentService:
    """Handles appointment operations"""

    @staticmethod
    def get_service(db: Session, company_id: int, service_id: int) -> Service:
        service = db.query(Service).filter(
            Service.id == service_id,
            Service.company_id == company_id,
            Service.active == True
        ).first()
        if not service:
            raise NotFoundError(f"Service {service_id} not found")
        return service

    @staticmethod
    def get_professional(db: Session, company_id: int, professional_id: int) -> Professional:
        professional = db.query(Professional).filter(
            Professional.id == professional_id,
            Professional.company_id == company_id,
            Professional.active == True
        ).first()
        if not professional:
            raise NotFoundError(f"Professional {professional_id} not found")
        return professional

    @staticmethod
    def find_service_by_name(db: Session, company_id: int, name: Optional[str]) -> Optional[Service]:
        services = db.query(Service).filter(Service.company_id == company_id, Service.active == True).all()
        return _match_name(services, name)

    @staticmethod
    def find_professional_by_name(db: Session, company_id: int, name: Optional[str]) -> Optional[Professional]:
        professionals = db.query(Professional).filter(
            Professional.company_id == company_id,
            Professional.active == True
        ).all()
        return _match_name(professionals, name)

    @staticmethod
    def find_conflict(
            db: Session,
            company_id: int,
            professional_id: int,
            appointment_date: date,
            appointment_time: str,
            duration: int,
            exclude_id: Optional[int] = None
    ) -> Optional[Appointment]:
        """Return an active appointment of the professional overlapping the slot, if any"""
        start = time_to_minutes(appointment_time)
        end = start + duration

        query = db.query(Appointment).filter(
            Appointment.company_id == company_id,
            Appointment.professional_id == professional_id,
            Appointment.appointment_date == appointment_date,
            Appointment.status.in_(ACTIVE_STATUSES)
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)

        for other in query.all():
            other_start = time_to_minutes(other.appointment_time)
            other_end = other_start + other.duration
            if start < other_end and other_start < end:
                return other
        return None

    @staticmethod
    def is_slot_available(db: Session, company_id: int, professional_id: int,
                          appointment_date: date, appointment_time: str, duration: int) -> bool:
        return AppointmentService.find_conflict(
            db, company_id, professional_id, appointment_date, appointment_time, duration
        ) is None

    @staticmethod
    def create_appointment(
            db: Session,
            company_id: int,
            service_id: int,
            professional_id: int,
            client_name: str,
            client_phone: str,
            appointment_date: date,
            appointment_time: str,
            client_email: Optional[str] = None,
            notes: Optional[str] = None,
            status: AppointmentStatus = AppointmentStatus.SCHEDULED,
            booking_source: str = "manual",
            total_price: Optional[Decimal] = None,
            commit: bool = True
    ) -> Appointment:
        """
        Create a new appointment after checking the professional's agenda.

        Price and duration default to the service's configured values. With
        ``commit=False`` the row is only flushed so callers can finish their own
        transaction. A slot collision rolls the session back and raises
        SlotUnavailableError.
        """
        service = AppointmentService.get_service(db, company_id, service_id)
        AppointmentService.get_professional(db, company_id, professional_id)
        appointment_time = normalize_hhmm(appointment_time)

        conflict = AppointmentService.find_conflict(
            db, company_id, professional_id, appointment_date, appointment_time, service.duration
        )
        if conflict:
            raise SlotUnavailableError(conflicting_id=conflict.id)

        appointment = Appointment(
            company_id=company_id,
            service_id=service.id,
            professional_id=professional_id,
            client_name=client_name,
            client_phone=client_phone,
            client_email=client_email,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            duration=service.duration,
            total_price=total_price if total_price is not None else service.price,
            notes=notes,
            status=status,
            booking_source=booking_source,
            slot_key=build_slot_key(professional_id, appointment_date, appointment_time),
            reminder_sent=False,
        )

        db.add(appointment)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.warning(
                f"Slot taken concurrently: professional={professional_id} "
                f"{appointment_date} {appointment_time}"
            )
            raise SlotUnavailableError()

        if commit:
            db.commit()
            db.refresh(appointment)

        logger.info(f"Created appointment {appointment.id} ({booking_source}) for company {company_id}")
        return appointment

    @staticmethod
    def get_appointment(db: Session, company_id: int, appointment_id: int) -> Appointment:
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.company_id == company_id
        ).first()
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    @staticmethod
    def list_appointments(
            db: Session,
            company_id: int,
            start_date: Optional[date] = None,
            end_date: Optional[date] = None,
            status: Optional[AppointmentStatus] = None,
            professional_id: Optional[int] = None,
            client_phone: Optional[str] = None,
            skip: int = 0,
            limit: int = 50
    ) -> Dict[str, Any]:
        """Get paginated list of appointments with filters."""
        query = db.query(Appointment).filter(Appointment.company_id == company_id)

        if start_date:
            query = query.filter(Appointment.appointment_date >= start_date)
        if end_date:
            query = query.filter(Appointment.appointment_date <= end_date)
        if status:
            query = query.filter(Appointment.status == status)
        if professional_id:
            query = query.filter(Appointment.professional_id == professional_id)
        if client_phone:
            query = query.filter(Appointment.client_phone == client_phone)

        query = query.order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())
        total = query.count()
        appointments = query.offset(skip).limit(limit).all()

        return {
            "company_id": company_id,
            "total_appointments": total,
            "page": {
                "skip": skip,
                "limit": limit,
                "total_pages": (total + limit - 1) // limit if total > 0 else 0
            },
            "filters": {
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
                "status": status.value if status else None,
                "professional_id": professional_id,
                "client_phone": client_phone,
            },
            "appointments": [appt.to_dict() for appt in appointments]
        }

    @staticmethod
    def update_appointment(
            db: Session,
            company_id: int,
            appointment_id: int,
            updates: Dict[str, Any]
    ) -> Appointment:
        """Update editable fields; moving the slot re-checks the agenda"""
        appointment = AppointmentService.get_appointment(db, company_id, appointment_id)

        if updates.get("appointment_time"):
            updates["appointment_time"] = normalize_hhmm(updates["appointment_time"])

        if "service_id" in updates and updates["service_id"] != appointment.service_id:
            service = AppointmentService.get_service(db, company_id, updates["service_id"])
            updates.setdefault("duration", service.duration)
            updates.setdefault("total_price", service.price)
        if "professional_id" in updates:
            AppointmentService.get_professional(db, company_id, updates["professional_id"])

        slot_changed = any(
            field in updates and updates[field] != getattr(appointment, field) for field in SLOT_FIELDS
        )

        for key, value in updates.items():
            if hasattr(appointment, key) and key not in ("id", "company_id", "status", "slot_key"):
                setattr(appointment, key, value)

        if slot_changed and appointment.status in ACTIVE_STATUSES:
            conflict = AppointmentService.find_conflict(
                db, company_id, appointment.professional_id, appointment.appointment_date,
                appointment.appointment_time, appointment.duration, exclude_id=appointment.id
            )
            if conflict:
                db.rollback()
                raise SlotUnavailableError(conflicting_id=conflict.id)
            appointment.slot_key = build_slot_key(
                appointment.professional_id, appointment.appointment_date, appointment.appointment_time
            )

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise SlotUnavailableError()
        db.refresh(appointment)
        return appointment

    @staticmethod
    def change_status(
            db: Session,
            company_id: int,
            appointment_id: int,
            status: AppointmentStatus
    ) -> Appointment:
        appointment = AppointmentService.get_appointment(db, company_id, appointment_id)
        previous = appointment.status
        appointment.transition_to(status)
        db.commit()
        db.refresh(appointment)
        logger.info(f"Appointment {appointment_id}: {previous.value} -> {appointment.status.value}")
        return appointment

    @staticmethod
    def confirm_if_scheduled(db: Session, company_id: int, appointment_id: int) -> bool:
        """
        Atomically flip a scheduled appointment to confirmed.

        Returns False when the row is missing or no longer scheduled. Does not commit.
        """
        updated = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.company_id == company_id,
            Appointment.status == AppointmentStatus.SCHEDULED
        ).update(
            {Appointment.status: AppointmentStatus.CONFIRMED},
            synchronize_session=False
        )
        return updated == 1

    @staticmethod
    def delete_appointment(db: Session, company_id: int, appointment_id: int) -> None:
        appointment = AppointmentService.get_appointment(db, company_id, appointment_id)
        db.delete(appointment)
        db.commit()
        logger.info(f"Deleted appointment {appointment_id}")

    @staticmethod
    def due_for_reminder(db: Session, now: datetime, hours_ahead: int,
                         company_id: Optional[int] = None) -> List[Appointment]:
        """
        Active appointments inside the reminder window that were not reminded yet.

        ``now`` is a naive datetime in the company's local time, like the stored slots.
        """
        window_end = now + timedelta(hours=hours_ahead)
        query = db.query(Appointment).filter(
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.reminder_sent == False,
            Appointment.appointment_date >= now.date(),
            Appointment.appointment_date <= window_end.date()
        )
        if company_id is not None:
            query = query.filter(Appointment.company_id == company_id)
        candidates = query.all()

        due = []
        for appointment in candidates:
            minutes = time_to_minutes(appointment.appointment_time)
            starts_at = datetime.combine(appointment.appointment_date, datetime.min.time()) + timedelta(minutes=minutes)
            if now <= starts_at <= window_end:
                due.append(appointment)
        return due
