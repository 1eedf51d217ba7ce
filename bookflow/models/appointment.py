# ===== bookflow/models/appointment.py =====
import enum

from sqlalchemy import (
    Column, String, Integer, Text, Date, DateTime, Boolean, Numeric, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bookflow.core.exceptions import InvalidStatusTransition
from bookflow.models.base import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Allowed moves; anything missing here is rejected
STATUS_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Statuses that occupy the professional's agenda
ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


def next_status(current: AppointmentStatus, target: AppointmentStatus) -> AppointmentStatus:
    """Validate a status change and return the new status"""
    current = AppointmentStatus(current)
    target = AppointmentStatus(target)
    if target not in STATUS_TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, target.value)
    return target


def build_slot_key(professional_id: int, appointment_date, appointment_time: str) -> str:
    return f"{professional_id}:{appointment_date.isoformat()}:{appointment_time}"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # References
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    professional_id = Column(Integer, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False)

    # Client info
    client_name = Column(String(255), nullable=False)
    client_phone = Column(String(20), nullable=False)
    client_email = Column(String(255), nullable=True)

    # Appointment details
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(String(5), nullable=False)  # HH:MM
    duration = Column(Integer, nullable=False)  # minutes
    total_price = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)

    status = Column(
        SQLEnum(
            AppointmentStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    booking_source = Column(String(20), default="manual")  # manual, whatsapp, payment

    # "<professional>:<date>:<time>" while active, NULL once cancelled
    slot_key = Column(String(64), nullable=True)

    reminder_sent = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    service = relationship("Service")
    professional = relationship("Professional")

    __table_args__ = (
        UniqueConstraint("company_id", "slot_key", name="uq_appointments_company_slot"),
        Index("ix_appointments_company_date", "company_id", "appointment_date"),
        Index("ix_appointments_client_phone", "client_phone"),
    )

    def transition_to(self, target: AppointmentStatus) -> None:
        self.status = next_status(self.status, target)
        if self.status not in ACTIVE_STATUSES:
            self.slot_key = None

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "professional_id": self.professional_id,
            "professional_name": self.professional.name if self.professional else None,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "client_email": self.client_email,
            "appointment_date": self.appointment_date.isoformat(),
            "appointment_time": self.appointment_time,
            "duration": self.duration,
            "total_price": float(self.total_price) if self.total_price is not None else None,
            "status": AppointmentStatus(self.status).value,
            "notes": self.notes,
            "booking_source": self.booking_source,
            "reminder_sent": bool(self.reminder_sent),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
