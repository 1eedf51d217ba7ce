# ===== bookflow/models/payment_reference.py =====
"""
Correlation row between a checkout link and the appointment it produces.

The reference string is what the payment provider echoes back as
``external_reference``: ``temp_<epoch-ms>`` for bookings that do not exist yet,
or the appointment id for existing appointments.
"""
import enum

from sqlalchemy import (
    Column, String, Integer, Text, DateTime, JSON, Numeric, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum,
)
from sqlalchemy.sql import func

from bookflow.models.base import Base


class PaymentReferenceStatus(str, enum.Enum):
    PENDING = "pending"              # link issued, no approved callback yet
    APPROVED = "approved"            # appointment created/confirmed, user not notified yet
    FINALIZED = "finalized"          # confirmation delivered
    REJECTED = "rejected"            # attempt declined; a later approval on the same checkout still applies
    EXPIRED = "expired"              # link lifetime passed without payment
    RECONCILIATION = "reconciliation"  # money received but booking could not be applied


TERMINAL_REFERENCE_STATUSES = (
    PaymentReferenceStatus.FINALIZED,
    PaymentReferenceStatus.EXPIRED,
    PaymentReferenceStatus.RECONCILIATION,
)


class PaymentReference(Base):
    __tablename__ = "payment_references"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String(64), nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    # Where to send the confirmation
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    whatsapp_instance_id = Column(Integer, ForeignKey("whatsapp_instances.id", ondelete="SET NULL"), nullable=True)
    phone = Column(String(20), nullable=False)

    # Set up-front for existing appointments, after finalization for temporary ones
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)

    # Booking data captured at link issuance (service_id, professional_id, client, date, time)
    booking = Column(JSON, default=dict)
    amount = Column(Numeric(10, 2), nullable=False)

    # Provider data
    preference_id = Column(String(100), nullable=True)
    checkout_url = Column(String(500), nullable=True)
    payment_id = Column(String(50), nullable=True)
    payment_status = Column(String(30), nullable=True)

    status = Column(
        SQLEnum(
            PaymentReferenceStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=PaymentReferenceStatus.PENDING,
    )
    reconciliation_reason = Column(Text, nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("company_id", "reference", name="uq_payment_references_company_reference"),
        Index("ix_payment_references_status_expires", "status", "expires_at"),
    )

    @property
    def is_temporary(self) -> bool:
        return self.reference.startswith("temp_")

    def __repr__(self):
        return f"<PaymentReference(reference={self.reference}, status={self.status})>"
