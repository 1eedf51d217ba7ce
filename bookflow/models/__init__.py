# bookflow/models/__init__.py
from .base import Base
from .company import Company, Plan
from .professional import Professional
from .service import Service
from .appointment import Appointment, AppointmentStatus
from .whatsapp_instance import WhatsAppInstance
from .conversation import Conversation
from .message import Message
from .payment_reference import PaymentReference, PaymentReferenceStatus

__all__ = [
    "Base",
    "Company",
    "Plan",
    "Professional",
    "Service",
    "Appointment",
    "AppointmentStatus",
    "WhatsAppInstance",
    "Conversation",
    "Message",
    "PaymentReference",
    "PaymentReferenceStatus",
]
