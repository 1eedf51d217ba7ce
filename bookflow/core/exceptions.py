# bookflow/core/exceptions.py
"""Domain exceptions shared by services, routers and tasks"""
from typing import Optional


class BookflowError(Exception):
    """Base class for all domain errors"""


class NotFoundError(BookflowError):
    """A tenant-scoped record does not exist"""


class SlotUnavailableError(BookflowError):
    """The professional already has an appointment overlapping this slot"""

    def __init__(self, message: str = "Horário indisponível para este profissional",
                 conflicting_id: Optional[int] = None):
        super().__init__(message)
        self.conflicting_id = conflicting_id


class InvalidStatusTransition(BookflowError):
    """Appointment status change not allowed by the transition table"""

    def __init__(self, current, target):
        super().__init__(f"Cannot move appointment from {current} to {target}")
        self.current = current
        self.target = target


class PaymentConfigurationError(BookflowError):
    """Company or deployment is not set up to issue payment links"""


class PaymentProviderError(BookflowError):
    """Payment provider unreachable, rejected credentials or returned an error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MessagingGatewayError(BookflowError):
    """WhatsApp gateway call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
