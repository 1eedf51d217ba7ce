# bookflow/schemas/__init__.py
from .webhook_events import (
    MercadoPagoNotification,
    EvolutionMessageKey,
    EvolutionMessageData,
    EvolutionWebhookEvent,
)

from .appointments import (
    AppointmentCreate,
    AppointmentUpdate,
    AppointmentStatusChange,
    PaymentLinkResponse,
)

from .catalog import (
    ServiceCreate,
    ProfessionalCreate,
)
