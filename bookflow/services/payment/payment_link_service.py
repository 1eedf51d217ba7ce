# ============================================================================
# bookflow/services/payment/payment_link_service.py
# ============================================================================
"""
Checkout link issuance.

Every link is backed by a PaymentReference row. The reference string goes to
Mercado Pago as ``external_reference`` and comes back on the payment, which is how
the webhook finds the booking again.
"""
import ipaddress
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, List, Dict
from urllib.parse import urlparse

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookflow.config.tenant import TenantConfig
from bookflow.core.exceptions import (
    BookflowError, PaymentConfigurationError, PaymentProviderError, SlotUnavailableError,
)
from bookflow.models.appointment import AppointmentStatus
from bookflow.models.payment_reference import PaymentReference, PaymentReferenceStatus
from bookflow.services.appointment.appointment_service import AppointmentService, normalize_hhmm
from bookflow.services.payment.mercadopago_client import MercadoPagoClient

logger = logging.getLogger(__name__)

# Offline vouchers cannot be reconciled automatically
REQUIRED_EXCLUDED_TYPES = ("ticket", "atm")
# Pix
INSTANT_TRANSFER_TYPE = "bank_transfer"

TEMP_REFERENCE_PREFIX = "temp_"
MAX_REFERENCE_ATTEMPTS = 5


@dataclass
class PaymentLink:
    reference: str
    checkout_url: str
    preference_id: Optional[str]
    amount: Decimal
    expires_at: datetime
    reused: bool = False


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes read back from the database as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_notification_url(url: str) -> str:
    """Reject notification URLs the provider could never reach"""
    parsed = urlparse(url or "")
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        raise PaymentConfigurationError("PUBLIC_BASE_URL is not configured with a public host")
    if host == "localhost" or host.endswith(".localhost"):
        raise PaymentConfigurationError(f"Notification URL points to a loopback host: {host}")
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return url
    if address.is_loopback or address.is_unspecified:
        raise PaymentConfigurationError(f"Notification URL points to a loopback address: {host}")
    return url


def resolve_excluded_payment_types(configured: List[str]) -> List[str]:
    """Configured exclusions plus the offline vouchers; Pix must stay available"""
    excluded = [t.strip().lower() for t in configured if t and t.strip()]
    if INSTANT_TRANSFER_TYPE in excluded:
        raise PaymentConfigurationError("Pix (bank_transfer) cannot be excluded from payment methods")
    for required in REQUIRED_EXCLUDED_TYPES:
        if required not in excluded:
            excluded.append(required)
    return excluded


class PaymentLinkService:
    """Issues Mercado Pago checkout links for one company"""

    def __init__(self, config: TenantConfig, client: Optional[MercadoPagoClient] = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> MercadoPagoClient:
        if self._client is None:
            self._client = MercadoPagoClient(
                self.config.mercadopago_access_token,
                retry_attempts=self.config.payment_retry_attempts,
                backoff_seconds=self.config.payment_retry_backoff_seconds,
            )
        return self._client

    def _check_configuration(self) -> Dict:
        if not self.config.payments_available:
            raise PaymentConfigurationError(
                f"Mercado Pago is not enabled for company {self.config.company_id}"
            )
        return {
            "notification_url": validate_notification_url(self.config.notification_url),
            "excluded_payment_types": resolve_excluded_payment_types(self.config.excluded_payment_types),
        }

    def build_preference(
            self,
            reference: str,
            description: str,
            amount: Decimal,
            item_id: str,
            client_name: str,
            expires_at: datetime,
            checks: Dict,
    ) -> Dict:
        now = datetime.now(timezone.utc)
        return {
            "items": [
                {
                    "id": item_id,
                    "title": description,
                    "quantity": 1,
                    "unit_price": float(amount),
                    "currency_id": "BRL",
                    "category_id": "services",
                }
            ],
            "payer": {"name": client_name},
            "external_reference": reference,
            "notification_url": checks["notification_url"],
            "payment_methods": {
                "excluded_payment_types": [{"id": t} for t in checks["excluded_payment_types"]],
                "installments": 1,
            },
            "expires": True,
            "expiration_date_from": now.isoformat(timespec="milliseconds"),
            "expiration_date_to": expires_at.isoformat(timespec="milliseconds"),
            "statement_descriptor": self.config.company_name[:13],
        }

    def description_for(self, service_name: str, professional_name: str) -> str:
        return f"{service_name} com {professional_name} - {self.config.company_name}"

    def _next_temp_reference(self, db: Session) -> str:
        candidate = int(time.time() * 1000)
        while db.query(PaymentReference.id).filter(
                PaymentReference.company_id == self.config.company_id,
                PaymentReference.reference == f"{TEMP_REFERENCE_PREFIX}{candidate}"
        ).first() is not None:
            candidate += 1
        return f"{TEMP_REFERENCE_PREFIX}{candidate}"

    def _request_link(self, db: Session, ref_row: PaymentReference, preference: Dict) -> PaymentLink:
        """Call the provider for a reserved reference row and store the result"""
        # one key per issuance, a reissued reference gets a new expiry
        idempotency_key = (
            f"{self.config.company_id}-{ref_row.reference}-{int(as_utc(ref_row.expires_at).timestamp())}"
        )
        try:
            body = self.client.create_preference(preference, idempotency_key=idempotency_key)
        except PaymentProviderError as e:
            ref_row.status = PaymentReferenceStatus.EXPIRED
            ref_row.reconciliation_reason = f"link creation failed: {str(e)[:200]}"
            db.commit()
            logger.error(f"Payment link for {ref_row.reference} failed: {e}")
            raise

        checkout_url = body.get("init_point") or body.get("sandbox_init_point")
        if not checkout_url:
            ref_row.status = PaymentReferenceStatus.EXPIRED
            ref_row.reconciliation_reason = "provider response without checkout url"
            db.commit()
            raise PaymentProviderError("Mercado Pago preference has no checkout url")

        ref_row.preference_id = body.get("id")
        ref_row.checkout_url = checkout_url
        db.commit()
        db.refresh(ref_row)

        logger.info(
            f"Payment link issued: company={self.config.company_id} reference={ref_row.reference} "
            f"preference={ref_row.preference_id} amount={ref_row.amount}"
        )
        return PaymentLink(
            reference=ref_row.reference,
            checkout_url=checkout_url,
            preference_id=ref_row.preference_id,
            amount=Decimal(ref_row.amount),
            expires_at=ref_row.expires_at,
        )

    def issue_for_booking(
            self,
            db: Session,
            service_id: int,
            professional_id: int,
            client_name: str,
            phone: str,
            appointment_date: date,
            appointment_time: str,
            conversation_id: Optional[int] = None,
            whatsapp_instance_id: Optional[int] = None,
    ) -> PaymentLink:
        """
        Issue a link for a booking that does not exist yet (``temp_<epoch-ms>`` reference).

        The booking is snapshotted on the reference row; the appointment is created
        by the webhook once the payment is approved.
        """
        checks = self._check_configuration()
        company_id = self.config.company_id

        service = AppointmentService.get_service(db, company_id, service_id)
        professional = AppointmentService.get_professional(db, company_id, professional_id)
        appointment_time = normalize_hhmm(appointment_time)

        conflict = AppointmentService.find_conflict(
            db, company_id, professional.id, appointment_date, appointment_time, service.duration
        )
        if conflict:
            raise SlotUnavailableError(conflicting_id=conflict.id)

        expires_at = datetime.now(timezone.utc) + timedelta(minutes=self.config.payment_link_ttl_minutes)
        booking = {
            "service_id": service.id,
            "professional_id": professional.id,
            "client_name": client_name,
            "client_phone": phone,
            "appointment_date": appointment_date.isoformat(),
            "appointment_time": appointment_time,
        }

        ref_row = None
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            ref_row = PaymentReference(
                reference=self._next_temp_reference(db),
                company_id=company_id,
                conversation_id=conversation_id,
                whatsapp_instance_id=whatsapp_instance_id,
                phone=phone,
                booking=booking,
                amount=service.price,
                status=PaymentReferenceStatus.PENDING,
                expires_at=expires_at,
            )
            db.add(ref_row)
            try:
                db.commit()
                break
            except IntegrityError:
                db.rollback()
                ref_row = None
        if ref_row is None:
            raise BookflowError("Could not reserve a unique payment reference")

        preference = self.build_preference(
            reference=ref_row.reference,
            description=self.description_for(service.name, professional.name),
            amount=service.price,
            item_id=str(service.id),
            client_name=client_name,
            expires_at=expires_at,
            checks=checks,
        )
        return self._request_link(db, ref_row, preference)

    def issue_for_appointment(
            self,
            db: Session,
            appointment_id: int,
            conversation_id: Optional[int] = None,
            whatsapp_instance_id: Optional[int] = None,
    ) -> PaymentLink:
        """
        Issue a link for an existing scheduled appointment (reference = appointment id).

        A still-valid pending link for the appointment is returned instead of creating
        a second preference.
        """
        checks = self._check_configuration()
        company_id = self.config.company_id

        appointment = AppointmentService.get_appointment(db, company_id, appointment_id)
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise BookflowError(
                f"Appointment {appointment_id} is {appointment.status.value}; only scheduled appointments can be paid"
            )

        reference = str(appointment.id)
        now = datetime.now(timezone.utc)
        ref_row = db.query(PaymentReference).filter(
            PaymentReference.company_id == company_id,
            PaymentReference.reference == reference
        ).first()

        if ref_row is not None:
            if ref_row.status == PaymentReferenceStatus.PENDING and ref_row.checkout_url \
                    and as_utc(ref_row.expires_at) > now:
                logger.info(f"Reusing pending payment link for appointment {appointment_id}")
                return PaymentLink(
                    reference=ref_row.reference,
                    checkout_url=ref_row.checkout_url,
                    preference_id=ref_row.preference_id,
                    amount=Decimal(ref_row.amount),
                    expires_at=ref_row.expires_at,
                    reused=True,
                )
            if ref_row.status not in (
                    PaymentReferenceStatus.PENDING, PaymentReferenceStatus.EXPIRED, PaymentReferenceStatus.REJECTED):
                raise BookflowError(f"Payment for appointment {appointment_id} is already {ref_row.status.value}")

        service = appointment.service
        expires_at = now + timedelta(minutes=self.config.payment_link_ttl_minutes)

        if ref_row is None:
            ref_row = PaymentReference(
                reference=reference,
                company_id=company_id,
                appointment_id=appointment.id,
            )
            db.add(ref_row)

        ref_row.conversation_id = conversation_id if conversation_id is not None else ref_row.conversation_id
        ref_row.whatsapp_instance_id = whatsapp_instance_id if whatsapp_instance_id is not None else ref_row.whatsapp_instance_id
        ref_row.phone = appointment.client_phone
        ref_row.booking = {}
        ref_row.amount = service.price
        ref_row.status = PaymentReferenceStatus.PENDING
        ref_row.reconciliation_reason = None
        ref_row.preference_id = None
        ref_row.checkout_url = None
        ref_row.payment_id = None
        ref_row.payment_status = None
        ref_row.expires_at = expires_at
        db.commit()

        preference = self.build_preference(
            reference=reference,
            description=self.description_for(service.name, appointment.professional.name),
            amount=service.price,
            item_id=str(service.id),
            client_name=appointment.client_name,
            expires_at=expires_at,
            checks=checks,
        )
        return self._request_link(db, ref_row, preference)
