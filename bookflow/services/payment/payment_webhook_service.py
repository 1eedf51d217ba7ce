# ============================================================================
# bookflow/services/payment/payment_webhook_service.py
# ============================================================================
"""
Applies Mercado Pago payment notifications.

Reference lifecycle::

    pending -> approved -> finalized
    pending -> rejected | expired
    rejected -> approved      (customer retried the same checkout)
    any     -> reconciliation

Leaving ``pending`` is always a conditional UPDATE on the current status, so a
replayed or concurrent notification finds nothing to claim and becomes a no-op.
A second, different payment on an already paid reference gets its own
reconciliation row.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookflow.config.tenant import TenantConfig
from bookflow.core.exceptions import MessagingGatewayError, NotFoundError, SlotUnavailableError
from bookflow.models.appointment import Appointment, AppointmentStatus
from bookflow.models.payment_reference import PaymentReference, PaymentReferenceStatus
from bookflow.models.whatsapp_instance import WhatsAppInstance
from bookflow.services.appointment.appointment_service import AppointmentService
from bookflow.services.message.message_service import MessageService
from bookflow.services.payment.mercadopago_client import MercadoPagoClient
from bookflow.services.whatsapp.message_templates import payment_confirmation_message

logger = logging.getLogger(__name__)

APPROVED_PAYMENT_STATUSES = ("approved",)
FAILED_PAYMENT_STATUSES = ("rejected", "cancelled", "refunded", "charged_back")

# A declined attempt leaves the checkout usable, so a later approval still applies
CLAIMABLE_STATUSES = (PaymentReferenceStatus.PENDING, PaymentReferenceStatus.REJECTED)

SNAPSHOT_KEYS = (
    "service_id", "professional_id", "client_name", "client_phone",
    "appointment_date", "appointment_time",
)


class PaymentWebhookService:
    """Resolves a payment id to its reference and applies the outcome exactly once"""

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

    # ------------------------------------------------------------------
    # state helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(
            db: Session,
            reference_id: int,
            from_statuses: Iterable[PaymentReferenceStatus],
            values: Dict[Any, Any]
    ) -> bool:
        """Conditional status update; True when this caller won the row"""
        updated = db.query(PaymentReference).filter(
            PaymentReference.id == reference_id,
            PaymentReference.status.in_(tuple(from_statuses))
        ).update(values, synchronize_session=False)
        return updated == 1

    def mark_reconciliation(
            self,
            db: Session,
            reference_id: int,
            reason: str,
            from_statuses: Iterable[PaymentReferenceStatus] = CLAIMABLE_STATUSES,
            payment_id: Optional[str] = None,
    ) -> bool:
        values = {
            PaymentReference.status: PaymentReferenceStatus.RECONCILIATION,
            PaymentReference.reconciliation_reason: reason[:500],
        }
        if payment_id:
            values[PaymentReference.payment_id] = payment_id
        moved = self._transition(db, reference_id, from_statuses, values)
        db.commit()
        if moved:
            logger.error(
                f"Payment reference {reference_id} of company {self.config.company_id} "
                f"flagged for manual reconciliation: {reason}"
            )
        return moved

    def _get_reference(self, db: Session, reference: str) -> Optional[PaymentReference]:
        return db.query(PaymentReference).filter(
            PaymentReference.company_id == self.config.company_id,
            PaymentReference.reference == reference
        ).first()

    # ------------------------------------------------------------------
    # notification handling
    # ------------------------------------------------------------------

    def process_notification(self, db: Session, payment_id: str) -> Dict[str, Any]:
        """
        Fetch the payment from the provider and apply it to its reference.

        Provider errors propagate so the calling task can retry. Everything that
        cannot be applied ends up in reconciliation and is reported, not raised.
        """
        payment = self.client.get_payment(payment_id)
        payment_status = (payment.get("status") or "").lower()
        reference = payment.get("external_reference")

        logger.info(
            f"Payment {payment_id} for company {self.config.company_id}: "
            f"status={payment_status} reference={reference}"
        )

        if not reference:
            logger.warning(f"Payment {payment_id} has no external_reference, ignoring")
            return {"status": "ignored", "reason": "no_external_reference"}

        ref_row = self._get_reference(db, str(reference))
        if ref_row is None:
            if payment_status in APPROVED_PAYMENT_STATUSES:
                return self._record_unknown_reference(db, str(reference), payment_id, payment)
            logger.warning(f"Payment {payment_id} references unknown {reference} ({payment_status})")
            return {"status": "ignored", "reason": "unknown_reference"}

        if payment_status in APPROVED_PAYMENT_STATUSES:
            return self._apply_approved(db, ref_row, payment_id, payment)

        if payment_status in FAILED_PAYMENT_STATUSES:
            moved = self._transition(db, ref_row.id, (PaymentReferenceStatus.PENDING,), {
                PaymentReference.status: PaymentReferenceStatus.REJECTED,
                PaymentReference.payment_id: str(payment_id),
                PaymentReference.payment_status: payment_status,
            })
            db.commit()
            if moved:
                logger.info(f"Payment reference {reference} rejected ({payment_status})")
                return {"status": "rejected", "reference": reference}
            logger.info(f"Payment reference {reference} already {ref_row.status.value}, ignoring {payment_status}")
            return {"status": "duplicate", "reference": reference}

        # pending, in_process, authorized: keep waiting for the final status
        if ref_row.status == PaymentReferenceStatus.PENDING:
            ref_row.payment_id = str(payment_id)
            ref_row.payment_status = payment_status
            db.commit()
        return {"status": "waiting", "reference": reference, "payment_status": payment_status}

    def _record_reconciliation_row(
            self, db: Session, reference: str, payment_id: str, payment: Dict, reason: str
    ) -> Dict:
        """
        Persist an approved payment that has no reference to apply to.

        The unique (company, reference) constraint makes concurrent deliveries of
        the same payment collapse into one row.
        """
        try:
            amount = Decimal(str(payment.get("transaction_amount") or 0))
        except InvalidOperation:
            amount = Decimal("0")
        row = PaymentReference(
            reference=reference,
            company_id=self.config.company_id,
            phone="",
            booking={},
            amount=amount,
            payment_id=str(payment_id),
            payment_status="approved",
            status=PaymentReferenceStatus.RECONCILIATION,
            reconciliation_reason=reason,
            expires_at=datetime.now(timezone.utc),
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Payment {payment_id} already recorded as {reference}, no-op")
            return {"status": "duplicate", "reference": reference}

        logger.error(
            f"Approved payment {payment_id} recorded as {reference} "
            f"(company {self.config.company_id}) for manual reconciliation: {reason}"
        )
        return {"status": "reconciliation", "reference": reference, "reason": reason}

    def _record_unknown_reference(self, db: Session, reference: str, payment_id: str, payment: Dict) -> Dict:
        result = self._record_reconciliation_row(
            db, reference, payment_id, payment, "approved payment for unknown reference"
        )
        if result["status"] == "reconciliation":
            result["reason"] = "unknown_reference"
        return result

    def _record_second_payment(self, db: Session, ref_row: PaymentReference, payment_id: str, payment: Dict) -> Dict:
        reference = f"{ref_row.reference}/{payment_id}"[:64]
        result = self._record_reconciliation_row(
            db, reference, payment_id, payment,
            f"second payment for {ref_row.reference} (first was {ref_row.payment_id})"
        )
        if result["status"] == "reconciliation":
            result["reason"] = "second_payment"
        return result

    def _amount_mismatch(self, ref_row: PaymentReference, payment: Dict) -> Optional[str]:
        paid = payment.get("transaction_amount")
        if paid is None:
            return None
        try:
            paid = Decimal(str(paid)).quantize(Decimal("0.01"))
        except InvalidOperation:
            return f"unreadable transaction_amount {paid!r}"
        if paid < Decimal(ref_row.amount):
            return f"paid {paid} but {ref_row.amount} was due"
        return None

    def _apply_approved(self, db: Session, ref_row: PaymentReference, payment_id: str, payment: Dict) -> Dict:
        reference = ref_row.reference

        if ref_row.status == PaymentReferenceStatus.EXPIRED:
            self.mark_reconciliation(
                db, ref_row.id, "payment approved after the link expired",
                from_statuses=(PaymentReferenceStatus.EXPIRED,), payment_id=str(payment_id)
            )
            return {"status": "reconciliation", "reference": reference, "reason": "expired"}

        if ref_row.status not in CLAIMABLE_STATUSES:
            if ref_row.payment_id == str(payment_id):
                logger.info(f"Duplicate approval {payment_id} for {reference} (already {ref_row.status.value}), no-op")
                return {"status": "duplicate", "reference": reference}
            return self._record_second_payment(db, ref_row, payment_id, payment)

        mismatch = self._amount_mismatch(ref_row, payment)
        if mismatch:
            self.mark_reconciliation(db, ref_row.id, mismatch, payment_id=str(payment_id))
            return {"status": "reconciliation", "reference": reference, "reason": "amount_mismatch"}

        if ref_row.is_temporary:
            return self._create_from_snapshot(db, ref_row, payment_id)
        return self._confirm_existing(db, ref_row, payment_id)

    def _claim(self, db: Session, ref_row: PaymentReference, payment_id: str) -> bool:
        return self._transition(db, ref_row.id, CLAIMABLE_STATUSES, {
            PaymentReference.status: PaymentReferenceStatus.APPROVED,
            PaymentReference.payment_id: str(payment_id),
            PaymentReference.payment_status: "approved",
        })

    def _create_from_snapshot(self, db: Session, ref_row: PaymentReference, payment_id: str) -> Dict:
        reference_id, reference = ref_row.id, ref_row.reference
        booking = ref_row.booking or {}

        missing = [key for key in SNAPSHOT_KEYS if not booking.get(key)]
        if missing:
            self.mark_reconciliation(
                db, reference_id, f"booking snapshot missing {', '.join(missing)}", payment_id=str(payment_id)
            )
            return {"status": "reconciliation", "reference": reference, "reason": "snapshot_missing"}

        if not self._claim(db, ref_row, payment_id):
            db.rollback()
            logger.info(f"Reference {reference} claimed by another worker, no-op")
            return {"status": "duplicate", "reference": reference}

        try:
            appointment = AppointmentService.create_appointment(
                db,
                company_id=self.config.company_id,
                service_id=booking["service_id"],
                professional_id=booking["professional_id"],
                client_name=booking["client_name"],
                client_phone=booking["client_phone"],
                appointment_date=date.fromisoformat(booking["appointment_date"]),
                appointment_time=booking["appointment_time"],
                status=AppointmentStatus.CONFIRMED,
                booking_source="whatsapp",
                notes=f"Pago via Mercado Pago ({payment_id})",
                commit=False,
            )
        except (NotFoundError, SlotUnavailableError, ValueError) as e:
            db.rollback()
            self.mark_reconciliation(db, reference_id, f"cannot create appointment: {e}", payment_id=str(payment_id))
            return {"status": "reconciliation", "reference": reference, "reason": type(e).__name__}

        db.query(PaymentReference).filter(PaymentReference.id == reference_id).update(
            {PaymentReference.appointment_id: appointment.id}, synchronize_session=False
        )
        db.commit()

        logger.info(f"Appointment {appointment.id} created from paid reference {reference}")
        return {"status": "approved", "reference": reference, "reference_id": reference_id,
                "appointment_id": appointment.id}

    def _confirm_existing(self, db: Session, ref_row: PaymentReference, payment_id: str) -> Dict:
        reference_id, reference = ref_row.id, ref_row.reference
        appointment_id = ref_row.appointment_id
        if appointment_id is None and reference.isdigit():
            appointment_id = int(reference)

        if not self._claim(db, ref_row, payment_id):
            db.rollback()
            logger.info(f"Reference {reference} claimed by another worker, no-op")
            return {"status": "duplicate", "reference": reference}

        if appointment_id is None or not AppointmentService.confirm_if_scheduled(
                db, self.config.company_id, appointment_id):
            db.rollback()
            self.mark_reconciliation(
                db, reference_id, f"appointment {appointment_id} is missing or no longer scheduled",
                payment_id=str(payment_id)
            )
            return {"status": "reconciliation", "reference": reference, "reason": "appointment_not_scheduled"}

        db.commit()
        logger.info(f"Appointment {appointment_id} confirmed by payment {payment_id}")
        return {"status": "approved", "reference": reference, "reference_id": reference_id,
                "appointment_id": appointment_id}

    # ------------------------------------------------------------------
    # finalization
    # ------------------------------------------------------------------

    def instance_for(self, db: Session, ref_row: PaymentReference) -> Optional[WhatsAppInstance]:
        if ref_row.whatsapp_instance_id:
            instance = db.get(WhatsAppInstance, ref_row.whatsapp_instance_id)
            if instance is not None:
                return instance
        return db.query(WhatsAppInstance).filter(
            WhatsAppInstance.company_id == self.config.company_id
        ).order_by(WhatsAppInstance.id).first()

    def finalize(self, db: Session, reference_id: int, messenger) -> Dict[str, Any]:
        """
        Send the confirmation for an approved reference and mark it finalized.

        ``messenger`` is a WhatsAppService. MessagingGatewayError propagates so the
        task can retry; the reference stays approved until a send succeeds.
        """
        ref_row = db.get(PaymentReference, reference_id)
        if ref_row is None or ref_row.company_id != self.config.company_id:
            raise NotFoundError(f"Payment reference {reference_id} not found")

        if ref_row.status == PaymentReferenceStatus.FINALIZED:
            logger.info(f"Reference {ref_row.reference} already finalized, confirmation not resent")
            return {"status": "duplicate", "reference": ref_row.reference}
        if ref_row.status != PaymentReferenceStatus.APPROVED:
            logger.warning(f"Reference {ref_row.reference} is {ref_row.status.value}, nothing to finalize")
            return {"status": "skipped", "reference": ref_row.reference}

        appointment = db.get(Appointment, ref_row.appointment_id) if ref_row.appointment_id else None
        if appointment is None:
            self.mark_reconciliation(
                db, ref_row.id, "approved reference without appointment",
                from_statuses=(PaymentReferenceStatus.APPROVED,)
            )
            return {"status": "reconciliation", "reference": ref_row.reference}

        instance = self.instance_for(db, ref_row)
        if instance is None:
            raise MessagingGatewayError(f"Company {self.config.company_id} has no WhatsApp instance")

        text = payment_confirmation_message(appointment)
        phone = ref_row.phone or appointment.client_phone
        result = messenger.send_text(instance.instance_name, phone, text)

        finalized = self._transition(db, ref_row.id, (PaymentReferenceStatus.APPROVED,), {
            PaymentReference.status: PaymentReferenceStatus.FINALIZED,
            PaymentReference.finalized_at: datetime.now(timezone.utc),
        })
        db.commit()

        if ref_row.conversation_id:
            MessageService.create_message(
                db,
                conversation_id=ref_row.conversation_id,
                role="assistant",
                content=text,
                message_id=result.get("message_id"),
                delivered=True,
                message_metadata={"kind": "payment_confirmation", "reference": ref_row.reference},
            )

        logger.info(f"Reference {ref_row.reference} finalized, confirmation sent to {phone}")
        return {"status": "finalized" if finalized else "duplicate", "reference": ref_row.reference,
                "appointment_id": appointment.id}

    @staticmethod
    def expire_stale(db: Session, now: Optional[datetime] = None) -> int:
        """Move pending references past their expiry to expired"""
        now = now or datetime.now(timezone.utc)
        count = db.query(PaymentReference).filter(
            PaymentReference.status == PaymentReferenceStatus.PENDING,
            PaymentReference.expires_at < now
        ).update({PaymentReference.status: PaymentReferenceStatus.EXPIRED}, synchronize_session=False)
        db.commit()
        if count:
            logger.info(f"Expired {count} pending payment references")
        return count
