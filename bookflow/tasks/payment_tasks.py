"""Payment notification and confirmation tasks"""
import logging

from bookflow.config.celery_config import celery_app
from bookflow.config.database import get_db
from bookflow.config.tenant import resolve_tenant_config
from bookflow.core.exceptions import MessagingGatewayError, PaymentProviderError
from bookflow.models.payment_reference import PaymentReference
from bookflow.services.company.company_service import CompanyService
from bookflow.services.payment.payment_webhook_service import PaymentWebhookService
from bookflow.services.whatsapp.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=5)
def process_payment_notification(self, company_id: int, payment_id: str, correlation_id: str = None):
    """
    Apply a Mercado Pago payment notification.

    Provider errors are retried; an approval schedules the confirmation message.
    """
    db = next(get_db())
    try:
        company = CompanyService.get_company(db, company_id)
        if company is None:
            logger.error(f"Payment {payment_id} notified for unknown company {company_id}")
            return {"status": "failed", "reason": "company_not_found"}

        service = PaymentWebhookService(resolve_tenant_config(company))
        try:
            result = service.process_notification(db, payment_id)
        except PaymentProviderError as exc:
            logger.warning(f"Could not fetch payment {payment_id} (attempt {self.request.retries + 1}): {exc}")
            raise self.retry(countdown=60 * (self.request.retries + 1))

        if result.get("status") == "approved":
            send_payment_confirmation.delay(
                company_id=company_id,
                reference_id=result["reference_id"],
                correlation_id=correlation_id,
            )

        logger.info(f"Payment {payment_id} processed: {result.get('status')}")
        return result

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=5)
def send_payment_confirmation(self, company_id: int, reference_id: int, correlation_id: str = None):
    """Send the WhatsApp confirmation for an approved payment, once"""
    db = next(get_db())
    messenger = None
    try:
        company = CompanyService.get_company(db, company_id)
        ref_row = db.get(PaymentReference, reference_id)
        if company is None or ref_row is None:
            logger.error(f"Cannot confirm reference {reference_id} for company {company_id}")
            return {"status": "failed", "reference_id": reference_id}

        service = PaymentWebhookService(resolve_tenant_config(company))
        instance = service.instance_for(db, ref_row)
        messenger = WhatsAppService(resolve_tenant_config(company, instance))

        try:
            return service.finalize(db, reference_id, messenger)
        except MessagingGatewayError as exc:
            db.rollback()
            if self.request.retries >= self.max_retries:
                logger.error(f"Confirmation for reference {ref_row.reference} never delivered: {exc}")
                return {"status": "failed", "reference_id": reference_id}
            logger.warning(f"Confirmation for reference {reference_id} failed, retrying: {exc}")
            raise self.retry(countdown=60 * (self.request.retries + 1))

    finally:
        if messenger is not None:
            messenger.close()
        db.close()


@celery_app.task
def expire_payment_references():
    """Periodic: expire pending references whose checkout link lapsed"""
    db = next(get_db())
    try:
        count = PaymentWebhookService.expire_stale(db)
        return {"status": "completed", "expired": count}
    finally:
        db.close()
