"""Appointment reminder task"""
import logging
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bookflow.config.celery_config import celery_app
from bookflow.config.database import get_db
from bookflow.config.settings import get_settings
from bookflow.config.tenant import resolve_tenant_config
from bookflow.core.exceptions import MessagingGatewayError
from bookflow.models.company import Company
from bookflow.models.whatsapp_instance import WhatsAppInstance
from bookflow.services.appointment.appointment_service import AppointmentService
from bookflow.services.whatsapp.message_templates import reminder_message
from bookflow.services.whatsapp.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)


def local_now(tz_name: str) -> datetime:
    """Naive current time in ``tz_name``, comparable with stored slots"""
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz_name}, using {get_settings().DEFAULT_TIMEZONE}")
        tz = ZoneInfo(get_settings().DEFAULT_TIMEZONE)
    return datetime.now(tz).replace(tzinfo=None)


def remind_company(db, company, hours_ahead: int, messenger_factory=WhatsAppService) -> int:
    """Send reminders for one company's upcoming appointments; returns how many went out"""
    instance = db.query(WhatsAppInstance).filter(
        WhatsAppInstance.company_id == company.id
    ).order_by(WhatsAppInstance.id).first()
    if instance is None:
        return 0

    config = resolve_tenant_config(company, instance)
    due = AppointmentService.due_for_reminder(db, local_now(config.timezone), hours_ahead, company.id)
    if not due:
        return 0

    messenger = messenger_factory(config)
    sent = 0
    try:
        for appointment in due:
            try:
                messenger.send_text(instance.instance_name, appointment.client_phone, reminder_message(appointment))
            except MessagingGatewayError as e:
                logger.error(f"Reminder for appointment {appointment.id} failed: {e}")
                continue
            appointment.reminder_sent = True
            db.commit()
            sent += 1
    finally:
        messenger.close()
    return sent


@celery_app.task
def send_appointment_reminders():
    """Periodic: WhatsApp reminders for appointments starting soon"""
    settings = get_settings()
    db = next(get_db())
    try:
        total = 0
        companies = db.query(Company).filter(Company.is_active == True).all()
        for company in companies:
            total += remind_company(db, company, settings.REMINDER_HOURS_AHEAD)

        logger.info(f"Sent {total} appointment reminders")
        return {"status": "completed", "sent": total}
    finally:
        db.close()
