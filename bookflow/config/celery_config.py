# bookflow/config/celery_config.py
"""
Celery app for the booking workers.

Queues: ``conversations`` (inbound WhatsApp, latency sensitive), ``payments``
(Mercado Pago notifications and confirmations) and ``maintenance`` (beat jobs).
"""
from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from bookflow.config.settings import get_settings

settings = get_settings()

QUEUES = ("conversations", "payments", "maintenance")


def create_celery_app() -> Celery:
    app = Celery(
        "bookflow",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=[
            "bookflow.tasks.conversation_tasks",
            "bookflow.tasks.payment_tasks",
            "bookflow.tasks.reminder_tasks",
        ],
    )

    app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        result_expires=60 * 60 * 24,
        timezone="UTC",
        enable_utc=True,
        task_queues=tuple(Queue(name, routing_key=name) for name in QUEUES),
        task_default_queue="maintenance",
        task_routes={
            "bookflow.tasks.conversation_tasks.*": {"queue": "conversations"},
            "bookflow.tasks.payment_tasks.expire_payment_references": {"queue": "maintenance"},
            "bookflow.tasks.payment_tasks.*": {"queue": "payments"},
            "bookflow.tasks.reminder_tasks.*": {"queue": "maintenance"},
        },
        beat_schedule={
            "send-appointment-reminders": {
                "task": "bookflow.tasks.reminder_tasks.send_appointment_reminders",
                "schedule": crontab(minute="*/15"),
            },
            "expire-payment-references": {
                "task": "bookflow.tasks.payment_tasks.expire_payment_references",
                "schedule": crontab(minute="*/10"),
            },
        },
        # A notification must not be lost if a worker dies mid-task
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_max_tasks_per_child=500,
        broker_connection_retry_on_startup=True,
    )
    return app


celery_app = create_celery_app()
