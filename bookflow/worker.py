"""
Celery worker entry point.

    celery -A bookflow.worker worker -Q conversations,payments,maintenance
    celery -A bookflow.worker beat
"""
import logging

from celery.signals import worker_ready, worker_shutdown

from bookflow.config.celery_config import celery_app
from bookflow.utils.my_logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

app = celery_app


@worker_ready.connect
def log_registered_tasks(sender=None, **kwargs):
    names = sorted(name for name in celery_app.tasks if name.startswith("bookflow."))
    logger.info(f"Booking worker ready with {len(names)} tasks")
    for name in names:
        logger.debug(f"  {name}")


@worker_shutdown.connect
def log_shutdown(sender=None, **kwargs):
    logger.info("Booking worker stopped")


if __name__ == "__main__":
    celery_app.worker_main([
        "worker",
        "--loglevel=info",
        "--queues=conversations,payments,maintenance",
    ])
