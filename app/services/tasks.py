import asyncio
import logging
from celery import Celery
from celery.schedules import crontab
from app.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_BACKEND,
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_publish_retry=True,
    task_publish_retry_policy={"max_retries": 3, "interval_start": 0, "interval_step": 0.5, "interval_max": 2},
)
celery_app.conf.task_routes = {
    "app.services.tasks.deliver_notification": {"queue": "notifications"},
    "app.services.tasks.run_status_sweep": {"queue": "scheduler"},
}
celery_app.conf.beat_schedule = {
    "daily-status-sweep": {
        "task": "app.services.tasks.run_status_sweep",
        "schedule": crontab(hour=settings.SCHEDULER_HOUR_UTC, minute=0),
    },
}


@celery_app.task(bind=True, max_retries=3)
def deliver_notification(self, event: str, payload: dict):
    from app.services.webhook import send_webhook

    delivered = asyncio.run(send_webhook(event, payload))
    if not delivered:
        logger.warning(f"Notification {event} undelivered, retry {self.request.retries + 1}")
        retry_kwargs = {"countdown": 2 ** self.request.retries * 30}
        raise self.retry(exc=RuntimeError(f"Webhook delivery failed for {event}"), **retry_kwargs)
    return delivered


@celery_app.task(bind=True, max_retries=3)
def run_status_sweep(self):
    from app.services.tasks_internal import run_status_sweep_async

    try:
        return asyncio.run(run_status_sweep_async())
    except Exception as e:
        logger.error(f"Status sweep failed: {e}")
        retry_kwargs = {"countdown": 2 ** self.request.retries * 60}
        raise self.retry(exc=e, **retry_kwargs)
