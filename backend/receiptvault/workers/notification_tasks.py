"""Celery task delivering approval notifications off the request path."""
import logging

from receiptvault.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="receiptvault.workers.notification_tasks.deliver_notification",
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    max_retries=3,
)
def deliver_notification(recipients: list[str], event_type: str, summary: dict):
    from receiptvault.services.notifications import deliver

    deliver(recipients, event_type, summary)
    return {"event_type": event_type, "recipients": len(recipients)}
