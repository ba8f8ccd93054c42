from celery import Celery
from celery.schedules import crontab

from receiptvault.core.config import settings

celery_app = Celery(
    "approval_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "receiptvault.workers.approval_tasks",
        "receiptvault.workers.notification_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "check-overdue-approvals": {
        "task": "receiptvault.workers.approval_tasks.check_overdue_approvals",
        "schedule": crontab(minute=f"*/{settings.OVERDUE_SWEEP_INTERVAL_MINUTES}"),
    },
    "expire-delegations-hourly": {
        "task": "receiptvault.workers.approval_tasks.expire_delegations",
        "schedule": crontab(minute=5),
    },
}
