"""Approval notification hook: fire-and-forget.

Delivery is delegated to a notifier backend:
  - "log":    console mock (MAIL_ENABLED=False prints the message to logs)
  - "celery": enqueue ``deliver_notification`` on the worker

A delivery failure is logged and swallowed. It never rolls back or alters a
workflow transition, so callers dispatch only after their commit.
"""
import logging
from typing import Protocol

from receiptvault.core.config import settings

logger = logging.getLogger(__name__)

EVENT_TYPES = ("submitted", "approved", "rejected", "escalated", "reminder")

_SUBJECTS = {
    "submitted": "New Approval Request",
    "approved": "Receipt Approved",
    "rejected": "Receipt Rejected",
    "escalated": "Escalated Approval Request",
    "reminder": "Overdue Approval Request",
}


class Notifier(Protocol):
    def notify(self, recipients: list[str], event_type: str, summary: dict) -> None: ...


# ─── Message building ───

def recipients_for(request, event_type: str) -> list[str]:
    if event_type in ("approved", "rejected"):
        return [str(request.user_id)]
    return [str(a) for a in (request.current_approvers or [])]


def build_summary(request, event_type: str) -> dict:
    amount = f"${float(request.requested_amount):,.2f}"
    messages = {
        "submitted": f"A new receipt approval request for {amount} requires your attention.",
        "approved": f"Your receipt for {amount} has been approved.",
        "rejected": f"Your receipt for {amount} has been rejected.",
        "escalated": f"An approval request for {amount} has been escalated to you.",
        "reminder": f"Reminder: An approval request for {amount} is overdue.",
    }
    return {
        "request_id": str(request.id),
        "receipt_id": str(request.receipt_id),
        "company_id": str(request.company_id),
        "status": request.status,
        "amount": str(request.requested_amount),
        "category": request.category,
        "vendor": request.vendor,
        "escalation_level": request.escalation_level,
        "due_date": request.due_date.isoformat() if request.due_date else None,
        "subject": _SUBJECTS[event_type],
        "message": messages[event_type],
        "link": f"{settings.APP_BASE_URL.rstrip('/')}/approvals/{request.id}",
    }


# ─── Delivery ───

def deliver(recipients: list[str], event_type: str, summary: dict) -> None:
    """Send (or mock-log) one notification to each recipient."""
    if not settings.MAIL_ENABLED:
        logger.info(
            "\n"
            "=== APPROVAL NOTIFICATION (%s) ===\n"
            "To: %s\n"
            "Subject: %s\n"
            "%s\n"
            "Link: %s\n"
            "==================================",
            event_type,
            ", ".join(recipients),
            summary.get("subject"),
            summary.get("message"),
            summary.get("link"),
        )
        return

    # Real transport is owned by the notification service.
    logger.warning(
        "MAIL_ENABLED=True but no mail transport is configured. "
        "Falling back to console log for request %s.",
        summary.get("request_id"),
    )
    logger.info(
        "APPROVAL NOTIFICATION (unsent): event=%s recipients=%s request=%s",
        event_type, recipients, summary.get("request_id"),
    )


class LogNotifier:
    def notify(self, recipients: list[str], event_type: str, summary: dict) -> None:
        deliver(recipients, event_type, summary)


class CeleryNotifier:
    def notify(self, recipients: list[str], event_type: str, summary: dict) -> None:
        from receiptvault.workers.notification_tasks import deliver_notification

        deliver_notification.delay(recipients, event_type, summary)


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = CeleryNotifier() if settings.NOTIFIER_BACKEND == "celery" else LogNotifier()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    """Swap the backend (application wiring and tests). None restores the settings default."""
    global _notifier
    _notifier = notifier


def dispatch(request, event_type: str) -> bool:
    """Fire a notification for ``request``. Returns False if nothing was delivered."""
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown notification event '{event_type}'.")
    try:
        recipients = recipients_for(request, event_type)
        if not recipients:
            logger.debug("No recipients for %s notification on request %s", event_type, request.id)
            return False
        get_notifier().notify(recipients, event_type, build_summary(request, event_type))
        return True
    except Exception as exc:
        logger.warning(
            "Notification %s for request %s failed (ignored): %s",
            event_type, getattr(request, "id", None), exc, exc_info=True,
        )
        return False
