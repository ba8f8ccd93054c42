"""Celery tasks for periodic approval maintenance."""
import logging

from receiptvault.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="receiptvault.workers.approval_tasks.check_overdue_approvals")
def check_overdue_approvals():
    """Remind and escalate approval requests past their due date.

    Runs every OVERDUE_SWEEP_INTERVAL_MINUTES. Decisions made while the sweep
    runs win; the sweep skips whatever they already resolved.
    """
    logger.info("check_overdue_approvals: starting sweep")
    from receiptvault.core.errors import InfrastructureError
    from receiptvault.db.session import SessionLocal
    from receiptvault.services.escalation import check_overdue

    try:
        with SessionLocal() as db:
            return check_overdue(db)
    except InfrastructureError as exc:
        logger.exception("check_overdue_approvals failed: %s", exc)
        return {"status": "error", "error": str(exc)}


@celery_app.task(name="receiptvault.workers.approval_tasks.expire_delegations")
def expire_delegations():
    """Flip active delegations past their end_date to expired."""
    from receiptvault.core.errors import InfrastructureError
    from receiptvault.db.session import SessionLocal
    from receiptvault.services import delegation as delegation_svc

    try:
        with SessionLocal() as db:
            expired = delegation_svc.expire_delegations(db)
    except InfrastructureError as exc:
        logger.exception("expire_delegations failed: %s", exc)
        return {"status": "error", "error": str(exc)}

    logger.info("expire_delegations: complete: expired=%d", expired)
    return {"expired": expired}
