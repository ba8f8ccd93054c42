"""Escalation of overdue approval requests.

Tier 0 is the rule's ``approvers`` list; tier N (N >= 1) is
``escalation_chain[N - 1]``. ``escalation_level`` only ever increases.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from receiptvault.core.errors import (
    InfrastructureError,
    MaxEscalationReached,
    NoEscalationChain,
    NotPending,
    WorkflowError,
)
from receiptvault.db.base import as_utc, utcnow
from receiptvault.db.session import store_errors
from receiptvault.models.approval import ACTIONABLE_STATUSES, ApprovalAction, ApprovalRequest
from receiptvault.schemas.approval_rule import ApprovalRuleOut
from receiptvault.services import approval as approval_svc
from receiptvault.services import notifications
from receiptvault.services import rule_store

logger = logging.getLogger(__name__)


def escalate(
    db: Session,
    request_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    comments: str | None = None,
    company_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> ApprovalRequest:
    """Move a request to the next tier of its rule's escalation chain.

    The new tier replaces ``current_approvers``; status becomes ``escalated``,
    which stays decidable. When the rule has a time window the due date
    restarts so the new tier gets the same time to act.

    Raises:
        NotFound, NotPending, NoEscalationChain, MaxEscalationReached.
    """
    now = now or utcnow()
    request = approval_svc.get_request(db, request_id, company_id)
    if request.status not in ACTIONABLE_STATUSES:
        raise NotPending(f"Request {request_id} is not pending (status={request.status}).")

    rule = rule_store.get_rule_out(db, request.rule_id)
    chain = rule.actions.escalation_chain
    if not chain:
        raise NoEscalationChain(f"Rule {rule.id} defines no escalation chain.")

    observed_level = request.escalation_level
    next_level = observed_level + 1
    if next_level > len(chain):
        raise MaxEscalationReached(
            f"Request {request_id} is already at the last escalation tier ({observed_level})."
        )

    next_approvers = [str(chain[next_level - 1])]
    values = {
        "status": "escalated",
        "current_approvers": next_approvers,
        "escalation_level": next_level,
        "updated_at": now,
    }
    if rule.conditions.time_window:
        values["due_date"] = now + timedelta(hours=rule.conditions.time_window)

    with store_errors(db, "escalate"):
        result = db.execute(
            update(ApprovalRequest)
            .where(
                ApprovalRequest.id == request_id,
                ApprovalRequest.status.in_(ACTIONABLE_STATUSES),
                ApprovalRequest.escalation_level == observed_level,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            current = approval_svc.get_request(db, request_id)
            if current.status not in ACTIONABLE_STATUSES:
                raise NotPending(f"Request {request_id} is no longer pending (status={current.status}).")
            raise NotPending(f"Request {request_id} changed concurrently; reload and retry.")

        db.add(ApprovalAction(
            request_id=request_id,
            user_id=actor_id,
            action="escalate",
            comments=comments,
            timestamp=now,
        ))
        db.commit()
        db.refresh(request)

    logger.info(
        "Approval escalated: request=%s level=%s->%s approvers=%s actor=%s",
        request_id, observed_level, next_level, next_approvers, actor_id or "system",
    )
    notifications.dispatch(request, "escalated")
    return request


def _reminder_due(request: ApprovalRequest, rule: ApprovalRuleOut, now: datetime) -> bool:
    interval = rule.actions.notifications.reminder_interval
    if not interval:
        return False
    last = as_utc(request.last_reminded_at)
    return last is None or now - last >= timedelta(hours=interval)


def check_overdue(db: Session, now: datetime | None = None) -> dict:
    """Sweep actionable requests past their due date.

    For each: send a reminder when the rule sets a reminder interval (at most
    once per interval), then escalate while the chain has an unused tier.
    Safe to run alongside live decisions: a request decided mid-sweep just
    fails its escalation CAS and is skipped.
    """
    now = now or utcnow()
    stats = {"checked": 0, "reminders": 0, "escalated": 0, "skipped": 0, "errors": 0}

    with store_errors(db, "check_overdue"):
        overdue = db.execute(
            select(ApprovalRequest)
            .where(
                ApprovalRequest.status.in_(ACTIONABLE_STATUSES),
                ApprovalRequest.due_date.is_not(None),
                ApprovalRequest.due_date < now,
            )
            .order_by(ApprovalRequest.due_date.asc())
            .execution_options(populate_existing=True)
        ).scalars().all()

    rules: dict[uuid.UUID, ApprovalRuleOut] = {}
    for request in overdue:
        stats["checked"] += 1
        try:
            rule = rules.get(request.rule_id)
            if rule is None:
                rule = rules[request.rule_id] = rule_store.get_rule_out(db, request.rule_id)

            if _reminder_due(request, rule, now):
                if notifications.dispatch(request, "reminder"):
                    stats["reminders"] += 1
                with store_errors(db, "record_reminder"):
                    request.last_reminded_at = now
                    db.commit()

            if len(rule.actions.escalation_chain) > request.escalation_level:
                escalate(db, request.id, now=now)
                stats["escalated"] += 1
        except InfrastructureError:
            stats["errors"] += 1
            logger.error("check_overdue: request %s failed on a store error; continuing", request.id)
        except WorkflowError as exc:
            # NotPending/MaxEscalationReached when a decision or another sweep won the race.
            stats["skipped"] += 1
            logger.info("check_overdue: request %s skipped (%s)", request.id, exc.kind)

    logger.info(
        "check_overdue: complete: checked=%d reminders=%d escalated=%d skipped=%d errors=%d",
        stats["checked"], stats["reminders"], stats["escalated"], stats["skipped"], stats["errors"],
    )
    return stats
