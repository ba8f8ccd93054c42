"""Approval request lifecycle service.

All functions accept a sync SQLAlchemy Session, so the same code runs in API
handlers and Celery tasks.

Lifecycle:
    pending ──approve──▶ approved
    pending ──reject───▶ rejected
    pending ──escalate─▶ escalated (acts like pending at the next tier)
    (create) ──────────▶ auto_approved

Every transition out of an actionable status is a compare-and-swap on
``status`` (and ``escalation_level``) at write time. Two concurrent
approvers cannot both win, and a decision racing an escalation fails cleanly.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import String, case, cast, func, or_, select, update
from sqlalchemy.dialects.postgresql import JSONB, array
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from receiptvault.core.errors import (
    DuplicateRequest,
    NotFound,
    NotPending,
    Unauthorized,
    ValidationError,
)
from receiptvault.db.base import as_utc, utcnow
from receiptvault.db.session import store_errors
from receiptvault.models.approval import (
    ACTIONABLE_STATUSES,
    PRIORITIES,
    ApprovalAction,
    ApprovalRequest,
)
from receiptvault.models.approval_rule import ApprovalRule
from receiptvault.schemas.approval import ApprovalStats
from receiptvault.schemas.approval_rule import ApprovalRequirement, ApprovalRuleOut
from receiptvault.services import delegation as delegation_svc
from receiptvault.services import directory
from receiptvault.services import notifications
from receiptvault.services import receipts as receipt_svc
from receiptvault.services import rule_matcher, rule_store
from receiptvault.services import workflow_config as config_svc

logger = logging.getLogger(__name__)

DECISION_ACTIONS = ("approve", "reject", "request_info")


def _as_rule_out(rule) -> ApprovalRuleOut:
    if isinstance(rule, ApprovalRuleOut):
        return rule
    if isinstance(rule, ApprovalRule):
        return ApprovalRuleOut.model_validate(rule)
    raise TypeError(f"Expected an approval rule, got {type(rule).__name__}")


# ─── Lookups ───

def get_request(
    db: Session,
    request_id: uuid.UUID,
    company_id: uuid.UUID | None = None,
) -> ApprovalRequest:
    stmt = (
        select(ApprovalRequest)
        .where(ApprovalRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    if company_id is not None:
        stmt = stmt.where(ApprovalRequest.company_id == company_id)
    with store_errors(db, "get_request"):
        request = db.execute(stmt).scalars().first()
    if request is None:
        raise NotFound(f"Approval request {request_id} not found.")
    return request


def list_actions(db: Session, request_id: uuid.UUID) -> list[ApprovalAction]:
    """Full decision history of a request, oldest first."""
    with store_errors(db, "list_actions"):
        return list(
            db.execute(
                select(ApprovalAction)
                .where(ApprovalAction.request_id == request_id)
                .order_by(ApprovalAction.timestamp.asc())
            ).scalars().all()
        )


def get_request_detail(
    db: Session,
    request_id: uuid.UUID,
    company_id: uuid.UUID | None = None,
) -> tuple[ApprovalRequest, list[ApprovalAction]]:
    request = get_request(db, request_id, company_id)
    return request, list_actions(db, request_id)


def get_open_request_for_receipt(db: Session, receipt_id: uuid.UUID) -> ApprovalRequest | None:
    with store_errors(db, "get_open_request_for_receipt"):
        return db.execute(
            select(ApprovalRequest).where(
                ApprovalRequest.receipt_id == receipt_id,
                ApprovalRequest.status.in_(ACTIONABLE_STATUSES),
            )
        ).scalars().first()


# ─── Requirement check + approver resolution ───

def check_approval_requirement(
    db: Session,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    amount,
    category: str | None,
    vendor: str | None = None,
) -> ApprovalRequirement:
    role = directory.get_user_role(db, company_id, user_id)
    rule = rule_matcher.match(db, company_id, amount, category, vendor, role)
    if rule is None:
        return ApprovalRequirement(requires_approval=False)
    return ApprovalRequirement(
        requires_approval=rule.actions.requires_approval,
        auto_approve=rule.actions.auto_approve,
        rule=rule,
    )


def resolve_approvers(
    db: Session,
    company_id: uuid.UUID,
    rule: ApprovalRuleOut,
    amount: Decimal,
    requested_approver_id: uuid.UUID | None = None,
) -> list[str]:
    """Tier-0 approvers: the rule's explicit list, else the submitter's requested
    approver, else the config's approval level for the amount.

    Falls back to the company's default approvers when no level applies or
    no active user holds the level's roles.
    """
    if rule.actions.approvers:
        return [str(a) for a in rule.actions.approvers]
    if requested_approver_id is not None:
        return [str(requested_approver_id)]

    config = config_svc.get_config(db, company_id)
    approvers: list = []
    level = config_svc.resolve_level(config, amount)
    if level is not None:
        approvers = directory.list_user_ids_with_roles(db, company_id, level.approver_roles)
    if not approvers:
        approvers = list(config.default_approvers)
    return [str(a) for a in approvers]


# ─── Create ───

def create_request(
    db: Session,
    receipt_id: uuid.UUID,
    user_id: uuid.UUID,
    company_id: uuid.UUID,
    rule,
    amount,
    category: str | None,
    vendor: str | None = None,
    reason: str | None = None,
    auto_approve: bool | None = None,
    now: datetime | None = None,
    requested_approver_id: uuid.UUID | None = None,
    priority: str = "normal",
) -> ApprovalRequest:
    """Create the approval request for a submitted receipt.

    ``auto_approve`` overrides the rule's own flag (used when the company's
    auto-approval threshold short-circuits review). Auto-approved requests
    are terminal on creation, carry no approvers and send no notification.

    ``requested_approver_id`` becomes the tier-0 approver only when the rule
    names none; it must be an active member of the company other than the
    submitter.
    """
    rule = _as_rule_out(rule)
    now = now or utcnow()
    amount = Decimal(str(amount))
    if auto_approve is None:
        auto_approve = rule.actions.auto_approve
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'. Must be one of {', '.join(PRIORITIES)}.")

    if requested_approver_id is not None:
        if requested_approver_id == user_id:
            raise ValidationError("A submitter cannot request themselves as approver.")
        with store_errors(db, "check_requested_approver"):
            member = directory.is_active_member(db, company_id, requested_approver_id)
        if not member:
            raise ValidationError(
                f"Requested approver {requested_approver_id} is not an active member of this company."
            )

    if get_open_request_for_receipt(db, receipt_id) is not None:
        raise DuplicateRequest(f"Receipt {receipt_id} already has an open approval request.")

    if auto_approve:
        request = ApprovalRequest(
            receipt_id=receipt_id,
            user_id=user_id,
            company_id=company_id,
            rule_id=rule.id,
            status="auto_approved",
            current_approvers=[],
            requested_amount=amount,
            category=category,
            vendor=vendor,
            reason=reason,
            priority=priority,
            escalation_level=0,
            submitted_at=now,
            approved_at=now,
        )
        receipt_status = "approved"
    else:
        approvers = resolve_approvers(db, company_id, rule, amount, requested_approver_id)
        if not approvers:
            raise ValidationError(
                f"Rule {rule.id} requires approval but no approvers could be resolved."
            )
        due_date = None
        if rule.conditions.time_window:
            due_date = now + timedelta(hours=rule.conditions.time_window)
        request = ApprovalRequest(
            receipt_id=receipt_id,
            user_id=user_id,
            company_id=company_id,
            rule_id=rule.id,
            status="pending",
            current_approvers=approvers,
            requested_amount=amount,
            category=category,
            vendor=vendor,
            reason=reason,
            priority=priority,
            escalation_level=0,
            due_date=due_date,
            submitted_at=now,
        )
        receipt_status = "pending_approval"

    with store_errors(db, "create_request"):
        try:
            db.add(request)
            db.flush()
        except IntegrityError as exc:
            # Another submission opened a request for this receipt first.
            db.rollback()
            raise DuplicateRequest(f"Receipt {receipt_id} already has an open approval request.") from exc
        receipt_svc.set_approval_status(db, receipt_id, receipt_status)
        db.commit()

    logger.info(
        "Approval request created: request=%s receipt=%s rule=%s status=%s",
        request.id, receipt_id, rule.id, request.status,
    )

    if request.status == "pending" and rule.actions.notifications.on_submission:
        notifications.dispatch(request, "submitted")

    return request


@dataclass
class SubmissionResult:
    requires_approval: bool
    auto_approved: bool = False
    rule: ApprovalRuleOut | None = None
    request: ApprovalRequest | None = None


def submit_receipt(
    db: Session,
    receipt_id: uuid.UUID,
    company_id: uuid.UUID,
    reason: str | None = None,
    requested_approver_id: uuid.UUID | None = None,
    priority: str = "normal",
) -> SubmissionResult:
    """Run a categorized receipt through the rules and open a request when needed.

    - No matching rule, or a rule that neither requires approval nor
      auto-approves: nothing to do.
    - Matched auto-approve rule: request created as ``auto_approved``.
    - Matched rule requiring approval: ``pending``, unless the amount is
      below the company's auto-approval threshold, then ``auto_approved``.
    """
    snapshot = receipt_svc.get_snapshot(db, receipt_id, company_id)
    requirement = check_approval_requirement(
        db, company_id, snapshot.user_id, snapshot.amount, snapshot.category, snapshot.vendor
    )
    rule = requirement.rule
    if rule is None or not (requirement.requires_approval or requirement.auto_approve):
        logger.info("Receipt %s needs no approval (rule=%s)", receipt_id, rule.id if rule else None)
        return SubmissionResult(requires_approval=False, rule=rule)

    auto_approve = requirement.auto_approve
    if not auto_approve:
        config = config_svc.get_config(db, company_id)
        auto_approve = snapshot.amount < config.auto_approval_threshold

    request = create_request(
        db,
        receipt_id=snapshot.id,
        user_id=snapshot.user_id,
        company_id=company_id,
        rule=rule,
        amount=snapshot.amount,
        category=snapshot.category,
        vendor=snapshot.vendor,
        reason=reason,
        auto_approve=auto_approve,
        requested_approver_id=requested_approver_id,
        priority=priority,
    )
    return SubmissionResult(
        requires_approval=not auto_approve,
        auto_approved=auto_approve,
        rule=rule,
        request=request,
    )


# ─── Decide ───

def _conflict_error(db: Session, request_id: uuid.UUID, actor_id: uuid.UUID, now: datetime):
    """Explain a lost compare-and-swap under the request's current state."""
    request = get_request(db, request_id)
    if request.status not in ACTIONABLE_STATUSES:
        return NotPending(f"Request {request_id} is no longer pending (status={request.status}).")
    authorized, _ = delegation_svc.resolve_authority(db, request, actor_id, now)
    if not authorized:
        return Unauthorized(
            f"User {actor_id} is not authorized for request {request_id} at escalation level "
            f"{request.escalation_level}."
        )
    return NotPending(f"Request {request_id} changed concurrently; reload and retry.")


def decide(
    db: Session,
    request_id: uuid.UUID,
    actor_id: uuid.UUID,
    action: str,
    comments: str | None = None,
    company_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> ApprovalRequest:
    """Apply approve / reject / request_info from ``actor_id``.

    Raises:
        NotFound: unknown request (or outside ``company_id``).
        NotPending: request is terminal, or lost a concurrent race.
        Unauthorized: actor is neither a current approver nor a covered delegate.
        ValidationError: unknown action.
    """
    if action not in DECISION_ACTIONS:
        raise ValidationError(f"Invalid action '{action}'. Must be one of {', '.join(DECISION_ACTIONS)}.")
    now = now or utcnow()

    request = get_request(db, request_id, company_id)
    if request.status not in ACTIONABLE_STATUSES:
        raise NotPending(f"Request {request_id} is not pending (status={request.status}).")

    authorized, on_behalf_of = delegation_svc.resolve_authority(db, request, actor_id, now)
    if not authorized:
        raise Unauthorized(f"User {actor_id} is not authorized to act on request {request_id}.")

    rule = rule_store.get_rule_out(db, request.rule_id)
    observed_level = request.escalation_level

    values: dict = {"updated_at": now}
    if comments is not None:
        values["comments"] = comments
    if action == "approve":
        values.update(status="approved", approved_at=now, approved_by=actor_id)
    elif action == "reject":
        values.update(status="rejected", rejected_at=now, rejected_by=actor_id)

    with store_errors(db, "decide"):
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
            raise _conflict_error(db, request_id, actor_id, now)

        db.add(ApprovalAction(
            request_id=request_id,
            user_id=actor_id,
            action=action,
            comments=comments,
            on_behalf_of=on_behalf_of,
            timestamp=now,
        ))
        if action == "approve":
            receipt_svc.set_approval_status(db, request.receipt_id, "approved")
        elif action == "reject":
            receipt_svc.set_approval_status(db, request.receipt_id, "rejected")
        db.commit()
        db.refresh(request)

    logger.info(
        "Approval decision: request=%s action=%s actor=%s on_behalf_of=%s status=%s",
        request_id, action, actor_id, on_behalf_of, request.status,
    )

    flags = rule.actions.notifications
    if action == "approve" and flags.on_approval:
        notifications.dispatch(request, "approved")
    elif action == "reject" and flags.on_rejection:
        notifications.dispatch(request, "rejected")

    return request


# ─── Listings ───

def _approvers_include_any(db: Session, user_ids: list[str]):
    """SQL predicate: ``current_approvers`` names at least one of ``user_ids``."""
    if db.get_bind().dialect.name == "postgresql":
        return cast(ApprovalRequest.current_approvers, JSONB).has_any(array(user_ids))
    # Elsewhere the JSON array is matched as text; callers re-check membership.
    text_value = cast(ApprovalRequest.current_approvers, String)
    return or_(*[text_value.like(f'%"{user_id}"%') for user_id in user_ids])


def list_pending_for_approver(
    db: Session,
    approver_id: uuid.UUID,
    company_id: uuid.UUID,
    now: datetime | None = None,
) -> list[ApprovalRequest]:
    """Actionable requests the user may decide now, directly or through a delegation.

    Highest priority first, then oldest submission.
    """
    now = as_utc(now) if now else utcnow()
    delegations = delegation_svc.delegators_for(db, approver_id, company_id, now)
    me = str(approver_id)
    ids = [me] + [str(d.delegator_id) for d in delegations]

    priority_rank = case(
        {p: rank for rank, p in enumerate(PRIORITIES)},
        value=ApprovalRequest.priority,
        else_=len(PRIORITIES),
    )
    with store_errors(db, "list_pending_for_approver"):
        candidates = db.execute(
            select(ApprovalRequest)
            .where(
                ApprovalRequest.company_id == company_id,
                ApprovalRequest.status.in_(ACTIONABLE_STATUSES),
                _approvers_include_any(db, ids),
            )
            .order_by(priority_rank, ApprovalRequest.submitted_at.asc())
        ).scalars().all()

    items = []
    for request in candidates:
        approvers = {str(a) for a in (request.current_approvers or [])}
        if me in approvers:
            items.append(request)
            continue
        for delegation in delegations:
            if str(delegation.delegator_id) in approvers and delegation_svc.delegation_covers(delegation, request, now):
                items.append(request)
                break
    return items


def get_approval_history(
    db: Session,
    company_id: uuid.UUID,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID | None = None,
    approver_id: uuid.UUID | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[ApprovalRequest], int]:
    """Paginated company history, newest submission first. Returns (items, total)."""
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive.")

    filters = [ApprovalRequest.company_id == company_id]
    if status:
        filters.append(ApprovalRequest.status == status)
    if start_date:
        filters.append(ApprovalRequest.submitted_at >= as_utc(start_date))
    if end_date:
        filters.append(ApprovalRequest.submitted_at <= as_utc(end_date))
    if user_id:
        filters.append(ApprovalRequest.user_id == user_id)
    if approver_id:
        filters.append(or_(
            ApprovalRequest.approved_by == approver_id,
            ApprovalRequest.rejected_by == approver_id,
        ))

    with store_errors(db, "get_approval_history"):
        total = db.execute(
            select(func.count(ApprovalRequest.id)).where(*filters)
        ).scalar_one()
        items = db.execute(
            select(ApprovalRequest)
            .where(*filters)
            .order_by(ApprovalRequest.submitted_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).scalars().all()
    return list(items), int(total)


def get_approval_stats(
    db: Session,
    company_id: uuid.UUID,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> ApprovalStats:
    filters = [ApprovalRequest.company_id == company_id]
    if start_date:
        filters.append(ApprovalRequest.submitted_at >= as_utc(start_date))
    if end_date:
        filters.append(ApprovalRequest.submitted_at <= as_utc(end_date))

    with store_errors(db, "get_approval_stats"):
        counts = dict(
            db.execute(
                select(ApprovalRequest.status, func.count(ApprovalRequest.id))
                .where(*filters)
                .group_by(ApprovalRequest.status)
            ).all()
        )
        decided = db.execute(
            select(ApprovalRequest.submitted_at, ApprovalRequest.approved_at)
            .where(*filters, ApprovalRequest.status == "approved")
        ).all()

    approved = counts.get("approved", 0)
    rejected = counts.get("rejected", 0)
    durations = [
        (as_utc(approved_at) - as_utc(submitted_at)).total_seconds() / 3600
        for submitted_at, approved_at in decided
        if approved_at is not None
    ]
    return ApprovalStats(
        total_pending=counts.get("pending", 0),
        total_escalated=counts.get("escalated", 0),
        total_approved=approved,
        total_rejected=rejected,
        total_auto_approved=counts.get("auto_approved", 0),
        approval_rate=round(approved / (approved + rejected), 4) if (approved + rejected) else 0.0,
        average_approval_hours=round(sum(durations) / len(durations), 2) if durations else None,
    )
