"""Approval workflow API endpoints.

  POST /approvals/submissions          - run a receipt through the rules
  GET  /approvals                      - actionable requests for current user
  GET  /approvals/history              - company history (filters + paging)
  GET  /approvals/stats                - company approval statistics
  GET  /approvals/{request_id}         - request detail with action history
  GET  /approvals/{request_id}/actions - action history only
  POST /approvals/{request_id}/decision
  POST /approvals/{request_id}/escalate  (ADMIN, MANAGER)
  POST /approvals/bulk
"""
import logging
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from receiptvault.core.config import settings
from receiptvault.core.deps import get_current_user, require_role
from receiptvault.core.limiter import limiter
from receiptvault.db.session import SessionLocal, get_db
from receiptvault.models.user import User
from receiptvault.schemas.approval import (
    ApprovalActionOut,
    ApprovalDetailOut,
    ApprovalHistoryResponse,
    ApprovalListResponse,
    ApprovalRequestOut,
    ApprovalStats,
    BulkDecisionIn,
    BulkDecisionResult,
    DecisionIn,
    EscalateIn,
    SubmissionIn,
    SubmissionOut,
)
from receiptvault.services import approval as approval_svc
from receiptvault.services import bulk as bulk_svc
from receiptvault.services import delegation as delegation_svc
from receiptvault.services import escalation as escalation_svc
from receiptvault.services import receipts as receipt_svc

logger = logging.getLogger(__name__)

router = APIRouter()

HISTORY_ROLES = ("APPROVER", "MANAGER", "ADMIN", "AUDITOR")


def _visible_to(db: Session, request, user: User) -> bool:
    if user.role in HISTORY_ROLES or request.user_id == user.id:
        return True
    authorized, _ = delegation_svc.resolve_authority(db, request, user.id)
    return authorized


# ─── Submission ───

@router.post(
    "/submissions",
    response_model=SubmissionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a categorized receipt for approval",
)
def submit_receipt(
    body: SubmissionIn,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    snapshot = receipt_svc.get_snapshot(db, body.receipt_id, current_user.company_id)
    if snapshot.user_id != current_user.id and current_user.role != "ADMIN":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only submit your own receipts.",
        )
    result = approval_svc.submit_receipt(
        db,
        body.receipt_id,
        current_user.company_id,
        reason=body.reason,
        requested_approver_id=body.requested_approver_id,
        priority=body.priority,
    )
    return SubmissionOut(
        requires_approval=result.requires_approval,
        auto_approved=result.auto_approved,
        rule_id=result.rule.id if result.rule else None,
        request=ApprovalRequestOut.model_validate(result.request) if result.request else None,
    )


# ─── Listings ───

@router.get(
    "",
    response_model=ApprovalListResponse,
    summary="List requests the current user can decide now",
)
def list_my_approvals(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    items = approval_svc.list_pending_for_approver(db, current_user.id, current_user.company_id)
    return ApprovalListResponse(
        items=[ApprovalRequestOut.model_validate(r) for r in items],
        total=len(items),
    )


@router.get(
    "/history",
    response_model=ApprovalHistoryResponse,
    summary="Company approval history",
)
def approval_history(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*HISTORY_ROLES))],
    status_filter: str | None = Query(None, alias="status"),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID | None = None,
    approver_id: uuid.UUID | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    items, total = approval_svc.get_approval_history(
        db,
        current_user.company_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        user_id=user_id,
        approver_id=approver_id,
        page=page,
        limit=limit,
    )
    return ApprovalHistoryResponse(
        items=[ApprovalRequestOut.model_validate(r) for r in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=ApprovalStats,
    summary="Approval statistics for the company",
)
def approval_stats(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*HISTORY_ROLES))],
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    return approval_svc.get_approval_stats(db, current_user.company_id, start_date, end_date)


# ─── Detail ───

@router.get(
    "/{request_id}",
    response_model=ApprovalDetailOut,
    summary="Approval request detail with its action history",
)
def get_approval_request(
    request_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    request, actions = approval_svc.get_request_detail(db, request_id, current_user.company_id)
    if not _visible_to(db, request, current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed.")
    return ApprovalDetailOut(
        **ApprovalRequestOut.model_validate(request).model_dump(),
        actions=[ApprovalActionOut.model_validate(a) for a in actions],
    )


@router.get(
    "/{request_id}/actions",
    response_model=list[ApprovalActionOut],
    summary="Decision history of an approval request",
)
def get_approval_actions(
    request_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    request = approval_svc.get_request(db, request_id, current_user.company_id)
    if not _visible_to(db, request, current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed.")
    return [ApprovalActionOut.model_validate(a) for a in approval_svc.list_actions(db, request_id)]


# ─── Decisions ───

@router.post(
    "/{request_id}/decision",
    response_model=ApprovalRequestOut,
    summary="Approve, reject or request more information",
)
def decide(
    request_id: uuid.UUID,
    body: DecisionIn,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    request = approval_svc.decide(
        db,
        request_id,
        actor_id=current_user.id,
        action=body.action,
        comments=body.comments,
        company_id=current_user.company_id,
    )
    return ApprovalRequestOut.model_validate(request)


@router.post(
    "/{request_id}/escalate",
    response_model=ApprovalRequestOut,
    summary="Escalate a request to the next tier (ADMIN, MANAGER)",
)
def escalate(
    request_id: uuid.UUID,
    body: EscalateIn,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN", "MANAGER"))],
):
    request = escalation_svc.escalate(
        db,
        request_id,
        actor_id=current_user.id,
        comments=body.comments,
        company_id=current_user.company_id,
    )
    return ApprovalRequestOut.model_validate(request)


@router.post(
    "/bulk",
    response_model=BulkDecisionResult,
    summary="Approve or reject many requests; failures are reported per item",
)
@limiter.limit(settings.BULK_RATE_LIMIT)
def bulk_decide(
    request: Request,
    body: BulkDecisionIn,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return bulk_svc.bulk_decide(
        db,
        body.request_ids,
        actor_id=current_user.id,
        action=body.action,
        comments=body.comments,
        company_id=current_user.company_id,
        session_factory=SessionLocal,
    )
