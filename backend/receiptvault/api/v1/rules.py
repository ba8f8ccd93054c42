"""Approval rule management endpoints (ADMIN)."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from receiptvault.core.deps import require_role
from receiptvault.db.session import get_db
from receiptvault.models.user import User
from receiptvault.schemas.approval_rule import ApprovalRuleIn, ApprovalRuleOut, ApprovalRuleUpdate
from receiptvault.services import rule_store

router = APIRouter()


@router.get(
    "",
    response_model=list[ApprovalRuleOut],
    summary="List approval rules in evaluation order",
)
def list_rules(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN", "AUDITOR"))],
    active_only: bool = Query(False),
):
    return rule_store.list_rules(db, current_user.company_id, active_only=active_only)


@router.post(
    "",
    response_model=ApprovalRuleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval rule (ADMIN)",
)
def create_rule(
    body: ApprovalRuleIn,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    rule = rule_store.create_rule(db, current_user.company_id, body, created_by=current_user.id)
    return ApprovalRuleOut.model_validate(rule)


@router.get(
    "/{rule_id}",
    response_model=ApprovalRuleOut,
    summary="Get an approval rule",
)
def get_rule(
    rule_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN", "AUDITOR"))],
):
    return ApprovalRuleOut.model_validate(rule_store.get_rule(db, rule_id, current_user.company_id))


@router.patch(
    "/{rule_id}",
    response_model=ApprovalRuleOut,
    summary="Update an approval rule (ADMIN)",
)
def update_rule(
    rule_id: uuid.UUID,
    body: ApprovalRuleUpdate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    rule = rule_store.update_rule(db, rule_id, current_user.company_id, body, actor_id=current_user.id)
    return ApprovalRuleOut.model_validate(rule)


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Disable an approval rule (ADMIN)",
)
def disable_rule(
    rule_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    rule_store.disable_rule(db, rule_id, current_user.company_id, actor_id=current_user.id)
