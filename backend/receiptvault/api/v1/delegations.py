"""Approval delegation endpoints."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from receiptvault.core.deps import get_current_user
from receiptvault.db.session import get_db
from receiptvault.models.user import User
from receiptvault.schemas.delegation import DelegationIn, DelegationOut
from receiptvault.services import delegation as delegation_svc

router = APIRouter()


@router.post(
    "",
    response_model=DelegationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Delegate approval authority for a time window",
)
def create_delegation(
    body: DelegationIn,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    delegator_id = body.delegator_id or current_user.id
    # Only ADMIN can delegate on behalf of someone else
    if delegator_id != current_user.id and current_user.role != "ADMIN":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delegate your own approval authority.",
        )
    delegation = delegation_svc.create_delegation(
        db, current_user.company_id, delegator_id, body, actor_id=current_user.id
    )
    return DelegationOut.model_validate(delegation)


@router.get(
    "",
    response_model=list[DelegationOut],
    summary="Delegations given or received by the current user (ADMIN: whole company)",
)
def list_delegations(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    include_inactive: bool = Query(False),
):
    user_id = None if current_user.role == "ADMIN" else current_user.id
    rows = delegation_svc.list_delegations(
        db, current_user.company_id, user_id=user_id, active_only=not include_inactive
    )
    return [DelegationOut.model_validate(d) for d in rows]


@router.delete(
    "/{delegation_id}",
    response_model=DelegationOut,
    summary="Revoke a delegation",
)
def revoke_delegation(
    delegation_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    delegation = delegation_svc.revoke_delegation(
        db,
        delegation_id,
        current_user.company_id,
        actor_id=current_user.id,
        is_admin=current_user.role == "ADMIN",
    )
    return DelegationOut.model_validate(delegation)
