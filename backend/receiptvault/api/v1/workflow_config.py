"""Workflow configuration endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from receiptvault.core.deps import require_role
from receiptvault.db.session import get_db
from receiptvault.models.user import User
from receiptvault.schemas.workflow_config import WorkflowConfigOut, WorkflowConfigUpdate
from receiptvault.services import workflow_config as config_svc

router = APIRouter()


@router.get("", response_model=WorkflowConfigOut, summary="Get the company's workflow config")
def get_workflow_config(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN", "APPROVER", "MANAGER", "AUDITOR"))],
):
    return config_svc.get_config(db, current_user.company_id)


@router.patch("", response_model=WorkflowConfigOut, summary="Update the company's workflow config (ADMIN)")
def update_workflow_config(
    body: WorkflowConfigUpdate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    return config_svc.update_config(db, current_user.company_id, body, actor_id=current_user.id)
