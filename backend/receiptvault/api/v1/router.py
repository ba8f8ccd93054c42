from fastapi import APIRouter

from receiptvault.api.v1 import approvals, delegations, rules, workflow_config

api_router = APIRouter()

api_router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
api_router.include_router(rules.router, prefix="/approval-rules", tags=["approval-rules"])
api_router.include_router(workflow_config.router, prefix="/workflow-config", tags=["workflow-config"])
api_router.include_router(delegations.router, prefix="/delegations", tags=["delegations"])
