from receiptvault.models.user import User
from receiptvault.models.receipt import Receipt
from receiptvault.models.approval_rule import ApprovalRule
from receiptvault.models.workflow_config import WorkflowConfig
from receiptvault.models.approval import ApprovalRequest, ApprovalAction
from receiptvault.models.delegation import ApprovalDelegation
from receiptvault.models.audit import AuditLog

__all__ = [
    "User",
    "Receipt",
    "ApprovalRule",
    "WorkflowConfig",
    "ApprovalRequest", "ApprovalAction",
    "ApprovalDelegation",
    "AuditLog",
]
