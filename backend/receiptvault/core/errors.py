"""Error taxonomy for the approval workflow engine.

Business errors (everything except InfrastructureError) are expected control
flow: callers get them as typed results and they are never logged as
incidents. InfrastructureError wraps store unavailability and is surfaced
to the caller for retry.
"""


class WorkflowError(Exception):
    """Base class. ``kind`` is the stable machine-readable error tag."""

    kind: str = "workflow_error"
    http_status: int = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class NotFound(WorkflowError):
    kind = "not_found"
    http_status = 404


class NotPending(WorkflowError):
    kind = "not_pending"
    http_status = 409


class Unauthorized(WorkflowError):
    kind = "unauthorized"
    http_status = 403


class MaxEscalationReached(WorkflowError):
    kind = "max_escalation_reached"
    http_status = 409


class NoEscalationChain(WorkflowError):
    kind = "no_escalation_chain"
    http_status = 409


class ValidationError(WorkflowError):
    kind = "validation_error"
    http_status = 422


class DuplicateRequest(WorkflowError):
    kind = "duplicate_request"
    http_status = 409


class InfrastructureError(WorkflowError):
    kind = "infrastructure_error"
    http_status = 503
