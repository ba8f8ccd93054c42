"""Bulk approve/reject with per-item failure isolation.

Each request id is decided on its own: authority is re-checked per item and
one item's failure never aborts the batch. Every distinct input id appears
exactly once in the result, under ``successful`` or ``failed``.
"""
import logging
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy.orm import Session

from receiptvault.core.config import settings
from receiptvault.core.errors import ValidationError, WorkflowError
from receiptvault.schemas.approval import BulkDecisionResult, BulkFailure
from receiptvault.services import approval as approval_svc

logger = logging.getLogger(__name__)

BULK_ACTIONS = ("approve", "reject")


def _decide_one(
    db: Session,
    request_id: uuid.UUID,
    actor_id: uuid.UUID,
    action: str,
    comments: str | None,
    company_id: uuid.UUID | None,
) -> BulkFailure | None:
    try:
        approval_svc.decide(db, request_id, actor_id, action, comments, company_id=company_id)
        return None
    except WorkflowError as exc:
        logger.info("Bulk %s: request %s failed (%s)", action, request_id, exc.kind)
        return BulkFailure(id=request_id, error=exc.kind, message=exc.message)
    except Exception as exc:
        # Unexpected fault on one item is reported, not propagated.
        logger.exception("Bulk %s: request %s raised unexpectedly", action, request_id)
        db.rollback()
        return BulkFailure(id=request_id, error="internal_error", message=str(exc))


def _decide_in_own_session(
    session_factory: Callable[[], Session],
    request_id: uuid.UUID,
    actor_id: uuid.UUID,
    action: str,
    comments: str | None,
    company_id: uuid.UUID | None,
) -> BulkFailure | None:
    with session_factory() as db:
        return _decide_one(db, request_id, actor_id, action, comments, company_id)


def bulk_decide(
    db: Session,
    request_ids: list[uuid.UUID],
    actor_id: uuid.UUID,
    action: str,
    comments: str | None = None,
    company_id: uuid.UUID | None = None,
    session_factory: Callable[[], Session] | None = None,
    max_workers: int | None = None,
) -> BulkDecisionResult:
    """Apply ``action`` to every request id.

    With a ``session_factory`` and more than one worker, items fan out over a
    bounded thread pool, one session per item. Otherwise they run in order
    on ``db``. Results are reported in input order either way.
    """
    if action not in BULK_ACTIONS:
        raise ValidationError(f"Invalid bulk action '{action}'. Must be 'approve' or 'reject'.")

    ids = list(dict.fromkeys(request_ids))
    if not ids:
        raise ValidationError("request_ids must not be empty.")
    if len(ids) > settings.BULK_MAX_ITEMS:
        raise ValidationError(f"At most {settings.BULK_MAX_ITEMS} requests per bulk decision.")

    workers = max_workers if max_workers is not None else settings.BULK_MAX_WORKERS
    outcomes: dict[uuid.UUID, BulkFailure | None] = {}

    if session_factory is not None and workers > 1 and len(ids) > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(ids)), thread_name_prefix="bulk-decide") as pool:
            futures = {
                request_id: pool.submit(
                    _decide_in_own_session,
                    session_factory, request_id, actor_id, action, comments, company_id,
                )
                for request_id in ids
            }
            for request_id, future in futures.items():
                try:
                    outcomes[request_id] = future.result()
                except Exception as exc:
                    logger.exception("Bulk %s: worker for request %s crashed", action, request_id)
                    outcomes[request_id] = BulkFailure(id=request_id, error="internal_error", message=str(exc))
    else:
        for request_id in ids:
            outcomes[request_id] = _decide_one(db, request_id, actor_id, action, comments, company_id)

    result = BulkDecisionResult()
    for request_id in ids:
        failure = outcomes[request_id]
        if failure is None:
            result.successful.append(request_id)
        else:
            result.failed.append(failure)

    logger.info(
        "Bulk %s by %s: %d succeeded, %d failed",
        action, actor_id, len(result.successful), len(result.failed),
    )
    return result
