"""
Celery Tasks — background reconciliation of linked materials.

A task is queued only after the work's write has committed. Each run opens
its own session, re-reads current state and commits once. Failures are
retried a bounded number of times; after that they are logged and dropped,
the user-visible save having already succeeded.
"""
import logging
import asyncio
import time
from typing import Optional

from tender_estimator.config import (
    RECONCILE_COUNTDOWN_S,
    RECONCILE_MAX_RETRIES,
    RECONCILE_RETRY_DELAY_S,
)
from tender_estimator.services.reconciliation import (
    STATUS_FAILED,
    ReconciliationRequest,
    reconcile_linked_materials,
)
from tender_estimator.workers.celery_app import celery_app

logger = logging.getLogger("tender-celery")


def _run_async(coro):
    """Run an async coroutine in a sync Celery task context (new event loop)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _reconcile(position_id: str, work_id: str, generation: int) -> dict:
    from tender_estimator.db import AsyncSessionLocal
    from tender_estimator.db.store import SqlAlchemyBOQStore

    async with AsyncSessionLocal() as session:
        try:
            result = await reconcile_linked_materials(
                SqlAlchemyBOQStore(session), position_id, work_id, generation,
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return result.as_dict()


@celery_app.task(
    bind=True,
    name="tasks.reconcile_work_materials",
    max_retries=RECONCILE_MAX_RETRIES,
    default_retry_delay=RECONCILE_RETRY_DELAY_S,
)
def reconcile_work_materials(self, position_id: str, work_id: str, generation: int):
    """Re-derive quantity and total of every material linked to ``work_id``."""
    started = time.monotonic()
    context = {"item_id": work_id, "position_id": position_id, "task_id": self.request.id}
    try:
        result = _run_async(_reconcile(position_id, work_id, generation))
    except Exception as e:
        if self.request.retries < self.max_retries:
            logger.warning(
                "Reconcile %s@%s failed (attempt %d): %s; retrying",
                work_id, generation, self.request.retries + 1, e, extra=context,
            )
            raise self.retry(exc=e)
        logger.error(
            "Reconcile %s@%s gave up after %d attempt(s): %s",
            work_id, generation, self.request.retries + 1, e, extra=context, exc_info=True,
        )
        return {
            "status": STATUS_FAILED,
            "work_id": work_id,
            "generation": generation,
            "error": str(e),
        }
    logger.info(
        "Reconcile %s@%s finished: %s", work_id, generation, result["status"],
        extra={**context, "duration_ms": round((time.monotonic() - started) * 1000, 1)},
    )
    return result


class CeleryReconciliationScheduler:
    """Queues reconciliation requests on the Celery broker."""

    def __init__(self, countdown: float = RECONCILE_COUNTDOWN_S):
        self.countdown = countdown

    def schedule(self, request: ReconciliationRequest) -> Optional[str]:
        async_result = reconcile_work_materials.apply_async(
            args=[request.position_id, request.work_id, request.generation],
            countdown=self.countdown,
        )
        logger.info(
            "Queued reconcile %s@%s as %s", request.work_id, request.generation, async_result.id,
            extra={"item_id": request.work_id, "position_id": request.position_id},
        )
        return async_result.id

    def cancel(self, task_id: str) -> None:
        cancel_reconciliation(task_id)


def cancel_reconciliation(task_id: str) -> None:
    """Revoke a queued reconciliation. A pass already running is left to finish."""
    celery_app.control.revoke(task_id)
    logger.info("Revoked reconcile task %s", task_id, extra={"task_id": task_id})
