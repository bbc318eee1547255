"""FastAPI dependency injection — store and background scheduler."""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from tender_estimator.db import get_db
from tender_estimator.db.store import SqlAlchemyBOQStore
from tender_estimator.services.reconciliation import ReconciliationScheduler


async def get_store(db: AsyncSession = Depends(get_db)) -> SqlAlchemyBOQStore:
    return SqlAlchemyBOQStore(db)


def get_reconciliation_scheduler() -> ReconciliationScheduler:
    from tender_estimator.workers.tasks import CeleryReconciliationScheduler
    return CeleryReconciliationScheduler()
