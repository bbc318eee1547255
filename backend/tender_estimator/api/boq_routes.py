"""BOQ routes — position / tender totals, line edits, currency rate refresh."""
import logging
from dataclasses import asdict
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from tender_estimator.api.deps import get_reconciliation_scheduler, get_store
from tender_estimator.config import BASE_CURRENCY, DEFAULT_COEFFICIENT, DELIVERY_INCLUDED, MATERIAL_TYPE_MAIN
from tender_estimator.db import get_db
from tender_estimator.services.boq_edit_service import (
    BOQEditService,
    EditOutcome,
    ItemDraft,
    MaterialEdit,
    WorkEdit,
)
from tender_estimator.services.boq_store import BOQStore
from tender_estimator.services.cost_aggregator import (
    commercial_summary,
    summarise_position,
    tender_total,
)
from tender_estimator.services.markup_allocator import PercentageMarkupPolicy
from tender_estimator.services.reconciliation import ReconciliationRequest, ReconciliationScheduler

router = APIRouter(prefix="/api", tags=["BOQ"])
logger = logging.getLogger("tender-api")

# NaN / Infinity parse as JSON numbers but are never a valid BOQ figure
FiniteFloat = Annotated[float, Field(allow_inf_nan=False)]


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class ItemCreate(BaseModel):
    kind: str
    description: str = ""
    unit: str = ""
    quantity: FiniteFloat = 0.0
    unit_rate: FiniteFloat = 0.0
    currency_type: str = BASE_CURRENCY
    consumption_coefficient: FiniteFloat = DEFAULT_COEFFICIENT
    conversion_coefficient: FiniteFloat = DEFAULT_COEFFICIENT
    delivery_price_type: str = DELIVERY_INCLUDED
    delivery_amount: Optional[FiniteFloat] = None
    material_type: str = MATERIAL_TYPE_MAIN
    work_id: Optional[str] = None
    sub_work_id: Optional[str] = None
    material_id: Optional[str] = None
    sub_material_id: Optional[str] = None
    linked_work_item_id: Optional[str] = None


class MaterialUpdate(BaseModel):
    # Desired association; null means "not linked"
    linked_work_item_id: Optional[str] = None
    quantity: Optional[FiniteFloat] = None
    consumption_coefficient: Optional[FiniteFloat] = None
    conversion_coefficient: Optional[FiniteFloat] = None
    unit_rate: Optional[FiniteFloat] = None
    currency_type: Optional[str] = None
    delivery_price_type: Optional[str] = None
    delivery_amount: Optional[FiniteFloat] = None
    material_type: Optional[str] = None
    kind: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None


class WorkUpdate(BaseModel):
    quantity: Optional[FiniteFloat] = None
    unit_rate: Optional[FiniteFloat] = None
    currency_type: Optional[str] = None
    kind: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None


class ReclassifyRequest(BaseModel):
    kind: str


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _schedule(scheduler: ReconciliationScheduler, request: Optional[ReconciliationRequest]) -> Optional[str]:
    """Queue a committed work's reconciliation; a broker outage does not fail the save."""
    if request is None:
        return None
    try:
        return scheduler.schedule(request)
    except Exception as e:
        logger.error(
            "Could not queue reconcile for %s@%s: %s", request.work_id, request.generation, e,
            extra={"item_id": request.work_id, "position_id": request.position_id},
        )
        return None


def _outcome_payload(outcome: EditOutcome, task_id: Optional[str] = None) -> dict:
    return {
        "item": asdict(outcome.item),
        "line": outcome.line.as_dict(),
        "relinked": outcome.relinked,
        "reconciliation_task_id": task_id,
    }


# ─── Positions ───────────────────────────────────────────────────────────────

@router.get("/positions/{position_id}/totals")
async def get_position_totals(position_id: str, store: BOQStore = Depends(get_store)):
    position = await store.get_position(position_id)
    if position is None:
        raise HTTPException(status_code=404, detail="Position not found")
    return summarise_position(position.items, position.links, position.id).as_dict()


@router.get("/positions/{position_id}/commercial")
async def get_position_commercial(position_id: str, store: BOQStore = Depends(get_store)):
    position = await store.get_position(position_id)
    if position is None:
        raise HTTPException(status_code=404, detail="Position not found")
    policy = PercentageMarkupPolicy(await store.get_markup_percentages(position.tender_id))
    return commercial_summary(position.items, position.links, policy, position.id).as_dict()


@router.post("/positions/{position_id}/items", status_code=201)
async def add_position_item(
    position_id: str,
    body: ItemCreate,
    store: BOQStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
):
    outcome = await BOQEditService(store).add_item(position_id, ItemDraft(**body.model_dump()))
    await db.commit()
    return _outcome_payload(outcome)


# ─── Items ───────────────────────────────────────────────────────────────────

@router.put("/items/{item_id}/material")
async def update_material(
    item_id: str,
    body: MaterialUpdate,
    store: BOQStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
):
    outcome = await BOQEditService(store).edit_material(item_id, MaterialEdit(**body.model_dump()))
    await db.commit()
    return _outcome_payload(outcome)


@router.put("/items/{item_id}/work")
async def update_work(
    item_id: str,
    body: WorkUpdate,
    store: BOQStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    scheduler: ReconciliationScheduler = Depends(get_reconciliation_scheduler),
):
    outcome = await BOQEditService(store).edit_work(item_id, WorkEdit(**body.model_dump()))
    await db.commit()
    return _outcome_payload(outcome, _schedule(scheduler, outcome.reconciliation))


@router.post("/items/{item_id}/reclassify")
async def reclassify_item(
    item_id: str,
    body: ReclassifyRequest,
    store: BOQStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
    scheduler: ReconciliationScheduler = Depends(get_reconciliation_scheduler),
):
    outcome = await BOQEditService(store).reclassify(item_id, body.kind)
    await db.commit()
    return _outcome_payload(outcome, _schedule(scheduler, outcome.reconciliation))


# ─── Tenders ─────────────────────────────────────────────────────────────────

@router.get("/tenders/{tender_id}/totals")
async def get_tender_totals(tender_id: str, store: BOQStore = Depends(get_store)):
    return {"tender_id": tender_id, **tender_total(await store.list_positions(tender_id))}


@router.post("/tenders/{tender_id}/currency-rates/refresh")
async def refresh_currency_rates(
    tender_id: str,
    store: BOQStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
):
    result = await BOQEditService(store).refresh_currency_rates(tender_id)
    await db.commit()
    return result


@router.get("/tenders/{tender_id}/currency-stats")
async def get_currency_stats(tender_id: str, store: BOQStore = Depends(get_store)):
    return await BOQEditService(store).currency_stats(tender_id)


# ─── Reconciliation ──────────────────────────────────────────────────────────

@router.delete("/reconciliations/{task_id}")
async def cancel_reconciliation(
    task_id: str,
    scheduler: ReconciliationScheduler = Depends(get_reconciliation_scheduler),
):
    scheduler.cancel(task_id)
    return {"task_id": task_id, "status": "revoked"}
