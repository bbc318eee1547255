"""
Background reconciliation of materials linked to an edited work.

Queued only after the work's write has committed. Each request carries the
work's ``generation`` at write time; if the work has been written again since,
the request is stale and does nothing, so a superseded pass can never
overwrite a newer edit. Re-running an applied request is harmless: every
material is re-derived from current state, not from the request.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from tender_estimator.services.boq_store import BOQStore
from tender_estimator.services.errors import EstimationError
from tender_estimator.services.link_graph import LinkGraph

logger = logging.getLogger("tender-reconcile")

STATUS_APPLIED = "applied"
STATUS_PARTIAL = "partial"
STATUS_STALE = "stale"
STATUS_MISSING = "missing"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationRequest:
    position_id: str
    work_id: str
    generation: int


@dataclass
class ReconciliationResult:
    status: str
    work_id: str
    generation: int
    updated_material_ids: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReconciliationScheduler(Protocol):
    def schedule(self, request: ReconciliationRequest) -> Optional[str]:
        """Queue ``request``; return a handle usable for cancellation."""
        ...

    def cancel(self, task_id: str) -> None:
        """Drop a queued request. A pass already running is left to finish."""
        ...


async def reconcile_linked_materials(
    store: BOQStore, position_id: str, work_id: str, generation: int
) -> ReconciliationResult:
    work = await store.get_item(work_id)
    if work is None:
        logger.warning(
            "Reconcile skipped: work %s no longer exists", work_id,
            extra={"item_id": work_id, "position_id": position_id},
        )
        return ReconciliationResult(STATUS_MISSING, work_id, generation)

    if work.generation != generation:
        logger.warning(
            "Reconcile for %s@%s superseded by generation %s",
            work_id, generation, work.generation,
            extra={"item_id": work_id, "position_id": position_id},
        )
        return ReconciliationResult(STATUS_STALE, work_id, generation)

    graph = LinkGraph(store)
    result = ReconciliationResult(STATUS_APPLIED, work_id, generation)
    for link in await graph.links_for_work(position_id, work_id):
        material_id = link.material_item_id
        try:
            await graph.refresh_material(material_id)
            result.updated_material_ids.append(material_id)
        except EstimationError as e:
            # Overflow will not fix itself on retry
            logger.error(
                "Reconcile could not re-derive material %s: %s", material_id, e,
                extra={"item_id": material_id, "position_id": position_id},
            )
            result.errors[material_id] = str(e)

    if result.errors:
        result.status = STATUS_PARTIAL
    logger.info(
        "Reconciled %d material(s) for work %s@%s",
        len(result.updated_material_ids), work_id, generation,
        extra={"item_id": work_id, "position_id": position_id},
    )
    return result
