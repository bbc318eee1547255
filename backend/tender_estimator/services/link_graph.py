"""
LinkGraph — work ↔ material associations within a position.

Invariants:
  - at most one link per material-like item
  - a link joins a work-like item and a material-like item of the same position
  - which of the four foreign-key columns is populated follows from the two
    items' kinds; changing either kind or the target work recreates the link,
    only the coefficients are ever updated in place
"""
import logging
from typing import List, Optional

from tender_estimator.config import (
    DEFAULT_COEFFICIENT,
    KIND_MATERIAL,
    KIND_SUB_MATERIAL,
    KIND_SUB_WORK,
    KIND_WORK,
)
from tender_estimator.models.boq_models import BOQItem, WorkMaterialLink
from tender_estimator.services.boq_store import BOQStore, gen_uuid
from tender_estimator.services.errors import (
    ItemNotFoundError,
    LinkExistsError,
    ValidationError,
)
from tender_estimator.services.line_cost import LineCost, calculate_line_cost
from tender_estimator.services.quantity_resolver import validate_coefficients

logger = logging.getLogger("tender-link-graph")


def build_link(
    work: BOQItem,
    material: BOQItem,
    consumption: Optional[float] = None,
    conversion: Optional[float] = None,
    link_id: Optional[str] = None,
) -> WorkMaterialLink:
    """Shape a new link row from the two items' kinds (2×2 dispatch)."""
    if not work.is_work_like:
        raise ValidationError(f"Item {work.id} ({work.kind}) is not a work", field="kind")
    if not material.is_material_like:
        raise ValidationError(f"Item {material.id} ({material.kind}) is not a material", field="kind")
    if work.position_id != material.position_id:
        raise ValidationError(
            f"Work {work.id} and material {material.id} belong to different positions",
            field="position_id",
        )

    consumption = consumption if consumption is not None else DEFAULT_COEFFICIENT
    conversion = conversion if conversion is not None else DEFAULT_COEFFICIENT
    validate_coefficients(consumption, conversion)

    link = WorkMaterialLink(
        id=link_id or gen_uuid(),
        position_id=work.position_id,
        material_quantity_per_work=consumption,
        usage_coefficient=conversion,
    )
    if work.kind == KIND_WORK:
        link.work_boq_item_id = work.id
    elif work.kind == KIND_SUB_WORK:
        link.sub_work_boq_item_id = work.id
    if material.kind == KIND_MATERIAL:
        link.material_boq_item_id = material.id
    elif material.kind == KIND_SUB_MATERIAL:
        link.sub_material_boq_item_id = material.id
    return link


class LinkGraph:
    def __init__(self, store: BOQStore):
        self.store = store

    # ── Queries ────────────────────────────────────────────────────────────────

    async def link_for_material(self, position_id: str, material_id: str) -> Optional[WorkMaterialLink]:
        for link in await self.store.list_links(position_id):
            if link.material_item_id == material_id:
                return link
        return None

    async def links_for_work(self, position_id: str, work_id: str) -> List[WorkMaterialLink]:
        return [
            link for link in await self.store.list_links(position_id)
            if link.work_item_id == work_id
        ]

    async def _require_item(self, item_id: str) -> BOQItem:
        item = await self.store.get_item(item_id)
        if item is None:
            raise ItemNotFoundError("BOQ item", item_id)
        return item

    # ── Mutations ──────────────────────────────────────────────────────────────

    async def create_link(
        self,
        work: BOQItem,
        material: BOQItem,
        consumption: Optional[float] = None,
        conversion: Optional[float] = None,
    ) -> WorkMaterialLink:
        link = build_link(work, material, consumption, conversion)
        existing = await self.link_for_material(material.position_id, material.id)
        if existing is not None:
            raise LinkExistsError(material.id, existing.id)
        created = await self.store.create_link(link)
        logger.info(
            "Linked material %s to %s %s", material.id, work.kind, work.id,
            extra={"item_id": material.id, "position_id": material.position_id},
        )
        return created

    async def delete_link(self, link_id: str) -> None:
        """
        Remove an association. The material's quantity fields are untouched;
        callers convert the material back to unlinked themselves.
        """
        await self.store.delete_link(link_id)
        logger.info("Deleted link %s", link_id)

    async def update_link_coefficients(
        self, link_id: str, consumption: float, conversion: float
    ) -> LineCost:
        """Update coefficients in place and re-derive the linked material."""
        validate_coefficients(consumption, conversion)
        link = await self.store.get_link(link_id)
        if link is None:
            raise ItemNotFoundError("Link", link_id)
        material = await self._require_item(link.material_item_id)
        work = await self._require_item(link.work_item_id)

        # Check the new quantity fits before anything is written
        calculate_line_cost(
            material.copy(consumption_coefficient=consumption, conversion_coefficient=conversion),
            link, work,
        )
        await self.store.update_link(
            link_id, material_quantity_per_work=consumption, usage_coefficient=conversion,
        )
        await self.store.update_item(
            material.id, consumption_coefficient=consumption, conversion_coefficient=conversion,
        )
        return await self.refresh_material(material.id)

    async def relink(
        self,
        material: BOQItem,
        new_work: BOQItem,
        consumption: Optional[float] = None,
        conversion: Optional[float] = None,
    ) -> WorkMaterialLink:
        """Point a material at another work: always delete-then-create."""
        build_link(new_work, material, consumption, conversion)
        existing = await self.link_for_material(material.position_id, material.id)
        if existing is not None:
            await self.delete_link(existing.id)
        return await self.create_link(new_work, material, consumption, conversion)

    async def reparent_work_links(self, work: BOQItem, old_kind: str) -> List[WorkMaterialLink]:
        """
        Recreate every link of a work whose kind changed (work ↔ sub_work).

        ``work`` already carries the new kind; materials keep their identity
        and coefficients.
        """
        column = "work_boq_item_id" if old_kind == KIND_WORK else "sub_work_boq_item_id"
        recreated = []
        for link in await self.store.list_links(work.position_id):
            if getattr(link, column) != work.id:
                continue
            material = await self._require_item(link.material_item_id)
            replacement = build_link(
                work, material, link.material_quantity_per_work, link.usage_coefficient,
            )
            replacement.notes = link.notes
            await self.store.delete_link(link.id)
            recreated.append(await self.store.create_link(replacement))
        if recreated:
            logger.info(
                "Re-parented %d link(s) of %s after %s → %s",
                len(recreated), work.id, old_kind, work.kind,
                extra={"item_id": work.id, "position_id": work.position_id},
            )
        return recreated

    async def reparent_material_link(self, material: BOQItem) -> Optional[WorkMaterialLink]:
        """Recreate a material's link after material ↔ sub_material."""
        link = await self.link_for_material(material.position_id, material.id)
        if link is None:
            return None
        work = await self._require_item(link.work_item_id)
        replacement = build_link(
            work, material, link.material_quantity_per_work, link.usage_coefficient,
        )
        replacement.notes = link.notes
        await self.store.delete_link(link.id)
        return await self.store.create_link(replacement)

    async def refresh_material(self, material_id: str) -> LineCost:
        """
        Re-derive and persist a material's quantity and total from current
        link state and a fresh read of its work.

        A link whose work is gone or changed kind is priced as unlinked, the
        same way position totals treat it.
        """
        material = await self._require_item(material_id)
        link = await self.link_for_material(material.position_id, material.id)
        work = None
        if link is not None:
            work = await self.store.get_item(link.work_item_id)
            if work is None or work.kind != link.work_kind:
                logger.warning(
                    "Dangling link %s on %s, pricing as unlinked", link.id, material.id,
                    extra={"item_id": material.id, "position_id": material.position_id},
                )
                link, work = None, None
        line = calculate_line_cost(material, link, work)
        await self.store.update_item(material.id, quantity=line.quantity, total_amount=line.total)
        return line
