"""
BOQEditService — the write path for BOQ lines.

Order of operations for every edit:
  1. validate the request and snapshot the currency rate (may abort)
  2. pre-compute the resulting quantities so overflow aborts before any write
  3. mutate the link graph (if the association or a kind changed)
  4. re-read link and work state, re-derive quantity and total, persist

Work edits also hand back a ReconciliationRequest; the caller queues it once
its transaction has committed.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tender_estimator.config import (
    BASE_CURRENCY,
    DEFAULT_COEFFICIENT,
    DELIVERY_INCLUDED,
    ITEM_KINDS,
    KIND_MATERIAL,
    KIND_SUB_MATERIAL,
    KIND_SUB_WORK,
    KIND_WORK,
    MATERIAL_TYPES,
    MATERIAL_TYPE_MAIN,
)
from tender_estimator.models.boq_models import BOQItem, is_material_like, is_work_like
from tender_estimator.services.boq_store import BOQStore, gen_uuid
from tender_estimator.services.currency import CurrencyRateTable, currency_stats, snapshot_rate
from tender_estimator.services.delivery import validate_delivery
from tender_estimator.services.errors import ItemNotFoundError, ValidationError
from tender_estimator.services.line_cost import LineCost, calculate_line_cost
from tender_estimator.services.link_graph import LinkGraph
from tender_estimator.services.quantity_resolver import (
    check_ceiling,
    effective_coefficients,
    require_finite,
    resolve_linked_quantity,
    validate_coefficients,
)
from tender_estimator.services.reconciliation import ReconciliationRequest

logger = logging.getLogger("tender-boq-edit")

LIBRARY_REF_COLUMNS = {
    KIND_WORK: "work_id",
    KIND_SUB_WORK: "sub_work_id",
    KIND_MATERIAL: "material_id",
    KIND_SUB_MATERIAL: "sub_material_id",
}


@dataclass
class ItemDraft:
    kind: str
    description: str = ""
    unit: str = ""
    quantity: float = 0.0
    unit_rate: float = 0.0
    currency_type: str = BASE_CURRENCY
    consumption_coefficient: float = DEFAULT_COEFFICIENT
    conversion_coefficient: float = DEFAULT_COEFFICIENT
    delivery_price_type: str = DELIVERY_INCLUDED
    delivery_amount: Optional[float] = None
    material_type: str = MATERIAL_TYPE_MAIN
    work_id: Optional[str] = None
    sub_work_id: Optional[str] = None
    material_id: Optional[str] = None
    sub_material_id: Optional[str] = None
    linked_work_item_id: Optional[str] = None


@dataclass
class MaterialEdit:
    """
    Full state of the material edit form.

    ``linked_work_item_id`` is the desired association (None unlinks);
    ``quantity`` is what the user typed and only counts while unlinked.
    """
    linked_work_item_id: Optional[str] = None
    quantity: Optional[float] = None
    consumption_coefficient: Optional[float] = None
    conversion_coefficient: Optional[float] = None
    unit_rate: Optional[float] = None
    currency_type: Optional[str] = None
    delivery_price_type: Optional[str] = None
    delivery_amount: Optional[float] = None
    material_type: Optional[str] = None
    kind: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None


@dataclass
class WorkEdit:
    quantity: Optional[float] = None
    unit_rate: Optional[float] = None
    currency_type: Optional[str] = None
    kind: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None


@dataclass
class EditOutcome:
    item: BOQItem
    line: LineCost
    reconciliation: Optional[ReconciliationRequest] = None
    relinked: bool = False
    warnings: List[str] = field(default_factory=list)


def validate_library_refs(item: BOQItem) -> None:
    """Exactly one library reference, from the item's kind family."""
    work_refs = [r for r in (item.work_id, item.sub_work_id) if r]
    material_refs = [r for r in (item.material_id, item.sub_material_id) if r]
    if item.is_work_like and (len(work_refs) != 1 or material_refs):
        raise ValidationError(
            "A work line needs exactly one of work_id / sub_work_id", field="work_id",
        )
    if item.is_material_like and (len(material_refs) != 1 or work_refs):
        raise ValidationError(
            "A material line needs exactly one of material_id / sub_material_id", field="material_id",
        )


def moved_library_ref(item: BOQItem, new_kind: str) -> Dict[str, Optional[str]]:
    """Field changes that carry the library reference over to ``new_kind``'s column."""
    if new_kind == item.kind:
        return {}
    ref = item.library_ref()
    changes = {"work_id": None, "sub_work_id": None, "material_id": None, "sub_material_id": None}
    changes[LIBRARY_REF_COLUMNS[new_kind]] = ref
    return changes


def _check_amount(value: Optional[float], name: str = "quantity") -> None:
    require_finite(value, name)
    if value is not None and value < 0:
        raise ValidationError(f"{name} cannot be negative", field=name)


class BOQEditService:
    def __init__(self, store: BOQStore):
        self.store = store
        self.links = LinkGraph(store)

    # ── Helpers ────────────────────────────────────────────────────────────────

    async def _require_item(self, item_id: str) -> BOQItem:
        item = await self.store.get_item(item_id)
        if item is None:
            raise ItemNotFoundError("BOQ item", item_id)
        return item

    async def _rate_table_for(self, position_id: str) -> Optional[CurrencyRateTable]:
        position = await self.store.get_position(position_id)
        if position is None:
            raise ItemNotFoundError("Position", position_id)
        return await self.store.get_rate_table(position.tender_id)

    async def _target_work(self, material: BOQItem, work_item_id: Optional[str]) -> Optional[BOQItem]:
        if not work_item_id:
            return None
        work = await self._require_item(work_item_id)
        if not work.is_work_like:
            raise ValidationError(f"Item {work_item_id} is not a work", field="linked_work_item_id")
        if work.position_id != material.position_id:
            raise ValidationError(
                "A material can only be linked to a work in the same position",
                field="linked_work_item_id",
            )
        return work

    # ── Add ────────────────────────────────────────────────────────────────────

    async def add_item(self, position_id: str, draft: ItemDraft) -> EditOutcome:
        if draft.kind not in ITEM_KINDS:
            raise ValidationError(f"Unknown item kind {draft.kind!r}", field="kind")
        _check_amount(draft.quantity)
        _check_amount(draft.unit_rate, "unit_rate")
        if draft.material_type not in MATERIAL_TYPES:
            raise ValidationError(f"Unknown material type {draft.material_type!r}", field="material_type")

        rate = snapshot_rate(draft.currency_type, await self._rate_table_for(position_id))
        material_like = is_material_like(draft.kind)

        item = BOQItem(
            id=gen_uuid(),
            position_id=position_id,
            kind=draft.kind,
            description=draft.description,
            unit=draft.unit,
            quantity=draft.quantity,
            unit_rate=draft.unit_rate,
            currency_type=draft.currency_type,
            currency_rate=rate,
            work_id=draft.work_id,
            sub_work_id=draft.sub_work_id,
            material_id=draft.material_id,
            sub_material_id=draft.sub_material_id,
        )
        if material_like:
            validate_coefficients(draft.consumption_coefficient, draft.conversion_coefficient)
            validate_delivery(draft.delivery_price_type, draft.delivery_amount)
            item.consumption_coefficient = draft.consumption_coefficient
            item.delivery_price_type = draft.delivery_price_type
            item.delivery_amount = draft.delivery_amount
            item.material_type = draft.material_type
        validate_library_refs(item)

        work = None
        if material_like and draft.linked_work_item_id:
            work = await self._target_work(item, draft.linked_work_item_id)
            item.conversion_coefficient = draft.conversion_coefficient
            resolve_linked_quantity(work.quantity, *effective_coefficients(item))
        elif material_like:
            item.base_quantity = draft.quantity
        elif draft.linked_work_item_id:
            raise ValidationError("Only materials can be linked to a work", field="linked_work_item_id")

        # Provisional values; the final ones are derived after the link exists
        line = calculate_line_cost(item)
        item.quantity, item.total_amount = line.quantity, line.total
        created = await self.store.create_item(item)

        if work is not None:
            await self.links.create_link(
                work, created, draft.consumption_coefficient, draft.conversion_coefficient,
            )
            line = await self.links.refresh_material(created.id)

        logger.info(
            "Added %s %s", created.kind, created.id,
            extra={"item_id": created.id, "position_id": position_id},
        )
        return EditOutcome(item=await self._require_item(created.id), line=line)

    # ── Materials ──────────────────────────────────────────────────────────────

    async def edit_material(self, item_id: str, edit: MaterialEdit) -> EditOutcome:
        item = await self._require_item(item_id)
        if not item.is_material_like:
            raise ValidationError(f"Item {item_id} is not a material", field="kind")

        new_kind = edit.kind or item.kind
        if not is_material_like(new_kind):
            raise ValidationError(
                f"A material can only become material or sub_material, not {new_kind!r}", field="kind",
            )
        material_type = edit.material_type or item.material_type
        if material_type not in MATERIAL_TYPES:
            raise ValidationError(f"Unknown material type {material_type!r}", field="material_type")

        consumption = edit.consumption_coefficient or item.consumption_coefficient or DEFAULT_COEFFICIENT
        conversion = edit.conversion_coefficient or item.conversion_coefficient or DEFAULT_COEFFICIENT
        validate_coefficients(consumption, conversion)
        _check_amount(edit.quantity)
        _check_amount(edit.unit_rate, "unit_rate")

        currency_type = edit.currency_type or item.currency_type
        rate = snapshot_rate(currency_type, await self._rate_table_for(item.position_id))
        delivery_type = edit.delivery_price_type or item.delivery_price_type
        delivery_amount = edit.delivery_amount if edit.delivery_amount is not None else item.delivery_amount
        validate_delivery(delivery_type, delivery_amount)

        work = await self._target_work(item, edit.linked_work_item_id)
        existing = await self.links.link_for_material(item.position_id, item.id)

        if work is not None:
            base_quantity = None
            resolve_linked_quantity(work.quantity, consumption, conversion)
        else:
            conversion = DEFAULT_COEFFICIENT
            if edit.quantity is not None:
                base_quantity = edit.quantity
            elif existing is not None:
                # Unlinking: the last derived quantity becomes the raw input
                base_quantity = item.quantity
            else:
                base_quantity = item.base_quantity if item.base_quantity is not None else item.quantity
            check_ceiling(base_quantity * consumption)

        # The kind decides the link's shape, so it is written before the link
        kind_changed = new_kind != item.kind
        if kind_changed:
            item = await self.store.update_item(item.id, kind=new_kind, **moved_library_ref(item, new_kind))

        relinked = False
        if existing is not None and (
            work is None
            or existing.work_item_id != work.id
            or existing.work_kind != work.kind
            or kind_changed
        ):
            await self.links.delete_link(existing.id)
            existing = None
            relinked = True
        if work is not None and existing is None:
            await self.links.create_link(work, item, consumption, conversion)
            relinked = True
        elif work is not None and (
            existing.material_quantity_per_work != consumption
            or existing.usage_coefficient != conversion
        ):
            await self.store.update_link(
                existing.id, material_quantity_per_work=consumption, usage_coefficient=conversion,
            )

        updated = await self.store.update_item(
            item.id,
            description=edit.description if edit.description is not None else item.description,
            unit=edit.unit if edit.unit is not None else item.unit,
            unit_rate=edit.unit_rate if edit.unit_rate is not None else item.unit_rate,
            currency_type=currency_type,
            currency_rate=rate,
            consumption_coefficient=consumption,
            conversion_coefficient=conversion,
            delivery_price_type=delivery_type,
            delivery_amount=delivery_amount,
            material_type=material_type,
            base_quantity=base_quantity,
        )
        line = await self.links.refresh_material(updated.id)
        logger.info(
            "Saved material %s (linked=%s, relinked=%s, qty=%s)",
            item.id, line.is_linked, relinked, line.quantity,
            extra={"item_id": item.id, "position_id": item.position_id},
        )
        return EditOutcome(item=await self._require_item(item.id), line=line, relinked=relinked)

    # ── Works ──────────────────────────────────────────────────────────────────

    async def edit_work(self, item_id: str, edit: WorkEdit) -> EditOutcome:
        item = await self._require_item(item_id)
        if not item.is_work_like:
            raise ValidationError(f"Item {item_id} is not a work", field="kind")

        new_kind = edit.kind or item.kind
        if not is_work_like(new_kind):
            raise ValidationError(
                f"A work can only become work or sub_work, not {new_kind!r}", field="kind",
            )
        quantity = edit.quantity if edit.quantity is not None else item.quantity
        _check_amount(quantity)
        _check_amount(edit.unit_rate, "unit_rate")
        check_ceiling(quantity)

        currency_type = edit.currency_type or item.currency_type
        rate = snapshot_rate(currency_type, await self._rate_table_for(item.position_id))

        # Every dependent material must still fit once the new quantity lands
        dependents = await self.links.links_for_work(item.position_id, item.id)
        for link in dependents:
            material = await self.store.get_item(link.material_item_id)
            if material is None:
                continue
            resolve_linked_quantity(quantity, *effective_coefficients(material, link))

        generation = (item.generation or 0) + 1
        updated = await self.store.update_item(
            item.id,
            kind=new_kind,
            description=edit.description if edit.description is not None else item.description,
            unit=edit.unit if edit.unit is not None else item.unit,
            quantity=quantity,
            **moved_library_ref(item, new_kind),
            unit_rate=edit.unit_rate if edit.unit_rate is not None else item.unit_rate,
            currency_type=currency_type,
            currency_rate=rate,
            generation=generation,
        )
        if new_kind != item.kind:
            await self.links.reparent_work_links(updated, item.kind)

        line = calculate_line_cost(updated)
        updated = await self.store.update_item(updated.id, total_amount=line.total)

        request = None
        if dependents:
            request = ReconciliationRequest(item.position_id, item.id, generation)
        logger.info(
            "Saved work %s@%s (%d linked material(s))", item.id, generation, len(dependents),
            extra={"item_id": item.id, "position_id": item.position_id},
        )
        return EditOutcome(item=updated, line=line, reconciliation=request)

    # ── Kind changes ───────────────────────────────────────────────────────────

    async def reclassify(self, item_id: str, new_kind: str) -> EditOutcome:
        """
        Change work ↔ sub_work or material ↔ sub_material and recreate every
        link whose shape depends on it.
        """
        item = await self._require_item(item_id)
        same_family = (
            (item.is_work_like and is_work_like(new_kind))
            or (item.is_material_like and is_material_like(new_kind))
        )
        if not same_family:
            raise ValidationError(f"Cannot reclassify {item.kind} as {new_kind!r}", field="kind")
        if new_kind == item.kind:
            line = calculate_line_cost(item) if item.is_work_like else await self.links.refresh_material(item.id)
            return EditOutcome(item=item, line=line)

        if item.is_work_like:
            generation = (item.generation or 0) + 1
            updated = await self.store.update_item(
                item.id, kind=new_kind, generation=generation, **moved_library_ref(item, new_kind),
            )
            relinked = await self.links.reparent_work_links(updated, item.kind)
            request = ReconciliationRequest(item.position_id, item.id, generation) if relinked else None
            return EditOutcome(
                item=updated, line=calculate_line_cost(updated),
                reconciliation=request, relinked=bool(relinked),
            )

        updated = await self.store.update_item(item.id, kind=new_kind, **moved_library_ref(item, new_kind))
        link = await self.links.reparent_material_link(updated)
        line = await self.links.refresh_material(updated.id)
        return EditOutcome(item=await self._require_item(item.id), line=line, relinked=link is not None)

    # ── Currency ───────────────────────────────────────────────────────────────

    async def refresh_currency_rates(self, tender_id: str) -> Dict[str, Any]:
        """
        Re-snapshot ``currency_rate`` on every foreign-currency line of a
        tender from its current rate table and recompute stored totals.

        All rates are resolved before anything is written.
        """
        rate_table = await self.store.get_rate_table(tender_id)
        positions = await self.store.list_positions(tender_id)

        planned = []
        for position in positions:
            for item in position.items:
                if item.currency_type == BASE_CURRENCY:
                    continue
                planned.append((position, item, rate_table.rate_for(item.currency_type)))

        updated_by_currency: Dict[str, int] = {}
        for position, item, rate in planned:
            await self.store.update_item(item.id, currency_rate=rate)
            updated_by_currency[item.currency_type] = updated_by_currency.get(item.currency_type, 0) + 1

        for position in positions:
            for item in await self.store.list_items(position.id):
                if item.is_material_like:
                    await self.links.refresh_material(item.id)
                else:
                    await self.store.update_item(item.id, total_amount=calculate_line_cost(item).total)

        logger.info(
            "Refreshed currency rates on %d item(s)", len(planned), extra={"tender_id": tender_id},
        )
        return {
            "tender_id": tender_id,
            "updated_items_count": len(planned),
            "updated_by_currency": updated_by_currency,
            "rates": dict(rate_table.rates),
        }

    async def currency_stats(self, tender_id: str) -> Dict[str, Any]:
        items = [item for position in await self.store.list_positions(tender_id) for item in position.items]
        return {"tender_id": tender_id, **currency_stats(items)}
