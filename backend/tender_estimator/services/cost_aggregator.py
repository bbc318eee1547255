"""
CostAggregator — position- and tender-level totals.

Every total is re-derived from current items and link state through
LineCostCalculator; stored ``total_amount`` values are never summed. Header
totals, footer totals and commercial breakdowns all go through
``position_line_costs`` so they cannot disagree.

A dangling link (work deleted, or link column no longer matching the work's
kind) is logged and the material is priced as unlinked; the rest of the
position still renders.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tender_estimator.config import WORK_KINDS
from tender_estimator.models.boq_models import BOQItem, Position, WorkMaterialLink
from tender_estimator.services.errors import DanglingLinkError
from tender_estimator.services.line_cost import LineCost, calculate_line_cost
from tender_estimator.services.markup_allocator import (
    MarkupPolicy,
    allocate_commercial_cost,
    classify_item,
    markup_coefficient,
)

logger = logging.getLogger("tender-aggregator")


class PositionIndex:
    """Lookup of items by id and links by material id for one position."""

    def __init__(self, items: Iterable[BOQItem], links: Iterable[WorkMaterialLink]):
        self.items: Dict[str, BOQItem] = {item.id: item for item in items}
        self.link_by_material: Dict[str, WorkMaterialLink] = {}
        for link in links:
            material_id = link.material_item_id
            if material_id is None:
                continue
            if material_id in self.link_by_material:
                logger.warning(
                    "Material %s has more than one link; keeping %s, ignoring %s",
                    material_id, self.link_by_material[material_id].id, link.id,
                    extra={"item_id": material_id, "position_id": link.position_id},
                )
                continue
            self.link_by_material[material_id] = link

    def link_for(self, item: BOQItem) -> Optional[WorkMaterialLink]:
        if not item.is_material_like:
            return None
        return self.link_by_material.get(item.id)

    def resolve_linked_work(self, item: BOQItem) -> Tuple[Optional[WorkMaterialLink], Optional[BOQItem]]:
        """
        (link, work) for a material, (None, None) when unlinked.

        Raises DanglingLinkError if the link's work is missing or its kind no
        longer matches the populated link column.
        """
        link = self.link_for(item)
        if link is None:
            return None, None
        work = self.items.get(link.work_item_id or "")
        if work is None or work.kind != link.work_kind:
            raise DanglingLinkError(link.id, link.work_item_id)
        return link, work


@dataclass
class PositionSummary:
    position_id: Optional[str]
    lines: List[LineCost] = field(default_factory=list)
    total: float = 0.0
    works_total: float = 0.0
    materials_total: float = 0.0
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def position_line_costs(
    items: Iterable[BOQItem], links: Iterable[WorkMaterialLink]
) -> Tuple[List[LineCost], List[str]]:
    items = list(items)
    index = PositionIndex(items, links)
    lines: List[LineCost] = []
    warnings: List[str] = []
    for item in items:
        try:
            link, work = index.resolve_linked_work(item)
        except DanglingLinkError as e:
            logger.warning(
                "Dangling link on %s, pricing as unlinked: %s", item.id, e,
                extra={"item_id": item.id, "position_id": item.position_id},
            )
            warnings.append(str(e))
            link, work = None, None
        lines.append(calculate_line_cost(item, link, work))
    return lines, warnings


def position_total(items: Iterable[BOQItem], links: Iterable[WorkMaterialLink] = ()) -> float:
    lines, _ = position_line_costs(items, links)
    return sum(line.total for line in lines)


def summarise_position(
    items: Iterable[BOQItem],
    links: Iterable[WorkMaterialLink] = (),
    position_id: Optional[str] = None,
) -> PositionSummary:
    lines, warnings = position_line_costs(items, links)
    summary = PositionSummary(position_id=position_id, lines=lines, warnings=warnings)
    for line in lines:
        summary.total += line.total
        if line.kind in WORK_KINDS:
            summary.works_total += line.total
        else:
            summary.materials_total += line.total
    return summary


def tender_total(positions: Iterable[Position]) -> Dict[str, Any]:
    """Sum of re-derived position totals for a tender."""
    per_position = []
    grand_total = 0.0
    for position in positions:
        summary = summarise_position(position.items, position.links, position.id)
        grand_total += summary.total
        per_position.append({
            "position_id": position.id,
            "title": position.title,
            "total": summary.total,
            "warnings": summary.warnings,
        })
    return {"positions": per_position, "total": grand_total}


# ── Commercial ─────────────────────────────────────────────────────────────────

@dataclass
class CommercialLine:
    item_id: str
    kind: str
    category: str
    base_cost: float
    commercial_cost: float
    work_markup: float
    markup_coefficient: Optional[float]


@dataclass
class CommercialSummary:
    position_id: Optional[str]
    lines: List[CommercialLine] = field(default_factory=list)
    base_total: float = 0.0
    works_total: float = 0.0
    materials_total: float = 0.0
    warnings: List[str] = field(default_factory=list)

    @property
    def total(self) -> float:
        return self.works_total + self.materials_total

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total"] = self.total
        return data


def commercial_summary(
    items: Iterable[BOQItem],
    links: Iterable[WorkMaterialLink],
    policy: MarkupPolicy,
    position_id: Optional[str] = None,
) -> CommercialSummary:
    """
    Commercial cost per line and the works/materials split of the position.

    Works receive their own commercial cost plus every markup folded out of
    materials; materials keep only what the policy leaves on them.
    """
    items = list(items)
    by_id = {item.id: item for item in items}
    lines, warnings = position_line_costs(items, links)
    summary = CommercialSummary(position_id=position_id, warnings=warnings)

    for line in lines:
        item = by_id[line.item_id]
        category = classify_item(item)
        allocation = allocate_commercial_cost(line.total, category, policy)
        summary.lines.append(CommercialLine(
            item_id=item.id,
            kind=item.kind,
            category=category,
            base_cost=line.total,
            commercial_cost=allocation.commercial_cost,
            work_markup=allocation.work_markup,
            markup_coefficient=markup_coefficient(allocation.total, line.total),
        ))
        summary.base_total += line.total
        if item.is_work_like:
            summary.works_total += allocation.commercial_cost
        else:
            summary.materials_total += allocation.commercial_cost
            summary.works_total += allocation.work_markup
    return summary
