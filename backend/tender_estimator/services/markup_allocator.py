"""
MarkupAllocator — splits a line's base cost into client-facing commercial cost.

The engine's obligation is to call the policy with the right category and a
currency-normalized, delivery-inclusive base cost. The percentages themselves
live in the tender's markup record; nothing here assumes a value for them.

Categories:
  WORK                    own-forces work, full markup chain
  SUB_WORK                subcontracted work
  MAIN_MATERIAL           material keeps its raw cost, markup moves to works
  AUXILIARY_MATERIAL      whole commercial cost moves to works, material shows 0
  MAIN_SUB_MATERIAL       subcontract material keeps raw cost, markup to sub-works
  AUXILIARY_SUB_MATERIAL  whole commercial cost moves to sub-works
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from tender_estimator.config import (
    KIND_MATERIAL,
    KIND_SUB_MATERIAL,
    KIND_SUB_WORK,
    KIND_WORK,
    MATERIAL_TYPE_AUXILIARY,
)
from tender_estimator.models.boq_models import BOQItem, MarkupPercentages
from tender_estimator.services.errors import ValidationError

logger = logging.getLogger("tender-markup")

WORK = "work"
SUB_WORK = "sub_work"
MAIN_MATERIAL = "main_material"
AUXILIARY_MATERIAL = "auxiliary_material"
MAIN_SUB_MATERIAL = "main_sub_material"
AUXILIARY_SUB_MATERIAL = "auxiliary_sub_material"

CATEGORIES: frozenset[str] = frozenset({
    WORK, SUB_WORK, MAIN_MATERIAL, AUXILIARY_MATERIAL,
    MAIN_SUB_MATERIAL, AUXILIARY_SUB_MATERIAL,
})

# Growth step of the sub-material chain; tenders price it at the works rate
SUB_MATERIAL_GROWTH_FIELDS: frozenset[str] = frozenset({
    "subcontract_works_cost_growth", "subcontract_materials_cost_growth",
})


@dataclass
class CommercialAllocation:
    commercial_cost: float      # stays on this line
    work_markup: float = 0.0    # folded into the works' commercial total

    @property
    def total(self) -> float:
        return self.commercial_cost + self.work_markup


def classify_item(item: BOQItem) -> str:
    """Markup category of an item, from its kind and material role."""
    auxiliary = item.material_type == MATERIAL_TYPE_AUXILIARY
    if item.kind == KIND_WORK:
        return WORK
    if item.kind == KIND_SUB_WORK:
        return SUB_WORK
    if item.kind == KIND_MATERIAL:
        return AUXILIARY_MATERIAL if auxiliary else MAIN_MATERIAL
    if item.kind == KIND_SUB_MATERIAL:
        return AUXILIARY_SUB_MATERIAL if auxiliary else MAIN_SUB_MATERIAL
    raise ValidationError(f"Unknown item kind {item.kind!r}", field="kind")


class MarkupPolicy(ABC):
    """Pluggable markup policy: (base cost, category) → allocation."""

    @abstractmethod
    def allocate(self, base_cost: float, category: str) -> CommercialAllocation:
        ...


class PercentageMarkupPolicy(MarkupPolicy):
    """
    Chained-percentage markup over a tender's MarkupPercentages record.

    Every factor reads ``1 + pct / 100``; with an all-zero record each chain
    collapses to the base cost, i.e. no markup.
    """

    def __init__(
        self,
        percentages: Optional[MarkupPercentages] = None,
        sub_material_growth_field: str = "subcontract_works_cost_growth",
    ):
        if percentages is None:
            logger.warning("No markup percentages configured; commercial cost equals base cost.")
            percentages = MarkupPercentages()
        if sub_material_growth_field not in SUB_MATERIAL_GROWTH_FIELDS:
            raise ValidationError(
                f"Unknown sub-material growth field {sub_material_growth_field!r}",
                field="sub_material_growth_field",
            )
        self.p = percentages
        self.sub_material_growth_field = sub_material_growth_field

    @staticmethod
    def _f(pct: float) -> float:
        return 1.0 + (pct or 0.0) / 100.0

    # ── Own forces ─────────────────────────────────────────────────────────────

    def work_commercial_cost(self, base_cost: float) -> float:
        p = self.p
        mechanization = base_cost * (p.mechanization_service / 100.0)
        mbp_gsm = base_cost * (p.mbp_gsm / 100.0)
        warranty = base_cost * (p.warranty_period / 100.0)

        work_16 = (base_cost + mechanization) * self._f(p.works_16_markup)
        growth = (work_16 + mbp_gsm) * self._f(p.works_cost_growth)
        contingency = (work_16 + mbp_gsm) * self._f(p.contingency_costs)
        overhead = (contingency + growth - work_16 - mbp_gsm) * self._f(p.overhead_own_forces)
        general = overhead * self._f(p.general_costs_without_subcontract)
        profit = general * self._f(p.profit_own_forces)
        return profit + warranty

    def material_commercial_cost(self, base_cost: float) -> float:
        p = self.p
        growth = base_cost * self._f(p.materials_cost_growth)
        contingency = base_cost * self._f(p.contingency_costs)
        overhead = (contingency + growth - base_cost) * self._f(p.overhead_own_forces)
        general = overhead * self._f(p.general_costs_without_subcontract)
        return general * self._f(p.profit_own_forces)

    # ── Subcontract ────────────────────────────────────────────────────────────

    def sub_work_commercial_cost(self, base_cost: float) -> float:
        p = self.p
        growth = base_cost * self._f(p.subcontract_works_cost_growth)
        overhead = growth * self._f(p.overhead_subcontract)
        return overhead * self._f(p.profit_subcontract)

    def sub_material_commercial_cost(self, base_cost: float) -> float:
        p = self.p
        growth = base_cost * self._f(getattr(p, self.sub_material_growth_field))
        overhead = growth * self._f(p.overhead_subcontract)
        return overhead * self._f(p.profit_subcontract)

    def allocate(self, base_cost: float, category: str) -> CommercialAllocation:
        if category == WORK:
            return CommercialAllocation(self.work_commercial_cost(base_cost))
        if category == SUB_WORK:
            return CommercialAllocation(self.sub_work_commercial_cost(base_cost))
        if category == MAIN_MATERIAL:
            full = self.material_commercial_cost(base_cost)
            return CommercialAllocation(base_cost, full - base_cost)
        if category == AUXILIARY_MATERIAL:
            return CommercialAllocation(0.0, self.material_commercial_cost(base_cost))
        if category == MAIN_SUB_MATERIAL:
            full = self.sub_material_commercial_cost(base_cost)
            return CommercialAllocation(base_cost, full - base_cost)
        if category == AUXILIARY_SUB_MATERIAL:
            return CommercialAllocation(0.0, self.sub_material_commercial_cost(base_cost))
        raise ValidationError(f"Unknown markup category {category!r}", field="category")


def allocate_commercial_cost(
    line_total: float, category: str, policy: MarkupPolicy
) -> CommercialAllocation:
    """Call ``policy`` for one line after checking the category."""
    if category not in CATEGORIES:
        raise ValidationError(f"Unknown markup category {category!r}", field="category")
    return policy.allocate(line_total, category)


def markup_coefficient(commercial_total: float, base_cost: float) -> Optional[float]:
    if base_cost <= 0:
        return None
    return commercial_total / base_cost
