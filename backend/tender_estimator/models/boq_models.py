"""
Engine records exchanged with the persistence layer.

BOQItem and WorkMaterialLink are always separate entities; any folded
work+material row is a presentation concern built elsewhere.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Optional

from tender_estimator.config import (
    BASE_CURRENCY,
    DEFAULT_COEFFICIENT,
    DELIVERY_INCLUDED,
    KIND_MATERIAL,
    KIND_SUB_MATERIAL,
    KIND_SUB_WORK,
    KIND_WORK,
    MATERIAL_KINDS,
    MATERIAL_TYPE_MAIN,
    WORK_KINDS,
)


def is_work_like(kind: str) -> bool:
    return kind in WORK_KINDS


def is_material_like(kind: str) -> bool:
    return kind in MATERIAL_KINDS


@dataclass
class BOQItem:
    id: str
    position_id: str
    kind: str
    description: str = ""
    unit: str = ""
    quantity: float = 0.0
    base_quantity: Optional[float] = None
    unit_rate: float = 0.0
    currency_type: str = BASE_CURRENCY
    currency_rate: Optional[float] = None
    consumption_coefficient: float = DEFAULT_COEFFICIENT
    conversion_coefficient: float = DEFAULT_COEFFICIENT
    delivery_price_type: str = DELIVERY_INCLUDED
    delivery_amount: Optional[float] = None
    material_type: str = MATERIAL_TYPE_MAIN
    # Library references: exactly one per item, matching the kind family
    work_id: Optional[str] = None
    sub_work_id: Optional[str] = None
    material_id: Optional[str] = None
    sub_material_id: Optional[str] = None
    total_amount: float = 0.0
    commercial_cost: Optional[float] = None
    commercial_markup_coefficient: Optional[float] = None
    # Bumped on every write of a work-like item; keys background reconciliation
    generation: int = 0

    @property
    def is_work_like(self) -> bool:
        return is_work_like(self.kind)

    @property
    def is_material_like(self) -> bool:
        return is_material_like(self.kind)

    def library_ref(self) -> Optional[str]:
        return self.work_id or self.sub_work_id or self.material_id or self.sub_material_id

    def copy(self, **changes) -> "BOQItem":
        return replace(self, **changes)


@dataclass
class WorkMaterialLink:
    """
    Association between one material-like item and one work-like item.

    Exactly one work column and exactly one material column is populated,
    chosen by the two items' kinds.
    """
    id: str
    position_id: str
    work_boq_item_id: Optional[str] = None
    sub_work_boq_item_id: Optional[str] = None
    material_boq_item_id: Optional[str] = None
    sub_material_boq_item_id: Optional[str] = None
    material_quantity_per_work: float = DEFAULT_COEFFICIENT   # consumption copy
    usage_coefficient: float = DEFAULT_COEFFICIENT            # conversion copy
    notes: Optional[str] = None

    @property
    def work_item_id(self) -> Optional[str]:
        return self.work_boq_item_id or self.sub_work_boq_item_id

    @property
    def material_item_id(self) -> Optional[str]:
        return self.material_boq_item_id or self.sub_material_boq_item_id

    @property
    def work_kind(self) -> Optional[str]:
        if self.work_boq_item_id:
            return KIND_WORK
        if self.sub_work_boq_item_id:
            return KIND_SUB_WORK
        return None

    @property
    def material_kind(self) -> Optional[str]:
        if self.material_boq_item_id:
            return KIND_MATERIAL
        if self.sub_material_boq_item_id:
            return KIND_SUB_MATERIAL
        return None

    def copy(self, **changes) -> "WorkMaterialLink":
        return replace(self, **changes)


@dataclass
class Position:
    """Client position. Its total is derived from items, never stored."""
    id: str
    tender_id: str
    title: str = ""
    position_number: Optional[int] = None
    items: List[BOQItem] = field(default_factory=list)
    links: List[WorkMaterialLink] = field(default_factory=list)


@dataclass
class MarkupPercentages:
    """
    Per-tender markup percentages (values are percents, e.g. 5.0 == 5 %).

    Defaults are zero: no percentage is assumed when a tender has none set.
    """
    works_16_markup: float = 0.0
    mechanization_service: float = 0.0
    mbp_gsm: float = 0.0
    warranty_period: float = 0.0
    works_cost_growth: float = 0.0
    materials_cost_growth: float = 0.0
    subcontract_works_cost_growth: float = 0.0
    subcontract_materials_cost_growth: float = 0.0
    contingency_costs: float = 0.0
    overhead_own_forces: float = 0.0
    overhead_subcontract: float = 0.0
    general_costs_without_subcontract: float = 0.0
    profit_own_forces: float = 0.0
    profit_subcontract: float = 0.0

    @classmethod
    def from_mapping(cls, data: Dict[str, object]) -> "MarkupPercentages":
        names = {f.name for f in fields(cls)}
        return cls(**{k: float(v or 0.0) for k, v in data.items() if k in names})
