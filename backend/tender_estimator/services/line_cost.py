"""
LineCostCalculator — the one formula for a BOQ line's total.

    total = quantity × to_base(unit_rate, currency_type, currency_rate) + delivery

Used both to persist a line's stored total and to recompute it live; no other
code path multiplies quantities by rates.
"""
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from tender_estimator.models.boq_models import BOQItem, WorkMaterialLink
from tender_estimator.services.currency import to_base_currency
from tender_estimator.services.delivery import delivery_cost
from tender_estimator.services.quantity_resolver import resolve_quantity


@dataclass
class LineCost:
    item_id: str
    kind: str
    quantity: float
    unit_rate_base: float
    base_cost: float        # quantity × unit rate in base currency
    delivery_cost: float
    total: float            # base_cost + delivery_cost
    is_linked: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_line_cost(
    item: BOQItem,
    link: Optional[WorkMaterialLink] = None,
    linked_work: Optional[BOQItem] = None,
) -> LineCost:
    quantity = resolve_quantity(item, link, linked_work)
    unit_rate_base = to_base_currency(item.unit_rate or 0.0, item.currency_type, item.currency_rate)
    base_cost = quantity * unit_rate_base
    delivery = delivery_cost(item, quantity, base_cost)
    return LineCost(
        item_id=item.id,
        kind=item.kind,
        quantity=quantity,
        unit_rate_base=unit_rate_base,
        base_cost=base_cost,
        delivery_cost=delivery,
        total=base_cost + delivery,
        is_linked=link is not None,
    )


def line_total(
    item: BOQItem,
    link: Optional[WorkMaterialLink] = None,
    linked_work: Optional[BOQItem] = None,
) -> float:
    return calculate_line_cost(item, link, linked_work).total
