"""
QuantityResolver — effective quantity of a BOQ line.

  work-like            → user-entered quantity, no derivation
  material, linked     → work.quantity × consumption × conversion
  material, unlinked   → base_quantity × consumption (conversion fixed at 1)

The linked work must be passed in freshly read: editing a work retroactively
changes every dependent material.
"""
import logging
import math
from typing import Optional, Tuple

from tender_estimator.config import (
    CONSUMPTION_COEFFICIENT_FLOOR,
    CONVERSION_COEFFICIENT_FLOOR,
    DEFAULT_COEFFICIENT,
    MAX_STORED_QUANTITY,
)
from tender_estimator.models.boq_models import BOQItem, WorkMaterialLink
from tender_estimator.services.errors import (
    DanglingLinkError,
    QuantityOverflowError,
    ValidationError,
)

logger = logging.getLogger("tender-quantity")


def require_finite(value: Optional[float], name: str) -> None:
    if value is not None and not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number (got {value})", field=name)


def validate_coefficients(consumption: Optional[float], conversion: Optional[float]) -> None:
    require_finite(consumption, "consumption_coefficient")
    require_finite(conversion, "conversion_coefficient")
    if consumption is not None and consumption < CONSUMPTION_COEFFICIENT_FLOOR:
        raise ValidationError(
            f"Consumption coefficient must be >= {CONSUMPTION_COEFFICIENT_FLOOR} (got {consumption})",
            field="consumption_coefficient",
        )
    if conversion is not None and conversion < CONVERSION_COEFFICIENT_FLOOR:
        raise ValidationError(
            f"Conversion coefficient must be >= {CONVERSION_COEFFICIENT_FLOOR} (got {conversion})",
            field="conversion_coefficient",
        )


def effective_coefficients(
    item: BOQItem, link: Optional[WorkMaterialLink] = None
) -> Tuple[float, float]:
    """
    (consumption, conversion) for a material.

    The item's own value wins, then the link's copy, then 1. A zero or null
    value counts as "not set".
    """
    consumption = item.consumption_coefficient or (
        link.material_quantity_per_work if link else None
    ) or DEFAULT_COEFFICIENT
    conversion = item.conversion_coefficient or (
        link.usage_coefficient if link else None
    ) or DEFAULT_COEFFICIENT
    return float(consumption), float(conversion)


def check_ceiling(quantity: float) -> float:
    if math.isnan(quantity):
        raise ValidationError("Quantity is not a number", field="quantity")
    if quantity > MAX_STORED_QUANTITY:
        raise QuantityOverflowError(quantity, MAX_STORED_QUANTITY)
    return quantity


def resolve_linked_quantity(
    work_quantity: float, consumption: float, conversion: float
) -> float:
    validate_coefficients(consumption, conversion)
    return check_ceiling(float(work_quantity or 0.0) * consumption * conversion)


def resolve_unlinked_quantity(base_quantity: float, consumption: float) -> float:
    validate_coefficients(consumption, None)
    return check_ceiling(float(base_quantity or 0.0) * consumption)


def resolve_quantity(
    item: BOQItem,
    link: Optional[WorkMaterialLink] = None,
    linked_work: Optional[BOQItem] = None,
) -> float:
    """
    Effective quantity of ``item``.

    Raises DanglingLinkError when ``link`` is given but its work did not
    resolve or no longer has the kind the link was shaped for, and
    QuantityOverflowError when the result would not fit in storage.
    """
    if item.is_work_like:
        return check_ceiling(float(item.quantity or 0.0))

    if link is not None:
        if (
            linked_work is None
            or linked_work.id != link.work_item_id
            or linked_work.kind != link.work_kind
        ):
            raise DanglingLinkError(link.id, link.work_item_id)
        consumption, conversion = effective_coefficients(item, link)
        quantity = resolve_linked_quantity(linked_work.quantity, consumption, conversion)
        logger.debug(
            "linked quantity %s = %s × %s × %s",
            item.id, linked_work.quantity, consumption, conversion,
            extra={"item_id": item.id, "position_id": item.position_id},
        )
        return quantity

    if item.base_quantity is None:
        # Legacy rows written before base_quantity existed carry only the
        # already-adjusted quantity
        return check_ceiling(float(item.quantity or 0.0))
    consumption = float(item.consumption_coefficient or DEFAULT_COEFFICIENT)
    return resolve_unlinked_quantity(item.base_quantity, consumption)
