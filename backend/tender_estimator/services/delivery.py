"""DeliveryCostRule — delivery surcharge for material-like lines."""
from tender_estimator.config import (
    DELIVERY_AMOUNT,
    DELIVERY_INCLUDED,
    DELIVERY_NOT_INCLUDED,
    DELIVERY_PRICE_TYPES,
    DELIVERY_SURCHARGE_PCT,
)
from tender_estimator.models.boq_models import BOQItem
from tender_estimator.services.errors import ValidationError
from tender_estimator.services.quantity_resolver import require_finite


def validate_delivery(delivery_price_type: str, delivery_amount) -> None:
    if delivery_price_type not in DELIVERY_PRICE_TYPES:
        raise ValidationError(
            f"Unknown delivery price type {delivery_price_type!r}",
            field="delivery_price_type",
        )
    require_finite(delivery_amount, "delivery_amount")
    if delivery_price_type == DELIVERY_AMOUNT and delivery_amount is not None and delivery_amount < 0:
        raise ValidationError("Delivery amount cannot be negative", field="delivery_amount")


def delivery_cost(item: BOQItem, quantity: float, base_line_cost: float) -> float:
    """
    Incremental delivery cost for one line.

    ``base_line_cost`` is quantity × unit rate already normalized to base
    currency. ``delivery_amount`` is stored per unit, in base currency.
    """
    if not item.is_material_like:
        return 0.0

    kind = item.delivery_price_type or DELIVERY_INCLUDED
    validate_delivery(kind, item.delivery_amount)

    if kind == DELIVERY_NOT_INCLUDED:
        return base_line_cost * DELIVERY_SURCHARGE_PCT
    if kind == DELIVERY_AMOUNT:
        return float(item.delivery_amount or 0.0) * quantity
    return 0.0
