"""
Estimation error taxonomy.

Validation, exchange-rate and overflow errors are local to one edit and must
stop the write. Dangling links are raised by the resolver but the aggregator
downgrades them to warnings. Reconciliation errors never reach the user.
"""
from typing import Optional


class EstimationError(Exception):
    """Base class for every error raised by the quantity & cost engine."""


class ValidationError(EstimationError):
    """A field is missing, out of range, or inconsistent with the item kind."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class ItemNotFoundError(EstimationError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class MissingExchangeRateError(EstimationError):
    """
    Raised when a foreign-currency price has no positive rate to base.

    The write is rejected outright; a rate of 1 is never substituted.
    """

    def __init__(self, currency_type: str, rate: Optional[float] = None):
        self.currency_type = currency_type
        self.rate = rate
        super().__init__(
            f"No positive exchange rate configured for {currency_type} "
            f"(got {rate!r}). Set the tender rate before pricing in {currency_type}."
        )


class QuantityOverflowError(EstimationError, OverflowError):
    """Derived quantity exceeds what boq_items.quantity can store."""

    def __init__(self, quantity: float, ceiling: float):
        self.quantity = quantity
        self.ceiling = ceiling
        super().__init__(
            f"Derived quantity {quantity:,.4f} exceeds the storage ceiling "
            f"{ceiling:,.4f}. Reduce the coefficients or the work quantity."
        )


class DanglingLinkError(EstimationError):
    """A link points at a work or material id that no longer resolves."""

    def __init__(self, link_id: Optional[str], missing_id: Optional[str]):
        self.link_id = link_id
        self.missing_id = missing_id
        super().__init__(f"Link {link_id} references missing item {missing_id}")


class LinkExistsError(EstimationError):
    """The material already has a work link; delete it before linking again."""

    def __init__(self, material_id: str, link_id: Optional[str] = None):
        self.material_id = material_id
        self.link_id = link_id
        super().__init__(f"Material {material_id} is already linked (link {link_id})")


class ReconciliationError(EstimationError):
    """Background re-derivation of linked materials failed."""
