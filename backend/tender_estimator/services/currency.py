"""
CurrencyNormalizer — converts per-unit prices into the tender's base currency.

Rates are looked up from the tender's CurrencyRateTable at WRITE time only and
snapshotted onto the item as ``currency_rate``. Read-time conversion uses the
snapshot and never consults the table again.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from tender_estimator.config import (
    BASE_CURRENCY,
    FOREIGN_CURRENCIES,
    SUPPORTED_CURRENCIES,
    TENDER_RATE_FIELDS,
)
from tender_estimator.services.errors import MissingExchangeRateError, ValidationError

logger = logging.getLogger("tender-currency")


@dataclass
class CurrencyRateTable:
    """Per-tender snapshot of {foreign currency → rate to base}."""
    tender_id: Optional[str] = None
    rates: Dict[str, Optional[float]] = field(default_factory=dict)

    @classmethod
    def from_tender(cls, tender: Any) -> "CurrencyRateTable":
        """Build from a tender row or dict exposing usd_rate / eur_rate / cny_rate."""
        def _get(name: str):
            if isinstance(tender, dict):
                return tender.get(name)
            return getattr(tender, name, None)

        rates = {}
        for currency, column in TENDER_RATE_FIELDS.items():
            value = _get(column)
            rates[currency] = float(value) if value is not None else None
        return cls(tender_id=_get("id"), rates=rates)

    def rate_for(self, currency_type: str) -> Optional[float]:
        """Return the rate to snapshot for ``currency_type`` (None for base)."""
        _check_supported(currency_type)
        if currency_type == BASE_CURRENCY:
            return None
        rate = self.rates.get(currency_type)
        if rate is None or rate <= 0:
            raise MissingExchangeRateError(currency_type, rate)
        return float(rate)


def _check_supported(currency_type: str) -> None:
    if currency_type not in SUPPORTED_CURRENCIES:
        raise ValidationError(
            f"Unsupported currency {currency_type!r}; expected one of {SUPPORTED_CURRENCIES}",
            field="currency_type",
        )


def validate_currency_fields(currency_type: str, currency_rate: Optional[float]) -> Optional[float]:
    """
    Enforce the stored-field invariant and return the rate to persist.

    Base currency always persists a null rate. Foreign currency requires a
    positive rate; absence is a hard failure, never a 1:1 default.
    """
    _check_supported(currency_type)
    if currency_type == BASE_CURRENCY:
        return None
    if currency_rate is None or currency_rate <= 0:
        raise MissingExchangeRateError(currency_type, currency_rate)
    return float(currency_rate)


def to_base_currency(
    amount_per_unit: float,
    currency_type: str,
    currency_rate: Optional[float],
) -> float:
    """Convert a per-unit amount into base currency using the item's snapshot rate."""
    _check_supported(currency_type)
    if currency_type == BASE_CURRENCY:
        return float(amount_per_unit)
    if currency_rate is None or currency_rate <= 0:
        raise MissingExchangeRateError(currency_type, currency_rate)
    return float(amount_per_unit) * float(currency_rate)


def snapshot_rate(currency_type: str, rate_table: Optional[CurrencyRateTable]) -> Optional[float]:
    """Write-time lookup of the rate to store on an item."""
    _check_supported(currency_type)
    if currency_type == BASE_CURRENCY:
        return None
    if rate_table is None:
        # Rates not loaded yet: block the write rather than guess
        raise MissingExchangeRateError(currency_type, None)
    return rate_table.rate_for(currency_type)


def currency_stats(items: Iterable[Any]) -> Dict[str, Any]:
    """Count items per currency for a tender-level overview."""
    counts = {code: 0 for code in SUPPORTED_CURRENCIES}
    total = 0
    for item in items:
        total += 1
        code = getattr(item, "currency_type", None) or BASE_CURRENCY
        counts[code] = counts.get(code, 0) + 1
    return {
        "total_items": total,
        "items_by_currency": counts,
        "currencies_used": sorted(code for code, n in counts.items() if n),
        "foreign_items": sum(counts.get(code, 0) for code in FOREIGN_CURRENCIES),
    }
