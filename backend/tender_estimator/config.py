"""
Estimator configuration — single source of truth for currency codes, item
kinds, delivery rules, numeric ceilings and runtime settings.

Import from here in all services rather than hardcoding values.
"""
from __future__ import annotations

import os

# Load .env file automatically in dev (no-op if the file is missing)
from dotenv import load_dotenv

load_dotenv()


# ── Currencies ─────────────────────────────────────────────────────────────────
BASE_CURRENCY: str = "RUB"
FOREIGN_CURRENCIES: tuple[str, ...] = ("USD", "EUR", "CNY")
SUPPORTED_CURRENCIES: tuple[str, ...] = (BASE_CURRENCY, *FOREIGN_CURRENCIES)

# Tender column holding the rate-to-base for each foreign currency
TENDER_RATE_FIELDS: dict[str, str] = {
    "USD": "usd_rate",
    "EUR": "eur_rate",
    "CNY": "cny_rate",
}


# ── Item kinds ─────────────────────────────────────────────────────────────────
KIND_WORK = "work"
KIND_SUB_WORK = "sub_work"
KIND_MATERIAL = "material"
KIND_SUB_MATERIAL = "sub_material"

WORK_KINDS: frozenset[str] = frozenset({KIND_WORK, KIND_SUB_WORK})
MATERIAL_KINDS: frozenset[str] = frozenset({KIND_MATERIAL, KIND_SUB_MATERIAL})
ITEM_KINDS: frozenset[str] = WORK_KINDS | MATERIAL_KINDS

# Material role: decides how markup is split between the material and works
MATERIAL_TYPE_MAIN = "main"
MATERIAL_TYPE_AUXILIARY = "auxiliary"
MATERIAL_TYPES: frozenset[str] = frozenset({MATERIAL_TYPE_MAIN, MATERIAL_TYPE_AUXILIARY})


# ── Delivery ───────────────────────────────────────────────────────────────────
DELIVERY_INCLUDED = "included"
DELIVERY_NOT_INCLUDED = "not_included"   # surcharge on base line cost
DELIVERY_AMOUNT = "amount"               # fixed base-currency amount per unit
DELIVERY_PRICE_TYPES: frozenset[str] = frozenset(
    {DELIVERY_INCLUDED, DELIVERY_NOT_INCLUDED, DELIVERY_AMOUNT}
)

DELIVERY_SURCHARGE_PCT: float = 0.03     # 3 %, fixed policy


# ── Quantities & coefficients ──────────────────────────────────────────────────
# boq_items.quantity is numeric(12,4)
MAX_STORED_QUANTITY: float = 99_999_999.9999

CONSUMPTION_COEFFICIENT_FLOOR: float = 1.0
CONVERSION_COEFFICIENT_FLOOR: float = 0.0
DEFAULT_COEFFICIENT: float = 1.0


# ── Background reconciliation ──────────────────────────────────────────────────
RECONCILE_COUNTDOWN_S: float = float(os.getenv("RECONCILE_COUNTDOWN_S", "0.1"))
RECONCILE_MAX_RETRIES: int = int(os.getenv("RECONCILE_MAX_RETRIES", "3"))
RECONCILE_RETRY_DELAY_S: int = int(os.getenv("RECONCILE_RETRY_DELAY_S", "2"))


# ── Runtime ────────────────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_TIMEOUT_S: int = int(os.getenv("DB_POOL_TIMEOUT_S", "5"))
DB_ECHO: bool = os.getenv("DB_ECHO", "").lower() in ("1", "true", "yes")
DB_RESET_ON_STARTUP: bool = os.getenv("DB_RESET_ON_STARTUP", "").lower() in ("1", "true", "yes")

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_FORMAT", "json").lower() != "text"

CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")
    if o.strip()
]
