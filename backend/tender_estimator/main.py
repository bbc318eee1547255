"""
Tender Estimator API
FastAPI backend for BOQ quantity & cost derivation, with async PostgreSQL
and Redis/Celery background reconciliation.
"""
import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from tender_estimator.config import CORS_ORIGINS, LOG_JSON, LOG_LEVEL
from tender_estimator.services.errors import (
    EstimationError,
    ItemNotFoundError,
    LinkExistsError,
    MissingExchangeRateError,
    QuantityOverflowError,
    ValidationError,
)
from tender_estimator.services.logging_config import setup_logging
from tender_estimator.services.middleware import RequestTimingMiddleware

setup_logging(level=LOG_LEVEL, json_output=LOG_JSON)
logger = logging.getLogger("tender-api")

for var in ["DATABASE_URL", "CELERY_BROKER_URL"]:
    if not os.getenv(var):
        logger.warning(f"MISSING env var: {var}, running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        from tender_estimator.db import init_db
        await init_db()
    except Exception as e:
        logger.warning(f"Table init warning (OK if using Alembic): {e}")
    yield


app = FastAPI(
    title="Tender Estimator API",
    version="1.0.0",
    description="Quantity & cost derivation for construction tender BOQs",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
)
app.add_middleware(RequestTimingMiddleware)


# ---------------------------------------------------------------------------
# Engine errors → HTTP
# ---------------------------------------------------------------------------
_ERROR_STATUS = [
    (ItemNotFoundError, 404),
    (LinkExistsError, 409),
    (ValidationError, 422),
    (MissingExchangeRateError, 422),
    (QuantityOverflowError, 422),
]


def status_for(exc: EstimationError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(EstimationError)
async def estimation_error_handler(request: Request, exc: EstimationError):
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    content = {"detail": str(exc), "error": type(exc).__name__}
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field
    return JSONResponse(status_code=status_code, content=content)


# Routers
from tender_estimator.api.boq_routes import router as boq_router

app.include_router(boq_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "db_configured": bool(os.getenv("DATABASE_URL")),
        "broker_configured": bool(os.getenv("CELERY_BROKER_URL")),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tender_estimator.main:app", host="0.0.0.0", port=8000, reload=True)
