"""
Celery Application — background work for the tender estimator.

Runs the post-commit reconciliation of materials linked to an edited work,
so a work save returns without waiting on every dependent material.
"""
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from tender_estimator.config import CELERY_BROKER_URL, CELERY_RESULT_BACKEND, LOG_JSON, LOG_LEVEL
from tender_estimator.services.logging_config import setup_logging

celery_app = Celery(
    "tender_estimator",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["tender_estimator.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Moscow",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=60,
    task_time_limit=120,
    result_expires=3600,        # Results expire after 1 hour
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    # Connecting this signal stops Celery from installing its own handlers
    setup_logging(level=LOG_LEVEL, json_output=LOG_JSON)
