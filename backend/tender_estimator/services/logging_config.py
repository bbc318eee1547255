"""
Structured logging for the estimator API and the reconciliation worker.

Engine modules log through named ``tender-*`` loggers and attach the line
they are working on via ``extra=`` (``item_id``, ``position_id``, ...). The
JSON formatter lifts those fields to top-level keys so one edit can be
followed from the HTTP request through to its background reconciliation.
"""
import logging
import json
import sys
from datetime import datetime, timezone

# Structured extras passed through ``extra=`` by the engine
CONTEXT_FIELDS = ("request_id", "tender_id", "position_id", "item_id", "task_id", "duration_ms")


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context fields appear only when set."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """
    Route every logger to stdout, as JSON or as one-line text (``LOG_FORMAT=text``).

    Called once by the API at import and by the Celery worker on start.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    # Suppress noisy loggers
    for name in ["uvicorn.access", "httpcore", "httpx", "sqlalchemy.engine"]:
        logging.getLogger(name).setLevel(logging.WARNING)
