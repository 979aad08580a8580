"""
Centralized Logging Setup

- Standardizes logging format for the pipeline, handlers and workers
- Ensures logs are structured for Loki (JSON per line)
- Usage: from telemetry_alerts.core.logging import get_logger
"""

import logging
import os
import sys
import json
from datetime import datetime, timezone


class LokiJsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "lineNo": record.lineno,
        }
        # Add extra fields if present (e.g., labels)
        if hasattr(record, "labels"):
            log_record["labels"] = record.labels
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


class _LabelFilter(logging.Filter):
    """Merges static labels into each record, per-call labels win."""

    def __init__(self, labels: dict):
        super().__init__()
        self.labels = labels

    def filter(self, record):
        record.labels = {**self.labels, **getattr(record, "labels", {})}
        return True


def get_logger(name=None, level=None, labels=None):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = LokiJsonFormatter()
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(level or os.getenv("LOG_LEVEL", "INFO"))
    # Attach labels for Loki if provided
    if labels and not any(isinstance(f, _LabelFilter) for f in logger.filters):
        logger.addFilter(_LabelFilter(labels))
    return logger
