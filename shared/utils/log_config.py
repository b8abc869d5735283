"""
shared/utils/log_config.py
JSON-lines logging shared by the API process and the Celery worker.
"""

import json
import logging
import os
from logging import LogRecord
from typing import Optional

from config.settings import settings


class JSONFormatter(logging.Formatter):
    """One JSON object per record. Picks up `request_id` passed via `extra`."""

    def format(self, record: LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "env": settings.APP_ENV,
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            entry["request_id"] = request_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: Optional[int] = None) -> None:
    """Replace root handlers with a single JSON stream handler."""
    if level is None:
        level = logging.DEBUG if settings.DEBUG else logging.INFO
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
