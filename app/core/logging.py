"""Logging configuration driven by application settings."""

import json
import logging
from datetime import UTC, datetime

from app.core.config import LogFormatEnum, settings


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str | None = None, fmt: LogFormatEnum | None = None) -> None:
    """Configure the root logger once for the process."""
    level = level or settings.log_level.value
    fmt = fmt or settings.log_format

    handler = logging.StreamHandler()
    if fmt == LogFormatEnum.json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
