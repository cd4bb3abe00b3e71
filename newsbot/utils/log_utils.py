"""Logging setup: plain text lines or single-line JSON records."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Union

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def setup_logging(level: Union[int, str] = logging.INFO, structured: bool = False) -> None:
    """Configure the root logger once for the whole process."""
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)

    # no duplicate handlers when the app is rebuilt (reload, tests)
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
    root.addHandler(handler)
