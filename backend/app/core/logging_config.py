"""JSON line logging for the API process and the maintenance scripts."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# attributes every LogRecord carries; anything else arrived through extra=
_RECORD_ATTRS = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    def __init__(self, service: str, environment: str) -> None:
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "service": self.service,
            "env": self.environment,
            "msg": record.getMessage(),
        }
        payload.update((k, v) for k, v in record.__dict__.items() if k not in _RECORD_ATTRS)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(service: str, environment: str, log_level: str | None = None) -> None:
    name = (log_level or ("DEBUG" if environment.lower() == "dev" else "INFO")).strip().upper()
    level = logging.getLevelName(name)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JSONFormatter(service=service, environment=environment))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level if isinstance(level, int) else logging.INFO)
