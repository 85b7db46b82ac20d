from __future__ import annotations

import json
import logging
import sys
from decimal import Decimal
from typing import Any

# Structured fields the engine passes through ``extra=``. Anything else on the
# record (including stray credentials) is never serialized.
_EXTRA_KEYS = frozenset(
    {
        "symbol",
        "side",
        "qty",
        "leverage",
        "order_id",
        "state",
        "attempt",
        "kind",
        "ret_code",
        "step",
        "reason",
    }
)


def _field(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per line: event name in ``msg`` plus trade context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (key, _field(value))
            for key, value in sorted(vars(record).items())
            if key in _EXTRA_KEYS and value is not None
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    # httpx logs full request URLs, and signed GETs carry account query params.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
