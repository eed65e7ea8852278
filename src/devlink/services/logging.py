"""Logging setup for devlink processes."""

from __future__ import annotations

import json
import logging
from typing import Any, MutableMapping, Optional

__all__ = ["setup_logging", "session_logger", "JsonFormatter", "SessionLogger"]

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# record attributes copied into JSON lines when a caller sets them
_SESSION_FIELDS = ("client_id", "state", "action", "attempt")


class SessionLogger(logging.LoggerAdapter):
    """Prefixes messages with the session's client id and tags the record with it."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        client_id = self.extra["client_id"]
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("client_id", client_id)
        kwargs["extra"] = extra
        return f"{client_id}: {msg}", kwargs


def session_logger(logger: logging.Logger, client_id: str) -> SessionLogger:
    return SessionLogger(logger, {"client_id": client_id})


class JsonFormatter(logging.Formatter):
    """One JSON object per log line, with the session fields of the record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _SESSION_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = str(value) if not isinstance(value, (int, float)) else value
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: Optional[str] = None, *, json_output: bool = False) -> logging.Logger:
    """Attach a single stream handler to the ``devlink`` logger."""

    logger = logging.getLogger("devlink")
    resolved_level = (level or "INFO").upper()
    numeric_level = getattr(logging, resolved_level, logging.INFO)
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    logger.propagate = False

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))
    logger.addHandler(handler)
    return logger
