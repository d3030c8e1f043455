"""JSON logging configuration for Saldin API."""

import json
import logging
import sys
from datetime import datetime, timezone

# Context keys holding WhatsApp numbers; only the last digits reach the logs.
PHONE_KEYS = {"phone", "sender", "to", "variants"}
VISIBLE_PHONE_DIGITS = 4


def mask_phone(value: str) -> str:
    digits = str(value or "")
    if len(digits) <= VISIBLE_PHONE_DIGITS:
        return digits
    return "*" * (len(digits) - VISIBLE_PHONE_DIGITS) + digits[-VISIBLE_PHONE_DIGITS:]


def _mask_context(context: dict) -> dict:
    masked = {}
    for key, value in context.items():
        if key in PHONE_KEYS:
            if isinstance(value, (list, tuple)):
                value = [mask_phone(item) for item in value]
            elif value is not None:
                value = mask_phone(value)
        masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and record.context:
            log_data["context"] = _mask_context(record.context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure JSON logging on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    # Access tokens travel in query strings and headers of these clients.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(f"saldin.{name}")
