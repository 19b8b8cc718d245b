import json  # JSON serialization
import logging
from datetime import datetime, timezone

# Fields passed through ``extra=`` that end up in the JSON line
CONTEXT_FIELDS = ("user_id", "booking_id", "event_id", "event_type", "refund_id")


class JsonFormatter(logging.Formatter):
    """Format log records as JSON, carrying booking and billing context."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                data[field] = value
        # Audit lines are picked out by log shippers
        if data["message"].startswith("audit:"):
            data["audit"] = True
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure root logger with JSON formatter."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler])
