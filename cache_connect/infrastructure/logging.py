from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from cache_connect.application.request_context import request_id_var

DEBUG_SELECTOR = "cache"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def debug_enabled(selector: str | None) -> bool:
    """True when the selector names the cache layer (case-sensitive)."""
    return bool(selector) and DEBUG_SELECTOR in selector


def configure_logging(log_level: str, log_format: str = "text", debug_selector: str = "") -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())

    if log_format.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(request_id)s - %(message)s"
            )
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)

    # hit/miss tracing follows the selector, not the global level
    if debug_enabled(debug_selector):
        logging.getLogger("cache_connect").setLevel(logging.DEBUG)
    else:
        logging.getLogger("cache_connect").setLevel(max(level, logging.INFO))
