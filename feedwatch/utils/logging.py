"""
Structured JSON logging for the feed API and the filter workers.

One JSON object per line: timestamp, level, component, correlation_id, module,
message, plus whichever queue fields the call passed through `extra`.
`component` tells API and worker lines apart when both ship to one sink. The
API sets a correlation ID per request; a worker process pins its own ID once
at startup so every line it writes can be grepped by worker.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Queue fields lifted from `extra` into the top level of a log line
EXTRA_FIELDS = (
    "queue_key",
    "worker_id",
    "keyword",
    "post_id",
    "status",
    "count",
    "error_code",
)

QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "openai")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


class StructuredJsonFormatter(logging.Formatter):
    def __init__(self, component: str = "api"):
        super().__init__()
        self.component = component

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%S.%fZ"
            ),
            "level": record.levelname,
            "component": self.component,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
            log_entry.setdefault("error_code", record.exc_info[0].__name__)

        return json.dumps(log_entry, default=str)


def configure_structured_logging(log_level: str = "INFO", component: str = "api") -> None:
    """Install a single JSON stream handler on the root logger. Call once per process."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(StructuredJsonFormatter(component))
    root_logger.addHandler(stream_handler)

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
