import logging
import json
import sys
from typing import Any, Dict, IO, Optional
from datetime import datetime, timezone

# extra= fields copied into every entry when a record carries them
CONTEXT_FIELDS = ("agent", "key", "lock", "service", "session")

# chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record: timestamp, level, logger, message, node_id,
    plus any consul context (agent, key, lock, service, session) passed via
    ``extra=``. The ``data`` extra and exception text are kept as-is.
    """

    def __init__(self, node_id: str = "unknown", **kwargs):
        super().__init__(**kwargs)
        self.node_id = node_id

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "node_id": self.node_id,
        }
        entry.update(_context(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.__dict__.get("data"):
            entry["data"] = record.__dict__["data"]

        # bytes values and pydantic models fall back to str()
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain text lines with the consul context appended as ``key=value`` pairs."""

    def __init__(self):
        super().__init__(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = _context(record)
        if ctx:
            line += " [" + " ".join(f"{k}={v}" for k, v in ctx.items()) + "]"
        return line


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    node_id: str = "unknown",
    stream: Optional[IO[str]] = None,
):
    """
    Replace the root handlers with a single stream handler.

    Logs go to stderr unless ``stream`` is given, so command output on
    stdout (``kv get``, ``services``) stays machine readable.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    if format_type.lower() == "json":
        handler.setFormatter(JsonFormatter(node_id=node_id))
    else:
        handler.setFormatter(TextFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
