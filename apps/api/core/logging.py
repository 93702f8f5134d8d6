"""
Log setup for the sync server.

``LOG_FORMAT=json`` emits one JSON object per line; structured context passed
as ``extra={"extra_fields": {...}}`` (request timing, merge counts per
tenant) is folded into that object. Any other value gives plain text.
"""
import json
import logging
import sys
from datetime import datetime, timezone

from core.config import settings

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging() -> logging.Logger:
    """Point the root logger at stdout using the configured level and format."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.LOG_FORMAT == "json" else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Per-statement engine logs would drown the merge summaries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return root
