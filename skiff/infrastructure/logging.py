"""
Centralized Logging

Architectural Intent:
- One handler on the "skiff" logger, configured once by the CLI
- Records about a deployment carry its id (extra={"job_id": ...}); both
  output formats surface it so one job's lines can be grepped together
- Human-readable by default, JSON lines for `skiff serve --json-logs`
"""

import json
import logging
import sys
from datetime import datetime, UTC

_CONTEXT_FIELDS = ("job_id", "stage")


class JobContextFilter(logging.Filter):
    """Adds a `job_tag` attribute ("[deploy_...] " or "") for plain formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        job_id = getattr(record, "job_id", None)
        record.job_tag = f"[{job_id}] " if job_id else ""
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_entry[name] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: int = logging.INFO, json_format: bool = False) -> None:
    """Replace any handler on the "skiff" logger with a single stderr handler."""
    root = logging.getLogger("skiff")
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(JobContextFilter())
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(job_tag)s%(message)s")
        )
    root.addHandler(handler)
