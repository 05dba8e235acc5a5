"""Structured Logging — JSON formatter and setup for every process in the cluster.

Invariants:
    - All logs include timestamp, level, logger name (label), pid, and message
    - Extra fields (service, worker_pid, exit_code, signal, trigger, error_code) surfaced when present
    - JSON format in production, human-readable in development
    - setup_logging is idempotent per process: Primary and each Worker call it once at start

Design Decisions:
    - JSONFormatter over third-party libs: zero dependencies, full control
    - Optional daily rotating file output (log_dir), 14 days retained
    - Workers are spawned, not forked: they re-run setup_logging with their own Settings
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

_SURFACED_KEYS = (
    "service", "role", "worker_pid", "worker_index", "exit_code", "signal",
    "trigger", "error_code", "path", "address", "user_id",
)

_HANDLER_MARK = "_vidhub_handler"


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "label": record.name,
            "pid": record.process,
            "message": record.getMessage(),
        }
        for key in _SURFACED_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def _build_formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JSONFormatter()
    return logging.Formatter(
        "%(asctime)s %(levelname)s [%(process)d] %(name)s — %(message)s",
    )


def setup_logging(
    level: str = "INFO", fmt: str = "json", log_dir: str | None = None,
) -> None:
    """Configure root logging for the current process."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, _HANDLER_MARK, False):
            root.removeHandler(existing)

    formatter = _build_formatter(fmt)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_MARK, True)
    root.addHandler(handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            path / "vidhub.log", when="midnight", backupCount=14, encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        setattr(file_handler, _HANDLER_MARK, True)
        root.addHandler(file_handler)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
