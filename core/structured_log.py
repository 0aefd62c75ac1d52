from __future__ import annotations

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict


LOG_DIR = Path(os.getenv("CHEFFLOW_LOG_DIR", "logs"))
LOG_FILE = LOG_DIR / "events.jsonl"

# Log rotation settings (configurable via environment)
MAX_LOG_BYTES = int(os.getenv("CHEFFLOW_LOG_MAX_BYTES", 10 * 1024 * 1024))  # 10MB default
LOG_BACKUP_COUNT = int(os.getenv("CHEFFLOW_LOG_BACKUP_COUNT", 5))

_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_file_handler: RotatingFileHandler | None = None
_write_lock = threading.Lock()

_console = logging.getLogger("chefflow.events")


def _get_file_handler() -> RotatingFileHandler:
    """Get or create the rotating file handler."""
    global _file_handler
    if _file_handler is None:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        _file_handler = RotatingFileHandler(
            str(LOG_FILE),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    return _file_handler


def jlog(event: str, level: str = "INFO", **fields: Any) -> None:
    """
    Write a structured JSON log entry with automatic rotation.

    The reader thread of the engine supervisor calls this concurrently with
    request handlers, so writes are serialized.

    Args:
        event: Event name/type
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **fields: Additional fields to include in the log entry
    """
    level = level.upper() if level.upper() in _LEVELS else "INFO"
    rec: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        **fields,
    }
    line = json.dumps(rec, default=str)

    with _write_lock:
        try:
            handler = _get_file_handler()
            record = logging.LogRecord(
                name="chefflow", level=logging.INFO, pathname="", lineno=0,
                msg=line, args=(), exc_info=None,
            )
            if handler.shouldRollover(record):
                handler.doRollover()
            handler.stream.write(line + "\n")
            handler.stream.flush()
        except OSError as e:
            print(f"structured log write failed: {e}", file=sys.stderr)

    # Also echo a concise line through stdlib logging
    _console.log(getattr(logging, level), "%s | %s", event, fields)


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for the server process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
