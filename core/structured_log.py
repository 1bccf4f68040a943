"""
Structured JSON-lines event log.

Generation summaries and run start/finish events are written here so that a
long search can be inspected after the fact. Regular diagnostics go through
the standard ``logging`` module.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict


LOG_DIR = Path(os.getenv("UNIVERSAL_LOG_DIR", "logs"))
LOG_FILE = LOG_DIR / "events.jsonl"

# Log rotation settings (configurable via environment)
MAX_LOG_BYTES = int(os.getenv("UNIVERSAL_LOG_MAX_BYTES", 10 * 1024 * 1024))  # 10MB default
LOG_BACKUP_COUNT = int(os.getenv("UNIVERSAL_LOG_BACKUP_COUNT", 5))
ECHO_TO_CONSOLE = os.getenv("UNIVERSAL_LOG_ECHO", "1") != "0"

_file_handler: RotatingFileHandler | None = None


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

    Args:
        event: Event name/type
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **fields: Additional fields to include in the log entry
    """
    rec: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        **fields,
    }
    line = json.dumps(rec, default=str)

    handler = _get_file_handler()
    try:
        handler.stream.write(line + "\n")
        handler.stream.flush()

        if handler.shouldRollover(logging.LogRecord(
            name="universal", level=logging.INFO, pathname="", lineno=0,
            msg=line, args=(), exc_info=None
        )):
            handler.doRollover()
    except (OSError, ValueError):
        # Stream closed or rotated underneath us
        with LOG_FILE.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    if ECHO_TO_CONSOLE:
        print(f"[{rec['level']}] {rec['event']} | {fields}")


def read_recent_logs(count: int = 100, level: str | None = None) -> list[Dict[str, Any]]:
    """
    Read the most recent log entries.

    Args:
        count: Maximum number of entries to return
        level: Optional filter by log level

    Returns:
        List of log entries (most recent last)
    """
    entries = []

    if not LOG_FILE.exists():
        return entries

    with LOG_FILE.open("r", encoding="utf-8") as f:
        lines = f.readlines()

    for line in reversed(lines):
        if len(entries) >= count:
            break
        try:
            entry = json.loads(line.strip())
        except json.JSONDecodeError:
            continue
        if level is None or entry.get("level") == level:
            entries.append(entry)

    return list(reversed(entries))
