"""
Logging setup for the GateFlow API.

Two console formats are available:
  - **human**: coloured, single-line
  - **json**: newline-delimited JSON for log shippers

A log file, when configured, always receives JSON lines.

Scan and import code pass the event, source, ticket, device or operator they
are working on through ``extra=``; both formats print whichever of those a
record carries, so one gate or one vendor feed can be followed through the log.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

CONTEXT_FIELDS = ("event_id", "source", "ticket_id", "device_id", "operator")

# per-request INFO lines from the vendor feed client
NOISY_LOGGERS = ("httpx", "httpcore")


def context_of(record: logging.LogRecord) -> Dict[str, object]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(context_of(record))
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{colour}{ts} [{record.levelname:<7}]{self.RESET} {record.name}: {record.getMessage()}"
        context = context_of(record)
        if context:
            line += " (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", fmt: str = "human", log_file: Optional[str] = None) -> None:
    """Configure the root logger.

    ``fmt`` is ``"human"`` or ``"json"``. Existing root handlers are replaced so
    that reloading the app does not duplicate output. The HTTP client loggers
    are held at WARNING unless ``level`` is DEBUG.
    """
    root = logging.getLogger()
    root_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(root_level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if fmt == "json" else HumanFormatter())
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path))
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if root_level <= logging.DEBUG else logging.WARNING)
