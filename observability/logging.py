from __future__ import annotations
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

# Attributes every LogRecord carries; anything else arrived through ``extra=``
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# Libraries whose INFO output drowns the engine's own messages
_NOISY_LOGGERS = ("uvicorn.access", "aiohttp.access", "asyncio", "sentence_transformers", "urllib3")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def __init__(self, service_name: str = "briefcontext"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value) for key, value in record.__dict__.items()
            if key not in _RECORD_FIELDS
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Human-readable console lines, level-coloured on a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        if self.use_colors and color:
            return f"{color}{line}{self.RESET}"
        return line


def _handlers(service_name: str, log_file: Optional[str], use_json: bool,
              use_colors: bool) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    if use_json:
        console.setFormatter(JSONFormatter(service_name))
    else:
        console.setFormatter(ColoredFormatter(use_colors and sys.stdout.isatty()))
    handlers: List[logging.Handler] = [console]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        # Files are always machine-readable
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter(service_name))
        handlers.append(file_handler)
    return handlers


def setup_logging(
    level: str = "INFO",
    service_name: str = "briefcontext",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Route all engine logging to stdout (and optionally a file).

    Replaces any handlers already installed on the root logger, so calling it
    twice does not duplicate output.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in _handlers(service_name, log_file, use_json, use_colors):
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
