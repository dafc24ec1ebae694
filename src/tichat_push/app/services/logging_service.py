"""Context-aware logging service.

The Manager runs in the page context and the Background Delivery Agent in
its own context. Records are tagged with the active context so the two can
be told apart in the shared log.

Log structure:
    ~/.tichat-push/logs/
    └── server.log
"""

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

from tichat_push.app import config

_current_context: ContextVar[str] = ContextVar("execution_context", default="page")

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(context)-5s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ContextFilter(logging.Filter):
    """Attach the current execution context to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = _current_context.get()
        return True


class ExecutionContext:
    """Context manager that scopes log records to an execution context."""

    def __init__(self, name: str):
        self.name = name
        self._token = None

    def __enter__(self) -> "ExecutionContext":
        self._token = _current_context.set(self.name)
        return self

    def __exit__(self, *args) -> None:
        if self._token is not None:
            _current_context.reset(self._token)


def setup_logging(level: int = logging.INFO, logs_dir: Optional[Path] = None) -> None:
    """Configure console and file logging.

    Call this once at application startup.
    """
    logs_dir = logs_dir or (config.APP_HOME / "logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    context_filter = ContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.addFilter(context_filter)
    console_handler.setFormatter(
        logging.Formatter("%(levelname)-7s | %(context)-5s | %(name)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(logs_dir / "server.log", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.addFilter(context_filter)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logging.info(f"Logging initialized. Logs dir: {logs_dir}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


def read_server_logs(logs_dir: Optional[Path] = None, tail: Optional[int] = 100) -> list[str]:
    """Read the global server log."""
    log_file = (logs_dir or (config.APP_HOME / "logs")) / "server.log"
    if not log_file.exists():
        return []

    lines = log_file.read_text(encoding="utf-8").splitlines()

    if tail and tail > 0:
        lines = lines[-tail:]

    return lines
