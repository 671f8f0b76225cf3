"""
Export Logging
--------------
Structured logging with run_id propagation.

Design:
- Every export run gets a unique run_id
- run_id propagates through the orchestrator, paginator and API client
- Console output through Rich, optional JSON-lines file output
- Severity discipline: INFO=progress, WARNING=recoverable, ERROR=resource failed

Usage:
    from infra.logging import get_logger, RunContext

    logger = get_logger("exporter")

    with RunContext() as run_id:
        logger.info("Exporting funnels")
"""

from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional
import contextvars
import json
import logging
import uuid

from rich.console import Console
from rich.logging import RichHandler


ROOT_LOGGER = "ghl_export"

_run_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "run_id", default=None
)


def generate_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


def get_run_id() -> Optional[str]:
    """Get the current run ID from context."""
    return _run_id_var.get()


class RunContext:
    """
    Context manager scoping log records to one export run.

    Usage:
        with RunContext() as run_id:
            logger.info("Exporting...")
    """

    def __init__(self, run_id: Optional[str] = None):
        self._run_id = run_id or generate_run_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = _run_id_var.set(self._run_id)
        return self._run_id

    def __exit__(self, *args) -> None:
        if self._token is not None:
            _run_id_var.reset(self._token)


class RunIdFilter(logging.Filter):
    """Logging filter that adds run_id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "run_id", None) is None:
            record.run_id = get_run_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured file logging."""

    EXTRA_FIELDS = ("resource", "path", "status_code", "category", "items", "pages")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", "-"),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


_logging_initialized = False


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    console: Optional[Console] = None,
    force: bool = False,
) -> logging.Logger:
    """
    Configure the exporter's logger tree.

    Args:
        level: Console logging level
        log_file: Path of a JSON-lines log file, or None to disable
        console: Rich console to render to (default: stderr)
        force: Reconfigure even if already configured
    """
    global _logging_initialized

    root_logger = logging.getLogger(ROOT_LOGGER)
    if _logging_initialized and not force:
        return root_logger

    root_logger.setLevel(logging.DEBUG if log_file else level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.propagate = False

    run_filter = RunIdFilter()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
    )
    console_handler.setLevel(level)
    console_handler.addFilter(run_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(path), maxBytes=10 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)  # File gets everything
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(run_filter)
        root_logger.addHandler(file_handler)

    _logging_initialized = True
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the exporter namespace."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
