"""
Logging setup for the BMad Kiro adapter.

Components log through structlog with snake_case event names. Output goes
to a rich console handler and, when a log directory is configured, to
rotating files. Activation timings are written to their own JSONL stream
so they can be analysed without parsing regular log lines.
"""

import io
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from .config import LoggingConfig


MEGABYTE = 1024 * 1024

console = Console(file=sys.stderr)

_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extras included."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_FIELDS:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class MetricsLogger:
    """Writes named metric samples to a dedicated logger."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _emit(self, name: str, kind: str, value: Any, tags: Optional[Dict[str, str]]) -> None:
        self.logger.info(
            name,
            extra={"metric": f"{name}.{kind}", "value": value, "tags": dict(tags or {})}
        )

    def log_duration(self, name: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self._emit(name, "duration_ms", round(duration_ms, 3), tags)

    def log_count(self, name: str, count: int = 1, tags: Optional[Dict[str, str]] = None):
        self._emit(name, "count", count, tags)


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter, max_mb: int, backups: int):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * MEGABYTE, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: Optional["LoggingConfig"] = None, app_name: str = "kiro-adapter") -> Optional[MetricsLogger]:
    """
    Configure structlog and the standard logging handlers.

    Args:
        config: Logging settings; defaults apply when omitted
        app_name: Prefix for log file names

    Returns:
        A MetricsLogger writing ``<app_name>-metrics.jsonl`` when a log
        directory is configured, otherwise None
    """
    global console
    if config is None:
        from .config import LoggingConfig
        config = LoggingConfig()
    json_output = config.format == "json"

    if not config.console:
        console = Console(file=io.StringIO(), force_terminal=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(config.level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if config.console:
        rich_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        rich_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(rich_handler)
    else:
        root.addHandler(logging.NullHandler())

    metrics_logger = None
    if config.directory is not None:
        log_dir = Path(config.directory)
        log_dir.mkdir(parents=True, exist_ok=True)
        formatter = JSONFormatter() if json_output else logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s"
        )
        root.addHandler(_rotating_handler(log_dir / f"{app_name}.log", logging.DEBUG, formatter, 10, 5))
        root.addHandler(_rotating_handler(log_dir / f"{app_name}-errors.log", logging.ERROR, formatter, 10, 5))

        metrics = logging.getLogger(f"{app_name}.metrics")
        metrics.setLevel(logging.INFO)
        metrics.propagate = False
        for handler in list(metrics.handlers):
            metrics.removeHandler(handler)
        metrics.addHandler(
            _rotating_handler(log_dir / f"{app_name}-metrics.jsonl", logging.INFO, JSONFormatter(), 50, 10)
        )
        metrics_logger = MetricsLogger(metrics)

    structlog.get_logger(app_name).info(
        "logging_initialized",
        level=config.level,
        log_dir=str(config.directory) if config.directory else None,
        metrics=metrics_logger is not None,
    )
    return metrics_logger


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance by name."""
    return structlog.get_logger(name)


__all__ = [
    'setup_logging',
    'get_logger',
    'MetricsLogger',
    'JSONFormatter',
]
