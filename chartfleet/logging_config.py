"""
Centralized logging configuration for ChartFleet.

Console output plus rotating log files, with two dedicated streams: rollout
decisions (``chartfleet.rollout``) and API access (``chartfleet.api``). Records
carry the deployment being reconciled when logged inside a LogContext.
"""
# mypy: ignore-errors

import json
import logging
import logging.handlers
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

ROLLOUT_LOGGER = "chartfleet.rollout"
API_LOGGER = "chartfleet.api"

# Fields copied from records into structured output when present
CONTEXT_FIELDS = ("deployment", "cluster", "operation", "duration_ms")

# Dedicated streams: logger name -> (file name, level); they do not reach the root handlers
DEDICATED_STREAMS: Dict[str, Tuple[str, int]] = {
    ROLLOUT_LOGGER: ("rollout.log", logging.DEBUG),
    API_LOGGER: ("api-access.log", logging.INFO),
}

NOISY_LOGGERS = ("kubernetes", "urllib3", "uvicorn", "uvicorn.access")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("chartfleet_log_context", default={})
_factory_installed = False


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Plain text lines, tagged with the deployment key when one is in context."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s%(context)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        record = logging.makeLogRecord(record.__dict__)
        deployment = getattr(record, "deployment", None)
        record.context = f" [{deployment}]" if deployment else ""
        color = self.LEVEL_COLORS.get(record.levelno) if self.use_colors else None
        if color:
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _file_handler(
    path: Path, formatter: logging.Formatter, level: int, max_bytes: int, backup_count: int
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_dir: str = "/var/log/chartfleet",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
) -> None:
    """
    Configure logging for the controller process.

    Writes chartfleet.log (everything at file_level), error.log (errors only),
    rollout.log and api-access.log under log_dir, and logs to stdout at
    console_level.

    Args:
        log_dir: Directory for log files, created if missing
        console_level: Level name for stdout
        file_level: Level name for chartfleet.log
        use_json: Write JSON lines instead of text to the files
        max_bytes: Rotation size per file
        backup_count: Rotated files kept per log
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    file_formatter = StructuredFormatter() if use_json else ConsoleFormatter()

    def file_handler(name: str, level: int) -> logging.Handler:
        return _file_handler(log_path / name, file_formatter, level, max_bytes, backup_count)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.getLevelName(console_level))
    console.setFormatter(ConsoleFormatter(use_colors=sys.stdout.isatty()))
    root.addHandler(console)
    root.addHandler(file_handler("chartfleet.log", logging.getLevelName(file_level)))
    root.addHandler(file_handler("error.log", logging.ERROR))

    for name, (file_name, level) in DEDICATED_STREAMS.items():
        stream = logging.getLogger(name)
        stream.handlers.clear()
        stream.addHandler(file_handler(file_name, level))
        stream.setLevel(level)
        stream.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(
        f"Logging to {log_dir} (console={console_level}, file={file_level}, json={use_json})"
    )


def _install_record_factory() -> None:
    global _factory_installed
    if _factory_installed:
        return

    base_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = base_factory(*args, **kwargs)
        for key, value in _log_context.get().items():
            setattr(record, key, value)
        return record

    logging.setLogRecordFactory(record_factory)
    _factory_installed = True


class LogContext:
    """
    Attach fields to every record logged inside the block.

    Fields live in a context variable, so each asyncio task sees only its own
    context and nested blocks add to the enclosing one.
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token = None

    def __enter__(self) -> "LogContext":
        _install_record_factory()
        self._token = _log_context.set({**_log_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def log_rollout_operation(
    operation: str,
    deployment: str,
    details: Optional[Dict[str, Any]] = None,
    level: int = logging.INFO,
) -> None:
    """
    Record a rollout decision on the rollout stream.

    Args:
        operation: batch_started, batch_advanced, rollout_completed,
            release_created, release_updated, release_deleted or finalizer_removed
        deployment: "namespace/name" of the ChartDeployment
        details: Counts and names for the decision
        level: Logging level
    """
    message = f"Rollout {operation}: {deployment}"
    if details:
        message += f" - {json.dumps(details, sort_keys=True, default=str)}"

    with LogContext(deployment=deployment, operation=operation):
        logging.getLogger(ROLLOUT_LOGGER).log(level, message)
