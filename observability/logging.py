"""Log setup and per-request context for the Memory Jar service.

Every save, recall and delete runs inside request_context(), which tags
each log line with a short request id plus the owner and memory being
worked on:

    12:03:44 [INFO] [3f2a9c1b owner=u1 memory=9d1e42aa] memory_jar: Memory saved

Background embedding tasks are created inside that context, so their log
lines (and spans, see observability.tracing) carry the same tags.

Console output goes to stderr so CLI results on stdout stay parseable. A
rotating file in LOG_DIR captures everything at DEBUG.
"""

import contextvars
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any, Iterator

LOG_FILE_NAME = "fableforge.log"
UNSET = "-"

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default=UNSET)
owner_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("owner_id", default=UNSET)
memory_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("memory_id", default=UNSET)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "owner_id": owner_id_var,
    "memory_id": memory_id_var,
}

# LogRecord attributes that are not caller-supplied extras
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | frozenset(
    ("message", "asctime", "context", *_CONTEXT_VARS)
)

_NOISY_LOGGERS = ("aiohttp", "asyncio", "chromadb", "httpx", "urllib3", "sentence_transformers")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def set_request_context(request_id: str) -> None:
    """Set the request id for the rest of the current task (CLI entry)."""
    request_id_var.set(request_id)


def bind_memory(memory_id: str) -> None:
    """Tag the rest of the current request with a memory id."""
    memory_id_var.set(memory_id)


@contextmanager
def request_context(owner_id: str, memory_id: str | None = None) -> Iterator[str]:
    """Scope log lines to one save, recall or delete.

    A fresh request id is issued for each call. Previous values are
    restored on exit, so nested contexts behave.

    Yields:
        The request id
    """
    request_id = new_request_id()
    tokens = [
        (request_id_var, request_id_var.set(request_id)),
        (owner_id_var, owner_id_var.set(owner_id)),
        (memory_id_var, memory_id_var.set(memory_id or UNSET)),
    ]
    try:
        yield request_id
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def current_context() -> dict[str, str]:
    """Context values that are set, keyed by name."""
    return {name: var.get() for name, var in _CONTEXT_VARS.items() if var.get() != UNSET}


def clear_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(UNSET)


class ContextFilter(logging.Filter):
    """Copies the request, owner and memory ids onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _CONTEXT_VARS.items():
            setattr(record, name, var.get())
        return True


def _context_label(record: logging.LogRecord) -> str:
    parts = [getattr(record, "request_id", UNSET)]
    owner_id = getattr(record, "owner_id", UNSET)
    memory_id = getattr(record, "memory_id", UNSET)
    if owner_id != UNSET:
        parts.append(f"owner={owner_id}")
    if memory_id != UNSET:
        parts.append(f"memory={memory_id[:8]}")
    return " ".join(parts)


class TextFormatter(logging.Formatter):
    """TIME [LEVEL] [request owner=... memory=...] logger: message"""

    def __init__(self, include_date: bool = False):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(context)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if include_date else "%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        record.context = _context_label(record)
        return super().format(record)


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Always carries request_id; owner_id and memory_id appear only inside a
    request. Warnings and above add their source location. Values passed
    with extra={...} are included, stringified if not JSON-serialisable.
    """

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", UNSET),
        }
        for name in ("owner_id", "memory_id"):
            value = getattr(record, name, UNSET)
            if value != UNSET:
                data[name] = value

        if record.levelno >= logging.WARNING:
            data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in data:
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            data[key] = value

        return json.dumps(data, ensure_ascii=False)


def _file_handler(config: Any) -> logging.Handler | None:
    """Rotating handler for LOG_DIR, or None if the directory is unusable."""
    try:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        probe = config.log_dir / ".write_test"
        probe.touch()
        probe.unlink()
    except OSError as e:
        print(
            f"Warning: Cannot write to log directory '{config.log_dir}': {e}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )
        return None

    log_file = config.log_dir / LOG_FILE_NAME
    if config.log_max_bytes > 0:
        return RotatingFileHandler(
            log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
    return TimedRotatingFileHandler(
        log_file,
        when="midnight",
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )


def setup_logging(config: Any, verbose: bool = False) -> bool:
    """Install console and file handlers on the root logger.

    Args:
        config: Config with log_level, log_format, log_dir and rotation settings
        verbose: Console at DEBUG regardless of LOG_LEVEL

    Returns:
        True if file logging is active, False if console-only
    """
    json_output = config.log_format == "json"
    context_filter = ContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO))
    console.setFormatter(JsonFormatter() if json_output else TextFormatter())
    console.addFilter(context_filter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.addHandler(console)

    file_handler = _file_handler(config)
    if file_handler is not None:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonFormatter() if json_output else TextFormatter(include_date=True))
        file_handler.addFilter(context_filter)
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return file_handler is not None
