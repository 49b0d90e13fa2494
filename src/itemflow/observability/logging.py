"""
itemflow — structured logging.

File: src/itemflow/observability/logging.py

Purpose
- Emit one JSON object per log line for every ``itemflow.*`` logger.
- Attach the ids of the mutation in flight (``mutation_id``, ``item_id``...) to each record.
- Mask secret-looking keys and inline credentials before anything reaches a sink.

Records are handed to a bounded queue and written by a listener thread, so a slow
disk never stalls the pipeline; records that do not fit are counted and dropped.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Literal

from itemflow.domain.models import JSONValue

LogRedactor = Callable[[JSONValue], JSONValue]
LogFormat = Literal["json", "text"]

REDACTED: Final[str] = "***REDACTED***"

CORRELATION_FIELDS: Final[tuple[str, ...]] = ("mutation_id", "item_id", "actor_id", "event_id")

_SECRET_KEY_FRAGMENTS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)
_INLINE_SECRET: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Attributes every LogRecord has; anything else on a record came from ``extra=``.
_RECORD_BUILTINS: Final[frozenset[str]] = frozenset(
    vars(logging.makeLogRecord({})).keys() | {"message", "asctime", "taskName", "correlation"}
)

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "itemflow_log_correlation", default={}
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    log_dir: Path | str | None = Path("logs")
    logger_name: str = "itemflow"
    level: int | str = "INFO"
    log_format: LogFormat = "json"
    queue_size: int = 4096
    log_filename: str = "itemflow.jsonl"
    log_to_stdout: bool = True
    redactor: LogRedactor | None = None


# ---------------------------------------------------------------------------
# Correlation context
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


def set_correlation_fields(**fields: str | None) -> contextvars.Token[Mapping[str, str]]:
    """Bind (or with ``None``, unbind) correlation ids; returns a token for ``reset``."""
    merged = get_correlation_context()
    for name, value in fields.items():
        if value is None:
            merged.pop(name, None)
        elif isinstance(value, str) and value.strip():
            merged[name] = value.strip()
        else:
            raise ValueError(f"correlation value for {name!r} must be a non-empty string")
    return _correlation.set(merged)


def reset_correlation_fields(token: contextvars.Token[Mapping[str, str]]) -> None:
    _correlation.reset(token)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        reset_correlation_fields(token)


# ---------------------------------------------------------------------------
# Redaction and formatting
# ---------------------------------------------------------------------------


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask values under secret-looking keys and credentials embedded in strings."""
    return _mask(value, sensitive=False)


def _mask(value: JSONValue, *, sensitive: bool) -> JSONValue:
    if sensitive:
        return REDACTED
    if isinstance(value, str):
        value = _INLINE_SECRET.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", value)
        return _BEARER.sub(f"Bearer {REDACTED}", value)
    if isinstance(value, dict):
        return {key: _mask(item, sensitive=_is_secret_key(key)) for key, item in value.items()}
    if isinstance(value, list):
        return [_mask(item, sensitive=False) for item in value]
    return value


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS)


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_to_json(item) for item in value), key=json.dumps)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value) if isinstance(value, Path) else repr(value)


def _as_text(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    return "" if value is None else json.dumps(value, sort_keys=True, ensure_ascii=False)


class JsonLinesFormatter(logging.Formatter):
    """``{"timestamp", "level", "logger", "message", <correlation ids>, "fields"}`` per line."""

    def __init__(self, redactor: LogRedactor = default_log_redactor) -> None:
        super().__init__()
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")
        line: dict[str, JSONValue] = {
            "timestamp": stamp.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_text(self._redact(record.getMessage())),
        }
        line.update(_record_correlation(record))

        extras = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_BUILTINS
            and key not in CORRELATION_FIELDS
            and not key.startswith("_")
        }
        if extras:
            line["fields"] = self._redact(extras)
        if record.exc_info:
            line["exception"] = _as_text(self._redact(self.formatException(record.exc_info)))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _record_correlation(record: logging.LogRecord) -> dict[str, str]:
    ids = dict(getattr(record, "correlation", None) or {})
    for name in CORRELATION_FIELDS:
        explicit = getattr(record, name, None)
        if isinstance(explicit, str) and explicit.strip():
            ids[name] = explicit.strip()
    return ids


# ---------------------------------------------------------------------------
# Queue-backed handler setup
# ---------------------------------------------------------------------------


class _ContextQueueHandler(logging.handlers.QueueHandler):
    """Snapshots correlation ids on the caller's thread; never blocks on a full queue."""

    def __init__(self, target: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(target)
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        ids = get_correlation_context()
        if ids:
            record.correlation = ids
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1


@dataclass(slots=True)
class StructuredLoggingHandle:
    """Live logging setup; ``shutdown`` drains the queue and restores the logger."""

    logger: logging.Logger
    log_path: Path | None
    _handler: _ContextQueueHandler
    _listener: logging.handlers.QueueListener
    _sinks: tuple[logging.Handler, ...]
    _previous: tuple[int, bool]
    _closed: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def dropped_records(self) -> int:
        return self._handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        pending = self._handler.queue
        while getattr(pending, "unfinished_tasks", 0) and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._handler)
            self._handler.close()
            for sink in self._sinks:
                sink.close()
            self.logger.setLevel(self._previous[0])
            self.logger.propagate = self._previous[1]
            self._closed = True


_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Route ``config.logger_name`` and its children through a queue to file/stdout sinks."""
    global _active, _atexit_hooked

    name = config.logger_name.strip()
    if not name:
        raise ValueError("logger_name must not be empty")
    if isinstance(config.queue_size, bool) or config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _level_number(config.level)
    formatter = _formatter_for(config)
    log_path = _log_path_for(config)

    shutdown_logging()

    sinks: list[logging.Handler] = []
    if log_path is not None:
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(name)
    previous = (logger.level, logger.propagate)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    handler = _ContextQueueHandler(queue.Queue(maxsize=config.queue_size))
    handler.setLevel(level)
    listener = logging.handlers.QueueListener(handler.queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        _handler=handler,
        _listener=listener,
        _sinks=tuple(sinks),
        _previous=previous,
    )
    with _active_lock:
        _active = handle
        if not _atexit_hooked:
            atexit.register(shutdown_logging)
            _atexit_hooked = True
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    log_dir: Path | str | None = None,
    logger_name: str = "itemflow",
    log_to_stdout: bool = True,
) -> logging.Logger:
    """Configure logging from the ``[observability]`` config section and return the logger."""
    section = dict(observability_config or {})
    level = section.get("log_level", "INFO")
    directory = log_dir if log_dir is not None else section.get("log_dir", "logs")
    handle = setup_structured_logging(
        LoggingConfig(
            log_dir=directory if isinstance(directory, (str, Path)) else None,
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_format="text" if section.get("log_format") == "text" else "json",
            log_to_stdout=log_to_stdout,
            redactor=None if section.get("redact_secrets", True) else _passthrough,
        )
    )
    return handle.logger


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def flush_logging(
    handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0
) -> None:
    target = handle or get_active_logging_handle()
    if target is not None:
        target.flush(timeout_seconds=timeout_seconds)


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0
) -> None:
    global _active
    target = handle or get_active_logging_handle()
    if target is None:
        return
    target.shutdown(timeout_seconds=timeout_seconds)
    with _active_lock:
        if _active is target:
            _active = None


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {level!r}")
    return resolved


def _formatter_for(config: LoggingConfig) -> logging.Formatter:
    if config.log_format == "json":
        return JsonLinesFormatter(config.redactor or default_log_redactor)
    if config.log_format == "text":
        return logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    raise ValueError(f"unsupported log_format {config.log_format!r}")


def _log_path_for(config: LoggingConfig) -> Path | None:
    if config.log_dir is None:
        return None
    filename = config.log_filename.strip()
    if not filename or Path(filename).name != filename:
        raise ValueError("log_filename must be a bare file name")
    directory = Path(config.log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    return directory / filename


def _passthrough(value: JSONValue) -> JSONValue:
    return value


__all__ = [
    "CORRELATION_FIELDS",
    "JsonLinesFormatter",
    "LogRedactor",
    "LoggingConfig",
    "REDACTED",
    "StructuredLoggingHandle",
    "correlation_scope",
    "default_log_redactor",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
