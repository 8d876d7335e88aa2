from __future__ import annotations

"""
reindexkit.core.logging
=======================

Structured logging helper for the scheduler:
- Context propagation via contextvars (entity_id, strength, scope).
- JSON formatter for production; human formatter for local debugging.
- LoggerAdapter that accepts arbitrary keyword fields.
- The library logger is silent by default; apps/tests opt in to stdout output.
"""

import contextvars
import json
import logging
import os
import sys
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

__all__ = [
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "swallow",
    "warn_once",
]

# ---------- Context ----------

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "reindexkit_log_ctx", default=None
)


def _ctx_copy() -> dict[str, Any]:
    ctx = _log_context.get()
    return dict(ctx) if ctx else {}


def bind_context(**fields: Any) -> None:
    """Merge fields into the current structured log context."""
    ctx = _ctx_copy()
    ctx.update({k: v for k, v in fields.items() if v is not None})
    _log_context.set(ctx)


@contextmanager
def log_context(**fields: Any):
    """
    Temporarily add fields to the structured log context.
    Restores the previous context on exit.

    Tasks created inside the block inherit a copy of the context, so a reindex
    run started from `add()` keeps logging with the entity fields bound.
    """
    token = _log_context.set({**_ctx_copy(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _log_context.reset(token)


# ---------- Formatters ----------

_STD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "asctime",
    }
)

# Context keys shown by the human formatter, in display order.
_HUMAN_KEYS: Final[tuple[str, ...]] = ("entity_id", "strength", "scope", "phase")


def _iso_utc_ms(ts: float) -> str:
    dt = datetime.fromtimestamp(ts, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _exc_tuple(record: logging.LogRecord):
    ei = record.exc_info
    if not ei:
        return None
    if isinstance(ei, BaseException):
        return (type(ei), ei, ei.__traceback__)
    if ei is True:
        return sys.exc_info()
    return ei


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, logger, message, bound context,
    keyword extras and exception info.
    """

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _iso_utc_ms(record.created),
            "level": record.levelname,
            "logger": record.name,
        }

        msg = record.getMessage()
        if msg:
            out["message"] = msg

        ctx = _log_context.get()
        if ctx:
            out.update(ctx)

        for k, v in record.__dict__.items():
            if k in _STD_ATTRS or k in out:
                continue
            out[k] = v

        exc = _exc_tuple(record)
        if exc:
            err = out.setdefault("error", {})
            err["type"] = exc[0].__name__ if exc[0] else "Exception"
            err["message"] = str(exc[1]) if exc[1] else None
            if self.include_stack:
                err["stack"] = self.formatException(exc)
        elif record.exc_text:
            out.setdefault("error", {})["stack"] = record.exc_text

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """Compact human-friendly formatter for local debugging."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s.%03d"

    def format(self, record: logging.LogRecord) -> str:
        s = f"{self.formatTime(record)} {record.levelname:<5} {record.name}: {record.getMessage()}"
        fields = {**_ctx_copy(), **{k: v for k, v in record.__dict__.items() if k in _HUMAN_KEYS}}
        compact = {k: fields[k] for k in _HUMAN_KEYS if fields.get(k) is not None}
        if compact:
            s += "  [" + ", ".join(f"{k}={v}" for k, v in compact.items()) + "]"
        exc = _exc_tuple(record)
        if exc:
            s += "\n" + self.formatException(exc)
        return s


# ---------- Filters / adapter ----------


class ContextFilter(logging.Filter):
    """Inject current log context into LogRecord for downstream handlers."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _log_context.get()
        if ctx:
            for k, v in ctx.items():
                if k not in record.__dict__:
                    record.__dict__[k] = v
        return True


class _LevelBand(logging.Filter):
    def __init__(self, *, min_level: int = logging.NOTSET, max_level: int = logging.CRITICAL) -> None:
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self.min_level <= record.levelno <= self.max_level


class _KwExtraAdapter(logging.LoggerAdapter):
    """
    Logger adapter that moves unknown kwargs into `extra={...}`:

        log.info("run finished", entity_id=..., duration_ms=...)
    """

    _passthrough: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra")
        if not isinstance(extra, dict):
            extra = {}
        for k in [k for k in kwargs if k not in self._passthrough]:
            v = kwargs.pop(k)
            key = f"field_{k}" if k in _STD_ATTRS else k
            extra.setdefault(key, v)
        kwargs["extra"] = extra
        return msg, kwargs


_WARN_ONCE_SEEN: set[str] = set()
_WARN_ONCE_LOCK = threading.Lock()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log a message only once per process for the given code."""
    with _WARN_ONCE_LOCK:
        if code in _WARN_ONCE_SEEN:
            return
        _WARN_ONCE_SEEN.add(code)
    adapter = logger if isinstance(logger, logging.LoggerAdapter) else _KwExtraAdapter(logger, {})
    adapter.log(level, msg, code=code, **extra)


# ---------- Public configuration API ----------

_LIBRARY_LOGGER_NAME = "reindexkit"
_configured = False
_stdout_handler_key = "_reindexkit_stdout_handler"
_stderr_handler_key = "_reindexkit_stderr_handler"


def _bootstrap_minimal() -> None:
    """Install a NullHandler and a context filter to keep the library silent by default."""
    global _configured
    if _configured:
        return
    lg = logging.getLogger(_LIBRARY_LOGGER_NAME)
    if not any(isinstance(h, logging.NullHandler) for h in lg.handlers):
        lg.addHandler(logging.NullHandler())
    if not any(isinstance(f, ContextFilter) for f in lg.filters):
        lg.addFilter(ContextFilter())
    _configured = True


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Return a namespaced logger adapter that accepts arbitrary keyword fields."""
    _bootstrap_minimal()
    base = logging.getLogger(_LIBRARY_LOGGER_NAME)
    target = base.getChild(name) if name else base
    return _KwExtraAdapter(target, {})


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    val = getattr(logging, str(level).upper(), None)
    if isinstance(val, int):
        return val
    raise ValueError(f"Invalid level name: {level!r}")


def set_level(level: int | str) -> None:
    """Change library logger level at runtime (affects all children)."""
    logging.getLogger(_LIBRARY_LOGGER_NAME).setLevel(_resolve_level(level))


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes", "on")


def enable_stdout_logging(
    *,
    level: int | str = logging.DEBUG,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Attach stream handlers for tests/local runs.

    - json_output=True -> JsonFormatter; pretty=True -> HumanFormatter
    - route_errors_to_stderr=True -> ERROR+ to stderr, others to stdout
    """
    lvl = _resolve_level(level)
    _bootstrap_minimal()
    lg = logging.getLogger(_LIBRARY_LOGGER_NAME)
    lg.setLevel(lvl)
    disable_stdout_logging()

    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    bands = [(sys.stdout, _stdout_handler_key, _LevelBand())]
    if route_errors_to_stderr:
        bands = [
            (sys.stdout, _stdout_handler_key, _LevelBand(max_level=logging.WARNING)),
            (sys.stderr, _stderr_handler_key, _LevelBand(min_level=logging.ERROR)),
        ]
    for stream, key, band in bands:
        h = logging.StreamHandler(stream)
        h.set_name(key)
        h.setLevel(lvl)
        h.addFilter(band)
        h.setFormatter(fmt)
        lg.addHandler(h)


def disable_stdout_logging() -> None:
    """Detach previously installed stdout/stderr handlers, if present."""
    lg = logging.getLogger(_LIBRARY_LOGGER_NAME)
    for h in list(lg.handlers):
        if h.get_name() in (_stdout_handler_key, _stderr_handler_key):
            lg.removeHandler(h)


def configure_from_env() -> None:
    """
    Env:
      - REINDEXKIT_LOG_STDOUT=1|true
      - REINDEXKIT_LOG_LEVEL=DEBUG|INFO|...
      - REINDEXKIT_LOG_PRETTY=1
      - REINDEXKIT_LOG_STACK=1
    """
    level = os.getenv("REINDEXKIT_LOG_LEVEL", "INFO")
    pretty = _env_flag("REINDEXKIT_LOG_PRETTY")

    _bootstrap_minimal()
    set_level(level)

    if _env_flag("REINDEXKIT_LOG_STDOUT"):
        enable_stdout_logging(
            level=level,
            json_output=not pretty,
            include_stack=_env_flag("REINDEXKIT_LOG_STACK"),
            pretty=pretty,
        )
    else:
        disable_stdout_logging()


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
    code: str,
    msg: str | None = None,
    reraise: bool = False,
    extra: Mapping[str, Any] | None = None,
    expected: bool = True,
):
    """
    Replace `try/except: pass` with structured logging.

    Example:
        with swallow(logger=log, code="sink.emit", msg="Instrumentation sink failed"):
            sink(event)
    """
    base_logger = logger or get_logger("swallow")
    adapter = base_logger if isinstance(base_logger, logging.LoggerAdapter) else _KwExtraAdapter(base_logger, {})
    try:
        yield
    except Exception:
        payload: dict[str, Any] = {"code": code, "expected": expected}
        if extra:
            payload.update(dict(extra))
        adapter.log(level, msg or "Suppressed exception", exc_info=True, **payload)
        if reraise:
            raise


_bootstrap_minimal()
