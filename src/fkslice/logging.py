"""
Logging for fkslice.

Every module logs through ``get_logger(__name__)``, which returns a
``ContextLogger``: keyword arguments given to a log call (or bound once with
``with_context``) are stored on the record as ``record.context``. The
``fkslice`` logger writes to stderr, as plain text or one JSON object per
line, so the sampled subset can be piped from stdout.
"""

import json
import logging
import sys
import time
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from enum import Enum
from typing import Any

ROOT_LOGGER = "fkslice"

QUERY_PREVIEW_CHARS = 200

# Keyword arguments consumed by logging itself; everything else is context.
_RESERVED_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


class LogFormat(str, Enum):
    """How records are rendered on stderr."""

    TEXT = "text"
    JSON = "json"


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "context", None) or {}


class TextFormatter(logging.Formatter):
    """``2024-05-01 10:00:00 INFO    fkslice.core.resolver: Seeded table [table=public.users]``"""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = None

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record)} {record.levelname:<7} {record.name}: "
        line += record.getMessage()

        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{key}={value}" for key, value in context.items()) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per record, context nested under ``context``."""

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03d"

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = record_context(record)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


_FORMATTERS: dict[LogFormat, type[logging.Formatter]] = {
    LogFormat.TEXT: TextFormatter,
    LogFormat.JSON: JSONFormatter,
}


def setup_logging(
    verbose: bool = False,
    no_progress: bool = False,
    log_format: LogFormat = LogFormat.TEXT,
) -> logging.Handler:
    """
    Send fkslice records to stderr and return the installed handler.

    ``verbose`` shows DEBUG records, ``no_progress`` limits output to warnings
    and errors. Calling it again replaces the previous handler.
    """
    level = logging.DEBUG if verbose else logging.WARNING if no_progress else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(_FORMATTERS[LogFormat(log_format)]())

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    root.addHandler(handler)
    root.propagate = False
    return handler


class ContextLogger(logging.LoggerAdapter):
    """
    Adapter that turns extra keyword arguments into ``record.context``.

        log = get_logger(__name__).with_context(table="public.users")
        log.debug("Seeded table", drawn=2)   # context: table, drawn
    """

    def __init__(self, logger: logging.Logger, context: dict[str, Any] | None = None):
        super().__init__(logger, dict(context or {}))

    @property
    def context(self) -> dict[str, Any]:
        return dict(self.extra)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        context = dict(self.extra)
        for key in [k for k in kwargs if k not in _RESERVED_KWARGS]:
            context[key] = kwargs.pop(key)
        if context:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": context}
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLogger":
        """Return a logger that adds ``context`` to every record it emits."""
        return ContextLogger(self.logger, {**self.extra, **context})

    @contextmanager
    def timed_operation(self, operation: str, **context: Any) -> Iterator[None]:
        """Log the start, the end with ``duration_ms``, or the failure of a block."""
        self.debug(f"Starting {operation}", **context)
        started = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.error(
                f"Failed {operation}",
                exc_info=True,
                duration_ms=_elapsed_ms(started),
                error=str(exc),
                **context,
            )
            raise
        self.info(f"Completed {operation}", duration_ms=_elapsed_ms(started), **context)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def get_logger(name: str) -> ContextLogger:
    """Return a ContextLogger nested under the ``fkslice`` logger."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return ContextLogger(logging.getLogger(name))


def log_query(logger: ContextLogger, query: str, params: tuple | list) -> None:
    """DEBUG-log a statement, cut to a preview, with its parameter count."""
    preview = query if len(query) <= QUERY_PREVIEW_CHARS else query[:QUERY_PREVIEW_CHARS] + "..."
    logger.debug("Executing query", query_preview=preview, param_count=len(params or ()))


def log_sampling_complete(
    logger: ContextLogger, total_rows: int, table_count: int, duration_ms: int
) -> None:
    logger.info(
        "Sampling complete",
        total_rows=total_rows,
        table_count=table_count,
        duration_ms=duration_ms,
    )
