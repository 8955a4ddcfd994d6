"""Structured logging for the trip dispatcher.

Every module logs through ``logging.getLogger(__name__)``; structlog's
``ProcessorFormatter`` renders those records, so plain stdlib call sites get
the same enrichment as structlog loggers:

- ``dispatcher``: the name of the running dispatcher
- ``trip_id`` / ``track``: set by :func:`bind_trip` while one trip is handled
- ``trace_id`` / ``span_id``: only while an OpenTelemetry span is recording

With ``log_root`` set, JSON lines are also written to
``{log_root}/{name}.jsonl`` (everything) and ``{log_root}/{name}.transport.jsonl``
(webhook server and gateway HTTP client). Transport records below WARNING
are kept off the console but still reach both files.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

from trip_dispatcher.config import LoggingConfig

_dispatcher_name: ContextVar[str | None] = ContextVar("dispatcher_name", default=None)

# Capped at WARNING on the console only; the transport file keeps the configured level.
TRANSPORT_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "httpcore")


class _TransportCap(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.WARNING or not record.name.startswith(TRANSPORT_LOGGERS)


def set_dispatcher_name(name: str | None) -> None:
    _dispatcher_name.set(name)


def get_dispatcher_name() -> str | None:
    return _dispatcher_name.get()


@contextmanager
def bind_trip(trip_id: str, track: str | None = None) -> Iterator[None]:
    """Tag every log record emitted inside the block with the trip (and track)."""
    fields = {"trip_id": trip_id}
    if track is not None:
        fields["track"] = str(track)
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def add_dispatch_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    event_dict.setdefault("dispatcher", _dispatcher_name.get())
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt, utc=timestamp_fmt == "iso"),
        add_dispatch_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(renderer, pre_chain) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _jsonl_handler(path: Path) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), _pre_chain("iso")))
    return handler


def configure_logging(
    settings: LoggingConfig | None = None,
    *,
    dispatcher_name: str | None = None,
) -> None:
    """Install console (and optional file) logging for the whole process.

    Safe to call more than once: handlers installed by an earlier call are
    replaced, not stacked.
    """
    settings = settings or LoggingConfig()
    if dispatcher_name:
        set_dispatcher_name(dispatcher_name)

    if settings.format == "json":
        pre_chain = _pre_chain("iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))
    console.addFilter(_TransportCap())

    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers = [console]
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))

    for name in TRANSPORT_LOGGERS:
        transport_logger = logging.getLogger(name)
        transport_logger.setLevel(logging.NOTSET)
        for handler in transport_logger.handlers:
            handler.close()
        transport_logger.handlers = []

    if settings.log_root:
        log_root = Path(settings.log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        stem = dispatcher_name or "trip-dispatcher"
        root.addHandler(_jsonl_handler(log_root / f"{stem}.jsonl"))
        transport_file = _jsonl_handler(log_root / f"{stem}.transport.jsonl")
        for name in TRANSPORT_LOGGERS:
            logging.getLogger(name).addHandler(transport_file)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
