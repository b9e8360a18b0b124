"""Structured logging for ingestrag.

Every module logs through ``get_logger(__name__)`` with snake_case event
names (``scan_page_failed``, ``item_completed``) and key/value context.
Run-scoped fields such as ``task_type`` are bound once per run with
``run_context`` and merged into every event emitted inside it, including
events from the scanner, processor and lock store.

Formats: ``colored`` and ``plain`` render for humans; ``json`` emits one
object per line for the API server's log collector.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

LOG_FORMATS = ("colored", "plain", "json")

_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(
        colors=log_format == "colored" and sys.stderr.isatty()
    )


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "colored",
    log_timestamps: bool = True,
) -> None:
    """Route structlog and stdlib logging through one processor chain.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR)
        log_format: One of ``colored``, ``plain`` or ``json``
        log_timestamps: Add an ISO timestamp to each event
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
    ]
    if log_timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def run_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every event logged until the block exits.

    Example:
        with run_context(task_type="sermon", lock_id=lock_id):
            await processor.process_batch(items, token)
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield


class Timer:
    """Log ``<operation>_started`` and then ``_completed`` or ``_failed``.

    Durations are in milliseconds. Call ``complete(**fields)`` inside the
    block to attach results to the completion event; otherwise a bare
    completion event is logged on exit.

    Example:
        with Timer(logger, "scan", task_type="bulletin") as timer:
            result = await scanner.scan(config)
            timer.complete(new_count=result.new_count)
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ) -> None:
        self.logger = logger.bind(operation=operation, **context)
        self.operation = operation
        self._started = 0.0
        self._completed = False

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 2)

    def __enter__(self) -> Timer:
        self._started = time.perf_counter()
        self.logger.info(f"{self.operation}_started")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is not None:
            self.logger.error(
                f"{self.operation}_failed",
                duration_ms=self.elapsed_ms,
                error_type=exc_type.__name__,
                error=str(exc_val),
            )
        elif not self._completed:
            self.complete()

    def complete(self, **fields: Any) -> None:
        self._completed = True
        self.logger.info(f"{self.operation}_completed", duration_ms=self.elapsed_ms, **fields)
