"""Structured logging and OpenTelemetry spans for strata.

Every synthesis stage runs inside ``span()``: one span named
``strata.<stage>`` plus ``<stage>_started``/``_completed``/``_failed`` log
events carrying the same attributes and the stage duration.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from strata_core.errors import StrataError

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer

logger = structlog.get_logger(__name__)

TRACER_NAME = "strata"
ATTRIBUTE_PREFIX = "strata."


def get_tracer() -> Tracer:
    """Tracer for synthesis spans; a no-op unless an SDK is installed."""
    return trace.get_tracer(TRACER_NAME)


def configure_logging(*, log_level: str = "INFO", json_format: bool = True) -> None:
    """Route structlog through stdlib logging with timestamps.

    Args:
        log_level: Minimum level name, e.g. ``"DEBUG"``.
        json_format: JSON lines when True, console rendering otherwise.
    """
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    logging.basicConfig(format="%(message)s", level=log_level.upper())


def _span_attributes(attributes: dict[str, Any]) -> dict[str, Any]:
    # OpenTelemetry only accepts primitive attribute values
    return {
        f"{ATTRIBUTE_PREFIX}{key}": (
            value if isinstance(value, str | bool | int | float) else str(value)
        )
        for key, value in attributes.items()
        if value is not None
    }


@contextmanager
def span(
    name: str,
    *,
    attributes: dict[str, Any] | None = None,
    log_start: bool = True,
    log_end: bool = True,
) -> Iterator[Span]:
    """Run a synthesis stage inside a span.

    Failures are always logged and re-raised. ``StrataError`` is logged by
    its user message, anything else by ``str(exc)``.

    Args:
        name: Stage name, e.g. ``"split"``.
        attributes: Context logged with every event and set on the span.
        log_start: Emit ``<name>_started`` at debug level.
        log_end: Emit ``<name>_completed`` at info level.

    Yields:
        The active span.

    Example:
        >>> with span("split", attributes={"stack": "shop"}):
        ...     splitter.split(graph, categorization)
    """
    attrs = attributes or {}
    started = time.perf_counter()

    with get_tracer().start_as_current_span(
        f"{TRACER_NAME}.{name}", attributes=_span_attributes(attrs)
    ) as current:
        if log_start:
            logger.debug(f"{name}_started", **attrs)
        try:
            yield current
        except Exception as exc:
            message = exc.user_message if isinstance(exc, StrataError) else str(exc)
            current.set_status(Status(StatusCode.ERROR, message))
            current.record_exception(exc)
            logger.error(
                f"{name}_failed",
                error=message,
                error_type=type(exc).__name__,
                duration_ms=_elapsed_ms(started),
                **attrs,
            )
            raise
        current.set_status(Status(StatusCode.OK))
        if log_end:
            logger.info(f"{name}_completed", duration_ms=_elapsed_ms(started), **attrs)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def log_retry_attempt(
    operation: str,
    attempt: int,
    max_attempts: int,
    wait_seconds: float,
    error: str,
) -> None:
    """Warn that ``operation`` failed and will be attempted again."""
    logger.warning(
        "operation_retry",
        operation=operation,
        attempt=attempt,
        remaining=max_attempts - attempt,
        wait_seconds=round(wait_seconds, 3),
        error=error,
    )
