"""structlog configuration shared by the supervisor, the worker and the CLI."""

from __future__ import annotations

import logging
from typing import Any, TextIO

import structlog


def configure_logging(
    level: int = logging.INFO,
    use_json: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog processors and the output stream.

    Example:
        ```python
        configure_logging(logging.DEBUG, use_json=True)
        ```
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if use_json:
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger bound to `name`.

    Example:
        ```python
        logger = get_logger("safe_py_supervisor.supervisor")
        ```
    """
    return structlog.get_logger(name)
