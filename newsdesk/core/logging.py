"""
structlog over stdlib logging, shared by the API, the workers and cron.

Every record carries the service name and environment. Long-running units of
work (a scheduler cycle, one broker delivery) bind their identifiers with
log_context() so every line logged underneath can be correlated.
Development renders coloured console lines, production renders JSON.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from newsdesk.core.config import Settings, get_settings

SERVICE_NAME = "newsdesk"

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "sqlalchemy.engine", "feedparser")


def _service_fields(environment: str) -> structlog.types.Processor:
    def add_service(logger, method_name, event_dict):
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("env", environment)
        return event_dict

    return add_service


def setup_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _service_fields(settings.app_env),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if settings.app_env == "production"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            # records from plain stdlib loggers (uvicorn, sqlalchemy) get the same fields
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def log_context(**values) -> Iterator[None]:
    """Bind `values` to every log line emitted inside the block (task-local)."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
