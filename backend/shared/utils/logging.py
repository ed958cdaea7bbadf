"""
Structured logging for the dub tracker jobs.
Uses structlog so sync runs and source probes emit machine-parseable events.
"""
from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any, Optional

import structlog
from shared.config import Environment, get_settings


def setup_logging(
    service_name: str,
    extra_context: dict[str, Any] | None = None,
    json_logs: Optional[bool] = None,
) -> None:
    """
    Configure structured logging for a job process.

    Args:
        service_name: Process identifier (jobs, season_sync, dub_sync).
        extra_context: Additional static context fields bound to every log entry.
        json_logs: Force JSON (True) or console (False) rendering; defaults by environment.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs is None:
        json_logs = settings.environment != Environment.DEV
    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    # Per-request chatter from the HTTP and DB drivers
    for noisy in ("httpx", "httpcore", "asyncio", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    bound: dict[str, Any] = {"service": service_name, "instance_id": settings.instance_id}
    if extra_context:
        bound.update(extra_context)
    structlog.contextvars.bind_contextvars(**bound)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)


def run_context(run_id: str, job_type: str) -> AbstractContextManager[None]:
    """Bind run_id/job_type to every event logged inside the block, including source probes."""
    return structlog.contextvars.bound_contextvars(run_id=run_id, job_type=job_type)
