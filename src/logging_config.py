"""
Structured logging for the intake service.

structlog renders JSON in production and colored console output in
development. Entries carry the request ``trace_id`` and, while a
recording session is being worked on, its ``session_id`` and
``consultation_id``. Patient free text (transcripts, queries) is
never written out, only its length.

Usage:
    from src.logging_config import get_logger, session_log_context

    logger = get_logger(__name__)
    with session_log_context(session.id, session.consultation_id):
        logger.info("session_pipeline_started")
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import structlog

from src.config import get_settings

trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
session_id_var: ContextVar[str] = ContextVar("session_id", default="")
consultation_id_var: ContextVar[str] = ContextVar("consultation_id", default="")

# Event keys that may hold what a patient or clinician said.
CLINICAL_TEXT_KEYS = ("transcript", "query", "original_text")

_QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "urllib3", "asyncio", "postgrest", "supabase")


def _inject_correlation_ids(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add the trace, session and consultation ids of the current context."""
    for key, var in (
        ("trace_id", trace_id_var),
        ("session_id", session_id_var),
        ("consultation_id", consultation_id_var),
    ):
        value = var.get("")
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def redact_clinical_text(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Replace free text from the clinic with its length."""
    for key in CLINICAL_TEXT_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = f"<{len(value)} chars>"
    return event_dict


def generate_trace_id() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def session_log_context(session_id: str, consultation_id: str | None = None) -> Iterator[None]:
    """Tag every entry logged inside the block with the session it concerns."""
    session_token = session_id_var.set(session_id)
    consultation_token = consultation_id_var.set(consultation_id or "")
    try:
        yield
    finally:
        consultation_id_var.reset(consultation_token)
        session_id_var.reset(session_token)


def setup_logging() -> None:
    """
    Configure structlog and route stdlib logging (uvicorn, httpx,
    supabase) through the same renderer.
    """
    settings = get_settings()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_correlation_ids,
        redact_clinical_text,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
