"""Logging setup, operation timing and the audit trail."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

audit_logger = structlog.get_logger("audit")


def configure_logging(level: str = "info", json: bool = False) -> None:
    """Configure structlog for the service.

    Args:
        level: Minimum level (debug, info, warning, error)
        json: Render JSON lines instead of the console format
    """
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
    )


@contextmanager
def time_track(logger: Any, operation: str) -> Iterator[None]:
    """Log how long the wrapped block took, at debug level."""
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.debug(
            "Time elapsed",
            operation=operation,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )


def identity_fingerprint(bearer_token: str) -> str:
    """Short stable identifier of a bearer token, safe to log."""
    return hashlib.sha256(bearer_token.encode()).hexdigest()[:12]


def audit_log(message: str, namespace: str, name: str, **fields: Any) -> None:
    """Record an authorization decision or flow completion in the audit trail."""
    audit_logger.info(message, audit=True, namespace=namespace, token=name, **fields)
