"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

from callgate.core.errors import DataIntegrityAnomaly


def build_log_context(
    *,
    user_id: str | None = None,
    counterparty_id: str | None = None,
    month: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (ids only, never emails or names)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if counterparty_id:
        context["counterparty_id"] = str(counterparty_id)
    if month:
        context["month"] = month
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    return context


def log_data_anomaly(
    logger: logging.Logger,
    message: str,
    *args: Any,
    **context: str | None,
) -> None:
    """
    Record tolerated bad data at WARNING.

    The record carries ``anomaly="DataIntegrityAnomaly"`` so offline cleanup
    can filter for it; the anomaly itself is never raised.
    """
    extra = build_log_context(**context)
    extra["anomaly"] = DataIntegrityAnomaly.__name__
    logger.warning(message, *args, extra=extra)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
