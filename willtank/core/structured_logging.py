"""Structured logging helpers (PIN- and email-safe)."""

import logging
from typing import Any

from willtank.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the API, CLI and worker processes."""
    resolved = (level or settings.LOG_LEVEL or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


def build_log_context(
    *,
    user_id: str | None = None,
    verification_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict. Never pass PINs or raw email addresses here."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if verification_id:
        context["verification_id"] = verification_id
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
