"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any
from uuid import UUID

from orgops.core.config import settings


def build_log_context(
    *,
    org_id: UUID | str | None = None,
    event_name: str | None = None,
    rule_id: UUID | str | None = None,
    source_type: str | None = None,
    dedupe_key: str | None = None,
) -> dict[str, Any]:
    """
    Return a PII-safe log context dict for ``extra=``.

    Payloads are never included; only identifiers.
    """
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if event_name:
        context["event_name"] = event_name
    if rule_id:
        context["rule_id"] = str(rule_id)
    if source_type:
        context["source_type"] = source_type
    if dedupe_key:
        context["dedupe_key"] = dedupe_key
    return context


def configure_logging() -> None:
    """Process-level logging setup for the API and CLI entry points."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
