"""Structured logging helpers."""

import logging
from typing import Any


def build_log_context(
    *,
    sheet: str | None = None,
    action: str | None = None,
    change_count: int | None = None,
    spreadsheet_id: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict for `extra=`."""
    context: dict[str, Any] = {}
    if sheet:
        context["sheet"] = sheet
    if action:
        context["action"] = action
    if change_count is not None:
        context["change_count"] = change_count
    if spreadsheet_id:
        context["spreadsheet_id"] = spreadsheet_id
    return context


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for CLI and worker entrypoints."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
