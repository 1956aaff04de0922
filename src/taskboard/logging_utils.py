"""Configure loguru and render engine objects for log lines."""

from __future__ import annotations

import json
import sys
from typing import Any

from loguru import logger

from .constants import DEFAULT_LOG_LEVEL


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure the loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Compact view of a mutation patch; long free-text fields are truncated."""
    out: dict[str, Any] = {}
    for key, value in patch.items():
        if isinstance(value, str) and len(value) > 80:
            out[key] = value[:80] + "…"
        else:
            out[key] = getattr(value, "value", value)
    return out


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
