"""Load optional engine configuration from `.taskboard/config.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_ARCHIVE_DRAIN_TIMEOUT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_RECOMMENDATION_LIMIT,
    DEFAULT_RECOMMENDER_TIMEOUT,
    MAX_PAGE_SIZE,
    MAX_PROJECT_PAGE_SIZE,
    MAX_RECOMMENDATION_LIMIT,
    RECOMMENDER_URL_ENV,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error


def load_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        project_dir: Directory holding the `.taskboard/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _positive_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        return default
    return raw


def _positive_float(raw: Any, default: float) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
        return default
    return float(raw)


def get_recommendations_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the recommendations block with defaults filled in.

    The hard cap can be lowered by config but never raised above
    ``MAX_RECOMMENDATION_LIMIT``.
    """
    raw = _get_nested(config, "recommendations")
    block = raw if isinstance(raw, dict) else {}
    max_limit = min(_positive_int(block.get("max_limit"), MAX_RECOMMENDATION_LIMIT), MAX_RECOMMENDATION_LIMIT)
    default_limit = min(_positive_int(block.get("default_limit"), DEFAULT_RECOMMENDATION_LIMIT), max_limit)
    base_url = os.environ.get(RECOMMENDER_URL_ENV) or block.get("base_url")
    return {
        "default_limit": default_limit,
        "max_limit": max_limit,
        "base_url": str(base_url) if base_url else None,
        "timeout": _positive_float(block.get("timeout"), DEFAULT_RECOMMENDER_TIMEOUT),
    }


def get_archive_drain_timeout(config: dict[str, Any]) -> float:
    """Seconds archival waits for in-flight task mutations to drain."""
    return _positive_float(_get_nested(config, "archive", "drain_timeout"), DEFAULT_ARCHIVE_DRAIN_TIMEOUT)


def get_max_page_size(config: dict[str, Any]) -> int:
    return _positive_int(_get_nested(config, "pagination", "max_page_size"), MAX_PAGE_SIZE)


def get_max_project_page_size(config: dict[str, Any]) -> int:
    """Project listings page at most 50 rows, never more than the general cap."""
    raw = _positive_int(_get_nested(config, "pagination", "max_project_page_size"), MAX_PROJECT_PAGE_SIZE)
    return min(raw, MAX_PROJECT_PAGE_SIZE, get_max_page_size(config))


def get_log_level(config: dict[str, Any]) -> str:
    raw = config.get("log_level")
    if isinstance(raw, str) and raw.strip():
        return raw.strip().upper()
    return DEFAULT_LOG_LEVEL
