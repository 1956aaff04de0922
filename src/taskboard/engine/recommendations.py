"""Recommendation gateway: typed access to the external scoring oracle.

The oracle is any callable ``(task, limit) -> iterable of mappings`` with an
engineer id (``engineer_id`` or ``user_id``) and a ``score``.  The gateway
does not trust it: malformed rows are dropped, scores are clamped into
``[0, 1]``, duplicate engineers keep their best score, and the result is
re-sorted and capped here no matter what the oracle returned.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Optional, Protocol

import httpx
from loguru import logger

from ..constants import (
    DEFAULT_RECOMMENDATION_LIMIT,
    DEFAULT_RECOMMENDER_TIMEOUT,
    MAX_RECOMMENDATION_LIMIT,
)
from ..errors import GatewayUnavailable
from .model import Recommendation, Task
from .store import TaskStore


class Recommender(Protocol):
    def __call__(self, task: Task, limit: int) -> Iterable[Mapping[str, Any]]: ...


class HttpRecommender:
    """Call the scoring service over HTTP.

    Request: ``POST {base_url}/manager/recommendations`` with
    ``{"task_id": ..., "limit": ...}``; response
    ``{"recommendations": [{"user_id", "name", "email", "score"}]}``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_RECOMMENDER_TIMEOUT,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._transport = transport

    def __call__(self, task: Task, limit: int) -> list[Mapping[str, Any]]:
        with httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.headers,
            transport=self._transport,
        ) as client:
            resp = client.post(
                "/manager/recommendations",
                json={"task_id": task.id, "limit": limit},
            )
            resp.raise_for_status()
            payload = resp.json()
        if isinstance(payload, dict):
            rows = payload.get("recommendations") or []
        else:
            rows = payload or []
        return [row for row in rows if isinstance(row, Mapping)]


def _coerce_row(row: Mapping[str, Any]) -> Optional[Recommendation]:
    engineer_id = row.get("engineer_id", row.get("user_id"))
    if engineer_id is None or engineer_id == "":
        return None
    raw_score = row.get("score")
    if isinstance(raw_score, bool):
        return None
    try:
        score = float(raw_score)
    except (TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    name = row.get("name")
    email = row.get("email")
    return Recommendation(
        engineer_id=str(engineer_id),
        score=min(1.0, max(0.0, score)),
        name=str(name) if name is not None else None,
        email=str(email) if email is not None else None,
    )


def rank(rows: Iterable[Mapping[str, Any]], limit: int) -> list[Recommendation]:
    """Sanitize oracle output into the ordering/cap contract."""
    if limit < 1:
        return []
    best: dict[str, Recommendation] = {}
    dropped = 0
    for row in rows:
        rec = _coerce_row(row) if isinstance(row, Mapping) else None
        if rec is None:
            dropped += 1
            continue
        seen = best.get(rec.engineer_id)
        if seen is None or rec.score > seen.score:
            best[rec.engineer_id] = rec
    if dropped:
        logger.warning("Dropped {} malformed recommendation row(s)", dropped)
    return sorted(best.values(), key=lambda r: r.sort_key)[:limit]


class RecommendationGateway:
    """Ranked, capped candidate lists for a task.

    Parameters
    ----------
    store:
        Used read-only to resolve the task handed to the oracle.
    recommender:
        The scoring oracle.  ``None`` means no oracle is configured and every
        request fails with :class:`GatewayUnavailable`.
    """

    def __init__(
        self,
        store: TaskStore,
        recommender: Optional[Recommender] = None,
        *,
        default_limit: int = DEFAULT_RECOMMENDATION_LIMIT,
        max_limit: int = MAX_RECOMMENDATION_LIMIT,
    ) -> None:
        self.store = store
        self.recommender = recommender
        self.max_limit = min(max_limit, MAX_RECOMMENDATION_LIMIT)
        self.default_limit = min(default_limit, self.max_limit)

    def effective_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_limit
        return min(int(limit), self.max_limit)

    def recommend(self, task_id: str, limit: Optional[int] = None) -> list[Recommendation]:
        """Return up to *limit* recommendations, best first.

        An empty list means nobody matched (or the task needs no particular
        skills); it is not an error.
        """
        capped = self.effective_limit(limit)
        task = self.store.get_task(task_id)
        if capped < 1:
            return []
        if self.recommender is None:
            raise GatewayUnavailable("No recommendation service is configured", task_id=task_id)
        try:
            rows = list(self.recommender(task, capped))
        except httpx.HTTPStatusError as exc:
            raise GatewayUnavailable(
                f"Recommendation service answered {exc.response.status_code}",
                task_id=task_id,
            ) from exc
        except (httpx.HTTPError, OSError, TimeoutError) as exc:
            raise GatewayUnavailable(
                f"Recommendation service unreachable: {exc.__class__.__name__}: {exc}",
                task_id=task_id,
            ) from exc
        except ValueError as exc:
            raise GatewayUnavailable(
                f"Recommendation service returned an unreadable payload: {exc}",
                task_id=task_id,
            ) from exc
        ranked = rank(rows, capped)
        logger.debug("Recommendations for {}: {}", task_id, [r.engineer_id for r in ranked])
        return ranked
