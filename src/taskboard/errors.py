"""Error taxonomy for the task lifecycle engine.

Every error derives from :class:`EngineError`, itself a :class:`ValueError`,
so callers that only care about "the request was refused" can keep catching
``ValueError``.  Each class carries a stable ``kind`` (used as the error code
on the wire), whether a caller retry can ever help, and the HTTP status the
API layer maps it to.
"""

from __future__ import annotations

from typing import Any


class EngineError(ValueError):
    """Base class for every refusal raised by the engine."""

    kind = "engine_error"
    retryable = False
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.kind,
            "detail": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["context"] = dict(self.details)
        return payload


# ---------------------------------------------------------------------------
# Business-rule violations (deterministic, never retried)
# ---------------------------------------------------------------------------

class InvalidTransition(EngineError):
    """Requested status/assignee change is not permitted from the current state."""

    kind = "invalid_transition"


class InvalidPatch(EngineError):
    """Patch names an unknown field or carries a malformed value."""

    kind = "invalid_patch"
    status_code = 422


class EngineerUnavailable(EngineError):
    """Target engineer already holds an in-progress task."""

    kind = "engineer_unavailable"
    status_code = 409


class ProjectArchived(EngineError):
    """Mutation attempted against a frozen project."""

    kind = "project_archived"
    status_code = 409


class AlreadyExists(EngineError):
    """Create requested with an id that is already taken."""

    kind = "already_exists"
    status_code = 409


class AlreadyArchived(EngineError):
    """Archival requested for a project that is already archived."""

    kind = "already_archived"
    status_code = 409


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class NotFound(EngineError):
    kind = "not_found"
    status_code = 404


class TaskNotFound(NotFound):
    kind = "task_not_found"


class ProjectNotFound(NotFound):
    kind = "project_not_found"


class EngineerNotFound(NotFound):
    kind = "engineer_not_found"


# ---------------------------------------------------------------------------
# Transient failures (caller may retry with backoff)
# ---------------------------------------------------------------------------

class MutationInProgress(EngineError):
    """A conflicting mutation is already in flight for the same task."""

    kind = "mutation_in_progress"
    retryable = True
    status_code = 409


class GatewayUnavailable(EngineError):
    """Recommendation oracle unreachable, timed out, or answered with an error."""

    kind = "gateway_unavailable"
    retryable = True
    status_code = 503
