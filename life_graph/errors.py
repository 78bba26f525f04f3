"""Error hierarchy for the processing pipeline.

Every classified failure derives from :class:`LifeGraphError`, which carries
a stable ``code``, the HTTP status the API maps it to, and an optional
``context`` dict for logs (only exposed over HTTP in debug mode).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class LifeGraphError(Exception):
    """Base class for all classified errors."""

    code: str = "INTERNAL"
    http_status: int = 500

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self, include_context: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": self.code, "message": self.message}
        if include_context and self.context:
            data["context"] = self.context
        return data


class ValidationError(LifeGraphError):
    """Malformed or oversized input. Nothing is persisted."""

    code = "VALIDATION"
    http_status = 400


class TriagePlanInvalid(LifeGraphError):
    """Triage output was unparsable or missing required fields."""

    code = "TRIAGE_PLAN_INVALID"
    http_status = 502


class TriageUnavailable(LifeGraphError):
    """The triage collaborator could not be reached after the configured retries."""

    code = "TRIAGE_UNAVAILABLE"
    http_status = 503


class AgentExecutionError(LifeGraphError):
    """A single task's extractor failed; recorded, never aborts the plan."""

    code = "AGENT_EXECUTION"
    http_status = 500

    def __init__(self, message: str, *, task_id: str, extractor: str,
                 context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, context={"task_id": task_id, "extractor": extractor, **(context or {})})
        self.task_id = task_id
        self.extractor = extractor


class ToolNotFound(LifeGraphError):
    code = "TOOL_NOT_FOUND"
    http_status = 500


class PermissionDenied(LifeGraphError):
    code = "PERMISSION_DENIED"
    http_status = 403


class PersistenceError(LifeGraphError):
    """A store write failed. Rows written earlier in the request stay."""

    code = "PERSISTENCE"
    http_status = 500


class AllTasksFailed(LifeGraphError):
    """Every task of a valid plan failed.

    The target entity has already been resolved at this point, so
    ``entity_id`` is set and the entity exists with no new components.
    """

    code = "ALL_TASKS_FAILED"
    http_status = 422

    def __init__(self, message: str, *, entity_id: Optional[str],
                 failures: List[Dict[str, Any]]) -> None:
        super().__init__(message, context={"entity_id": entity_id, "failures": failures})
        self.entity_id = entity_id
        self.failures = failures

    def to_dict(self, include_context: bool = False) -> Dict[str, Any]:
        data = super().to_dict(include_context)
        data["entity_id"] = self.entity_id
        return data
