"""Request-scoped context threaded through the pipeline."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Optional

from .errors import ValidationError

MAX_QUERY_LENGTH = 2000
MAX_ID_LENGTH = 64
DEFAULT_CONVERSATION_ID = "default_conversation"

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")

# Keys the orchestrator injects into every extractor call. They override
# task fields of the same name.
SHARED_CONTEXT_KEYS = frozenset({
    "original_query",
    "triage_summary",
    "conversation_id",
    "owner_id",
    "entity_id",
    "target_entity",
    "plan",
    "previous_components",
    "task_id",
    "original_query_part",
})


def sanitize_identifier(raw: Optional[str], default: str) -> str:
    """Strip everything outside ``[A-Za-z0-9_-]``; fall back to *default*."""
    if not raw:
        return default
    cleaned = _UNSAFE_ID_CHARS.sub("", str(raw))[:MAX_ID_LENGTH]
    return cleaned or default


def validate_query(query: Optional[str]) -> str:
    """Return the stripped query or raise ValidationError."""
    if not isinstance(query, str):
        raise ValidationError("Query must be a string")
    text = query.strip()
    if not text:
        raise ValidationError("Query is required")
    if len(text) > MAX_QUERY_LENGTH:
        raise ValidationError(
            f"Query exceeds {MAX_QUERY_LENGTH} characters",
            context={"length": len(text)},
        )
    return text


@dataclass(frozen=True)
class RequestContext:
    """Who is asking, in which conversation, about what."""

    owner_id: str
    conversation_id: str
    query: str
    request_id: str

    @classmethod
    def build(
        cls,
        query: Optional[str],
        conversation_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        default_owner_id: str = "default_user",
        request_id: Optional[str] = None,
    ) -> "RequestContext":
        return cls(
            owner_id=sanitize_identifier(owner_id, default_owner_id),
            conversation_id=sanitize_identifier(conversation_id, DEFAULT_CONVERSATION_ID),
            query=validate_query(query),
            request_id=request_id or uuid.uuid4().hex[:16],
        )
