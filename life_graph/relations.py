"""Relationship extraction from free text.

Regex + heuristics only (no NER model):
* Fixed normalisation table from relationship nouns to canonical edge types
* Ordered lexical patterns yielding (source, target, type) candidates
* Symmetric plural statements ("X and Y are friends") expand to two edges
* First-person subjects resolve to the owner's own node (``me``)

Candidates that end up without a source, target or type are dropped before
anything reaches the graph store.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

SELF_ENTITY_NAME = "me"

# ---------------------------------------------------------------------------
# Normalisation table
# ---------------------------------------------------------------------------

RELATION_TYPE_MAP: Dict[str, str] = {
    "friend": "friend_of",
    "friends": "friend_of",
    "brother": "sibling_of",
    "brothers": "sibling_of",
    "sister": "sibling_of",
    "sisters": "sibling_of",
    "sibling": "sibling_of",
    "siblings": "sibling_of",
    "father": "parent_of",
    "mother": "parent_of",
    "parent": "parent_of",
    "parents": "parent_of",
    "child": "child_of",
    "children": "child_of",
    "son": "child_of",
    "daughter": "child_of",
    "colleague": "colleague_of",
    "colleagues": "colleague_of",
    "coworker": "colleague_of",
    "coworkers": "colleague_of",
    "boss": "manager_of",
    "manager": "manager_of",
    "employee": "employee_of",
    "neighbor": "neighbor_of",
    "neighbors": "neighbor_of",
    "neighbour": "neighbor_of",
    "neighbours": "neighbor_of",
    "roommate": "roommate_of",
    "roommates": "roommate_of",
    "partner": "partner_of",
    "partners": "partner_of",
    "spouse": "spouse_of",
    "spouses": "spouse_of",
    "husband": "spouse_of",
    "wife": "spouse_of",
    "married": "spouse_of",
}

# Default edge strength per canonical type
RELATION_STRENGTHS: Dict[str, float] = {
    "spouse_of": 1.0,
    "parent_of": 1.0,
    "child_of": 1.0,
    "sibling_of": 0.9,
    "partner_of": 0.9,
    "friend_of": 0.8,
    "manager_of": 0.8,
    "colleague_of": 0.7,
    "employee_of": 0.6,
    "lives_in": 0.6,
    "roommate_of": 0.6,
    "neighbor_of": 0.5,
}


def normalize_relation_type(text: str) -> str:
    """Map a relationship noun to its canonical edge type.

    Unmapped input is returned unchanged.
    """
    return RELATION_TYPE_MAP.get(text.strip().lower(), text)


def default_strength(rel_type: str) -> float:
    return RELATION_STRENGTHS.get(rel_type, 1.0)


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

@dataclass
class RelationCandidate:
    """One extracted (source, target, type) tuple."""
    source: Optional[str]
    target: Optional[str]
    type: Optional[str]
    source_type: str = "person"
    target_type: str = "person"
    strength: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_complete(self) -> bool:
        return bool(self.source and self.target and self.type)

    def key(self) -> tuple:
        return (self.source, self.target, self.type)

    def edge_strength(self) -> float:
        if self.strength is not None:
            return self.strength
        return default_strength(self.type or "")


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# Capitalised one- or two-word names ("John", "Mary Ann"). Case-sensitive on
# purpose; keywords use scoped (?i:...) groups instead.
_NAME = r"[A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)?"
_PROPER = r"[A-Z][\w'’&.-]*(?:\s+[A-Z][\w'’&.-]*)*"
_REL_WORDS = (
    "friend|brother|sister|sibling|father|mother|parent|children|child|daughter|son|"
    "colleague|coworker|boss|manager|employee|neighbour|neighbor|roommate|partner|"
    "spouse|husband|wife"
)
_PLURAL_WORDS = (
    "friends|colleagues|coworkers|neighbors|neighbours|roommates|partners|spouses|"
    "married|siblings|brothers|sisters"
)
_ADJ = r"(?:(?i:best|good|close|old|older|younger|little|big|new|dear)\s+)?"
# Optional "is my brother" / ", who" clause between a subject and its verb
_SUBJECT_CLAUSE = (
    r"(?:\s+(?i:is|was)\s+(?:(?i:my)|" + _NAME + r"['’]s)\s+" + _ADJ + r"[a-z]+)?,?"
    r"(?:\s+(?i:who))?"
)

_POSSESSIVE = re.compile(
    r"\b(?P<subject>" + _NAME + r")\s+(?i:is|was)\s+"
    r"(?P<owner>(?i:my)|" + _NAME + r"['’]s)\s+" + _ADJ +
    r"(?P<rel>(?i:" + _REL_WORDS + r"))\b"
)
_MY_RELATION = re.compile(
    r"\b(?i:my)\s+" + _ADJ + r"(?P<rel>(?i:" + _REL_WORDS + r")),?\s+(?P<target>" + _NAME + r")\b"
)
_WORKS_AT = re.compile(
    r"\b(?P<subject>" + _NAME + r")" + _SUBJECT_CLAUSE +
    r"\s+(?i:works|worked|work|is\s+working)\s+(?i:at|for)\s+(?P<object>" + _PROPER + r")"
)
_LIVES_IN = re.compile(
    r"\b(?P<subject>" + _NAME + r")" + _SUBJECT_CLAUSE +
    r"\s+(?i:lives|lived|live|is\s+living)\s+in\s+(?P<object>" + _PROPER + r")"
)
_SYMMETRIC = re.compile(
    r"\b(?P<a>" + _NAME + r")\s+(?i:and)\s+(?P<b>" + _NAME + r")\s+(?i:are|were)\s+" + _ADJ +
    r"(?P<rel>(?i:" + _PLURAL_WORDS + r"))\b"
)

_FIRST_PERSON = {"i", "me", "my", "myself"}
_PRONOUNS = {"he", "she", "they", "we", "it", "you", "this", "that", "there", "who"}


def _resolve_name(raw: Any) -> Optional[str]:
    """Clean a matched name; first person maps to the owner node, other pronouns to None."""
    if not isinstance(raw, str) or not raw:
        return None
    name = raw.strip().rstrip(".,;:!?")
    if name.endswith(("'s", "’s")):
        name = name[:-2]
    lowered = name.lower()
    if lowered in _FIRST_PERSON:
        return SELF_ENTITY_NAME
    if lowered in _PRONOUNS:
        return None
    return name or None


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

class RelationMatcher:
    """Run the ordered pattern set over a text block."""

    def extract(self, text: str) -> List[RelationCandidate]:
        if not text:
            return []
        text_norm = " ".join(text.split())
        candidates: List[RelationCandidate] = []

        for match in _POSSESSIVE.finditer(text_norm):
            rel_type = normalize_relation_type(match.group("rel"))
            candidates.append(RelationCandidate(
                source=_resolve_name(match.group("owner")),
                target=_resolve_name(match.group("subject")),
                type=rel_type,
                metadata={"pattern": "possessive", "text_span": match.group(0)},
            ))

        for match in _MY_RELATION.finditer(text_norm):
            candidates.append(RelationCandidate(
                source=SELF_ENTITY_NAME,
                target=_resolve_name(match.group("target")),
                type=normalize_relation_type(match.group("rel")),
                metadata={"pattern": "my_relation", "text_span": match.group(0)},
            ))

        for match in _WORKS_AT.finditer(text_norm):
            candidates.append(RelationCandidate(
                source=_resolve_name(match.group("subject")),
                target=_resolve_name(match.group("object")),
                type="employee_of",
                target_type="organization",
                metadata={"pattern": "works_at", "text_span": match.group(0)},
            ))

        for match in _LIVES_IN.finditer(text_norm):
            candidates.append(RelationCandidate(
                source=_resolve_name(match.group("subject")),
                target=_resolve_name(match.group("object")),
                type="lives_in",
                target_type="location",
                metadata={"pattern": "lives_in", "text_span": match.group(0)},
            ))

        for match in _SYMMETRIC.finditer(text_norm):
            a = _resolve_name(match.group("a"))
            b = _resolve_name(match.group("b"))
            rel_type = normalize_relation_type(match.group("rel"))
            meta = {"pattern": "symmetric", "text_span": match.group(0)}
            candidates.append(RelationCandidate(source=a, target=b, type=rel_type, metadata=dict(meta)))
            candidates.append(RelationCandidate(source=b, target=a, type=rel_type, metadata=dict(meta)))

        return finalize_candidates(candidates)


def candidates_from_dicts(items: Iterable[Any]) -> List[RelationCandidate]:
    """Build candidates from explicit ``{source, target, type, ...}`` mappings."""
    candidates: List[RelationCandidate] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        raw_type = item.get("type") or item.get("relation_type")
        strength = item.get("strength")
        try:
            strength = float(strength) if strength is not None else None
        except (TypeError, ValueError):
            strength = None
        candidates.append(RelationCandidate(
            source=_resolve_name(item.get("source")),
            target=_resolve_name(item.get("target")),
            type=normalize_relation_type(raw_type) if isinstance(raw_type, str) and raw_type.strip() else None,
            source_type=str(item.get("source_type") or "person"),
            target_type=str(item.get("target_type") or "person"),
            strength=strength,
            metadata=item.get("metadata") if isinstance(item.get("metadata"), dict) else {},
        ))
    return finalize_candidates(candidates)


def finalize_candidates(candidates: List[RelationCandidate]) -> List[RelationCandidate]:
    """Drop incomplete or self-referential candidates and duplicates, keeping order."""
    seen: set[tuple] = set()
    result: List[RelationCandidate] = []
    for cand in candidates:
        if not cand.is_complete():
            logger.debug("Dropping incomplete relation candidate: %s", cand)
            continue
        if cand.source == cand.target:
            continue
        if cand.key() in seen:
            continue
        seen.add(cand.key())
        result.append(cand)
    return result
