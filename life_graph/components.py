"""Typed component records stored under an entity's ``data`` map.

Extractors build one of these and hand back ``to_dict()``; the store only
ever sees plain dicts tagged with ``kind``.  :func:`parse_component` turns a
stored dict back into the matching record, and anything with an unknown
kind lands in :class:`GenericComponent` so new extractors need no changes
here.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from dataclasses import fields as dataclass_fields
from typing import Any, ClassVar, Dict, List, Optional, Type


@dataclass
class Component:
    kind: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind
        return d

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Component":
        known = {f.name for f in dataclass_fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known})


@dataclass
class FinanceComponent(Component):
    kind: ClassVar[str] = "finance"

    amount: float = 0.0
    currency: str = "USD"
    vendor: Optional[str] = None
    category: str = "uncategorized"
    transaction_type: str = "expense"
    description: str = ""
    date: Optional[str] = None
    payment_method: str = "unknown"


@dataclass
class EventComponent(Component):
    kind: ClassVar[str] = "event"

    title: str = ""
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    location: Optional[str] = None
    attendees: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)


@dataclass
class RelationshipComponent(Component):
    kind: ClassVar[str] = "relationship"

    created: List[Dict[str, Any]] = field(default_factory=list)
    skipped: int = 0


@dataclass
class NoteComponent(Component):
    kind: ClassVar[str] = "note"

    text: str = ""
    tags: List[str] = field(default_factory=list)
    mentions: List[str] = field(default_factory=list)


HEALTH_DISCLAIMER = (
    "This is not a substitute for professional medical advice. "
    "Please consult a healthcare provider for medical concerns."
)
SPIRITUAL_NOTE = (
    "These reflections are offered as perspectives for consideration. "
    "Adapt them to your own beliefs and practices."
)


@dataclass
class HealthComponent(Component):
    kind: ClassVar[str] = "health"

    query_type: str = "general_health"
    health_topic: str = ""
    activity: Optional[str] = None
    duration_minutes: Optional[int] = None
    distance_km: Optional[float] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    symptoms: List[str] = field(default_factory=list)
    date: Optional[str] = None
    time_period: str = "current"
    recent_activity: List[Dict[str, Any]] = field(default_factory=list)
    disclaimer: str = HEALTH_DISCLAIMER


@dataclass
class LearningComponent(Component):
    kind: ClassVar[str] = "learning"

    query_type: str = "general_learning"
    subject: str = ""
    skill_level: str = "beginner"
    learning_goal: str = ""
    time_spent_minutes: Optional[int] = None
    time_available: str = ""
    preferred_resources: List[str] = field(default_factory=list)
    related_notes: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SpiritualComponent(Component):
    kind: ClassVar[str] = "spiritual"

    query_type: str = "general_spiritual"
    practice_type: str = ""
    tradition: str = "non_specific"
    duration_minutes: Optional[int] = None
    reflection: str = ""
    date: Optional[str] = None
    time_period: str = "current"
    recent_practices: List[Dict[str, Any]] = field(default_factory=list)
    guidance_note: str = SPIRITUAL_NOTE


@dataclass
class GenericComponent(Component):
    """Open slot for kinds without a dedicated record."""

    name: str = "general"
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = dict(self.fields)
        d["kind"] = self.name
        return d

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "GenericComponent":
        body = {k: v for k, v in raw.items() if k != "kind"}
        return cls(name=str(raw.get("kind") or "general"), fields=body)


COMPONENT_TYPES: Dict[str, Type[Component]] = {
    cls.kind: cls
    for cls in (
        FinanceComponent,
        EventComponent,
        RelationshipComponent,
        NoteComponent,
        HealthComponent,
        LearningComponent,
        SpiritualComponent,
    )
}


def parse_component(raw: Dict[str, Any]) -> Component:
    """Decode a stored component dict into its typed record."""
    cls = COMPONENT_TYPES.get(str(raw.get("kind", "")))
    if cls is None:
        return GenericComponent.from_dict(raw)
    return cls.from_dict(raw)


def decode_components(data: Dict[str, Any]) -> Dict[str, Component]:
    """Typed view over an entity's whole data map. Non-dict values are wrapped."""
    decoded: Dict[str, Component] = {}
    for name, raw in (data or {}).items():
        if isinstance(raw, dict):
            decoded[name] = parse_component(raw)
        else:
            decoded[name] = GenericComponent(name="value", fields={"value": raw})
    return decoded
