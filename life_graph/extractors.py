"""Domain extractors.

An extractor turns one task's fields (plus the shared request context) into
a normalised component dict via :meth:`Extractor.create_component`.  The
contract:

* never raise on missing optional fields -- apply defaults instead
* touch external state only through the tools the registry hands out
* the relationship extractor writes edges straight into the graph; its
  returned component just reports what was written

Heuristics here are deliberately simple regex/keyword rules; swapping one
extractor for a smarter one does not touch the orchestrator.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import dateparser
from dateparser.search import search_dates

from .components import (
    EventComponent,
    FinanceComponent,
    GenericComponent,
    HealthComponent,
    LearningComponent,
    NoteComponent,
    RelationshipComponent,
    SpiritualComponent,
)
from .context import SHARED_CONTEXT_KEYS
from .errors import ToolNotFound
from .relations import RelationMatcher, candidates_from_dicts
from .tools import as_naive_utc

if TYPE_CHECKING:
    from .registry import ScopedTools

logger = logging.getLogger(__name__)


class ExtractorKind(str, Enum):
    FINANCE = "finance"
    RELATIONSHIP = "relationship"
    PLANNER = "planner"
    MEMORY = "memory"
    HEALTH = "health"
    LEARNING = "learning"
    SPIRITUAL = "spiritual"
    GENERALIST = "generalist"


def task_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """The task's own component_data, without the shared context keys."""
    return {k: v for k, v in data.items() if k not in SHARED_CONTEXT_KEYS}


def _query_text(data: Dict[str, Any]) -> str:
    return str(data.get("original_query_part") or data.get("original_query") or "")


def _target_alias(data: Dict[str, Any]) -> Optional[str]:
    target = data.get("target_entity")
    if isinstance(target, dict) and target.get("alias"):
        return str(target["alias"])
    return None


class Extractor(ABC):
    """Base class for all domain extractors."""

    kind: ExtractorKind

    def __init__(self, tools: "ScopedTools") -> None:
        self.tools = tools

    @abstractmethod
    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a component dict for *data* (task fields + shared context)."""


# ---------------------------------------------------------------------------
# Finance
# ---------------------------------------------------------------------------

_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY", "₺": "TRY"}
_CURRENCY_WORDS = {
    "usd": "USD", "dollar": "USD", "dollars": "USD", "bucks": "USD",
    "eur": "EUR", "euro": "EUR", "euros": "EUR",
    "gbp": "GBP", "pound": "GBP", "pounds": "GBP",
    "jpy": "JPY", "yen": "JPY",
    "try": "TRY", "lira": "TRY",
}

_SYMBOL_AMOUNT = re.compile(
    r"(?P<symbol>[$€£¥₺])\s?(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"
)
_AMOUNT_CODE = re.compile(
    r"\b(?P<amount>\d+(?:\.\d{1,2})?)\s*(?P<code>usd|eur|gbp|jpy|try|dollars?|bucks|euros?|pounds?|yen|lira)\b",
    re.IGNORECASE,
)
_VENDOR = re.compile(r"\b(?:at|from)\s+(?P<vendor>[A-Z][\w'’&.-]*(?:\s+[A-Z][\w'’&.-]*)*)")
_INCOME = re.compile(r"\b(earned|received|got\s+paid|salary|income|refund(?:ed)?)\b", re.IGNORECASE)
_RELATIVE_DAY = re.compile(
    r"\b(today|tonight|yesterday|tomorrow|this\s+morning|last\s+night|"
    r"last\s+(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday|week))\b",
    re.IGNORECASE,
)

_CATEGORY_KEYWORDS: Dict[str, tuple] = {
    "food_dining": ("lunch", "dinner", "breakfast", "brunch", "coffee", "restaurant", "meal", "snack", "pizza"),
    "groceries": ("groceries", "grocery", "supermarket"),
    "transportation": ("uber", "taxi", "gas", "fuel", "bus", "train", "parking", "flight"),
    "housing": ("rent", "mortgage"),
    "utilities": ("electricity", "internet", "phone bill", "water bill"),
    "entertainment": ("movie", "cinema", "concert", "netflix", "tickets"),
    "health": ("doctor", "pharmacy", "medicine", "gym", "dentist"),
    "shopping": ("clothes", "shoes", "amazon"),
}


def _to_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return round(float(value), 2)
    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    try:
        return round(float(cleaned), 2)
    except ValueError:
        return None


def _resolve_date(value: Any, text: str, prefer: str = "past") -> Optional[datetime]:
    """Explicit *value* first, then a relative day word found in *text*."""
    settings = {"PREFER_DATES_FROM": prefer}
    if value:
        parsed = dateparser.parse(str(value), languages=["en"], settings=settings)
        if parsed:
            return parsed
    match = _RELATIVE_DAY.search(text or "")
    if match:
        return dateparser.parse(match.group(1), languages=["en"], settings=settings)
    return None


class FinanceExtractor(Extractor):
    """Expenses, income and transfers."""

    kind = ExtractorKind.FINANCE

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = task_fields(data)
        text = _query_text(data)

        amount = _to_amount(fields.get("amount"))
        detected_currency: Optional[str] = None
        match = _SYMBOL_AMOUNT.search(text)
        if match:
            detected_currency = _CURRENCY_SYMBOLS[match.group("symbol")]
            if amount is None:
                amount = _to_amount(match.group("amount"))
        else:
            match = _AMOUNT_CODE.search(text)
            if match:
                detected_currency = _CURRENCY_WORDS.get(match.group("code").lower())
                if amount is None:
                    amount = _to_amount(match.group("amount"))

        currency = str(fields.get("currency") or detected_currency or "USD").upper()

        vendor = fields.get("vendor") or fields.get("merchant")
        if not vendor:
            vm = _VENDOR.search(text)
            vendor = vm.group("vendor").rstrip(".,;:!?") if vm else None

        when = _resolve_date(fields.get("date"), text)
        component = FinanceComponent(
            amount=amount if amount is not None else 0.0,
            currency=currency,
            vendor=vendor,
            category=str(fields.get("category") or self._categorize(text)),
            transaction_type=str(fields.get("type") or fields.get("transaction_type") or self._transaction_type(text)),
            description=str(fields.get("description") or text),
            date=(when.date() if when else date.today()).isoformat(),
            payment_method=str(fields.get("payment_method") or "unknown"),
        )
        return component.to_dict()

    @staticmethod
    def _categorize(text: str) -> str:
        lowered = text.lower()
        for category, keywords in _CATEGORY_KEYWORDS.items():
            if any(re.search(r"\b" + re.escape(k) + r"\b", lowered) for k in keywords):
                return category
        return "uncategorized"

    @staticmethod
    def _transaction_type(text: str) -> str:
        return "income" if _INCOME.search(text) else "expense"


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------

class RelationshipExtractor(Extractor):
    """Writes relationship edges directly into the graph.

    Candidates come from an explicit ``relationships`` list when the task has
    one, otherwise from the original query, otherwise from the triage summary.
    """

    kind = ExtractorKind.RELATIONSHIP

    def __init__(self, tools: "ScopedTools") -> None:
        super().__init__(tools)
        self.matcher = RelationMatcher()

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = task_fields(data)
        explicit = fields.get("relationships")
        if isinstance(explicit, list) and explicit:
            candidates = candidates_from_dicts(explicit)
        else:
            candidates = self.matcher.extract(str(data.get("original_query") or ""))
            if not candidates:
                candidates = self.matcher.extract(str(data.get("triage_summary") or ""))

        owner_id = data.get("owner_id")
        if not candidates or not owner_id:
            return RelationshipComponent(skipped=len(candidates)).to_dict()

        graph = self.tools.graph()
        created: List[Dict[str, Any]] = []
        skipped = 0
        for cand in candidates:
            source_id = graph.find_or_create_entity(owner_id, cand.source, cand.source_type)
            target_id = graph.find_or_create_entity(owner_id, cand.target, cand.target_type)
            metadata = dict(cand.metadata)
            if data.get("conversation_id"):
                metadata["conversation_id"] = data["conversation_id"]
            ok = graph.create_relationship(
                owner_id,
                source_id,
                target_id,
                cand.type,
                strength=cand.edge_strength(),
                metadata=metadata,
            )
            if ok:
                created.append({
                    "source": cand.source,
                    "target": cand.target,
                    "type": cand.type,
                    "source_id": source_id,
                    "target_id": target_id,
                })
            else:
                skipped += 1

        logger.info("Relationship extractor wrote %d edge(s), skipped %d", len(created), skipped)
        return RelationshipComponent(created=created, skipped=skipped).to_dict()


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

_PLACE = re.compile(r"\b(?:at|in)\s+(?P<place>[A-Z][\w'’&.-]*(?:\s+[A-Z][\w'’&.-]*)*)")
_ATTENDEES = re.compile(
    r"\bwith\s+(?P<names>[A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)?"
    r"(?:(?:\s*,\s*|\s+and\s+)[A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)?)*)"
)
_NAME_SPLIT = re.compile(r"\s*,\s*|\s+and\s+")


class PlannerExtractor(Extractor):
    """Events and appointments, with overlap check against the calendar."""

    kind = ExtractorKind.PLANNER
    DEFAULT_DURATION_MINUTES = 60

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = task_fields(data)
        text = _query_text(data)

        starts = self._parse_when(
            fields.get("when") or fields.get("starts_at") or fields.get("date") or fields.get("time"),
            text,
        )
        try:
            duration = int(fields.get("duration_minutes") or self.DEFAULT_DURATION_MINUTES)
        except (TypeError, ValueError):
            duration = self.DEFAULT_DURATION_MINUTES
        ends = starts + timedelta(minutes=duration) if starts else None

        location = fields.get("location")
        if not location:
            pm = _PLACE.search(text)
            location = pm.group("place").rstrip(".,;:!?") if pm else None

        attendees = fields.get("attendees")
        if not isinstance(attendees, list):
            am = _ATTENDEES.search(text)
            attendees = [n for n in _NAME_SPLIT.split(am.group("names")) if n] if am else []

        conflicts: List[str] = []
        owner_id = data.get("owner_id")
        if starts and owner_id:
            calendar = self.tools.calendar()
            for event in calendar.events_between(owner_id, starts, ends, exclude_entity_id=data.get("entity_id")):
                conflicts.append(event["name"])

        component = EventComponent(
            title=str(fields.get("title") or _target_alias(data) or text[:80]),
            starts_at=starts.isoformat() if starts else None,
            ends_at=ends.isoformat() if ends else None,
            location=location,
            attendees=[str(a) for a in attendees],
            conflicts=conflicts,
        )
        return component.to_dict()

    @staticmethod
    def _parse_when(value: Any, text: str) -> Optional[datetime]:
        settings = {"PREFER_DATES_FROM": "future"}
        if value:
            parsed = dateparser.parse(str(value), languages=["en"], settings=settings)
            if parsed:
                return as_naive_utc(parsed)
        if not text:
            return None
        found = search_dates(text, languages=["en"], settings=settings)
        if found:
            return as_naive_utc(found[0][1])
        return None


# ---------------------------------------------------------------------------
# Memory / notes
# ---------------------------------------------------------------------------

_HASHTAG = re.compile(r"#(\w+)")
_PROPER_PHRASE = re.compile(r"\b[A-Z][\w'-]+(?:\s+[A-Z][\w'-]+)*")


class MemoryExtractor(Extractor):
    """Free-form notes; links mentions of entities the owner already has."""

    kind = ExtractorKind.MEMORY

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = task_fields(data)
        text = str(fields.get("text") or fields.get("note") or _query_text(data))

        tags = {t.lower() for t in _HASHTAG.findall(text)}
        extra = fields.get("tags")
        if isinstance(extra, list):
            tags.update(str(t).lower() for t in extra)

        mentions: List[str] = []
        owner_id = data.get("owner_id")
        if owner_id and text:
            search = self.tools.search()
            seen: set[str] = set()
            for phrase in self._candidate_names(text):
                hit = search.find_by_name(owner_id, phrase)
                if hit and hit["id"] != data.get("entity_id") and hit["id"] not in seen:
                    seen.add(hit["id"])
                    mentions.append(hit["primary_name"])

        return NoteComponent(text=text, tags=sorted(tags), mentions=mentions).to_dict()

    @staticmethod
    def _candidate_names(text: str) -> List[str]:
        names: List[str] = []
        for match in _PROPER_PHRASE.finditer(text):
            phrase = match.group(0)
            names.append(phrase)
            words = phrase.split()
            if len(words) > 1:
                names.extend(words)
        return list(dict.fromkeys(names))


# ---------------------------------------------------------------------------
# Health / learning / spiritual
# ---------------------------------------------------------------------------

_DURATION = re.compile(
    r"\b(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>hours?|hrs?|h|minutes?|mins?|m)\b", re.IGNORECASE
)
_DISTANCE = re.compile(
    r"\b(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>km|kilometers?|kilometres?|miles?|mi)\b", re.IGNORECASE
)
_STEPS = re.compile(r"\b(?P<value>\d{1,3}(?:,\d{3})+|\d+)\s*steps\b", re.IGNORECASE)
_SLEEP = re.compile(r"\bslept\s+(?:for\s+)?(?P<value>\d+(?:\.\d+)?)\s*(?:hours?|hrs?|h)\b", re.IGNORECASE)
_WEIGHT = re.compile(
    r"\bweigh(?:ed|s|t)?\s+(?:in\s+at\s+)?(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>kg|kilos?|lbs?|pounds)\b",
    re.IGNORECASE,
)
_MILES_TO_KM = 1.609344
_LBS_TO_KG = 0.45359237

_ACTIVITY_KEYWORDS: Dict[str, tuple] = {
    "running": ("run", "ran", "running", "jog", "jogged", "jogging"),
    "walking": ("walk", "walked", "walking", "hike", "hiked", "hiking"),
    "cycling": ("cycle", "cycled", "cycling", "bike", "biked", "biking"),
    "swimming": ("swim", "swam", "swimming"),
    "strength": ("gym", "workout", "lifted", "lifting", "weights"),
}
_SYMPTOM_WORDS = (
    "headache", "migraine", "fever", "cough", "sore throat", "nausea", "tired",
    "fatigue", "dizzy", "back pain", "cold", "flu", "insomnia",
)

_SKILL_LEVELS = ("beginner", "intermediate", "advanced", "expert")
_SUBJECT = re.compile(
    r"\b(?:learn(?:ing|ed|t)?|stud(?:y|ying|ied)|practi[cs](?:e|ed|ing)|read(?:ing)?\s+about|"
    r"(?:course|class|lesson|lessons)\s+(?:on|in))\s+(?:about\s+)?(?:how\s+to\s+)?"
    r"(?P<subject>[\w#+.'-]+(?:\s+[\w#+.'-]+){0,3}?)"
    r"(?=\s+(?:for|today|yesterday|tonight|this|last|with|on|at|because|every|since)\b|[.,;!?]|$)",
    re.IGNORECASE,
)
_GOAL = re.compile(r"\b(?:my\s+goal\s+is\s+to|i\s+want\s+to|so\s+(?:that\s+)?i\s+can)\s+(?P<goal>[^.!?]+)", re.IGNORECASE)

_PRACTICE_KEYWORDS: Dict[str, tuple] = {
    "meditation": ("meditate", "meditated", "meditating", "meditation"),
    "prayer": ("pray", "prayed", "praying", "prayer"),
    "yoga": ("yoga",),
    "breathwork": ("breathing exercise", "breathwork", "breathing exercises"),
    "gratitude": ("grateful", "gratitude", "thankful"),
    "journaling": ("journal", "journaled", "journaling"),
    "worship": ("church", "mosque", "temple", "synagogue"),
}
_TRADITION_KEYWORDS: Dict[str, tuple] = {
    "buddhist": ("buddhist", "buddhism", "zen", "vipassana"),
    "christian": ("christian", "church", "bible", "christ"),
    "islamic": ("muslim", "islam", "islamic", "mosque", "quran"),
    "hindu": ("hindu", "hinduism", "temple", "vedanta"),
    "jewish": ("jewish", "judaism", "synagogue", "torah"),
    "stoic": ("stoic", "stoicism", "marcus aurelius", "seneca"),
}


def _keyword_match(text: str, table: Dict[str, tuple]) -> Optional[str]:
    lowered = text.lower()
    for label, words in table.items():
        if any(re.search(r"\b" + re.escape(w) + r"\b", lowered) for w in words):
            return label
    return None


def _to_minutes(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(0, int(round(float(value))))
    except (TypeError, ValueError):
        return None


def _duration_from_text(text: str) -> Optional[int]:
    """Total minutes mentioned in *text* ("1 hour 30 minutes" -> 90)."""
    total = 0.0
    found = False
    for match in _DURATION.finditer(text or ""):
        value = float(match.group("value"))
        unit = match.group("unit").lower()
        total += value * 60 if unit.startswith("h") else value
        found = True
    return int(round(total)) if found else None


def _flag(fields: Dict[str, Any], name: str) -> bool:
    value = fields.get(name)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class HealthExtractor(Extractor):
    """Workouts, body metrics and symptoms."""

    kind = ExtractorKind.HEALTH
    RECENT_LIMIT = 5

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = task_fields(data)
        text = _query_text(data)

        activity = fields.get("activity") or _keyword_match(text, _ACTIVITY_KEYWORDS)
        duration = _to_minutes(fields.get("duration_minutes"))
        if duration is None:
            duration = _duration_from_text(text)
        distance = self._distance_km(fields.get("distance_km"), text)

        metrics = dict(fields.get("metrics")) if isinstance(fields.get("metrics"), dict) else {}
        metrics.update(self._metrics_from_text(text))

        symptoms = fields.get("symptoms")
        if isinstance(symptoms, str):
            symptoms = [symptoms]
        if not isinstance(symptoms, list):
            lowered = text.lower()
            symptoms = [s for s in _SYMPTOM_WORDS if re.search(r"\b" + re.escape(s) + r"\b", lowered)]

        if fields.get("query_type"):
            query_type = str(fields["query_type"])
        elif symptoms:
            query_type = "symptom"
        elif activity:
            query_type = "activity"
        elif metrics:
            query_type = "metric"
        else:
            query_type = "general_health"

        recent: List[Dict[str, Any]] = []
        owner_id = data.get("owner_id")
        if owner_id and _flag(fields, "needs_fitness_data"):
            for entry in self.tools.fitness().recent(owner_id, limit=self.RECENT_LIMIT):
                if entry["entity_id"] == data.get("entity_id"):
                    continue
                comp = entry["component"]
                recent.append({
                    "entity_name": entry["entity_name"],
                    "activity": comp.get("activity"),
                    "duration_minutes": comp.get("duration_minutes"),
                    "distance_km": comp.get("distance_km"),
                    "date": comp.get("date"),
                })

        when = _resolve_date(fields.get("date"), text)
        component = HealthComponent(
            query_type=query_type,
            health_topic=str(fields.get("health_topic") or activity or (symptoms[0] if symptoms else "")),
            activity=str(activity) if activity else None,
            duration_minutes=duration,
            distance_km=distance,
            metrics=metrics,
            symptoms=[str(s) for s in symptoms],
            date=(when.date() if when else date.today()).isoformat(),
            time_period=str(fields.get("time_period") or "current"),
            recent_activity=recent,
        )
        return component.to_dict()

    @staticmethod
    def _distance_km(value: Any, text: str) -> Optional[float]:
        if value is not None and not isinstance(value, bool):
            try:
                return round(float(value), 2)
            except (TypeError, ValueError):
                pass
        match = _DISTANCE.search(text or "")
        if not match:
            return None
        km = float(match.group("value"))
        if match.group("unit").lower().startswith("mi"):
            km *= _MILES_TO_KM
        return round(km, 2)

    @staticmethod
    def _metrics_from_text(text: str) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {}
        match = _STEPS.search(text or "")
        if match:
            metrics["steps"] = int(match.group("value").replace(",", ""))
        match = _SLEEP.search(text or "")
        if match:
            metrics["sleep_hours"] = float(match.group("value"))
        match = _WEIGHT.search(text or "")
        if match:
            weight = float(match.group("value"))
            if match.group("unit").lower().startswith(("lb", "pound")):
                weight *= _LBS_TO_KG
            metrics["weight_kg"] = round(weight, 1)
        return metrics


class LearningExtractor(Extractor):
    """Study sessions and learning goals, linked to the owner's notes."""

    kind = ExtractorKind.LEARNING
    NOTES_LIMIT = 5
    NOTES_SCAN = 50

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = task_fields(data)
        text = _query_text(data)

        subject = fields.get("subject")
        if not subject:
            sm = _SUBJECT.search(text)
            subject = sm.group("subject").strip() if sm else ""

        skill_level = str(fields.get("skill_level") or _keyword_match(
            text, {level: (level,) for level in _SKILL_LEVELS}
        ) or "beginner")

        goal = fields.get("learning_goal")
        if not goal:
            gm = _GOAL.search(text)
            goal = gm.group("goal").strip() if gm else ""

        spent = _to_minutes(fields.get("time_spent_minutes"))
        if spent is None:
            spent = _duration_from_text(text)

        resources = fields.get("preferred_resources")
        if isinstance(resources, str):
            resources = [resources]
        if not isinstance(resources, list):
            resources = []

        related: List[Dict[str, Any]] = []
        owner_id = data.get("owner_id")
        topic = str(fields.get("notes_topic") or subject or "").lower()
        if owner_id and topic and _flag(fields, "needs_notes"):
            for entry in self.tools.notes().recent(owner_id, limit=self.NOTES_SCAN):
                note_text = str(entry["component"].get("text") or "")
                if topic in note_text.lower():
                    related.append({"entity_name": entry["entity_name"], "text": note_text})
                    if len(related) >= self.NOTES_LIMIT:
                        break

        component = LearningComponent(
            query_type=str(fields.get("query_type") or ("study_session" if spent else "general_learning")),
            subject=str(subject),
            skill_level=skill_level,
            learning_goal=str(goal),
            time_spent_minutes=spent,
            time_available=str(fields.get("time_available") or ""),
            preferred_resources=[str(r) for r in resources],
            related_notes=related,
        )
        return component.to_dict()


class SpiritualExtractor(Extractor):
    """Meditation, prayer and other reflective practices."""

    kind = ExtractorKind.SPIRITUAL
    RECENT_LIMIT = 5

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = task_fields(data)
        text = _query_text(data)

        practice = fields.get("practice_type") or _keyword_match(text, _PRACTICE_KEYWORDS) or ""
        tradition = fields.get("tradition") or _keyword_match(text, _TRADITION_KEYWORDS) or "non_specific"
        duration = _to_minutes(fields.get("duration_minutes"))
        if duration is None:
            duration = _duration_from_text(text)

        recent: List[Dict[str, Any]] = []
        owner_id = data.get("owner_id")
        if owner_id and _flag(fields, "needs_meditation_data"):
            for entry in self.tools.meditation().recent(owner_id, limit=self.RECENT_LIMIT):
                if entry["entity_id"] == data.get("entity_id"):
                    continue
                comp = entry["component"]
                recent.append({
                    "entity_name": entry["entity_name"],
                    "practice_type": comp.get("practice_type"),
                    "duration_minutes": comp.get("duration_minutes"),
                    "date": comp.get("date"),
                })

        when = _resolve_date(fields.get("date"), text)
        component = SpiritualComponent(
            query_type=str(fields.get("query_type") or ("practice_log" if practice else "general_spiritual")),
            practice_type=str(practice),
            tradition=str(tradition),
            duration_minutes=duration,
            reflection=str(fields.get("reflection") or fields.get("philosophical_question") or text),
            date=(when.date() if when else date.today()).isoformat(),
            time_period=str(fields.get("time_period") or "current"),
            recent_practices=recent,
        )
        return component.to_dict()


# ---------------------------------------------------------------------------
# Generalist (fallback)
# ---------------------------------------------------------------------------

class GeneralistExtractor(Extractor):
    """Catch-all: keeps the task fields as a generic component."""

    kind = ExtractorKind.GENERALIST

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        body = task_fields(data)
        body["summary"] = str(data.get("triage_summary") or "")
        body["query"] = _query_text(data)

        location = body.get("weather_location")
        if location:
            try:
                weather = self.tools.weather()
            except ToolNotFound:
                logger.info("Weather tool not configured; skipping lookup for %s", location)
                body["weather"] = None
            else:
                body["weather"] = weather.current(str(location))

        return GenericComponent(name="general", fields=body).to_dict()


DEFAULT_EXTRACTORS = {
    ExtractorKind.FINANCE: FinanceExtractor,
    ExtractorKind.RELATIONSHIP: RelationshipExtractor,
    ExtractorKind.PLANNER: PlannerExtractor,
    ExtractorKind.MEMORY: MemoryExtractor,
    ExtractorKind.HEALTH: HealthExtractor,
    ExtractorKind.LEARNING: LearningExtractor,
    ExtractorKind.SPIRITUAL: SpiritualExtractor,
    ExtractorKind.GENERALIST: GeneralistExtractor,
}
