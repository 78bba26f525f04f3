"""Shared tools handed to extractors through the registry.

Each capability has an explicit interface (``GraphAccess``, ``SearchProvider``,
``CalendarProvider``, ``WeatherProvider``) so extractors depend on a
contract rather than on whatever object happens to be passed in.

Implementations:
* graph    -- :class:`~life_graph.storage.GraphStore` itself
* search   -- :class:`GraphSearch`, name lookup over the owner's entities
* calendar -- :class:`GraphCalendar`, events stored as ``event`` entities
* fitness, notes, meditation -- :class:`GraphActivityLog`, recent components of
  one kind (``health``, ``note``, ``spiritual``) across the owner's entities
* weather  -- :class:`OpenWeatherClient`, raw ``requests`` against OpenWeatherMap
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import requests

from .errors import LifeGraphError
from .storage import GraphStore

logger = logging.getLogger(__name__)


class Tool(str, Enum):
    GRAPH = "graph"
    SEARCH = "search"
    CALENDAR = "calendar"
    WEATHER = "weather"
    FITNESS = "fitness"
    NOTES = "notes"
    MEDITATION = "meditation"


# ---------------------------------------------------------------------------
# Capability interfaces
# ---------------------------------------------------------------------------

@runtime_checkable
class GraphAccess(Protocol):
    def find_or_create_entity(self, owner_id: str, name: str, entity_type: str) -> str: ...

    def get_entity(self, entity_id: str, owner_id: Optional[str] = None) -> Optional[Dict[str, Any]]: ...

    def create_relationship(
        self,
        owner_id: str,
        source_id: str,
        target_id: str,
        rel_type: str,
        strength: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
        relationship_id: Optional[str] = None,
    ) -> bool: ...

    def find_relationships(
        self, entity_id: str, direction: str = "both", rel_type: Optional[str] = None
    ) -> List[Dict[str, Any]]: ...


@runtime_checkable
class SearchProvider(Protocol):
    def find_by_name(self, owner_id: str, name: str) -> Optional[Dict[str, Any]]: ...

    def search(self, owner_id: str, text: str, limit: int = 10) -> List[Dict[str, Any]]: ...


@runtime_checkable
class CalendarProvider(Protocol):
    def events_between(
        self,
        owner_id: str,
        start: datetime,
        end: datetime,
        exclude_entity_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...


@runtime_checkable
class WeatherProvider(Protocol):
    def current(self, location: str) -> Dict[str, Any]: ...


@runtime_checkable
class ActivityLog(Protocol):
    def recent(self, owner_id: str, limit: int = 10) -> List[Dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# Graph-backed implementations
# ---------------------------------------------------------------------------

class GraphSearch:
    """Entity lookup by name within one owner's graph."""

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def find_by_name(self, owner_id: str, name: str) -> Optional[Dict[str, Any]]:
        """Exact name match, any type."""
        return self.store.find_entity(owner_id, name)

    def search(self, owner_id: str, text: str, limit: int = 10) -> List[Dict[str, Any]]:
        return self.store.search_entities(owner_id, text, limit)


def as_naive_utc(value: datetime) -> datetime:
    """Aware datetimes become naive UTC; naive ones are returned as they are."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return as_naive_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


class GraphCalendar:
    """Calendar view over ``event`` entities carrying an ``event`` component."""

    EVENT_TYPE = "event"
    SCAN_LIMIT = 500

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def events_between(
        self,
        owner_id: str,
        start: datetime,
        end: datetime,
        exclude_entity_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Events whose [starts_at, ends_at) overlaps [start, end)."""
        start, end = as_naive_utc(start), as_naive_utc(end)
        overlapping: List[Dict[str, Any]] = []
        for entity in self.store.list_entities_by_type(owner_id, self.EVENT_TYPE, limit=self.SCAN_LIMIT):
            if entity["id"] == exclude_entity_id:
                continue
            for component in entity["data"].values():
                if not isinstance(component, dict) or component.get("kind") != "event":
                    continue
                ev_start = _parse_iso(component.get("starts_at"))
                if ev_start is None:
                    continue
                ev_end = _parse_iso(component.get("ends_at")) or ev_start
                if ev_start < end and ev_end > start:
                    overlapping.append({
                        "entity_id": entity["id"],
                        "name": entity["primary_name"],
                        "starts_at": component.get("starts_at"),
                        "ends_at": component.get("ends_at"),
                    })
                    break
        overlapping.sort(key=lambda e: e["starts_at"] or "")
        return overlapping


class GraphActivityLog:
    """Most recent components of one kind across an owner's entities.

    Backs the fitness (``health``), notes (``note``) and meditation
    (``spiritual``) capabilities.
    """

    SCAN_LIMIT = 200

    def __init__(self, store: GraphStore, kind: str) -> None:
        self.store = store
        self.kind = kind

    def recent(self, owner_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        if limit <= 0:
            return entries
        for entity in self.store.list_recent_entities(owner_id, limit=self.SCAN_LIMIT):
            for name, component in entity["data"].items():
                if not isinstance(component, dict) or component.get("kind") != self.kind:
                    continue
                entries.append({
                    "entity_id": entity["id"],
                    "entity_name": entity["primary_name"],
                    "component_name": name,
                    "updated_at": entity["updated_at"],
                    "component": component,
                })
                if len(entries) >= limit:
                    return entries
        return entries


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------

class WeatherError(LifeGraphError):
    """Raised when the weather API returns an error."""

    code = "WEATHER"
    http_status = 502


class OpenWeatherClient:
    """Current conditions from OpenWeatherMap (metric units)."""

    def __init__(self, api_key: str, base_url: str = "https://api.openweathermap.org/data/2.5",
                 timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def current(self, location: str) -> Dict[str, Any]:
        try:
            resp = requests.get(
                f"{self.base_url}/weather",
                params={"q": location, "appid": self.api_key, "units": "metric"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise WeatherError(f"Weather request failed: {exc}") from exc

        if resp.status_code != 200:
            raise WeatherError(
                f"HTTP {resp.status_code}: {resp.text[:200]}", context={"location": location}
            )

        data = resp.json()
        weather = (data.get("weather") or [{}])[0]
        main = data.get("main") or {}
        return {
            "location": data.get("name") or location,
            "description": weather.get("description", ""),
            "temperature_c": main.get("temp"),
            "humidity": main.get("humidity"),
        }
