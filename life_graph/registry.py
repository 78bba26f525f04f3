"""Extractor registry: capability-keyed, permission-scoped, lazily built.

Triage names ("FinanceAgent", "SocialAgent", "HealthAgent", ...) are mapped to an
:class:`~life_graph.extractors.ExtractorKind` once, at the edge.  From
there on everything is keyed by enums: extractor factories by kind, tool
factories by :class:`~life_graph.tools.Tool`, and a permission map saying
which tools each kind may request.

Extractors never see the registry itself, only a :class:`ScopedTools`
handle bound to their own kind.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Union

from .errors import PermissionDenied, ToolNotFound
from .extractors import DEFAULT_EXTRACTORS, Extractor, ExtractorKind
from .tools import (
    ActivityLog,
    CalendarProvider,
    GraphAccess,
    GraphActivityLog,
    GraphCalendar,
    GraphSearch,
    OpenWeatherClient,
    SearchProvider,
    Tool,
    WeatherProvider,
)

logger = logging.getLogger(__name__)

FALLBACK_KIND = ExtractorKind.GENERALIST

DEFAULT_PERMISSIONS: Dict[ExtractorKind, FrozenSet[Tool]] = {
    ExtractorKind.FINANCE: frozenset({Tool.GRAPH, Tool.CALENDAR}),
    ExtractorKind.RELATIONSHIP: frozenset({Tool.GRAPH, Tool.CALENDAR, Tool.SEARCH}),
    ExtractorKind.PLANNER: frozenset({Tool.GRAPH, Tool.CALENDAR, Tool.SEARCH}),
    ExtractorKind.MEMORY: frozenset({Tool.GRAPH, Tool.SEARCH}),
    ExtractorKind.HEALTH: frozenset({Tool.GRAPH, Tool.SEARCH, Tool.FITNESS}),
    ExtractorKind.LEARNING: frozenset({Tool.GRAPH, Tool.SEARCH, Tool.NOTES}),
    ExtractorKind.SPIRITUAL: frozenset({Tool.GRAPH, Tool.SEARCH, Tool.MEDITATION}),
    ExtractorKind.GENERALIST: frozenset({Tool.GRAPH, Tool.SEARCH, Tool.CALENDAR, Tool.WEATHER}),
}

# Normalised triage name -> kind
_NAME_ALIASES: Dict[str, ExtractorKind] = {
    "financeagent": ExtractorKind.FINANCE,
    "finance": ExtractorKind.FINANCE,
    "relationshipagent": ExtractorKind.RELATIONSHIP,
    "relationship": ExtractorKind.RELATIONSHIP,
    "socialagent": ExtractorKind.RELATIONSHIP,
    "social": ExtractorKind.RELATIONSHIP,
    "planneragent": ExtractorKind.PLANNER,
    "planner": ExtractorKind.PLANNER,
    "calendaragent": ExtractorKind.PLANNER,
    "memoryagent": ExtractorKind.MEMORY,
    "memory": ExtractorKind.MEMORY,
    "notesagent": ExtractorKind.MEMORY,
    "notes": ExtractorKind.MEMORY,
    "healthagent": ExtractorKind.HEALTH,
    "health": ExtractorKind.HEALTH,
    "fitnessagent": ExtractorKind.HEALTH,
    "fitness": ExtractorKind.HEALTH,
    "wellnessagent": ExtractorKind.HEALTH,
    "learningagent": ExtractorKind.LEARNING,
    "learning": ExtractorKind.LEARNING,
    "educationagent": ExtractorKind.LEARNING,
    "studyagent": ExtractorKind.LEARNING,
    "study": ExtractorKind.LEARNING,
    "spiritualagent": ExtractorKind.SPIRITUAL,
    "spiritual": ExtractorKind.SPIRITUAL,
    "mindfulnessagent": ExtractorKind.SPIRITUAL,
    "meditationagent": ExtractorKind.SPIRITUAL,
    "meditation": ExtractorKind.SPIRITUAL,
    "generalistagent": ExtractorKind.GENERALIST,
    "generalist": ExtractorKind.GENERALIST,
    "general": ExtractorKind.GENERALIST,
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")

ExtractorFactory = Callable[["ScopedTools"], Extractor]
ToolFactory = Callable[[], Any]


def kind_for_name(name: Optional[str]) -> Optional[ExtractorKind]:
    """Map a triage agent name to a kind, ignoring case and punctuation."""
    if not name:
        return None
    return _NAME_ALIASES.get(_NON_ALNUM.sub("", str(name).lower()))


@dataclass
class ExtractorResolution:
    extractor: Extractor
    kind: ExtractorKind
    requested: str
    fallback: bool = False


class ScopedTools:
    """Tool access restricted to one extractor kind."""

    def __init__(self, registry: "ExtractorRegistry", kind: ExtractorKind) -> None:
        self._registry = registry
        self.kind = kind

    def get(self, tool: Union[Tool, str]) -> Any:
        return self._registry.get_tool(tool, self.kind)

    def graph(self) -> GraphAccess:
        return self.get(Tool.GRAPH)

    def search(self) -> SearchProvider:
        return self.get(Tool.SEARCH)

    def calendar(self) -> CalendarProvider:
        return self.get(Tool.CALENDAR)

    def weather(self) -> WeatherProvider:
        return self.get(Tool.WEATHER)

    def fitness(self) -> ActivityLog:
        return self.get(Tool.FITNESS)

    def notes(self) -> ActivityLog:
        return self.get(Tool.NOTES)

    def meditation(self) -> ActivityLog:
        return self.get(Tool.MEDITATION)


class ExtractorRegistry:
    """Lazily constructs extractors and shared tools."""

    def __init__(
        self,
        tools: Mapping[Tool, ToolFactory],
        extractors: Optional[Mapping[ExtractorKind, ExtractorFactory]] = None,
        permissions: Optional[Mapping[ExtractorKind, FrozenSet[Tool]]] = None,
    ) -> None:
        self._tool_factories: Dict[Tool, ToolFactory] = dict(tools)
        self._extractor_factories: Dict[ExtractorKind, ExtractorFactory] = dict(
            DEFAULT_EXTRACTORS if extractors is None else extractors
        )
        self._permissions: Dict[ExtractorKind, FrozenSet[Tool]] = dict(
            DEFAULT_PERMISSIONS if permissions is None else permissions
        )
        self._tool_instances: Dict[Tool, Any] = {}
        self._extractor_instances: Dict[ExtractorKind, Extractor] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Extractors
    # ------------------------------------------------------------------

    def get_extractor(self, kind: ExtractorKind) -> Extractor:
        """Return the (cached) extractor for *kind*; ToolNotFound if unregistered."""
        with self._lock:
            instance = self._extractor_instances.get(kind)
            if instance is not None:
                return instance
            factory = self._extractor_factories.get(kind)
            if factory is None:
                raise ToolNotFound(f"No extractor registered for '{kind.value}'", context={"kind": kind.value})
            instance = factory(ScopedTools(self, kind))
            self._extractor_instances[kind] = instance
            logger.debug("Registry: constructed %s extractor", kind.value)
            return instance

    def resolve_extractor(self, name: Optional[str]) -> ExtractorResolution:
        """Resolve a triage agent name, falling back to the generalist."""
        requested = str(name or "")
        kind = kind_for_name(requested)
        if kind is not None:
            try:
                return ExtractorResolution(self.get_extractor(kind), kind, requested)
            except ToolNotFound:
                logger.warning("Extractor kind %s not registered; using fallback", kind.value)
        else:
            logger.warning("Unknown extractor '%s'; using %s", requested, FALLBACK_KIND.value)
        return ExtractorResolution(self.get_extractor(FALLBACK_KIND), FALLBACK_KIND, requested, fallback=True)

    def registered_kinds(self) -> list[ExtractorKind]:
        return list(self._extractor_factories)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def permissions_for(self, kind: ExtractorKind) -> FrozenSet[Tool]:
        return self._permissions.get(kind, frozenset())

    def get_tool(self, tool: Union[Tool, str], requesting: ExtractorKind) -> Any:
        """Return the shared tool instance if *requesting* may use it."""
        try:
            tool = Tool(tool)
        except ValueError:
            raise ToolNotFound(f"Unknown tool '{tool}'", context={"tool": str(tool)}) from None

        if tool not in self.permissions_for(requesting):
            raise PermissionDenied(
                f"Extractor '{requesting.value}' is not authorized to use '{tool.value}'",
                context={"extractor": requesting.value, "tool": tool.value},
            )

        with self._lock:
            instance = self._tool_instances.get(tool)
            if instance is not None:
                return instance
            factory = self._tool_factories.get(tool)
            if factory is None:
                raise ToolNotFound(f"Tool '{tool.value}' is not configured", context={"tool": tool.value})
            instance = factory()
            self._tool_instances[tool] = instance
            return instance


def build_default_registry(store, config=None) -> ExtractorRegistry:
    """Registry wired to *store*; weather only when an API key is configured."""
    tools: Dict[Tool, ToolFactory] = {
        Tool.GRAPH: lambda: store,
        Tool.SEARCH: lambda: GraphSearch(store),
        Tool.CALENDAR: lambda: GraphCalendar(store),
        Tool.FITNESS: lambda: GraphActivityLog(store, "health"),
        Tool.NOTES: lambda: GraphActivityLog(store, "note"),
        Tool.MEDITATION: lambda: GraphActivityLog(store, "spiritual"),
    }
    if config is not None and config.weather_api_key:
        tools[Tool.WEATHER] = lambda: OpenWeatherClient(
            api_key=config.weather_api_key, base_url=config.weather_base_url
        )
    return ExtractorRegistry(tools=tools)
