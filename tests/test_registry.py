"""Tests for the extractor registry and its permission scoping."""

import pytest

from life_graph.errors import PermissionDenied, ToolNotFound
from life_graph.extractors import ExtractorKind, FinanceExtractor, GeneralistExtractor
from life_graph.registry import (
    DEFAULT_PERMISSIONS,
    ExtractorRegistry,
    build_default_registry,
    kind_for_name,
)
from life_graph.tools import (
    ActivityLog,
    CalendarProvider,
    GraphActivityLog,
    GraphCalendar,
    GraphSearch,
    SearchProvider,
    Tool,
)


class TestKindForName:
    @pytest.mark.parametrize("name,kind", [
        ("FinanceAgent", ExtractorKind.FINANCE),
        ("finance_agent", ExtractorKind.FINANCE),
        ("SocialAgent", ExtractorKind.RELATIONSHIP),
        ("Relationship Agent", ExtractorKind.RELATIONSHIP),
        ("CalendarAgent", ExtractorKind.PLANNER),
        ("notes", ExtractorKind.MEMORY),
        ("GENERALIST", ExtractorKind.GENERALIST),
        ("HealthAgent", ExtractorKind.HEALTH),
        ("fitness", ExtractorKind.HEALTH),
        ("LearningAgent", ExtractorKind.LEARNING),
        ("Study Agent", ExtractorKind.LEARNING),
        ("SpiritualAgent", ExtractorKind.SPIRITUAL),
        ("MindfulnessAgent", ExtractorKind.SPIRITUAL),
    ])
    def test_aliases(self, name, kind):
        assert kind_for_name(name) is kind

    def test_unknown(self):
        assert kind_for_name("TravelAgent") is None
        assert kind_for_name("") is None
        assert kind_for_name(None) is None


class TestExtractors:
    def test_lazy_singleton(self, registry):
        first = registry.get_extractor(ExtractorKind.FINANCE)
        assert isinstance(first, FinanceExtractor)
        assert registry.get_extractor(ExtractorKind.FINANCE) is first

    def test_resolve_known(self, registry):
        res = registry.resolve_extractor("FinanceAgent")
        assert res.kind is ExtractorKind.FINANCE
        assert res.fallback is False
        assert res.requested == "FinanceAgent"

    def test_resolve_unknown_falls_back(self, registry):
        res = registry.resolve_extractor("TravelAgent")
        assert res.kind is ExtractorKind.GENERALIST
        assert isinstance(res.extractor, GeneralistExtractor)
        assert res.fallback is True

    def test_resolve_unregistered_kind_falls_back(self, tmp_store):
        reg = ExtractorRegistry(
            tools={Tool.GRAPH: lambda: tmp_store},
            extractors={ExtractorKind.GENERALIST: GeneralistExtractor},
        )
        res = reg.resolve_extractor("FinanceAgent")
        assert res.kind is ExtractorKind.GENERALIST
        assert res.fallback is True

    def test_unregistered_kind_raises(self, tmp_store):
        reg = ExtractorRegistry(tools={}, extractors={})
        with pytest.raises(ToolNotFound):
            reg.get_extractor(ExtractorKind.PLANNER)

    def test_registered_kinds(self, registry):
        assert set(registry.registered_kinds()) == set(ExtractorKind)


class TestTools:
    def test_permitted_tool_is_shared_instance(self, registry):
        a = registry.get_tool(Tool.CALENDAR, ExtractorKind.FINANCE)
        b = registry.get_tool("calendar", ExtractorKind.PLANNER)
        assert a is b
        assert isinstance(a, GraphCalendar)
        assert isinstance(a, CalendarProvider)

    def test_search_tool(self, registry):
        search = registry.get_tool(Tool.SEARCH, ExtractorKind.MEMORY)
        assert isinstance(search, GraphSearch)
        assert isinstance(search, SearchProvider)

    def test_outside_permission_set_denied(self, registry):
        with pytest.raises(PermissionDenied):
            registry.get_tool(Tool.SEARCH, ExtractorKind.FINANCE)
        with pytest.raises(PermissionDenied):
            registry.get_tool(Tool.WEATHER, ExtractorKind.MEMORY)

    def test_unknown_tool_name(self, registry):
        with pytest.raises(ToolNotFound):
            registry.get_tool("teleporter", ExtractorKind.GENERALIST)

    def test_permitted_but_unconfigured(self, registry):
        with pytest.raises(ToolNotFound):
            registry.get_tool(Tool.WEATHER, ExtractorKind.GENERALIST)

    def test_scoped_tools_enforce_own_kind(self, registry):
        finance = registry.get_extractor(ExtractorKind.FINANCE)
        assert finance.tools.graph() is not None
        with pytest.raises(PermissionDenied):
            finance.tools.search()

    def test_factories_not_called_until_needed(self, tmp_store):
        calls = []

        def factory():
            calls.append(1)
            return GraphSearch(tmp_store)

        reg = ExtractorRegistry(tools={Tool.SEARCH: factory})
        assert calls == []
        reg.get_tool(Tool.SEARCH, ExtractorKind.MEMORY)
        reg.get_tool(Tool.SEARCH, ExtractorKind.PLANNER)
        assert calls == [1]

    def test_custom_permissions(self, tmp_store):
        reg = ExtractorRegistry(
            tools={Tool.GRAPH: lambda: tmp_store},
            permissions={ExtractorKind.FINANCE: frozenset()},
        )
        assert reg.permissions_for(ExtractorKind.FINANCE) == frozenset()
        assert reg.permissions_for(ExtractorKind.MEMORY) == frozenset()
        with pytest.raises(PermissionDenied):
            reg.get_tool(Tool.GRAPH, ExtractorKind.FINANCE)

    def test_weather_registered_with_key(self, tmp_store):
        class Cfg:
            weather_api_key = "k"
            weather_base_url = "http://weather.test"

        reg = build_default_registry(tmp_store, Cfg())
        client = reg.get_tool(Tool.WEATHER, ExtractorKind.GENERALIST)
        assert client.api_key == "k"
        assert client.base_url == "http://weather.test"

    def test_default_permissions_cover_every_kind(self):
        assert set(DEFAULT_PERMISSIONS) == set(ExtractorKind)
        assert all(Tool.GRAPH in tools for tools in DEFAULT_PERMISSIONS.values())

    @pytest.mark.parametrize("kind,tool,component_kind", [
        (ExtractorKind.HEALTH, Tool.FITNESS, "health"),
        (ExtractorKind.LEARNING, Tool.NOTES, "note"),
        (ExtractorKind.SPIRITUAL, Tool.MEDITATION, "spiritual"),
    ])
    def test_activity_logs_scoped_to_their_kind(self, registry, kind, tool, component_kind):
        log = registry.get_tool(tool, kind)
        assert isinstance(log, GraphActivityLog)
        assert isinstance(log, ActivityLog)
        assert log.kind == component_kind
        with pytest.raises(PermissionDenied):
            registry.get_tool(tool, ExtractorKind.GENERALIST)

    def test_health_extractor_cannot_reach_notes(self, registry):
        health = registry.get_extractor(ExtractorKind.HEALTH)
        assert isinstance(health.tools.fitness(), GraphActivityLog)
        with pytest.raises(PermissionDenied):
            health.tools.notes()
