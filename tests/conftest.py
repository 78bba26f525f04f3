"""Shared fixtures for life-graph tests."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

import pytest

from life_graph.extractors import DEFAULT_EXTRACTORS, Extractor, ExtractorKind
from life_graph.history import ConversationHistory, ConversationTurn
from life_graph.metrics import reset_metrics
from life_graph.orchestrator import Orchestrator
from life_graph.registry import ExtractorRegistry, build_default_registry
from life_graph.storage import GraphStore


# ---------------------------------------------------------------------------
# Ensure no real API calls or real data directories leak out
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch, tmp_path):
    """Dummy keys and temp paths so tests never touch real services or ~/.life-graph."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-key-for-pytest")
    monkeypatch.setenv("LIFE_GRAPH_DB", str(tmp_path / "env-graph.sqlite"))
    monkeypatch.setenv("LIFE_GRAPH_HISTORY_DIR", str(tmp_path / "env-history"))
    monkeypatch.delenv("OPENWEATHER_API_KEY", raising=False)
    monkeypatch.delenv("LIFE_GRAPH_CONFIG", raising=False)
    reset_metrics()


# ---------------------------------------------------------------------------
# Storage / history
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_store(tmp_path):
    """Fresh GraphStore backed by a temp SQLite file."""
    s = GraphStore(db_path=str(tmp_path / "graph.sqlite"))
    yield s
    s.close()


@pytest.fixture
def history(tmp_path):
    return ConversationHistory(cache_dir=str(tmp_path / "conversations"), max_turns=5)


@pytest.fixture
def registry(tmp_store):
    return build_default_registry(tmp_store)


# ---------------------------------------------------------------------------
# Fake triage collaborator
# ---------------------------------------------------------------------------

class FakeTriage:
    """Returns canned plan text; records what it was asked."""

    def __init__(self, responses: Optional[List[Any]] = None, fence: bool = True):
        self.responses = list(responses or [])
        self.fence = fence
        self.calls: List[Dict[str, Any]] = []

    def queue(self, plan: Any) -> None:
        self.responses.append(plan)

    def complete(self, query: str, history: Sequence[ConversationTurn] = ()) -> str:
        self.calls.append({"query": query, "history": list(history)})
        plan = self.responses.pop(0)
        if isinstance(plan, Exception):
            raise plan
        text = plan if isinstance(plan, str) else json.dumps(plan)
        return f"```json\n{text}\n```" if self.fence else text


@pytest.fixture
def fake_triage():
    return FakeTriage()


# ---------------------------------------------------------------------------
# Recording / failing extractors
# ---------------------------------------------------------------------------

class RecordingExtractor(Extractor):
    """Echoes its input; appends (kind, task_id) to a shared call log."""

    calls: List[tuple] = []

    def __init__(self, tools, kind: ExtractorKind):
        super().__init__(tools)
        self.kind = kind

    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        RecordingExtractor.calls.append((self.kind.value, data.get("task_id")))
        body = {k: v for k, v in data.items() if k not in ("plan", "previous_components")}
        body["kind"] = "recorded"
        body["seen_components"] = sorted(data.get("previous_components") or {})
        return body


class FailingExtractor(Extractor):
    def create_component(self, data: Dict[str, Any]) -> Dict[str, Any]:
        raise RuntimeError(f"boom in {data.get('task_id')}")


def recording_registry(store: GraphStore, failing: Sequence[ExtractorKind] = ()) -> ExtractorRegistry:
    """Registry whose extractors record calls; kinds in *failing* always raise."""
    RecordingExtractor.calls = []
    factories = {}
    for kind in DEFAULT_EXTRACTORS:
        if kind in failing:
            factories[kind] = FailingExtractor
        else:
            factories[kind] = (lambda k: (lambda tools: RecordingExtractor(tools, k)))(kind)
    return ExtractorRegistry(tools={}, extractors=factories)


@pytest.fixture
def make_orchestrator(tmp_store, history, fake_triage):
    """Factory: orchestrator over temp store/history with the fake triage."""

    def _make(registry: Optional[ExtractorRegistry] = None) -> Orchestrator:
        return Orchestrator(
            store=tmp_store,
            registry=registry or build_default_registry(tmp_store),
            triage=fake_triage,
            history=history,
        )

    return _make


# ---------------------------------------------------------------------------
# Sample plans
# ---------------------------------------------------------------------------

FINANCE_QUERY = "I spent $25 on lunch at McDonald's today"

FINANCE_PLAN = {
    "triage_summary": "User bought lunch at McDonald's for $25.",
    "suggested_response": "Logged your $25 lunch at McDonald's.",
    "target_entity": {"alias": "Lunch at McDonald's", "type": "transaction"},
    "component_tasks": [
        {
            "task_id": "t1",
            "original_query_part": FINANCE_QUERY,
            "target_agent": "FinanceAgent",
            "component_name": "finance_component",
            "component_data": {},
        }
    ],
}

BROTHER_QUERY = "John is my brother who lives in Seattle"

BROTHER_PLAN = {
    "triage_summary": "John is the user's brother and lives in Seattle.",
    "suggested_response": "Got it, John is your brother in Seattle.",
    "target_entity": {"alias": "John", "type": "person"},
    "component_tasks": [
        {
            "task_id": "t1",
            "original_query_part": BROTHER_QUERY,
            "target_agent": "RelationshipAgent",
            "component_name": "relationship_component",
            "component_data": {},
        }
    ],
}


def multi_task_plan(names: Sequence[str], agents: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    """Plan with one task per component name, in order."""
    agents = list(agents or ["GeneralistAgent"] * len(names))
    return {
        "triage_summary": "multi",
        "suggested_response": "ok",
        "target_entity": {"alias": "Thing", "type": "task"},
        "component_tasks": [
            {
                "task_id": f"t{i + 1}",
                "original_query_part": f"part {i + 1}",
                "target_agent": agent,
                "component_name": name,
                "component_data": {"n": i + 1},
            }
            for i, (name, agent) in enumerate(zip(names, agents))
        ],
    }
