"""Tests for the FastAPI HTTP API.

Uses httpx AsyncClient against the FastAPI app. The module-level state that
normally comes from the lifespan handler is wired by hand to a temp store,
temp history and a fake triage collaborator.
"""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

import life_graph.api as api_module
from conftest import (
    BROTHER_PLAN,
    BROTHER_QUERY,
    FINANCE_PLAN,
    FINANCE_QUERY,
    FakeTriage,
    multi_task_plan,
    recording_registry,
)
from life_graph.api import app
from life_graph.config import Config
from life_graph.errors import PersistenceError, TriageUnavailable
from life_graph.extractors import ExtractorKind
from life_graph.middleware import APIKeyMiddleware, AuditLogMiddleware, RateLimitMiddleware
from life_graph.orchestrator import Orchestrator
from life_graph.registry import build_default_registry


@pytest.fixture
def triage():
    return FakeTriage()


@pytest.fixture(autouse=True)
def _init_api_state(tmp_store, history, triage):
    """Wire the api module globals to temp state so every test starts clean."""
    api_module._config = Config(gemini_api_key="test-key", default_owner_id="default_user")
    api_module._store = tmp_store
    api_module._history = history
    api_module._registry = build_default_registry(tmp_store)
    api_module._orchestrator = Orchestrator(
        store=tmp_store, registry=api_module._registry, triage=triage, history=history,
    )
    api_module._start_time = time.time()

    yield

    api_module._config = None
    api_module._store = None
    api_module._history = None
    api_module._registry = None
    api_module._orchestrator = None


@pytest.fixture
async def client():
    """Create a test HTTP client against the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# /v1/process
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestProcess:
    async def test_finance_statement(self, client, triage, tmp_store):
        triage.queue(FINANCE_PLAN)
        resp = await client.post("/v1/process", json={"query": FINANCE_QUERY, "conversation_id": "c1"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "success"
        assert data["response_text"] == "Logged your $25 lunch at McDonald's."
        assert data["components"]["finance_component"]["amount"] == 25.0
        assert data["tasks"][0]["ok"] is True
        assert data["request_id"] == resp.headers["X-Request-ID"]

        entity = tmp_store.get_entity(data["entity_id"], owner_id="default_user")
        assert entity["type"] == "transaction"

    async def test_request_id_is_propagated(self, client, triage):
        triage.queue(multi_task_plan(["a"]))
        resp = await client.post(
            "/v1/process", json={"query": "hi"}, headers={"X-Request-ID": "trace-123"},
        )
        assert resp.headers["X-Request-ID"] == "trace-123"
        assert resp.json()["request_id"] == "trace-123"

    async def test_owner_and_conversation_sanitised(self, client, triage, history):
        triage.queue(multi_task_plan(["a"]))
        resp = await client.post(
            "/v1/process", json={"query": "hi", "conversation_id": "c/1!", "owner_id": "bob"},
        )
        assert resp.json()["conversation_id"] == "c1"
        assert len(history.get_turns("c1")) == 1

    async def test_empty_query_is_400(self, client):
        resp = await client.post("/v1/process", json={"query": ""})
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION"

    async def test_whitespace_query_is_400(self, client):
        resp = await client.post("/v1/process", json={"query": "   "})
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION"

    async def test_oversized_query_is_400(self, client):
        resp = await client.post("/v1/process", json={"query": "x" * 2001})
        assert resp.status_code == 400

    async def test_invalid_plan_is_502(self, client, triage, tmp_store):
        triage.queue({"target_entity": {"alias": "x"}})
        resp = await client.post("/v1/process", json={"query": "hi"})
        assert resp.status_code == 502
        body = resp.json()
        assert body["status"] == "error"
        assert body["error"] == "TRIAGE_PLAN_INVALID"
        assert "context" not in body
        assert tmp_store.stats()["entities"] == 0

    async def test_context_only_in_debug(self, client, triage):
        api_module._config.debug = True
        triage.queue({"target_entity": {"alias": "x"}})
        resp = await client.post("/v1/process", json={"query": "hi"})
        assert "context" in resp.json()

    async def test_triage_unavailable_is_503(self, client, triage):
        triage.queue(TriageUnavailable("timeout"))
        resp = await client.post("/v1/process", json={"query": "hi"})
        assert resp.status_code == 503
        assert resp.json()["error"] == "TRIAGE_UNAVAILABLE"

    async def test_all_tasks_failed_is_422_with_entity(self, client, triage, tmp_store, history):
        api_module._orchestrator = Orchestrator(
            store=tmp_store,
            registry=recording_registry(tmp_store, failing=[ExtractorKind.GENERALIST]),
            triage=triage,
            history=history,
        )
        triage.queue(multi_task_plan(["a", "b"]))

        resp = await client.post("/v1/process", json={"query": "do two things"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "ALL_TASKS_FAILED"
        entity = tmp_store.get_entity(body["entity_id"])
        assert entity is not None
        assert entity["data"] == {}

    async def test_component_write_failure_is_500(self, client, triage, tmp_store):
        triage.queue(BROTHER_PLAN)
        with patch.object(tmp_store, "update_entity_data", side_effect=PersistenceError("disk full")):
            resp = await client.post("/v1/process", json={"query": BROTHER_QUERY})

        assert resp.status_code == 500
        body = resp.json()
        assert body["status"] == "error"
        assert body["error"] == "PERSISTENCE"
        assert tmp_store.find_entity("default_user", "John", "person") is not None
        assert tmp_store.stats("default_user")["relationships"] == 2


# ---------------------------------------------------------------------------
# Entities / relationships
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestEntities:
    async def _process_brother(self, client, triage):
        triage.queue(BROTHER_PLAN)
        resp = await client.post("/v1/process", json={"query": BROTHER_QUERY})
        assert resp.status_code == 200
        return resp.json()["entity_id"]

    async def test_get_entity_with_components(self, client, triage):
        eid = await self._process_brother(client, triage)
        resp = await client.get(f"/v1/entities/{eid}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["primary_name"] == "John"
        assert data["components"]["relationship_component"]["kind"] == "relationship"

    async def test_list_by_type(self, client, triage):
        await self._process_brother(client, triage)
        resp = await client.get("/v1/entities", params={"type": "location"})
        names = [e["primary_name"] for e in resp.json()["entities"]]
        assert names == ["Seattle"]

    async def test_relationships(self, client, triage):
        eid = await self._process_brother(client, triage)
        resp = await client.get(f"/v1/entities/{eid}/relationships", params={"direction": "outgoing"})
        edges = resp.json()["relationships"]
        assert [(e["target_name"], e["type"]) for e in edges] == [("Seattle", "lives_in")]

        resp = await client.get(f"/v1/entities/{eid}/relationships", params={"type": "sibling_of"})
        edges = resp.json()["relationships"]
        assert [(e["source_name"], e["target_name"]) for e in edges] == [("me", "John")]

    async def test_bad_direction(self, client, triage):
        eid = await self._process_brother(client, triage)
        resp = await client.get(f"/v1/entities/{eid}/relationships", params={"direction": "up"})
        assert resp.status_code == 400

    async def test_delete_cascades(self, client, triage, tmp_store):
        eid = await self._process_brother(client, triage)
        resp = await client.delete(f"/v1/entities/{eid}")
        assert resp.status_code == 200
        assert tmp_store.stats()["relationships"] == 0

        resp = await client.get(f"/v1/entities/{eid}")
        assert resp.status_code == 404

    async def test_other_owner_cannot_see(self, client, triage):
        eid = await self._process_brother(client, triage)
        resp = await client.get(f"/v1/entities/{eid}", params={"owner_id": "mallory"})
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# History / stats / health / metrics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestReadEndpoints:
    async def test_history(self, client, triage):
        triage.queue(multi_task_plan(["a"]))
        await client.post("/v1/process", json={"query": "first", "conversation_id": "talk"})
        resp = await client.get("/v1/conversations/talk/history")
        turns = resp.json()["turns"]
        assert [t["user_text"] for t in turns] == ["first"]
        assert turns[0]["assistant_text"] == "ok"

    async def test_list_and_clear_conversations(self, client, triage, history):
        triage.queue(multi_task_plan(["a"]))
        triage.queue(multi_task_plan(["b"]))
        await client.post("/v1/process", json={"query": "first", "conversation_id": "talk"})
        await client.post("/v1/process", json={"query": "second", "conversation_id": "chat"})

        listed = (await client.get("/v1/conversations")).json()
        assert listed == {"conversations": ["chat", "talk"], "count": 2}

        resp = await client.delete("/v1/conversations/talk/history")
        assert resp.status_code == 200
        assert resp.json() == {"cleared": True, "conversation_id": "talk"}
        assert history.get_turns("talk") == []
        assert (await client.get("/v1/conversations")).json()["conversations"] == ["chat"]

    async def test_clear_unknown_conversation_is_404(self, client):
        resp = await client.delete("/v1/conversations/nobody/history")
        assert resp.status_code == 404
        assert resp.json()["status"] == "error"

    async def test_stats(self, client, triage):
        triage.queue(BROTHER_PLAN)
        await client.post("/v1/process", json={"query": BROTHER_QUERY})
        data = (await client.get("/v1/stats")).json()
        assert data["entities"] == 3
        assert data["relationships"] == 2
        assert data["entities_by_type"]["location"] == 1

    async def test_health(self, client):
        resp = await client.get("/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["checks"]["storage"] is True

    async def test_health_without_store(self, client):
        api_module._store = None
        data = (await client.get("/v1/health")).json()
        assert data["status"] == "down"

    async def test_metrics_text(self, client, triage):
        triage.queue(FINANCE_PLAN)
        await client.post("/v1/process", json={"query": FINANCE_QUERY})
        resp = await client.get("/v1/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        text = resp.text
        assert 'life_graph_tasks_total{extractor="finance",outcome="ok"} 1' in text
        assert "life_graph_entities_total 1" in text
        assert 'path="/v1/process"' in text

    async def test_unknown_route_is_404_json(self, client):
        resp = await client.get("/v1/nope")
        assert resp.status_code == 404
        assert resp.json()["status"] == "error"


# ---------------------------------------------------------------------------
# Middleware in isolation
# ---------------------------------------------------------------------------

def _mini_app(**kwargs) -> FastAPI:
    mini = FastAPI()

    @mini.get("/v1/health")
    async def _health():
        return {"ok": True}

    @mini.get("/v1/private")
    async def _private():
        return {"secret": 1}

    if "api_key" in kwargs:
        mini.add_middleware(APIKeyMiddleware, api_key=kwargs["api_key"])
    if "max_requests" in kwargs:
        mini.add_middleware(RateLimitMiddleware, max_requests=kwargs["max_requests"], window_seconds=60)
    mini.add_middleware(AuditLogMiddleware)
    return mini


@pytest.mark.asyncio
class TestMiddleware:
    async def test_api_key_required(self):
        transport = ASGITransport(app=_mini_app(api_key="s3cret"))
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            assert (await c.get("/v1/private")).status_code == 401
            assert (await c.get("/v1/private", headers={"X-API-Key": "wrong"})).status_code == 401
            ok = await c.get("/v1/private", headers={"X-API-Key": "s3cret"})
            assert ok.status_code == 200
            assert (await c.get("/v1/health")).status_code == 200

    async def test_rejection_carries_request_id(self):
        transport = ASGITransport(app=_mini_app(api_key="s3cret"))
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/v1/private", headers={"X-Request-ID": "abc"})
            assert resp.headers["X-Request-ID"] == "abc"
            assert resp.json()["request_id"] == "abc"

    async def test_rate_limit(self):
        transport = ASGITransport(app=_mini_app(max_requests=2))
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            assert (await c.get("/v1/health")).status_code == 200
            assert (await c.get("/v1/health")).status_code == 200
            resp = await c.get("/v1/health")
            assert resp.status_code == 429
            assert resp.headers["Retry-After"] == "60"

    async def test_unsafe_request_id_replaced(self):
        transport = ASGITransport(app=_mini_app())
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/v1/health", headers={"X-Request-ID": "bad id\twith junk"})
            assert resp.headers["X-Request-ID"] != "bad id\twith junk"
            assert len(resp.headers["X-Request-ID"]) == 16
