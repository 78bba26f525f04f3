"""FastAPI HTTP API for the life-graph pipeline.

Endpoints:
    POST   /v1/process                          -- Run one statement through triage + extractors
    GET    /v1/entities                         -- List entities of a type for an owner
    GET    /v1/entities/{entity_id}             -- One entity with decoded components
    DELETE /v1/entities/{entity_id}             -- Delete entity (edges cascade)
    GET    /v1/entities/{entity_id}/relationships -- Edges by direction / type
    GET    /v1/conversations                    -- Conversation ids with stored history
    GET    /v1/conversations/{conversation_id}/history -- Stored turns
    DELETE /v1/conversations/{conversation_id}/history -- Forget a conversation's turns
    GET    /v1/stats                            -- Store statistics
    GET    /v1/health                           -- Health check (no auth)
    GET    /v1/metrics                          -- Prometheus text exposition

Run: ``python -m life_graph.api`` or ``life-graph``
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse, PlainTextResponse

from .components import decode_components
from .config import Config, load_config
from .context import DEFAULT_CONVERSATION_ID, MAX_QUERY_LENGTH, RequestContext, sanitize_identifier
from .errors import LifeGraphError
from .history import ConversationHistory
from .metrics import render_prometheus_metrics, set_store_gauges
from .middleware import (
    APIKeyMiddleware,
    AuditLogMiddleware,
    RateLimitMiddleware,
    configure_audit_log,
    request_id_for,
)
from .orchestrator import Orchestrator
from .registry import ExtractorRegistry, build_default_registry
from .storage import DIRECTIONS, GraphStore
from .triage import TriageClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared state (initialised in lifespan)
# ---------------------------------------------------------------------------

_config: Optional[Config] = None
_store: Optional[GraphStore] = None
_history: Optional[ConversationHistory] = None
_registry: Optional[ExtractorRegistry] = None
_orchestrator: Optional[Orchestrator] = None
_start_time: float = 0.0


def _require_store() -> GraphStore:
    if _store is None:
        raise HTTPException(503, "Storage not initialised")
    return _store


def _require_history() -> ConversationHistory:
    if _history is None:
        raise HTTPException(503, "History not initialised")
    return _history


def _owner(owner_id: Optional[str]) -> str:
    default = _config.default_owner_id if _config else "default_user"
    return sanitize_identifier(owner_id, default)


def _debug() -> bool:
    return bool(_config and _config.debug)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown logic."""
    global _config, _store, _history, _registry, _orchestrator, _start_time

    _config = load_config()
    errors = _config.validate()
    if errors:
        logger.warning("Config validation warnings: %s", errors)

    configure_audit_log()

    _store = GraphStore(db_path=_config.db_path, max_query_rows=_config.query_max_rows)
    _history = ConversationHistory(cache_dir=_config.history_dir, max_turns=_config.history_max_turns)
    _registry = build_default_registry(_store, _config)
    if not _config.weather_api_key:
        logger.info("No OPENWEATHER_API_KEY -- weather tool disabled")

    triage = TriageClient(
        api_key=_config.gemini_api_key,
        model=_config.triage_model,
        base_url=_config.triage_base_url,
        timeout=_config.triage_timeout,
        retries=_config.triage_retries,
    )
    _orchestrator = Orchestrator(store=_store, registry=_registry, triage=triage, history=_history)
    _start_time = time.time()

    logger.info("Life graph API ready (db=%s, triage model=%s)", _config.db_path, _config.triage_model)
    yield

    if _store:
        _store.close()
    logger.info("Life graph API shut down")


app = FastAPI(
    title="Life Graph API",
    version="0.1.0",
    lifespan=lifespan,
)

# --- Middleware (order matters: last added = first to run) ---
_startup_config = load_config()

if _startup_config.api_key:
    app.add_middleware(APIKeyMiddleware, api_key=_startup_config.api_key)
    logger.info("API key authentication enabled")
else:
    logger.warning("No LIFE_GRAPH_API_KEY set -- API is UNAUTHENTICATED")

app.add_middleware(RateLimitMiddleware, max_requests=_startup_config.rate_limit_per_minute, window_seconds=60)

# Outermost: assigns the correlation id every other layer logs with
app.add_middleware(AuditLogMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["X-API-Key", "X-Request-ID", "Content-Type"],
    expose_headers=["X-Request-ID"],
)

# --- Centralized error handling ---

@app.exception_handler(LifeGraphError)
async def life_graph_error_handler(request: Request, exc: LifeGraphError):
    request_id = request_id_for(request)
    logger.warning("[%s] %s: %s (path=%s)", request_id, exc.code, exc.message, request.url.path)
    content: Dict[str, Any] = {"status": "error", **exc.to_dict(include_context=_debug())}
    content["request_id"] = request_id
    return JSONResponse(status_code=exc.http_status, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning("HTTP %d: %s (path=%s)", exc.status_code, exc.detail, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "error": str(exc.detail), "request_id": request_id_for(request)},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error: %s (path=%s)", str(exc)[:200], request.url.path)
    return JSONResponse(
        status_code=400,
        content={
            "status": "error",
            "error": "VALIDATION",
            "detail": jsonable_errors(exc),
            "request_id": request_id_for(request),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    request_id = request_id_for(request)
    logger.exception("[%s] Unhandled error: %s (path=%s)", request_id, exc, request.url.path)
    content: Dict[str, Any] = {"status": "error", "error": "Internal server error", "request_id": request_id}
    if _debug():
        content["detail"] = f"{type(exc).__name__}: {exc}"
    return JSONResponse(status_code=500, content=content)


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without non-serialisable ``ctx`` payloads."""
    cleaned = []
    for err in exc.errors():
        cleaned.append({k: v for k, v in err.items() if k in ("type", "loc", "msg")})
    return cleaned


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class ProcessRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH)
    conversation_id: Optional[str] = Field(default=None, max_length=200)
    owner_id: Optional[str] = Field(default=None, max_length=200)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.post("/v1/process")
async def process(req: ProcessRequest, request: Request) -> Dict[str, Any]:
    """Triage one statement and persist the resulting entity."""
    if _orchestrator is None or _config is None:
        raise HTTPException(503, "Pipeline not initialised")

    ctx = RequestContext.build(
        req.query,
        conversation_id=req.conversation_id,
        owner_id=req.owner_id,
        default_owner_id=_config.default_owner_id,
        request_id=getattr(request.state, "request_id", None),
    )
    result = await asyncio.to_thread(_orchestrator.process, ctx)

    return {
        "status": result.status,
        "response_text": result.suggested_response,
        "entity_id": result.entity_id,
        "components": result.components,
        "triage_summary": result.triage_summary,
        "tasks": [o.to_dict() for o in result.outcomes],
        "conversation_id": ctx.conversation_id,
        "request_id": ctx.request_id,
    }


@app.get("/v1/entities")
async def list_entities(
    entity_type: str = Query(..., alias="type", min_length=1, max_length=64),
    owner_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
) -> Dict[str, Any]:
    store = _require_store()
    owner = _owner(owner_id)
    entity_type = entity_type.strip().lower()
    entities = store.list_entities_by_type(owner, entity_type, limit=limit)
    return {"owner_id": owner, "type": entity_type, "entities": entities, "count": len(entities)}


@app.get("/v1/entities/{entity_id}")
async def get_entity(entity_id: str, owner_id: Optional[str] = Query(default=None)) -> Dict[str, Any]:
    store = _require_store()
    entity = store.get_entity(entity_id, owner_id=_owner(owner_id))
    if entity is None:
        raise HTTPException(404, f"Entity {entity_id} not found")
    typed = decode_components(entity["data"])
    entity["components"] = {name: comp.to_dict() for name, comp in typed.items()}
    return entity


@app.delete("/v1/entities/{entity_id}")
async def delete_entity(entity_id: str, owner_id: Optional[str] = Query(default=None)) -> Dict[str, Any]:
    store = _require_store()
    if not store.delete_entity(entity_id, owner_id=_owner(owner_id)):
        raise HTTPException(404, f"Entity {entity_id} not found")
    return {"deleted": True, "id": entity_id}


@app.get("/v1/entities/{entity_id}/relationships")
async def entity_relationships(
    entity_id: str,
    direction: str = Query(default="both"),
    rel_type: Optional[str] = Query(default=None, alias="type"),
    owner_id: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    store = _require_store()
    if direction not in DIRECTIONS:
        raise HTTPException(400, f"direction must be one of {', '.join(DIRECTIONS)}")
    if store.get_entity(entity_id, owner_id=_owner(owner_id)) is None:
        raise HTTPException(404, f"Entity {entity_id} not found")
    edges = store.find_relationships(entity_id, direction=direction, rel_type=rel_type)
    return {"entity_id": entity_id, "direction": direction, "relationships": edges, "count": len(edges)}


@app.get("/v1/conversations/{conversation_id}/history")
async def conversation_history(
    conversation_id: str,
    limit: Optional[int] = Query(default=None, ge=0, le=500),
) -> Dict[str, Any]:
    history = _require_history()
    cid = sanitize_identifier(conversation_id, DEFAULT_CONVERSATION_ID)
    turns = history.get_turns(cid, limit=limit)
    return {
        "conversation_id": cid,
        "turns": [
            {"user_text": t.user_text, "assistant_text": t.assistant_text, "timestamp": t.timestamp}
            for t in turns
        ],
        "count": len(turns),
    }


@app.delete("/v1/conversations/{conversation_id}/history")
async def clear_conversation_history(conversation_id: str) -> Dict[str, Any]:
    cid = sanitize_identifier(conversation_id, DEFAULT_CONVERSATION_ID)
    if not _require_history().clear(cid):
        raise HTTPException(404, f"Conversation {cid} has no history")
    logger.info("Cleared history for conversation %s", cid)
    return {"cleared": True, "conversation_id": cid}


@app.get("/v1/conversations")
async def list_conversations() -> Dict[str, Any]:
    ids = _require_history().conversation_ids()
    return {"conversations": ids, "count": len(ids)}


@app.get("/v1/stats")
async def stats(owner_id: Optional[str] = Query(default=None)) -> Dict[str, Any]:
    store = _require_store()
    owner = _owner(owner_id) if owner_id else None
    s = store.stats(owner_id=owner)
    s["owner_id"] = owner
    return s


@app.get("/v1/health")
async def health() -> Dict[str, Any]:
    """Health check: storage probe plus whether triage is configured."""
    checks: Dict[str, bool] = {
        "storage": False,
        "triage_configured": bool(_config and _config.gemini_api_key),
    }
    if _store is not None:
        try:
            _store.stats()
            checks["storage"] = True
        except sqlite3.Error as exc:
            logger.warning("Health storage probe failed: %s", exc)

    if not checks["storage"]:
        overall = "down"
    elif not checks["triage_configured"]:
        overall = "degraded"
    else:
        overall = "ok"

    return {
        "status": overall,
        "checks": checks,
        "uptime_seconds": round(time.time() - _start_time, 1) if _start_time else 0.0,
    }


@app.get("/v1/metrics", response_class=PlainTextResponse)
async def metrics() -> PlainTextResponse:
    """Prometheus text exposition; store gauges refresh on each scrape."""
    if _store is not None:
        s = _store.stats()
        set_store_gauges(entities_total=s["entities"], relationships_total=s["relationships"])
    return PlainTextResponse(
        render_prometheus_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# ---------------------------------------------------------------------------
# CLI entry-point
# ---------------------------------------------------------------------------

def main() -> None:
    """Run the API server via uvicorn."""
    import uvicorn

    cfg = load_config()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    logger.info("Starting Life Graph API on %s:%d", cfg.api_host, cfg.api_port)
    uvicorn.run(
        "life_graph.api:app",
        host=cfg.api_host,
        port=cfg.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
