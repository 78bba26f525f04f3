"""Request pipeline: triage -> plan -> extractors -> entity.

Sequence for one :class:`~life_graph.context.RequestContext`:

1. load recent turns for the conversation
2. ask the triage collaborator for a plan, strip code fences, validate
3. find-or-create the target entity (its id joins the shared context)
4. run each task in plan order through its extractor; a failing task is
   recorded and the rest continue
5. merge components by name (later task wins), persist them in one write
6. append the turn to the conversation history
7. fail with AllTasksFailed only if the plan had tasks and none succeeded

There is no transaction around steps 3-5: edges written by a relationship
extractor stay even if a later write fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .context import RequestContext
from .errors import AgentExecutionError, AllTasksFailed, TriagePlanInvalid
from .history import ConversationHistory, ConversationTurn
from .metrics import record_plan_rejected, record_task_outcome
from .registry import ExtractorRegistry
from .storage import GraphStore
from .triage import ComponentTask, ExecutionPlan, parse_plan, strip_code_fences

logger = logging.getLogger(__name__)


class TriageCollaborator(Protocol):
    def complete(self, query: str, history: Sequence[ConversationTurn] = ()) -> str: ...


@dataclass
class TaskOutcome:
    task_id: str
    extractor: str
    requested: str
    component_name: str
    ok: bool
    fallback: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "extractor": self.extractor,
            "requested": self.requested,
            "component_name": self.component_name,
            "ok": self.ok,
            "fallback": self.fallback,
            "error": self.error,
        }


@dataclass
class ProcessResult:
    entity_id: str
    components: Dict[str, Dict[str, Any]]
    suggested_response: str
    triage_summary: str = ""
    outcomes: List[TaskOutcome] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "partial" if any(not o.ok for o in self.outcomes) else "success"


class Orchestrator:
    """Runs one request through the pipeline. Stateless between requests."""

    def __init__(
        self,
        store: GraphStore,
        registry: ExtractorRegistry,
        triage: TriageCollaborator,
        history: ConversationHistory,
    ) -> None:
        self.store = store
        self.registry = registry
        self.triage = triage
        self.history = history

    def process(self, ctx: RequestContext) -> ProcessResult:
        turns = self.history.get_turns(ctx.conversation_id)
        raw = self.triage.complete(ctx.query, turns)

        try:
            plan = parse_plan(strip_code_fences(raw))
        except TriagePlanInvalid:
            record_plan_rejected()
            logger.warning("[%s] Rejected triage plan", ctx.request_id)
            raise

        entity_id = self.store.find_or_create_entity(
            ctx.owner_id, plan.target_entity.alias, plan.target_entity.type
        )
        logger.info(
            "[%s] Plan: %d task(s) targeting %s:%s (%s)",
            ctx.request_id, len(plan.tasks), plan.target_entity.type, plan.target_entity.alias, entity_id,
        )

        components: Dict[str, Dict[str, Any]] = {}
        outcomes: List[TaskOutcome] = []
        for task in plan.tasks:
            outcome, component = self._run_task(ctx, plan, task, entity_id, components)
            outcomes.append(outcome)
            if component is not None:
                components[task.component_name] = component

        if components:
            self.store.update_entity_data(entity_id, components)

        try:
            self.history.append(ctx.conversation_id, ctx.query, plan.suggested_response)
        except OSError as exc:
            logger.warning("[%s] Could not append history for %s: %s", ctx.request_id, ctx.conversation_id, exc)

        if outcomes and not any(o.ok for o in outcomes):
            raise AllTasksFailed(
                f"All {len(outcomes)} task(s) failed",
                entity_id=entity_id,
                failures=[o.to_dict() for o in outcomes],
            )

        return ProcessResult(
            entity_id=entity_id,
            components=components,
            suggested_response=plan.suggested_response,
            triage_summary=plan.triage_summary,
            outcomes=outcomes,
        )

    def _run_task(
        self,
        ctx: RequestContext,
        plan: ExecutionPlan,
        task: ComponentTask,
        entity_id: str,
        components: Dict[str, Dict[str, Any]],
    ) -> "tuple[TaskOutcome, Optional[Dict[str, Any]]]":
        resolution = self.registry.resolve_extractor(task.target_agent)
        kind = resolution.kind.value

        data = dict(task.component_data)
        data.update({
            "original_query": ctx.query,
            "triage_summary": plan.triage_summary,
            "conversation_id": ctx.conversation_id,
            "owner_id": ctx.owner_id,
            "entity_id": entity_id,
            "target_entity": plan.target_entity.to_dict(),
            "plan": plan.raw,
            "previous_components": dict(components),
            "task_id": task.task_id,
            "original_query_part": task.original_query_part,
        })

        try:
            component = resolution.extractor.create_component(data)
            if not isinstance(component, dict):
                raise TypeError(f"extractor returned {type(component).__name__}, expected a mapping")
        except Exception as exc:
            err = AgentExecutionError(str(exc), task_id=task.task_id, extractor=kind)
            logger.warning(
                "[%s] Task %s (%s) failed: %s: %s",
                ctx.request_id, task.task_id, kind, type(exc).__name__, exc,
            )
            record_task_outcome(kind, "failed")
            return TaskOutcome(
                task_id=task.task_id,
                extractor=kind,
                requested=resolution.requested,
                component_name=task.component_name,
                ok=False,
                fallback=resolution.fallback,
                error=err.message,
            ), None

        record_task_outcome(kind, "fallback" if resolution.fallback else "ok")
        return TaskOutcome(
            task_id=task.task_id,
            extractor=kind,
            requested=resolution.requested,
            component_name=task.component_name,
            ok=True,
            fallback=resolution.fallback,
        ), component
