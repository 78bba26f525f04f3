"""Intent triage: the external reasoning collaborator and its plan format.

The collaborator (Gemini ``generateContent``) gets instructions, a schema
description, recent conversation turns and the user query, and answers
with a JSON execution plan, often wrapped in markdown code fences:

    {
      "triage_summary": "...",
      "suggested_response": "...",
      "target_entity": {"alias": "...", "type": "..."},
      "component_tasks": [
        {"task_id": "...", "original_query_part": "...", "target_agent": "...",
         "component_name": "...", "component_data": {...}}
      ]
    }

Transport:
* raw ``requests`` (no SDK), bounded timeout per attempt
* one retry by default on timeouts, connection errors, 429 and 5xx
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from .config import load_config
from .errors import TriagePlanInvalid, TriageUnavailable
from .history import ConversationTurn
from .metrics import record_triage_call

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTED_RESPONSE = "Okay, I'll take care of that."
DEFAULT_ENTITY_TYPE = "general"
DEFAULT_TARGET_AGENT = "GeneralistAgent"

_RETRYABLE_STATUS = (429, 500, 502, 503, 504)
_FENCE_RE = re.compile(r"^\s*```[\w-]*\s*\n?(?P<body>.*?)\n?\s*```\s*$", re.DOTALL)

_INSTRUCTIONS = """You are the triage step of a personal life-logging assistant.
Classify the user's statement and decompose it into component tasks.
Each task is handled by one agent: FinanceAgent (money), RelationshipAgent
(people and how they relate), PlannerAgent (events, appointments),
MemoryAgent (notes, facts to remember), HealthAgent (workouts, sleep, symptoms),
LearningAgent (study, courses, skills), SpiritualAgent (meditation, prayer,
reflection) or GeneralistAgent (anything else).
Pick ONE target entity the statement is about (a person, event, task,
transaction, location, ...). Respond with JSON only."""

_SCHEMA = """{
  "triage_summary": string,
  "suggested_response": string,
  "target_entity": {"alias": string, "type": string},
  "component_tasks": [
    {"task_id": string, "original_query_part": string, "target_agent": string,
     "component_name": string, "component_data": object}
  ]
}"""


# ---------------------------------------------------------------------------
# Plan model
# ---------------------------------------------------------------------------

@dataclass
class TargetEntity:
    alias: str
    type: str = DEFAULT_ENTITY_TYPE

    def to_dict(self) -> Dict[str, str]:
        return {"alias": self.alias, "type": self.type}


@dataclass
class ComponentTask:
    task_id: str
    target_agent: str
    component_name: str
    component_data: Dict[str, Any] = field(default_factory=dict)
    original_query_part: str = ""


@dataclass
class ExecutionPlan:
    """One request's validated plan. Consumed once, never persisted."""
    target_entity: TargetEntity
    tasks: List[ComponentTask]
    triage_summary: str = ""
    suggested_response: str = DEFAULT_SUGGESTED_RESPONSE
    raw: Dict[str, Any] = field(default_factory=dict)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```/```json fence pair, if any."""
    if not isinstance(text, str):
        return text
    match = _FENCE_RE.match(text)
    return match.group("body").strip() if match else text.strip()


def _component_name_for(agent: str) -> str:
    base = re.sub(r"agent$", "", re.sub(r"[^a-z0-9]", "", agent.lower())) or "general"
    return f"{base}_component"


def parse_plan(payload: Union[str, Dict[str, Any]]) -> ExecutionPlan:
    """Validate triage output and build an :class:`ExecutionPlan`.

    Raises TriagePlanInvalid when the payload is not a JSON object, has no
    ``target_entity`` object with an alias, or no ``component_tasks`` list.
    """
    if isinstance(payload, str):
        try:
            data = json.loads(strip_code_fences(payload))
        except (json.JSONDecodeError, TypeError) as exc:
            raise TriagePlanInvalid(
                "Triage output is not valid JSON", context={"preview": payload[:200]}
            ) from exc
    else:
        data = payload

    if not isinstance(data, dict):
        raise TriagePlanInvalid("Triage output must be a JSON object")

    target = data.get("target_entity")
    if not isinstance(target, dict) or not str(target.get("alias") or "").strip():
        raise TriagePlanInvalid("Plan is missing target_entity.alias", context={"keys": sorted(data)})

    raw_tasks = data.get("component_tasks")
    if not isinstance(raw_tasks, list):
        raise TriagePlanInvalid("Plan is missing the component_tasks array", context={"keys": sorted(data)})

    tasks: List[ComponentTask] = []
    for idx, item in enumerate(raw_tasks, start=1):
        if not isinstance(item, dict):
            raise TriagePlanInvalid(f"component_tasks[{idx - 1}] is not an object")
        agent = str(item.get("target_agent") or DEFAULT_TARGET_AGENT)
        component_data = item.get("component_data")
        tasks.append(ComponentTask(
            task_id=str(item.get("task_id") or f"task_{idx}"),
            target_agent=agent,
            component_name=str(item.get("component_name") or _component_name_for(agent)),
            component_data=component_data if isinstance(component_data, dict) else {},
            original_query_part=str(item.get("original_query_part") or ""),
        ))

    return ExecutionPlan(
        target_entity=TargetEntity(
            alias=str(target["alias"]).strip(),
            type=str(target.get("type") or DEFAULT_ENTITY_TYPE).strip().lower(),
        ),
        tasks=tasks,
        triage_summary=str(data.get("triage_summary") or ""),
        suggested_response=str(data.get("suggested_response") or DEFAULT_SUGGESTED_RESPONSE),
        raw=data,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TriageClient:
    """Blocking Gemini client returning the raw plan text."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff: float = 1.0,
    ) -> None:
        cfg = load_config()
        self.api_key: str = api_key or cfg.gemini_api_key
        self.model: str = model or cfg.triage_model
        self.base_url: str = (base_url or cfg.triage_base_url).rstrip("/")
        self.timeout: float = timeout if timeout is not None else cfg.triage_timeout
        self.retries: int = retries if retries is not None else cfg.triage_retries
        self.backoff = backoff
        self.temperature = cfg.triage_temperature
        self.max_output_tokens = cfg.triage_max_output_tokens

        self._url = f"{self.base_url}/models/{self.model}:generateContent"

    def build_prompt(self, query: str, history: Sequence[ConversationTurn]) -> str:
        lines = [_INSTRUCTIONS, "", "JSON schema:", _SCHEMA, ""]
        if history:
            lines.append("Conversation so far:")
            for turn in history:
                lines.append(f"User: {turn.user_text}")
                lines.append(f"Assistant: {turn.assistant_text}")
            lines.append("")
        lines.append(f"User query: {query}")
        return "\n".join(lines)

    def complete(self, query: str, history: Sequence[ConversationTurn] = ()) -> str:
        """Return the collaborator's raw text answer for *query*."""
        payload = {
            "contents": [{"parts": [{"text": self.build_prompt(query, history)}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        start = time.perf_counter()
        try:
            text = self._call_api(payload)
        except TriageUnavailable:
            record_triage_call("error", time.perf_counter() - start)
            raise
        record_triage_call("ok", time.perf_counter() - start)
        return text

    def _call_api(self, payload: Dict[str, Any]) -> str:
        attempts = 1 + max(0, self.retries)
        last_exc: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                resp = requests.post(
                    self._url,
                    params={"key": self.api_key},
                    headers={"Content-Type": "application/json"},
                    json=payload,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_exc = exc
                logger.warning("Triage request error (attempt %d/%d): %s", attempt + 1, attempts, exc)
            else:
                if resp.status_code == 200:
                    try:
                        body = resp.json()
                    except ValueError as exc:
                        raise TriageUnavailable(
                            "Triage response body is not JSON",
                            context={"preview": resp.text[:200]},
                        ) from exc
                    return self._extract_text(body)
                if resp.status_code not in _RETRYABLE_STATUS:
                    raise TriageUnavailable(
                        f"HTTP {resp.status_code}: {resp.text[:500]}",
                        context={"status": resp.status_code},
                    )
                last_exc = TriageUnavailable(f"HTTP {resp.status_code}: {resp.text[:200]}")
                logger.warning("Triage HTTP %s (attempt %d/%d)", resp.status_code, attempt + 1, attempts)

            if attempt + 1 < attempts and self.backoff > 0:
                time.sleep(self.backoff * (attempt + 1))

        raise TriageUnavailable(f"Triage failed after {attempts} attempt(s): {last_exc}")

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TriageUnavailable("Unexpected triage response shape") from exc
        return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))
