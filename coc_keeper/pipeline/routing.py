"""Routing decision normalizer.

The classifier answers with an agent-selection payload that cannot be
trusted: it may be a JSON object, a bare array, an array buried in prose, or
nothing usable. `normalize_routing_decision` turns whatever was recovered
into a safe execution queue and never raises:

  - identifiers not in the allowlist are dropped
  - duplicates are dropped, first occurrence wins
  - when the input is an action, "memory" then "action" are prepended so
    context retrieval always runs before mechanical resolution
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from coc_keeper.models import ActionAnalysis
from coc_keeper.pipeline.extractors import (
    MalformedResponse,
    extract_json_array,
    extract_json_object,
)

logger = logging.getLogger(__name__)

PARSE_FAILED = "Failed to parse routing decision"
ARRAY_FALLBACK = "Parsed from array fallback"
ACTION_PREFIX = ("memory", "action")


class RoutingDecision(BaseModel):
    agents: list[str] = Field(default_factory=list)
    rationale: str | None = None
    intent: str | None = None
    is_action: bool = False
    action: ActionAnalysis | None = None

    def summary(self) -> str:
        lines = [f"Routing -> {', '.join(self.agents)}"]
        if self.intent:
            lines.append(f"Intent: {self.intent}")
        if self.rationale:
            lines.append(f"Why: {self.rationale}")
        if self.is_action:
            lines.append("Action detected: true")
        return "\n".join(lines)


def extract_routing_payload(text: str) -> dict[str, Any] | list[Any]:
    """Strict object parse first, then the bracketed-list fallback.

    Raises MalformedResponse when neither recovers anything, so the call can
    be retried.
    """
    try:
        return extract_json_object(text)
    except MalformedResponse:
        return extract_json_array(text)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _as_text(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _parse_action(value: Any) -> ActionAnalysis | None:
    if not isinstance(value, dict):
        return None
    data = dict(value)
    if "target" in data and "target_name" not in data:
        data["target_name"] = data.pop("target")
    try:
        return ActionAnalysis.model_validate(
            {k: v for k, v in data.items() if k in ActionAnalysis.model_fields}
        )
    except ValidationError as e:
        logger.warning("discarding malformed action analysis: %s", e)
        return None


def normalize_routing_decision(
    payload: dict[str, Any] | list[Any] | None,
    known_agents: Iterable[str],
) -> RoutingDecision:
    known = set(known_agents)

    if isinstance(payload, list):
        raw_agents: list[Any] = payload
        decision = RoutingDecision(rationale=ARRAY_FALLBACK)
    elif isinstance(payload, dict):
        agents = payload.get("agents")
        raw_agents = agents if isinstance(agents, list) else []
        is_action = _as_bool(payload.get("is_action", payload.get("isAction")))
        decision = RoutingDecision(
            rationale=_as_text(payload.get("rationale")),
            intent=_as_text(payload.get("intent")),
            is_action=is_action,
            action=_parse_action(payload.get("action")) if is_action else None,
        )
    else:
        return RoutingDecision(rationale=PARSE_FAILED)

    ordered = [*ACTION_PREFIX, *raw_agents] if decision.is_action else list(raw_agents)
    queue: list[str] = []
    for agent in ordered:
        if not isinstance(agent, str) or agent not in known:
            logger.warning("dropping unknown agent %r from routing decision", agent)
            continue
        if agent not in queue:
            queue.append(agent)

    decision.agents = queue
    return decision
