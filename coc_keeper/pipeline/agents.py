"""Turn agents: the units the coordinator's queue is made of.

Each agent reads the current game state and the results already produced
this turn, does its work, and returns one `AgentResult`. Agents never raise
collaborator failures: a failed call degrades to a result that says so.

    memory     rules and background relevant to the input
    action     resolve what the player (or the named actor) attempts
    character  decide which NPCs react, then resolve their actions in order
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError

from coc_keeper.llm import LLM, LLMError
from coc_keeper.models import AgentResult, NPCResponseIntent
from coc_keeper.pipeline.action import ActionResolver, status_delta_summary
from coc_keeper.pipeline.extractors import (
    MalformedResponse,
    extract_json_array,
    extract_json_object,
)
from coc_keeper.prompts import CHARACTER, MEMORY, render_prompt
from coc_keeper.retry import RetryPolicy, call_structured
from coc_keeper.state import GameStateManager

logger = logging.getLogger(__name__)


@dataclass
class TurnContext:
    utterance: str
    manager: GameStateManager
    results: list[AgentResult] = field(default_factory=list)


class Agent(Protocol):
    agent_id: str

    async def run(self, ctx: TurnContext) -> AgentResult: ...


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

class MemoryAgent:
    agent_id = "memory"

    def __init__(self, llm: LLM, policy: RetryPolicy) -> None:
        self._llm = llm
        self._policy = policy

    async def run(self, ctx: TurnContext) -> AgentResult:
        manager = ctx.manager
        analysis = manager.state.temporary_info.current_action_analysis
        prompt = render_prompt(MEMORY, {
            "location": manager.current_location(),
            "utterance": ctx.utterance,
            "analysis": f"{analysis.action} ({analysis.action_type})" if analysis and analysis.action else None,
        })
        try:
            data = await call_structured(self._llm, "memory", prompt, extract_json_object, self._policy)
        except (LLMError, MalformedResponse) as e:
            logger.error("memory lookup failed: %s", e)
            return AgentResult(
                agent_id=self.agent_id,
                content="No rules or background could be retrieved.",
                metadata={"failed": True},
            )

        raw_rules = data.get("rules")
        rules = [r for r in raw_rules if isinstance(r, str) and r.strip()] if isinstance(raw_rules, list) else []
        manager.set_rules(rules)

        lines = [f"Rule: {r}" for r in rules]
        background = data.get("context")
        if isinstance(background, str) and background.strip():
            lines.append(background.strip())
        return AgentResult(
            agent_id=self.agent_id,
            content="\n".join(lines) or "Nothing relevant on record.",
            metadata={"rules": rules},
        )


# ---------------------------------------------------------------------------
# Action
# ---------------------------------------------------------------------------

class ActionAgent:
    agent_id = "action"

    def __init__(self, resolver: ActionResolver) -> None:
        self._resolver = resolver

    async def run(self, ctx: TurnContext) -> AgentResult:
        manager = ctx.manager
        analysis = manager.state.temporary_info.current_action_analysis

        actor = None
        target = None
        description = ctx.utterance
        if analysis is not None:
            actor = manager.find_character(analysis.character)
            target = manager.find_character(analysis.target_name)
            description = analysis.action or ctx.utterance
        if actor is None:
            actor = manager.state.player_character

        watched = [c for c in (actor, target) if c is not None]
        before = {c.id: c.status.model_copy(deep=True) for c in watched}

        result = await self._resolver.resolve_action(
            actor, description, is_npc=not manager.is_player(actor), target=target,
        )

        lines = [result.result]
        for c in watched:
            summary = status_delta_summary(c.name, before[c.id], c.status)
            if summary:
                lines.append(summary)
        lines.extend(result.scenario_changes)
        return AgentResult(
            agent_id=self.agent_id,
            content="\n".join(lines),
            metadata={"action_result": result.model_dump(mode="json")},
        )


# ---------------------------------------------------------------------------
# Character (NPC reactions)
# ---------------------------------------------------------------------------

def parse_npc_intents(text: str) -> list[NPCResponseIntent]:
    """Validate each intent on its own; drop the bad ones, fail only if all are bad."""
    items = extract_json_array(text, member="responses")
    intents: list[NPCResponseIntent] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            intents.append(NPCResponseIntent.model_validate(item))
        except ValidationError as e:
            logger.warning("dropping malformed NPC intent %r: %s", item.get("npc_name"), e.error_count())
    if items and not intents:
        raise MalformedResponse("no valid NPC response intents")
    return intents


class CharacterAgent:
    agent_id = "character"

    def __init__(self, llm: LLM, resolver: ActionResolver, policy: RetryPolicy) -> None:
        self._llm = llm
        self._resolver = resolver
        self._policy = policy

    async def run(self, ctx: TurnContext) -> AgentResult:
        manager = ctx.manager
        npcs = manager.npcs_in_scene()
        if not npcs:
            manager.set_npc_response_analyses([])
            return AgentResult(agent_id=self.agent_id, content="No NPCs are present.")

        prompt = render_prompt(CHARACTER, {
            "location": manager.current_location(),
            "utterance": ctx.utterance,
            "results": [r.content for r in ctx.results],
            "npcs": [
                {"name": n.name, "personality": n.personality, "goals": ", ".join(n.goals)}
                for n in npcs
            ],
        })
        try:
            intents = await call_structured(self._llm, "character", prompt, parse_npc_intents, self._policy)
        except (LLMError, MalformedResponse) as e:
            logger.error("NPC response analysis failed: %s", e)
            intents = []

        manager.set_npc_response_analyses(intents)
        results = await self._resolver.resolve_npc_responses(intents)

        metadata: dict[str, Any] = {
            "intents": [i.model_dump() for i in intents],
            "action_results": [r.model_dump(mode="json") for r in results],
        }
        if not results:
            return AgentResult(agent_id=self.agent_id, content="No NPC reacts.", metadata=metadata)
        return AgentResult(
            agent_id=self.agent_id,
            content="\n".join(f"{r.character}: {r.result}" for r in results),
            metadata=metadata,
        )
