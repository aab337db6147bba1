"""Director: owns scenario transitions.

Two entry points:

  handle_scene_change_request  consumes a pending request raised during
                               action resolution and swaps the scenario if
                               the target names a known scene
  decide / apply_decision      asks the collaborator whether the story should
                               move to a connected, unvisited scene, or
                               whether the current scene gets more room

Only a transition that actually installs a snapshot re-baselines the scene
time state; a rejected request leaves it untouched.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from coc_keeper.catalog import ScenarioCatalog
from coc_keeper.config import KeeperConfig
from coc_keeper.llm import LLM, LLMError
from coc_keeper.models import DirectorDecision, ScenarioSnapshot
from coc_keeper.pipeline.extractors import MalformedResponse, extract_json_object
from coc_keeper.prompts import DIRECTOR, render_prompt
from coc_keeper.retry import RetryPolicy, call_structured
from coc_keeper.state import GameStateManager

logger = logging.getLogger(__name__)

_DECISION_FIELDS = (
    "should_progress",
    "target_snapshot_id",
    "estimated_short_actions",
    "increase_short_action_cap_by",
    "reasoning",
)


def _positive_or_none(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) and value > 0 else None


def parse_director_decision(text: str) -> DirectorDecision:
    data = extract_json_object(text)
    fields = {k: data[k] for k in _DECISION_FIELDS if k in data}
    for key in ("estimated_short_actions", "increase_short_action_cap_by"):
        if key in fields:
            fields[key] = _positive_or_none(fields[key])
    try:
        return DirectorDecision.model_validate(fields)
    except ValidationError as e:
        raise MalformedResponse(f"director decision rejected: {e.error_count()} error(s)") from e


class Director:
    def __init__(
        self,
        llm: LLM,
        catalog: ScenarioCatalog,
        config: KeeperConfig | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._llm = llm
        self._catalog = catalog
        self._config = config or KeeperConfig()
        self._policy = policy or RetryPolicy.from_config(self._config)

    def handle_scene_change_request(self, manager: GameStateManager) -> bool:
        """Apply and clear the pending scene-change request. True if the scene changed."""
        request = manager.state.temporary_info.scene_change_request
        if request is None:
            return False
        manager.clear_scene_change_request()

        snapshot = self._catalog.get_by_name(request.target_scene_name)
        if snapshot is None:
            logger.warning("scene change to unknown scene %r ignored", request.target_scene_name)
            return False
        current = manager.state.current_scenario
        if current is not None and current.id == snapshot.id:
            logger.info("scene change to current scene %r ignored", snapshot.name)
            return False

        logger.info("scene change -> %s (%s)", snapshot.name, request.reason)
        manager.update_scenario(snapshot)
        return True

    def candidates(self, manager: GameStateManager) -> list[ScenarioSnapshot]:
        """Connected scenes that are neither current nor recently visited."""
        state = manager.state
        current = state.current_scenario
        if current is None:
            return []
        seen = {current.id, *(v.id for v in state.visited_scenarios)}
        return [s for s in self._catalog.connected(current) if s.id not in seen]

    async def decide(self, manager: GameStateManager) -> DirectorDecision:
        state = manager.state
        candidates = self.candidates(manager)
        used = max(
            (c.total_short_actions for c in state.scenario_time_state.character_time_consumption.values()),
            default=0,
        )
        context = {
            "scenario": state.current_scenario.model_dump_json(indent=2) if state.current_scenario else "None",
            "time": manager.game_time(),
            "short_actions": str(used),
            "cap": str(manager.short_action_cap()),
            "results": [r.model_dump() for r in state.temporary_info.action_results],
            "candidates": [{"id": s.id, "name": s.name, "location": s.location} for s in candidates],
        }
        prompt = render_prompt(DIRECTOR, context)
        try:
            decision = await call_structured(
                self._llm, "director", prompt, parse_director_decision, self._policy,
            )
        except (LLMError, MalformedResponse) as e:
            logger.error("director unavailable, keeping the current scene: %s", e)
            decision = DirectorDecision(reasoning=f"Director unavailable: {e}")

        manager.set_director_decision(decision)
        logger.debug("director decision: %s", json.dumps(decision.model_dump(mode="json")))
        return decision

    def apply_decision(self, manager: GameStateManager, decision: DirectorDecision) -> bool:
        """Act on a decision. True if a new scenario was installed."""
        if decision.should_progress and decision.target_snapshot_id:
            allowed = {s.id for s in self.candidates(manager)}
            snapshot = self._catalog.get_by_id(decision.target_snapshot_id)
            if snapshot is None or snapshot.id not in allowed:
                logger.warning(
                    "director target %r is not a connected, unvisited scene", decision.target_snapshot_id,
                )
                return False
            if decision.estimated_short_actions:
                snapshot.estimated_short_actions = decision.estimated_short_actions
            manager.update_scenario(snapshot)
            return True

        if not decision.should_progress and decision.increase_short_action_cap_by:
            manager.extend_short_action_cap(decision.increase_short_action_cap_by)
        return False
