"""Action resolution pipeline.

Resolves one actor's attempted action into state mutations and a logged
`ActionResult`. Stages run in order:

    PRE_ROLL → BUILD_CONTEXT → RESOLVE → APPLY_STATE → APPLY_SCENE
             → APPLY_SCENARIO → ADVANCE_CLOCK → LOG

RESOLVE can divert to ERROR, which still logs a failed result with zero
elapsed time; resolution never raises a collaborator error to the caller.

The dice basket is rolled before the collaborator is consulted so that the
resolution can quote concrete numbers in a single round trip.
"""

from __future__ import annotations

import enum
import logging
import random

from pydantic import ValidationError

from coc_keeper.catalog import ScenarioCatalog
from coc_keeper.config import KeeperConfig
from coc_keeper.dice import DiceRoll, format_basket, pre_roll_basket
from coc_keeper.llm import LLM, LLMError
from coc_keeper.models import (
    ActionResult,
    CharacterProfile,
    CharacterStatus,
    NPCProfile,
    NPCResponseIntent,
)
from coc_keeper.pipeline.extractors import MalformedResponse, extract_json_object
from coc_keeper.pipeline.progression import ProgressionMonitor
from coc_keeper.prompts import RESOLVER, render_prompt
from coc_keeper.retry import RetryPolicy, call_structured
from coc_keeper.state import GameStateManager
from coc_keeper.updates import (
    InventoryOperation,
    ResolverOutcome,
    SceneChange,
    ScenarioDelta,
    StatusDelta,
)

logger = logging.getLogger(__name__)


class ActionStage(enum.Enum):
    PRE_ROLL = "pre_roll"
    BUILD_CONTEXT = "build_context"
    RESOLVE = "resolve"
    APPLY_STATE = "apply_state"
    APPLY_SCENE = "apply_scene"
    APPLY_SCENARIO = "apply_scenario"
    ADVANCE_CLOCK = "advance_clock"
    LOG = "log"
    ERROR = "error"


def parse_resolver_outcome(text: str) -> ResolverOutcome:
    """Extract and validate a resolver payload. Raises MalformedResponse."""
    data = extract_json_object(text)
    try:
        return ResolverOutcome.model_validate(data)
    except ValidationError as e:
        raise MalformedResponse(f"resolver outcome rejected: {e.error_count()} error(s)") from e


def status_delta_summary(name: str, before: CharacterStatus, after: CharacterStatus) -> str:
    """Before/after line for the fields a player cares about, or "" if nothing moved."""
    parts = []
    for field in ("hp", "sanity", "luck", "mp"):
        old, new = getattr(before, field), getattr(after, field)
        if old != new:
            parts.append(f"{field.upper()} {old} -> {new}")
    gained = [c for c in after.conditions if c not in before.conditions]
    lost = [c for c in before.conditions if c not in after.conditions]
    if gained:
        parts.append(f"+{', '.join(gained)}")
    if lost:
        parts.append(f"-{', '.join(lost)}")
    return f"{name}: {'; '.join(parts)}" if parts else ""


class ActionResolver:
    def __init__(
        self,
        llm: LLM,
        manager: GameStateManager,
        catalog: ScenarioCatalog,
        config: KeeperConfig | None = None,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
        monitor: ProgressionMonitor | None = None,
    ) -> None:
        self._llm = llm
        self._manager = manager
        self._catalog = catalog
        self._config = config or manager.config
        self._policy = policy or RetryPolicy.from_config(self._config)
        self._rng = rng or random.Random()
        self._monitor = monitor
        self.last_stage: ActionStage | None = None

    # ------------------------------------------------------------------
    # Single actor
    # ------------------------------------------------------------------

    async def resolve_action(
        self,
        character: CharacterProfile,
        description: str,
        *,
        is_npc: bool = False,
        target: CharacterProfile | None = None,
        npc_response: NPCResponseIntent | None = None,
    ) -> ActionResult:
        manager = self._manager
        self._trace(ActionStage.PRE_ROLL, character)
        basket = pre_roll_basket(self._rng)

        self._trace(ActionStage.BUILD_CONTEXT, character)
        if target is None and npc_response is not None and npc_response.target_character:
            target = manager.find_character(npc_response.target_character)
        prompt = self._build_prompt(character, description, basket, is_npc, target, npc_response)

        self._trace(ActionStage.RESOLVE, character)
        try:
            outcome = await call_structured(
                self._llm, "resolver", prompt, parse_resolver_outcome, self._policy,
            )
        except (LLMError, MalformedResponse) as e:
            self._trace(ActionStage.ERROR, character)
            logger.error("could not resolve action for %s: %s", character.name, e)
            result = ActionResult(
                game_time=manager.game_time(),
                location=manager.current_location(),
                character=character.name,
                result=f"The attempt could not be resolved: {description}",
                time_consumption="instant",
                time_elapsed_minutes=0,
                is_npc=is_npc,
                failed=True,
            )
            self._log(character, target, result)
            return result

        self._trace(ActionStage.APPLY_STATE, character)
        for update in outcome.updates:
            if isinstance(update, StatusDelta):
                manager.apply_status_delta(update)
            elif isinstance(update, InventoryOperation):
                manager.apply_inventory(update)

        self._trace(ActionStage.APPLY_SCENE, character)
        changes = list(outcome.scenario_changes)
        for update in outcome.updates:
            if isinstance(update, SceneChange):
                note = self._apply_scene_change(update, character, is_npc, target)
                if note:
                    changes.append(note)

        self._trace(ActionStage.APPLY_SCENARIO, character)
        for update in outcome.updates:
            if isinstance(update, ScenarioDelta):
                changes.extend(manager.apply_scenario_delta(update))

        self._trace(ActionStage.ADVANCE_CLOCK, character)
        minutes = self._config.minutes_for(outcome.time_consumption)
        if not is_npc and manager.is_player(character):
            manager.advance_clock(minutes)
            manager.record_time_consumption(character.name, outcome.time_consumption)

        self._trace(ActionStage.LOG, character)
        result = ActionResult(
            game_time=manager.game_time(),
            location=manager.current_location(),
            character=character.name,
            result=outcome.result,
            dice_rolls=list(outcome.dice_used),
            time_consumption=outcome.time_consumption,
            time_elapsed_minutes=minutes,
            scenario_changes=changes,
            is_npc=is_npc,
        )
        self._log(character, target, result)
        return result

    def _trace(self, stage: ActionStage, character: CharacterProfile) -> None:
        self.last_stage = stage
        logger.debug("%s: %s", stage.value, character.name)

    def _build_prompt(
        self,
        character: CharacterProfile,
        description: str,
        basket: list[tuple[str, DiceRoll]],
        is_npc: bool,
        target: CharacterProfile | None,
        npc_response: NPCResponseIntent | None,
    ) -> str:
        state = self._manager.state
        scenario = state.current_scenario
        context = {
            "dice": format_basket(basket),
            "scenario": scenario.model_dump_json(indent=2) if scenario else "No active scene.",
            "scenes": [s.name for s in self._catalog.all()],
            # NPC reactions never see the player-facing narration.
            "narrative": None if is_npc else state.temporary_info.last_narrative,
            "rules": list(state.temporary_info.rules),
            "actor": character.model_dump_json(indent=2, exclude={"action_log"}),
            "target": target.model_dump_json(indent=2, exclude={"action_log"}) if target else None,
            "npc_response": npc_response.model_dump() if npc_response else None,
            "action": description,
        }
        return render_prompt(RESOLVER, context)

    def _apply_scene_change(
        self,
        change: SceneChange,
        character: CharacterProfile,
        is_npc: bool,
        target: CharacterProfile | None,
    ) -> str | None:
        manager = self._manager
        if not is_npc:
            # The director performs the swap; here it is only recorded.
            manager.request_scene_change(change.target_scene, change.reason)
            return f"Scene change requested: {change.target_scene}"

        snapshot = self._catalog.get_by_name(change.target_scene)
        if snapshot is None:
            logger.warning("%s asked to move to unknown scene %r", character.name, change.target_scene)
            return None
        if isinstance(character, NPCProfile):
            character.current_location = snapshot.location
        if target is not None and manager.is_player(target):
            reason = f"Moved by {character.name}"
            if change.reason:
                reason += f": {change.reason}"
            manager.request_scene_change(snapshot.name, reason)
        return f"{character.name} moved to {snapshot.name}"

    def _log(self, character: CharacterProfile, target: CharacterProfile | None, result: ActionResult) -> None:
        manager = self._manager
        manager.add_action_result(result)
        manager.log_action(character, result.result)
        if target is not None and target.id != character.id:
            manager.log_action(target, f"{character.name}: {result.result}")
        if self._monitor is not None and self._monitor.should_trigger_progression():
            manager.state.temporary_info.progression_pending = True

    # ------------------------------------------------------------------
    # Multiple NPC actors
    # ------------------------------------------------------------------

    async def resolve_npc_responses(self, intents: list[NPCResponseIntent]) -> list[ActionResult]:
        """Run each responding NPC in ascending execution order.

        Ties keep the order the intents were given in. Each NPC sees the
        state as left by the ones before it.
        """
        responding = [
            i for i in intents
            if i.will_respond and i.response_type not in (None, "none")
        ]
        results: list[ActionResult] = []
        for intent in sorted(responding, key=lambda i: i.execution_order):
            npc = self._manager.find_character(intent.npc_name)
            if npc is None or self._manager.is_player(npc):
                logger.warning("no NPC matches response intent for %r", intent.npc_name)
                continue
            description = intent.response_description or f"{npc.name} reacts ({intent.response_type})"
            results.append(
                await self.resolve_action(npc, description, is_npc=True, npc_response=intent)
            )
        return results
