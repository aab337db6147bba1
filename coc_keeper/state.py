"""Game State Store: merge operations over the authoritative world model.

`GameStateManager` wraps one `GameState` and mutates it in place. All writes
performed by the turn pipeline go through here so the invariants hold in one
place:

  visited_scenarios        newest first, unique by id, at most 3 entries
  action_results           at most 10 entries, oldest evicted first
  character numerics       never negative (corrected by clamping, not raised)
  inventory                quantity-merge by item name, full removal at zero
  global clock             only advanced by the caller for player actions

Status, attribute and skill changes are differential: the delta is added to
the current value. Inventory supports add / remove / replace.
"""

from __future__ import annotations

import logging
from typing import Any

from coc_keeper.config import KeeperConfig
from coc_keeper.models import (
    ActionAnalysis,
    ActionLogEntry,
    ActionResult,
    CharacterProfile,
    CharacterTimeConsumption,
    DirectorDecision,
    GameState,
    InventoryItem,
    NPCProfile,
    NPCResponseIntent,
    SceneChangeRequest,
    ScenarioSnapshot,
    ScenarioTimeState,
    TimePoint,
    VisitedScenario,
)
from coc_keeper.updates import InventoryOperation, ScenarioDelta, StatusDelta

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def _clamp(value: int, upper: int | None = None) -> int:
    if value < 0:
        logger.debug("clamped negative value %d to 0", value)
        value = 0
    if upper is not None and value > upper:
        value = upper
    return value


def parse_clock(time_of_day: str) -> int:
    """"HH:MM" → minutes since midnight. Raises ValueError on anything else."""
    hours, _, minutes = time_of_day.partition(":")
    total = int(hours) * 60 + int(minutes)
    if not 0 <= total < MINUTES_PER_DAY:
        raise ValueError(f"time of day out of range: {time_of_day!r}")
    return total


def format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _same_name(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


def _find_item(inventory: list[InventoryItem], name: str) -> InventoryItem | None:
    for item in inventory:
        if _same_name(item.name, name):
            return item
    return None


class GameStateManager:
    def __init__(self, state: GameState, config: KeeperConfig | None = None) -> None:
        self._state = state
        self._config = config or KeeperConfig()

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def config(self) -> KeeperConfig:
        return self._config

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def characters(self) -> list[CharacterProfile]:
        return [self._state.player_character, *self._state.npc_characters]

    def find_character(self, ref: str | None) -> CharacterProfile | None:
        """Resolve a character by id, then exact name, then fuzzy name match."""
        if not ref or not ref.strip():
            return None
        wanted = ref.strip().casefold()
        everyone = self.characters()

        for c in everyone:
            if c.id.casefold() == wanted:
                return c
        for c in everyone:
            if c.name.casefold() == wanted:
                return c
        for c in everyone:
            name = c.name.casefold()
            if wanted in name or name in wanted:
                return c
        for c in everyone:
            tokens = c.name.casefold().split()
            if tokens and wanted.split()[0] in tokens:
                return c
        return None

    def is_player(self, character: CharacterProfile) -> bool:
        return character.id == self._state.player_character.id

    def current_location(self) -> str:
        scenario = self._state.current_scenario
        return scenario.location if scenario else "Unknown location"

    def game_time(self) -> str:
        return f"Day {self._state.game_day} {self._state.time_of_day}"

    def npcs_in_scene(self) -> list[NPCProfile]:
        """NPCs at the current location, or all NPCs when no scenario is active."""
        scenario = self._state.current_scenario
        if scenario is None:
            return list(self._state.npc_characters)
        listed = {c.name.casefold() for c in scenario.characters}
        return [
            npc for npc in self._state.npc_characters
            if (npc.current_location and _same_name(npc.current_location, scenario.location))
            or npc.name.casefold() in listed
        ]

    def short_action_cap(self) -> int:
        scenario = self._state.current_scenario
        if scenario and scenario.estimated_short_actions:
            return scenario.estimated_short_actions
        return self._config.default_short_action_cap

    # ------------------------------------------------------------------
    # Character updates (differential)
    # ------------------------------------------------------------------

    def apply_status_delta(self, delta: StatusDelta) -> CharacterProfile | None:
        character = self.find_character(delta.character)
        if character is None:
            logger.warning("status update for unknown character %r ignored", delta.character)
            return None

        status = character.status
        changes = delta.status
        status.max_hp = _clamp(status.max_hp + changes.max_hp)
        status.max_sanity = _clamp(status.max_sanity + changes.max_sanity)
        # only a pool the delta touches is pulled back under its maximum
        hp_touched = changes.hp or changes.max_hp
        sanity_touched = changes.sanity or changes.max_sanity
        status.hp = _clamp(status.hp + changes.hp, upper=status.max_hp if hp_touched else None)
        status.sanity = _clamp(
            status.sanity + changes.sanity, upper=status.max_sanity if sanity_touched else None,
        )
        status.luck = _clamp(status.luck + changes.luck)
        status.mp = _clamp(status.mp + changes.mp)

        for condition in delta.add_conditions:
            if not any(_same_name(condition, c) for c in status.conditions):
                status.conditions.append(condition)
        if delta.remove_conditions:
            status.conditions = [
                c for c in status.conditions
                if not any(_same_name(c, r) for r in delta.remove_conditions)
            ]

        for key, change in delta.attributes.items():
            character.attributes[key] = _clamp(character.attributes.get(key, 0) + change)
        for key, change in delta.skills.items():
            character.skills[key] = _clamp(character.skills.get(key, 0) + change)

        return character

    def apply_inventory(self, operation: InventoryOperation) -> CharacterProfile | None:
        character = self.find_character(operation.character)
        if character is None:
            logger.warning("inventory update for unknown character %r ignored", operation.character)
            return None

        if operation.op == "replace":
            character.inventory = [item.model_copy(deep=True) for item in operation.items]
            return character

        for item in operation.items:
            existing = _find_item(character.inventory, item.name)
            if operation.op == "add":
                if existing is None:
                    character.inventory.append(
                        InventoryItem(
                            name=item.name,
                            quantity=item.count,
                            properties=dict(item.properties),
                        )
                    )
                else:
                    existing.quantity = existing.count + item.count
                    existing.properties.update(item.properties)
            else:
                if existing is None:
                    logger.warning("cannot remove %r from %s: not carried", item.name, character.name)
                    continue
                remaining = existing.count - item.count
                if remaining > 0:
                    existing.quantity = remaining
                else:
                    character.inventory.remove(existing)

        return character

    def log_action(self, character: CharacterProfile, summary: str) -> None:
        character.action_log.append(
            ActionLogEntry(time=self.game_time(), location=self.current_location(), summary=summary)
        )

    # ------------------------------------------------------------------
    # Scenario updates
    # ------------------------------------------------------------------

    def apply_scenario_delta(self, delta: ScenarioDelta) -> list[str]:
        """Merge a delta into the current scenario; returns change descriptions."""
        scenario = self._state.current_scenario
        if scenario is None:
            logger.warning("scenario update with no active scenario ignored")
            return []

        changes: list[str] = []
        for condition in delta.conditions:
            for i, existing in enumerate(scenario.conditions):
                if existing.type == condition.type:
                    scenario.conditions[i] = condition
                    changes.append(f"Condition changed ({condition.type}): {condition.description}")
                    break
            else:
                scenario.conditions.append(condition)
                changes.append(f"New condition ({condition.type}): {condition.description}")

        for event in delta.events:
            scenario.events.append(event)
            changes.append(f"Event: {event}")

        for exit_ in delta.exits:
            for i, existing in enumerate(scenario.exits):
                if _same_name(existing.direction, exit_.direction):
                    scenario.exits[i] = exit_
                    break
            else:
                scenario.exits.append(exit_)
            changes.append(f"Exit {exit_.direction} -> {exit_.destination}")

        for change in delta.permanent_changes:
            if change not in scenario.permanent_changes:
                scenario.permanent_changes.append(change)
            changes.append(f"Permanent change: {change}")

        if delta.clues:
            logger.debug("ignored %d clue field(s) in scenario update", len(delta.clues))

        return changes

    def update_scenario(self, incoming: ScenarioSnapshot) -> None:
        """Install a snapshot: location change or in-place time advance.

        The outgoing snapshot's projection goes to the front of the visited
        history (unless already present), then per-character counters and the
        scene start time are re-baselined.
        """
        state = self._state
        outgoing = state.current_scenario
        if outgoing is not None:
            projection = VisitedScenario(
                id=outgoing.id,
                scenario_id=outgoing.scenario_id,
                name=outgoing.name,
                location=outgoing.location,
                time_point=outgoing.time_point or TimePoint(
                    game_day=state.game_day, time_of_day=state.time_of_day
                ),
            )
            if all(v.id != projection.id for v in state.visited_scenarios):
                state.visited_scenarios.insert(0, projection)
            del state.visited_scenarios[self._config.visited_scenario_limit:]

        state.current_scenario = incoming
        if incoming.time_point is not None:
            state.game_day = incoming.time_point.game_day
            state.time_of_day = incoming.time_point.time_of_day
        state.scenario_time_state = ScenarioTimeState(
            scene_start_time=TimePoint(game_day=state.game_day, time_of_day=state.time_of_day),
        )
        state.temporary_info.progression_pending = False
        logger.info(
            "scenario %s -> %s (%s)",
            outgoing.name if outgoing else None, incoming.name, self.game_time(),
        )

    def extend_short_action_cap(self, increase_by: int) -> None:
        scenario = self._state.current_scenario
        if scenario is None:
            logger.warning("no current scenario to extend short action cap")
            return
        current = self.short_action_cap()
        scenario.estimated_short_actions = current + increase_by
        logger.info("short action cap %d -> %d", current, scenario.estimated_short_actions)

    def request_scene_change(self, target_scene_name: str, reason: str) -> None:
        self._state.temporary_info.scene_change_request = SceneChangeRequest(
            target_scene_name=target_scene_name, reason=reason,
        )

    def clear_scene_change_request(self) -> None:
        self._state.temporary_info.scene_change_request = None

    # ------------------------------------------------------------------
    # Time and history
    # ------------------------------------------------------------------

    def add_action_result(self, result: ActionResult) -> None:
        results = self._state.temporary_info.action_results
        results.append(result)
        overflow = len(results) - self._config.action_result_limit
        if overflow > 0:
            del results[:overflow]
        self._state.temporary_info.total_actions += 1

    def record_time_consumption(self, character_name: str, consumption: str) -> None:
        if consumption == "instant":
            return
        counters = self._state.scenario_time_state.character_time_consumption
        entry = counters.setdefault(character_name, CharacterTimeConsumption())
        if consumption == "short":
            entry.total_short_actions += 1
        elif consumption == "scene":
            entry.total_scene_actions += 1

    def advance_clock(self, minutes: int) -> None:
        if minutes <= 0:
            return
        try:
            now = parse_clock(self._state.time_of_day)
        except ValueError:
            logger.warning("unparseable time of day %r, restarting at 00:00", self._state.time_of_day)
            now = 0
        days, remainder = divmod(now + minutes, MINUTES_PER_DAY)
        self._state.game_day += days
        self._state.time_of_day = format_clock(remainder)

    def add_discovered_clue(self, clue: str) -> bool:
        """Record a clue as discovered. Matches scenario clues by id or text."""
        text = clue
        scenario = self._state.current_scenario
        if scenario is not None:
            for c in scenario.clues:
                if c.id == clue or _same_name(c.clue_text, clue):
                    c.discovered = True
                    text = c.clue_text
                    break
        if text in self._state.discovered_clues:
            return False
        self._state.discovered_clues.append(text)
        return True

    # ------------------------------------------------------------------
    # Per-turn scratch data
    # ------------------------------------------------------------------

    def set_action_analysis(self, analysis: ActionAnalysis | None) -> None:
        self._state.temporary_info.current_action_analysis = analysis

    def set_rules(self, rules: list[str]) -> None:
        self._state.temporary_info.rules = list(rules)

    def set_director_decision(self, decision: DirectorDecision | None) -> None:
        self._state.temporary_info.director_decision = decision

    def set_npc_response_analyses(self, intents: list[NPCResponseIntent]) -> None:
        self._state.temporary_info.npc_response_analyses = list(intents)

    def summary(self) -> dict[str, Any]:
        """Compact view of the state for routing and synthesis prompts."""
        state = self._state
        player = state.player_character
        return {
            "location": self.current_location(),
            "scenario": state.current_scenario.name if state.current_scenario else None,
            "phase": state.phase,
            "time": self.game_time(),
            "tension": state.tension,
            "player": {
                "name": player.name,
                "hp": player.status.hp,
                "sanity": player.status.sanity,
                "conditions": list(player.status.conditions),
            },
            "npcs_present": [npc.name for npc in self.npcs_in_scene()],
            "discovered_clues": len(state.discovered_clues),
        }
