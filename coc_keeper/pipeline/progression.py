"""Progression trigger monitor.

Decides, after each resolved action, whether the director should be asked to
push the story forward. Three conditions, any of which fires:

  1. every character with a recorded time-consumption entry has used up the
     scene's short-action cap
  2. at least 3 actions without the discovered-clue count growing
  3. the NPC fingerprint unchanged for at least 3 consecutive actions

Counters advance by the number of *new* actions seen since the previous
call (tracked via the monotonic `temporary_info.total_actions`), so calling
`should_trigger_progression()` twice after one action counts it once.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from coc_keeper.models import GameState
from coc_keeper.state import GameStateManager

logger = logging.getLogger(__name__)

STALL_THRESHOLD = 3


class ProgressionMonitor:
    def __init__(self, manager: GameStateManager, threshold: int = STALL_THRESHOLD) -> None:
        self._manager = manager
        self._threshold = threshold
        self.reset()

    @staticmethod
    def fingerprint(state: GameState) -> str:
        """Digest of mutable NPC state, independent of NPC list order."""
        entries = []
        for npc in state.npc_characters:
            entries.append(json.dumps(
                {
                    "id": npc.id,
                    "name": npc.name,
                    "hp": npc.status.hp,
                    "sanity": npc.status.sanity,
                    "conditions": sorted(npc.status.conditions),
                    "clues": [c.model_dump() for c in npc.clues if c.revealed],
                    "relationships": [r.model_dump() for r in npc.relationships],
                },
                sort_keys=True,
            ))
        return hashlib.sha256("|".join(sorted(entries)).encode()).hexdigest()

    def reset(self) -> None:
        """Re-baseline every counter against the current state."""
        state = self._manager.state
        self._last_clue_count = len(state.discovered_clues)
        self._last_fingerprint = self.fingerprint(state)
        self._actions_since_clue = 0
        self._actions_since_npc_change = 0
        self._last_seen_total = state.temporary_info.total_actions

    def note_clues(self) -> None:
        """Take the current clue count as the new baseline.

        Called once clues are recorded after a turn's actions, so the next
        clue-less action counts as the first stalled one.
        """
        clue_count = len(self._manager.state.discovered_clues)
        if clue_count != self._last_clue_count:
            self._last_clue_count = clue_count
            self._actions_since_clue = 0

    def _observe(self) -> None:
        state = self._manager.state
        total = state.temporary_info.total_actions
        new_actions = max(total - self._last_seen_total, 0)
        self._last_seen_total = total

        clue_count = len(state.discovered_clues)
        if clue_count != self._last_clue_count:
            self._last_clue_count = clue_count
            self._actions_since_clue = 0
        else:
            self._actions_since_clue += new_actions

        fp = self.fingerprint(state)
        if fp != self._last_fingerprint:
            self._last_fingerprint = fp
            self._actions_since_npc_change = 0
        else:
            self._actions_since_npc_change += new_actions

    def _all_reached_cap(self) -> bool:
        counters = self._manager.state.scenario_time_state.character_time_consumption
        if not counters:
            return False
        cap = self._manager.short_action_cap()
        return all(c.total_short_actions >= cap for c in counters.values())

    def should_trigger_progression(self) -> bool:
        self._observe()
        triggers = {
            "action_cap_reached": self._all_reached_cap(),
            "no_new_clues": self._actions_since_clue >= self._threshold,
            "npc_state_unchanged": self._actions_since_npc_change >= self._threshold,
        }
        fired = any(triggers.values())
        if fired:
            logger.info("progression triggered: %s", [k for k, v in triggers.items() if v])
        return fired

    def status(self) -> dict[str, Any]:
        return {
            "last_clue_count": self._last_clue_count,
            "actions_since_clue": self._actions_since_clue,
            "actions_since_npc_change": self._actions_since_npc_change,
            "fingerprint": self._last_fingerprint[:12],
        }
