"""JSON file storage: the persistence collaborator.

The turn engine hands a GameState over wholesale after each turn; it never
holds file handles itself. Everything lives in flat JSON files under a
configurable base directory.

Directory layout:

    {base}/
      sessions/
        {session_id}.json         ← GameState
        {session_id}.turns.json   ← append-only list of TurnRecord
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from coc_keeper.models import GameState, TurnRecord

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._sessions = base_path / "sessions"
        self._sessions.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _state_file(self, session_id: str) -> Path:
        if not _SESSION_ID_RE.match(session_id):
            raise ValueError(f"invalid session id: {session_id!r}")
        return self._sessions / f"{session_id}.json"

    def _turns_file(self, session_id: str) -> Path:
        return self._state_file(session_id).with_suffix(".turns.json")

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Game state
    # ------------------------------------------------------------------

    def save_game_state(self, state: GameState) -> None:
        self._state_file(state.session_id).write_text(state.model_dump_json(indent=2))
        logger.debug("saved session %s", state.session_id)

    def load_game_state(self, session_id: str) -> GameState | None:
        path = self._state_file(session_id)
        if not path.exists():
            return None
        return GameState.model_validate_json(path.read_text())

    def list_sessions(self) -> list[str]:
        return sorted(
            p.name.removesuffix(".json")
            for p in self._sessions.glob("*.json")
            if not p.name.endswith(".turns.json")
        )

    def delete_session(self, session_id: str) -> bool:
        """Remove a session's state and turn log. False if there was no state."""
        path = self._state_file(session_id)
        if not path.exists():
            return False
        path.unlink()
        self._turns_file(session_id).unlink(missing_ok=True)
        logger.info("deleted session %s", session_id)
        return True

    # ------------------------------------------------------------------
    # Turn log (append-only)
    # ------------------------------------------------------------------

    def get_turns(self, session_id: str) -> list[TurnRecord]:
        path = self._turns_file(session_id)
        if not path.exists():
            return []
        return [TurnRecord.model_validate(t) for t in self._read_json(path)]

    def append_turn(self, session_id: str, record: TurnRecord) -> None:
        existing = self.get_turns(session_id)
        existing.append(record)
        self._write_json(
            self._turns_file(session_id),
            [t.model_dump(mode="json") for t in existing],
        )

    def next_turn_id(self, session_id: str) -> int:
        return max((t.turn_id for t in self.get_turns(session_id)), default=0) + 1
