"""HTTP surface: a thin FastAPI wrapper around the turn coordinator.

    POST /api/sessions                 create a session (optionally placing it in a scene)
    GET  /api/sessions/{id}            current game state
    POST /api/sessions/{id}/turns      run one turn: {"text": "..."}
    GET  /api/sessions/{id}/turns      turn log
    DELETE /api/sessions/{id}          delete a session and drop its live state

Live GameState objects are kept in memory per session so the progression
monitor's counters survive between turns; storage is written after every
turn.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from coc_keeper.catalog import InMemoryScenarioCatalog, ScenarioCatalog
from coc_keeper.config import KeeperConfig, load_config
from coc_keeper.llm import LLM, HttpLLM
from coc_keeper.models import (
    AgentResult,
    CharacterProfile,
    GameState,
    NPCProfile,
    TurnRecord,
    new_game_state,
)
from coc_keeper.pipeline.orchestrator import TurnCoordinator
from coc_keeper.state import GameStateManager
from coc_keeper.storage import Storage

logger = logging.getLogger(__name__)


class CreateSession(BaseModel):
    session_id: str | None = Field(default=None, pattern=r"^[A-Za-z0-9_-]+$")
    scenario_id: str | None = None
    player: CharacterProfile | None = None
    npcs: list[NPCProfile] = Field(default_factory=list)


class TurnBody(BaseModel):
    text: str = Field(min_length=1)


class TurnResponse(BaseModel):
    turn_id: int
    narrative: str
    agent_results: list[AgentResult]
    game_state: GameState


def create_app(
    config: KeeperConfig | None = None,
    llm: LLM | None = None,
    catalog: ScenarioCatalog | None = None,
) -> FastAPI:
    config = config or load_config()
    if catalog is None:
        if config.scenario_file is not None:
            catalog = InMemoryScenarioCatalog.from_json(config.scenario_file)
        else:
            catalog = InMemoryScenarioCatalog()
    storage = Storage(config.data_dir)
    coordinator = TurnCoordinator(llm or HttpLLM.from_config(config), catalog, config)
    live: dict[str, GameState] = {}

    def _get_state(session_id: str) -> GameState:
        state = live.get(session_id)
        if state is None:
            try:
                state = storage.load_game_state(session_id)
            except ValueError:
                state = None
            if state is None:
                raise HTTPException(404, "Session not found")
            live[session_id] = state
        return state

    app = FastAPI(title="CoC Keeper")

    @app.post("/api/sessions")
    async def create_session(body: CreateSession):
        """Create a session with default state, optionally installing a starting scene."""
        state = new_game_state(body.session_id or uuid.uuid4().hex)
        if body.player is not None:
            state.player_character = body.player
        state.npc_characters = list(body.npcs)
        if body.scenario_id:
            snapshot = catalog.get_by_id(body.scenario_id)
            if snapshot is None:
                raise HTTPException(404, "Scenario not found")
            GameStateManager(state, config).update_scenario(snapshot)
        live[state.session_id] = state
        storage.save_game_state(state)
        logger.info("created session %s", state.session_id)
        return state

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        """Get the current game state for a session."""
        return _get_state(session_id)

    @app.post("/api/sessions/{session_id}/turns", response_model=TurnResponse)
    async def run_turn(session_id: str, body: TurnBody):
        """Run one player turn and persist the result."""
        state = _get_state(session_id)
        outcome = await coordinator.process_turn(body.text, state)
        turn_id = storage.next_turn_id(session_id)
        storage.save_game_state(outcome.game_state)
        storage.append_turn(session_id, TurnRecord(
            turn_id=turn_id,
            utterance=body.text,
            narrative=outcome.narrative,
            agent_results=outcome.agent_results,
        ))
        return TurnResponse(
            turn_id=turn_id,
            narrative=outcome.narrative,
            agent_results=outcome.agent_results,
            game_state=outcome.game_state,
        )

    @app.get("/api/sessions/{session_id}/turns")
    async def get_turns(session_id: str):
        """Get the turn log for a session."""
        _get_state(session_id)
        return storage.get_turns(session_id)

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str):
        """Delete a session from storage and release its in-memory state."""
        live.pop(session_id, None)
        coordinator.drop_session(session_id)
        try:
            deleted = storage.delete_session(session_id)
        except ValueError:
            deleted = False
        if not deleted:
            raise HTTPException(404, "Session not found")
        return {"ok": True}

    return app
