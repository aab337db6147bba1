"""Turn coordinator: runs one player turn end-to-end.

Turn flow:
  1. ROUTE           ask the classifier which agents to run, normalize the
                     answer into a queue (empty on failure)
  2. EXECUTE_AGENT   pop one agent id at a time and run it against the
                     current state; later agents see earlier agents' effects
  3. CHECK_COMPLETE  apply a pending scene-change request, or consult the
                     director if the progression monitor fired
  4. SYNTHESIZE      hand the accumulated results and state to the keeper
                     for narration, then clear the results for the next turn

An empty queue goes straight to CHECK_COMPLETE; synthesis always runs.
Exactly one turn may be in flight per GameState. Agents run sequentially.
"""

from __future__ import annotations

import enum
import json
import logging
import random
import re
from collections import deque
from dataclasses import dataclass

from coc_keeper.catalog import ScenarioCatalog
from coc_keeper.config import KeeperConfig
from coc_keeper.llm import LLM, LLMError
from coc_keeper.models import AgentResult, GameState
from coc_keeper.pipeline.action import ActionResolver
from coc_keeper.pipeline.agents import (
    ActionAgent,
    Agent,
    CharacterAgent,
    MemoryAgent,
    TurnContext,
)
from coc_keeper.pipeline.director import Director
from coc_keeper.pipeline.extractors import MalformedResponse, extract_json_object
from coc_keeper.pipeline.progression import ProgressionMonitor
from coc_keeper.pipeline.routing import (
    RoutingDecision,
    extract_routing_payload,
    normalize_routing_decision,
)
from coc_keeper.prompts import CLASSIFIER, SYNTHESIZER, render_prompt
from coc_keeper.retry import RetryPolicy, call_structured
from coc_keeper.state import GameStateManager

logger = logging.getLogger(__name__)


class TurnPhase(enum.Enum):
    ROUTE = "route"
    EXECUTE_AGENT = "execute_agent"
    CHECK_COMPLETE = "check_complete"
    SYNTHESIZE = "synthesize"
    DONE = "done"


@dataclass
class TurnOutcome:
    agent_results: list[AgentResult]
    game_state: GameState
    narrative: str
    routing: RoutingDecision
    scene_changed: bool = False


@dataclass
class Session:
    """Per-GameState collaborators, rebuilt if a different state object arrives."""

    manager: GameStateManager
    monitor: ProgressionMonitor
    resolver: ActionResolver
    agents: dict[str, Agent]


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

_CLUE_LINE_RE = re.compile(r'\{\s*"clue_revelations"')


def split_clue_revelations(text: str) -> tuple[str, list[str]]:
    """Separate the trailing clue-revelation JSON line from the narration."""
    matches = list(_CLUE_LINE_RE.finditer(text))
    if not matches:
        return text.strip(), []
    start = matches[-1].start()
    try:
        data = extract_json_object(text[start:])
    except MalformedResponse:
        return text.strip(), []
    clues = data.get("clue_revelations")
    if not isinstance(clues, list):
        clues = []
    return text[:start].strip(), [c for c in clues if isinstance(c, str) and c.strip()]


def fallback_narrative(manager: GameStateManager, results: list[AgentResult]) -> str:
    lines = [r.content for r in results if r.agent_id != "memory" and r.content]
    if not lines:
        return f"You take stock of your surroundings. {manager.current_location()}, {manager.game_time()}."
    return "\n\n".join(lines)


class Synthesizer:
    def __init__(self, llm: LLM, policy: RetryPolicy) -> None:
        self._llm = llm
        self._policy = policy

    async def narrate(self, utterance: str, results: list[AgentResult], manager: GameStateManager) -> str:
        prompt = render_prompt(SYNTHESIZER, {
            "state": json.dumps(manager.summary(), indent=2),
            "utterance": utterance,
            "results": [{"agent_id": r.agent_id, "content": r.content} for r in results],
        })
        try:
            raw = await self._policy.call(self._llm, "synthesizer", prompt)
        except LLMError as e:
            logger.error("synthesis failed, using fallback narrative: %s", e)
            return fallback_narrative(manager, results)

        narrative, clues = split_clue_revelations(raw)
        for clue in clues:
            if manager.add_discovered_clue(clue):
                logger.info("clue discovered: %s", clue)
        return narrative or fallback_narrative(manager, results)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class TurnCoordinator:
    def __init__(
        self,
        llm: LLM,
        catalog: ScenarioCatalog,
        config: KeeperConfig | None = None,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._llm = llm
        self._catalog = catalog
        self._config = config or KeeperConfig()
        self._policy = policy or RetryPolicy.from_config(self._config)
        self._rng = rng
        self._director = Director(llm, catalog, self._config, self._policy)
        self._synthesizer = Synthesizer(llm, self._policy)
        self._sessions: dict[str, Session] = {}

    def session_for(self, game_state: GameState) -> Session:
        session = self._sessions.get(game_state.session_id)
        if session is not None and session.manager.state is game_state:
            return session

        manager = GameStateManager(game_state, self._config)
        monitor = ProgressionMonitor(manager)
        resolver = ActionResolver(
            self._llm, manager, self._catalog, self._config, self._policy, self._rng, monitor,
        )
        agents: dict[str, Agent] = {
            "memory": MemoryAgent(self._llm, self._policy),
            "action": ActionAgent(resolver),
            "character": CharacterAgent(self._llm, resolver, self._policy),
        }
        session = Session(manager=manager, monitor=monitor, resolver=resolver, agents=agents)
        self._sessions[game_state.session_id] = session
        return session

    def drop_session(self, session_id: str) -> bool:
        """Forget the collaborators held for a session. False if none were held."""
        return self._sessions.pop(session_id, None) is not None

    async def process_turn(self, utterance: str, game_state: GameState) -> TurnOutcome:
        session = self.session_for(game_state)
        manager = session.manager
        ctx = TurnContext(utterance=utterance, manager=manager)
        queue: deque[str] = deque()
        routing = RoutingDecision()
        narrative = ""
        scene_changed = False

        logger.info("turn start session=%s input=%r", game_state.session_id, utterance)
        phase = TurnPhase.ROUTE
        while phase is not TurnPhase.DONE:
            logger.debug("phase %s (queue=%s)", phase.value, list(queue))

            if phase is TurnPhase.ROUTE:
                routing = await self._route(utterance, manager)
                manager.set_action_analysis(routing.action)
                queue.extend(routing.agents)
                phase = TurnPhase.EXECUTE_AGENT if queue else TurnPhase.CHECK_COMPLETE

            elif phase is TurnPhase.EXECUTE_AGENT:
                agent_id = queue.popleft()
                agent = session.agents.get(agent_id)
                if agent is None:
                    logger.warning("no agent registered for %r, skipped", agent_id)
                else:
                    ctx.results.append(await agent.run(ctx))
                phase = TurnPhase.EXECUTE_AGENT if queue else TurnPhase.CHECK_COMPLETE

            elif phase is TurnPhase.CHECK_COMPLETE:
                scene_changed = await self._check_progression(session)
                phase = TurnPhase.SYNTHESIZE

            elif phase is TurnPhase.SYNTHESIZE:
                narrative = await self._synthesizer.narrate(utterance, ctx.results, manager)
                session.monitor.note_clues()
                game_state.temporary_info.last_narrative = narrative
                phase = TurnPhase.DONE

        results = list(ctx.results)
        ctx.results.clear()
        logger.info("turn done session=%s agents=%s", game_state.session_id, [r.agent_id for r in results])
        return TurnOutcome(
            agent_results=results,
            game_state=game_state,
            narrative=narrative,
            routing=routing,
            scene_changed=scene_changed,
        )

    async def _route(self, utterance: str, manager: GameStateManager) -> RoutingDecision:
        prompt = render_prompt(CLASSIFIER, {
            "state": json.dumps(manager.summary(), indent=2),
            "utterance": utterance,
        })
        try:
            payload = await call_structured(
                self._llm, "classifier", prompt, extract_routing_payload, self._policy,
            )
        except (LLMError, MalformedResponse) as e:
            logger.error("routing failed, continuing with no agents: %s", e)
            payload = None
        decision = normalize_routing_decision(payload, self._config.known_agents)
        logger.info("%s", decision.summary())
        return decision

    async def _check_progression(self, session: Session) -> bool:
        manager = session.manager
        changed = self._director.handle_scene_change_request(manager)
        if not changed and manager.state.temporary_info.progression_pending:
            decision = await self._director.decide(manager)
            changed = self._director.apply_decision(manager, decision)
        manager.state.temporary_info.progression_pending = False
        if changed:
            session.monitor.reset()
        return changed
