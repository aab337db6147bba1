import random

import pytest

from coc_keeper.catalog import InMemoryScenarioCatalog
from coc_keeper.config import KeeperConfig
from coc_keeper.models import (
    GameState,
    NPCProfile,
    ScenarioCharacter,
    ScenarioSnapshot,
    TimePoint,
    new_game_state,
)
from coc_keeper.retry import RetryPolicy
from coc_keeper.state import GameStateManager


class LLMSequence:
    """Track LLM calls in order and return canned responses.

    Usable directly as an `LLM`: `await seq("resolver", prompt)`. Once the
    canned responses run out every further call returns "".
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []  # list of (stage, prompt) tuples
        self._index = 0

    async def __call__(self, stage, prompt):
        self.calls.append((stage, prompt))
        idx = self._index
        self._index += 1
        if idx < len(self.responses):
            response = self.responses[idx]
            if isinstance(response, Exception):
                raise response
            return response
        return ""

    @property
    def call_count(self):
        return len(self.calls)

    @property
    def stages(self):
        return [stage for stage, _ in self.calls]

    def prompt(self, index):
        return self.calls[index][1]


def study() -> ScenarioSnapshot:
    return ScenarioSnapshot(
        id="study",
        scenario_id="corbitt-house",
        name="The Study",
        location="Corbitt House, Study",
        description="Dusty shelves and a locked desk.",
        characters=[ScenarioCharacter(id="npc-knott", name="Mr. Knott")],
        connections=["cellar", "hall"],
        time_point=TimePoint(game_day=1, time_of_day="21:00"),
    )


def cellar() -> ScenarioSnapshot:
    return ScenarioSnapshot(
        id="cellar",
        scenario_id="corbitt-house",
        name="The Cellar",
        location="Corbitt House, Cellar",
        description="Damp stone and a smell of earth.",
        connections=["study"],
        time_point=TimePoint(game_day=1, time_of_day="22:00"),
    )


def hall() -> ScenarioSnapshot:
    return ScenarioSnapshot(
        id="hall",
        scenario_id="corbitt-house",
        name="The Hall",
        location="Corbitt House, Hall",
        connections=["study"],
    )


def knott() -> NPCProfile:
    return NPCProfile(
        id="npc-knott",
        name="Mr. Knott",
        occupation="Landlord",
        personality="Nervous and evasive.",
        goals=["Keep the house rented"],
        current_location="Corbitt House, Study",
    )


def mara() -> NPCProfile:
    return NPCProfile(
        id="npc-mara",
        name="Mara Vance",
        occupation="Journalist",
        personality="Curious and bold.",
        current_location="Corbitt House, Study",
    )


@pytest.fixture
def config() -> KeeperConfig:
    return KeeperConfig(data_dir="data-tests")


@pytest.fixture
def policy() -> RetryPolicy:
    """Three attempts, no sleeping between them."""
    return RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def catalog() -> InMemoryScenarioCatalog:
    return InMemoryScenarioCatalog([study(), cellar(), hall()])


@pytest.fixture
def game_state() -> GameState:
    state = new_game_state("test-session")
    state.player_character.name = "Ada Grey"
    state.npc_characters = [knott(), mara()]
    return state


@pytest.fixture
def manager(game_state, config) -> GameStateManager:
    m = GameStateManager(game_state, config)
    m.update_scenario(study())
    return m


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def llm_sequence():
    """Factory: `llm_sequence([...responses])` → a recording LLM stub."""
    return LLMSequence
