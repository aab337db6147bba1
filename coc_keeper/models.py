"""Core domain models.

All pipeline stages and the state manager operate on these types.
Pydantic is used for validation and serialisation at every data boundary;
a GameState round-trips through `model_dump_json()` / `model_validate_json()`
for the persistence collaborator.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Phase = Literal["intro", "investigation", "confrontation", "downtime"]

TimeConsumption = Literal["instant", "short", "scene"]

ActionType = Literal[
    "exploration",
    "social",
    "stealth",
    "combat",
    "chase",
    "mental",
    "environmental",
    "narrative",
]

CHARACTERISTICS = ("STR", "CON", "SIZ", "DEX", "APP", "INT", "POW", "EDU")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_characteristics() -> dict[str, int]:
    return {name: 50 for name in CHARACTERISTICS}


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class CharacterStatus(BaseModel):
    hp: int = 10
    max_hp: int = 10
    sanity: int = 60
    max_sanity: int = 99
    luck: int = 50
    mp: int = 10
    conditions: list[str] = Field(default_factory=list)


class InventoryItem(BaseModel):
    """One inventory line. Unknown fields are rejected; extras go in `properties`."""

    model_config = ConfigDict(extra="forbid")

    name: str
    quantity: int | None = None  # None reads as 1
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return self.quantity if self.quantity is not None else 1


class ActionLogEntry(BaseModel):
    time: str
    location: str
    summary: str


class CharacterProfile(BaseModel):
    id: str
    name: str
    attributes: dict[str, int] = Field(default_factory=default_characteristics)
    status: CharacterStatus = Field(default_factory=CharacterStatus)
    inventory: list[InventoryItem] = Field(default_factory=list)
    skills: dict[str, int] = Field(default_factory=dict)
    notes: str = ""
    action_log: list[ActionLogEntry] = Field(default_factory=list)


class NPCClue(BaseModel):
    id: str
    clue_text: str
    category: Literal["knowledge", "observation", "rumor", "secret"] | None = None
    difficulty: Literal["regular", "hard", "extreme"] | None = None
    revealed: bool = False
    related_to: list[str] = Field(default_factory=list)


RelationshipType = Literal[
    "ally", "enemy", "neutral", "family", "friend",
    "rival", "employer", "employee", "stranger",
]


class NPCRelationship(BaseModel):
    target_id: str
    target_name: str
    relationship_type: RelationshipType = "neutral"
    attitude: int = Field(default=0, ge=-100, le=100)  # negative is hostile
    description: str = ""
    history: str = ""


class NPCProfile(CharacterProfile):
    occupation: str = ""
    age: int | None = None
    appearance: str = ""
    personality: str = ""
    background: str = ""
    goals: list[str] = Field(default_factory=list)
    secrets: list[str] = Field(default_factory=list)
    clues: list[NPCClue] = Field(default_factory=list)
    relationships: list[NPCRelationship] = Field(default_factory=list)
    is_npc: Literal[True] = True
    current_location: str | None = None


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TimePoint(BaseModel):
    game_day: int = 1
    time_of_day: str = "20:00"  # HH:MM


class ScenarioCharacter(BaseModel):
    id: str
    name: str
    role: str = ""
    status: str = ""
    location: str | None = None
    notes: str = ""


class ScenarioClue(BaseModel):
    id: str
    clue_text: str
    category: str = "observation"
    difficulty: Literal["automatic", "regular", "hard", "extreme"] = "regular"
    location: str = ""
    discovery_method: str = ""
    reveals: list[str] = Field(default_factory=list)
    discovered: bool = False


class ScenarioCondition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["weather", "lighting", "sound", "smell", "temperature", "other"] = "other"
    description: str
    mechanical_effect: str | None = None


class ScenarioExit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    direction: str
    destination: str
    description: str = ""
    condition: str | None = None  # e.g. "locked", "hidden"


class ScenarioSnapshot(BaseModel):
    """A point-in-time description of one location."""

    id: str
    scenario_id: str | None = None  # parent scenario
    name: str
    location: str
    description: str = ""
    characters: list[ScenarioCharacter] = Field(default_factory=list)
    clues: list[ScenarioClue] = Field(default_factory=list)
    conditions: list[ScenarioCondition] = Field(default_factory=list)
    events: list[str] = Field(default_factory=list)
    exits: list[ScenarioExit] = Field(default_factory=list)
    permanent_changes: list[str] = Field(default_factory=list)
    keeper_notes: str = ""
    estimated_short_actions: int | None = None  # overrides the default cap
    time_point: TimePoint | None = None
    connections: list[str] = Field(default_factory=list)  # snapshot ids


class VisitedScenario(BaseModel):
    """Reduced projection of a snapshot kept in the visited history."""

    id: str
    scenario_id: str | None = None
    name: str
    location: str
    time_point: TimePoint | None = None


class CharacterTimeConsumption(BaseModel):
    total_short_actions: int = 0
    total_scene_actions: int = 0


class ScenarioTimeState(BaseModel):
    scene_start_time: TimePoint = Field(default_factory=TimePoint)
    character_time_consumption: dict[str, CharacterTimeConsumption] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Turn bookkeeping
# ---------------------------------------------------------------------------

class ActionResult(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    game_time: str
    time_elapsed_minutes: int = 0
    location: str
    character: str
    result: str
    dice_rolls: list[str] = Field(default_factory=list)
    time_consumption: TimeConsumption = "instant"
    scenario_changes: list[str] = Field(default_factory=list)
    is_npc: bool = False
    failed: bool = False


class DirectorDecision(BaseModel):
    should_progress: bool = False
    target_snapshot_id: str | None = None
    estimated_short_actions: int | None = None  # cap for the target snapshot
    increase_short_action_cap_by: int | None = None  # extend the current cap instead
    reasoning: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class SceneChangeRequest(BaseModel):
    target_scene_name: str
    reason: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class ActionAnalysis(BaseModel):
    """What the classifier thinks the player is attempting."""

    character: str = ""
    action: str = ""
    action_type: ActionType | None = None
    target_name: str | None = None
    target_intent: str | None = None
    requires_dice: bool = False


class NPCResponseIntent(BaseModel):
    npc_name: str
    will_respond: bool
    response_type: ActionType | Literal["none"] | None = None
    response_description: str = ""
    execution_order: int = 999
    target_character: str | None = None


class TemporaryInfo(BaseModel):
    rules: list[str] = Field(default_factory=list)
    action_results: list[ActionResult] = Field(default_factory=list)
    current_action_analysis: ActionAnalysis | None = None
    director_decision: DirectorDecision | None = None
    scene_change_request: SceneChangeRequest | None = None
    npc_response_analyses: list[NPCResponseIntent] = Field(default_factory=list)
    last_narrative: str | None = None
    progression_pending: bool = False
    total_actions: int = 0  # monotonic, never evicted


class GameState(BaseModel):
    """The authoritative world model for one session."""

    session_id: str
    phase: Phase = "intro"
    current_scenario: ScenarioSnapshot | None = None
    visited_scenarios: list[VisitedScenario] = Field(default_factory=list)
    game_day: int = 1
    time_of_day: str = "20:00"
    tension: int = Field(default=1, ge=1, le=10)
    open_threads: list[str] = Field(default_factory=list)
    discovered_clues: list[str] = Field(default_factory=list)
    player_character: CharacterProfile
    npc_characters: list[NPCProfile] = Field(default_factory=list)
    scenario_time_state: ScenarioTimeState = Field(default_factory=ScenarioTimeState)
    temporary_info: TemporaryInfo = Field(default_factory=TemporaryInfo)


class AgentResult(BaseModel):
    agent_id: str
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def default_player_character() -> CharacterProfile:
    return CharacterProfile(
        id="investigator-1",
        name="Investigator",
        skills={
            "Spot Hidden": 25,
            "Listen": 20,
            "Library Use": 20,
            "Fighting (Brawl)": 25,
            "Dodge": 25,
            "Firearms (Handgun)": 20,
        },
        notes="Auto-generated placeholder character",
    )


def new_game_state(session_id: str = "session-local") -> GameState:
    """Create the per-session world model with defaults."""
    return GameState(session_id=session_id, player_character=default_player_character())


class TurnRecord(BaseModel):
    """One completed turn, as appended to the session's turn log."""

    turn_id: int
    utterance: str
    narrative: str
    agent_results: list[AgentResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
