"""Closed update variants carried by a resolver outcome.

Each variant is a pydantic model with `extra="forbid"`, joined into a
discriminated union on `kind`. An outcome that names an unknown kind or an
unknown field fails validation at the boundary instead of being half-applied.

    {"kind": "status", "character": "Ada", "status": {"hp": -2}}
    {"kind": "inventory", "character": "Ada", "op": "add", "items": [...]}
    {"kind": "scenario", "conditions": [...], "events": [...], "exits": [...]}
    {"kind": "scene_change", "target_scene": "Cellar", "reason": "..."}
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from coc_keeper.models import (
    InventoryItem,
    ScenarioCondition,
    ScenarioExit,
    TimeConsumption,
)


class _Closed(BaseModel):
    model_config = ConfigDict(extra="forbid")


class StatusChanges(_Closed):
    """Numeric deltas. Added to the current value, never assigned."""

    hp: int = 0
    max_hp: int = 0
    sanity: int = 0
    max_sanity: int = 0
    luck: int = 0
    mp: int = 0


class StatusDelta(_Closed):
    kind: Literal["status"]
    character: str
    status: StatusChanges = Field(default_factory=StatusChanges)
    attributes: dict[str, int] = Field(default_factory=dict)
    skills: dict[str, int] = Field(default_factory=dict)
    add_conditions: list[str] = Field(default_factory=list)
    remove_conditions: list[str] = Field(default_factory=list)


class InventoryOperation(_Closed):
    kind: Literal["inventory"]
    character: str
    op: Literal["add", "remove", "replace"]
    items: list[InventoryItem] = Field(default_factory=list)


class ScenarioDelta(_Closed):
    kind: Literal["scenario"]
    conditions: list[ScenarioCondition] = Field(default_factory=list)
    events: list[str] = Field(default_factory=list)
    exits: list[ScenarioExit] = Field(default_factory=list)
    permanent_changes: list[str] = Field(default_factory=list)
    # Clue discovery belongs to the narrative layer; accepted here and dropped.
    clues: list[dict[str, Any]] = Field(default_factory=list)


class SceneChange(_Closed):
    kind: Literal["scene_change"]
    target_scene: str
    reason: str = ""


Update = Annotated[
    Union[StatusDelta, InventoryOperation, ScenarioDelta, SceneChange],
    Field(discriminator="kind"),
]


class ResolverOutcome(_Closed):
    """The structured result of one action resolution."""

    result: str
    time_consumption: TimeConsumption = "instant"
    dice_used: list[str] = Field(default_factory=list)
    updates: list[Update] = Field(default_factory=list)
    scenario_changes: list[str] = Field(default_factory=list)
