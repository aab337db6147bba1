"""Dice notation and the pre-rolled basket handed to the resolver.

Parses standard notation like 1d100, 3d6, 2d4+1, d20-1. The random source
is injectable so tests can seed it.
"""

from __future__ import annotations

import random
import re

from pydantic import BaseModel

DICE_PATTERN = re.compile(r"^\s*(\d*)d(\d+)\s*([+-]\s*\d+)?\s*$", re.IGNORECASE)

# (label, expression) rolled up front for every resolution
BASKET: tuple[tuple[str, str], ...] = (
    ("percentile", "1d100"),
    ("percentile", "1d100"),
    ("d20", "1d20"),
    ("d10", "1d10"),
    ("d8", "1d8"),
    ("d6", "1d6"),
    ("d6", "1d6"),
    ("d4", "1d4"),
    ("d3", "1d3"),
)


class DiceParseError(ValueError):
    """Error parsing dice notation."""


class DiceRoll(BaseModel):
    expression: str
    rolls: list[int]
    modifier: int = 0
    total: int

    @property
    def breakdown(self) -> str:
        """e.g. "2d6+1: [3, 5] +1 = 9"."""
        mod = f" {self.modifier:+d}" if self.modifier else ""
        return f"{self.expression}: {self.rolls}{mod} = {self.total}"


def parse_dice(notation: str) -> tuple[int, int, int]:
    """Return (count, sides, modifier). "d20" means one die."""
    if not notation or not notation.strip():
        raise DiceParseError("Dice notation cannot be empty")
    match = DICE_PATTERN.match(notation)
    if not match:
        raise DiceParseError(f"Invalid dice notation: '{notation}'")

    count_str, sides_str, mod_str = match.groups()
    count = int(count_str) if count_str else 1
    sides = int(sides_str)
    modifier = int(mod_str.replace(" ", "")) if mod_str else 0

    if count < 1:
        raise DiceParseError(f"Number of dice must be at least 1, got {count}")
    if sides < 1:
        raise DiceParseError(f"Die size must be at least 1, got {sides}")
    return count, sides, modifier


def roll(notation: str, rng: random.Random | None = None) -> DiceRoll:
    count, sides, modifier = parse_dice(notation)
    rng = rng or random.Random()
    rolls = [rng.randint(1, sides) for _ in range(count)]
    return DiceRoll(
        expression=notation.replace(" ", ""),
        rolls=rolls,
        modifier=modifier,
        total=sum(rolls) + modifier,
    )


def pre_roll_basket(rng: random.Random | None = None) -> list[tuple[str, DiceRoll]]:
    rng = rng or random.Random()
    return [(label, roll(expr, rng)) for label, expr in BASKET]


def format_basket(basket: list[tuple[str, DiceRoll]]) -> str:
    """One line per pre-rolled die, in basket order."""
    return "\n".join(f"- {label} ({r.expression}): {r.total}" for label, r in basket)
