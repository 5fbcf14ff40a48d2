"""Compact roll notation (``NdS``, ``NdS+M``, ``NdS-M``).

Only a single dice term with an optional flat modifier is understood.
Multiple terms, keep/drop suffixes and advantage markers are rejected
rather than partially parsed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .exceptions import DiceValidationError

MAX_DICE_COUNT = 100
MAX_DICE_SIDES = 1000

REASON_INVALID_NOTATION = "invalid notation"
REASON_LIMITS_EXCEEDED = "limits exceeded"

_DICE_RE = re.compile(r"^(\d+)[dD](\d+)([+-]\d+)?$", re.ASCII)


@dataclass(frozen=True)
class DiceRoll:
    count: int
    sides: int
    modifier: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"count": self.count, "sides": self.sides, "modifier": self.modifier}

    def __str__(self) -> str:
        if self.modifier:
            return f"{self.count}d{self.sides}{self.modifier:+d}"
        return f"{self.count}d{self.sides}"


def parse_dice(notation: object) -> Optional[DiceRoll]:
    if not isinstance(notation, str):
        return None
    match = _DICE_RE.match(notation.strip())
    if match is None:
        return None
    count_raw, sides_raw, modifier_raw = match.groups()
    return DiceRoll(
        count=int(count_raw),
        sides=int(sides_raw),
        modifier=int(modifier_raw) if modifier_raw else 0,
    )


def within_limits(roll: DiceRoll) -> bool:
    return roll.count <= MAX_DICE_COUNT and roll.sides <= MAX_DICE_SIDES


def validate_dice(notation: object) -> DiceRoll:
    roll = parse_dice(notation)
    if roll is None:
        raise DiceValidationError(
            "Invalid dice notation! Use a format like `2d6`, `1d20+5`, `3d10-2`.",
            reason=REASON_INVALID_NOTATION,
        )
    if not within_limits(roll):
        raise DiceValidationError(
            f"Dice limits: max {MAX_DICE_COUNT} dice, max {MAX_DICE_SIDES} sides.",
            reason=REASON_LIMITS_EXCEEDED,
        )
    return roll
