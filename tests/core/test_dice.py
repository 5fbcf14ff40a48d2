from __future__ import annotations

import pytest

from rollcloud_relay.core.dice import (
    REASON_INVALID_NOTATION,
    REASON_LIMITS_EXCEEDED,
    DiceRoll,
    parse_dice,
    validate_dice,
)
from rollcloud_relay.core.exceptions import DiceValidationError, ValidationError


@pytest.mark.parametrize(
    ("notation", "expected"),
    [
        ("2d6+3", DiceRoll(count=2, sides=6, modifier=3)),
        ("1d20", DiceRoll(count=1, sides=20, modifier=0)),
        ("3D10-2", DiceRoll(count=3, sides=10, modifier=-2)),
        ("  4d8  ", DiceRoll(count=4, sides=8, modifier=0)),
    ],
)
def test_parse_dice_accepts_single_term_notation(
    notation: str, expected: DiceRoll
) -> None:
    assert parse_dice(notation) == expected


@pytest.mark.parametrize(
    "notation",
    [
        "banana",
        "",
        "d20",
        "1d",
        "2d6+1d4",
        "4d6kh3",
        "1d20 adv",
        "2d6+",
        "1d20+-1",
        "١d٦",
        None,
        20,
    ],
)
def test_parse_dice_rejects_everything_else(notation: object) -> None:
    assert parse_dice(notation) is None


def test_dice_roll_string_form_round_trips_modifier_sign() -> None:
    assert str(DiceRoll(1, 20, 5)) == "1d20+5"
    assert str(DiceRoll(3, 10, -2)) == "3d10-2"
    assert str(DiceRoll(2, 6)) == "2d6"
    assert DiceRoll(2, 6, 1).to_dict() == {"count": 2, "sides": 6, "modifier": 1}


def test_validate_dice_accepts_upper_bounds() -> None:
    assert validate_dice("100d1000") == DiceRoll(count=100, sides=1000)


@pytest.mark.parametrize("notation", ["101d6", "1d1001", "101d1001+3"])
def test_validate_dice_rejects_limits(notation: str) -> None:
    with pytest.raises(DiceValidationError) as excinfo:
        validate_dice(notation)
    assert excinfo.value.reason == REASON_LIMITS_EXCEEDED
    assert "max 100 dice" in (excinfo.value.user_message or "")


def test_validate_dice_rejects_bad_notation_as_validation_error() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_dice("2d6+1d4")
    assert isinstance(excinfo.value, DiceValidationError)
    assert excinfo.value.reason == REASON_INVALID_NOTATION
    assert excinfo.value.recoverable is False
