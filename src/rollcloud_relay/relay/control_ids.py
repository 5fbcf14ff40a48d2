"""Button identifiers that carry enough data to act without a lookup.

Layout::

    rollcloud:roll:{name}:{roll}
    rollcloud:use_ability:{name}:spell:{level}
    rollcloud:end_turn:{actor}

Discord caps ``custom_id`` at 100 characters. Names never contain ``:``
(it is replaced with ``-``). A name that does not fit keeps as much of its
start as it can and ends in ``#`` plus an 8 character SHA-1 digest of the
full name, so two long names sharing a prefix still get distinct ids. The
trailing roll or level data is never shortened: when it leaves no room for
the digest the identifier cannot be built and ``ControlIdTooLong`` is raised.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

CONTROL_ID_PREFIX = "rollcloud"
CONTROL_ID_MAX_LENGTH = 100
CONTROL_LABEL_MAX_LENGTH = 80
HASHED_NAME_PREFIX = "#"
_DIGEST_LENGTH = 8
_HASHED_SUFFIX_RE = re.compile(r"#[0-9a-f]{8}\Z")


class ControlIdTooLong(ValueError):
    """Roll or level data alone leaves no room for a name."""


class ControlKind(str, Enum):
    ROLL = "roll"
    USE_ABILITY = "use_ability"
    END_TURN = "end_turn"


@dataclass(frozen=True)
class ControlAction:
    kind: ControlKind
    name: str
    roll: Optional[str] = None
    level: Optional[int] = None

    @property
    def name_is_hashed(self) -> bool:
        return _HASHED_SUFFIX_RE.search(self.name) is not None


def _clean(value: str) -> str:
    return value.replace(":", "-").strip()


def _digest(name: str) -> str:
    return HASHED_NAME_PREFIX + hashlib.sha1(name.encode("utf-8")).hexdigest()[
        :_DIGEST_LENGTH
    ]


def _fit(kind: ControlKind, name: str, tail: tuple[str, ...]) -> str:
    head = f"{CONTROL_ID_PREFIX}:{kind.value}:"
    suffix = "".join(f":{part}" for part in tail)
    cleaned = _clean(name)
    room = CONTROL_ID_MAX_LENGTH - len(head) - len(suffix)
    if room >= len(cleaned):
        return f"{head}{cleaned}{suffix}"
    digest = _digest(name)
    if room < len(digest):
        raise ControlIdTooLong(
            f"{kind.value} control data is {len(suffix)} characters; "
            f"no room left for a name within {CONTROL_ID_MAX_LENGTH}"
        )
    kept = cleaned[: room - len(digest)].rstrip()
    return f"{head}{kept}{digest}{suffix}"


def roll_control_id(name: str, roll: str) -> str:
    return _fit(ControlKind.ROLL, name, (_clean(roll),))


def spell_control_id(name: str, level: Optional[int]) -> str:
    return _fit(ControlKind.USE_ABILITY, name, ("spell", str(level or 0)))


def end_turn_control_id(actor_name: str) -> str:
    return _fit(ControlKind.END_TURN, actor_name, ())


def truncate_label(label: str) -> str:
    text = label.strip()
    if len(text) <= CONTROL_LABEL_MAX_LENGTH:
        return text
    return text[: CONTROL_LABEL_MAX_LENGTH - 1] + "…"


def _parse_level(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def parse_control_id(custom_id: object) -> Optional[ControlAction]:
    """Decode a ``rollcloud:*`` identifier; None for anything else."""
    if not isinstance(custom_id, str):
        return None
    parts = custom_id.split(":")
    if len(parts) < 3 or parts[0] != CONTROL_ID_PREFIX:
        return None
    try:
        kind = ControlKind(parts[1])
    except ValueError:
        return None
    name = parts[2]
    if kind is ControlKind.ROLL:
        if len(parts) != 4 or not parts[3]:
            return None
        return ControlAction(kind=kind, name=name, roll=parts[3])
    if kind is ControlKind.USE_ABILITY:
        if len(parts) != 5 or parts[3] != "spell":
            return None
        return ControlAction(kind=kind, name=name, level=_parse_level(parts[4]))
    if len(parts) != 3:
        return None
    return ControlAction(kind=kind, name=name)
