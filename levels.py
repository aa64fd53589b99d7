"""Level definitions: inbox, expected outbox and starting floor.

A level also carries the machine limits it is played under (floor size,
number bound, step limit). Levels come from the built-in catalog or from a
JSON file such as::

    {
      "name": "Duplicate Removal",
      "inbox": "eabedebaeb",
      "outbox": "eabd",
      "floor": {"14": 0},
      "floor_size": 15,
      "number_bound": 999,
      "step_limit": 10000
    }

``inbox``/``outbox`` are either lists of ints and one-character strings or
a string in mixed notation (see ``parse_mixed``).
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from lexer import HRMError
from machine import MachineConfig
from values import INT32_MAX, TYPE_NUMBER, Value, letter, number, value_from_python


# Limits used by the game for every catalog level.
NUMBER_BOUND = 999
STEP_LIMIT = 10_000


class HRMLevelError(HRMError):
    pass


@dataclass(frozen=True)
class Level:
    name: str
    inbox: Tuple[Value, ...]
    expected_outbox: Tuple[Value, ...]
    floor: Mapping[int, Value]
    floor_size: int
    number_bound: int
    step_limit: int
    description: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if self.floor_size < 0:
            raise HRMLevelError(f"Level '{self.name}': floor_size must not be negative")
        if self.step_limit <= 0:
            raise HRMLevelError(f"Level '{self.name}': step_limit must be positive")
        if not 0 <= self.number_bound <= INT32_MAX:
            raise HRMLevelError(f"Level '{self.name}': number_bound must be in [0, {INT32_MAX}]")
        for index in self.floor:
            if not 0 <= index < self.floor_size:
                raise HRMLevelError(
                    f"Level '{self.name}': floor tile {index} is outside [0, {self.floor_size})"
                )
        everything = list(self.inbox) + list(self.expected_outbox) + list(self.floor.values())
        for value in everything:
            if value.type == TYPE_NUMBER and abs(value.value) > self.number_bound:
                raise HRMLevelError(
                    f"Level '{self.name}': {value.value} is outside [-{self.number_bound}, {self.number_bound}]"
                )

    def machine_config(self, *, step_limit: Optional[int] = None) -> MachineConfig:
        return MachineConfig(
            floor_size=self.floor_size,
            number_bound=self.number_bound,
            step_limit=self.step_limit if step_limit is None else step_limit,
        )


def from_numbers(numbers: Iterable[int]) -> List[Value]:
    return [number(n) for n in numbers]


def from_string(text: str) -> List[Value]:
    return [letter(ch) for ch in text]


def zero_terminated(text: str) -> List[Value]:
    return from_string(text) + [number(0)]


def parse_mixed(text: str) -> List[Value]:
    """Expand ``"6,4,-1,7,ih"``: numeric parts become numbers, anything else
    becomes one letter per character."""
    values: List[Value] = []
    for part in text.split(","):
        part = part.strip()
        try:
            n = int(part)
        except ValueError:
            values.extend(from_string(part))
            continue
        values.append(number(n))
    return values


def _values_from_json(raw: Any, what: str) -> Tuple[Value, ...]:
    if not isinstance(raw, (str, list)):
        raise HRMLevelError(f"'{what}' must be a list or a mixed string")
    try:
        if isinstance(raw, str):
            return tuple(parse_mixed(raw))
        return tuple(value_from_python(item) for item in raw)
    except ValueError as exc:
        raise HRMLevelError(f"'{what}': {exc}")


def level_from_dict(data: Mapping[str, Any], *, default_name: str = "<level>") -> Level:
    missing = [key for key in ("inbox", "outbox", "floor_size", "number_bound", "step_limit") if key not in data]
    if missing:
        raise HRMLevelError(f"Level is missing {', '.join(missing)}")
    floor: Dict[int, Value] = {}
    raw_floor = data.get("floor", {})
    if not isinstance(raw_floor, dict):
        raise HRMLevelError("'floor' must map tile indices to values")
    for key, raw in raw_floor.items():
        try:
            floor[int(key)] = value_from_python(raw)
        except ValueError as exc:
            raise HRMLevelError(f"floor tile {key!r}: {exc}")
    for key in ("floor_size", "number_bound", "step_limit"):
        if isinstance(data[key], bool) or not isinstance(data[key], int):
            raise HRMLevelError(f"'{key}' must be an integer")
    return Level(
        name=str(data.get("name", default_name)),
        inbox=_values_from_json(data["inbox"], "inbox"),
        expected_outbox=_values_from_json(data["outbox"], "outbox"),
        floor=floor,
        floor_size=data["floor_size"],
        number_bound=data["number_bound"],
        step_limit=data["step_limit"],
        description=str(data.get("description", "")),
    )


def load_level(path: str) -> Level:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except OSError as exc:
        raise HRMLevelError(f"Failed to read {path}: {exc}")
    except json.JSONDecodeError as exc:
        raise HRMLevelError(f"{path} is not valid JSON: {exc}")
    if not isinstance(data, dict):
        raise HRMLevelError(f"{path} must hold a JSON object")
    return level_from_dict(data, default_name=path)


# ------------------------------ Catalog ------------------------------

def level_1() -> Level:
    return Level(
        name="Mail Room",
        description="Copy inbox to outbox",
        inbox=tuple(from_numbers([1, 2, 3])),
        expected_outbox=tuple(from_numbers([1, 2, 3])),
        floor={},
        floor_size=0,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


def level_2() -> Level:
    word = tuple(from_string("initialize"))
    return Level(
        name="Busy Mail Room",
        description="Copy a long inbox to outbox",
        inbox=word,
        expected_outbox=word,
        floor={},
        floor_size=0,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


def level_3() -> Level:
    return Level(
        name="Copy Floor",
        description="Copy letters from the floor to spell a word",
        inbox=tuple(from_numbers([-99, -99, -99, -99])),
        expected_outbox=tuple(from_string("bug")),
        floor={i: letter(ch) for i, ch in enumerate("ujxgbe")},
        floor_size=6,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


def level_4() -> Level:
    return Level(
        name="Scrambler Handler",
        description="Swap each pair from the inbox",
        inbox=tuple(parse_mixed("6,4,-1,7,ih")),
        expected_outbox=tuple(parse_mixed("4,6,7,-1,hi")),
        floor={},
        floor_size=3,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


def level_35() -> Level:
    return Level(
        name="Duplicate Removal",
        description="Copy inbox to outbox, dropping letters already seen",
        inbox=tuple(from_string("eabedebaeb")),
        expected_outbox=tuple(from_string("eabd")),
        floor={14: number(0)},
        floor_size=15,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


def level_36() -> Level:
    return Level(
        name="Alphabetizer",
        description="Of two zero-terminated words, output the one first in alphabetical order",
        inbox=tuple(zero_terminated("aab") + zero_terminated("aaa")),
        expected_outbox=tuple(from_string("aaa")),
        floor={23: number(0), 24: number(10)},
        floor_size=25,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


def level_37() -> Level:
    # Letter at idx, pointer to the next pair at idx + 1; -1 ends the chain.
    chain = [
        (0, "e", 13),
        (3, "c", 23),
        (10, "p", 20),
        (13, "s", 3),
        (20, "e", -1),
        (23, "a", 10),
    ]
    floor: Dict[int, Value] = {}
    for idx, ch, nxt in chain:
        floor[idx] = letter(ch)
        floor[idx + 1] = number(nxt)
    return Level(
        name="Scavenger Chain",
        description="Follow each chain of floor pointers from the inbox, outputting the letters",
        inbox=tuple(from_numbers([0, 23])),
        expected_outbox=tuple(from_string("escapeape")),
        floor=floor,
        floor_size=25,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


def level_38() -> Level:
    return Level(
        name="Digit Exploder",
        description="Output the digits of each number",
        inbox=tuple(from_numbers([33, 505, 7, 979])),
        expected_outbox=tuple(from_numbers([3, 3, 5, 0, 5, 7, 9, 7, 9])),
        floor={9: number(0), 10: number(10), 11: number(100)},
        floor_size=12,
        number_bound=NUMBER_BOUND,
        step_limit=STEP_LIMIT,
    )


BUILTIN_LEVELS: Dict[int, Callable[[], Level]] = {
    1: level_1,
    2: level_2,
    3: level_3,
    4: level_4,
    35: level_35,
    36: level_36,
    37: level_37,
    38: level_38,
}


def builtin_level(level_number: int) -> Level:
    try:
        factory = BUILTIN_LEVELS[level_number]
    except KeyError:
        known = ", ".join(str(n) for n in sorted(BUILTIN_LEVELS))
        raise HRMLevelError(f"Unknown level {level_number} (known levels: {known})")
    return factory()
