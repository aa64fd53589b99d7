from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional

from lexer import HRMError
from parser import SourceLocation


TYPE_NUMBER = "NUMBER"
TYPE_LETTER = "LETTER"

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# Runtime error kinds
EMPTY_HANDS = "EmptyHands"
TILE_EMPTY = "TileEmpty"
TYPE_MISMATCH = "TypeMismatch"
OVERFLOW = "Overflow"
INVALID_ADDRESS = "InvalidAddress"
STEP_LIMIT_EXCEEDED = "StepLimitExceeded"


class HRMRuntimeError(HRMError):
    """Raised for runtime faults."""

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        instruction_index: Optional[int] = None,
        step_index: Optional[int] = None,
        location: Optional[SourceLocation] = None,
    ) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message
        self.instruction_index = instruction_index
        self.step_index = step_index
        self.location = location


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    def __post_init__(self) -> None:
        if self.type == TYPE_NUMBER:
            if isinstance(self.value, bool) or not isinstance(self.value, int):
                raise ValueError(f"Number tile needs an int, got {self.value!r}")
            if not INT32_MIN <= self.value <= INT32_MAX:
                raise ValueError(f"Number {self.value} does not fit in 32 bits")
        elif self.type == TYPE_LETTER:
            if not isinstance(self.value, str) or len(self.value) != 1:
                raise ValueError(f"Letter tile needs exactly one character, got {self.value!r}")
            if 0xD800 <= ord(self.value) <= 0xDFFF:
                raise ValueError(f"Letter tile needs a Unicode scalar value, got {self.value!r}")
        else:
            raise ValueError(f"Unknown value type '{self.type}'")

    @property
    def is_number(self) -> bool:
        return self.type == TYPE_NUMBER

    @property
    def is_letter(self) -> bool:
        return self.type == TYPE_LETTER

    def __str__(self) -> str:
        return str(self.value)

    def __lt__(self, other: "Value") -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return compare_values(self, other) < 0

    def __le__(self, other: "Value") -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return compare_values(self, other) <= 0

    def __gt__(self, other: "Value") -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return compare_values(self, other) > 0

    def __ge__(self, other: "Value") -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return compare_values(self, other) >= 0


def number(n: int) -> Value:
    return Value(TYPE_NUMBER, n)


def letter(ch: str) -> Value:
    return Value(TYPE_LETTER, ch)


def value_from_python(raw: Any) -> Value:
    """Map a plain int or one-character string onto a Value."""
    if isinstance(raw, Value):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return number(raw)
    if isinstance(raw, str) and len(raw) == 1:
        return letter(raw)
    raise ValueError(f"Cannot use {raw!r} as a tile value")


def compare_values(a: Value, b: Value) -> int:
    if a.type != b.type:
        raise HRMRuntimeError(TYPE_MISMATCH, f"Cannot order {a.type} against {b.type}")
    if a.value == b.value:
        return 0
    return -1 if a.value < b.value else 1


def check_bound(result: int, bound: int, rule: str) -> Value:
    if result > bound or result < -bound:
        raise HRMRuntimeError(OVERFLOW, f"{rule} result {result} is outside [-{bound}, {bound}]")
    return number(result)


def _expect_numbers(a: Value, b: Value, rule: str) -> None:
    if not (a.is_number and b.is_number):
        raise HRMRuntimeError(TYPE_MISMATCH, f"{rule} needs two numbers, got {a.type} and {b.type}")


def add_values(a: Value, b: Value, bound: int) -> Value:
    _expect_numbers(a, b, "ADD")
    return check_bound(a.value + b.value, bound, "ADD")


def sub_values(a: Value, b: Value, bound: int) -> Value:
    _expect_numbers(a, b, "SUB")
    return check_bound(a.value - b.value, bound, "SUB")


def bump_value(v: Value, delta: int, bound: int) -> Value:
    rule = "BUMPUP" if delta > 0 else "BUMPDN"
    if not v.is_number:
        raise HRMRuntimeError(TYPE_MISMATCH, f"{rule} needs a number, got {v.type}")
    return check_bound(v.value + delta, bound, rule)
