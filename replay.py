from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from hooks import HookRegistry
from levels import Level
from machine import Machine
from parser import Program, parse_program
from statelog import StateLogger
from values import HRMRuntimeError, Value


OUTCOME_MATCH = "MATCH"
OUTCOME_MISMATCH = "MISMATCH"
OUTCOME_RUNTIME_ERROR = "RUNTIME_ERROR"


@dataclass(frozen=True)
class ReplayReport:
    level: str
    outcome: str
    outbox: List[Value]
    expected: List[Value]
    steps: int
    mismatch_index: Optional[int] = None
    error: Optional[HRMRuntimeError] = None
    log: Optional[StateLogger] = field(default=None, compare=False, repr=False)

    @property
    def passed(self) -> bool:
        return self.outcome == OUTCOME_MATCH

    def summary(self) -> str:
        if self.outcome == OUTCOME_RUNTIME_ERROR:
            return f"Program failed\n{self.error}"
        lines = ["Program completed"]
        if self.outcome == OUTCOME_MATCH:
            lines.append(f"Output matched! ({self.steps} steps)")
        else:
            lines.append(f"Output did not match at index {self.mismatch_index}")
            lines.append(f"Expected: {_render(self.expected)}")
            lines.append(f"Got:      {_render(self.outbox)}")
        return "\n".join(lines)


def _render(values: Sequence[Value]) -> str:
    return "[" + ", ".join(str(v) for v in values) + "]"


def first_mismatch(produced: Sequence[Value], expected: Sequence[Value]) -> Optional[int]:
    """Index of the first differing element, or None when both sequences are equal.

    A length difference counts as a mismatch at the end of the shorter one.
    """
    for index, (got, want) in enumerate(zip(produced, expected)):
        if got != want:
            return index
    if len(produced) != len(expected):
        return min(len(produced), len(expected))
    return None


class Replay:
    """One program played against one level.

    Every ``run`` starts from a fresh machine state, so a Replay can be run
    repeatedly; separate Replay objects share nothing mutable.
    """

    def __init__(
        self,
        program: Program,
        level: Level,
        *,
        hooks: Optional[HookRegistry] = None,
        verbose: bool = False,
        step_limit: Optional[int] = None,
    ) -> None:
        self.program = program
        self.level = level
        self.machine = Machine(
            program,
            level.machine_config(step_limit=step_limit),
            hooks=hooks,
            verbose=verbose,
        )

    def run(self) -> ReplayReport:
        floor: Mapping[int, Value] = self.level.floor
        outbox, verdict = self.machine.run(floor, self.level.inbox)
        expected = list(self.level.expected_outbox)
        if verdict.error is not None:
            return ReplayReport(
                level=self.level.name,
                outcome=OUTCOME_RUNTIME_ERROR,
                outbox=outbox,
                expected=expected,
                steps=verdict.steps,
                error=verdict.error,
                log=verdict.log,
            )
        mismatch = first_mismatch(outbox, expected)
        return ReplayReport(
            level=self.level.name,
            outcome=OUTCOME_MATCH if mismatch is None else OUTCOME_MISMATCH,
            outbox=outbox,
            expected=expected,
            steps=verdict.steps,
            mismatch_index=mismatch,
            log=verdict.log,
        )


def replay(program: Program, level: Level, **kwargs) -> ReplayReport:
    return Replay(program, level, **kwargs).run()


def replay_source(text: str, level: Level, *, filename: str = "<string>", **kwargs) -> ReplayReport:
    """Parse ``text`` and replay it; parse errors propagate before anything runs."""
    return replay(parse_program(text, filename), level, **kwargs)
