from __future__ import annotations
import json
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

from parser import SourceLocation
from values import HRMRuntimeError


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    instruction_index: int
    rule: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    hands: Optional[str]
    floor_snapshot: Optional[Dict[int, str]]


class StateLogger:
    """Records the machine state at the start of every executed step.

    Only the newest ``capacity`` entries are kept (all of them when
    ``capacity`` is None); step indices keep counting regardless.
    """

    def __init__(self, verbose: bool, capacity: Optional[int] = 256) -> None:
        self.verbose = verbose
        self.capacity = capacity
        self.entries: Deque[StateEntry] = deque(maxlen=capacity)

    def record(
        self,
        *,
        step_index: int,
        instruction_index: int,
        rule: str,
        location: Optional[SourceLocation],
        statement: Optional[str],
        hands: Optional[str],
        floor_snapshot: Optional[Dict[int, str]] = None,
    ) -> StateEntry:
        state_id = f"s_{step_index:06d}"
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            instruction_index=instruction_index,
            rule=rule,
            source_location=location,
            statement=statement,
            hands=hands,
            floor_snapshot=floor_snapshot,
        )
        self.entries.append(entry)
        return entry

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None

    def tail(self, count: int) -> List[StateEntry]:
        if count <= 0:
            return []
        return list(self.entries)[-count:]

    def clear(self) -> None:
        self.entries.clear()


class TracebackFormatter:
    def __init__(self, logger: StateLogger, depth: int = 5) -> None:
        self.logger = logger
        self.depth = depth

    def format_text(self, error: HRMRuntimeError, verbose: bool) -> str:
        lines = ["Trace (most recent step last):"]
        entries = self.logger.tail(self.depth)
        if not entries:
            lines.append("  <no steps recorded>")
        for entry in entries:
            where = f"instruction {entry.instruction_index}"
            if entry.source_location:
                where += f", line {entry.source_location.line}"
            lines.append(f"  Step {entry.step_index} ({entry.state_id}), {where}")
            if entry.statement:
                lines.append(f"    {entry.statement}")
            lines.append(f"    Hands: {entry.hands if entry.hands is not None else '<empty>'}")
            if verbose and entry.floor_snapshot is not None:
                floor = ", ".join(f"{k}={v}" for k, v in entry.floor_snapshot.items())
                lines.append(f"    Floor: {floor or '<empty>'}")
        lines.append(f"{error.__class__.__name__}: {error}{_position(error)}")
        return "\n".join(lines)

    def to_json(self, error: HRMRuntimeError) -> str:
        steps_json: List[Dict[str, Any]] = []
        for entry in self.logger.tail(self.depth):
            item: Dict[str, Any] = {
                "step_index": entry.step_index,
                "state_id": entry.state_id,
                "instruction_index": entry.instruction_index,
                "rule": entry.rule,
                "hands": entry.hands,
            }
            if entry.source_location:
                item["source_location"] = {
                    "file": entry.source_location.file,
                    "line": entry.source_location.line,
                    "statement": entry.source_location.statement,
                }
            if entry.floor_snapshot is not None:
                item["floor"] = {str(k): v for k, v in entry.floor_snapshot.items()}
            steps_json.append(item)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "kind": error.kind,
                "message": error.message,
                "instruction_index": error.instruction_index,
                "failing_step_index": error.step_index,
            },
            "trace": steps_json,
        }
        return json.dumps(data, indent=2)


def _position(error: HRMRuntimeError) -> str:
    parts = []
    if error.instruction_index is not None:
        parts.append(f"instruction {error.instruction_index}")
    if error.step_index is not None:
        parts.append(f"step {error.step_index}")
    return f" ({', '.join(parts)})" if parts else ""
