from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from lexer import HRMError
from parser import SourceLocation


# Events the machine emits, with the arguments handlers receive:
#   program_start(machine, state)
#   before_instruction(machine, state, instruction)
#   after_instruction(machine, state, instruction)
#   on_error(machine, state, error)
#   program_end(machine, state, verdict)
EVENTS = (
    "program_start",
    "before_instruction",
    "after_instruction",
    "on_error",
    "program_end",
)


class HRMHookError(HRMError):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    instruction_index: int
    opcode: str
    location: Optional[SourceLocation]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str]] = field(default_factory=list)

    def on_event(
        self,
        event: str,
        handler: Optional[Callable[..., None]] = None,
        *,
        priority: int = 0,
        name: str = "",
    ):
        if event not in EVENTS:
            raise HRMHookError(f"Unknown event '{event}'")
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self.on_event(event, fn, priority=priority, name=name)
                return fn
            return deco
        self._events.setdefault(event, []).append((priority, handler, name or handler.__name__))
        self._events[event].sort(key=lambda t: t[0], reverse=True)
        return handler

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _name in self._events.get(event, []):
            handler(*args, **kwargs)

    def every_n_steps(
        self,
        every_n: int,
        handler: Optional[Callable[[Any, StepContext], None]] = None,
        *,
        name: str = "",
    ):
        if every_n <= 0:
            raise HRMHookError("every_n_steps must be >= 1")
        if handler is None:
            def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
                self.every_n_steps(every_n, fn, name=name)
                return fn
            return deco
        self._step_rules.append((every_n, handler, name or handler.__name__))
        return handler

    def after_step(self, machine: Any, ctx: StepContext) -> None:
        for every_n, handler, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(machine, ctx)
