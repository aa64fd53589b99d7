from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from floor import Floor
from hooks import HookRegistry, StepContext
from parser import (
    OP_ADD,
    OP_BUMPDN,
    OP_BUMPUP,
    OP_COPYFROM,
    OP_COPYTO,
    OP_INBOX,
    OP_JUMP,
    OP_JUMPN,
    OP_JUMPZ,
    OP_OUTBOX,
    OP_SUB,
    Instruction,
    Program,
)
from statelog import StateLogger
from values import (
    EMPTY_HANDS,
    INT32_MAX,
    STEP_LIMIT_EXCEEDED,
    TYPE_MISMATCH,
    HRMRuntimeError,
    Value,
    add_values,
    bump_value,
    sub_values,
    value_from_python,
)


VERDICT_COMPLETED = "COMPLETED"
VERDICT_RUNTIME_ERROR = "RUNTIME_ERROR"


@dataclass(frozen=True)
class MachineConfig:
    floor_size: int
    number_bound: int
    step_limit: int

    def __post_init__(self) -> None:
        if self.floor_size < 0:
            raise ValueError(f"floor_size must not be negative, got {self.floor_size}")
        if not 0 <= self.number_bound <= INT32_MAX:
            raise ValueError(f"number_bound must be in [0, {INT32_MAX}], got {self.number_bound}")
        if self.step_limit <= 0:
            raise ValueError(f"step_limit must be positive, got {self.step_limit}")


@dataclass
class MachineState:
    floor: Floor
    inbox: List[Value]
    pc: int = 0
    hands: Optional[Value] = None
    inbox_cursor: int = 0
    outbox: List[Value] = field(default_factory=list)
    steps: int = 0
    log: StateLogger = field(default_factory=lambda: StateLogger(verbose=False))


@dataclass(frozen=True)
class Verdict:
    status: str
    steps: int
    error: Optional[HRMRuntimeError] = None
    # Per-run step log, for rendering a trace of this run.
    log: Optional[StateLogger] = field(default=None, compare=False, repr=False)

    @property
    def completed(self) -> bool:
        return self.status == VERDICT_COMPLETED


class HaltSignal(Exception):
    """Clean stop: the program ran off its end or INBOX found nothing left."""


Handler = Callable[[MachineState, Instruction], bool]


class Machine:
    def __init__(
        self,
        program: Program,
        config: MachineConfig,
        *,
        hooks: Optional[HookRegistry] = None,
        verbose: bool = False,
        log_capacity: Optional[int] = 256,
    ) -> None:
        self.program = program
        self.config = config
        self.hooks = hooks if hooks is not None else HookRegistry()
        self.verbose = verbose
        self.log_capacity = log_capacity
        # Each handler returns True when it has set the program counter itself.
        self.handlers: Dict[str, Handler] = {
            OP_INBOX: self._inbox,
            OP_OUTBOX: self._outbox,
            OP_COPYFROM: self._copy_from,
            OP_COPYTO: self._copy_to,
            OP_ADD: self._add,
            OP_SUB: self._sub,
            OP_BUMPUP: self._bump_up,
            OP_BUMPDN: self._bump_down,
            OP_JUMP: self._jump,
            OP_JUMPZ: self._jump_if_zero,
            OP_JUMPN: self._jump_if_negative,
        }

    def new_state(
        self,
        floor_layout: Optional[Mapping[int, Any]] = None,
        inbox: Iterable[Any] = (),
    ) -> MachineState:
        layout = {index: value_from_python(raw) for index, raw in (floor_layout or {}).items()}
        return MachineState(
            floor=Floor(self.config.floor_size, layout),
            inbox=[value_from_python(raw) for raw in inbox],
            log=StateLogger(verbose=self.verbose, capacity=self.log_capacity),
        )

    def run(
        self,
        floor_layout: Optional[Mapping[int, Any]] = None,
        inbox: Iterable[Any] = (),
    ) -> Tuple[List[Value], Verdict]:
        state = self.new_state(floor_layout, inbox)
        verdict = self.execute(state)
        return list(state.outbox), verdict

    def execute(self, state: MachineState) -> Verdict:
        """Step ``state`` until it halts; program faults come back as the verdict."""
        self.hooks.emit("program_start", self, state)
        try:
            while True:
                self.step(state)
        except HaltSignal:
            verdict = Verdict(status=VERDICT_COMPLETED, steps=state.steps, log=state.log)
        except HRMRuntimeError as error:
            self.hooks.emit("on_error", self, state, error)
            verdict = Verdict(status=VERDICT_RUNTIME_ERROR, steps=state.steps, error=error, log=state.log)
        self.hooks.emit("program_end", self, state, verdict)
        return verdict

    def step(self, state: MachineState) -> MachineState:
        instructions = self.program.instructions
        pc = state.pc
        if not 0 <= pc < len(instructions):
            raise HaltSignal()
        instruction = instructions[pc]
        self._log_step(state, instruction)
        self.hooks.emit("before_instruction", self, state, instruction)
        try:
            jumped = self.handlers[instruction.opcode](state, instruction)
        except HRMRuntimeError as error:
            error.instruction_index = pc
            error.step_index = state.steps
            error.location = instruction.location
            raise
        if not jumped:
            state.pc = pc + 1
        state.steps += 1
        self.hooks.emit("after_instruction", self, state, instruction)
        self.hooks.after_step(
            self,
            StepContext(
                step_index=state.steps,
                instruction_index=pc,
                opcode=instruction.opcode,
                location=instruction.location,
            ),
        )
        if state.steps > self.config.step_limit:
            raise HRMRuntimeError(
                STEP_LIMIT_EXCEEDED,
                f"Program did not finish within {self.config.step_limit} steps",
                instruction_index=pc,
                step_index=state.steps - 1,
                location=instruction.location,
            )
        return state

    def _log_step(self, state: MachineState, instruction: Instruction) -> None:
        floor_snapshot = None
        if self.verbose:
            floor_snapshot = {k: str(v) for k, v in state.floor.snapshot().items()}
        location = instruction.location
        state.log.record(
            step_index=state.steps,
            instruction_index=state.pc,
            rule=instruction.opcode,
            location=location,
            statement=location.statement if location and location.statement else instruction.describe(),
            hands=None if state.hands is None else str(state.hands),
            floor_snapshot=floor_snapshot,
        )

    def _require_hands(self, state: MachineState, rule: str) -> Value:
        if state.hands is None:
            raise HRMRuntimeError(EMPTY_HANDS, f"{rule} with nothing in hands")
        return state.hands

    def _require_number_in_hands(self, state: MachineState, rule: str) -> Value:
        hands = self._require_hands(state, rule)
        if not hands.is_number:
            raise HRMRuntimeError(TYPE_MISMATCH, f"{rule} tests a number, hands hold letter '{hands.value}'")
        return hands

    # -------------------------- Instruction set -----------------------

    def _inbox(self, state: MachineState, _: Instruction) -> bool:
        if state.inbox_cursor >= len(state.inbox):
            raise HaltSignal()
        state.hands = state.inbox[state.inbox_cursor]
        state.inbox_cursor += 1
        return False

    def _outbox(self, state: MachineState, _: Instruction) -> bool:
        # Hands keep the value after it has been put in the outbox.
        state.outbox.append(self._require_hands(state, "OUTBOX"))
        return False

    def _copy_from(self, state: MachineState, instruction: Instruction) -> bool:
        index = state.floor.resolve(instruction.address)
        state.hands = state.floor.read(index)
        return False

    def _copy_to(self, state: MachineState, instruction: Instruction) -> bool:
        hands = self._require_hands(state, "COPYTO")
        index = state.floor.resolve(instruction.address)
        state.floor.write(index, hands)
        return False

    def _add(self, state: MachineState, instruction: Instruction) -> bool:
        hands = self._require_hands(state, "ADD")
        tile = state.floor.read(state.floor.resolve(instruction.address))
        state.hands = add_values(hands, tile, self.config.number_bound)
        return False

    def _sub(self, state: MachineState, instruction: Instruction) -> bool:
        hands = self._require_hands(state, "SUB")
        tile = state.floor.read(state.floor.resolve(instruction.address))
        state.hands = sub_values(hands, tile, self.config.number_bound)
        return False

    def _bump(self, state: MachineState, instruction: Instruction, delta: int) -> bool:
        index = state.floor.resolve(instruction.address)
        bumped = bump_value(state.floor.read(index), delta, self.config.number_bound)
        state.floor.write(index, bumped)
        state.hands = bumped
        return False

    def _bump_up(self, state: MachineState, instruction: Instruction) -> bool:
        return self._bump(state, instruction, 1)

    def _bump_down(self, state: MachineState, instruction: Instruction) -> bool:
        return self._bump(state, instruction, -1)

    def _jump(self, state: MachineState, instruction: Instruction) -> bool:
        state.pc = instruction.target
        return True

    def _jump_if_zero(self, state: MachineState, instruction: Instruction) -> bool:
        if self._require_number_in_hands(state, "JUMPZ").value == 0:
            state.pc = instruction.target
            return True
        return False

    def _jump_if_negative(self, state: MachineState, instruction: Instruction) -> bool:
        if self._require_number_in_hands(state, "JUMPN").value < 0:
            state.pc = instruction.target
            return True
        return False


def run_program(
    program: Program,
    config: MachineConfig,
    floor_layout: Optional[Mapping[int, Any]] = None,
    inbox: Iterable[Any] = (),
) -> Tuple[List[Value], Verdict]:
    return Machine(program, config).run(floor_layout, inbox)
