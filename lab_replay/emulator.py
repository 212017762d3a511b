"""
Execution stack & driver
========================
Replays a ProgramModel one instruction at a time.

Each call to ``Emulator.next()``:
  1. pops every frame whose instructions are exhausted
  2. returns None once the stack is empty (the emulator is done)
  3. fetches the instruction under the top frame's instruction pointer
  4. builds a resolved Action from it
  5. dispatches the Action's payload to the Machine (comments are skipped)
  6. applies flow effects, records the Action, advances or jumps

The caller controls pacing: stepping one instruction at a time and running
to completion (``run()``) go through the same code path.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import logging

from lab_replay.actions import Action, ActionBuilder
from lab_replay.errors import (
    EmptyExecutionStack, EmulatorError, StepLimitExceeded, UnknownInstruction,
    UnknownMethod,
)
from lab_replay.machine import ExecCall, Machine, MachineState, SimulatedMachine
from lab_replay.program import ProgramModel, VariableMap, VariableValue
from lab_replay.resolver import Resolver

logger = logging.getLogger(__name__)


@dataclass
class ExecutionFrame:
    """One activation of a method."""
    method_id: str
    layout_id: str
    parameters: VariableMap = field(default_factory=dict)
    local_variables: VariableMap = field(default_factory=dict)
    ip: int = 0     # next line to execute

    def to_dict(self) -> dict:
        return {
            "method": self.method_id,
            "layout": self.layout_id,
            "ip": self.ip,
            "parameters": [v.to_dict() for v in self.parameters.values()],
            "local_variables": [v.to_dict() for v in self.local_variables.values()],
        }


class Emulator:
    def __init__(self, program: ProgramModel, machine: Optional[Machine] = None):
        self.program = program
        self.machine = machine if machine is not None else SimulatedMachine()
        self.global_variables: VariableMap = dict(program.global_variables())
        self._builder = ActionBuilder(program)
        self._stack: List[ExecutionFrame] = []
        self._history: List[Action] = []
        self._push(program.start_method())

    # ── Public API ─────────────────────────────────────────────────────────

    def done(self) -> bool:
        return len(self._stack) == 0

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def current_frame(self) -> Optional[ExecutionFrame]:
        return self._stack[-1] if self._stack else None

    @property
    def frames(self) -> Tuple[ExecutionFrame, ...]:
        return tuple(self._stack)

    @property
    def history(self) -> Tuple[Action, ...]:
        return tuple(self._history)

    @property
    def machine_state(self) -> MachineState:
        return self.machine.state

    def variable(self, variable_id: str) -> VariableValue:
        """Current value of a variable as seen from the top frame."""
        return self._resolver(self._top()).lookup(variable_id).value

    def next(self) -> Optional[Action]:
        """Execute one instruction; None once the program has finished."""
        while self._try_finish_method():
            continue

        if self.done():
            return None

        frame = self._top()
        try:
            action = self._build_action(frame)
            if action.executable:
                self.machine.execute(action.execute)
            self._advance(frame, action)
        except EmulatorError as e:
            e.locate(frame.method_id, frame.ip)
            logger.warning("Step failed at %s:%d: %s", frame.method_id, frame.ip, e.message)
            raise

        logger.debug("%s:%d %s", action.method, action.line, action.execute.name)
        return action

    def run(self, max_steps: Optional[int] = None) -> List[Action]:
        """Step until done; returns the actions produced by this call."""
        produced = []
        while max_steps is None or len(produced) < max_steps:
            action = self.next()
            if action is None:
                return produced
            produced.append(action)
        # one more pop pass: the last step may have finished the program
        while self._try_finish_method():
            continue
        if not self.done():
            raise StepLimitExceeded(max_steps)
        return produced

    # ── Internals ──────────────────────────────────────────────────────────

    def _build_action(self, frame: ExecutionFrame) -> Action:
        method_id, line = frame.method_id, frame.ip
        if not self.program.has_method(method_id):
            raise UnknownMethod(method_id)
        instr = self.program.instruction(method_id, line)
        if instr is None:
            raise UnknownInstruction(method_id, line)
        return self._builder.build(method_id, line, instr, self._resolver(frame))

    def _advance(self, frame: ExecutionFrame, action: Action):
        execute = action.execute
        if action.executable and execute.writes is not None:
            variable, value = execute.writes
            self._resolver(frame).assign(variable, value)

        self._history.append(action)

        jump = execute.jump if action.executable else None
        frame.ip = jump if jump is not None else frame.ip + 1

        if action.executable and isinstance(execute, ExecCall):
            self._push(execute.method, execute.arguments)

    def _resolver(self, frame: ExecutionFrame) -> Resolver:
        return Resolver(frame, self.global_variables, self.program.layouts())

    def _push(self, method_id: str, arguments: Optional[dict] = None):
        method = self.program.method(method_id)
        if method is None:
            raise UnknownMethod(method_id)

        parameters = dict(method.parameters)
        for param_id, value in (arguments or {}).items():
            parameters[param_id] = parameters[param_id].with_value(value)

        self._stack.append(ExecutionFrame(
            method_id=method_id,
            layout_id=method.layout_id,
            parameters=parameters,
            local_variables=dict(method.local_variables),
        ))
        logger.info("Enter method %s (%s), depth %d",
                    method_id, method.designation, len(self._stack))

    def _try_finish_method(self) -> bool:
        if not self._stack:
            return False
        frame = self._stack[-1]
        count = self.program.instruction_count(frame.method_id)
        if count is None:
            raise UnknownMethod(frame.method_id)
        if frame.ip >= count:
            self._pop()
            return True
        return False

    def _pop(self):
        if not self._stack:
            raise EmptyExecutionStack()
        frame = self._stack.pop()
        logger.info("Leave method %s, depth %d", frame.method_id, len(self._stack))

    def _top(self) -> ExecutionFrame:
        if not self._stack:
            raise EmptyExecutionStack()
        return self._stack[-1]
