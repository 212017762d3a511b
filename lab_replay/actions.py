"""
Action Builder
==============
Maps a decoded instruction onto a fully resolved ``Execute`` payload.

Every ``CommandKind`` is either handled by a builder method or listed in
``UNSUPPORTED``; the table is checked when this module is imported, so a new
command kind without an explicit decision fails immediately instead of at
replay time.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Tuple

from lab_replay.errors import (
    InvalidLoopStep, TypeMismatch, UnknownMethod, UnknownVariable,
    UnmatchedBlock, UnsupportedCommand,
)
from lab_replay.machine import (
    Execute, ExecAspirate, ExecAssign, ExecBeginLoop, ExecCall, ExecDispense,
    ExecEjectTips, ExecEndIf, ExecEndLoop, ExecEndWhile, ExecIf, ExecLoadTips,
    ExecMix, ExecRemark, ExecWhile,
)
from lab_replay.program import (
    NUMERIC_TYPES, Aspirate, BeginLoop, CommandKind, Comparator,
    Dispense, EjectTips, IfThen, Instruction, LoadTips, MathOperation,
    MathOperator, Mix, ProgramModel, REM, RunMethod, ValueType, VariableValue,
    WhileLoop,
)
from lab_replay.resolver import Resolver, apply_operator, compare, conform


@dataclass(frozen=True)
class Action:
    """One executed (or skipped) instruction, with its operands resolved."""
    method: str
    line: int
    executable: bool
    execute: Execute

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "line": self.line,
            "executable": self.executable,
            "execute": self.execute.to_dict(),
        }


# Decoded but deliberately not interpreted
UNSUPPORTED: FrozenSet[CommandKind] = frozenset({
    CommandKind.AIR_GAP,
    CommandKind.BLOW_OUT,
    CommandKind.DELAY,
    CommandKind.EXIT_METHOD,
    CommandKind.HOME,
    CommandKind.LIQUID_LEVEL_DETECT,
    CommandKind.MOVE_LABWARE,
    CommandKind.PAUSE,
    CommandKind.READ_BARCODE,
    CommandKind.RUN_EXTERNAL_PROGRAM,
    CommandKind.SET_TEMPERATURE,
    CommandKind.SHAKE,
    CommandKind.START_TIMER,
    CommandKind.TIP_TOUCH,
    CommandKind.USER_MESSAGE,
    CommandKind.WAIT_TIMER,
    CommandKind.WASH,
    CommandKind.WRITE_LOG,
})

_ONE = VariableValue(ValueType.INT, 1)


class ActionBuilder:
    def __init__(self, program: ProgramModel):
        self.program = program
        self._matches: Dict[Tuple[str, int], int] = {}

    def build(self, method_id: str, line: int, instruction: Instruction,
              resolver: Resolver) -> Action:
        if instruction.is_comment:
            return Action(method_id, line, False, ExecRemark(instruction.display_text))
        kind = instruction.command.kind
        if kind in UNSUPPORTED:
            raise UnsupportedCommand(kind.value)
        handler: Callable = getattr(self, _BUILDERS[kind])
        execute = handler(instruction.command, method_id, line, resolver)
        return Action(method_id, line, True, execute)

    # ── Liquid handling ────────────────────────────────────────────────────

    def _aspirate(self, cmd: Aspirate, method_id, line, r: Resolver) -> Execute:
        return ExecAspirate(
            location=r.resolve_position(cmd.position_head),
            volume=r.resolve_value(cmd.volume, ValueType.FLOAT),
            z_offset=r.resolve_z_offset(cmd.position_head),
        )

    def _dispense(self, cmd: Dispense, method_id, line, r: Resolver) -> Execute:
        if cmd.dispense_all or cmd.volume is None:
            volume = None
        else:
            volume = r.resolve_value(cmd.volume, ValueType.FLOAT)
        return ExecDispense(
            location=r.resolve_position(cmd.position_head),
            volume=volume,
            z_offset=r.resolve_z_offset(cmd.position_head),
        )

    def _load_tips(self, cmd: LoadTips, method_id, line, r: Resolver) -> Execute:
        return ExecLoadTips(location=r.resolve_position(cmd.tips_head))

    def _eject_tips(self, cmd: EjectTips, method_id, line, r: Resolver) -> Execute:
        return ExecEjectTips(location=r.resolve_position(cmd.tips_head))

    def _mix(self, cmd: Mix, method_id, line, r: Resolver) -> Execute:
        return ExecMix(
            location=r.resolve_position(cmd.position_head),
            z_offset=r.resolve_z_offset(cmd.position_head),
        )

    def _rem(self, cmd: REM, method_id, line, r: Resolver) -> Execute:
        return ExecRemark(cmd.comment)

    # ── Flow ───────────────────────────────────────────────────────────────

    def _run_method(self, cmd: RunMethod, method_id, line, r: Resolver) -> Execute:
        if not self.program.has_method(cmd.method):
            raise UnknownMethod(cmd.method)
        declared = self.program.parameters_of_method(cmd.method) or {}
        arguments = {}
        for param_id, operand in cmd.arguments.items():
            if param_id not in declared:
                raise UnknownVariable(param_id)
            # evaluated in the caller's scope, copied into the callee's frame
            arguments[param_id] = conform(declared[param_id].value.type, r.resolve(operand))
        return ExecCall(cmd.method, arguments)

    def _begin_loop(self, cmd: BeginLoop, method_id, line, r: Resolver) -> Execute:
        index = r.lookup(cmd.variable)
        start = conform(index.value.type, _numeric(r.resolve(cmd.start)))
        end, step = self._loop_bounds(cmd, r)
        # the step is added to the index by EndLoop
        conform(index.value.type, step)
        end_line = self._match(method_id, line, CommandKind.BEGIN_LOOP, CommandKind.END_LOOP, forward=True)
        return ExecBeginLoop(cmd.variable, start, _within(start, end, step), end_line)

    def _end_loop(self, cmd, method_id, line, r: Resolver) -> Execute:
        begin_line = self._match(method_id, line, CommandKind.BEGIN_LOOP, CommandKind.END_LOOP, forward=False)
        begin: BeginLoop = self.program.instruction(method_id, begin_line).command
        end, step = self._loop_bounds(begin, r)
        value = apply_operator(MathOperator.PLUS, r.lookup(begin.variable).value, step)
        return ExecEndLoop(begin.variable, value, _within(value, end, step), begin_line)

    def _if_then(self, cmd: IfThen, method_id, line, r: Resolver) -> Execute:
        passed = compare(r.resolve(cmd.left), cmd.comparator, r.resolve(cmd.right))
        end_line = self._match(method_id, line, CommandKind.IF_THEN, CommandKind.END_IF, forward=True)
        return ExecIf(passed, end_line)

    def _end_if(self, cmd, method_id, line, r: Resolver) -> Execute:
        return ExecEndIf()

    def _while_loop(self, cmd: WhileLoop, method_id, line, r: Resolver) -> Execute:
        passed = compare(r.resolve(cmd.left), cmd.comparator, r.resolve(cmd.right))
        end_line = self._match(method_id, line, CommandKind.WHILE_LOOP, CommandKind.END_WHILE, forward=True)
        return ExecWhile(passed, end_line)

    def _end_while(self, cmd, method_id, line, r: Resolver) -> Execute:
        begin_line = self._match(method_id, line, CommandKind.WHILE_LOOP, CommandKind.END_WHILE, forward=False)
        return ExecEndWhile(begin_line)

    def _math_operation(self, cmd: MathOperation, method_id, line, r: Resolver) -> Execute:
        current = r.lookup(cmd.variable).value
        return ExecAssign(cmd.variable, apply_operator(cmd.operator, current, r.resolve(cmd.value)))

    # ── Helpers ────────────────────────────────────────────────────────────

    def _loop_bounds(self, cmd: BeginLoop, r: Resolver) -> Tuple[VariableValue, VariableValue]:
        end = _numeric(r.resolve(cmd.end))
        step = _numeric(r.resolve(cmd.step)) if cmd.step is not None else _ONE
        if step.value == 0:
            raise InvalidLoopStep()
        return end, step

    def _match(self, method_id: str, line: int, opening: CommandKind,
               closing: CommandKind, forward: bool) -> int:
        """Line of the block marker pairing with ``line``; comments are skipped."""
        key = (method_id, line)
        if key in self._matches:
            return self._matches[key]
        count = self.program.instruction_count(method_id) or 0
        lines = range(line + 1, count) if forward else range(line - 1, -1, -1)
        inner, outer = (opening, closing) if forward else (closing, opening)
        depth = 0
        for i in lines:
            instr = self.program.instruction(method_id, i)
            if instr.is_comment:
                continue
            kind = instr.command.kind
            if kind == inner:
                depth += 1
            elif kind == outer:
                if depth == 0:
                    self._matches[key] = i
                    return i
                depth -= 1
        raise UnmatchedBlock(method_id, line, outer.value)


def _numeric(value: VariableValue) -> VariableValue:
    if value.type not in NUMERIC_TYPES:
        raise TypeMismatch("numeric", value.type.value)
    return value


def _within(value: VariableValue, end: VariableValue, step: VariableValue) -> bool:
    if step.value > 0:
        return compare(value, Comparator.LESS_THAN_OR_EQUAL, end)
    return compare(value, Comparator.GREATER_THAN_OR_EQUAL, end)


_BUILDERS: Dict[CommandKind, str] = {
    CommandKind.ASPIRATE:       "_aspirate",
    CommandKind.DISPENSE:       "_dispense",
    CommandKind.LOAD_TIPS:      "_load_tips",
    CommandKind.EJECT_TIPS:     "_eject_tips",
    CommandKind.MIX:            "_mix",
    CommandKind.REM:            "_rem",
    CommandKind.RUN_METHOD:     "_run_method",
    CommandKind.BEGIN_LOOP:     "_begin_loop",
    CommandKind.END_LOOP:       "_end_loop",
    CommandKind.IF_THEN:        "_if_then",
    CommandKind.END_IF:         "_end_if",
    CommandKind.WHILE_LOOP:     "_while_loop",
    CommandKind.END_WHILE:      "_end_while",
    CommandKind.MATH_OPERATION: "_math_operation",
}

SUPPORTED: FrozenSet[CommandKind] = frozenset(_BUILDERS)

_overlap = SUPPORTED & UNSUPPORTED
_missing = set(CommandKind) - SUPPORTED - UNSUPPORTED
if _overlap or _missing:
    raise TypeError(
        "Action builder table out of sync with CommandKind: "
        f"missing={sorted(k.value for k in _missing)} overlap={sorted(k.value for k in _overlap)}"
    )
