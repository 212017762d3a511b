"""
Value & position resolution
===========================
Turns operands into concrete values for the frame currently on top of the
stack.

Variable lookup precedence:
  1. the frame's local variables
  2. the frame's parameters
  3. the global pool

Deck parameters are looked up in the layout bound to the *current* frame, so
a method called from elsewhere sees the callee's layout, not the one of the
method that happens to define the instruction.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Dict, Optional, Union
import operator

from lab_replay.deck import Layout
from lab_replay.errors import (
    TypeMismatch, UnknownLayout, UnknownLayoutPosition, UnknownVariable,
    UnsupportedPosition,
)
from lab_replay.program import (
    NUMERIC_TYPES, Comparator, InstructionValue, LoadEjectTipsHead,
    MathOperator, PositionHead, ValueType, Variable, VariableMap, VariableValue,
)

if TYPE_CHECKING:
    from lab_replay.emulator import ExecutionFrame


_COMPARATORS = {
    Comparator.EQUALS:                operator.eq,
    Comparator.GREATER_THAN:          operator.gt,
    Comparator.GREATER_THAN_OR_EQUAL: operator.ge,
    Comparator.LESS_THAN:             operator.lt,
    Comparator.LESS_THAN_OR_EQUAL:    operator.le,
}


def conform(expected: Optional[ValueType], found: VariableValue) -> VariableValue:
    """Check ``found`` against ``expected``; Int widens to Float/DurationSeconds."""
    if expected is None or found.type == expected:
        return found
    if found.type == ValueType.INT and expected in (ValueType.FLOAT, ValueType.DURATION):
        return VariableValue(expected, float(found.value))
    raise TypeMismatch(expected.value, found.type.value)


def compare(left: VariableValue, comparator: Comparator, right: VariableValue) -> bool:
    if left.type in NUMERIC_TYPES and right.type in NUMERIC_TYPES:
        return _COMPARATORS[comparator](left.value, right.value)
    if left.type != right.type:
        raise TypeMismatch(left.type.value, right.type.value)
    if left.type == ValueType.BOOL and comparator != Comparator.EQUALS:
        raise TypeMismatch("ordered type", left.type.value)
    return _COMPARATORS[comparator](left.value, right.value)


def apply_operator(op: MathOperator, current: VariableValue, operand: VariableValue) -> VariableValue:
    """Compute the new value of a variable; the result keeps ``current``'s type."""
    if op == MathOperator.ASSIGN:
        return conform(current.type, operand)

    if current.type in NUMERIC_TYPES and operand.type in NUMERIC_TYPES:
        fn = operator.add if op == MathOperator.PLUS else operator.sub
        raw = fn(current.value, operand.value)
        if current.type == ValueType.INT and operand.type != ValueType.INT:
            raise TypeMismatch(ValueType.INT.value, operand.type.value)
        return VariableValue(current.type, float(raw) if current.type != ValueType.INT else raw)

    if op == MathOperator.PLUS and current.type == operand.type == ValueType.STRING:
        return VariableValue(ValueType.STRING, current.value + operand.value)

    raise TypeMismatch(current.type.value, operand.type.value)


class Resolver:
    """Resolves operands against one frame plus the global pool."""

    def __init__(self, frame: "ExecutionFrame", global_variables: VariableMap,
                 layouts: Dict[str, Layout]):
        self.frame = frame
        self.global_variables = global_variables
        self.layouts = layouts

    # ── Variables ──────────────────────────────────────────────────────────

    def scope_of(self, variable_id: str) -> VariableMap:
        """The pool holding ``variable_id`` under lookup precedence."""
        for pool in (self.frame.local_variables, self.frame.parameters, self.global_variables):
            if variable_id in pool:
                return pool
        raise UnknownVariable(variable_id)

    def lookup(self, variable_id: str) -> Variable:
        return self.scope_of(variable_id)[variable_id]

    def resolve(self, operand: InstructionValue,
                expected_type: Optional[ValueType] = None) -> VariableValue:
        if operand.variable is not None:
            return conform(expected_type, self.lookup(operand.variable).value)
        return conform(expected_type, operand.direct)

    def resolve_value(self, operand: InstructionValue,
                      expected_type: Optional[ValueType] = None):
        return self.resolve(operand, expected_type).value

    def assign(self, variable_id: str, value: VariableValue) -> None:
        pool = self.scope_of(variable_id)
        current = pool[variable_id]
        pool[variable_id] = current.with_value(conform(current.value.type, value))

    # ── Positions ──────────────────────────────────────────────────────────

    def resolve_position(self, head: Union[PositionHead, LoadEjectTipsHead]) -> str:
        if head.deck_parameter is None:
            raise UnsupportedPosition(type(head).__name__)
        layout_id = self.frame.layout_id
        layout = self.layouts.get(layout_id)
        if layout is None:
            raise UnknownLayout(layout_id)
        location = layout.position(head.deck_parameter)
        if location is None:
            raise UnknownLayoutPosition(head.deck_parameter)
        return location

    def resolve_z_offset(self, head: PositionHead) -> float:
        if head.z_offset is None:
            return 0.0
        return self.resolve_value(head.z_offset, ValueType.FLOAT)
