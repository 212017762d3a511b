"""
Program Model
=============
Immutable in-memory representation of an ingested automation program.

A program is a set of methods. Each method has:
  - a designation (display name)
  - the id of the deck layout it is authored against
  - a local-variable pool and a parameter pool
  - an ordered list of instructions

Instructions carry a Command from a closed vocabulary (``CommandKind``).
Operands are ``InstructionValue`` objects: a typed literal plus an optional
bound variable id that, when present, takes precedence over the literal.
Position-bearing operands are ``PositionHead`` / ``LoadEjectTipsHead`` and
normally name a *deck parameter* that the active layout maps to a location.

``load_program()`` builds a ProgramModel from a JSON-compatible dict; this is
the only place raw values are coerced.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union
import json
import logging
import typing

from lab_replay.deck import Layout
from lab_replay.errors import ProgramFormatError

logger = logging.getLogger(__name__)


# ── Values & variables ────────────────────────────────────────────────────────

class ValueType(str, Enum):
    BOOL     = "Bool"
    FLOAT    = "Float"
    INT      = "Int"
    STRING   = "String"
    DURATION = "DurationSeconds"


NUMERIC_TYPES = (ValueType.INT, ValueType.FLOAT, ValueType.DURATION)

# Maestro exports use -1 / 0 for booleans
_TRUE_STRINGS = {"true", "-1", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def coerce_value(value_type: ValueType, raw: Any) -> Any:
    """Coerce a raw JSON value to the Python value for ``value_type``."""
    if not isinstance(raw, (bool, int, float, str)):
        raise ValueError(f"cannot read {raw!r} as {value_type.value}")
    if value_type == ValueType.BOOL:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, int):
            return raw != 0
        if isinstance(raw, str) and raw.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
            return raw.strip().lower() in _TRUE_STRINGS
        raise ValueError(f"cannot read {raw!r} as Bool")
    if value_type == ValueType.INT:
        if isinstance(raw, bool):
            raise ValueError(f"cannot read {raw!r} as Int")
        if isinstance(raw, float) and not raw.is_integer():
            raise ValueError(f"cannot read {raw!r} as Int")
        return int(raw)
    if value_type in (ValueType.FLOAT, ValueType.DURATION):
        if isinstance(raw, bool):
            raise ValueError(f"cannot read {raw!r} as {value_type.value}")
        return float(raw)
    if value_type == ValueType.STRING:
        if not isinstance(raw, str):
            raise ValueError(f"cannot read {raw!r} as String")
        return raw
    raise ValueError(f"unknown value type {value_type!r}")


def infer_type(raw: Any) -> ValueType:
    if isinstance(raw, bool):
        return ValueType.BOOL
    if isinstance(raw, int):
        return ValueType.INT
    if isinstance(raw, float):
        return ValueType.FLOAT
    if isinstance(raw, str):
        return ValueType.STRING
    raise ValueError(f"cannot infer a value type for {raw!r}")


@dataclass(frozen=True)
class VariableValue:
    """A typed value: Bool, Float, Int, String or DurationSeconds."""
    type: ValueType
    value: Any

    @classmethod
    def of(cls, raw: Any, value_type: Optional[ValueType] = None) -> "VariableValue":
        vt = value_type or infer_type(raw)
        return cls(vt, coerce_value(vt, raw))

    def to_dict(self) -> dict:
        return {"type": self.type.value, "value": self.value}


@dataclass(frozen=True)
class Variable:
    variable_id: str
    designation: str
    value: VariableValue

    def with_value(self, value: VariableValue) -> "Variable":
        return Variable(self.variable_id, self.designation, value)

    def to_dict(self) -> dict:
        return {
            "id": self.variable_id,
            "designation": self.designation,
            **self.value.to_dict(),
        }


VariableMap = Dict[str, Variable]


# ── Operands ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InstructionValue:
    """Operand: literal ``direct`` value, overridden by ``variable`` when bound."""
    direct: VariableValue
    variable: Optional[str] = None

    @classmethod
    def literal(cls, raw: Any, value_type: Optional[ValueType] = None) -> "InstructionValue":
        return cls(VariableValue.of(raw, value_type))

    @classmethod
    def bound(cls, variable_id: str, value_type: ValueType = ValueType.FLOAT) -> "InstructionValue":
        # the literal is only a placeholder once a variable is bound
        return cls(VariableValue(value_type, _DEFAULTS[value_type]), variable_id)


_DEFAULTS = {
    ValueType.BOOL: False,
    ValueType.FLOAT: 0.0,
    ValueType.INT: 0,
    ValueType.STRING: "",
    ValueType.DURATION: 0.0,
}


@dataclass(frozen=True)
class PositionHead:
    deck_parameter: Optional[str] = None
    location: Optional[InstructionValue] = None
    z_offset: Optional[InstructionValue] = None


@dataclass(frozen=True)
class LoadEjectTipsHead:
    deck_parameter: Optional[str] = None
    location: Optional[InstructionValue] = None


class Comparator(str, Enum):
    EQUALS                = "Equals"
    GREATER_THAN          = "GreaterThan"
    GREATER_THAN_OR_EQUAL = "GreaterThanOrEqual"
    LESS_THAN             = "LessThan"
    LESS_THAN_OR_EQUAL    = "LessThanOrEqual"


class MathOperator(str, Enum):
    ASSIGN = "Assign"
    PLUS   = "Plus"
    MINUS  = "Minus"


# ── Command vocabulary ────────────────────────────────────────────────────────

class CommandKind(str, Enum):
    # liquid handling
    ASPIRATE       = "Aspirate"
    DISPENSE       = "Dispense"
    LOAD_TIPS      = "LoadTips"
    EJECT_TIPS     = "EjectTips"
    MIX            = "Mix"
    REM            = "REM"
    # flow
    RUN_METHOD     = "RunMethod"
    BEGIN_LOOP     = "BeginLoop"
    END_LOOP       = "EndLoop"
    IF_THEN        = "IfThen"
    END_IF         = "EndIf"
    WHILE_LOOP     = "WhileLoop"
    END_WHILE      = "EndWhile"
    MATH_OPERATION = "MathOperation"
    # decoded, not interpreted
    AIR_GAP              = "AirGap"
    BLOW_OUT             = "BlowOut"
    DELAY                = "Delay"
    EXIT_METHOD          = "ExitMethod"
    HOME                 = "Home"
    LIQUID_LEVEL_DETECT  = "LiquidLevelDetect"
    MOVE_LABWARE         = "MoveLabware"
    PAUSE                = "Pause"
    READ_BARCODE         = "ReadBarcode"
    RUN_EXTERNAL_PROGRAM = "RunExternalProgram"
    SET_TEMPERATURE      = "SetTemperature"
    SHAKE                = "Shake"
    START_TIMER          = "StartTimer"
    TIP_TOUCH            = "TipTouch"
    USER_MESSAGE         = "UserMessage"
    WAIT_TIMER           = "WaitTimer"
    WASH                 = "Wash"
    WRITE_LOG            = "WriteLog"


COMMAND_TYPES: Dict[CommandKind, Type["Command"]] = {}


def command(kind: CommandKind):
    """Class decorator registering a Command variant under ``kind``."""
    def register(cls):
        if kind in COMMAND_TYPES:
            raise TypeError(f"Command kind {kind.value} registered twice")
        cls.kind = kind
        COMMAND_TYPES[kind] = cls
        return cls
    return register


@dataclass(frozen=True)
class Command:
    kind: ClassVar[CommandKind]


@command(CommandKind.ASPIRATE)
@dataclass(frozen=True)
class Aspirate(Command):
    position_head: PositionHead
    volume: InstructionValue


@command(CommandKind.DISPENSE)
@dataclass(frozen=True)
class Dispense(Command):
    position_head: PositionHead
    volume: Optional[InstructionValue] = None
    dispense_all: bool = False


@command(CommandKind.LOAD_TIPS)
@dataclass(frozen=True)
class LoadTips(Command):
    tips_head: LoadEjectTipsHead


@command(CommandKind.EJECT_TIPS)
@dataclass(frozen=True)
class EjectTips(Command):
    tips_head: LoadEjectTipsHead


@command(CommandKind.MIX)
@dataclass(frozen=True)
class Mix(Command):
    position_head: PositionHead


@command(CommandKind.REM)
@dataclass(frozen=True)
class REM(Command):
    comment: str = ""


@command(CommandKind.RUN_METHOD)
@dataclass(frozen=True)
class RunMethod(Command):
    method: str
    arguments: Dict[str, InstructionValue] = field(default_factory=dict)


@command(CommandKind.BEGIN_LOOP)
@dataclass(frozen=True)
class BeginLoop(Command):
    variable: str
    start: InstructionValue
    end: InstructionValue
    step: Optional[InstructionValue] = None   # None means 1


@command(CommandKind.END_LOOP)
@dataclass(frozen=True)
class EndLoop(Command):
    pass


@command(CommandKind.IF_THEN)
@dataclass(frozen=True)
class IfThen(Command):
    left: InstructionValue
    comparator: Comparator
    right: InstructionValue


@command(CommandKind.END_IF)
@dataclass(frozen=True)
class EndIf(Command):
    pass


@command(CommandKind.WHILE_LOOP)
@dataclass(frozen=True)
class WhileLoop(Command):
    left: InstructionValue
    comparator: Comparator
    right: InstructionValue


@command(CommandKind.END_WHILE)
@dataclass(frozen=True)
class EndWhile(Command):
    pass


@command(CommandKind.MATH_OPERATION)
@dataclass(frozen=True)
class MathOperation(Command):
    variable: str
    operator: MathOperator
    value: InstructionValue


@command(CommandKind.AIR_GAP)
@dataclass(frozen=True)
class AirGap(Command):
    volume: InstructionValue


@command(CommandKind.BLOW_OUT)
@dataclass(frozen=True)
class BlowOut(Command):
    position_head: PositionHead


@command(CommandKind.DELAY)
@dataclass(frozen=True)
class Delay(Command):
    duration: InstructionValue


@command(CommandKind.EXIT_METHOD)
@dataclass(frozen=True)
class ExitMethod(Command):
    pass


@command(CommandKind.HOME)
@dataclass(frozen=True)
class Home(Command):
    pass


@command(CommandKind.LIQUID_LEVEL_DETECT)
@dataclass(frozen=True)
class LiquidLevelDetect(Command):
    position_head: PositionHead
    variable: str


@command(CommandKind.MOVE_LABWARE)
@dataclass(frozen=True)
class MoveLabware(Command):
    source: PositionHead
    destination: PositionHead


@command(CommandKind.PAUSE)
@dataclass(frozen=True)
class Pause(Command):
    message: Optional[InstructionValue] = None


@command(CommandKind.READ_BARCODE)
@dataclass(frozen=True)
class ReadBarcode(Command):
    position_head: PositionHead
    variable: str


@command(CommandKind.RUN_EXTERNAL_PROGRAM)
@dataclass(frozen=True)
class RunExternalProgram(Command):
    path: InstructionValue


@command(CommandKind.SET_TEMPERATURE)
@dataclass(frozen=True)
class SetTemperature(Command):
    temperature: InstructionValue


@command(CommandKind.SHAKE)
@dataclass(frozen=True)
class Shake(Command):
    duration: InstructionValue
    speed: InstructionValue


@command(CommandKind.START_TIMER)
@dataclass(frozen=True)
class StartTimer(Command):
    timer: str


@command(CommandKind.TIP_TOUCH)
@dataclass(frozen=True)
class TipTouch(Command):
    position_head: PositionHead


@command(CommandKind.USER_MESSAGE)
@dataclass(frozen=True)
class UserMessage(Command):
    message: InstructionValue


@command(CommandKind.WAIT_TIMER)
@dataclass(frozen=True)
class WaitTimer(Command):
    timer: str
    duration: InstructionValue


@command(CommandKind.WASH)
@dataclass(frozen=True)
class Wash(Command):
    position_head: PositionHead
    volume: InstructionValue
    cycles: InstructionValue


@command(CommandKind.WRITE_LOG)
@dataclass(frozen=True)
class WriteLog(Command):
    message: InstructionValue


_unregistered = set(CommandKind) - set(COMMAND_TYPES)
if _unregistered:
    raise TypeError(f"Command kinds without a variant: {sorted(k.value for k in _unregistered)}")


# ── Instructions, methods, program ────────────────────────────────────────────

@dataclass(frozen=True)
class Instruction:
    command: Command
    is_comment: bool = False
    text: str = ""            # display text as shown in the authoring tool

    @property
    def display_text(self) -> str:
        if self.text:
            return self.text
        if isinstance(self.command, REM):
            return self.command.comment
        return self.command.kind.value


@dataclass(frozen=True)
class Method:
    method_id: str
    designation: str
    layout_id: str
    local_variables: VariableMap = field(default_factory=dict)
    parameters: VariableMap = field(default_factory=dict)
    instructions: Tuple[Instruction, ...] = ()


class ProgramModel:
    """Read-only view of an ingested program."""

    def __init__(self, start_method: str,
                 methods: Dict[str, Method],
                 layouts: Dict[str, Layout],
                 global_variables: Optional[VariableMap] = None):
        self._start_method = start_method
        self._methods = dict(methods)
        self._layouts = dict(layouts)
        self._globals = dict(global_variables or {})

    def start_method(self) -> str:
        return self._start_method

    def has_method(self, method_id: str) -> bool:
        return method_id in self._methods

    def method(self, method_id: str) -> Optional[Method]:
        return self._methods.get(method_id)

    def instruction(self, method_id: str, line: int) -> Optional[Instruction]:
        m = self._methods.get(method_id)
        if m is None or line < 0 or line >= len(m.instructions):
            return None
        return m.instructions[line]

    def instruction_count(self, method_id: str) -> Optional[int]:
        m = self._methods.get(method_id)
        return len(m.instructions) if m is not None else None

    def layout_of_method(self, method_id: str) -> Optional[str]:
        m = self._methods.get(method_id)
        return m.layout_id if m is not None else None

    def parameters_of_method(self, method_id: str) -> Optional[VariableMap]:
        m = self._methods.get(method_id)
        return m.parameters if m is not None else None

    def local_variables_of_method(self, method_id: str) -> Optional[VariableMap]:
        m = self._methods.get(method_id)
        return m.local_variables if m is not None else None

    def global_variables(self) -> VariableMap:
        return self._globals

    def layouts(self) -> Dict[str, Layout]:
        return self._layouts

    def ids_methods(self) -> List[str]:
        return list(self._methods)

    def ids_layouts(self) -> List[str]:
        return list(self._layouts)

    def name_method(self, method_id: str) -> Optional[str]:
        m = self._methods.get(method_id)
        return m.designation if m is not None else None

    def name_layout(self, layout_id: str) -> Optional[str]:
        lay = self._layouts.get(layout_id)
        return lay.designation if lay is not None else None

    def summary(self) -> dict:
        return {
            "start_method": self._start_method,
            "methods": [
                {
                    "id": m.method_id,
                    "designation": m.designation,
                    "layout": m.layout_id,
                    "n_instructions": len(m.instructions),
                    "parameters": [v.to_dict() for v in m.parameters.values()],
                    "local_variables": [v.to_dict() for v in m.local_variables.values()],
                }
                for m in self._methods.values()
            ],
            "layouts": [lay.to_dict() for lay in self._layouts.values()],
            "global_variables": [v.to_dict() for v in self._globals.values()],
        }


# ── Ingestion ─────────────────────────────────────────────────────────────────

def load_program_json(text: str) -> ProgramModel:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProgramFormatError("$", f"invalid JSON ({e})") from e
    return load_program(data)


def load_program(data: dict) -> ProgramModel:
    """Build a ProgramModel from a JSON-compatible document."""
    _expect(data, dict, "$")
    start = _require(data, "start_method", "$")
    _expect(start, str, "$.start_method")

    global_vars = _variables(data.get("global_variables", []), "$.global_variables")

    layouts: Dict[str, Layout] = {}
    for i, raw in enumerate(_list(data.get("layouts", []), "$.layouts")):
        path = f"$.layouts[{i}]"
        _expect(raw, dict, path)
        layout_id = _require(raw, "id", path)
        _expect(layout_id, str, f"{path}.id")
        positions = raw.get("positions", {})
        _expect(positions, dict, f"{path}.positions")
        for pid, label in positions.items():
            _expect(label, str, f"{path}.positions.{pid}")
        layouts[layout_id] = Layout(layout_id, _designation(raw, layout_id, path), dict(positions))

    methods: Dict[str, Method] = {}
    for i, raw in enumerate(_list(data.get("methods", []), "$.methods")):
        path = f"$.methods[{i}]"
        _expect(raw, dict, path)
        method_id = _require(raw, "id", path)
        _expect(method_id, str, f"{path}.id")
        layout_id = _require(raw, "layout", path)
        _expect(layout_id, str, f"{path}.layout")
        if method_id in methods:
            raise ProgramFormatError(f"{path}.id", f"duplicate method id {method_id!r}")
        instructions = tuple(
            _instruction(instr, f"{path}.instructions[{j}]")
            for j, instr in enumerate(_list(raw.get("instructions", []), f"{path}.instructions"))
        )
        methods[method_id] = Method(
            method_id=method_id,
            designation=_designation(raw, method_id, path),
            layout_id=layout_id,
            local_variables=_variables(raw.get("local_variables", []), f"{path}.local_variables"),
            parameters=_variables(raw.get("parameters", []), f"{path}.parameters"),
            instructions=instructions,
        )

    logger.info("Loaded program: %d methods, %d layouts, %d globals",
                len(methods), len(layouts), len(global_vars))
    return ProgramModel(start, methods, layouts, global_vars)


def _instruction(raw: Any, path: str) -> Instruction:
    _expect(raw, dict, path)
    kind_name = _require(raw, "command", path)
    try:
        kind = CommandKind(kind_name)
    except ValueError:
        raise ProgramFormatError(f"{path}.command", f"unknown command {kind_name!r}") from None
    cls = COMMAND_TYPES[kind]
    hints = typing.get_type_hints(cls)
    kwargs = {}
    for f in fields(cls):
        if f.name not in raw:
            continue
        kwargs[f.name] = _operand_field(hints[f.name], raw[f.name], f"{path}.{f.name}")
    try:
        cmd = cls(**kwargs)
    except TypeError as e:
        raise ProgramFormatError(path, f"{kind.value}: {e}") from None
    comment = raw.get("comment", False)
    _expect(comment, bool, f"{path}.comment")
    text = raw.get("text", "")
    _expect(text, str, f"{path}.text")
    return Instruction(cmd, is_comment=comment, text=text)


def _operand_field(hint: Any, raw: Any, path: str) -> Any:
    if typing.get_origin(hint) is Union:
        # Optional[X]
        hint = next(a for a in typing.get_args(hint) if a is not type(None))
        if raw is None:
            return None
    if hint is InstructionValue:
        return _operand(raw, path)
    if hint is PositionHead:
        _expect(raw, dict, path)
        return PositionHead(
            deck_parameter=_deck_parameter(raw, path),
            location=_operand(raw["location"], f"{path}.location") if "location" in raw else None,
            z_offset=_operand(raw["z_offset"], f"{path}.z_offset") if "z_offset" in raw else None,
        )
    if hint is LoadEjectTipsHead:
        _expect(raw, dict, path)
        return LoadEjectTipsHead(
            deck_parameter=_deck_parameter(raw, path),
            location=_operand(raw["location"], f"{path}.location") if "location" in raw else None,
        )
    if hint in (Comparator, MathOperator):
        try:
            return hint(raw)
        except ValueError:
            raise ProgramFormatError(path, f"unknown {hint.__name__} {raw!r}") from None
    if typing.get_origin(hint) is dict:
        _expect(raw, dict, path)
        return {k: _operand(v, f"{path}.{k}") for k, v in raw.items()}
    _expect(raw, hint, path)
    return raw


def _operand(raw: Any, path: str) -> InstructionValue:
    if not isinstance(raw, dict):
        # bare literal shorthand
        raw = {"value": raw}
    vtype = _value_type(raw.get("type"), f"{path}.type")
    variable = raw.get("variable")
    if variable is not None:
        _expect(variable, str, f"{path}.variable")
    if "value" not in raw:
        if variable is None:
            raise ProgramFormatError(path, "operand needs a 'value' or a 'variable'")
        return InstructionValue.bound(variable, vtype or ValueType.FLOAT)
    try:
        direct = VariableValue.of(raw["value"], vtype)
    except ValueError as e:
        raise ProgramFormatError(f"{path}.value", str(e)) from None
    return InstructionValue(direct, variable)


def _variables(raw: Any, path: str) -> VariableMap:
    result: VariableMap = {}
    for i, v in enumerate(_list(raw, path)):
        vpath = f"{path}[{i}]"
        _expect(v, dict, vpath)
        vid = _require(v, "id", vpath)
        _expect(vid, str, f"{vpath}.id")
        vtype = _value_type(v.get("type"), f"{vpath}.type")
        raw_value = _require(v, "value", vpath)
        try:
            value = VariableValue.of(raw_value, vtype)
        except ValueError as e:
            raise ProgramFormatError(f"{vpath}.value", str(e)) from None
        result[vid] = Variable(vid, _designation(v, vid, vpath), value)
    return result


def _value_type(raw: Any, path: str) -> Optional[ValueType]:
    if raw is None:
        return None
    try:
        return ValueType(raw)
    except ValueError:
        raise ProgramFormatError(path, f"unknown value type {raw!r}") from None


def _deck_parameter(head: dict, path: str) -> Optional[str]:
    param = head.get("deck_parameter")
    if param is not None:
        _expect(param, str, f"{path}.deck_parameter")
    return param


def _designation(d: dict, default: str, path: str) -> str:
    designation = d.get("designation", default)
    _expect(designation, str, f"{path}.designation")
    return designation


def _require(d: dict, key: str, path: str) -> Any:
    if key not in d:
        raise ProgramFormatError(path, f"missing '{key}'")
    return d[key]


def _list(raw: Any, path: str) -> list:
    _expect(raw, list, path)
    return raw


def _expect(raw: Any, typ: Any, path: str):
    if not isinstance(raw, typ):
        name = getattr(typ, "__name__", str(typ))
        raise ProgramFormatError(path, f"expected {name}, got {type(raw).__name__}")
