"""Small builders for hand-written test programs."""
from lab_replay.deck import Layout
from lab_replay.program import (
    Instruction, InstructionValue, LoadEjectTipsHead, Method, PositionHead,
    ProgramModel, ValueType, Variable, VariableValue,
)

MAIN = "main"
MAIN_LAYOUT = Layout("layout-main", "MainLayout", {
    "p-tips": "C3",
    "p-src": "C4",
    "p-dst": "B4",
    "p-waste": "D5",
})


def pos(param, z=None):
    return PositionHead(deck_parameter=param, z_offset=z)


def tips(param):
    return LoadEjectTipsHead(deck_parameter=param)


def lit(value, value_type=None):
    return InstructionValue.literal(value, value_type)


def ref(variable_id, value_type=ValueType.FLOAT):
    return InstructionValue.bound(variable_id, value_type)


def var(variable_id, value, value_type=None):
    return Variable(variable_id, variable_id, VariableValue.of(value, value_type))


def pool(*variables):
    return {v.variable_id: v for v in variables}


def instr(command, comment=False, text=""):
    return Instruction(command, is_comment=comment, text=text)


def method(method_id, commands, layout="layout-main", local=None, params=None):
    instructions = tuple(c if isinstance(c, Instruction) else Instruction(c) for c in commands)
    return Method(method_id, method_id.title(), layout, local or {}, params or {}, instructions)


def program(commands, *others, local=None, params=None, globals_=None, layouts=None):
    methods = {MAIN: method(MAIN, commands, local=local, params=params)}
    for m in others:
        methods[m.method_id] = m
    all_layouts = {MAIN_LAYOUT.layout_id: MAIN_LAYOUT}
    for lay in layouts or ():
        all_layouts[lay.layout_id] = lay
    return ProgramModel(MAIN, methods, all_layouts, globals_ or {})
