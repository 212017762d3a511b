import pytest

from lab_replay.actions import SUPPORTED, UNSUPPORTED, Action, ActionBuilder
from lab_replay.emulator import ExecutionFrame
from lab_replay.errors import UnknownMethod, UnknownVariable, UnsupportedCommand
from lab_replay.machine import (
    ExecAspirate, ExecCall, ExecDispense, ExecEjectTips, ExecLoadTips, ExecMix,
    ExecRemark,
)
from lab_replay.program import (
    REM, Aspirate, CommandKind, Delay, Dispense, EjectTips, Home, LoadTips,
    Mix, MoveLabware, RunMethod, ValueType, VariableValue, WriteLog,
)
from lab_replay.resolver import Resolver

from tests.helpers import MAIN, instr, lit, method, pool, pos, program, ref, tips, var


def _build(prog, instruction, line=0, local=None):
    frame = ExecutionFrame(MAIN, "layout-main", local_variables=local or {})
    resolver = Resolver(frame, dict(prog.global_variables()), prog.layouts())
    return ActionBuilder(prog).build(MAIN, line, instruction, resolver)


@pytest.fixture
def prog():
    return program([])


def test_every_command_kind_has_a_decision():
    assert SUPPORTED | UNSUPPORTED == set(CommandKind)
    assert not SUPPORTED & UNSUPPORTED


@pytest.mark.parametrize("command, expected", [
    (Aspirate(pos("p-src"), lit(100.0)), ExecAspirate("C4", 100.0)),
    (Dispense(pos("p-dst"), lit(40.0)), ExecDispense("B4", 40.0)),
    (Dispense(pos("p-dst"), lit(40.0), dispense_all=True), ExecDispense("B4", None)),
    (Dispense(pos("p-dst")), ExecDispense("B4", None)),
    (LoadTips(tips("p-tips")), ExecLoadTips("C3")),
    (EjectTips(tips("p-waste")), ExecEjectTips("D5")),
    (Mix(pos("p-dst")), ExecMix("B4")),
    (REM("prime the tips"), ExecRemark("prime the tips")),
])
def test_supported_liquid_handling(prog, command, expected):
    action = _build(prog, instr(command), line=3)
    assert action == Action(MAIN, 3, True, expected)


def test_volume_from_variable(prog):
    action = _build(prog, instr(Aspirate(pos("p-src"), ref("vol"))), local=pool(var("vol", 75.0)))
    assert action.execute == ExecAspirate("C4", 75.0)


def test_z_offset_resolved(prog):
    action = _build(prog, instr(Aspirate(pos("p-src", z=lit(1.5)), lit(10.0))))
    assert action.execute.z_offset == 1.5


@pytest.mark.parametrize("command", [
    Delay(lit(5, ValueType.DURATION)),
    Home(),
    MoveLabware(pos("p-src"), pos("p-dst")),
    WriteLog(lit("hello")),
])
def test_unsupported_commands_are_reported(prog, command):
    with pytest.raises(UnsupportedCommand) as exc:
        _build(prog, instr(command))
    assert exc.value.command == command.kind.value


def test_comment_is_never_executable(prog):
    # even an unsupported command is fine when commented out
    action = _build(prog, instr(Home(), comment=True, text="home the arm"))
    assert not action.executable
    assert action.execute == ExecRemark("home the arm")


def test_commented_aspirate_not_resolved(prog):
    action = _build(prog, instr(Aspirate(pos("p-missing"), ref("missing")), comment=True))
    assert not action.executable
    assert action.execute == ExecRemark("Aspirate")


def test_run_method_copies_arguments():
    sub = method("sub", [], params=pool(var("n", 0), var("vol", 0.0)))
    prog = program([], sub)
    cmd = RunMethod("sub", {"n": ref("count", ValueType.INT), "vol": lit(5)})
    action = _build(prog, instr(cmd), local=pool(var("count", 4)))
    assert action.execute == ExecCall("sub", {
        "n": VariableValue(ValueType.INT, 4),
        "vol": VariableValue(ValueType.FLOAT, 5.0),
    })


def test_run_method_unknown_callee(prog):
    with pytest.raises(UnknownMethod):
        _build(prog, instr(RunMethod("ghost")))


def test_run_method_unknown_parameter():
    prog = program([], method("sub", []))
    with pytest.raises(UnknownVariable):
        _build(prog, instr(RunMethod("sub", {"bogus": lit(1)})))


def test_action_to_dict(prog):
    action = _build(prog, instr(Aspirate(pos("p-src"), lit(100.0))), line=2)
    assert action.to_dict() == {
        "method": MAIN,
        "line": 2,
        "executable": True,
        "execute": {"command": "Aspirate", "location": "C4", "volume": 100.0, "z_offset": 0.0},
    }
