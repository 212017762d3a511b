import pytest

from lab_replay.deck import Layout
from lab_replay.emulator import Emulator
from lab_replay.errors import InvalidLoopStep, TypeMismatch, UnmatchedBlock
from lab_replay.program import (
    REM, Aspirate, BeginLoop, Comparator, Dispense, EndIf, EndLoop, EndWhile,
    IfThen, LoadTips, MathOperation, MathOperator, RunMethod, ValueType,
    WhileLoop,
)

from tests.helpers import MAIN, instr, lit, method, pool, pos, program, ref, tips, var


def _remarks(emu):
    return [a.execute.comment for a in emu.history if a.execute.name == "REM"]


# -----------------------------------------------------
# Run Method
# -----------------------------------------------------

def test_call_pushes_and_pops_frames():
    sub = method("sub", [REM("in sub")])
    emu = Emulator(program([REM("before"), RunMethod("sub"), REM("after")], sub))
    emu.next()
    emu.next()
    assert emu.depth == 2
    assert emu.current_frame.method_id == "sub"
    emu.next()
    # sub is exhausted: popped lazily on the next step
    action = emu.next()
    assert emu.depth == 1
    assert action.execute.comment == "after"
    assert emu.next() is None
    assert _remarks(emu) == ["before", "in sub", "after"]


def test_nested_calls_cascade_pop():
    inner = method("inner", [REM("inner")])
    middle = method("middle", [RunMethod("inner")])
    emu = Emulator(program([RunMethod("middle")], middle, inner))
    emu.next()
    emu.next()
    emu.next()
    assert emu.depth == 3
    # inner, middle and main all finish in one step
    assert emu.next() is None
    assert emu.done()


def test_parameters_are_bound_by_value():
    sub = method("sub", [
        MathOperation("n", MathOperator.PLUS, lit(100)),
        REM("done"),
    ], params=pool(var("n", 0)))
    emu = Emulator(program(
        [RunMethod("sub", {"n": ref("count", ValueType.INT)})],
        sub,
        local=pool(var("count", 5)),
    ))
    emu.next()      # call
    emu.next()      # n += 100 inside sub
    assert emu.variable("n").value == 105
    emu.run()
    assert emu.done()
    # caller's variable untouched
    assert emu.history[0].execute.arguments["n"].value == 5


def test_caller_local_unchanged_after_call():
    sub = method("sub", [MathOperation("n", MathOperator.ASSIGN, lit(-1))], params=pool(var("n", 0)))
    emu = Emulator(program(
        [RunMethod("sub", {"n": ref("count", ValueType.INT)}), REM("check")],
        sub,
        local=pool(var("count", 5)),
    ))
    emu.next()
    emu.next()
    emu.next()
    assert emu.current_frame.method_id == MAIN
    assert emu.variable("count").value == 5


def test_undeclared_argument_defaults():
    sub = method("sub", [REM("x")], params=pool(var("n", 42)))
    emu = Emulator(program([RunMethod("sub")], sub))
    emu.next()
    assert emu.variable("n").value == 42


def test_callee_uses_its_own_layout():
    side = Layout("layout-side", "SideLayout", {"p-src": "E1", "p-tips": "E2"})
    sub = method("sub", [Aspirate(pos("p-src"), lit(10.0))], layout="layout-side")
    emu = Emulator(program([
        LoadTips(tips("p-tips")),
        RunMethod("sub"),
        Dispense(pos("p-dst"), dispense_all=True),
    ], sub, layouts=[side]))
    emu.run()
    locations = [a.execute.location for a in emu.history if hasattr(a.execute, "location")]
    assert locations == ["C3", "E1", "B4"]


def test_locals_are_per_activation():
    sub = method("sub", [MathOperation("k", MathOperator.PLUS, lit(1))], local=pool(var("k", 0)))
    emu = Emulator(program([RunMethod("sub"), RunMethod("sub")], sub))
    emu.run()
    assigned = [a.execute.value.value for a in emu.history if a.execute.name == "MathOperation"]
    assert assigned == [1, 1]


def test_globals_are_shared_across_frames():
    sub = method("sub", [MathOperation("g", MathOperator.PLUS, lit(2))])
    prog = program([RunMethod("sub"), RunMethod("sub"), REM("end")], sub, globals_=pool(var("g", 1)))
    emu = Emulator(prog)
    emu.run()
    assert emu.global_variables["g"].value.value == 5
    # the program model itself is not modified
    assert prog.global_variables()["g"].value.value == 1


# -----------------------------------------------------
# Loops
# -----------------------------------------------------

def _loop_program(start, end, step=None):
    return program([
        BeginLoop("i", lit(start), lit(end), lit(step) if step is not None else None),
        MathOperation("total", MathOperator.PLUS, ref("i", ValueType.INT)),
        EndLoop(),
        REM("after"),
    ], local=pool(var("i", 0), var("total", 0)))


@pytest.mark.parametrize("start, end, step, total", [
    (1, 3, None, 6),
    (1, 1, None, 1),
    (0, 10, 5, 15),
    (3, 1, -1, 6),
])
def test_loop_iterations(start, end, step, total):
    emu = Emulator(_loop_program(start, end, step))
    emu.run(max_steps=100)
    sums = [a for a in emu.history if a.execute.name == "MathOperation"]
    assert sums[-1].execute.value.value == total


def test_loop_runs_body_each_time():
    emu = Emulator(_loop_program(1, 3))
    emu.run()
    lines = [a.line for a in emu.history]
    assert lines == [0, 1, 2, 1, 2, 1, 2, 3]


def test_zero_trip_loop_skips_body():
    emu = Emulator(_loop_program(5, 1))
    emu.run()
    assert [a.line for a in emu.history] == [0, 3]


def test_loop_index_after_completion():
    prog = program([
        BeginLoop("i", lit(1), lit(3)),
        EndLoop(),
        REM("after"),
    ], local=pool(var("i", 0)))
    emu = Emulator(prog)
    emu.run(max_steps=5)
    assert emu.history[-1].execute.comment == "after"
    assert [a.line for a in emu.history] == [0, 1, 1, 1, 2]


def test_nested_loops():
    prog = program([
        BeginLoop("i", lit(1), lit(2)),
        BeginLoop("j", lit(1), lit(3)),
        MathOperation("count", MathOperator.PLUS, lit(1)),
        EndLoop(),
        EndLoop(),
    ], local=pool(var("i", 0), var("j", 0), var("count", 0)))
    emu = Emulator(prog)
    emu.run(max_steps=100)
    counts = [a.execute.value.value for a in emu.history if a.execute.name == "MathOperation"]
    assert counts[-1] == 6


def test_commented_loop_marker_is_ignored_for_matching():
    prog = program([
        BeginLoop("i", lit(5), lit(1)),
        instr(EndLoop(), comment=True),
        REM("body"),
        EndLoop(),
        REM("after"),
    ], local=pool(var("i", 0)))
    emu = Emulator(prog)
    emu.run()
    assert [a.line for a in emu.history] == [0, 4]


def test_loop_step_zero():
    emu = Emulator(_loop_program(1, 3, 0))
    with pytest.raises(InvalidLoopStep) as exc:
        emu.next()
    assert exc.value.line == 0


def test_loop_step_must_fit_index_type():
    prog = program([
        BeginLoop("i", lit(1), lit(3), lit(0.5)),
        REM("body"),
        EndLoop(),
    ], local=pool(var("i", 0)))
    emu = Emulator(prog)
    with pytest.raises(TypeMismatch) as exc:
        emu.next()
    assert exc.value.line == 0
    assert emu.history == ()


def test_loop_bounds_must_be_numeric():
    prog = program([BeginLoop("i", lit(1), lit("ten")), EndLoop()], local=pool(var("i", 0)))
    with pytest.raises(TypeMismatch):
        Emulator(prog).next()


def test_unmatched_loop():
    prog = program([BeginLoop("i", lit(1), lit(2)), REM("no end")], local=pool(var("i", 0)))
    with pytest.raises(UnmatchedBlock) as exc:
        Emulator(prog).next()
    assert exc.value.marker == "EndLoop"


def test_stray_end_loop():
    with pytest.raises(UnmatchedBlock) as exc:
        Emulator(program([EndLoop()])).next()
    assert exc.value.marker == "BeginLoop"


# -----------------------------------------------------
# If / While
# -----------------------------------------------------

@pytest.mark.parametrize("value, expected", [
    (5, ["inside", "after"]),
    (1, ["after"]),
])
def test_if_then(value, expected):
    prog = program([
        IfThen(ref("v", ValueType.INT), Comparator.GREATER_THAN, lit(3)),
        REM("inside"),
        EndIf(),
        REM("after"),
    ], local=pool(var("v", value)))
    emu = Emulator(prog)
    emu.run()
    assert _remarks(emu) == expected


def test_nested_if_skips_whole_block():
    prog = program([
        IfThen(lit(1), Comparator.EQUALS, lit(2)),
        IfThen(lit(1), Comparator.EQUALS, lit(1)),
        REM("inner"),
        EndIf(),
        REM("outer"),
        EndIf(),
        REM("after"),
    ])
    emu = Emulator(prog)
    emu.run()
    assert _remarks(emu) == ["after"]


def test_while_loop():
    prog = program([
        WhileLoop(ref("n", ValueType.INT), Comparator.LESS_THAN, lit(3)),
        MathOperation("n", MathOperator.PLUS, lit(1)),
        EndWhile(),
        REM("after"),
    ], local=pool(var("n", 0)))
    emu = Emulator(prog)
    emu.run(max_steps=50)
    assert [a.line for a in emu.history] == [0, 1, 2, 0, 1, 2, 0, 1, 2, 0, 3]


def test_while_false_initially():
    prog = program([
        WhileLoop(lit(False), Comparator.EQUALS, lit(True)),
        REM("never"),
        EndWhile(),
    ])
    emu = Emulator(prog)
    emu.run()
    assert _remarks(emu) == []


def test_comparator_type_mismatch():
    prog = program([
        IfThen(lit("a"), Comparator.EQUALS, lit(1)),
        EndIf(),
    ])
    with pytest.raises(TypeMismatch):
        Emulator(prog).next()


# -----------------------------------------------------
# Math
# -----------------------------------------------------

def test_math_operations():
    prog = program([
        MathOperation("x", MathOperator.ASSIGN, lit(10)),
        MathOperation("x", MathOperator.MINUS, lit(4)),
        MathOperation("label", MathOperator.PLUS, lit("-2")),
    ], local=pool(var("x", 0), var("label", "plate")))
    emu = Emulator(prog)
    emu.next()
    emu.next()
    assert emu.variable("x").value == 6
    emu.next()
    assert emu.variable("label").value == "plate-2"


def test_volume_variable_drives_aspirate():
    prog = program([
        LoadTips(tips("p-tips")),
        MathOperation("vol", MathOperator.ASSIGN, lit(20.0)),
        BeginLoop("i", lit(1), lit(3)),
        Aspirate(pos("p-src"), ref("vol")),
        EndLoop(),
    ], local=pool(var("vol", 0.0), var("i", 0)))
    emu = Emulator(prog)
    emu.run()
    assert emu.machine.tip_volume == 60.0
