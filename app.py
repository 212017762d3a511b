"""
Lab Program Replay — Flask Explorer
===================================
Loads a program document and exposes the emulator as JSON endpoints:
step one instruction, run to completion, inspect machine state and history.
"""
from __future__ import annotations
import sys
import os
import threading
sys.path.insert(0, os.path.dirname(__file__))

from flask import Flask, request, jsonify
from typing import Optional

from lab_replay import config
from lab_replay.emulator import Emulator
from lab_replay.errors import EmulatorError, MachineError, ProgramFormatError
from lab_replay.program import ProgramModel, load_program

app = Flask(__name__)

# ── In-memory state (single-session) ─────────────────────────────────────────
_program: Optional[ProgramModel] = None
_emulator: Optional[Emulator] = None
_lock = threading.Lock()


# ── Errors ───────────────────────────────────────────────────────────────────

@app.errorhandler(ProgramFormatError)
def bad_program(e: ProgramFormatError):
    return jsonify(e.to_dict()), 400


@app.errorhandler(EmulatorError)
def emulation_failed(e: EmulatorError):
    status = 409 if isinstance(e, MachineError) else 400
    return jsonify(e.to_dict()), status


def _no_program():
    return jsonify({"error": "No program loaded"}), 404


# ── Program API ──────────────────────────────────────────────────────────────

@app.route("/api/program", methods=["POST"])
def upload_program():
    """Load a program document and start a fresh emulation."""
    global _program, _emulator
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "Request body must be a JSON program document"}), 400
    program = load_program(data)
    with _lock:
        _emulator = Emulator(program)
        _program = program
        return jsonify({"ok": True, "program": program.summary(), "state": _state()})


@app.route("/api/program", methods=["GET"])
def get_program():
    if _program is None:
        return _no_program()
    return jsonify(_program.summary())


# ── Emulator API ─────────────────────────────────────────────────────────────

@app.route("/api/emulator/reset", methods=["POST"])
def reset_emulator():
    global _emulator
    if _program is None:
        return _no_program()
    with _lock:
        _emulator = Emulator(_program)
        return jsonify({"ok": True, "state": _state()})


@app.route("/api/emulator/step", methods=["POST"])
def step_emulator():
    """Execute a single instruction."""
    if _emulator is None:
        return _no_program()
    with _lock:
        action = _emulator.next()
        return jsonify({
            "action": action.to_dict() if action else None,
            "state": _state(),
        })


@app.route("/api/emulator/run", methods=["POST"])
def run_emulator():
    """Run to completion (bounded by max_steps)."""
    if _emulator is None:
        return _no_program()
    d = request.get_json(silent=True) or {}
    max_steps = d.get("max_steps", config.get_max_steps())
    if isinstance(max_steps, bool) or not isinstance(max_steps, int) or max_steps < 1:
        return jsonify({"error": "max_steps must be a positive integer"}), 400
    with _lock:
        actions = _emulator.run(max_steps=max_steps)
        return jsonify({
            "actions": [a.to_dict() for a in actions],
            "n_actions": len(actions),
            "state": _state(),
        })


@app.route("/api/emulator/state", methods=["GET"])
def emulator_state():
    if _emulator is None:
        return _no_program()
    return jsonify(_state())


@app.route("/api/emulator/history", methods=["GET"])
def emulator_history():
    if _emulator is None:
        return _no_program()
    history = _emulator.history
    return jsonify({
        "n_actions": len(history),
        "actions": [a.to_dict() for a in history],
    })


def _state() -> dict:
    return {
        "done": _emulator.done(),
        "depth": _emulator.depth,
        "frames": [f.to_dict() for f in _emulator.frames],
        "machine": _emulator.machine_state.to_dict(),
        "n_actions": len(_emulator.history),
    }


if __name__ == "__main__":
    config.configure_logging()
    app.run(debug=config.get_debug(), port=config.get_port())
