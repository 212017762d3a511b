# Lab Program Replay — Layered Architecture
# program.py  — immutable program model, command vocabulary, JSON ingestion
# deck.py     — deck layouts and location labels
# machine.py  — execute payloads, Machine interface, simulated gantry
# resolver.py — variable / deck-parameter resolution for the active frame
# actions.py  — instruction -> resolved Action builder
# emulator.py — call-stack driver (step / run)

from lab_replay.actions import Action
from lab_replay.emulator import Emulator, ExecutionFrame
from lab_replay.machine import Machine, MachineState, SimulatedMachine
from lab_replay.program import ProgramModel, load_program, load_program_json

__all__ = [
    "Action",
    "Emulator",
    "ExecutionFrame",
    "Machine",
    "MachineState",
    "ProgramModel",
    "SimulatedMachine",
    "load_program",
    "load_program_json",
]
