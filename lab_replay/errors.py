"""
Error hierarchy for the replay engine.

Every failure the engine can report is a subclass of ``EmulatorError`` so
callers can catch the whole family or match on a specific kind. The driver
stamps the originating ``method`` / ``line`` onto an error before it leaves
``Emulator.next()``.
"""
from __future__ import annotations
from typing import Any, Optional


class EmulatorError(Exception):
    """Base class for all replay errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message
        self.method: Optional[str] = None
        self.line: Optional[int] = None

    @property
    def kind(self) -> str:
        return type(self).__name__

    def locate(self, method: str, line: int) -> "EmulatorError":
        """Attach the (method, line) the error came from, keeping the first one set."""
        if self.method is None:
            self.method = method
            self.line = line
        return self

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "kind": self.kind,
            "method": self.method,
            "line": self.line,
        }

    def __str__(self) -> str:
        if self.method is None:
            return self.message
        return f"{self.message} (method {self.method}, line {self.line})"


# ── Engine / program-authoring errors ────────────────────────────────────────

class EmptyExecutionStack(EmulatorError):
    """The frame stack was manipulated out of lock-step with the driver."""

    def __init__(self):
        super().__init__("emulator stack is unexpectedly empty")


class UnknownMethod(EmulatorError):
    def __init__(self, method_id: str):
        super().__init__(f"unknown method ({method_id})")
        self.method_id = method_id


class UnknownInstruction(EmulatorError):
    def __init__(self, method_id: str, line: int):
        super().__init__(f"instruction line {line} does not exist for method {method_id}")
        self.method_id = method_id
        self.instruction_line = line


class UnknownLayout(EmulatorError):
    def __init__(self, layout_id: str):
        super().__init__(f"unknown layout ({layout_id})")
        self.layout_id = layout_id


class UnknownLayoutPosition(EmulatorError):
    def __init__(self, position_id: str):
        super().__init__(f"unknown layout position variable ({position_id})")
        self.position_id = position_id


class UnknownVariable(EmulatorError):
    def __init__(self, variable_id: str):
        super().__init__(f"unknown variable ({variable_id})")
        self.variable_id = variable_id


class TypeMismatch(EmulatorError):
    def __init__(self, expected: Any, found: Any):
        super().__init__(f"type mismatch: expected {expected}, found {found}")
        self.expected = expected
        self.found = found


class UnsupportedCommand(EmulatorError):
    def __init__(self, command: str, message: str = ""):
        super().__init__(message or f"unsupported command {command}")
        self.command = command


class UnsupportedPosition(UnsupportedCommand):
    """A position operand without a deck parameter (literal deck location)."""

    def __init__(self, command: str = "PositionHead"):
        super().__init__(command, f"{command}: positions without a deck parameter are not supported")


class UnmatchedBlock(EmulatorError):
    def __init__(self, method_id: str, line: int, marker: str):
        super().__init__(f"no matching {marker} for line {line} of method {method_id}")
        self.method_id = method_id
        self.block_line = line
        self.marker = marker


class InvalidLoopStep(EmulatorError):
    def __init__(self):
        super().__init__("loop step must not be zero")


class StepLimitExceeded(EmulatorError):
    def __init__(self, max_steps: int):
        super().__init__(f"program did not finish within {max_steps} steps")
        self.max_steps = max_steps


# ── Machine errors ───────────────────────────────────────────────────────────

class MachineError(EmulatorError):
    """Physical-invariant violation reported by a Machine."""


class NeedTips(MachineError):
    def __init__(self):
        super().__init__("need tips on gantry to do this")


class NotEnoughVolume(MachineError):
    def __init__(self, requested: float, held: float):
        super().__init__(f"not enough volume in tips: requested {requested}, holding {held}")
        self.requested = requested
        self.held = held


class TipsAlreadyLoaded(MachineError):
    def __init__(self):
        super().__init__("trying to load tips twice")


class InvalidVolume(MachineError):
    def __init__(self, volume: float):
        super().__init__(f"volume must be finite and not negative (got {volume})")
        self.volume = volume


# ── Ingestion ────────────────────────────────────────────────────────────────

class ProgramFormatError(ValueError):
    """Raised when a serialized program document is malformed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path

    def to_dict(self) -> dict:
        return {"error": str(self), "kind": type(self).__name__, "method": None, "line": None}
