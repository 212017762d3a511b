"""
Machine — hardware capability & simulation
==========================================
An ``Execute`` payload is a hardware-level operation with every operand
already resolved. A ``Machine`` turns payloads into primitive operations:

  ASPIRATE    – move to a location, draw ``volume`` into the tips
  DISPENSE    – move to a location, deliver ``volume`` (None = everything held)
  LOAD_TIPS   – move to a tip rack, mount tips
  EJECT_TIPS  – move to a waste/rack position, drop tips
  MIX         – move to a location (no fluidic effect)
  REMARK      – no-op carrying display text

Flow payloads (calls, loops, branches, assignments) are produced by the same
builder but only affect the emulator; machines ignore them.

``SimulatedMachine`` tracks:
  - current deck location
  - whether tips are mounted
  - the volume currently held in the tips
and enforces the physical invariants (tips before liquid handling, no double
tip load, no dispensing more than is held).
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, Optional, Tuple
import logging
import math

from lab_replay.errors import (
    InvalidVolume, NeedTips, NotEnoughVolume, TipsAlreadyLoaded,
)
from lab_replay.program import VariableValue

logger = logging.getLogger(__name__)

# Float slack when comparing requested and held volume (µL)
VOLUME_TOLERANCE = 1e-9


# ── Execute payloads ──────────────────────────────────────────────────────────

def _plain(value: Any) -> Any:
    if isinstance(value, VariableValue):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


@dataclass(frozen=True)
class Execute:
    name: ClassVar[str] = "Execute"

    @property
    def jump(self) -> Optional[int]:
        """Line to continue at instead of the next one (flow payloads only)."""
        return None

    @property
    def writes(self) -> Optional[Tuple[str, VariableValue]]:
        """(variable id, new value) this payload assigns, if any."""
        return None

    def to_dict(self) -> dict:
        d = {"command": self.name}
        for f in fields(self):
            d[f.name] = _plain(getattr(self, f.name))
        return d


@dataclass(frozen=True)
class ExecAspirate(Execute):
    name: ClassVar[str] = "Aspirate"
    location: str
    volume: float
    z_offset: float = 0.0


@dataclass(frozen=True)
class ExecDispense(Execute):
    name: ClassVar[str] = "Dispense"
    location: str
    volume: Optional[float] = None     # None: dispense everything held
    z_offset: float = 0.0


@dataclass(frozen=True)
class ExecLoadTips(Execute):
    name: ClassVar[str] = "LoadTips"
    location: str


@dataclass(frozen=True)
class ExecEjectTips(Execute):
    name: ClassVar[str] = "EjectTips"
    location: str


@dataclass(frozen=True)
class ExecMix(Execute):
    name: ClassVar[str] = "Mix"
    location: str
    z_offset: float = 0.0


@dataclass(frozen=True)
class ExecRemark(Execute):
    name: ClassVar[str] = "REM"
    comment: str = ""


@dataclass(frozen=True)
class ExecCall(Execute):
    name: ClassVar[str] = "RunMethod"
    method: str
    arguments: Dict[str, VariableValue] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecAssign(Execute):
    name: ClassVar[str] = "MathOperation"
    variable: str
    value: VariableValue

    @property
    def writes(self):
        return self.variable, self.value


@dataclass(frozen=True)
class ExecBeginLoop(Execute):
    name: ClassVar[str] = "BeginLoop"
    variable: str
    value: VariableValue
    enter: bool
    end_line: int

    @property
    def jump(self):
        return None if self.enter else self.end_line + 1

    @property
    def writes(self):
        return self.variable, self.value


@dataclass(frozen=True)
class ExecEndLoop(Execute):
    name: ClassVar[str] = "EndLoop"
    variable: str
    value: VariableValue
    repeat: bool
    begin_line: int

    @property
    def jump(self):
        return self.begin_line + 1 if self.repeat else None

    @property
    def writes(self):
        return self.variable, self.value


@dataclass(frozen=True)
class ExecIf(Execute):
    name: ClassVar[str] = "IfThen"
    passed: bool
    end_line: int

    @property
    def jump(self):
        return None if self.passed else self.end_line + 1


@dataclass(frozen=True)
class ExecEndIf(Execute):
    name: ClassVar[str] = "EndIf"


@dataclass(frozen=True)
class ExecWhile(Execute):
    name: ClassVar[str] = "WhileLoop"
    passed: bool
    end_line: int

    @property
    def jump(self):
        return None if self.passed else self.end_line + 1


@dataclass(frozen=True)
class ExecEndWhile(Execute):
    name: ClassVar[str] = "EndWhile"
    begin_line: int

    @property
    def jump(self):
        return self.begin_line


# ── Machine state ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MachineState:
    deck_location: Optional[str] = None
    tips_loaded: bool = False
    tip_volume: float = 0.0

    def to_dict(self) -> dict:
        return {
            "deck_location": self.deck_location,
            "tips_loaded": self.tips_loaded,
            "tip_volume": self.tip_volume,
        }


# ── Capability interface ──────────────────────────────────────────────────────

class Machine(ABC):
    """Pluggable hardware: a simulation today, an instrument adapter later."""

    @abstractmethod
    def aspirate(self, volume: float) -> None: ...

    @abstractmethod
    def dispense(self, volume: Optional[float] = None) -> None: ...

    @abstractmethod
    def load_tips(self) -> None: ...

    @abstractmethod
    def eject_tips(self) -> None: ...

    @abstractmethod
    def move_to(self, location: str) -> None: ...

    @abstractmethod
    def mix(self) -> None: ...

    @property
    @abstractmethod
    def state(self) -> MachineState: ...

    def execute(self, execute: Execute) -> None:
        """Run one resolved payload; raises MachineError on invariant violations."""
        if isinstance(execute, ExecAspirate):
            self.move_to(execute.location)
            self.aspirate(execute.volume)
        elif isinstance(execute, ExecDispense):
            self.move_to(execute.location)
            self.dispense(execute.volume)
        elif isinstance(execute, ExecLoadTips):
            self.move_to(execute.location)
            self.load_tips()
        elif isinstance(execute, ExecEjectTips):
            self.move_to(execute.location)
            self.eject_tips()
        elif isinstance(execute, ExecMix):
            self.move_to(execute.location)
            self.mix()
        # remarks and flow payloads have no machine effect


class SimulatedMachine(Machine):
    """Single-channel pipetting gantry with tip and volume bookkeeping."""

    def __init__(self):
        self._deck_location: Optional[str] = None
        self._tips_loaded = False
        self._tip_volume = 0.0

    @property
    def deck_location(self) -> Optional[str]:
        return self._deck_location

    @property
    def tips_loaded(self) -> bool:
        return self._tips_loaded

    @property
    def tip_volume(self) -> float:
        return self._tip_volume

    @property
    def state(self) -> MachineState:
        return MachineState(self._deck_location, self._tips_loaded, self._tip_volume)

    def move_to(self, location: str) -> None:
        self._deck_location = location

    def aspirate(self, volume: float) -> None:
        self._assert_tips()
        if not math.isfinite(volume) or volume < 0:
            raise InvalidVolume(volume)
        self._tip_volume += volume
        logger.debug("aspirate %.3f µL at %s (holding %.3f)", volume, self._deck_location, self._tip_volume)

    def dispense(self, volume: Optional[float] = None) -> None:
        self._assert_tips()
        if volume is None:
            self._tip_volume = 0.0
            return
        if not math.isfinite(volume) or volume < 0:
            raise InvalidVolume(volume)
        if volume > self._tip_volume + VOLUME_TOLERANCE:
            raise NotEnoughVolume(volume, self._tip_volume)
        self._tip_volume = max(0.0, self._tip_volume - volume)
        if self._tip_volume < VOLUME_TOLERANCE:
            self._tip_volume = 0.0
        logger.debug("dispense %.3f µL at %s (holding %.3f)", volume, self._deck_location, self._tip_volume)

    def load_tips(self) -> None:
        if self._tips_loaded:
            raise TipsAlreadyLoaded()
        self._tips_loaded = True

    def eject_tips(self) -> None:
        self._tips_loaded = False
        self._tip_volume = 0.0

    def mix(self) -> None:
        self._assert_tips()

    def _assert_tips(self):
        if not self._tips_loaded:
            raise NeedTips()
