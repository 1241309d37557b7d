#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool Type Definitions
=============================
Copyright (c) 2025 PNGN-Tec LLC

Shared type system for the refrigerator controller. Control states, restored
power descriptions and poll snapshots used by the control core, the
environments and the simulator.
"""

from dataclasses import dataclass
from typing import Optional
from enum import Enum, auto

# ============================================================================
# ENUMS
# ============================================================================

class PowerMode(Enum):
    """Relay control modes"""
    INITIALLY_OFF = auto()
    GUARDED_ON = auto()
    GUARDED_OFF = auto()
    ON = auto()
    OFF = auto()

    @property
    def is_on(self) -> bool:
        """Check if the relay is energized in this mode"""
        return self in (PowerMode.GUARDED_ON, PowerMode.ON)

    @property
    def is_guarded(self) -> bool:
        """Check if this mode carries a dwell guard"""
        return self in (PowerMode.GUARDED_ON, PowerMode.GUARDED_OFF)

class RestoredPower(Enum):
    """Prior relay state reported by the environment at startup"""
    CURRENTLY_ON = auto()
    OFF_FOR = auto()
    OFF_FOR_UNKNOWN_DURATION = auto()

# ============================================================================
# DATA STRUCTURES
# ============================================================================

_MODE_NAMES = {
    PowerMode.INITIALLY_OFF: 'InitiallyOff',
    PowerMode.GUARDED_ON: 'GuardedOn',
    PowerMode.GUARDED_OFF: 'GuardedOff',
    PowerMode.ON: 'On',
    PowerMode.OFF: 'Off',
}

@dataclass(frozen=True)
class ControlState:
    """
    Relay control state.

    Guarded modes carry `since`, the monotonic timestamp (seconds) at which
    the dwell guard began. Unguarded modes leave it as None.
    """
    mode: PowerMode
    since: Optional[float] = None

    @classmethod
    def initially_off(cls) -> 'ControlState':
        return cls(PowerMode.INITIALLY_OFF)

    @classmethod
    def guarded_on(cls, since: float) -> 'ControlState':
        return cls(PowerMode.GUARDED_ON, since)

    @classmethod
    def guarded_off(cls, since: float) -> 'ControlState':
        return cls(PowerMode.GUARDED_OFF, since)

    @classmethod
    def on(cls) -> 'ControlState':
        return cls(PowerMode.ON)

    @classmethod
    def off(cls) -> 'ControlState':
        return cls(PowerMode.OFF)

    @property
    def is_on(self) -> bool:
        return self.mode.is_on

    @property
    def is_off(self) -> bool:
        return not self.mode.is_on

    def __str__(self) -> str:
        name = _MODE_NAMES[self.mode]
        if self.since is None:
            return name
        return f"{name}({self.since:.3f})"

@dataclass(frozen=True)
class RestoredPowerState:
    """Prior power description; `duration` is set only for OFF_FOR"""
    kind: RestoredPower
    duration: Optional[float] = None

    @classmethod
    def currently_on(cls) -> 'RestoredPowerState':
        return cls(RestoredPower.CURRENTLY_ON)

    @classmethod
    def off_for(cls, duration: float) -> 'RestoredPowerState':
        return cls(RestoredPower.OFF_FOR, duration)

    @classmethod
    def off_for_unknown_duration(cls) -> 'RestoredPowerState':
        return cls(RestoredPower.OFF_FOR_UNKNOWN_DURATION)

    def __str__(self) -> str:
        if self.kind == RestoredPower.CURRENTLY_ON:
            return 'CurrentlyOn'
        if self.kind == RestoredPower.OFF_FOR:
            return f"OffFor({self.duration:.0f}s)"
        return 'OffForUnknownDuration'

@dataclass(frozen=True)
class RestoredState:
    """Everything the environment restores at startup"""
    power: RestoredPowerState
    low_compensation: float = 0.0
    high_compensation: float = 0.0

@dataclass(frozen=True)
class ControlSnapshot:
    """Controller state after a single poll"""
    timestamp: float          # monotonic seconds
    temperature: float        # °C
    state: ControlState
    is_on: bool
    low_threshold: float      # °C, switch-off point
    high_threshold: float     # °C, switch-on point

# ============================================================================
# EXPORT ALL PUBLIC TYPES
# ============================================================================

__all__ = [
    # Enums
    'PowerMode',
    'RestoredPower',

    # Data structures
    'ControlState',
    'RestoredPowerState',
    'RestoredState',
    'ControlSnapshot',
]
