"""Shared fixtures for the PiCool test suite."""

import asyncio
from typing import List, Optional, Tuple

import pytest

from picool_types import RestoredPowerState, RestoredState
from picool_world import Environment


class ScriptedEnvironment(Environment):
    """
    Environment replaying a fixed list of sensor results.

    Each entry of `temperatures` is either a float or an exception instance
    to raise. `sleep()` advances the clock without waiting.
    """

    def __init__(self,
                 temperatures: List,
                 restored: Optional[RestoredState] = None,
                 restore_error: Optional[Exception] = None,
                 persist_error: Optional[Exception] = None,
                 default: Optional[float] = None,
                 start_time: float = 0.0):
        self.script = list(temperatures)
        self.restored = restored or RestoredState(RestoredPowerState.off_for(10_000.0))
        self.restore_error = restore_error
        self.persist_error = persist_error
        self.default = default
        self.clock = start_time

        self.sleeps: List[float] = []
        self.power_states: List[bool] = []
        self.off_transitions: List[float] = []
        self.compensations: List[Tuple[float, float]] = []

    def get_temperature(self) -> float:
        if not self.script:
            if self.default is None:
                raise AssertionError("temperature script exhausted")
            return self.default
        value = self.script.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    def set_power_state(self, state: bool) -> None:
        self.power_states.append(state)

    async def sleep(self, duration: float) -> None:
        self.sleeps.append(duration)
        self.clock += duration
        await asyncio.sleep(0)

    def now(self) -> float:
        return self.clock

    def restore_state(self) -> RestoredState:
        if self.restore_error is not None:
            raise self.restore_error
        return self.restored

    def persist_last_off_transition(self) -> None:
        if self.persist_error is not None:
            raise self.persist_error
        self.off_transitions.append(self.clock)

    def persist_compensation(self, low: float, high: float) -> None:
        if self.persist_error is not None:
            raise self.persist_error
        self.compensations.append((low, high))


@pytest.fixture
def make_world():
    """Factory for ScriptedEnvironment instances."""
    return ScriptedEnvironment
