#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool Simulator
======================
Copyright (c) 2025 PNGN-Tec LLC

Time-warped refrigerator for exercising the controller without hardware.

PHYSICS (per SIM_STEP seconds):
    dT = k·(T_room - T) - cooling
- heat leaks in from the room proportionally to the difference
- the compressor removes a fixed amount of heat while running
- after switch-off the evaporator keeps cooling for SIM_LATENT_COOLING seconds
  (cabinet undershoots the low edge)
- after switch-on the compressor needs SIM_STARTUP_LAG seconds before it
  cools (cabinet overshoots the high edge)

Defaults reproduce ~0.0026°C/s warming and ~0.0021°C/s cooling around 3°C.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from picool_config import (
    SIM_START_TEMP,
    SIM_ROOM_TEMP,
    SIM_HEAT_LEAK_PER_SEC,
    SIM_COOLING_C_PER_SEC,
    SIM_LATENT_COOLING,
    SIM_STARTUP_LAG,
    SIM_STEP,
)
from picool_types import ControlSnapshot, RestoredPowerState, RestoredState
from picool_world import Environment, FileStateStore

logger = logging.getLogger('PiCool.Sim')

# Recorder columns
COL_TIME = 0
COL_TEMP = 1
COL_POWER = 2
COL_LOW = 3
COL_HIGH = 4
TRACE_COLUMNS = 5
TRACE_INITIAL_ROWS = 4096

# ============================================================================
# FRIDGE MODEL
# ============================================================================

@dataclass
class SimulatedFridge:
    temp_c: float = SIM_START_TEMP
    room_temp_c: float = SIM_ROOM_TEMP
    heat_leak_per_sec: float = SIM_HEAT_LEAK_PER_SEC
    cooling_c_per_sec: float = SIM_COOLING_C_PER_SEC
    latent_cooling: float = SIM_LATENT_COOLING
    startup_lag: float = SIM_STARTUP_LAG

    compressor_on: bool = False
    latent_remaining: float = 0.0
    lag_remaining: float = 0.0

    def set_compressor(self, on: bool):
        if on == self.compressor_on:
            return
        self.compressor_on = on
        if on:
            self.lag_remaining = self.startup_lag
            self.latent_remaining = 0.0
        else:
            self.latent_remaining = self.latent_cooling
            self.lag_remaining = 0.0

    def _is_cooling(self) -> bool:
        if self.compressor_on:
            return self.lag_remaining <= 0
        return self.latent_remaining > 0

    def step(self, dt: float):
        """Advance the model by dt seconds"""
        heat_gain = self.heat_leak_per_sec * (self.room_temp_c - self.temp_c) * dt
        cooling = self.cooling_c_per_sec * dt if self._is_cooling() else 0.0
        self.temp_c = self.temp_c + heat_gain - cooling

        if self.compressor_on:
            self.lag_remaining = max(0.0, self.lag_remaining - dt)
        else:
            self.latent_remaining = max(0.0, self.latent_remaining - dt)

    def advance(self, duration: float, step: float = SIM_STEP):
        remaining = duration
        while remaining > 0:
            dt = min(step, remaining)
            self.step(dt)
            remaining -= dt

# ============================================================================
# SIMULATED ENVIRONMENT
# ============================================================================

class SimulatedEnvironment(Environment):
    """
    Environment backed by SimulatedFridge and a fake clock.

    sleep() advances the model and the clock by the full duration and waits
    duration / time_warp real seconds (no real wait when time_warp is None).
    Persistence goes to `store` when given, otherwise it is kept in memory.
    """

    def __init__(self,
                 fridge: Optional[SimulatedFridge] = None,
                 restored: Optional[RestoredState] = None,
                 store: Optional[FileStateStore] = None,
                 time_warp: Optional[float] = None,
                 sensor_noise_c: float = 0.0,
                 read_failure_rate: float = 0.0,
                 seed: Optional[int] = None):
        self.fridge = fridge or SimulatedFridge()
        self.restored = restored
        self.store = store
        self.time_warp = time_warp
        self.sensor_noise_c = sensor_noise_c
        self.read_failure_rate = read_failure_rate
        self.rng = np.random.default_rng(seed)

        self.fake_time = 0.0
        self.wall_start = time.time()

        self.power_state = False
        self.power_changes: List[Tuple[float, bool]] = []
        self.persisted_off_transitions: List[float] = []
        self.persisted_compensation: Optional[Tuple[float, float]] = None

    def _log(self, message: str):
        power = 'ON' if self.power_state else 'OFF'
        logger.debug(f">>[{self.fridge.temp_c:.2f}C][{power}] {message}")

    def get_temperature(self) -> float:
        if self.read_failure_rate > 0 and self.rng.random() < self.read_failure_rate:
            self._log("GET_TEMPERATURE failed")
            raise OSError("Simulated sensor read failure")

        temp = self.fridge.temp_c
        if self.sensor_noise_c > 0:
            temp += float(self.rng.normal(0.0, self.sensor_noise_c))
        self._log("GET_TEMPERATURE")
        return temp

    def set_power_state(self, state: bool) -> None:
        self._log(f"SET_POWERSTATE: {state}")
        if state != self.power_state:
            self.power_changes.append((self.fake_time, state))
        self.power_state = state
        self.fridge.set_compressor(state)

    async def sleep(self, duration: float) -> None:
        self._log(f"SLEEP: {duration:.0f}s")
        self.fridge.advance(duration)
        self.fake_time += duration
        await asyncio.sleep(duration / self.time_warp if self.time_warp else 0)

    def now(self) -> float:
        return self.fake_time

    def wall_time(self) -> float:
        return self.wall_start + self.fake_time

    def restore_state(self) -> RestoredState:
        if self.restored is not None:
            return self.restored
        if self.store is not None:
            return self.store.restore(self.wall_time())
        return RestoredState(RestoredPowerState.off_for_unknown_duration())

    def persist_last_off_transition(self) -> None:
        self._log("PERSIST_LAST_OFF")
        self.persisted_off_transitions.append(self.wall_time())
        if self.store is not None:
            self.store.save_last_off(self.wall_time())

    def persist_compensation(self, low: float, high: float) -> None:
        self._log(f"PERSIST_COMPENSATION: {low:+.3f} {high:+.3f}")
        self.persisted_compensation = (low, high)
        if self.store is not None:
            self.store.save_compensation(low, high)

# ============================================================================
# TRACE RECORDER
# ============================================================================

class SimulationRecorder:
    """
    Poll callback storing every ControlSnapshot in a numpy array.

    Columns: time, temperature, power (0/1), low threshold, high threshold.
    """

    def __init__(self, initial_rows: int = TRACE_INITIAL_ROWS):
        self.trace = np.zeros((initial_rows, TRACE_COLUMNS), dtype=np.float64)
        self.count = 0

    def __call__(self, snapshot: ControlSnapshot):
        if self.count >= len(self.trace):
            self.trace = np.concatenate([self.trace, np.zeros_like(self.trace)])

        self.trace[self.count] = (
            snapshot.timestamp,
            snapshot.temperature,
            1.0 if snapshot.is_on else 0.0,
            snapshot.low_threshold,
            snapshot.high_threshold,
        )
        self.count += 1

    def as_array(self) -> np.ndarray:
        return self.trace[:self.count]

    def half_cycle_extremes(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        (on-cycle maxima, off-cycle minima) over complete half-cycles.

        The span before the first power change and the unfinished span at
        the end are excluded.
        """
        data = self.as_array()
        if len(data) < 2:
            return np.array([]), np.array([])

        power = data[:, COL_POWER]
        edges = np.flatnonzero(np.diff(power)) + 1
        on_maxima = []
        off_minima = []
        for start, end in zip(edges[:-1], edges[1:]):
            segment = data[start:end]
            if segment[0, COL_POWER] > 0:
                on_maxima.append(segment[:, COL_TEMP].max())
            else:
                off_minima.append(segment[:, COL_TEMP].min())
        return np.array(on_maxima), np.array(off_minima)

    def summary(self) -> Dict[str, Any]:
        data = self.as_array()
        if len(data) == 0:
            return {'samples': 0}

        temps = data[:, COL_TEMP]
        on_maxima, off_minima = self.half_cycle_extremes()
        return {
            'samples': int(len(data)),
            'duration': float(data[-1, COL_TIME] - data[0, COL_TIME]),
            'duty_cycle': float(data[:, COL_POWER].mean()),
            'min_temp': float(temps.min()),
            'max_temp': float(temps.max()),
            'p5_temp': float(np.percentile(temps, 5)),
            'p95_temp': float(np.percentile(temps, 95)),
            'mean_on_cycle_max': float(on_maxima.mean()) if len(on_maxima) else None,
            'mean_off_cycle_min': float(off_minima.mean()) if len(off_minima) else None,
            'final_low_threshold': float(data[-1, COL_LOW]),
            'final_high_threshold': float(data[-1, COL_HIGH]),
        }

    def save(self, path: Path) -> Path:
        path = Path(path)
        if path.suffix != '.npz':
            path = path.with_name(path.name + '.npz')
        np.savez_compressed(path, trace=self.as_array())
        logger.info(f"Saved {self.count} samples to {path}")
        return path
