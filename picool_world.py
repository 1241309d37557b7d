#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool Environment
========================
Copyright (c) 2025 PNGN-Tec LLC

Everything the control core touches outside itself: the temperature sensor,
the compressor relay, the clock and durable state.

- Environment: abstract port consumed by the controller
- FileStateStore: last off-transition and compensation files per sensor
- HardwareEnvironment: DS18B20 on 1-Wire sysfs + relay on a Raspberry Pi GPIO

FILES (under /var/lib/picool by default, <sensor> = 1-Wire device id):
- last_off_<sensor>: seconds since epoch of the last switch-off
- comp_<sensor>:     "low high" compensation in °C
"""

import os
import math
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple

from picool_config import (
    STATE_DIR,
    LAST_OFF_TRANSITION_FILE_PREFIX,
    COMPENSATION_FILE_PREFIX,
    MILLIDEGREE_TO_DEGREE,
    SENSOR_TEMP_MIN,
    SENSOR_TEMP_MAX,
    SENSOR_POWER_ON_RESET_TEMP,
)
from picool_types import RestoredPowerState, RestoredState

logger = logging.getLogger('PiCool.World')

# ============================================================================
# ENVIRONMENT PORT
# ============================================================================

class Environment(ABC):
    """
    Capabilities the controller needs from the outside world.

    Failures are signalled with OSError or ValueError. The controller retries
    temperature reads, logs persistence failures and falls back to a guarded
    off state when restore_state() fails.
    """

    @abstractmethod
    def get_temperature(self) -> float:
        """Current temperature in °C"""

    @abstractmethod
    def set_power_state(self, state: bool) -> None:
        """Energize (True) or release (False) the compressor relay"""

    @abstractmethod
    async def sleep(self, duration: float) -> None:
        """Suspend the control loop for `duration` seconds (may be scaled)"""

    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds used for dwell-guard arithmetic"""

    @abstractmethod
    def restore_state(self) -> RestoredState:
        """Prior relay state and compensation seeds"""

    @abstractmethod
    def persist_last_off_transition(self) -> None:
        """Record that the relay has just been switched off"""

    @abstractmethod
    def persist_compensation(self, low: float, high: float) -> None:
        """Record current low/high compensation"""

# ============================================================================
# FILE STATE STORE
# ============================================================================

def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + '.tmp')
    tmp.write_text(text)
    os.replace(tmp, path)

class FileStateStore:
    """Per-sensor durable state as small text files"""

    def __init__(self, sensor_name: str, base_dir: str = STATE_DIR):
        self.sensor_name = sensor_name
        self.base_dir = Path(base_dir).expanduser()
        self.last_off_path = self.base_dir / f"{LAST_OFF_TRANSITION_FILE_PREFIX}{sensor_name}"
        self.compensation_path = self.base_dir / f"{COMPENSATION_FILE_PREFIX}{sensor_name}"

    def load_last_off(self) -> Optional[float]:
        """Epoch seconds of the last switch-off, None if never recorded"""
        if not self.last_off_path.exists():
            return None
        text = self.last_off_path.read_text().strip()
        value = float(text)
        if not math.isfinite(value):
            raise ValueError(f"Invalid last off transition in {self.last_off_path}: {text!r}")
        return value

    def save_last_off(self, timestamp: float) -> None:
        _write_atomic(self.last_off_path, f"{timestamp:.0f}")

    def load_compensation(self) -> Tuple[float, float]:
        """(low, high) compensation, zeros if never recorded"""
        if not self.compensation_path.exists():
            return 0.0, 0.0
        text = self.compensation_path.read_text()
        fields = text.split()
        if len(fields) != 2:
            raise ValueError(f"Expected 'low high' in {self.compensation_path}, got {text!r}")
        low, high = float(fields[0]), float(fields[1])
        if not (math.isfinite(low) and math.isfinite(high)):
            raise ValueError(f"Invalid compensation in {self.compensation_path}: {text!r}")
        return low, high

    def save_compensation(self, low: float, high: float) -> None:
        _write_atomic(self.compensation_path, f"{low} {high}\n")

    def restore_power_state(self, wall_now: float) -> RestoredPowerState:
        """
        Off duration from the recorded switch-off time.

        A missing record or a switch-off in the future (clock step) gives an
        unknown duration.
        """
        last_off = self.load_last_off()
        if last_off is None:
            return RestoredPowerState.off_for_unknown_duration()

        off_for = wall_now - last_off
        if off_for < 0:
            logger.warning(f"Last off transition is {-off_for:.0f}s in the future, ignoring it")
            return RestoredPowerState.off_for_unknown_duration()
        return RestoredPowerState.off_for(off_for)

    def restore(self, wall_now: float) -> RestoredState:
        low, high = self.load_compensation()
        return RestoredState(
            power=self.restore_power_state(wall_now),
            low_compensation=low,
            high_compensation=high,
        )

# ============================================================================
# HARDWARE ENVIRONMENT
# ============================================================================

def sensor_name_from_path(sensor_path: Path) -> str:
    """'/sys/bus/w1/devices/28-0316a2799cff/temperature' -> '28-0316a2799cff'"""
    name = Path(sensor_path).parent.name
    if not name:
        raise ValueError(f"Invalid temperature path: {sensor_path}")
    return name

def read_sensor(sensor_path: Path) -> float:
    """
    °C from a DS18B20 sysfs `temperature` file (millidegrees).

    Raises OSError when the file cannot be read and ValueError for readings
    that are not numbers, out of the datasheet range, or the power-on reset
    value.
    """
    raw = Path(sensor_path).read_text().strip()
    temp = float(raw) / MILLIDEGREE_TO_DEGREE

    if not math.isfinite(temp):
        raise ValueError(f"Non-finite temperature reading {raw!r}")
    if not SENSOR_TEMP_MIN <= temp <= SENSOR_TEMP_MAX:
        raise ValueError(f"Temperature {temp:.3f}°C outside sensor range")
    if temp == SENSOR_POWER_ON_RESET_TEMP:
        raise ValueError("Sensor returned power-on reset value")
    return temp

class HardwareEnvironment(Environment):
    """
    Raspberry Pi with a DS18B20 sensor and a compressor relay.

    The sensor file holds millidegrees Celsius. The relay pin is configured
    as an output without forcing its level, so a relay left on by a previous
    run is still reported as CurrentlyOn.
    """

    def __init__(self,
                 sensor_path: str,
                 relay_pin: int,
                 state_dir: str = STATE_DIR,
                 gpio=None):
        if gpio is None:
            import RPi.GPIO as gpio

        self.sensor_path = Path(sensor_path)
        self.relay_pin = relay_pin
        self.store = FileStateStore(sensor_name_from_path(self.sensor_path), state_dir)

        self.gpio = gpio
        self.gpio.setmode(self.gpio.BCM)
        self.gpio.setwarnings(False)
        self.gpio.setup(self.relay_pin, self.gpio.OUT)

        logger.info(f"Sensor {self.sensor_path}, relay on GPIO {self.relay_pin}, "
                    f"state in {self.store.base_dir}")

    def get_temperature(self) -> float:
        return read_sensor(self.sensor_path)

    def set_power_state(self, state: bool) -> None:
        try:
            self.gpio.output(self.relay_pin, self.gpio.HIGH if state else self.gpio.LOW)
        except RuntimeError as e:
            raise OSError(f"Cannot drive relay pin {self.relay_pin}: {e}") from e

    async def sleep(self, duration: float) -> None:
        await asyncio.sleep(duration)

    def now(self) -> float:
        return time.monotonic()

    def restore_state(self) -> RestoredState:
        try:
            relay_on = self.gpio.input(self.relay_pin)
        except RuntimeError as e:
            raise OSError(f"Cannot read relay pin {self.relay_pin}: {e}") from e

        if relay_on:
            low, high = self.store.load_compensation()
            return RestoredState(RestoredPowerState.currently_on(), low, high)
        return self.store.restore(time.time())

    def persist_last_off_transition(self) -> None:
        self.store.save_last_off(time.time())

    def persist_compensation(self, low: float, high: float) -> None:
        self.store.save_compensation(low, high)
