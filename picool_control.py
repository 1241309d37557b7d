#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool Control
====================
Copyright (c) 2025 PNGN-Tec LLC

Adaptive on/off controller for a single-compressor refrigerator.

A temperature sensor is polled every 10s and one relay drives the compressor.
The controller keeps the measured temperature inside a target band while
protecting the compressor from short-cycling, and learns how far the
temperature overshoots each band edge so the *actual* band converges on the
*intended* one.

ARCHITECTURE:
- ExtremeTracker: min/max of the current half-cycle (one on or one off period)
- Compensator: median-of-10 offset per band edge, direction-locked by the
  sign of its cap
- transition(): two-point hysteresis with minimum dwell guards
- recover_initial_state(): safe starting state after a restart
- ThermostatController: poll loop tying the above to an Environment

THERMAL LAG:
After switch-off the evaporator keeps pulling heat, so the cabinet undershoots
the low edge. After switch-on the compressor needs time to pull down, so the
cabinet overshoots the high edge. Each half-cycle's extreme is fed to the
compensator of the edge that started it:
    off-cycle minimum  -> low compensator  (raises the switch-off point)
    on-cycle maximum   -> high compensator (lowers the switch-on point)
"""

import math
import asyncio
import inspect
import statistics
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from picool_config import (
    TARGET_RANGE_LOW,
    TARGET_RANGE_HIGH,
    MINIMUM_ON_DURATION,
    MINIMUM_OFF_DURATION,
    POLL_INTERVAL,
    SENSOR_RETRY_INTERVAL,
    COMPENSATION_HISTORY_SIZE,
    COMPENSATION_MIN_UPDATE,
    LOW_MAX_COMPENSATION,
    HIGH_MAX_COMPENSATION,
    WARMUP_STATE_CHANGES,
    MAX_POLL_CALLBACKS,
)
from picool_types import (
    ControlSnapshot,
    ControlState,
    PowerMode,
    RestoredPower,
    RestoredPowerState,
)
from picool_world import Environment

# Configure logging
logger = logging.getLogger('PiCool.Control')

# ============================================================================
# FORMATTING
# ============================================================================

def c_to_f(c: float) -> float:
    return (c * 9.0 / 5.0) + 32.0

def format_c_and_f(c: float) -> str:
    """Log format for temperatures: '3.20C 37.76F'"""
    return f"{c:.2f}C {c_to_f(c):.2f}F"

def _callback_name(callback: Callable) -> str:
    return getattr(callback, '__qualname__', repr(callback))

# ============================================================================
# EXTREME TRACKER
# ============================================================================

class ExtremeTracker:
    """Minimum and maximum temperature seen during the current half-cycle"""

    def __init__(self):
        self._min = math.inf
        self._max = -math.inf
        self._measured = False

    def reset(self) -> None:
        self._min = math.inf
        self._max = -math.inf
        self._measured = False

    def push(self, value: float) -> None:
        if value < self._min:
            self._min = value
        if value > self._max:
            self._max = value
        self._measured = True

    def min(self) -> Optional[float]:
        """Lowest sample since reset, or None when nothing was pushed"""
        return self._min if self._measured else None

    def max(self) -> Optional[float]:
        """Highest sample since reset, or None when nothing was pushed"""
        return self._max if self._measured else None

    @property
    def has_data(self) -> bool:
        return self._measured

# ============================================================================
# COMPENSATOR
# ============================================================================

class Compensator:
    """
    Adaptive offset for one edge of the target band.

    Every observation is the extreme temperature reached after the relay
    switched at this edge. The signed gap between the current threshold and
    that extreme goes into a bounded history; the median of the history
    becomes the new compensation once it moves by more than MIN_UPDATE.

    The sign of `max_compensation` locks the correction direction:
    - positive: threshold may only be raised (low edge of a cooler)
    - negative: threshold may only be lowered (high edge of a cooler)

    Effective compensation is clamped to the cap, and a compensation with
    the wrong sign is reported as 0.0.

    Usage:
        low = Compensator(1.3, seed_compensation=0.0, max_compensation=1.0)
        low.push_observation(0.7)     # cabinet bottomed out at 0.7°C
        low.get_threshold()           # -> 1.9
    """

    def __init__(self,
                 target: float,
                 seed_compensation: float,
                 max_compensation: float,
                 history_size: int = COMPENSATION_HISTORY_SIZE,
                 min_update: float = COMPENSATION_MIN_UPDATE):
        if max_compensation == 0.0 or math.isnan(max_compensation):
            raise ValueError(
                f"max_compensation must be non-zero, got {max_compensation}; "
                "its sign sets the allowed correction direction"
            )

        self.target = target
        self.max_compensation = max_compensation
        self.compensation = seed_compensation
        self.min_update = min_update
        self.observations: Deque[float] = deque(maxlen=history_size)

    def push_observation(self, value: float) -> None:
        """
        Learn from the extreme temperature of a finished half-cycle.

        Non-finite values are logged and dropped without touching state.
        """
        if not math.isfinite(value):
            logger.warning(f"Ignoring invalid observation {value} for target {self.target}")
            return

        delta = self.get_threshold() - value
        self.observations.append(delta)
        median = statistics.median(self.observations)

        if abs(median - self.compensation) > self.min_update:
            logger.debug(f"Compensation for target {self.target}: "
                         f"{self.compensation:+.3f} -> {median:+.3f} "
                         f"({len(self.observations)} observations)")
            self.compensation = median

    def is_capped(self) -> bool:
        if self.max_compensation > 0:
            return self.compensation > self.max_compensation
        return self.compensation < self.max_compensation

    def _is_inverted(self) -> bool:
        if self.max_compensation > 0:
            return self.compensation < 0
        return self.compensation > 0

    def get_compensation(self) -> float:
        if self.is_capped():
            return self.max_compensation
        if self._is_inverted():
            return 0.0
        return self.compensation

    def get_threshold(self) -> float:
        return self.target + self.get_compensation()

    def __repr__(self) -> str:
        return (
            f"Compensator(target={self.target}, compensation={self.compensation:+.3f}, "
            f"max={self.max_compensation:+.3f}, observations={len(self.observations)})"
        )

# ============================================================================
# STATE MACHINE
# ============================================================================

def is_too_cold(temperature: float, threshold: float) -> bool:
    return temperature < threshold

def is_too_hot(temperature: float, threshold: float) -> bool:
    return temperature > threshold

def transition(state: ControlState,
               temperature: float,
               low_threshold: float,
               high_threshold: float,
               now: float,
               min_on_duration: float = MINIMUM_ON_DURATION,
               min_off_duration: float = MINIMUM_OFF_DURATION) -> ControlState:
    """
    Next control state for one temperature reading.

    RULES (first match wins):
    1. GuardedOn younger than min_on_duration stays as is
    2. GuardedOff younger than min_off_duration stays as is
    3. On / expired GuardedOn: GuardedOff(now) below low_threshold, else On
    4. Off / InitiallyOff / expired GuardedOff: GuardedOn(now) above
       high_threshold, else Off
    """
    if state.mode == PowerMode.GUARDED_ON and now - state.since < min_on_duration:
        return state
    if state.mode == PowerMode.GUARDED_OFF and now - state.since < min_off_duration:
        return state

    if state.is_on:
        if is_too_cold(temperature, low_threshold):
            return ControlState.guarded_off(now)
        return ControlState.on()

    if is_too_hot(temperature, high_threshold):
        return ControlState.guarded_on(now)
    return ControlState.off()

# ============================================================================
# STARTUP RECOVERY
# ============================================================================

def recover_initial_state(restored: RestoredPowerState,
                          now: float,
                          min_off_duration: float = MINIMUM_OFF_DURATION) -> ControlState:
    """
    Map the prior power description to a safe first state.

    A running compressor gets a fresh on-guard. A compressor that has been
    off long enough starts unguarded; otherwise the remaining off-guard is
    honored.
    """
    if restored.kind == RestoredPower.CURRENTLY_ON:
        return ControlState.guarded_on(now)
    if restored.kind == RestoredPower.OFF_FOR:
        if restored.duration > min_off_duration:
            return ControlState.initially_off()
        return ControlState.guarded_off(now - restored.duration)
    return ControlState.guarded_off(now)

def restore_startup(world: Environment,
                    min_off_duration: float = MINIMUM_OFF_DURATION) -> Tuple[ControlState, Tuple[float, float]]:
    """
    Initial state and (low, high) compensation seeds from the environment.

    Falls back to a fully guarded off state with zero seeds when the
    environment cannot restore.
    """
    try:
        restored = world.restore_state()
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to restore prior state: {e}")
        return ControlState.guarded_off(world.now()), (0.0, 0.0)

    logger.debug(f"Restored state: {restored.power} "
                 f"(compensation low={restored.low_compensation:+.3f}, "
                 f"high={restored.high_compensation:+.3f})")
    state = recover_initial_state(restored.power, world.now(), min_off_duration)
    return state, (restored.low_compensation, restored.high_compensation)

# ============================================================================
# CONTROLLER
# ============================================================================

class ThermostatController:
    """
    Poll loop driving the compressor relay.

    Owns the control state, both compensators and the extreme tracker; the
    environment supplies temperature, time, sleep, relay and persistence.
    """

    def __init__(self,
                 world: Environment,
                 initial_state: ControlState,
                 initial_compensation: Tuple[float, float] = (0.0, 0.0),
                 target_low: float = TARGET_RANGE_LOW,
                 target_high: float = TARGET_RANGE_HIGH,
                 low_max_compensation: float = LOW_MAX_COMPENSATION,
                 high_max_compensation: float = HIGH_MAX_COMPENSATION,
                 min_on_duration: float = MINIMUM_ON_DURATION,
                 min_off_duration: float = MINIMUM_OFF_DURATION,
                 poll_interval: float = POLL_INTERVAL,
                 sensor_retry_interval: float = SENSOR_RETRY_INTERVAL,
                 warmup_state_changes: int = WARMUP_STATE_CHANGES,
                 max_off_cycles: Optional[int] = None):
        self.world = world
        self.state = initial_state

        seed_low, seed_high = initial_compensation
        self.low_compensator = Compensator(target_low, seed_low, low_max_compensation)
        self.high_compensator = Compensator(target_high, seed_high, high_max_compensation)
        self.extremes = ExtremeTracker()

        self.min_on_duration = min_on_duration
        self.min_off_duration = min_off_duration
        self.poll_interval = poll_interval
        self.sensor_retry_interval = sensor_retry_interval
        self.warmup_state_changes = warmup_state_changes

        # Supervisory limit (None = run until stopped)
        self.max_off_cycles = max_off_cycles

        # Counters
        self.poll_count = 0
        self.state_changes = 0
        self.on_cycles = 0
        self.off_cycles = 0
        self.read_failures = 0

        # Monitoring
        self.running = False
        self.control_task: Optional[asyncio.Task] = None
        self.poll_callbacks: List[Callable] = []

    # ------------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------------

    @property
    def low_threshold(self) -> float:
        return self.low_compensator.get_threshold()

    @property
    def high_threshold(self) -> float:
        return self.high_compensator.get_threshold()

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    async def start(self):
        """Start the control loop as a background task"""
        if self.running:
            return

        self.running = True
        self.control_task = asyncio.create_task(self._control_loop())
        logger.info("Control loop started")

    async def stop(self):
        """Stop the control loop, leaving the relay where it is"""
        self.running = False

        if self.control_task:
            self.control_task.cancel()
            try:
                await self.control_task
            except asyncio.CancelledError:
                pass
            self.control_task = None

        logger.info("Control loop stopped")

    async def run(self):
        """Run the control loop in the calling task until stopped"""
        self.running = True
        await self._control_loop()

    async def _control_loop(self):
        logger.info(f"Initial state: {self.state}")
        logger.info(f"Thresholds: low {format_c_and_f(self.low_threshold)}, "
                    f"high {format_c_and_f(self.high_threshold)}")
        self.sync_relay()
        try:
            while self.running:
                await self.poll()
        finally:
            self.running = False

    def sync_relay(self):
        """
        Drive the relay to match the control state.

        After a restart the relay may still hold whatever the previous run
        left, e.g. energized while recovery fell back to GuardedOff.
        """
        logger.info(f"Setting relay {'on' if self.state.is_on else 'off'} for {self.state}")
        try:
            self.world.set_power_state(self.state.is_on)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to set initial relay state: {e}")

    # ------------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------------

    async def poll(self) -> ControlSnapshot:
        """One sleep / read / transition / bookkeeping step"""
        if self.state.mode != PowerMode.INITIALLY_OFF:
            logger.debug(f"Sleeping: {self.poll_interval}s")
            await self.world.sleep(self.poll_interval)

        temperature = await self._read_temperature()
        logger.debug(f"Read temperature: {format_c_and_f(temperature)}")
        self.extremes.push(temperature)

        new_state = transition(
            self.state, temperature,
            self.low_threshold, self.high_threshold,
            self.world.now(),
            self.min_on_duration, self.min_off_duration,
        )
        previous_state, self.state = self.state, new_state

        if previous_state != new_state:
            logger.info(f"State changed: {previous_state} -> {new_state}")

        if previous_state.is_on != new_state.is_on:
            self._on_power_change(new_state.is_on)

        self.poll_count += 1
        snapshot = ControlSnapshot(
            timestamp=self.world.now(),
            temperature=temperature,
            state=self.state,
            is_on=self.state.is_on,
            low_threshold=self.low_threshold,
            high_threshold=self.high_threshold,
        )
        await self._notify(snapshot)
        return snapshot

    async def _read_temperature(self) -> float:
        """Read until the sensor answers; failures are transient"""
        while True:
            try:
                temperature = self.world.get_temperature()
                if math.isnan(temperature):
                    raise ValueError("sensor returned NaN")
                return temperature
            except (OSError, ValueError) as e:
                self.read_failures += 1
                logger.error(f"Could not read temperature: {e}")
                await self.world.sleep(self.sensor_retry_interval)

    def _on_power_change(self, is_on: bool):
        logger.debug(f"Updating power state: {is_on}")
        self.world.set_power_state(is_on)

        if is_on:
            self.on_cycles += 1
        else:
            self.off_cycles += 1
            logger.debug("Persisting last off transition")
            try:
                self.world.persist_last_off_transition()
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to persist last off transition: {e}")

        self.state_changes += 1
        if self.state_changes > self.warmup_state_changes:
            if is_on:
                self._learn_low_edge()
            else:
                self._learn_high_edge()
            self.extremes.reset()
        else:
            logger.debug(f"Warm-up: not learning from power change {self.state_changes}")

        if self.max_off_cycles is not None and self.off_cycles >= self.max_off_cycles:
            logger.info(f"Reached {self.off_cycles} off-cycles, stopping")
            self.running = False

    def _learn_high_edge(self):
        """On -> Off: the on-cycle peak calibrates the switch-on point"""
        max_temp = self.extremes.max()
        if max_temp is None:
            return

        logger.debug(f"Max temp seen during on cycle: {format_c_and_f(max_temp)}")
        old_threshold = self.high_threshold
        self.high_compensator.push_observation(max_temp)
        if self.high_threshold != old_threshold:
            logger.debug(f"Updated high threshold: {format_c_and_f(self.high_threshold)} "
                         f"(target: {format_c_and_f(self.high_compensator.target)})")
        self._persist_compensation()

    def _learn_low_edge(self):
        """Off -> On: the off-cycle trough calibrates the switch-off point"""
        min_temp = self.extremes.min()
        if min_temp is None:
            return

        logger.debug(f"Min temp seen during off cycle: {format_c_and_f(min_temp)}")
        old_threshold = self.low_threshold
        self.low_compensator.push_observation(min_temp)
        if self.low_threshold != old_threshold:
            logger.debug(f"Updated low threshold: {format_c_and_f(self.low_threshold)} "
                         f"(target: {format_c_and_f(self.low_compensator.target)})")
        self._persist_compensation()

    def _persist_compensation(self):
        try:
            self.world.persist_compensation(
                self.low_compensator.get_compensation(),
                self.high_compensator.get_compensation(),
            )
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to persist compensation: {e}")

    # ------------------------------------------------------------------------
    # Snapshot observers
    # ------------------------------------------------------------------------

    def register_poll_callback(self, callback: Callable):
        """
        Observe every poll.

        `callback(snapshot)` may be a plain function or a coroutine function.
        At most MAX_POLL_CALLBACKS observers are kept; the earliest one is
        dropped to make room.
        """
        if callback in self.poll_callbacks:
            return
        if len(self.poll_callbacks) >= MAX_POLL_CALLBACKS:
            dropped = self.poll_callbacks.pop(0)
            logger.warning(f"Observer limit reached, dropping {_callback_name(dropped)}")
        self.poll_callbacks.append(callback)
        logger.debug(f"Observing polls: {_callback_name(callback)}")

    def unregister_poll_callback(self, callback: Callable):
        if callback in self.poll_callbacks:
            self.poll_callbacks.remove(callback)
            logger.debug(f"Stopped observing polls: {_callback_name(callback)}")

    def clear_poll_callbacks(self):
        self.poll_callbacks.clear()

    async def _notify(self, snapshot: ControlSnapshot):
        for callback in self.poll_callbacks[:]:
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(snapshot)
                else:
                    callback(snapshot)
            except Exception as e:
                logger.error(f"Poll callback error in {callback}: {e}")

    # ------------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        """Counters, thresholds and compensation state"""
        return {
            'polls': self.poll_count,
            'on_cycles': self.on_cycles,
            'off_cycles': self.off_cycles,
            'read_failures': self.read_failures,
            'state': str(self.state),
            'is_on': self.state.is_on,
            'low_threshold': self.low_threshold,
            'high_threshold': self.high_threshold,
            'low_compensation': self.low_compensator.get_compensation(),
            'high_compensation': self.high_compensator.get_compensation(),
            'low_capped': self.low_compensator.is_capped(),
            'high_capped': self.high_compensator.is_capped(),
        }

# ============================================================================
# FACTORY
# ============================================================================

def create_controller(world: Environment, **options) -> ThermostatController:
    """
    Create a controller after startup recovery.

    Keyword options are passed through to ThermostatController.
    """
    min_off_duration = options.get('min_off_duration', MINIMUM_OFF_DURATION)
    initial_state, initial_compensation = restore_startup(world, min_off_duration)
    return ThermostatController(world, initial_state, initial_compensation, **options)
