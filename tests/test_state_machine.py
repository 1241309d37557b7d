"""Tests for the dwell-guarded on/off state machine."""

import pytest

from picool_config import MINIMUM_ON_DURATION, MINIMUM_OFF_DURATION
from picool_control import transition
from picool_types import ControlState, PowerMode

LOW = 1.3
HIGH = 4.4
T0 = 1000.0
MS = 0.001

TOO_COLD = 0.5
IN_BAND = 3.0
TOO_HOT = 5.0


class TestDwellGuard:
    """Guarded states hold regardless of temperature until the guard expires."""

    def test_guarded_on_holds_before_expiry(self):
        state = ControlState.guarded_on(T0)
        now = T0 + MINIMUM_ON_DURATION - MS
        assert transition(state, TOO_COLD, LOW, HIGH, now) == ControlState.guarded_on(T0)

    def test_guarded_on_releases_after_expiry(self):
        state = ControlState.guarded_on(T0)
        now = T0 + MINIMUM_ON_DURATION + MS
        assert transition(state, TOO_COLD, LOW, HIGH, now) == ControlState.guarded_off(now)

    def test_guarded_on_expires_exactly_at_duration(self):
        state = ControlState.guarded_on(T0)
        now = T0 + MINIMUM_ON_DURATION
        assert transition(state, TOO_COLD, LOW, HIGH, now) == ControlState.guarded_off(now)

    def test_expired_guarded_on_in_band_becomes_on(self):
        state = ControlState.guarded_on(T0)
        now = T0 + MINIMUM_ON_DURATION + MS
        assert transition(state, IN_BAND, LOW, HIGH, now) == ControlState.on()

    def test_guarded_off_holds_before_expiry(self):
        state = ControlState.guarded_off(T0)
        now = T0 + MINIMUM_OFF_DURATION - MS
        assert transition(state, TOO_HOT, LOW, HIGH, now) == ControlState.guarded_off(T0)

    def test_guarded_off_releases_after_expiry(self):
        state = ControlState.guarded_off(T0)
        now = T0 + MINIMUM_OFF_DURATION + MS
        assert transition(state, TOO_HOT, LOW, HIGH, now) == ControlState.guarded_on(now)

    def test_expired_guarded_off_in_band_becomes_off(self):
        state = ControlState.guarded_off(T0)
        now = T0 + MINIMUM_OFF_DURATION + MS
        assert transition(state, IN_BAND, LOW, HIGH, now) == ControlState.off()

    def test_custom_durations(self):
        state = ControlState.guarded_on(T0)
        assert transition(state, TOO_COLD, LOW, HIGH, T0 + 5.0,
                           min_on_duration=10.0) == state
        assert transition(state, TOO_COLD, LOW, HIGH, T0 + 10.0,
                           min_on_duration=10.0) == ControlState.guarded_off(T0 + 10.0)


class TestHysteresis:
    """Unguarded states switch only outside the band."""

    @pytest.mark.parametrize("temperature,expected", [
        (TOO_COLD, ControlState.guarded_off(T0)),
        (IN_BAND, ControlState.on()),
        (TOO_HOT, ControlState.on()),
        (LOW, ControlState.on()),
    ])
    def test_on(self, temperature, expected):
        assert transition(ControlState.on(), temperature, LOW, HIGH, T0) == expected

    @pytest.mark.parametrize("temperature,expected", [
        (TOO_COLD, ControlState.off()),
        (IN_BAND, ControlState.off()),
        (TOO_HOT, ControlState.guarded_on(T0)),
        (HIGH, ControlState.off()),
    ])
    def test_off(self, temperature, expected):
        assert transition(ControlState.off(), temperature, LOW, HIGH, T0) == expected

    @pytest.mark.parametrize("temperature,expected", [
        (IN_BAND, ControlState.off()),
        (TOO_HOT, ControlState.guarded_on(T0)),
    ])
    def test_initially_off(self, temperature, expected):
        assert transition(ControlState.initially_off(), temperature, LOW, HIGH, T0) == expected

    def test_thresholds_are_used_not_targets(self):
        """A raised low threshold switches off earlier."""
        assert transition(ControlState.on(), 1.8, 2.0, HIGH, T0) == ControlState.guarded_off(T0)


class TestControlState:

    @pytest.mark.parametrize("state,is_on", [
        (ControlState.initially_off(), False),
        (ControlState.guarded_on(T0), True),
        (ControlState.guarded_off(T0), False),
        (ControlState.on(), True),
        (ControlState.off(), False),
    ])
    def test_is_on(self, state, is_on):
        assert state.is_on is is_on
        assert state.is_off is not is_on

    def test_guarded_modes(self):
        assert PowerMode.GUARDED_ON.is_guarded
        assert PowerMode.GUARDED_OFF.is_guarded
        assert not PowerMode.ON.is_guarded
        assert not PowerMode.INITIALLY_OFF.is_guarded

    def test_str(self):
        assert str(ControlState.guarded_on(12.5)) == "GuardedOn(12.500)"
        assert str(ControlState.initially_off()) == "InitiallyOff"
        assert str(ControlState.off()) == "Off"

    def test_equality_includes_since(self):
        assert ControlState.guarded_off(1.0) != ControlState.guarded_off(2.0)
        assert ControlState.guarded_off(1.0) == ControlState.guarded_off(1.0)
