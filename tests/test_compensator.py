"""Tests for the adaptive threshold compensator."""

import math
import random

import pytest

from picool_control import Compensator


class TestCompensatorBasics:
    """Single observations against a fresh compensator."""

    def test_compensate_default(self):
        """No observations leaves the seed untouched."""
        compensator = Compensator(40.0, 0.0, -3.0)
        assert compensator.get_compensation() == 0.0
        assert compensator.get_threshold() == 40.0

    def test_one_exact_measure(self):
        """An observation on target needs no correction."""
        compensator = Compensator(40.0, 0.0, -3.0)
        compensator.push_observation(40.0)
        assert compensator.get_compensation() == 0.0
        assert compensator.get_threshold() == 40.0

    def test_one_high_measure(self):
        """Overshooting by one degree lowers the threshold by one degree."""
        compensator = Compensator(40.0, 0.0, -3.0)
        compensator.push_observation(41.0)
        assert compensator.get_compensation() == -1.0
        assert compensator.get_threshold() == 39.0

    def test_high_measure_adjusts_seed(self):
        """Observation is measured against the seeded threshold."""
        compensator = Compensator(40.0, -1.0, -3.0)
        compensator.push_observation(40.5)
        assert compensator.get_compensation() == -1.5
        assert compensator.get_threshold() == 38.5

    def test_low_measure_relaxes_seed(self):
        """Undershooting the seeded threshold backs compensation off."""
        compensator = Compensator(40.0, -3.0, -5.0)
        compensator.push_observation(39.0)
        assert compensator.get_compensation() == -2.0
        assert compensator.get_threshold() == 38.0

    def test_one_low_measure_raises_threshold(self):
        """Undershoot on a positive-capped compensator raises its threshold."""
        compensator = Compensator(33.0, 0.0, 3.0)
        compensator.push_observation(32.0)
        assert compensator.get_compensation() == 1.0
        assert compensator.get_threshold() == 34.0

    def test_high_measure_adjusts_positive_seed(self):
        compensator = Compensator(33.0, 3.0, 5.0)
        compensator.push_observation(33.5)
        assert compensator.get_compensation() == 2.5
        assert compensator.get_threshold() == 35.5


class TestMedianConvergence:
    """Median over the bounded history."""

    def test_worked_example_progression(self):
        """Compensation follows the running median 1.0 -> 1.0 -> 1.0 -> 1.25 -> 1.5."""
        compensator = Compensator(33.0, 0.0, 3.0)
        progression = []
        for value in [32.0, 33.0, 32.5, 32.5, 32.75]:
            compensator.push_observation(value)
            progression.append(compensator.get_compensation())

        assert progression == [1.0, 1.0, 1.0, 1.25, 1.5]
        assert list(compensator.observations) == [1.0, 1.0, 1.5, 1.5, 1.5]

    def test_steady_undershoot_settles(self):
        """Extremes a fixed distance past the threshold settle on that distance."""
        compensator = Compensator(33.0, 0.0, 3.0)
        for _ in range(5):
            compensator.push_observation(compensator.get_threshold() - 0.5)
        assert compensator.get_compensation() == 0.5
        assert compensator.get_threshold() == 33.5

    def test_single_outlier_is_ignored(self):
        """One wild sample cannot move a settled median."""
        compensator = Compensator(33.0, 0.0, 3.0)
        for _ in range(5):
            compensator.push_observation(compensator.get_threshold() - 0.5)

        compensator.push_observation(compensator.get_threshold() - 2.5)
        assert compensator.get_compensation() == 0.5

    def test_history_is_bounded(self):
        compensator = Compensator(33.0, 0.0, 3.0)
        for _ in range(15):
            compensator.push_observation(32.9)
        assert len(compensator.observations) == 10

    def test_oldest_observation_evicted_first(self):
        compensator = Compensator(33.0, 0.0, 10.0, history_size=3)
        for gap in (1.0, 2.0, 3.0, 4.0):
            compensator.push_observation(compensator.get_threshold() - gap)

        assert list(compensator.observations) == [2.0, 3.0, 4.0]
        assert compensator.get_compensation() == 3.0

    def test_small_updates_are_suppressed(self):
        """Median moves within MIN_UPDATE do not change compensation."""
        compensator = Compensator(33.0, 0.0, 3.0)
        compensator.push_observation(32.995)
        assert compensator.get_compensation() == 0.0
        assert len(compensator.observations) == 1


class TestSafetyClamps:
    """Capping and inversion guard."""

    def test_seed_beyond_cap_is_capped(self):
        compensator = Compensator(33.0, 5.0, 3.0)
        assert compensator.get_compensation() == 3.0
        assert compensator.get_threshold() == 36.0
        assert compensator.is_capped() is True

    def test_observation_beyond_cap_is_capped(self):
        compensator = Compensator(33.0, 0.0, 3.0)
        compensator.push_observation(28.0)
        assert compensator.compensation == 5.0
        assert compensator.get_compensation() == 3.0
        assert compensator.is_capped() is True

    def test_negative_cap(self):
        compensator = Compensator(4.4, 0.0, -1.0)
        compensator.push_observation(6.9)
        assert compensator.get_compensation() == -1.0
        assert compensator.is_capped() is True

    def test_at_cap_is_not_capped(self):
        compensator = Compensator(33.0, 3.0, 3.0)
        assert compensator.get_compensation() == 3.0
        assert compensator.is_capped() is False

    def test_inversion_guard(self):
        """Compensation of the disallowed sign is reported as zero."""
        compensator = Compensator(33.0, 0.0, 3.0)
        compensator.push_observation(34.0)
        assert compensator.compensation == -1.0
        assert compensator.get_compensation() == 0.0
        assert compensator.get_threshold() == 33.0
        assert compensator.is_capped() is False

    def test_inversion_guard_negative_cap(self):
        compensator = Compensator(4.4, 0.0, -1.0)
        compensator.push_observation(3.9)
        assert compensator.get_compensation() == 0.0
        assert compensator.is_capped() is False

    def test_random_observations_stay_within_bounds(self):
        rng = random.Random(1234)
        for cap in (2.0, -2.0, 0.5, -0.5):
            compensator = Compensator(3.0, 0.0, cap)
            for _ in range(200):
                compensator.push_observation(rng.uniform(-10.0, 15.0))
                effective = compensator.get_compensation()
                assert abs(effective) <= abs(cap)
                assert effective == 0.0 or math.copysign(1.0, effective) == math.copysign(1.0, cap)


class TestInvalidInput:
    """Contract violations and bad data."""

    def test_zero_cap_is_rejected(self):
        with pytest.raises(ValueError):
            Compensator(33.0, 0.0, 0.0)

    def test_nan_cap_is_rejected(self):
        with pytest.raises(ValueError):
            Compensator(33.0, 0.0, float('nan'))

    def test_nan_observation_is_discarded(self, caplog):
        compensator = Compensator(33.0, 0.5, 3.0)
        compensator.push_observation(float('nan'))
        assert len(compensator.observations) == 0
        assert compensator.get_compensation() == 0.5
        assert "Ignoring invalid observation" in caplog.text

    def test_infinite_observation_is_discarded(self):
        compensator = Compensator(33.0, 0.0, 3.0)
        compensator.push_observation(float('-inf'))
        assert len(compensator.observations) == 0
        assert compensator.get_compensation() == 0.0
