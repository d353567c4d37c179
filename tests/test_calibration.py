from __future__ import annotations

import pytest
from conftest import DOWN, LEFT_UP, pose

from repwatch.counter.analysis import CalibrationThresholds
from repwatch.counter.calibration import CalibrationEngine


def test_thresholds_are_sample_means():
    cal = CalibrationEngine(samples_needed=4)
    cal.start_calibration()
    for left, right in [(100, 120), (110, 130), (90, 110), (100, 120)]:
        cal.process(pose(left=float(left), right=float(right)))

    assert cal.is_calibrated()
    assert not cal.is_calibrating()
    assert cal.thresholds() == CalibrationThresholds(left=100.0, right=120.0)
    assert cal.progress() == 1.0


def test_top_fraction_uses_highest_reach():
    cal = CalibrationEngine(samples_needed=4, top_fraction=0.5)
    cal.start_calibration()
    for y in (80.0, 90.0, 140.0, 150.0):
        cal.process(pose(left=y, right=y))
    assert cal.thresholds() == CalibrationThresholds(left=85.0, right=85.0)


def test_only_confident_overhead_frames_count():
    cal = CalibrationEngine(samples_needed=3)
    cal.start_calibration()
    cal.process(DOWN)
    cal.process(LEFT_UP)
    cal.process(pose(left=100.0, right=100.0, nose_conf=0.1))
    cal.process(pose(left=100.0, right=100.0, right_conf=0.1))
    assert cal.progress() == 0.0

    cal.process(pose(left=100.0, right=100.0))
    assert cal.progress() == pytest.approx(1 / 3)
    assert not cal.is_calibrated()


def test_process_is_ignored_when_not_calibrating():
    cal = CalibrationEngine(samples_needed=1)
    cal.process(pose(left=100.0, right=100.0))
    assert cal.progress() == 0.0
    assert cal.thresholds() is None


def test_samples_stop_at_needed_count():
    cal = CalibrationEngine(samples_needed=2)
    cal.start_calibration()
    for _ in range(5):
        cal.process(pose(left=100.0, right=100.0))
    assert cal.progress() == 1.0
    assert cal.thresholds() == CalibrationThresholds(left=100.0, right=100.0)


def test_start_discards_previous_result():
    cal = CalibrationEngine(samples_needed=1)
    cal.start_calibration()
    cal.process(pose(left=100.0, right=100.0))
    assert cal.is_calibrated()

    cal.start_calibration()
    assert not cal.is_calibrated()
    assert cal.is_calibrating()
    assert cal.progress() == 0.0


def test_reset_calibration():
    cal = CalibrationEngine(samples_needed=2)
    cal.start_calibration()
    cal.process(pose(left=100.0, right=100.0))
    cal.reset_calibration()
    assert not cal.is_calibrating()
    assert cal.progress() == 0.0
    assert cal.thresholds() is None


@pytest.mark.parametrize("kwargs", [{"samples_needed": 0}, {"top_fraction": 0.0}, {"top_fraction": 1.5}])
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        CalibrationEngine(**kwargs)
