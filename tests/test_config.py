from __future__ import annotations

import pytest

from repwatch.common.config import AppConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("REPWATCH_DETECTOR", "REPWATCH_CALIBRATE", "REPWATCH_HOST", "REPWATCH_PORT", "REPWATCH_HOLD_MS"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_config()
    assert config.detector == "hold"
    assert not config.needs_calibration
    assert (config.host, config.port) == ("127.0.0.1", 8000)


def test_band_detector_implies_calibration(monkeypatch):
    monkeypatch.setenv("REPWATCH_DETECTOR", "Band")
    config = load_config()
    assert config.detector == "band"
    assert config.needs_calibration


def test_unknown_detector_falls_back_to_hold(monkeypatch, caplog):
    monkeypatch.setenv("REPWATCH_DETECTOR", "swing")
    assert load_config().detector == "hold"
    assert "REPWATCH_DETECTOR" in caplog.text


def test_server_address_and_bad_numbers(monkeypatch):
    monkeypatch.setenv("REPWATCH_HOST", "0.0.0.0")
    monkeypatch.setenv("REPWATCH_PORT", "9001")
    monkeypatch.setenv("REPWATCH_HOLD_MS", "long")
    config = load_config()
    assert (config.host, config.port) == ("0.0.0.0", 9001)
    assert config.detection.hold_ms == 150


def test_calibrate_flag_alone_needs_calibration():
    assert AppConfig(calibrate=True).needs_calibration
