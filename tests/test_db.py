from __future__ import annotations

import pytest

from repwatch.common.settings import DEFAULT_SETTINGS, WorkoutSettings
from repwatch.counter.analysis import LimbGroup
from repwatch.counter.stats import Rep, WorkoutSession
from repwatch.data import db


@pytest.fixture
def store(tmp_path):
    db.configure(tmp_path / "repwatch.db")
    yield db
    db.configure(tmp_path / "closed.db")


def _raw_settings(value: str):
    conn = db.get_conn()
    with conn:
        conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?,?)", (db.SETTINGS_KEY, value))


def test_settings_round_trip(store):
    assert store.load_settings() is None
    settings = WorkoutSettings(countdown_duration=5, session_duration=60, beep_interval=10, beep_unit="seconds")
    store.save_settings(settings)
    assert store.load_settings() == settings

    store.clear_settings()
    assert store.load_settings() is None


def test_partial_settings_merge_over_defaults(store):
    _raw_settings('{"beep_interval": 4}')
    loaded = store.load_settings()
    assert loaded.beep_interval == 4
    assert loaded.countdown_duration == DEFAULT_SETTINGS.countdown_duration
    assert loaded.announcement_unit == DEFAULT_SETTINGS.announcement_unit


@pytest.mark.parametrize("raw", ["not json", '{"countdown_duration": -1}', '{"beep_unit": "minutes"}'])
def test_unreadable_settings_yield_none(store, raw):
    _raw_settings(raw)
    assert store.load_settings() is None


def _session(start, reps):
    return WorkoutSession(
        start_time=start,
        reps=[Rep(timestamp=ts, arm_type=arm) for ts, arm in reps],
        total_reps=len(reps),
        reps_per_minute=12.0,
        estimated_reps_per_minute=15.0,
    )


def test_save_get_list_delete(store):
    first = _session(100.0, [(105.0, LimbGroup.LEFT), (110.0, LimbGroup.BOTH)])
    second = _session(200.0, [(230.0, LimbGroup.RIGHT)])
    store.save_session("workout_a", first, 2048)
    store.save_session("workout_b", second, 0)

    listed = store.list_sessions()
    assert [m.id for m in listed] == ["workout_b", "workout_a"]
    assert listed[1].duration_s == pytest.approx(10.0)
    assert listed[1].video_size == 2048
    assert listed[1].total_reps == 2

    loaded = store.get_session("workout_a")
    assert loaded == first
    assert loaded.reps[1].arm_type is LimbGroup.BOTH

    assert store.delete_session("workout_a") is True
    assert store.delete_session("workout_a") is False
    assert store.get_session("workout_a") is None
    assert [m.id for m in store.list_sessions()] == ["workout_b"]


def test_save_session_replaces_existing(store):
    store.save_session("workout_a", _session(100.0, [(101.0, LimbGroup.LEFT)]), 0)
    store.save_session("workout_a", _session(100.0, [(101.0, LimbGroup.LEFT), (103.0, LimbGroup.RIGHT)]), 0)
    assert store.get_session("workout_a").total_reps == 2
    assert len(store.list_sessions()) == 1
