from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from repwatch.common.config import AppConfig
from repwatch.common.settings import WorkoutSettings
from repwatch.counter.analysis import HoldCooldownDetector, LimbGroup, ThresholdBandDetector
from repwatch.counter.stats import Rep, WorkoutSession
from repwatch.data import db
from repwatch.runtime.server import Hub, build_orchestrator, create_app


@pytest.fixture
def client(tmp_path):
    app = create_app(AppConfig(db_path=tmp_path / "server.db"))
    with TestClient(app) as c:
        yield c


def test_current_session_is_idle(client):
    body = client.get("/session/current").json()
    assert body == {"state": "idle", "total_reps": 0, "error": None, "session": None}


def test_settings_update_is_persisted(client):
    assert client.get("/settings").json()["countdown_duration"] == 3

    res = client.put("/settings", json={"countdown_duration": 5, "beep_interval": 10, "beep_unit": "seconds"})
    assert res.status_code == 200
    assert client.get("/settings").json()["beep_interval"] == 10
    assert db.load_settings() == WorkoutSettings(countdown_duration=5, beep_interval=10, beep_unit="seconds")


def test_invalid_settings_rejected(client):
    res = client.put("/settings", json={"countdown_duration": -2})
    assert res.status_code == 422


def test_start_then_stop_during_countdown(client):
    res = client.post("/session/start")
    assert res.status_code == 200
    assert res.json()["state"] == "countdown"

    assert client.post("/session/start").status_code == 409

    res = client.post("/session/stop")
    assert res.json() == {"stopped": False, "session": None}
    assert client.get("/session/current").json()["state"] == "idle"


def test_session_history(client):
    session = WorkoutSession(
        start_time=50.0,
        reps=[Rep(timestamp=55.0, arm_type=LimbGroup.RIGHT)],
        total_reps=1,
        reps_per_minute=12.0,
        estimated_reps_per_minute=1.0,
    )
    db.save_session("workout_x", session, 10)

    listed = client.get("/sessions").json()
    assert [s["id"] for s in listed] == ["workout_x"]

    detail = client.get("/sessions/workout_x").json()
    assert detail["reps"] == [{"timestamp": 55.0, "arm_type": "right"}]

    assert client.delete("/sessions/workout_x").status_code == 200
    assert client.get("/sessions/workout_x").status_code == 404
    assert client.delete("/sessions/workout_x").status_code == 404


def test_websocket_greets_and_survives_bad_frames(client):
    with client.websocket_connect("/ws/keypoints") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "state"
        assert hello["state"] == "idle"

        ws.send_text("not json")
        ws.send_json({"type": "frame", "keypoints": [[0, 0, 0]] * 3})
        ws.send_json({"type": "frame", "keypoints": [[0, 0, 0.9]] * 17, "box": [0, 0, 1, 1], "score": 0.9})

    assert client.get("/session/current").status_code == 200


def test_detector_choice_reaches_the_orchestrator(tmp_path):
    hold = build_orchestrator(AppConfig(db_path=tmp_path / "a.db"), Hub(), WorkoutSettings())
    assert isinstance(hold.detector, HoldCooldownDetector)
    assert hold.calibration is None

    band = build_orchestrator(AppConfig(db_path=tmp_path / "b.db", detector="band"), Hub(), WorkoutSettings())
    assert isinstance(band.detector, ThresholdBandDetector)
    assert band.calibration is not None
