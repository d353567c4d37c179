from __future__ import annotations
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response

from repwatch.common.config import AppConfig, load_config
from repwatch.common.events import (
    CountdownEvent, ErrorEvent, EventType, ProgressEvent, SessionEvent,
    SpeakEvent, StateEvent, ToneEvent,
)
from repwatch.common.settings import DEFAULT_SETTINGS, WorkoutSettings
from repwatch.counter.analysis import make_detector
from repwatch.counter.calibration import CalibrationEngine
from repwatch.counter.keypoints import Prediction
from repwatch.counter.session import OrchestratorCallbacks, WorkoutOrchestrator
from repwatch.counter.stats import session_to_dict
from repwatch.counter.web_pipeline import WebCamera, WebPoseSource
from repwatch.data import db
from repwatch.data.recording import NullRecorder

logger = logging.getLogger(__name__)


class Hub:
    """Fan-out of orchestrator events to every connected WebSocket client."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    def publish(self, ev: dict):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop, nobody can be listening
        loop.create_task(self.broadcast(ev))

    async def broadcast(self, obj: dict):
        text = json.dumps(obj)
        dead = []
        for ws in list(self.clients):
            try:
                await ws.send_text(text)
            except Exception:
                dead.append(ws)
        for d in dead:
            self.clients.discard(d)


class BroadcastAudio:
    """Audio primitives that ask the browser to make the sound."""

    def __init__(self, hub: Hub):
        self.hub = hub

    def play_tone(self, freq: float, duration_ms: int, volume: float):
        self.hub.publish(ToneEvent(EventType.TONE, freq, duration_ms, volume).to_dict())

    def speak(self, text: str, rate: float = 1.0, pitch: float = 1.0, volume: float = 0.8):
        self.hub.publish(SpeakEvent(EventType.SPEAK, text, rate, pitch, volume).to_dict())

    def cancel_speech(self):
        self.hub.publish({"type": EventType.CANCEL_SPEECH.value})


def _callbacks(hub: Hub) -> OrchestratorCallbacks:
    def emit(ev):
        hub.publish(ev.to_dict())

    return OrchestratorCallbacks(
        on_state_change=lambda s: emit(StateEvent(EventType.STATE, time.time(), s.value)),
        on_countdown=lambda v: emit(CountdownEvent(EventType.COUNTDOWN, time.time(), v)),
        on_session_end_countdown=lambda v: emit(CountdownEvent(EventType.SESSION_END_COUNTDOWN, time.time(), v)),
        on_calibration_progress=lambda f: emit(ProgressEvent(EventType.CALIBRATION_PROGRESS, time.time(), f)),
        on_session_update=lambda s: emit(SessionEvent(EventType.SESSION_UPDATE, time.time(), session_to_dict(s))),
        on_error=lambda m: emit(ErrorEvent(EventType.ERROR, time.time(), m)),
        on_time_up=lambda: hub.publish({"type": EventType.TIME_UP.value, "ts": time.time()}),
    )


def build_orchestrator(config: AppConfig, hub: Hub, settings: WorkoutSettings) -> WorkoutOrchestrator:
    calibration = None
    if config.needs_calibration:
        calibration = CalibrationEngine(confidence_threshold=config.detection.confidence_threshold)
    return WorkoutOrchestrator(
        pose_source=WebPoseSource(),
        camera=WebCamera(fps=config.fps),
        audio=BroadcastAudio(hub),
        recorder=NullRecorder(),
        storage=db,
        settings_store=db,
        settings=settings,
        detector=make_detector(config.detector, config.detection),
        calibration=calibration,
        callbacks=_callbacks(hub),
        frame_interval_s=config.frame_interval_s,
        frame_size=(config.frame_width, config.frame_height),
    )


def _status_dict(orch: WorkoutOrchestrator) -> dict:
    st = orch.status()
    return {
        "state": st.state.value,
        "total_reps": st.total_reps,
        "error": st.error,
        "session": session_to_dict(st.session),
    }


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    config = config or load_config()
    hub = Hub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.configure(config.db_path)
        settings = db.load_settings() or DEFAULT_SETTINGS
        app.state.orchestrator = build_orchestrator(config, hub, settings)
        logger.info("server ready (db=%s, calibrate=%s)", config.db_path, config.calibrate)
        try:
            yield
        finally:
            app.state.orchestrator.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.hub = hub

    def orch() -> WorkoutOrchestrator:
        return app.state.orchestrator

    @app.get("/favicon.ico")
    async def favicon():
        return Response(status_code=204)

    @app.get("/session/current")
    async def current():
        return JSONResponse(_status_dict(orch()))

    async def _start(retry: bool):
        m = orch()
        ok = await (m.retry() if retry else m.start())
        if not ok:
            raise HTTPException(status_code=409, detail=m.error or f"cannot start while {m.state.value}")
        return _status_dict(m)

    @app.post("/session/start")
    async def start():
        return await _start(retry=False)

    @app.post("/session/retry")
    async def retry():
        return await _start(retry=True)

    @app.post("/session/stop")
    async def stop():
        session = orch().stop()
        return {"stopped": session is not None, "session": session_to_dict(session)}

    @app.get("/settings")
    async def get_settings():
        return orch().settings.model_dump()

    @app.put("/settings")
    async def put_settings(settings: WorkoutSettings):
        orch().update_settings(settings)
        return settings.model_dump()

    @app.get("/sessions")
    async def sessions():
        return [asdict(m) for m in db.list_sessions()]

    @app.get("/sessions/{workout_id}")
    async def session_detail(workout_id: str):
        session = db.get_session(workout_id)
        if session is None:
            raise HTTPException(status_code=404, detail="session not found")
        return session_to_dict(session)

    @app.delete("/sessions/{workout_id}")
    async def delete_session(workout_id: str):
        if not db.delete_session(workout_id):
            raise HTTPException(status_code=404, detail="session not found")
        return {"deleted": True, "id": workout_id}

    @app.websocket("/ws/keypoints")
    async def ws_keypoints(ws: WebSocket):
        await ws.accept()
        hub.clients.add(ws)
        m = orch()
        await ws.send_text(json.dumps(StateEvent(EventType.STATE, time.time(), m.state.value).to_dict()))
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    data = json.loads(raw)
                    if not isinstance(data, dict) or data.get("type") != "frame":
                        continue
                    prediction = Prediction.from_lists(
                        data.get("keypoints") or [],
                        data.get("box") or (0, 0, 0, 0),
                        float(data.get("score", 0.0)),
                    )
                except (TypeError, ValueError, IndexError) as e:
                    logger.warning("dropping malformed frame: %s", e)
                    continue
                m.camera.push(prediction)
        except WebSocketDisconnect:
            pass
        finally:
            hub.clients.discard(ws)

    return app


app = create_app()


def main():
    import uvicorn

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("repwatch.runtime.server:app", host=config.host, port=config.port)


if __name__ == "__main__":
    main()
