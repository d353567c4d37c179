from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from repwatch.audio.feedback import AudioFeedbackCoordinator, AudioPrimitives
from repwatch.common.errors import InvalidStateError
from repwatch.common.settings import DEFAULT_SETTINGS, WorkoutSettings
from repwatch.common.timers import LoopScheduler, Scheduler, Timer, cancel_timer
from repwatch.counter.analysis import HoldCooldownDetector, RepDetector
from repwatch.counter.calibration import CalibrationEngine
from repwatch.counter.keypoints import Prediction
from repwatch.counter.stats import RepCounter, WorkoutSession

logger = logging.getLogger(__name__)

WORKOUT_ID_PREFIX = "workout_"


class SessionState(str, Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    COUNTDOWN = "countdown"
    ACTIVE = "active"


@dataclass
class OrchestratorCallbacks:
    on_session_update: Optional[Callable[[Optional[WorkoutSession]], None]] = None
    on_countdown: Optional[Callable[[Optional[int]], None]] = None
    on_session_end_countdown: Optional[Callable[[Optional[int]], None]] = None
    on_calibration_progress: Optional[Callable[[float], None]] = None
    on_error: Optional[Callable[[str], None]] = None
    on_state_change: Optional[Callable[[SessionState], None]] = None
    on_time_up: Optional[Callable[[], None]] = None


@dataclass
class SessionStatus:
    state: SessionState
    total_reps: int
    error: Optional[str]
    session: Optional[WorkoutSession]


def new_workout_id(now: float) -> str:
    return WORKOUT_ID_PREFIX + datetime.fromtimestamp(now, tz=timezone.utc).isoformat()


class WorkoutOrchestrator:
    """
    idle -> [calibrating] -> countdown -> active -> idle, reusable across
    sessions. Owns the frame loop and every session timer; each of them is
    cancelled synchronously when the state it belongs to is left.
    """
    def __init__(
        self,
        pose_source,
        camera,
        audio: AudioPrimitives,
        *,
        recorder=None,
        storage=None,
        settings_store=None,
        settings: Optional[WorkoutSettings] = None,
        scheduler: Optional[Scheduler] = None,
        detector: Optional[RepDetector] = None,
        calibration: Optional[CalibrationEngine] = None,
        counter: Optional[RepCounter] = None,
        callbacks: Optional[OrchestratorCallbacks] = None,
        renderer: Optional[Callable[[Any, Prediction], None]] = None,
        frame_interval_s: float = 1 / 30,
        frame_size: Tuple[int, int] = (640, 480),
        session_end_warning_s: int = 3,
    ):
        self.pose_source = pose_source
        self.camera = camera
        self.recorder = recorder
        self.storage = storage
        self.settings_store = settings_store
        self._settings = settings or DEFAULT_SETTINGS
        self.scheduler = scheduler or LoopScheduler()
        self.detector = detector or HoldCooldownDetector()
        self.calibration = calibration
        self.counter = counter or RepCounter()
        self.feedback = AudioFeedbackCoordinator(audio, self._settings, self.scheduler)
        self.callbacks = callbacks or OrchestratorCallbacks()
        self.renderer = renderer
        self.frame_interval_s = frame_interval_s
        self.frame_size = frame_size
        self.session_end_warning_s = session_end_warning_s

        self._state = SessionState.IDLE
        self._error: Optional[str] = None
        self._generation = 0
        self._disposed = False
        self._workout_id: Optional[str] = None
        self._recording = False

        self._loop_alive = False
        self._frame_timer: Optional[Timer] = None
        self._countdown_timer: Optional[Timer] = None
        self._countdown_value: Optional[int] = None
        self._end_warning_timer: Optional[Timer] = None
        self._end_countdown_timer: Optional[Timer] = None
        self._end_countdown_value: Optional[int] = None
        self._time_limit_timer: Optional[Timer] = None

    # ---- read-only views

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def settings(self) -> WorkoutSettings:
        return self._settings

    @property
    def error(self) -> Optional[str]:
        return self._error

    def status(self) -> SessionStatus:
        session = self.counter.get_current_session()
        return SessionStatus(
            state=self._state,
            total_reps=session.total_reps if session else 0,
            error=self._error,
            session=session,
        )

    # ---- callbacks

    def _call(self, name: str, *args):
        cb = getattr(self.callbacks, name)
        if cb is None:
            return
        try:
            cb(*args)
        except Exception:
            logger.exception("%s callback failed", name)

    def _set_state(self, new_state: SessionState):
        if new_state != self._state:
            logger.info("state %s -> %s", self._state.value, new_state.value)
            self._state = new_state
            self._call("on_state_change", new_state)

    def _report(self, message: str):
        logger.warning(message)
        self._call("on_error", message)

    # ---- public control surface

    async def start(self) -> bool:
        if self._disposed:
            self._report("orchestrator has been disposed")
            return False
        if self._state is not SessionState.IDLE:
            self._report("a session is already running")
            return False
        if self._error is not None:
            self._report(f"cannot start until the error is cleared: {self._error}")
            return False

        self._generation += 1
        gen = self._generation
        calibrating = self.calibration is not None
        self._set_state(SessionState.CALIBRATING if calibrating else SessionState.COUNTDOWN)

        try:
            await self.camera.start(*self.frame_size)
        except Exception as e:
            if gen == self._generation:
                self._fail(f"Failed to start camera: {e}")
            return False

        if gen != self._generation:
            # stop() ran while the camera was starting
            self.camera.stop()
            return False

        self._loop_alive = True
        self._schedule_frame()
        if calibrating:
            self.calibration.start_calibration()
            self._call("on_calibration_progress", 0.0)
        else:
            self._begin_countdown()
        return True

    async def retry(self) -> bool:
        self._error = None
        return await self.start()

    def stop(self) -> Optional[WorkoutSession]:
        return self._finish(manual=True)

    def update_settings(self, settings: WorkoutSettings):
        self._settings = settings
        self.feedback.update_settings(settings)
        if self.settings_store is not None:
            try:
                self.settings_store.save_settings(settings)
            except Exception as e:
                logger.warning("failed to save settings: %s", e)

    def dispose(self):
        self.stop()
        if self._disposed:
            return
        self._disposed = True
        self.feedback.dispose()
        try:
            self.pose_source.dispose()
        except Exception as e:
            logger.warning("pose source dispose failed: %s", e)

    # ---- frame loop

    def _schedule_frame(self):
        if self._loop_alive:
            self._frame_timer = self.scheduler.call_later(self.frame_interval_s, self._process_frame)

    def _process_frame(self):
        self._frame_timer = None
        if not self._loop_alive or self._state is SessionState.IDLE:
            return

        try:
            frame = self.camera.read()
            prediction = self.pose_source.process(frame) if frame is not None else None
            if self._state is SessionState.ACTIVE and self._recording and frame is not None:
                self.recorder.write(frame)
        except Exception as e:
            logger.exception("frame processing failed")
            self._fail(f"Camera or pose model failed: {e}")
            return

        if prediction is not None:
            if self._state is SessionState.CALIBRATING:
                self._handle_calibration_frame(prediction)
            elif self._state is SessionState.ACTIVE:
                self._handle_active_frame(prediction)

            if self.renderer is not None and self._loop_alive:
                try:
                    self.renderer(frame, prediction)
                except Exception:
                    logger.exception("renderer failed")

        self._schedule_frame()

    def _handle_calibration_frame(self, prediction: Prediction):
        self.calibration.process(prediction)
        self._call("on_calibration_progress", self.calibration.progress())
        if self.calibration.is_calibrated():
            self.detector.set_thresholds(self.calibration.thresholds())
            self._begin_countdown()

    def _handle_active_frame(self, prediction: Prediction):
        detection = self.detector.detect(prediction, self.scheduler.now())
        if not detection.detected:
            return
        try:
            session = self.counter.add_rep(detection.arm_type, detection.timestamp)
        except InvalidStateError as e:
            self._report(str(e))
            return
        self.feedback.handle_session_update(session)
        self._call("on_session_update", session)

    # ---- countdown

    def _begin_countdown(self):
        n = self._settings.countdown_duration
        if n <= 0:
            self._enter_active()
            return
        self._set_state(SessionState.COUNTDOWN)
        self._countdown_value = n
        self._call("on_countdown", n)
        self.feedback.play_countdown_beep()
        self._countdown_timer = self.scheduler.call_every(1.0, self._countdown_tick)

    def _countdown_tick(self):
        if self._state is not SessionState.COUNTDOWN:
            return
        self._countdown_value -= 1
        if self._countdown_value > 0:
            self._call("on_countdown", self._countdown_value)
            self.feedback.play_countdown_beep()
            return
        cancel_timer(self._countdown_timer)
        self._countdown_timer = None
        self._hide_countdown()
        self.feedback.play_start_beep()
        self._enter_active()

    def _hide_countdown(self):
        if self._countdown_value is not None:
            self._countdown_value = None
            self._call("on_countdown", None)

    # ---- active session

    def _enter_active(self):
        now = self.scheduler.now()
        self.detector.reset_state()
        try:
            session = self.counter.start(now)
        except InvalidStateError as e:
            self._report(str(e))
            self._finish(manual=True)
            return

        self._workout_id = new_workout_id(now)
        if self.recorder is not None:
            try:
                self.recorder.start_recording(self._workout_id, self.camera)
                self._recording = True
            except Exception as e:
                self._fail(f"Failed to start recording: {e}")
                return

        self.feedback.start_session(session)
        self._set_state(SessionState.ACTIVE)
        self._call("on_session_update", session)
        self._arm_session_timers()

    def _arm_session_timers(self):
        duration = self._settings.session_duration
        if not duration:
            return
        warn_at = duration - self.session_end_warning_s
        if warn_at > 0:
            self._end_warning_timer = self.scheduler.call_later(warn_at, self._begin_end_countdown, self.session_end_warning_s)
        else:
            self._begin_end_countdown(min(self.session_end_warning_s, duration))
        self._time_limit_timer = self.scheduler.call_later(duration, self._on_time_limit)

    def _begin_end_countdown(self, n: int):
        self._end_warning_timer = None
        if self._state is not SessionState.ACTIVE:
            return
        self._end_countdown_value = n
        self._call("on_session_end_countdown", n)
        self.feedback.play_countdown_beep()
        self._end_countdown_timer = self.scheduler.call_every(1.0, self._end_countdown_tick)

    def _end_countdown_tick(self):
        if self._state is not SessionState.ACTIVE or self._end_countdown_value is None:
            return
        self._end_countdown_value -= 1
        if self._end_countdown_value > 0:
            self._call("on_session_end_countdown", self._end_countdown_value)
            self.feedback.play_countdown_beep()
        else:
            self._hide_end_countdown()

    def _hide_end_countdown(self):
        cancel_timer(self._end_countdown_timer)
        self._end_countdown_timer = None
        if self._end_countdown_value is not None:
            self._end_countdown_value = None
            self._call("on_session_end_countdown", None)

    def _on_time_limit(self):
        self._time_limit_timer = None
        if self._state is not SessionState.ACTIVE:
            return
        self._hide_end_countdown()
        if self._settings.auto_stop_on_time_limit:
            logger.info("session time limit reached, stopping")
            self._finish(manual=False)
        else:
            self.feedback.play_time_up()
            self._call("on_time_up")

    # ---- teardown

    def _cancel_all(self):
        self._loop_alive = False
        for name in ("_frame_timer", "_countdown_timer", "_end_warning_timer", "_end_countdown_timer", "_time_limit_timer"):
            cancel_timer(getattr(self, name))
            setattr(self, name, None)

    def _fail(self, message: str):
        if self._state is SessionState.IDLE:
            self._error = message
            logger.error(message)
            self._call("on_error", message)
            return
        self._finish(manual=True, error=message)

    def _finish(self, manual: bool, error: Optional[str] = None) -> Optional[WorkoutSession]:
        if self._state is SessionState.IDLE:
            return None

        was = self._state
        self._generation += 1
        self._cancel_all()
        self._set_state(SessionState.IDLE)

        if was is SessionState.CALIBRATING and self.calibration is not None:
            self.calibration.reset_calibration()

        session = self.counter.stop()
        size = 0
        if self._recording:
            self._recording = False
            try:
                size = self.recorder.stop_recording().size_bytes
            except Exception as e:
                logger.exception("stopping the recording failed")
                error = error or f"Failed to stop recording: {e}"

        if session is not None and self.storage is not None and self._workout_id is not None:
            try:
                self.storage.save_session(self._workout_id, session, size)
            except Exception as e:
                logger.exception("saving the session failed")
                error = error or f"Failed to save session: {e}"
        self._workout_id = None

        if session is not None and error is None:
            self.feedback.end_session(session, manual=manual)
        else:
            self.feedback.stop_session()

        try:
            self.camera.stop()
        except Exception as e:
            logger.warning("camera stop failed: %s", e)

        self._hide_countdown()
        self._hide_end_countdown()
        self._call("on_session_update", session)

        if error is not None:
            self._error = error
            logger.error(error)
            self._call("on_error", error)
        return session
