from __future__ import annotations
import asyncio
import heapq
import itertools
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest

from repwatch.common.errors import CollaboratorError
from repwatch.common.settings import WorkoutSettings
from repwatch.common.timers import Scheduler
from repwatch.counter.analysis import DetectionConfig, HoldCooldownDetector
from repwatch.counter.keypoints import LEFT_WRIST, NOSE, NUM_KEYPOINTS, RIGHT_WRIST, Prediction
from repwatch.counter.session import OrchestratorCallbacks, WorkoutOrchestrator

NOSE_Y = 200.0
UP_Y = 100.0     # above nose_y - 50
DOWN_Y = 300.0


def pose(left=DOWN_Y, right=DOWN_Y, nose=NOSE_Y, conf=0.9, left_conf=None, right_conf=None, nose_conf=None) -> Prediction:
    kps = [(0.0, 0.0, 0.0)] * NUM_KEYPOINTS
    kps[NOSE] = (320.0, nose, conf if nose_conf is None else nose_conf)
    kps[LEFT_WRIST] = (250.0, left, conf if left_conf is None else left_conf)
    kps[RIGHT_WRIST] = (390.0, right, conf if right_conf is None else right_conf)
    return Prediction(keypoints=tuple(kps), box=(0.0, 0.0, 640.0, 480.0), score=conf)


BOTH_UP = pose(left=UP_Y, right=UP_Y)
LEFT_UP = pose(left=UP_Y)
RIGHT_UP = pose(right=UP_Y)
DOWN = pose()


class _Handle:
    def __init__(self, fn: Callable[[], None]):
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Deterministic clock; timers only run inside advance()."""

    def __init__(self, start: float = 1000.0):
        self._now = start
        self._queue: list = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def _arm(self, delay: float, fn: Callable[[], None]):
        handle = _Handle(fn)
        heapq.heappush(self._queue, (self._now + delay, next(self._seq), handle))
        return handle

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def advance(self, seconds: float):
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            when, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, when)
            if not handle.cancelled:
                handle.fn()
        self._now = target


class FakeCamera:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.fps = 30
        self.frame_size = (0, 0)
        self.current: Optional[Prediction] = DOWN
        self.running = False
        self.starts = 0
        self.stops = 0

    async def start(self, width: int, height: int):
        self.starts += 1
        if self.fail:
            raise CollaboratorError("camera", "no webcam")
        self.frame_size = (width, height)
        self.running = True

    def read(self):
        return self.current if self.running else None

    def stop(self):
        self.stops += 1
        self.running = False


class FakePose:
    def __init__(self):
        self.fail = False
        self.disposed = False

    def process(self, frame):
        if self.fail:
            raise RuntimeError("model crashed")
        return frame

    def dispose(self):
        self.disposed = True


class FakeRecorder:
    def __init__(self):
        self.workout_id: Optional[str] = None
        self.frames = 0
        self.started: List[str] = []

    def start_recording(self, workout_id, stream):
        self.workout_id = workout_id
        self.started.append(workout_id)

    def write(self, frame):
        self.frames += 1

    def stop_recording(self):
        workout_id, self.workout_id = self.workout_id, None
        return SimpleNamespace(workout_id=workout_id, size_bytes=1234)


class FakeStorage:
    def __init__(self):
        self.sessions = []
        self.settings = []

    def save_session(self, workout_id, session, size_bytes):
        self.sessions.append((workout_id, session, size_bytes))

    def save_settings(self, settings):
        self.settings.append(settings)


class FakeAudio:
    def __init__(self):
        self.calls = []

    def play_tone(self, freq, duration_ms, volume):
        self.calls.append(("tone", freq, duration_ms, volume))

    def speak(self, text, rate=1.0, pitch=1.0, volume=0.8):
        self.calls.append(("speak", text))

    def cancel_speech(self):
        self.calls.append(("cancel",))

    def tones(self):
        return [c[1:] for c in self.calls if c[0] == "tone"]

    def spoken(self):
        return [c[1] for c in self.calls if c[0] == "speak"]


class Recorded:
    """Collects every orchestrator callback in order."""

    def __init__(self):
        self.events = []

    def callbacks(self) -> OrchestratorCallbacks:
        def rec(name):
            return lambda *args: self.events.append((name,) + args)

        return OrchestratorCallbacks(
            on_session_update=rec("session"),
            on_countdown=rec("countdown"),
            on_session_end_countdown=rec("end_countdown"),
            on_calibration_progress=rec("progress"),
            on_error=rec("error"),
            on_state_change=rec("state"),
            on_time_up=rec("time_up"),
        )

    def of(self, name):
        return [e[1] if len(e) > 1 else None for e in self.events if e[0] == name]


class Rig:
    def __init__(self, settings: Optional[WorkoutSettings] = None, calibration=None, **kwargs):
        self.scheduler = ManualScheduler()
        self.camera = FakeCamera()
        self.pose = FakePose()
        self.recorder = FakeRecorder()
        self.storage = FakeStorage()
        self.audio = FakeAudio()
        self.recorded = Recorded()
        self.detector = HoldCooldownDetector(DetectionConfig())
        self.orch = WorkoutOrchestrator(
            pose_source=self.pose,
            camera=self.camera,
            audio=self.audio,
            recorder=self.recorder,
            storage=self.storage,
            settings_store=self.storage,
            settings=settings,
            scheduler=self.scheduler,
            detector=self.detector,
            calibration=calibration,
            callbacks=self.recorded.callbacks(),
            frame_interval_s=0.1,
            **kwargs,
        )

    def start(self) -> bool:
        return asyncio.run(self.orch.start())

    def retry(self) -> bool:
        return asyncio.run(self.orch.retry())

    def advance(self, seconds: float):
        self.scheduler.advance(seconds)

    def rep(self, frame: Prediction = BOTH_UP):
        """Hold overhead long enough to count, then rest long enough to re-arm."""
        self.camera.current = frame
        self.advance(0.5)
        self.camera.current = DOWN
        self.advance(1.0)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def make_rig():
    return Rig
