# repwatch/counter/web_pipeline.py
from __future__ import annotations
from typing import Optional, Tuple

from repwatch.counter.keypoints import Prediction


class WebCamera:
    """
    'Camera' for sessions where the browser runs the pose model and pushes
    keypoint frames. No device, no threads. Each pushed frame is read at most
    once; only the newest unread frame is kept.
    """
    def __init__(self, fps: int = 30):
        self.fps = fps
        self.frame_size: Tuple[int, int] = (0, 0)
        self._running = False
        self._pending: Optional[Prediction] = None

    async def start(self, width: int, height: int):
        self.frame_size = (int(width), int(height))
        self._pending = None
        self._running = True

    def push(self, prediction: Prediction):
        if not self._running:
            return
        self._pending = prediction

    def read(self) -> Optional[Prediction]:
        frame, self._pending = self._pending, None
        return frame

    def stop(self):
        self._running = False
        self._pending = None


class WebPoseSource:
    """Frames from WebCamera are already predictions."""

    def process(self, frame: Optional[Prediction]) -> Optional[Prediction]:
        return frame

    def dispose(self):
        pass
