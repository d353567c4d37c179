from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2

from repwatch.common.errors import CollaboratorError, InvalidStateError

logger = logging.getLogger(__name__)


@dataclass
class Recording:
    workout_id: str
    size_bytes: int


class VideoRecorder:
    """Writes the frames of an active session to <dir>/<workout_id>.mp4."""

    def __init__(self, directory: Path | str, fourcc: str = "mp4v"):
        self.directory = Path(directory)
        self.fourcc = fourcc
        self._writer = None
        self._workout_id: Optional[str] = None
        self._path: Optional[Path] = None

    def is_recording(self) -> bool:
        return self._workout_id is not None

    def path_for(self, workout_id: str) -> Path:
        safe = workout_id.replace(":", "-")
        return self.directory / f"{safe}.mp4"

    def start_recording(self, workout_id: str, stream):
        if self.is_recording():
            raise InvalidStateError("already recording")
        self.directory.mkdir(parents=True, exist_ok=True)
        width, height = stream.frame_size
        path = self.path_for(workout_id)
        writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*self.fourcc), float(stream.fps), (int(width), int(height)))
        if not writer.isOpened():
            raise CollaboratorError("recorder", f"cannot open {path} for writing")
        self._writer, self._workout_id, self._path = writer, workout_id, path

    def write(self, frame):
        if self._writer is None or frame is None:
            return
        self._writer.write(frame)

    def stop_recording(self) -> Recording:
        if not self.is_recording():
            raise InvalidStateError("no active recording")
        self._writer.release()
        workout_id, path = self._workout_id, self._path
        self._writer, self._workout_id, self._path = None, None, None
        size = path.stat().st_size if path.exists() else 0
        logger.info("recording %s closed (%d bytes)", workout_id, size)
        return Recording(workout_id=workout_id, size_bytes=size)

    def dispose(self):
        if self.is_recording():
            self.stop_recording()


class NullRecorder:
    """For sources without local frames (browser-fed sessions)."""

    def __init__(self):
        self._workout_id: Optional[str] = None

    def is_recording(self) -> bool:
        return self._workout_id is not None

    def start_recording(self, workout_id: str, stream):
        if self.is_recording():
            raise InvalidStateError("already recording")
        self._workout_id = workout_id

    def write(self, frame):
        pass

    def stop_recording(self) -> Recording:
        if not self.is_recording():
            raise InvalidStateError("no active recording")
        workout_id, self._workout_id = self._workout_id, None
        return Recording(workout_id=workout_id, size_bytes=0)

    def dispose(self):
        self._workout_id = None
