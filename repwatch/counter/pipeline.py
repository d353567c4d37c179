from __future__ import annotations
import asyncio
import logging
from typing import Optional, Tuple

import cv2
import numpy as np
import mediapipe as mp

from repwatch.common.errors import CollaboratorError
from repwatch.counter.keypoints import Prediction

logger = logging.getLogger(__name__)

# MediaPipe Pose landmark index for each COCO keypoint
MP_TO_COCO = (0, 2, 5, 7, 8, 11, 12, 13, 14, 15, 16, 23, 24, 25, 26, 27, 28)

SKELETON = ((5, 7), (7, 9), (6, 8), (8, 10), (5, 6), (5, 11), (6, 12), (11, 12),
            (11, 13), (13, 15), (12, 14), (14, 16))


class OpenCVCamera:
    """Local webcam through cv2.VideoCapture."""

    def __init__(self, index: int = 0, fps: int = 30):
        self.index = index
        self.fps = fps
        self.cap = None
        self.frame_size: Tuple[int, int] = (0, 0)

    def _open(self, width: int, height: int):
        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise CollaboratorError("camera", f"webcam {self.index} not available (check permissions)")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.frame_size = (
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)) or width,
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)) or height,
        )
        return cap

    async def start(self, width: int, height: int):
        if self.cap is not None:
            return
        self.cap = await asyncio.to_thread(self._open, width, height)

    def read(self) -> Optional[np.ndarray]:
        if self.cap is None:
            return None
        ok, frame = self.cap.read()
        if not ok:
            return None
        return frame

    def stop(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class MediaPipePoseSource:
    """MediaPipe Pose mapped onto the 17-point COCO schema, pixel coordinates."""

    def __init__(self, model_complexity: int = 1, min_detection_confidence: float = 0.5, min_tracking_confidence: float = 0.5):
        try:
            self.pose = mp.solutions.pose.Pose(
                model_complexity=model_complexity,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
        except Exception as e:
            raise CollaboratorError("pose model", str(e)) from e

    def process(self, frame: Optional[np.ndarray]) -> Optional[Prediction]:
        if frame is None:
            return None
        h, w = frame.shape[:2]
        res = self.pose.process(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        if not res.pose_landmarks:
            return Prediction.empty()

        lm = res.pose_landmarks.landmark
        kps = tuple((lm[i].x * w, lm[i].y * h, float(lm[i].visibility)) for i in MP_TO_COCO)
        pts = np.array([(x, y) for x, y, c in kps if c > 0.5], dtype=float)
        if len(pts):
            box = (float(pts[:, 0].min()), float(pts[:, 1].min()), float(pts[:, 0].max()), float(pts[:, 1].max()))
        else:
            box = (0.0, 0.0, 0.0, 0.0)
        score = float(np.mean([c for _, _, c in kps]))
        return Prediction(keypoints=kps, box=box, score=score)

    def dispose(self):
        if self.pose is not None:
            self.pose.close()
            self.pose = None


def draw_overlay(frame: np.ndarray, prediction: Prediction, lines: Tuple[str, ...] = (), min_confidence: float = 0.5):
    kps = prediction.keypoints
    for a, b in SKELETON:
        if kps[a][2] >= min_confidence and kps[b][2] >= min_confidence:
            cv2.line(frame, (int(kps[a][0]), int(kps[a][1])), (int(kps[b][0]), int(kps[b][1])), (255, 255, 255), 2)
    for x, y, c in kps:
        if c >= min_confidence:
            cv2.circle(frame, (int(x), int(y)), 5, (0, 255, 0), -1)
    for i, text in enumerate(lines):
        cv2.putText(frame, text, (20, 40 + 35 * i), cv2.FONT_HERSHEY_SIMPLEX, 1, (0, 255, 0), 2)
    return frame
