from __future__ import annotations
import logging
from typing import List, Optional

from repwatch.counter.analysis import CalibrationThresholds
from repwatch.counter.keypoints import Prediction, is_above, is_visible

logger = logging.getLogger(__name__)


class CalibrationEngine:
    """
    Samples the user's overhead reach before a session.

    Only frames where both wrists are confidently above the nose count; each
    adds one y sample per arm. Once every arm has `samples_needed` samples the
    per-arm threshold is their mean, or with `top_fraction` the mean of the
    highest fraction of samples (smallest y).
    """
    def __init__(self, samples_needed: int = 30, confidence_threshold: float = 0.3, top_fraction: Optional[float] = None):
        if samples_needed <= 0:
            raise ValueError("samples_needed must be positive")
        if top_fraction is not None and not 0.0 < top_fraction <= 1.0:
            raise ValueError("top_fraction must be in (0, 1]")
        self.samples_needed = samples_needed
        self.confidence_threshold = confidence_threshold
        self.top_fraction = top_fraction
        self._calibrating = False
        self._left: List[float] = []
        self._right: List[float] = []
        self._thresholds: Optional[CalibrationThresholds] = None

    def start_calibration(self) -> None:
        self.reset_calibration()
        self._calibrating = True
        logger.info("calibration started, raise both arms fully overhead")

    def reset_calibration(self) -> None:
        self._calibrating = False
        self._left = []
        self._right = []
        self._thresholds = None

    def is_calibrating(self) -> bool:
        return self._calibrating

    def is_calibrated(self) -> bool:
        return self._thresholds is not None

    def thresholds(self) -> Optional[CalibrationThresholds]:
        return self._thresholds

    def progress(self) -> float:
        collected = max(len(self._left), len(self._right))
        return min(1.0, collected / self.samples_needed)

    def process(self, prediction: Prediction) -> None:
        if not self._calibrating:
            return

        conf = self.confidence_threshold
        nose, lw, rw = prediction.nose, prediction.left_wrist, prediction.right_wrist
        if not (is_visible(nose, conf) and is_visible(lw, conf) and is_visible(rw, conf)):
            return
        if not (is_above(lw, nose[1]) and is_above(rw, nose[1])):
            return

        if len(self._left) < self.samples_needed:
            self._left.append(lw[1])
        if len(self._right) < self.samples_needed:
            self._right.append(rw[1])

        if len(self._left) >= self.samples_needed and len(self._right) >= self.samples_needed:
            self._finish()

    def _reduce(self, samples: List[float]) -> float:
        if self.top_fraction is None:
            return sum(samples) / len(samples)
        top = sorted(samples)[: max(1, int(len(samples) * self.top_fraction))]
        return sum(top) / len(top)

    def _finish(self) -> None:
        self._thresholds = CalibrationThresholds(left=self._reduce(self._left), right=self._reduce(self._right))
        self._calibrating = False
        logger.info("calibration complete: left=%.1f right=%.1f", self._thresholds.left, self._thresholds.right)
