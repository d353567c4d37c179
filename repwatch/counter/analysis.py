from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from repwatch.counter.keypoints import Prediction, is_above, is_visible

logger = logging.getLogger(__name__)


class LimbGroup(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    BOTH = "both"


# one rep per frame, picked in this order
PRIORITY = (LimbGroup.BOTH, LimbGroup.LEFT, LimbGroup.RIGHT)


class ArmState(str, Enum):
    READY = "ready"
    OVERHEAD = "overhead"
    COMPLETE = "complete"


@dataclass
class DetectionConfig:
    confidence_threshold: float = 0.3
    head_offset_px: float = 50.0     # uncalibrated line = nose.y - offset
    hold_ms: int = 150               # must stay overhead this long to count
    cooldown_ms: int = 300           # must stay down this long to re-arm
    debounce_ms: int = 800           # min spacing between accepted reps, any limb
    calibration_tolerance: float = 0.2


@dataclass(frozen=True)
class CalibrationThresholds:
    left: float
    right: float


@dataclass(frozen=True)
class RepDetection:
    detected: bool
    arm_type: Optional[LimbGroup]
    timestamp: float

    @classmethod
    def none(cls, timestamp: float) -> "RepDetection":
        return cls(False, None, timestamp)


class RepDetector(Protocol):
    def detect(self, prediction: Prediction, now: float) -> RepDetection: ...

    def reset_state(self) -> None: ...

    def set_thresholds(self, thresholds: Optional[CalibrationThresholds]) -> None: ...


@dataclass
class ArmStateMachine:
    limb: LimbGroup
    state: ArmState = ArmState.READY
    last_state_change: float = 0.0
    overhead_detected_time: float = 0.0
    below_head_start_time: float = 0.0  # 0 = unset

    def _enter(self, new_state: ArmState, now: float, dbg: Callable[[str], None]):
        if new_state != self.state:
            dbg(f"{self.limb.value}: {self.state.value}→{new_state.value}")
            self.state = new_state
            self.last_state_change = now

    def step(self, overhead: bool, now: float, cfg: DetectionConfig, dbg: Callable[[str], None]) -> bool:
        """Advance one frame. Returns True on the frame the rep completes."""
        if self.state == ArmState.READY:
            if overhead:
                self.overhead_detected_time = now
                self._enter(ArmState.OVERHEAD, now, dbg)
            return False

        if self.state == ArmState.OVERHEAD:
            if not overhead:
                # false start
                self._enter(ArmState.READY, now, dbg)
                return False
            if (now - self.overhead_detected_time) * 1000.0 > cfg.hold_ms:
                self.below_head_start_time = 0.0
                self._enter(ArmState.COMPLETE, now, dbg)
                return True
            return False

        # COMPLETE: wait for a continuous stretch below the line
        if overhead:
            self.below_head_start_time = 0.0
        elif not self.below_head_start_time:
            self.below_head_start_time = now
        elif (now - self.below_head_start_time) * 1000.0 >= cfg.cooldown_ms:
            self.below_head_start_time = 0.0
            self._enter(ArmState.READY, now, dbg)
        return False


class HoldCooldownDetector:
    """
    Hold/cooldown hysteresis per limb group (left, right, both) with a global
    debounce. A frame without a confident nose and wrist(s) leaves the
    affected machines untouched.
    """
    def __init__(
        self,
        cfg: Optional[DetectionConfig] = None,
        thresholds: Optional[CalibrationThresholds] = None,
        debug_cb: Optional[Callable[[str], None]] = None,
    ):
        self.cfg = cfg or DetectionConfig()
        self._thresholds = thresholds
        self._dbg = debug_cb or logger.debug
        self.machines: Dict[LimbGroup, ArmStateMachine] = {}
        self.last_rep_time: Optional[float] = None
        self.reset_state()

    @property
    def thresholds(self) -> Optional[CalibrationThresholds]:
        return self._thresholds

    def set_thresholds(self, thresholds: Optional[CalibrationThresholds]) -> None:
        self._thresholds = thresholds

    def reset_state(self) -> None:
        self.machines = {group: ArmStateMachine(group) for group in LimbGroup}
        self.last_rep_time = None

    def _lines(self, prediction: Prediction):
        if self._thresholds is not None:
            tol = self.cfg.calibration_tolerance
            left = self._thresholds.left + tol * abs(self._thresholds.left)
            right = self._thresholds.right + tol * abs(self._thresholds.right)
            return left, right
        line = prediction.nose[1] - self.cfg.head_offset_px
        return line, line

    def overhead_status(self, prediction: Prediction) -> Dict[LimbGroup, Optional[bool]]:
        """True/False per group, None when the frame can't tell."""
        conf = self.cfg.confidence_threshold
        status: Dict[LimbGroup, Optional[bool]] = {g: None for g in LimbGroup}
        if not is_visible(prediction.nose, conf):
            return status

        left_line, right_line = self._lines(prediction)
        lw, rw = prediction.left_wrist, prediction.right_wrist
        if is_visible(lw, conf):
            status[LimbGroup.LEFT] = is_above(lw, left_line)
        if is_visible(rw, conf):
            status[LimbGroup.RIGHT] = is_above(rw, right_line)
        if status[LimbGroup.LEFT] is not None and status[LimbGroup.RIGHT] is not None:
            status[LimbGroup.BOTH] = status[LimbGroup.LEFT] and status[LimbGroup.RIGHT]
        return status

    def detect(self, prediction: Prediction, now: float) -> RepDetection:
        status = self.overhead_status(prediction)

        completed: List[LimbGroup] = []
        for group in PRIORITY:
            overhead = status[group]
            if overhead is None:
                continue
            if self.machines[group].step(overhead, now, self.cfg, self._dbg):
                completed.append(group)

        if not completed:
            return RepDetection.none(now)

        winner = completed[0]
        if self.last_rep_time is not None and (now - self.last_rep_time) * 1000.0 < self.cfg.debounce_ms:
            self._dbg(f"{winner.value}: rep suppressed by debounce")
            return RepDetection.none(now)

        self.last_rep_time = now
        self._dbg(f"rep++ ({winner.value})")
        return RepDetection(True, winner, now)


class ThresholdBandDetector:
    """
    Calibrated edge detector: a rep is a visible wrist entering the band
    |y - t| <= error_margin * t around its arm's calibrated threshold t.
    Inert until thresholds are set.
    """
    def __init__(
        self,
        cfg: Optional[DetectionConfig] = None,
        error_margin: float = 0.4,
        debounce_ms: int = 500,
        thresholds: Optional[CalibrationThresholds] = None,
    ):
        self.cfg = cfg or DetectionConfig()
        self.error_margin = error_margin
        self.debounce_ms = debounce_ms
        self._thresholds = thresholds
        self._in_band = {LimbGroup.LEFT: False, LimbGroup.RIGHT: False}
        self.last_rep_time: Optional[float] = None

    def set_thresholds(self, thresholds: Optional[CalibrationThresholds]) -> None:
        self._thresholds = thresholds

    def reset_state(self) -> None:
        self._in_band = {LimbGroup.LEFT: False, LimbGroup.RIGHT: False}
        self.last_rep_time = None

    def _arm_in_band(self, kp, threshold: float) -> bool:
        if not is_visible(kp, self.cfg.confidence_threshold):
            return False
        return abs(kp[1] - threshold) <= threshold * self.error_margin

    def detect(self, prediction: Prediction, now: float) -> RepDetection:
        if self._thresholds is None:
            return RepDetection.none(now)

        left = self._arm_in_band(prediction.left_wrist, self._thresholds.left)
        right = self._arm_in_band(prediction.right_wrist, self._thresholds.right)
        left_entered = left and not self._in_band[LimbGroup.LEFT]
        right_entered = right and not self._in_band[LimbGroup.RIGHT]
        self._in_band = {LimbGroup.LEFT: left, LimbGroup.RIGHT: right}

        if self.last_rep_time is not None and (now - self.last_rep_time) * 1000.0 < self.debounce_ms:
            return RepDetection.none(now)

        if left_entered and right_entered:
            arm = LimbGroup.BOTH
        elif left_entered:
            arm = LimbGroup.LEFT
        elif right_entered:
            arm = LimbGroup.RIGHT
        else:
            return RepDetection.none(now)

        self.last_rep_time = now
        return RepDetection(True, arm, now)


DETECTORS = ("hold", "band")


def make_detector(kind: str, cfg: Optional[DetectionConfig] = None) -> RepDetector:
    """Build a detector by name: "hold" (hold/cooldown) or "band" (calibrated band)."""
    if kind == "hold":
        return HoldCooldownDetector(cfg)
    if kind == "band":
        return ThresholdBandDetector(cfg)
    raise ValueError(f"unknown detector {kind!r}, expected one of {', '.join(DETECTORS)}")
