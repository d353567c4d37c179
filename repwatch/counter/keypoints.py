from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Tuple

# (x, y, confidence) in frame pixel space
Keypoint = Tuple[float, float, float]
Box = Tuple[float, float, float, float]

# COCO 17-keypoint order
KEYPOINT_NAMES = (
    "nose",
    "left_eye", "right_eye",
    "left_ear", "right_ear",
    "left_shoulder", "right_shoulder",
    "left_elbow", "right_elbow",
    "left_wrist", "right_wrist",
    "left_hip", "right_hip",
    "left_knee", "right_knee",
    "left_ankle", "right_ankle",
)
KP = {name: i for i, name in enumerate(KEYPOINT_NAMES)}
NUM_KEYPOINTS = len(KEYPOINT_NAMES)

NOSE = KP["nose"]
LEFT_WRIST = KP["left_wrist"]
RIGHT_WRIST = KP["right_wrist"]


@dataclass(frozen=True)
class Prediction:
    """One pose result for one processed frame."""
    keypoints: Tuple[Keypoint, ...]
    box: Box = (0.0, 0.0, 0.0, 0.0)
    score: float = 0.0

    def __post_init__(self):
        if len(self.keypoints) != NUM_KEYPOINTS:
            raise ValueError(f"expected {NUM_KEYPOINTS} keypoints, got {len(self.keypoints)}")

    @classmethod
    def from_lists(cls, keypoints: Sequence[Sequence[float]], box: Sequence[float] = (0, 0, 0, 0), score: float = 0.0) -> "Prediction":
        kps = tuple((float(k[0]), float(k[1]), float(k[2])) for k in keypoints)
        bx = tuple(float(v) for v in box)
        if len(bx) != 4:
            raise ValueError("box must have 4 values")
        return cls(keypoints=kps, box=bx, score=float(score))  # type: ignore[arg-type]

    @classmethod
    def empty(cls) -> "Prediction":
        return cls(keypoints=tuple((0.0, 0.0, 0.0) for _ in range(NUM_KEYPOINTS)))

    def __getitem__(self, index: int) -> Keypoint:
        return self.keypoints[index]

    @property
    def nose(self) -> Keypoint:
        return self.keypoints[NOSE]

    @property
    def left_wrist(self) -> Keypoint:
        return self.keypoints[LEFT_WRIST]

    @property
    def right_wrist(self) -> Keypoint:
        return self.keypoints[RIGHT_WRIST]


def is_visible(kp: Keypoint, min_confidence: float) -> bool:
    return kp[2] >= min_confidence


def is_above(kp: Keypoint, line_y: float) -> bool:
    # image y grows downwards
    return kp[1] < line_y
