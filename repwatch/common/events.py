from __future__ import annotations
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    STATE = "state"
    COUNTDOWN = "countdown"
    CALIBRATION_PROGRESS = "calibration_progress"
    SESSION_UPDATE = "session_update"
    SESSION_END_COUNTDOWN = "session_end_countdown"
    TIME_UP = "time_up"
    ERROR = "error"
    TONE = "tone"
    SPEAK = "speak"
    CANCEL_SPEECH = "cancel_speech"


@dataclass
class _Event:
    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["type"] = self.type.value
        return out


@dataclass
class StateEvent(_Event):
    type: EventType
    ts: float
    state: str


@dataclass
class CountdownEvent(_Event):
    type: EventType  # COUNTDOWN or SESSION_END_COUNTDOWN
    ts: float
    value: Optional[int]  # None = hidden


@dataclass
class ProgressEvent(_Event):
    type: EventType
    ts: float
    fraction: float


@dataclass
class SessionEvent(_Event):
    type: EventType
    ts: float
    session: Optional[Dict[str, Any]]


@dataclass
class ErrorEvent(_Event):
    type: EventType
    ts: float
    message: str


@dataclass
class ToneEvent(_Event):
    type: EventType
    freq: float
    duration_ms: int
    volume: float


@dataclass
class SpeakEvent(_Event):
    type: EventType
    text: str
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 0.8
