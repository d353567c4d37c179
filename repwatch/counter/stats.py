from __future__ import annotations
import copy
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from repwatch.common.errors import InvalidStateError
from repwatch.counter.analysis import LimbGroup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rep:
    timestamp: float
    arm_type: LimbGroup


@dataclass
class WorkoutSession:
    start_time: float
    reps: List[Rep] = field(default_factory=list)
    total_reps: int = 0
    reps_per_minute: float = 0.0            # whole-session average
    estimated_reps_per_minute: float = 0.0  # recent cadence


class RepCounter:
    """Owns the one active WorkoutSession. Readers only ever get copies."""

    def __init__(self, rpm_window_s: float = 60.0, max_estimated_rpm: int = 60):
        self.rpm_window_s = rpm_window_s
        self.max_estimated_rpm = max_estimated_rpm
        self._session: Optional[WorkoutSession] = None

    def is_active(self) -> bool:
        return self._session is not None

    def start(self, now: Optional[float] = None) -> WorkoutSession:
        if self._session is not None:
            raise InvalidStateError("a session is already active")
        self._session = WorkoutSession(start_time=time.time() if now is None else now)
        return copy.deepcopy(self._session)

    def add_rep(self, arm_type: LimbGroup, timestamp: float) -> WorkoutSession:
        s = self._session
        if s is None:
            raise InvalidStateError("add_rep called with no active session")
        s.reps.append(Rep(timestamp=timestamp, arm_type=LimbGroup(arm_type)))
        s.total_reps += 1

        elapsed_min = (timestamp - s.start_time) / 60.0
        if elapsed_min > 0:
            s.reps_per_minute = s.total_reps / elapsed_min
        s.estimated_reps_per_minute = self._estimated_rpm(timestamp)
        return copy.deepcopy(s)

    def _estimated_rpm(self, now: float) -> float:
        recent = [r for r in self._session.reps if now - r.timestamp <= self.rpm_window_s]
        if len(recent) < 2:
            return len(recent)

        intervals = [b.timestamp - a.timestamp for a, b in zip(recent, recent[1:])]
        mean_interval = sum(intervals) / len(intervals)
        if mean_interval <= 0:
            return min(len(recent), self.max_estimated_rpm)
        return min(round(60.0 / mean_interval), self.max_estimated_rpm)

    def get_current_session(self) -> Optional[WorkoutSession]:
        return copy.deepcopy(self._session) if self._session is not None else None

    def stop(self) -> Optional[WorkoutSession]:
        final, self._session = self._session, None
        if final is not None:
            logger.info("session finalized: %d reps", final.total_reps)
        return final


def session_to_dict(session: Optional[WorkoutSession]) -> Optional[dict]:
    if session is None:
        return None
    out = asdict(session)
    for rep in out["reps"]:
        rep["arm_type"] = LimbGroup(rep["arm_type"]).value
    return out
