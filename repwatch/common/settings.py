from __future__ import annotations
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Unit = Literal["reps", "seconds"]


class WorkoutSettings(BaseModel):
    """User-facing session settings. Frozen: replace, never patch."""

    model_config = ConfigDict(frozen=True)

    countdown_duration: int = Field(3, ge=0, description="Seconds of countdown before a session, 0 skips it")
    session_duration: Optional[int] = Field(None, gt=0, description="Session length in seconds, None for unlimited")
    auto_stop_on_time_limit: bool = Field(False, description="Stop automatically when session_duration is reached")
    beep_interval: int = Field(0, ge=0, description="Beep every N units, 0 disables")
    beep_unit: Unit = "reps"
    announcement_interval: int = Field(0, ge=0, description="Announce progress every N units, 0 disables")
    announcement_unit: Unit = "seconds"


DEFAULT_SETTINGS = WorkoutSettings()
