from __future__ import annotations
import logging
from typing import List, Optional, Protocol

from repwatch.common.settings import WorkoutSettings
from repwatch.common.timers import Scheduler, Timer, cancel_timer
from repwatch.counter.stats import WorkoutSession

logger = logging.getLogger(__name__)

# (freq Hz, duration ms, volume)
COUNTDOWN_TONE = (1000, 150, 0.4)
START_TONE = (600, 300, 0.5)
TIME_MILESTONE_TONE = (800, 200, 0.6)
REP_MILESTONE_TONE = (800, 150, 0.5)
FINAL_TONE = (600, 400, 0.6)
REP_MILESTONE_GAP_S = 0.2

ANNOUNCE_RATE, ANNOUNCE_PITCH, ANNOUNCE_VOLUME = 1.1, 1.0, 0.7


class AudioPrimitives(Protocol):
    def play_tone(self, freq: float, duration_ms: int, volume: float) -> None: ...

    def speak(self, text: str, rate: float = 1.0, pitch: float = 1.0, volume: float = 0.8) -> None: ...

    def cancel_speech(self) -> None: ...


def progress_message(total_reps: int, reps_per_minute: float) -> str:
    rpm = round(reps_per_minute)
    if total_reps == 1:
        return f"1 rep at {rpm} RPM"
    return f"{total_reps} reps at {rpm} RPM"


def summary_message(total_reps: int, reps_per_minute: float) -> str:
    msg = f"Session complete. {total_reps} total reps"
    rpm = round(reps_per_minute)
    if rpm > 0:
        msg += f" at {rpm} reps per minute average"
    return msg


class AudioFeedbackCoordinator:
    """
    Decides when beeps and announcements fire. Never decides whether a rep
    happened; it only reacts to session snapshots and its own timers.
    """
    def __init__(self, audio: AudioPrimitives, settings: WorkoutSettings, scheduler: Scheduler):
        self.audio = audio
        self.settings = settings
        self.scheduler = scheduler
        self.last_beep_value: float = 0
        self.last_announcement_value: float = 0
        self._last_total = 0
        self._beep_timer: Optional[Timer] = None
        self._pending: List[Timer] = []

    def update_settings(self, settings: WorkoutSettings):
        # a watermark only means something in its own unit
        if settings.announcement_unit != self.settings.announcement_unit:
            if settings.announcement_unit == "seconds":
                self.last_announcement_value = self.scheduler.now()
            else:
                self.last_announcement_value = self._last_total
        self.settings = settings

    def _tone(self, tone):
        try:
            self.audio.play_tone(*tone)
        except Exception as e:
            logger.warning("tone failed: %s", e)

    def _tone_later(self, delay: float, tone):
        self._pending = [t for t in self._pending if t.alive]
        self._pending.append(self.scheduler.call_later(delay, self._tone, tone))

    def _speak(self, text: str):
        try:
            self.audio.speak(text, ANNOUNCE_RATE, ANNOUNCE_PITCH, ANNOUNCE_VOLUME)
        except Exception as e:
            logger.warning("speech failed: %s", e)

    def play_countdown_beep(self):
        self._tone(COUNTDOWN_TONE)

    def play_start_beep(self):
        self._tone(START_TONE)

    def play_time_up(self):
        self._tone(FINAL_TONE)

    def start_session(self, session: WorkoutSession):
        self.clear_timers()
        s = self.settings
        self._last_total = session.total_reps
        self.last_beep_value = 0 if s.beep_unit == "reps" else session.start_time
        self.last_announcement_value = 0 if s.announcement_unit == "reps" else session.start_time

        if s.beep_interval > 0 and s.beep_unit == "seconds":
            self._beep_timer = self.scheduler.call_every(s.beep_interval, self._tone, TIME_MILESTONE_TONE)

    def handle_session_update(self, session: WorkoutSession):
        s = self.settings
        self._last_total = session.total_reps

        if s.beep_interval > 0 and s.beep_unit == "reps":
            if session.total_reps - self.last_beep_value >= s.beep_interval:
                self._tone(REP_MILESTONE_TONE)
                self._tone_later(REP_MILESTONE_GAP_S, REP_MILESTONE_TONE)
                self.last_beep_value = session.total_reps

        if s.announcement_interval > 0:
            if s.announcement_unit == "reps":
                if session.total_reps - self.last_announcement_value >= s.announcement_interval:
                    self._speak(progress_message(session.total_reps, session.reps_per_minute))
                    self.last_announcement_value = session.total_reps
            else:
                now = self.scheduler.now()
                if now - self.last_announcement_value >= s.announcement_interval and session.reps_per_minute > 0:
                    self._speak(progress_message(session.total_reps, session.reps_per_minute))
                    self.last_announcement_value = now

    def end_session(self, session: Optional[WorkoutSession], manual: bool):
        self.stop_session()
        self._tone(FINAL_TONE)
        if not manual and session is not None:
            self._speak(summary_message(session.total_reps, session.reps_per_minute))

    def stop_session(self):
        self.clear_timers()
        try:
            self.audio.cancel_speech()
        except Exception as e:
            logger.warning("could not cancel speech: %s", e)

    def clear_timers(self):
        cancel_timer(self._beep_timer)
        self._beep_timer = None
        for t in self._pending:
            t.cancel()
        self._pending = []

    def dispose(self):
        self.stop_session()
        dispose = getattr(self.audio, "dispose", None)
        if dispose is not None:
            dispose()
