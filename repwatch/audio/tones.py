from __future__ import annotations
import logging
from typing import Optional

import numpy as np

from repwatch.audio.tts import TTSEngine

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100
_RAMP_S = 0.01


def sine_tone(freq: float, duration_ms: int, volume: float, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Sine burst with a short linear fade in/out, float32 in [-volume, volume]."""
    n = max(1, int(sample_rate * duration_ms / 1000.0))
    t = np.arange(n, dtype=np.float32) / sample_rate
    tone = np.sin(2 * np.pi * freq * t).astype(np.float32)

    env = np.ones(n, dtype=np.float32)
    ramp = min(n // 2, int(sample_rate * _RAMP_S))
    if ramp > 0:
        env[:ramp] = np.linspace(0.0, 1.0, ramp, dtype=np.float32)
        env[-ramp:] = np.linspace(1.0, 0.0, ramp, dtype=np.float32)
    return tone * env * float(max(0.0, min(1.0, volume)))


class LocalAudio:
    """Audio primitives on this machine: sounddevice tones + TTSEngine speech."""

    def __init__(self, tts: Optional[TTSEngine] = None, sample_rate: int = SAMPLE_RATE):
        self.tts = tts or TTSEngine()
        self.sample_rate = sample_rate

    def play_tone(self, freq: float, duration_ms: int, volume: float):
        try:
            import sounddevice as sd  # lazy: needs PortAudio at import time
            sd.play(sine_tone(freq, duration_ms, volume, self.sample_rate), self.sample_rate)
        except Exception as e:
            logger.warning("tone playback failed: %s", e)

    def speak(self, text: str, rate: float = 1.0, pitch: float = 1.0, volume: float = 0.8):
        self.tts.speak(text, rate=rate, pitch=pitch, volume=volume)

    def cancel_speech(self):
        self.tts.cancel()

    def dispose(self):
        self.tts.shutdown()
