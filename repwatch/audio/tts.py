from __future__ import annotations
import logging
import queue
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# words per minute at rate=1.0
_MAC_BASE_WPM = 175
_PYTTSX3_BASE_RATE = 200


@dataclass
class Utterance:
    text: str
    rate: float = 1.0
    pitch: float = 1.0  # not supported by either backend, kept for the interface
    volume: float = 0.8


class TTSEngine:
    """
    Background speech worker. speak() never blocks; cancel() drops anything
    queued and interrupts the utterance in progress.
    """
    def __init__(self, prefer_mac_say: bool = True):
        self.prefer_mac_say = prefer_mac_say and sys.platform == "darwin"
        self.q: "queue.Queue[Optional[Utterance]]" = queue.Queue()
        self._stop = threading.Event()
        self._pyttsx3 = None
        self._proc: Optional[subprocess.Popen] = None
        self._speaking = False
        self.worker = threading.Thread(target=self._run, daemon=True)
        self.worker.start()

    def _ensure_pyttsx3(self):
        if self._pyttsx3 is None:
            import pyttsx3  # lazy import
            self._pyttsx3 = pyttsx3.init()

    def _speak_mac(self, u: Utterance):
        wpm = max(60, int(_MAC_BASE_WPM * u.rate))
        self._proc = subprocess.Popen(["say", "-r", str(wpm), u.text])
        try:
            self._proc.wait()
        finally:
            self._proc = None

    def _speak_pyttsx3(self, u: Utterance):
        self._ensure_pyttsx3()
        self._pyttsx3.setProperty("rate", int(_PYTTSX3_BASE_RATE * u.rate))
        self._pyttsx3.setProperty("volume", max(0.0, min(1.0, u.volume)))
        self._pyttsx3.say(u.text)
        self._pyttsx3.runAndWait()

    def _run(self):
        while not self._stop.is_set():
            try:
                u = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                if u is None:
                    continue
                self._speaking = True
                if self.prefer_mac_say:
                    self._speak_mac(u)
                else:
                    self._speak_pyttsx3(u)
            except Exception as e:
                logger.warning("speech failed: %s", e)
            finally:
                self._speaking = False
                self.q.task_done()

    def speak(self, text: str, rate: float = 1.0, pitch: float = 1.0, volume: float = 0.8):
        if not text:
            return
        self.q.put(Utterance(text, rate, pitch, volume))

    def is_speaking(self) -> bool:
        return bool(self._speaking or not self.q.empty())

    def cancel(self):
        while True:
            try:
                self.q.get_nowait()
            except queue.Empty:
                break
            self.q.task_done()
        proc = self._proc
        if proc is not None and proc.poll() is None:
            proc.terminate()
        if self._pyttsx3 is not None and self._speaking:
            try:
                self._pyttsx3.stop()
            except Exception as e:
                logger.warning("could not interrupt speech: %s", e)

    def shutdown(self):
        self.cancel()
        self._stop.set()
        self.q.put_nowait(None)
