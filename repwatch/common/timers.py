from __future__ import annotations
import asyncio
import time
from typing import Any, Callable, Optional


class Timer:
    """
    One armed timeout or interval. cancel() is synchronous: once it returns the
    callback never runs, even if the loop already queued the underlying handle.
    """
    def __init__(self, scheduler: "Scheduler", callback: Callable[..., Any], args: tuple, interval: Optional[float] = None):
        self._scheduler = scheduler
        self._callback = callback
        self._args = args
        self.interval = interval
        self._handle = None
        self.alive = True

    def cancel(self):
        self.alive = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        if not self.alive:
            return
        if self.interval is None:
            self.alive = False
            self._handle = None
        else:
            self._handle = self._scheduler._arm(self.interval, self._fire)
        self._callback(*self._args)


class Scheduler:
    """Clock + timer factory. Subclasses provide now() and _arm()."""

    def now(self) -> float:
        raise NotImplementedError

    def _arm(self, delay: float, fn: Callable[[], None]):
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> Timer:
        timer = Timer(self, callback, args)
        timer._handle = self._arm(max(0.0, delay), timer._fire)
        return timer

    def call_every(self, interval: float, callback: Callable[..., Any], *args) -> Timer:
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = Timer(self, callback, args, interval=interval)
        timer._handle = self._arm(interval, timer._fire)
        return timer


class LoopScheduler(Scheduler):
    """Timers on the running asyncio loop, wall-clock timestamps."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def now(self) -> float:
        return time.time()

    def _arm(self, delay: float, fn: Callable[[], None]):
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, fn)


def cancel_timer(timer: Optional[Timer]) -> None:
    if timer is not None:
        timer.cancel()
