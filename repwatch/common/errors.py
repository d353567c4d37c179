from __future__ import annotations


class RepwatchError(Exception):
    """Base class for errors raised by the engine."""


class InvalidStateError(RepwatchError, RuntimeError):
    """An operation was called in a state that does not allow it
    (add_rep without a session, start while running, stop_recording
    with nothing recording, ...)."""


class CollaboratorError(RepwatchError):
    """Camera, pose model, recorder or storage failed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message
