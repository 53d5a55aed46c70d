from __future__ import annotations

from typing import Sequence


class StoryEngineError(Exception):
    pass


class NotFoundError(StoryEngineError):
    pass


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str):
        super().__init__(f"session_not_found:{session_id}")
        self.session_id = session_id


class CheckpointNotFoundError(NotFoundError):
    def __init__(self, selector: str, available: Sequence[dict] = ()):
        super().__init__(f"checkpoint_not_found:{selector}")
        self.selector = selector
        self.available = list(available)


class GenerationUnavailableError(StoryEngineError):
    """Raised when every configured generation provider failed."""

    def __init__(self, message: str = "generation_unavailable", attempts: Sequence[tuple[str, str]] = ()):
        super().__init__(message)
        self.attempts = list(attempts)


class TurnBusyError(StoryEngineError):
    pass


class StaleSessionError(StoryEngineError):
    """Raised when a stored session changed underneath a save."""
