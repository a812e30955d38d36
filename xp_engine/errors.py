"""Typed, recoverable error kinds raised by the engine."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""

    suggestion = "Check the request and try again."

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        super().__init__(message)
        if suggestion is not None:
            self.suggestion = suggestion


class NotFoundError(EngineError, LookupError):
    """Referenced entity is absent or not owned by the caller."""

    suggestion = "It may have been deleted already. Refresh and try again."


class InvalidStateError(EngineError):
    """Operation violates a lifecycle invariant, e.g. double completion."""

    suggestion = "That one is already wrapped up. Nothing left to do here."


class ValidationError(EngineError, ValueError):
    """Malformed input such as a negative duration or unknown action."""

    suggestion = "Double-check the values you entered."
