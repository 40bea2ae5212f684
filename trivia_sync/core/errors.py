"""Exception types raised by the trivia core."""

from __future__ import annotations


class TriviaError(Exception):
    """Base class for all trivia_sync errors."""


class NotFoundError(TriviaError):
    """Raised when a room or a referenced player does not exist."""


class ValidationError(TriviaError):
    """Raised when required input is missing or malformed."""


class StateConflictError(TriviaError):
    """Raised when an action repeats or contradicts the current match state.

    Callers treat this as an idempotent no-op.
    """


class TransientIOError(TriviaError):
    """Raised when a store operation fails in a way that may succeed on retry."""


class RoomAllocationError(TriviaError):
    """Raised when no free room id could be found."""
