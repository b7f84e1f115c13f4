"""Domain errors raised by the book club core and its stores.

Command handlers translate these into user-facing Slack replies; the
scheduler logs them and moves on to the next cycle.
"""

from __future__ import annotations

from typing import Optional


class ChaptersError(Exception):
    """Base class for every book club error."""


class InvalidTransition(ChaptersError):
    """A phase change the state machine does not allow."""


class WrongPhase(ChaptersError):
    """A command was used while the cycle is in a different phase."""

    def __init__(self, action: str, current: str, expected: str) -> None:
        self.action = action
        self.current = current
        self.expected = expected
        super().__init__(
            "The current cycle is in the \"{}\" phase, but {} requires the "
            "\"{}\" phase.".format(current.capitalize(), action, expected)
        )


class NotFound(ChaptersError):
    """A referenced cycle, suggestion, or ballot does not exist."""

    def __init__(self, kind: str, identifier: Optional[str] = None) -> None:
        self.kind = kind
        self.identifier = identifier
        if identifier:
            message = "{} {} not found".format(kind, identifier)
        else:
            message = "No {} found".format(kind)
        super().__init__(message)


class ValidationError(ChaptersError):
    """Malformed input: bad ballot, rating out of range, missing fields."""


class ActiveCycleExists(ChaptersError):
    """A new cycle was requested while another one is still active."""


class PersistenceError(ChaptersError):
    """The backing store failed. Never retried by the core."""
