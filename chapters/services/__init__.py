"""Book club services: command operations and the phase scheduler."""

from chapters.services.book_club import (
    BookClub,
    CompletionSummary,
    CycleStatusView,
    create_book_club,
)
from chapters.services.scheduler import (
    IntervalDriver,
    LoggingNotifier,
    Notifier,
    PhaseScheduler,
    TransitionResult,
)

__all__ = [
    "BookClub",
    "CompletionSummary",
    "CycleStatusView",
    "IntervalDriver",
    "LoggingNotifier",
    "Notifier",
    "PhaseScheduler",
    "TransitionResult",
    "create_book_club",
]
