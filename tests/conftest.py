"""Shared test fixtures for the chapters test suite.

WHY: Phase expiry, deadlines, and the completion summary all depend on
"now". A controllable clock and a fresh in-memory store per test keep
every test deterministic and independent.

HOW: FakeClock is a callable returning a fixed UTC time that tests move
forward explicitly. The ``club`` fixture wires it into a BookClub over
an InMemoryStore with the default 7/7/30/7 day phases.

RULES:
- No network, no real database, no Slack
- The clock starts on Monday, October 19, 2026 at 09:00 UTC
- ``voting_club`` has three suggestions (Dune, Foundation, Hyperion, in
  that submission order) and is already in the voting phase
"""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from chapters.core.models import Phase, PhaseDurations, Suggestion
from chapters.services.book_club import BookClub
from chapters.store.memory import InMemoryStore

START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

CHANNEL_ID = "C0BOOKCLUB"

BOOKS = [
    ("Dune", "Frank Herbert"),
    ("Foundation", "Isaac Asimov"),
    ("Hyperion", "Dan Simmons"),
]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def club(store, clock):
    return BookClub(store, clock=clock, durations_factory=PhaseDurations)


@pytest.fixture
def suggested_books(club, clock) -> List[Suggestion]:
    """An active cycle in the suggestion phase with three books."""
    club.start_cycle(CHANNEL_ID, "October Reads")
    suggestions = []
    for index, (title, author) in enumerate(BOOKS, start=1):
        clock.advance(minutes=1)
        suggestions.append(club.suggest_book("U{}".format(index), title, author))
    return suggestions


@pytest.fixture
def voting_club(club, suggested_books):
    """BookClub whose active cycle is in voting with three suggestions."""
    club.set_phase(Phase.VOTING)
    return club
