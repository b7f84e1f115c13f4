"""Persistence contract for cycles, suggestions, ballots, and ratings.

WHY: The BookClub service and the scheduler need the same small set of
document operations whether the data lives in MongoDB or in memory.
Declaring them once keeps both backends honest and lets tests swap in
the in-memory store.

HOW: An abstract base class. Backends implement every method; anything
driver-specific stays inside the backend and surfaces as
PersistenceError.

RULES:
- create_active_cycle() is the only way to insert a cycle and refuses
  a second active cycle (ActiveCycleExists)
- update_cycle_if_phase() is a compare-and-swap: it writes only when the
  stored cycle is active, still in ``expected_phase``, and (when given)
  that phase still has the observed start date
- A phase write patches only the timing slot of the phase being entered
- extend_phase() is a compare-and-swap on the phase and extension count
- list_suggestions() returns submission order
- set_suggestion_points() overwrites totals (idempotent)
- replace_ballot() keeps at most one ballot per user per cycle
- add_rating() rejects a second rating of the same book by the same user
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Dict, List, Optional

from chapters.core.models import Ballot, Cycle, Phase, PhaseDurations, Rating, Suggestion


class CycleStore(abc.ABC):
    """Abstract document store backing the book club."""

    # -- cycles --------------------------------------------------------------

    @abc.abstractmethod
    def create_active_cycle(self, cycle: Cycle) -> Cycle:
        """Insert ``cycle`` unless another active cycle exists."""

    @abc.abstractmethod
    def get_cycle(self, cycle_id: str) -> Optional[Cycle]:
        ...

    @abc.abstractmethod
    def get_active_cycle(self) -> Optional[Cycle]:
        ...

    @abc.abstractmethod
    def list_active_cycles(self) -> List[Cycle]:
        ...

    @abc.abstractmethod
    def update_cycle_if_phase(
        self,
        cycle: Cycle,
        expected_phase: Phase,
        expected_start: Optional[datetime] = None,
    ) -> bool:
        """Atomically enter ``cycle.current_phase``.

        Writes the phase, the entered phase's timing, the selected book,
        and a zero extension count. Timings of other phases are untouched.
        Returns True only if this call changed the stored document.
        """

    @abc.abstractmethod
    def extend_phase(self, cycle_id: str, phase: Phase, extensions: int) -> bool:
        """Add one extension if the cycle is still in ``phase`` with ``extensions``."""

    @abc.abstractmethod
    def update_cycle_settings(
        self,
        cycle_id: str,
        name: Optional[str] = None,
        phase_durations: Optional[PhaseDurations] = None,
    ) -> Optional[Cycle]:
        ...

    @abc.abstractmethod
    def archive_cycle(self, cycle_id: str, completed_at: datetime) -> Optional[Cycle]:
        """Archive an active cycle that is in discussion; None otherwise."""

    @abc.abstractmethod
    def delete_cycle(self, cycle_id: str) -> bool:
        """Hard-delete a cycle together with its suggestions, ballots, ratings."""

    # -- suggestions ---------------------------------------------------------

    @abc.abstractmethod
    def add_suggestion(self, suggestion: Suggestion) -> Suggestion:
        ...

    @abc.abstractmethod
    def get_suggestion(self, suggestion_id: str) -> Optional[Suggestion]:
        ...

    @abc.abstractmethod
    def list_suggestions(self, cycle_id: str) -> List[Suggestion]:
        ...

    @abc.abstractmethod
    def set_suggestion_points(self, cycle_id: str, points: Dict[str, int]) -> None:
        ...

    # -- ballots -------------------------------------------------------------

    @abc.abstractmethod
    def replace_ballot(self, ballot: Ballot) -> Ballot:
        ...

    @abc.abstractmethod
    def get_ballot(self, cycle_id: str, user_id: str) -> Optional[Ballot]:
        ...

    @abc.abstractmethod
    def list_ballots(self, cycle_id: str) -> List[Ballot]:
        ...

    @abc.abstractmethod
    def delete_ballots(self, cycle_id: str) -> int:
        ...

    # -- ratings -------------------------------------------------------------

    @abc.abstractmethod
    def add_rating(self, rating: Rating) -> Rating:
        ...

    @abc.abstractmethod
    def list_ratings(self, cycle_id: str) -> List[Rating]:
        ...
