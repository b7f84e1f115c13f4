"""Thread-safe in-memory store.

WHY: Tests and local development need a store with the same guarantees
as MongoDB (one active cycle, compare-and-swap phase writes) without
running a database. The scheduler thread and Slack handler threads hit
it concurrently, so it must be safe under contention.

HOW: Four dicts keyed by id, all guarded by one threading.Lock. Stored
records are copied on the way in and on the way out so callers can
never mutate store state behind the lock's back.

RULES:
- Every public method acquires self._lock
- Returned objects are copies, not live instances
- Suggestions keep insertion order (dicts are ordered)
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from chapters.core.errors import ActiveCycleExists, ValidationError
from chapters.core.models import (
    Ballot,
    Cycle,
    CycleStatus,
    Phase,
    PhaseDurations,
    Rating,
    Suggestion,
)
from chapters.store.base import CycleStore

logger = logging.getLogger(__name__)


class InMemoryStore(CycleStore):
    """Dict-backed CycleStore protected by a single lock."""

    def __init__(self) -> None:
        self._cycles: Dict[str, Cycle] = {}
        self._suggestions: Dict[str, Suggestion] = {}
        self._ballots: Dict[Tuple[str, str], Ballot] = {}
        self._ratings: Dict[str, Rating] = {}
        self._lock = threading.Lock()

    # -- cycles --------------------------------------------------------------

    def create_active_cycle(self, cycle: Cycle) -> Cycle:
        with self._lock:
            for existing in self._cycles.values():
                if existing.is_active:
                    raise ActiveCycleExists(
                        "An active cycle already exists ({}). Complete it with "
                        "/chapters-complete-cycle before starting a new one.".format(existing.name)
                    )
            self._cycles[cycle.id] = copy.deepcopy(cycle)

        logger.info("Created cycle %s (%s)", cycle.id, cycle.name)
        return copy.deepcopy(cycle)

    def get_cycle(self, cycle_id: str) -> Optional[Cycle]:
        with self._lock:
            return copy.deepcopy(self._cycles.get(cycle_id))

    def get_active_cycle(self) -> Optional[Cycle]:
        with self._lock:
            for cycle in self._cycles.values():
                if cycle.is_active:
                    return copy.deepcopy(cycle)
        return None

    def list_active_cycles(self) -> List[Cycle]:
        with self._lock:
            return [copy.deepcopy(c) for c in self._cycles.values() if c.is_active]

    def update_cycle_if_phase(
        self,
        cycle: Cycle,
        expected_phase: Phase,
        expected_start: Optional[datetime] = None,
    ) -> bool:
        with self._lock:
            stored = self._cycles.get(cycle.id)
            if stored is None or not stored.is_active:
                return False
            if stored.current_phase != expected_phase:
                return False
            if expected_start is not None:
                observed = stored.phase_timings.get(expected_phase)
                if observed is None or observed.start_date != expected_start:
                    return False

            timings = stored.phase_timings
            entered = cycle.phase_timings.get(cycle.current_phase)
            if entered is not None:
                timings = timings.with_entry(cycle.current_phase, copy.deepcopy(entered))

            self._cycles[cycle.id] = replace(
                stored,
                current_phase=cycle.current_phase,
                phase_timings=timings,
                selected_book_id=cycle.selected_book_id,
                phase_extensions=0,
            )
            return True

    def extend_phase(self, cycle_id: str, phase: Phase, extensions: int) -> bool:
        with self._lock:
            stored = self._cycles.get(cycle_id)
            if stored is None or not stored.is_active:
                return False
            if stored.current_phase != phase or stored.phase_extensions != extensions:
                return False
            self._cycles[cycle_id] = replace(stored, phase_extensions=extensions + 1)
            return True

    def update_cycle_settings(
        self,
        cycle_id: str,
        name: Optional[str] = None,
        phase_durations: Optional[PhaseDurations] = None,
    ) -> Optional[Cycle]:
        with self._lock:
            stored = self._cycles.get(cycle_id)
            if stored is None:
                return None
            if name is not None:
                stored = replace(stored, name=name)
            if phase_durations is not None:
                stored = replace(stored, phase_durations=copy.deepcopy(phase_durations))
            self._cycles[cycle_id] = stored
            return copy.deepcopy(stored)

    def archive_cycle(self, cycle_id: str, completed_at: datetime) -> Optional[Cycle]:
        with self._lock:
            stored = self._cycles.get(cycle_id)
            if stored is None or not stored.is_active:
                return None
            if stored.current_phase != Phase.DISCUSSION:
                return None
            archived = replace(stored, status=CycleStatus.ARCHIVED, completed_at=completed_at)
            self._cycles[cycle_id] = archived
            return copy.deepcopy(archived)

    def delete_cycle(self, cycle_id: str) -> bool:
        with self._lock:
            if self._cycles.pop(cycle_id, None) is None:
                return False
            self._suggestions = {
                k: s for k, s in self._suggestions.items() if s.cycle_id != cycle_id
            }
            self._ballots = {
                k: b for k, b in self._ballots.items() if b.cycle_id != cycle_id
            }
            self._ratings = {
                k: r for k, r in self._ratings.items() if r.cycle_id != cycle_id
            }

        logger.info("Deleted cycle %s and its data", cycle_id)
        return True

    # -- suggestions ---------------------------------------------------------

    def add_suggestion(self, suggestion: Suggestion) -> Suggestion:
        with self._lock:
            self._suggestions[suggestion.id] = copy.deepcopy(suggestion)
        return copy.deepcopy(suggestion)

    def get_suggestion(self, suggestion_id: str) -> Optional[Suggestion]:
        with self._lock:
            return copy.deepcopy(self._suggestions.get(suggestion_id))

    def list_suggestions(self, cycle_id: str) -> List[Suggestion]:
        with self._lock:
            matching = [
                copy.deepcopy(s) for s in self._suggestions.values() if s.cycle_id == cycle_id
            ]
        # stable: equal timestamps keep insertion order
        return sorted(matching, key=lambda s: s.created_at)

    def set_suggestion_points(self, cycle_id: str, points: Dict[str, int]) -> None:
        with self._lock:
            for suggestion_id, total in points.items():
                stored = self._suggestions.get(suggestion_id)
                if stored is None or stored.cycle_id != cycle_id:
                    continue
                self._suggestions[suggestion_id] = replace(stored, total_points=total)

    # -- ballots -------------------------------------------------------------

    def replace_ballot(self, ballot: Ballot) -> Ballot:
        with self._lock:
            self._ballots[(ballot.cycle_id, ballot.user_id)] = copy.deepcopy(ballot)
        return copy.deepcopy(ballot)

    def get_ballot(self, cycle_id: str, user_id: str) -> Optional[Ballot]:
        with self._lock:
            return copy.deepcopy(self._ballots.get((cycle_id, user_id)))

    def list_ballots(self, cycle_id: str) -> List[Ballot]:
        with self._lock:
            return [copy.deepcopy(b) for b in self._ballots.values() if b.cycle_id == cycle_id]

    def delete_ballots(self, cycle_id: str) -> int:
        with self._lock:
            keys = [k for k, b in self._ballots.items() if b.cycle_id == cycle_id]
            for key in keys:
                del self._ballots[key]
            return len(keys)

    # -- ratings -------------------------------------------------------------

    def add_rating(self, rating: Rating) -> Rating:
        with self._lock:
            for existing in self._ratings.values():
                if (
                    existing.cycle_id == rating.cycle_id
                    and existing.user_id == rating.user_id
                    and existing.book_id == rating.book_id
                ):
                    raise ValidationError("You have already rated this book.")
            self._ratings[rating.id] = copy.deepcopy(rating)
        return copy.deepcopy(rating)

    def list_ratings(self, cycle_id: str) -> List[Rating]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._ratings.values() if r.cycle_id == cycle_id]
