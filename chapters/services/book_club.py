"""BookClub service: every operation a command handler can invoke.

WHY: Slash commands, the scheduler, and the cron endpoint all need the
same operations (start a cycle, change phase, suggest, vote, rate,
complete, reset) with the same validation. Keeping them here leaves
the Slack layer as pure request/response translation.

HOW: Each method loads the active cycle from the CycleStore, applies the
Phase State Machine or Tally Engine, and writes the result back. Phase
changes use compare-and-swap writes keyed on the phase that was read,
so a racing scheduler and /chapters-set-phase cannot both win.

RULES:
- At most one active cycle; get_active_cycle() raises NotFound otherwise
- Phase-gated commands raise WrongPhase
- Re-voting replaces the member's ballot; totals are recomputed from all
  ballots and overwritten (idempotent)
- Entering reading pins the tally winner
- An expired phase that fails advance_blocker() is extended, not advanced
- Manually returning to suggestion clears the book, ballots, and totals
- The clock is injectable so tests control "now"
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from chapters.config import get_phase_durations
from chapters.core import phases
from chapters.core.errors import InvalidTransition, NotFound, ValidationError, WrongPhase
from chapters.core.models import (
    MAX_PICKS,
    Ballot,
    Clock,
    Cycle,
    Phase,
    PhaseDurations,
    PhaseTiming,
    PhaseTimings,
    Rating,
    Suggestion,
    new_id,
    utcnow,
)
from chapters.core.tally import (
    RatingStats,
    TallyEntry,
    count_voters,
    rating_stats,
    tally,
    winner,
)
from chapters.services.inputs import RatingInput, SuggestionInput, validate_input
from chapters.store import create_store
from chapters.store.base import CycleStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class CycleStatusView:
    """Snapshot of the active cycle for /chapters-cycle-status."""

    cycle: Cycle
    deadline: Optional[datetime]
    suggestion_count: int
    voter_count: int
    selected_book: Optional[Suggestion] = None


@dataclass
class CompletionSummary:
    """Everything the completion announcement reports."""

    cycle: Cycle
    selected_book: Optional[Suggestion]
    standings: List[TallyEntry]
    suggestion_count: int
    voter_count: int
    ratings: RatingStats
    reading_days: Optional[int] = None
    total_days: Optional[int] = None


class BookClub:
    """Command operations over a CycleStore."""

    def __init__(
        self,
        store: CycleStore,
        clock: Optional[Clock] = None,
        durations_factory: Callable[[], PhaseDurations] = get_phase_durations,
    ) -> None:
        self._store = store
        self._clock = clock or utcnow
        self._durations_factory = durations_factory

    @property
    def store(self) -> CycleStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    # -- cycle lifecycle -----------------------------------------------------

    def start_cycle(
        self,
        channel_id: str,
        name: Optional[str] = None,
        durations: Optional[PhaseDurations] = None,
    ) -> Cycle:
        """Create the new active cycle, already in the suggestion phase.

        RULES:
        - Raises ActiveCycleExists if a cycle is already active
        - Default name is "<Month> <Year>" of the start date
        - phase_timings.suggestion is set to the start time
        """
        now = self._clock()
        name = (name or "").strip() or now.strftime("%B %Y")

        cycle = Cycle(
            id=new_id(),
            channel_id=channel_id,
            name=name,
            start_date=now,
            phase_durations=durations or self._durations_factory(),
            current_phase=Phase.SUGGESTION,
            phase_timings=PhaseTimings().with_entry(Phase.SUGGESTION, PhaseTiming(start_date=now)),
        )
        return self._store.create_active_cycle(cycle)

    def get_active_cycle(self) -> Cycle:
        cycle = self._store.get_active_cycle()
        if cycle is None:
            raise NotFound("active book club cycle")
        return cycle

    def configure_cycle(
        self,
        name: Optional[str] = None,
        durations: Optional[PhaseDurations] = None,
    ) -> Cycle:
        cycle = self.get_active_cycle()
        if name is not None and not name.strip():
            raise ValidationError("Cycle name cannot be blank.")
        updated = self._store.update_cycle_settings(
            cycle.id,
            name=name.strip() if name else None,
            phase_durations=durations,
        )
        if updated is None:
            raise NotFound("cycle", cycle.id)
        return updated

    def complete_cycle(self) -> CompletionSummary:
        """Archive the active cycle and summarise it.

        RULES:
        - Only legal from discussion (InvalidTransition otherwise)
        - The archive write is conditional on the cycle still being in
          discussion; losing that race raises InvalidTransition
        """
        cycle = self.get_active_cycle()
        phases.ensure_can_complete(cycle)

        now = self._clock()
        archived = self._store.archive_cycle(cycle.id, completed_at=now)
        if archived is None:
            raise InvalidTransition(
                "The cycle changed while it was being completed. Please try again."
            )

        logger.info("Cycle %s (%s) completed and archived", archived.id, archived.name)
        return self._summarise(archived)

    def reset_cycle(self) -> Cycle:
        """Hard-delete the active cycle with all its suggestions, ballots, ratings."""
        cycle = self.get_active_cycle()
        self._store.delete_cycle(cycle.id)
        logger.warning("Cycle %s (%s) was reset and deleted", cycle.id, cycle.name)
        return cycle

    def status(self) -> CycleStatusView:
        cycle = self.get_active_cycle()
        ballots = self._store.list_ballots(cycle.id)
        return CycleStatusView(
            cycle=cycle,
            deadline=phases.phase_deadline(cycle),
            suggestion_count=len(self._store.list_suggestions(cycle.id)),
            voter_count=count_voters(ballots),
            selected_book=self.selected_book(cycle),
        )

    # -- phases --------------------------------------------------------------

    def advance_blocker(self, cycle: Cycle) -> Optional[str]:
        """Why ``cycle`` may not auto-advance yet, or None when it may."""
        suggestions = self._store.list_suggestions(cycle.id)
        voters = count_voters(self._store.list_ballots(cycle.id))
        return phases.advance_blocker(cycle, len(suggestions), voters)

    def advance(self, cycle: Cycle) -> Optional[Cycle]:
        """Automatic advance to the next phase, as the scheduler does it.

        Returns the updated cycle, or None if another actor changed the
        phase first (the compare-and-swap matched nothing). The write is
        keyed on the observed phase and its start date, so a snapshot
        taken before an administrator re-entered the same phase is stale.
        Callers check advance_blocker() first.
        """
        now = self._clock()
        target = phases.next_phase(cycle.current_phase)
        winner_id = self._pin_winner(cycle) if target == Phase.READING else None

        updated = phases.advance(cycle, now, winner_id=winner_id)
        if not self._store.update_cycle_if_phase(
            updated,
            expected_phase=cycle.current_phase,
            expected_start=_observed_start(cycle),
        ):
            logger.info(
                "Cycle %s left %s before the transition was written; skipping",
                cycle.id,
                cycle.current_phase.value,
            )
            return None

        logger.info(
            "Cycle %s advanced from %s to %s",
            cycle.id,
            cycle.current_phase.value,
            updated.current_phase.value,
        )
        return updated

    def extend_phase(self, cycle: Cycle) -> Optional[Cycle]:
        """Give the current phase one more day; None if the cycle moved on."""
        extended = phases.extend(cycle)
        if not self._store.extend_phase(cycle.id, cycle.current_phase, cycle.phase_extensions):
            logger.info(
                "Cycle %s changed before its %s phase could be extended; skipping",
                cycle.id,
                cycle.current_phase.value,
            )
            return None

        logger.info(
            "Cycle %s %s phase extended (extension %d)",
            cycle.id,
            cycle.current_phase.value,
            extended.phase_extensions,
        )
        return extended

    def set_phase(self, target: Phase) -> Cycle:
        """Manual phase override for administrators.

        RULES:
        - Any phase may be chosen, including going backwards
        - Choosing the current phase changes nothing
        - Entering reading pins the current tally winner
        - Returning to suggestion from a later phase clears the book,
          deletes every ballot, and zeroes all point totals
        - Losing a race with the scheduler raises InvalidTransition
        """
        cycle = self.get_active_cycle()
        if target == cycle.current_phase:
            return cycle

        winner_id = self._pin_winner(cycle) if target == Phase.READING else None
        updated = phases.set_phase(cycle, target, self._clock(), winner_id=winner_id)

        if not self._store.update_cycle_if_phase(
            updated,
            expected_phase=cycle.current_phase,
            expected_start=_observed_start(cycle),
        ):
            raise InvalidTransition(
                "The cycle changed phase while your request was processed. Please try again."
            )

        if target == Phase.SUGGESTION:
            self._reset_votes(cycle.id)

        logger.info(
            "Cycle %s manually moved from %s to %s",
            cycle.id,
            cycle.current_phase.value,
            target.value,
        )
        return updated

    # -- suggestions ---------------------------------------------------------

    def suggest_book(
        self,
        user_id: str,
        book_name: str,
        author: str,
        link: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Suggestion:
        cycle = self.get_active_cycle()
        _require_phase(cycle, "suggesting a book", Phase.SUGGESTION)

        data = validate_input(
            SuggestionInput, book_name=book_name, author=author, link=link, notes=notes
        )
        suggestion = Suggestion(
            id=new_id(),
            cycle_id=cycle.id,
            user_id=user_id,
            book_name=data.book_name,
            author=data.author,
            created_at=self._clock(),
            link=str(data.link) if data.link else None,
            notes=data.notes,
        )
        self._store.add_suggestion(suggestion)
        logger.info("New suggestion %s in cycle %s", suggestion.id, cycle.id)
        return suggestion

    def list_suggestions(self) -> List[Suggestion]:
        cycle = self.get_active_cycle()
        return self._store.list_suggestions(cycle.id)

    # -- voting --------------------------------------------------------------

    def cast_vote(self, user_id: str, picks: Sequence[str]) -> List[TallyEntry]:
        """Record (or replace) a member's ranked ballot and refresh totals.

        RULES:
        - Only during voting
        - 1 to 3 picks, all distinct, all suggestions of this cycle
        - Returns the refreshed standings
        """
        cycle = self.get_active_cycle()
        _require_phase(cycle, "voting", Phase.VOTING)

        suggestions = self._store.list_suggestions(cycle.id)
        picks = tuple(pick for pick in (p.strip() for p in picks) if pick)
        _validate_picks(picks, {s.id for s in suggestions})

        replaced = self._store.get_ballot(cycle.id, user_id) is not None
        self._store.replace_ballot(
            Ballot(
                id=new_id(),
                cycle_id=cycle.id,
                user_id=user_id,
                picks=picks,
                created_at=self._clock(),
            )
        )
        logger.info("%s ballot in cycle %s", "Replaced" if replaced else "Recorded", cycle.id)

        return self._refresh_totals(cycle.id, suggestions)

    def has_voted(self, user_id: str) -> bool:
        cycle = self.get_active_cycle()
        return self._store.get_ballot(cycle.id, user_id) is not None

    def results(self) -> List[TallyEntry]:
        cycle = self.get_active_cycle()
        return tally(self._store.list_suggestions(cycle.id), self._store.list_ballots(cycle.id))

    # -- ratings -------------------------------------------------------------

    def rate_book(self, user_id: str, rating: int, recommend: bool) -> Rating:
        cycle = self.get_active_cycle()
        _require_phase(cycle, "rating the book", Phase.READING, Phase.DISCUSSION)
        if not cycle.selected_book_id:
            raise ValidationError("No book has been selected for this cycle yet.")

        data = validate_input(RatingInput, rating=rating, recommend=recommend)
        record = Rating(
            id=new_id(),
            cycle_id=cycle.id,
            user_id=user_id,
            book_id=cycle.selected_book_id,
            rating=data.rating,
            recommend=data.recommend,
            created_at=self._clock(),
        )
        return self._store.add_rating(record)

    def rating_stats(self) -> RatingStats:
        cycle = self.get_active_cycle()
        _require_phase(cycle, "viewing rating results", Phase.READING, Phase.DISCUSSION)
        return rating_stats(self._store.list_ratings(cycle.id))

    # -- helpers -------------------------------------------------------------

    def selected_book(self, cycle: Cycle) -> Optional[Suggestion]:
        if not cycle.selected_book_id:
            return None
        return self._store.get_suggestion(cycle.selected_book_id)

    def _pin_winner(self, cycle: Cycle) -> Optional[str]:
        suggestions = self._store.list_suggestions(cycle.id)
        entries = self._refresh_totals(cycle.id, suggestions)
        top = winner(entries)
        if top is None:
            logger.warning("Cycle %s enters reading with no suggestions to pin", cycle.id)
            return None
        return top.id

    def _refresh_totals(self, cycle_id: str, suggestions: List[Suggestion]) -> List[TallyEntry]:
        entries = tally(suggestions, self._store.list_ballots(cycle_id))
        self._store.set_suggestion_points(
            cycle_id, {entry.suggestion.id: entry.points for entry in entries}
        )
        for entry in entries:
            entry.suggestion.total_points = entry.points
        return entries

    def _reset_votes(self, cycle_id: str) -> None:
        removed = self._store.delete_ballots(cycle_id)
        suggestions = self._store.list_suggestions(cycle_id)
        self._store.set_suggestion_points(cycle_id, {s.id: 0 for s in suggestions})
        logger.info("Reset %d ballots for cycle %s", removed, cycle_id)

    def _summarise(self, cycle: Cycle) -> CompletionSummary:
        suggestions = self._store.list_suggestions(cycle.id)
        ballots = self._store.list_ballots(cycle.id)
        standings = tally(suggestions, ballots)

        reading = cycle.phase_timings.get(Phase.READING)
        discussion = cycle.phase_timings.get(Phase.DISCUSSION)
        reading_days = None
        if reading and discussion:
            reading_days = _whole_days(reading.start_date, discussion.start_date)

        total_days = None
        if cycle.completed_at:
            total_days = _whole_days(cycle.start_date, cycle.completed_at)

        return CompletionSummary(
            cycle=cycle,
            selected_book=self.selected_book(cycle),
            standings=standings,
            suggestion_count=len(suggestions),
            voter_count=count_voters(ballots),
            ratings=rating_stats(self._store.list_ratings(cycle.id)),
            reading_days=reading_days,
            total_days=total_days,
        )


def _observed_start(cycle: Cycle) -> Optional[datetime]:
    timing = cycle.current_timing()
    return timing.start_date if timing else None


def _require_phase(cycle: Cycle, action: str, *allowed: Phase) -> None:
    if cycle.current_phase not in allowed:
        raise WrongPhase(
            action,
            cycle.current_phase.value,
            " or ".join(p.label for p in allowed),
        )


def _validate_picks(picks: Sequence[str], known: set) -> None:
    if not picks:
        raise ValidationError("Please select at least one book to vote for.")
    if len(picks) > MAX_PICKS:
        raise ValidationError("You can rank at most {} books.".format(MAX_PICKS))
    if len(set(picks)) != len(picks):
        raise ValidationError("You cannot vote for the same book multiple times.")
    for rank, pick in enumerate(picks, start=1):
        if pick not in known:
            raise ValidationError("Choice {} is not a suggestion in this cycle.".format(rank))


def _whole_days(start: datetime, end: datetime) -> int:
    return max(int(math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)), 0)


def create_book_club(clock: Optional[Clock] = None) -> BookClub:
    """BookClub over the store selected by MONGODB_URI."""
    return BookClub(create_store(), clock=clock)
