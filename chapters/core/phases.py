"""Phase State Machine: ordering, transitions, and expiry.

WHY: Every cycle walks suggestion -> voting -> reading -> discussion.
Both the scheduler and the /chapters-set-phase command change phases,
and both must agree on what a legal change looks like and what it
writes.

HOW: Pure functions over Cycle values. A transition returns a new Cycle
with the phase switched and a fresh start date recorded for the phase
being entered; callers persist it with a compare-and-swap write keyed
on the phase they observed.

RULES:
- Automatic advance moves exactly one step and never leaves discussion
  (discussion ends by completing the cycle, not by a transition)
- Manual override may jump to any phase, but only on an active cycle
- Every transition sets phase_timings[new_phase]; older entries are kept
- Entering reading pins the tally winner as selected_book_id
- A phase with no recorded start date never expires
- An expired phase whose requirements are not met is extended by a day
  instead of advancing (see advance_blocker)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from chapters.core.errors import InvalidTransition
from chapters.core.models import PHASE_ORDER, Cycle, Phase, PhaseTiming

# Voting needs a real choice between books
MIN_SUGGESTIONS = 3

EXTENSION_DAYS = 1

# Extensions on which the channel is told about the delay: 1st, 3rd, then weekly
_ANNOUNCED_EXTENSIONS = frozenset({1, 3})


def next_phase(phase: Phase) -> Optional[Phase]:
    """The phase after ``phase``, or None for the last one."""
    index = PHASE_ORDER.index(phase)
    if index + 1 >= len(PHASE_ORDER):
        return None
    return PHASE_ORDER[index + 1]


def advance(cycle: Cycle, now: datetime, winner_id: Optional[str] = None) -> Cycle:
    """Move an active cycle to the next phase in sequence.

    RULES:
    - Raises InvalidTransition if the cycle is archived
    - Raises InvalidTransition from discussion (awaiting completion)
    - ``winner_id`` is only used when the next phase is reading
    """
    if not cycle.is_active:
        raise InvalidTransition(
            "Cycle {} is {} and cannot change phase".format(cycle.id, cycle.status.value)
        )

    target = next_phase(cycle.current_phase)
    if target is None:
        raise InvalidTransition(
            "Cycle {} is in the last phase; complete the cycle instead".format(cycle.id)
        )

    return _enter(cycle, target, now, winner_id)


def set_phase(
    cycle: Cycle,
    target: Phase,
    now: datetime,
    winner_id: Optional[str] = None,
) -> Cycle:
    """Force a cycle into ``target`` regardless of sequence.

    WHY: Administrators need an escape hatch, e.g. to reopen suggestions
    or to end voting early. Regressions are allowed on purpose.

    RULES:
    - Raises InvalidTransition if the cycle is archived
    - Setting the current phase again returns the cycle unchanged, so the
      current phase's start date is never rewritten
    - Going back to suggestion clears the selected book
    """
    if not cycle.is_active:
        raise InvalidTransition(
            "Cycle {} is {} and cannot change phase".format(cycle.id, cycle.status.value)
        )

    if target == cycle.current_phase:
        return cycle

    updated = _enter(cycle, target, now, winner_id)
    if target == Phase.SUGGESTION:
        updated = replace(updated, selected_book_id=None)
    return updated


def ensure_can_complete(cycle: Cycle) -> None:
    """Completing (archiving) a cycle is only legal from discussion."""
    if not cycle.is_active:
        raise InvalidTransition("Cycle {} is already archived".format(cycle.id))
    if cycle.current_phase != Phase.DISCUSSION:
        raise InvalidTransition(
            "A cycle can only be completed from the Discussion phase "
            "(currently {})".format(cycle.current_phase.label)
        )


def advance_blocker(cycle: Cycle, suggestion_count: int, voter_count: int) -> Optional[str]:
    """Why an expired phase may not advance on its own yet, or None.

    WHY: A scheduled advance with nothing to vote on, or a reading phase
    picked from zero ballots, leaves the club with a meaningless book.
    The scheduler extends the phase instead and asks members to act.

    RULES:
    - Suggestion needs at least MIN_SUGGESTIONS books
    - Voting needs at least one ballot
    - Reading needs a selected book
    - Only automatic advances are gated; set_phase() never is
    """
    phase = cycle.current_phase
    if phase == Phase.SUGGESTION and suggestion_count < MIN_SUGGESTIONS:
        return (
            "At least {} book suggestions are required before voting can start "
            "(there are {} so far).".format(MIN_SUGGESTIONS, suggestion_count)
        )
    if phase == Phase.VOTING and voter_count == 0:
        return "At least one vote is needed to select a book."
    if phase == Phase.READING and not cycle.selected_book_id:
        return "No book has been selected for this cycle yet."
    return None


def extend(cycle: Cycle) -> Cycle:
    """Push the current phase's deadline back by EXTENSION_DAYS."""
    if not cycle.is_active:
        raise InvalidTransition(
            "Cycle {} is {} and cannot be extended".format(cycle.id, cycle.status.value)
        )
    return replace(cycle, phase_extensions=cycle.phase_extensions + 1)


def should_announce_extension(extensions: int) -> bool:
    return extensions in _ANNOUNCED_EXTENSIONS or (extensions > 0 and extensions % 7 == 0)


def phase_deadline(cycle: Cycle) -> Optional[datetime]:
    """When the current phase ends, or None if its start was never recorded.

    Includes any one-day extensions granted to the current phase.
    """
    timing = cycle.current_timing()
    if timing is None:
        return None
    days = cycle.phase_durations.for_phase(cycle.current_phase)
    days += cycle.phase_extensions * EXTENSION_DAYS
    return timing.start_date + timedelta(days=days)


def is_expired(cycle: Cycle, now: datetime) -> bool:
    """True when an active cycle's current phase has run its full duration."""
    if not cycle.is_active:
        return False
    deadline = phase_deadline(cycle)
    if deadline is None:
        return False
    return now >= deadline


def _enter(cycle: Cycle, target: Phase, now: datetime, winner_id: Optional[str]) -> Cycle:
    selected = cycle.selected_book_id
    if target == Phase.READING and winner_id is not None:
        selected = winner_id

    return replace(
        cycle,
        current_phase=target,
        phase_timings=cycle.phase_timings.with_entry(target, PhaseTiming(start_date=now)),
        selected_book_id=selected,
        phase_extensions=0,
    )
