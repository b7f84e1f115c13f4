"""Ranked-choice tally and rating statistics.

WHY: Members rank up to three books. The book with the most points wins
the cycle, and the standings are shown to everyone while voting is open.

HOW: Each ballot awards 3/2/1 points to its 1st/2nd/3rd pick. Totals are
summed per suggestion and sorted descending with a stable sort, so ties
keep the order in which the books were suggested.

RULES:
- Input suggestions must already be in submission order
- Picks naming an unknown suggestion contribute nothing
- No ballots -> every total is zero and order is submission order
- Pure functions: nothing here writes to a store
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from chapters.core.models import Ballot, Rating, Suggestion


@dataclass
class TallyEntry:
    suggestion: Suggestion
    points: int


@dataclass
class RatingStats:
    average: float
    recommend_percentage: int
    total: int


def tally(suggestions: Sequence[Suggestion], ballots: Iterable[Ballot]) -> List[TallyEntry]:
    """Compute ranked-choice standings for a cycle.

    WHY: Point totals must be reproducible from the ballots alone, so a
    re-vote or a crash mid-write can always be repaired by re-running
    the tally and overwriting the stored totals.

    HOW: Sums points per suggestion id, then stable-sorts by points
    descending.

    RULES:
    - Idempotent: the same inputs always give the same totals and order
    - Ties are broken by position in ``suggestions``
    """
    totals = {suggestion.id: 0 for suggestion in suggestions}

    for ballot in ballots:
        for suggestion_id in totals:
            totals[suggestion_id] += ballot.points_for(suggestion_id)

    entries = [TallyEntry(suggestion=s, points=totals[s.id]) for s in suggestions]
    # sorted() is stable, which keeps submission order among ties
    return sorted(entries, key=lambda entry: entry.points, reverse=True)


def winner(entries: Sequence[TallyEntry]) -> Optional[Suggestion]:
    """Top of the standings, or None when nothing was suggested."""
    if not entries:
        return None
    return entries[0].suggestion


def count_voters(ballots: Iterable[Ballot]) -> int:
    return len({ballot.user_id for ballot in ballots})


def rating_stats(ratings: Sequence[Rating]) -> RatingStats:
    """Average rating (one decimal) and share of members who recommend."""
    if not ratings:
        return RatingStats(average=0.0, recommend_percentage=0, total=0)

    total = len(ratings)
    average = sum(r.rating for r in ratings) / total
    recommended = sum(1 for r in ratings if r.recommend)

    return RatingStats(
        average=round(average, 1),
        recommend_percentage=int(round(recommended * 100 / total)),
        total=total,
    )
