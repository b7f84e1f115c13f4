"""Tests for the ranked-choice Tally Engine and rating statistics.

WHY: The tally decides which book the club reads. Points per rank, tie
breaking, and repeatability must hold exactly.

RULES:
- Pure functions only; no store involved
- Suggestions are passed in submission order
"""

from __future__ import annotations

from datetime import timedelta

from chapters.core.models import Ballot, Rating, Suggestion
from chapters.core.tally import count_voters, rating_stats, tally, winner

from conftest import START


def _suggestion(suggestion_id, minutes=0):
    return Suggestion(
        id=suggestion_id,
        cycle_id="c1",
        user_id="U-" + suggestion_id,
        book_name=suggestion_id.capitalize(),
        author="Author",
        created_at=START + timedelta(minutes=minutes),
    )


def _ballot(user_id, *picks):
    return Ballot(id="b-" + user_id, cycle_id="c1", user_id=user_id, picks=picks, created_at=START)


def _rating(user_id, score, recommend):
    return Rating(
        id="r-" + user_id,
        cycle_id="c1",
        user_id=user_id,
        book_id="dune",
        rating=score,
        recommend=recommend,
        created_at=START,
    )


# ---------------------------------------------------------------------------
# Tests: tally
# ---------------------------------------------------------------------------


class TestTally:
    """Point totals and ordering."""

    def test_rank_points_are_three_two_one(self):
        suggestions = [_suggestion("a"), _suggestion("b", 1), _suggestion("c", 2)]
        entries = tally(suggestions, [_ballot("U1", "a", "b", "c")])

        assert [(e.suggestion.id, e.points) for e in entries] == [("a", 3), ("b", 2), ("c", 1)]

    def test_points_sum_across_ballots(self):
        suggestions = [_suggestion("a"), _suggestion("b", 1)]
        ballots = [_ballot("U1", "b", "a"), _ballot("U2", "b"), _ballot("U3", "a")]

        entries = tally(suggestions, ballots)

        assert entries[0].suggestion.id == "b"
        assert entries[0].points == 6
        assert entries[1].points == 5

    def test_tie_keeps_submission_order(self):
        dune = _suggestion("dune")
        foundation = _suggestion("foundation", 5)
        ballots = [_ballot("U1", "dune", "foundation"), _ballot("U2", "foundation", "dune")]

        entries = tally([dune, foundation], ballots)

        assert [e.points for e in entries] == [5, 5]
        assert winner(entries).id == "dune"

    def test_no_ballots_gives_zero_totals_in_submission_order(self):
        suggestions = [_suggestion("a"), _suggestion("b", 1), _suggestion("c", 2)]

        entries = tally(suggestions, [])

        assert [e.suggestion.id for e in entries] == ["a", "b", "c"]
        assert all(e.points == 0 for e in entries)

    def test_unknown_pick_contributes_nothing(self):
        entries = tally([_suggestion("a")], [_ballot("U1", "ghost", "a")])

        assert entries[0].points == 2

    def test_is_idempotent(self):
        suggestions = [_suggestion("a"), _suggestion("b", 1)]
        ballots = [_ballot("U1", "b", "a"), _ballot("U2", "a")]

        first = tally(suggestions, ballots)
        second = tally(suggestions, ballots)

        assert [(e.suggestion.id, e.points) for e in first] == [
            (e.suggestion.id, e.points) for e in second
        ]

    def test_winner_of_empty_standings_is_none(self):
        assert winner([]) is None


# ---------------------------------------------------------------------------
# Tests: voters and ratings
# ---------------------------------------------------------------------------


class TestCountVoters:

    def test_counts_distinct_members(self):
        ballots = [_ballot("U1", "a"), _ballot("U2", "a"), _ballot("U1", "b")]
        assert count_voters(ballots) == 2

    def test_no_ballots(self):
        assert count_voters([]) == 0


class TestRatingStats:

    def test_average_and_recommend_percentage(self):
        stats = rating_stats([
            _rating("U1", 8, True),
            _rating("U2", 7, False),
            _rating("U3", 9, True),
        ])

        assert stats.average == 8.0
        assert stats.recommend_percentage == 67
        assert stats.total == 3

    def test_average_rounds_to_one_decimal(self):
        stats = rating_stats([_rating("U1", 7, True), _rating("U2", 8, True), _rating("U3", 8, True)])
        assert stats.average == 7.7

    def test_empty(self):
        stats = rating_stats([])
        assert (stats.average, stats.recommend_percentage, stats.total) == (0.0, 0, 0)
