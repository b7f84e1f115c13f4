"""Tests for the pymongo-backed CycleStore.

WHY: The Mongo store enforces the single-active-cycle and
compare-and-swap guarantees through query filters and indexes. These
tests pin down the exact filters, index options, and error mapping.

HOW: The store accepts any mapping of collections, so each collection is
a MagicMock and assertions inspect the pymongo calls made.

RULES:
- No real database; pymongo collections are mocked
- Driver errors are raised through side_effect
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, PyMongoError

from chapters.core.errors import ActiveCycleExists, PersistenceError, ValidationError
from chapters.core.models import (
    Ballot,
    Cycle,
    CycleStatus,
    Phase,
    PhaseDurations,
    PhaseTiming,
    PhaseTimings,
    Rating,
    Suggestion,
)
from chapters.store.mongo import (
    CYCLES,
    RATINGS,
    SUGGESTIONS,
    VOTES,
    MongoStore,
    cycle_from_document,
    cycle_to_document,
    suggestion_from_document,
)

from conftest import START


def _cycle(phase=Phase.SUGGESTION):
    return Cycle(
        id="c1",
        channel_id="C1",
        name="October Reads",
        start_date=START,
        phase_durations=PhaseDurations(),
        current_phase=phase,
        phase_timings=PhaseTimings().with_entry(phase, PhaseTiming(start_date=START)),
    )


@pytest.fixture
def db():
    return {name: MagicMock(name=name) for name in (CYCLES, SUGGESTIONS, VOTES, RATINGS)}


@pytest.fixture
def store(db):
    return MongoStore(db, create_indexes=False)


# ---------------------------------------------------------------------------
# Tests: document mapping
# ---------------------------------------------------------------------------


class TestCycleDocuments:

    def test_camel_case_fields(self):
        doc = cycle_to_document(_cycle())

        assert doc["_id"] == "c1"
        assert doc["currentPhase"] == "suggestion"
        assert doc["status"] == "active"
        assert doc["phaseTimings"] == {"suggestion": {"startDate": START}}
        assert doc["phaseDurations"]["reading"] == 30

    def test_round_trip(self):
        cycle = _cycle(Phase.READING)
        cycle.selected_book_id = "dune"

        assert cycle_from_document(cycle_to_document(cycle)) == cycle

    def test_naive_datetimes_read_as_utc(self):
        doc = cycle_to_document(_cycle())
        doc["startDate"] = datetime(2026, 10, 19, 9, 0)

        assert cycle_from_document(doc).start_date.tzinfo == timezone.utc

    def test_unknown_phase_timing_skipped(self):
        doc = cycle_to_document(_cycle())
        doc["phaseTimings"]["intermission"] = {"startDate": START}

        cycle = cycle_from_document(doc)

        assert cycle.phase_timings.suggestion.start_date == START

    def test_negative_points_clamped(self):
        doc = {
            "_id": "s1",
            "cycleId": "c1",
            "userId": "U1",
            "bookName": "Dune",
            "author": "Frank Herbert",
            "createdAt": START,
            "totalPoints": -4,
        }
        assert suggestion_from_document(doc).total_points == 0


# ---------------------------------------------------------------------------
# Tests: indexes and cycle writes
# ---------------------------------------------------------------------------


class TestIndexes:

    def test_created_on_init(self, db):
        MongoStore(db)

        db[CYCLES].create_index.assert_called_once()
        _, kwargs = db[CYCLES].create_index.call_args
        assert kwargs["name"] == "one_active_cycle"
        assert kwargs["unique"] is True
        assert kwargs["partialFilterExpression"] == {"status": "active"}

        names = [c.kwargs.get("name") for c in db[VOTES].create_index.call_args_list]
        assert "one_ballot_per_member" in names

    def test_skipped_when_disabled(self, db):
        MongoStore(db, create_indexes=False)
        db[CYCLES].create_index.assert_not_called()


class TestCycleWrites:

    def test_duplicate_active_cycle_maps_to_domain_error(self, store, db):
        db[CYCLES].insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

        with pytest.raises(ActiveCycleExists):
            store.create_active_cycle(_cycle())

    def test_driver_failure_maps_to_persistence_error(self, store, db):
        db[CYCLES].find_one.side_effect = PyMongoError("connection refused")

        with pytest.raises(PersistenceError):
            store.get_active_cycle()

    def test_compare_and_swap_filter(self, store, db):
        db[CYCLES].update_one.return_value = MagicMock(modified_count=1)
        moved = _cycle(Phase.VOTING)

        assert store.update_cycle_if_phase(moved, expected_phase=Phase.SUGGESTION) is True

        query, update = db[CYCLES].update_one.call_args.args
        assert query == {"_id": "c1", "status": "active", "currentPhase": "suggestion"}
        assert update == {
            "$set": {
                "currentPhase": "voting",
                "selectedBookId": None,
                "phaseExtensions": 0,
                "phaseTimings.voting": {"startDate": START},
            }
        }

    def test_compare_and_swap_on_observed_start(self, store, db):
        db[CYCLES].update_one.return_value = MagicMock(modified_count=1)
        observed = START + timedelta(microseconds=123456)

        store.update_cycle_if_phase(_cycle(Phase.READING), Phase.VOTING, expected_start=observed)

        query = db[CYCLES].update_one.call_args.args[0]
        assert query["phaseTimings.voting.startDate"] == START + timedelta(microseconds=123000)

    def test_compare_and_swap_lost(self, store, db):
        db[CYCLES].update_one.return_value = MagicMock(modified_count=0)

        assert store.update_cycle_if_phase(_cycle(Phase.VOTING), Phase.SUGGESTION) is False

    def test_extend_phase_filter(self, store, db):
        db[CYCLES].update_one.return_value = MagicMock(modified_count=1)

        assert store.extend_phase("c1", Phase.VOTING, 2) is True

        query, update = db[CYCLES].update_one.call_args.args
        assert query == {
            "_id": "c1",
            "status": "active",
            "currentPhase": "voting",
            "phaseExtensions": 2,
        }
        assert update == {"$inc": {"phaseExtensions": 1}}

    def test_first_extension_matches_missing_counter(self, store, db):
        db[CYCLES].update_one.return_value = MagicMock(modified_count=1)

        store.extend_phase("c1", Phase.SUGGESTION, 0)

        query = db[CYCLES].update_one.call_args.args[0]
        assert query["phaseExtensions"] == {"$in": [0, None]}

    def test_malformed_active_cycle_skipped(self, store, db):
        bad = cycle_to_document(_cycle())
        bad["_id"] = "bad"
        del bad["phaseDurations"]
        db[CYCLES].find.return_value = [bad, cycle_to_document(_cycle())]

        assert [c.id for c in store.list_active_cycles()] == ["c1"]

    def test_archive_requires_active_discussion(self, store, db):
        db[CYCLES].find_one_and_update.return_value = None

        assert store.archive_cycle("c1", completed_at=START) is None

        query = db[CYCLES].find_one_and_update.call_args.args[0]
        assert query == {"_id": "c1", "status": "active", "currentPhase": "discussion"}

    def test_archive_returns_archived_cycle(self, store, db):
        doc = cycle_to_document(_cycle(Phase.DISCUSSION))
        doc.update(status="archived", completedAt=START + timedelta(days=51))
        db[CYCLES].find_one_and_update.return_value = doc

        archived = store.archive_cycle("c1", completed_at=START + timedelta(days=51))

        assert archived.status == CycleStatus.ARCHIVED

    def test_delete_cascades(self, store, db):
        db[CYCLES].delete_one.return_value = MagicMock(deleted_count=1)

        assert store.delete_cycle("c1") is True

        for name in (SUGGESTIONS, VOTES, RATINGS):
            db[name].delete_many.assert_called_once_with({"cycleId": "c1"})


# ---------------------------------------------------------------------------
# Tests: suggestions, ballots, ratings
# ---------------------------------------------------------------------------


class TestChildRecords:

    def test_suggestions_sorted_by_submission(self, store, db):
        cursor = db[SUGGESTIONS].find.return_value
        cursor.sort.return_value = []

        store.list_suggestions("c1")

        db[SUGGESTIONS].find.assert_called_once_with({"cycleId": "c1"})
        cursor.sort.assert_called_once_with([("createdAt", 1), ("_id", 1)])

    def test_replace_ballot_upserts_by_member(self, store, db):
        ballot = Ballot(id="b1", cycle_id="c1", user_id="U1", picks=("a", "b"), created_at=START)
        db[VOTES].find_one_and_update.return_value = {
            "_id": "b0",
            "cycleId": "c1",
            "userId": "U1",
            "picks": ["a", "b"],
            "createdAt": START,
        }

        stored = store.replace_ballot(ballot)

        query, update = db[VOTES].find_one_and_update.call_args.args
        assert query == {"cycleId": "c1", "userId": "U1"}
        assert update["$set"]["picks"] == ["a", "b"]
        assert update["$setOnInsert"] == {"_id": "b1"}
        assert db[VOTES].find_one_and_update.call_args.kwargs["upsert"] is True
        assert stored.picks == ("a", "b")

    def test_concurrent_first_ballot_retried_as_update(self, store, db):
        ballot = Ballot(id="b2", cycle_id="c1", user_id="U1", picks=("b",), created_at=START)
        db[VOTES].find_one_and_update.side_effect = [
            DuplicateKeyError("E11000 duplicate key"),
            {"_id": "b1", "cycleId": "c1", "userId": "U1", "picks": ["b"], "createdAt": START},
        ]

        stored = store.replace_ballot(ballot)

        assert db[VOTES].find_one_and_update.call_count == 2
        assert stored.id == "b1"
        assert stored.picks == ("b",)

    def test_repeated_ballot_conflict_maps_to_persistence_error(self, store, db):
        ballot = Ballot(id="b2", cycle_id="c1", user_id="U1", picks=("b",), created_at=START)
        db[VOTES].find_one_and_update.side_effect = DuplicateKeyError("E11000 duplicate key")

        with pytest.raises(PersistenceError):
            store.replace_ballot(ballot)

    def test_add_suggestion_inserts_document(self, store, db):
        suggestion = Suggestion(
            id="s1",
            cycle_id="c1",
            user_id="U1",
            book_name="Dune",
            author="Frank Herbert",
            created_at=START,
        )

        store.add_suggestion(suggestion)

        doc = db[SUGGESTIONS].insert_one.call_args.args[0]
        assert doc["bookName"] == "Dune"
        assert doc["totalPoints"] == 0

    def test_duplicate_rating_rejected(self, store, db):
        db[RATINGS].insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        rating = Rating(
            id="r1",
            cycle_id="c1",
            user_id="U1",
            book_id="s1",
            rating=9,
            recommend=True,
            created_at=START,
        )

        with pytest.raises(ValidationError):
            store.add_rating(rating)
