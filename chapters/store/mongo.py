"""MongoDB-backed store using pymongo.

WHY: Cycles outlive the bot process, and the scheduler may run in a
different process (cron invocation) from the Slack handlers. A shared
document database is the single source of truth both actors write to.

HOW: Four collections (cycles, suggestions, votes, ratings) with
camelCase documents. Phase transitions are a single ``update_one`` whose
filter includes the previously observed phase, so only one of several
racing writers matches. Indexes enforce the invariants the application
relies on:
  one_active_cycle: partial unique index on status == "active"
  one_ballot_per_member: unique (cycleId, userId) on votes
  one_rating_per_book: unique (cycleId, userId, bookId) on ratings

RULES:
- Every pymongo failure surfaces as PersistenceError; only the ballot
  upsert race on one_ballot_per_member is retried (once)
- Undecodable active cycle documents are logged and skipped
- DuplicateKeyError maps to the domain error for the violated invariant
- Documents use string ids (uuid4 hex) as _id
- Naive datetimes read back from the driver are treated as UTC
"""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from chapters.core.errors import ActiveCycleExists, PersistenceError, ValidationError
from chapters.core.models import (
    PHASE_ORDER,
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
from chapters.store.base import CycleStore

logger = logging.getLogger(__name__)

CYCLES = "cycles"
SUGGESTIONS = "suggestions"
VOTES = "votes"
RATINGS = "ratings"


@contextlib.contextmanager
def _driver_errors(operation: str) -> Iterator[None]:
    """Re-raise pymongo failures as PersistenceError."""
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        logger.exception("MongoDB %s failed", operation)
        raise PersistenceError("Database error during {}: {}".format(operation, exc)) from exc


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _bson_time(value: datetime) -> datetime:
    """Truncate to the millisecond precision BSON dates are stored with."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


# ---------------------------------------------------------------------------
# Document mapping
# ---------------------------------------------------------------------------


def cycle_to_document(cycle: Cycle) -> Dict[str, Any]:
    return {
        "_id": cycle.id,
        "channelId": cycle.channel_id,
        "name": cycle.name,
        "status": cycle.status.value,
        "currentPhase": cycle.current_phase.value,
        "phaseDurations": cycle.phase_durations.as_dict(),
        "phaseTimings": _timings_to_document(cycle.phase_timings),
        "startDate": cycle.start_date,
        "selectedBookId": cycle.selected_book_id,
        "completedAt": cycle.completed_at,
        "phaseExtensions": cycle.phase_extensions,
    }


def cycle_from_document(doc: Dict[str, Any]) -> Cycle:
    timings = PhaseTimings()
    for phase_name, entry in (doc.get("phaseTimings") or {}).items():
        try:
            phase = Phase(phase_name)
        except ValueError:
            logger.warning("Ignoring timing for unknown phase %r in cycle %s", phase_name, doc["_id"])
            continue
        start = (entry or {}).get("startDate")
        if start is None:
            continue
        timings = timings.with_entry(phase, PhaseTiming(start_date=_as_utc(start)))

    return Cycle(
        id=doc["_id"],
        channel_id=doc.get("channelId", ""),
        name=doc.get("name", ""),
        start_date=_as_utc(doc["startDate"]),
        phase_durations=PhaseDurations(**doc["phaseDurations"]),
        status=CycleStatus(doc.get("status", CycleStatus.ACTIVE.value)),
        current_phase=Phase(doc.get("currentPhase", Phase.SUGGESTION.value)),
        phase_timings=timings,
        selected_book_id=doc.get("selectedBookId"),
        completed_at=_as_utc(doc.get("completedAt")),
        phase_extensions=max(int(doc.get("phaseExtensions") or 0), 0),
    )


def _timings_to_document(timings: PhaseTimings) -> Dict[str, Any]:
    result = {}
    for phase in PHASE_ORDER:
        timing = timings.get(phase)
        if timing is not None:
            result[phase.value] = {"startDate": timing.start_date}
    return result


def suggestion_to_document(suggestion: Suggestion) -> Dict[str, Any]:
    return {
        "_id": suggestion.id,
        "cycleId": suggestion.cycle_id,
        "userId": suggestion.user_id,
        "bookName": suggestion.book_name,
        "author": suggestion.author,
        "link": suggestion.link,
        "notes": suggestion.notes,
        "createdAt": suggestion.created_at,
        "totalPoints": suggestion.total_points,
    }


def suggestion_from_document(doc: Dict[str, Any]) -> Suggestion:
    return Suggestion(
        id=doc["_id"],
        cycle_id=doc["cycleId"],
        user_id=doc.get("userId", ""),
        book_name=doc.get("bookName", ""),
        author=doc.get("author", ""),
        created_at=_as_utc(doc["createdAt"]),
        link=doc.get("link"),
        notes=doc.get("notes"),
        total_points=max(int(doc.get("totalPoints") or 0), 0),
    )


def ballot_from_document(doc: Dict[str, Any]) -> Ballot:
    return Ballot(
        id=doc["_id"],
        cycle_id=doc["cycleId"],
        user_id=doc["userId"],
        picks=tuple(doc.get("picks") or ()),
        created_at=_as_utc(doc["createdAt"]),
    )


def rating_to_document(rating: Rating) -> Dict[str, Any]:
    return {
        "_id": rating.id,
        "cycleId": rating.cycle_id,
        "userId": rating.user_id,
        "bookId": rating.book_id,
        "rating": rating.rating,
        "recommend": rating.recommend,
        "createdAt": rating.created_at,
    }


def rating_from_document(doc: Dict[str, Any]) -> Rating:
    return Rating(
        id=doc["_id"],
        cycle_id=doc["cycleId"],
        user_id=doc["userId"],
        book_id=doc["bookId"],
        rating=int(doc["rating"]),
        recommend=bool(doc["recommend"]),
        created_at=_as_utc(doc["createdAt"]),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class MongoStore(CycleStore):
    """CycleStore over a pymongo Database (or any mapping of collections)."""

    def __init__(self, db: Any, create_indexes: bool = True) -> None:
        self._db = db
        self._cycles = db[CYCLES]
        self._suggestions = db[SUGGESTIONS]
        self._votes = db[VOTES]
        self._ratings = db[RATINGS]
        if create_indexes:
            self.ensure_indexes()

    @classmethod
    def from_uri(cls, uri: str, db_name: str) -> "MongoStore":
        client = MongoClient(uri, tz_aware=True)
        logger.info("Connected to MongoDB database %s", db_name)
        return cls(client[db_name])

    def ensure_indexes(self) -> None:
        with _driver_errors("index creation"):
            self._cycles.create_index(
                [("status", ASCENDING)],
                name="one_active_cycle",
                unique=True,
                partialFilterExpression={"status": CycleStatus.ACTIVE.value},
            )
            self._suggestions.create_index([("cycleId", ASCENDING), ("createdAt", ASCENDING)])
            self._votes.create_index(
                [("cycleId", ASCENDING), ("userId", ASCENDING)],
                name="one_ballot_per_member",
                unique=True,
            )
            self._ratings.create_index(
                [("cycleId", ASCENDING), ("userId", ASCENDING), ("bookId", ASCENDING)],
                name="one_rating_per_book",
                unique=True,
            )

    # -- cycles --------------------------------------------------------------

    def create_active_cycle(self, cycle: Cycle) -> Cycle:
        try:
            with _driver_errors("create cycle"):
                self._cycles.insert_one(cycle_to_document(cycle))
        except DuplicateKeyError as exc:
            raise ActiveCycleExists(
                "An active cycle already exists. Complete it with "
                "/chapters-complete-cycle before starting a new one."
            ) from exc

        logger.info("Created cycle %s (%s)", cycle.id, cycle.name)
        return cycle

    def get_cycle(self, cycle_id: str) -> Optional[Cycle]:
        with _driver_errors("get cycle"):
            doc = self._cycles.find_one({"_id": cycle_id})
        return cycle_from_document(doc) if doc else None

    def get_active_cycle(self) -> Optional[Cycle]:
        with _driver_errors("get active cycle"):
            doc = self._cycles.find_one({"status": CycleStatus.ACTIVE.value})
        return cycle_from_document(doc) if doc else None

    def list_active_cycles(self) -> List[Cycle]:
        """Decode every active cycle, skipping documents that cannot be read."""
        with _driver_errors("list active cycles"):
            docs = list(self._cycles.find({"status": CycleStatus.ACTIVE.value}))

        cycles = []
        for doc in docs:
            try:
                cycles.append(cycle_from_document(doc))
            except (KeyError, TypeError, ValueError):
                logger.exception("Skipping malformed cycle document %s", doc.get("_id"))
        return cycles

    def update_cycle_if_phase(
        self,
        cycle: Cycle,
        expected_phase: Phase,
        expected_start: Optional[datetime] = None,
    ) -> bool:
        query: Dict[str, Any] = {
            "_id": cycle.id,
            "status": CycleStatus.ACTIVE.value,
            "currentPhase": expected_phase.value,
        }
        if expected_start is not None:
            key = "phaseTimings.{}.startDate".format(expected_phase.value)
            query[key] = _bson_time(expected_start)

        changes: Dict[str, Any] = {
            "currentPhase": cycle.current_phase.value,
            "selectedBookId": cycle.selected_book_id,
            "phaseExtensions": 0,
        }
        entered = cycle.phase_timings.get(cycle.current_phase)
        if entered is not None:
            key = "phaseTimings.{}".format(cycle.current_phase.value)
            changes[key] = {"startDate": entered.start_date}

        with _driver_errors("phase transition"):
            result = self._cycles.update_one(query, {"$set": changes})
        return result.modified_count == 1

    def extend_phase(self, cycle_id: str, phase: Phase, extensions: int) -> bool:
        # documents written before extensions existed have no counter
        count: Any = extensions if extensions else {"$in": [0, None]}
        with _driver_errors("phase extension"):
            result = self._cycles.update_one(
                {
                    "_id": cycle_id,
                    "status": CycleStatus.ACTIVE.value,
                    "currentPhase": phase.value,
                    "phaseExtensions": count,
                },
                {"$inc": {"phaseExtensions": 1}},
            )
        return result.modified_count == 1

    def update_cycle_settings(
        self,
        cycle_id: str,
        name: Optional[str] = None,
        phase_durations: Optional[PhaseDurations] = None,
    ) -> Optional[Cycle]:
        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if phase_durations is not None:
            changes["phaseDurations"] = phase_durations.as_dict()
        if not changes:
            return self.get_cycle(cycle_id)

        with _driver_errors("update cycle settings"):
            doc = self._cycles.find_one_and_update(
                {"_id": cycle_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        return cycle_from_document(doc) if doc else None

    def archive_cycle(self, cycle_id: str, completed_at: datetime) -> Optional[Cycle]:
        with _driver_errors("archive cycle"):
            doc = self._cycles.find_one_and_update(
                {
                    "_id": cycle_id,
                    "status": CycleStatus.ACTIVE.value,
                    "currentPhase": Phase.DISCUSSION.value,
                },
                {"$set": {"status": CycleStatus.ARCHIVED.value, "completedAt": completed_at}},
                return_document=ReturnDocument.AFTER,
            )
        return cycle_from_document(doc) if doc else None

    def delete_cycle(self, cycle_id: str) -> bool:
        with _driver_errors("delete cycle"):
            result = self._cycles.delete_one({"_id": cycle_id})
            if result.deleted_count == 0:
                return False
            self._suggestions.delete_many({"cycleId": cycle_id})
            self._votes.delete_many({"cycleId": cycle_id})
            self._ratings.delete_many({"cycleId": cycle_id})

        logger.info("Deleted cycle %s and its data", cycle_id)
        return True

    # -- suggestions ---------------------------------------------------------

    def add_suggestion(self, suggestion: Suggestion) -> Suggestion:
        with _driver_errors("add suggestion"):
            self._suggestions.insert_one(suggestion_to_document(suggestion))
        return suggestion

    def get_suggestion(self, suggestion_id: str) -> Optional[Suggestion]:
        with _driver_errors("get suggestion"):
            doc = self._suggestions.find_one({"_id": suggestion_id})
        return suggestion_from_document(doc) if doc else None

    def list_suggestions(self, cycle_id: str) -> List[Suggestion]:
        with _driver_errors("list suggestions"):
            docs = list(
                self._suggestions.find({"cycleId": cycle_id}).sort(
                    [("createdAt", ASCENDING), ("_id", ASCENDING)]
                )
            )
        return [suggestion_from_document(doc) for doc in docs]

    def set_suggestion_points(self, cycle_id: str, points: Dict[str, int]) -> None:
        with _driver_errors("set suggestion points"):
            for suggestion_id, total in points.items():
                self._suggestions.update_one(
                    {"_id": suggestion_id, "cycleId": cycle_id},
                    {"$set": {"totalPoints": total}},
                )

    # -- ballots -------------------------------------------------------------

    def replace_ballot(self, ballot: Ballot) -> Ballot:
        """Upsert the member's ballot.

        Two first votes from the same member can both try to insert; the
        loser hits one_ballot_per_member and retries once, which then
        matches the winner's document and updates it.
        """
        try:
            doc = self._upsert_ballot(ballot)
        except DuplicateKeyError:
            logger.info(
                "Concurrent first ballot from %s in cycle %s; retrying as an update",
                ballot.user_id,
                ballot.cycle_id,
            )
            try:
                doc = self._upsert_ballot(ballot)
            except DuplicateKeyError as exc:
                raise PersistenceError(
                    "Your ballot could not be recorded. Please vote again."
                ) from exc
        return ballot_from_document(doc) if doc else ballot

    def _upsert_ballot(self, ballot: Ballot) -> Optional[Dict[str, Any]]:
        with _driver_errors("replace ballot"):
            return self._votes.find_one_and_update(
                {"cycleId": ballot.cycle_id, "userId": ballot.user_id},
                {
                    "$set": {"picks": list(ballot.picks), "createdAt": ballot.created_at},
                    "$setOnInsert": {"_id": ballot.id},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )

    def get_ballot(self, cycle_id: str, user_id: str) -> Optional[Ballot]:
        with _driver_errors("get ballot"):
            doc = self._votes.find_one({"cycleId": cycle_id, "userId": user_id})
        return ballot_from_document(doc) if doc else None

    def list_ballots(self, cycle_id: str) -> List[Ballot]:
        with _driver_errors("list ballots"):
            docs = list(self._votes.find({"cycleId": cycle_id}))
        return [ballot_from_document(doc) for doc in docs]

    def delete_ballots(self, cycle_id: str) -> int:
        with _driver_errors("delete ballots"):
            result = self._votes.delete_many({"cycleId": cycle_id})
        return result.deleted_count

    # -- ratings -------------------------------------------------------------

    def add_rating(self, rating: Rating) -> Rating:
        try:
            with _driver_errors("add rating"):
                self._ratings.insert_one(rating_to_document(rating))
        except DuplicateKeyError as exc:
            raise ValidationError("You have already rated this book.") from exc
        return rating

    def list_ratings(self, cycle_id: str) -> List[Rating]:
        with _driver_errors("list ratings"):
            docs = list(self._ratings.find({"cycleId": cycle_id}))
        return [rating_from_document(doc) for doc in docs]
