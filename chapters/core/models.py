"""Dataclasses for cycles, suggestions, ballots, and ratings.

WHY: The state machine, the tally, the stores, and the Slack layer all
pass the same handful of records around. Plain dataclasses give every
layer one typed vocabulary without tying the core to a database driver.

HOW: Two string enums name the closed sets (Phase, CycleStatus). Phase
durations and phase timings are fixed records with one slot per phase,
so a phase that was never entered is simply ``None``. Entities reference
their cycle by id only; nothing is embedded.

RULES:
- All datetimes are timezone-aware UTC
- Identifiers are uuid4 hex strings
- PhaseTimings is never mutated in place; with_entry() returns a copy
- A Ballot holds 1-3 distinct suggestion ids in rank order
- RANK_POINTS maps rank 1/2/3 to 3/2/1 points
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Default clock: the current time in UTC."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Phase(str, enum.Enum):
    """The four phases of a book club cycle, in order."""

    SUGGESTION = "suggestion"
    VOTING = "voting"
    READING = "reading"
    DISCUSSION = "discussion"

    @property
    def label(self) -> str:
        return self.value.capitalize()


PHASE_ORDER: Tuple[Phase, ...] = (
    Phase.SUGGESTION,
    Phase.VOTING,
    Phase.READING,
    Phase.DISCUSSION,
)


class CycleStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


# Points awarded per rank on a ballot
RANK_POINTS: Dict[int, int] = {1: 3, 2: 2, 3: 1}
MAX_PICKS = len(RANK_POINTS)


@dataclass
class PhaseDurations:
    """Configured length of each phase, in days.

    Floats so that test mode can run one-minute phases (1/1440 day).
    """

    suggestion: float = 7
    voting: float = 7
    reading: float = 30
    discussion: float = 7

    def __post_init__(self) -> None:
        for phase in PHASE_ORDER:
            if self.for_phase(phase) <= 0:
                raise ValueError(
                    "Duration for the {} phase must be positive".format(phase.value)
                )

    def for_phase(self, phase: Phase) -> float:
        return getattr(self, phase.value)

    def as_dict(self) -> Dict[str, float]:
        return {phase.value: self.for_phase(phase) for phase in PHASE_ORDER}


@dataclass
class PhaseTiming:
    start_date: datetime


@dataclass
class PhaseTimings:
    """When each phase was last entered.

    WHY: The scheduler decides expiry from the start of the current phase,
    and the completion summary reports how long reading lasted. Earlier
    phases stay recorded as history.

    RULES:
    - One optional slot per phase; None means "not entered yet"
    - with_entry() overwrites only the slot it is given
    """

    suggestion: Optional[PhaseTiming] = None
    voting: Optional[PhaseTiming] = None
    reading: Optional[PhaseTiming] = None
    discussion: Optional[PhaseTiming] = None

    def get(self, phase: Phase) -> Optional[PhaseTiming]:
        return getattr(self, phase.value)

    def with_entry(self, phase: Phase, timing: PhaseTiming) -> "PhaseTimings":
        return replace(self, **{phase.value: timing})


@dataclass
class Cycle:
    """One run of the book club through the four phases.

    RULES:
    - current_phase is always one of PHASE_ORDER
    - selected_book_id is pinned on entry to the reading phase
    - channel_id is where phase announcements are posted
    - phase_extensions counts one-day extensions of the current phase and
      drops back to zero whenever a phase is entered
    """

    id: str
    channel_id: str
    name: str
    start_date: datetime
    phase_durations: PhaseDurations
    status: CycleStatus = CycleStatus.ACTIVE
    current_phase: Phase = Phase.SUGGESTION
    phase_timings: PhaseTimings = field(default_factory=PhaseTimings)
    selected_book_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    phase_extensions: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == CycleStatus.ACTIVE

    def current_timing(self) -> Optional[PhaseTiming]:
        return self.phase_timings.get(self.current_phase)


@dataclass
class Suggestion:
    """A book proposed during the suggestion phase.

    user_id is stored for bookkeeping but never shown next to the book.
    """

    id: str
    cycle_id: str
    user_id: str
    book_name: str
    author: str
    created_at: datetime
    link: Optional[str] = None
    notes: Optional[str] = None
    total_points: int = 0


@dataclass
class Ballot:
    """One member's ranked vote: up to three suggestion ids, best first."""

    id: str
    cycle_id: str
    user_id: str
    picks: Tuple[str, ...]
    created_at: datetime

    def points_for(self, suggestion_id: str) -> int:
        for rank, picked in enumerate(self.picks, start=1):
            if picked == suggestion_id:
                return RANK_POINTS.get(rank, 0)
        return 0


@dataclass
class Rating:
    """Post-read feedback on the cycle's selected book."""

    id: str
    cycle_id: str
    user_id: str
    book_id: str
    rating: int
    recommend: bool
    created_at: datetime
