"""Phase Transition Scheduler: one check pass, two ways to drive it.

WHY: Phases end on a calendar, not on a command. Something has to notice
that the voting week is over, pin the winning book, and tell the channel.
Depending on the deployment that "something" is a long-running timer or
an external cron hitting an HTTP endpoint.

HOW: PhaseScheduler.run_check_pass() is the single idempotent operation:
load active cycles, then for each expired one either advance it through
BookClub.advance() (a compare-and-swap write) and notify, or, when the
phase's requirements are not met yet, extend it by a day. IntervalDriver
runs that pass on a background thread; the cron endpoint and the
``check`` CLI command call it once.

RULES:
- A pass with nothing expired is a no-op
- One failing cycle is logged and skipped; the pass continues
- Discussion never auto-advances; it waits for /chapters-complete-cycle
- Suggestion needs 3 books and voting needs a ballot before advancing;
  otherwise the deadline moves a day and the channel hears about it on
  the 1st, 3rd and every 7th extension
- Notification failures are logged and never undo a committed transition
- IntervalDriver.stop() returns immediately; the in-flight pass finishes
  on its own and no further pass starts
"""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from chapters.core import phases
from chapters.core.models import Cycle, Phase, Suggestion
from chapters.services.book_club import BookClub

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    cycle_id: str
    from_phase: Phase
    to_phase: Phase
    notified: bool


class Notifier(abc.ABC):
    """Receives the scheduler's channel announcements."""

    @abc.abstractmethod
    def phase_changed(
        self,
        cycle: Cycle,
        previous: Phase,
        selected_book: Optional[Suggestion],
    ) -> None:
        """Called once per committed automatic phase change."""

    @abc.abstractmethod
    def phase_extended(self, cycle: Cycle, reason: str, deadline: datetime) -> None:
        """Called when an extension should be announced."""


class LoggingNotifier(Notifier):
    """Fallback notifier for deployments without a chat channel."""

    def phase_changed(
        self,
        cycle: Cycle,
        previous: Phase,
        selected_book: Optional[Suggestion],
    ) -> None:
        logger.info(
            "Cycle %s (%s) moved from %s to %s",
            cycle.id,
            cycle.name,
            previous.value,
            cycle.current_phase.value,
        )

    def phase_extended(self, cycle: Cycle, reason: str, deadline: datetime) -> None:
        logger.info(
            "Cycle %s (%s) %s phase extended to %s: %s",
            cycle.id,
            cycle.name,
            cycle.current_phase.value,
            deadline.isoformat(),
            reason,
        )


class PhaseScheduler:
    """Checks active cycles for expired phases and advances them."""

    def __init__(self, club: BookClub, notifier: Optional[Notifier] = None) -> None:
        self._club = club
        self._notifier = notifier or LoggingNotifier()

    def now(self) -> datetime:
        return self._club.now()

    def run_check_pass(self) -> List[TransitionResult]:
        """Check every active cycle once and advance the expired ones.

        WHY: Both drivers (timer and cron) share this so the phase logic
        exists exactly once.

        RULES:
        - Returns one TransitionResult per transition this pass committed
        - Extensions are not transitions and are not returned
        - Safe to call concurrently: the store's compare-and-swap lets only
          one caller move a given cycle out of a given phase
        """
        now = self.now()

        try:
            cycles = self._club.store.list_active_cycles()
        except Exception:
            logger.exception("Could not load active cycles for phase check")
            return []

        results = []
        for cycle in cycles:
            try:
                result = self._check_cycle(cycle, now)
            except Exception:
                logger.exception("Phase check failed for cycle %s", cycle.id)
                continue
            if result is not None:
                results.append(result)

        if results:
            logger.info("Phase check committed %d transition(s)", len(results))
        return results

    def _check_cycle(self, cycle: Cycle, now: datetime) -> Optional[TransitionResult]:
        if cycle.current_timing() is None:
            logger.warning(
                "Cycle %s has no start date for phase %s; skipping",
                cycle.id,
                cycle.current_phase.value,
            )
            return None

        if not phases.is_expired(cycle, now):
            return None

        if phases.next_phase(cycle.current_phase) is None:
            logger.debug("Cycle %s discussion ended; waiting for completion", cycle.id)
            return None

        reason = self._club.advance_blocker(cycle)
        if reason is not None:
            self._extend(cycle, reason)
            return None

        updated = self._club.advance(cycle)
        if updated is None:
            return None

        notified = self._notify(updated, cycle.current_phase)
        return TransitionResult(
            cycle_id=cycle.id,
            from_phase=cycle.current_phase,
            to_phase=updated.current_phase,
            notified=notified,
        )

    def _extend(self, cycle: Cycle, reason: str) -> None:
        logger.info("Cycle %s cannot leave %s yet: %s", cycle.id, cycle.current_phase.value, reason)
        extended = self._club.extend_phase(cycle)
        if extended is None or not phases.should_announce_extension(extended.phase_extensions):
            return

        try:
            self._notifier.phase_extended(extended, reason, phases.phase_deadline(extended))
        except Exception:
            logger.exception("Failed to announce phase extension for cycle %s", cycle.id)

    def _notify(self, cycle: Cycle, previous: Phase) -> bool:
        try:
            book = self._club.selected_book(cycle)
            self._notifier.phase_changed(cycle, previous, book)
        except Exception:
            logger.exception("Failed to announce phase change for cycle %s", cycle.id)
            return False
        return True


class IntervalDriver:
    """Runs PhaseScheduler.run_check_pass() on a fixed interval in a thread.

    HOW: Each start() creates a daemon thread with its own threading.Event.
    The thread runs a pass, then waits on that event for ``interval_s``
    seconds. stop() sets the event, which wakes the wait and ends the loop
    after any in-flight pass. A later start() never revives a stopped loop.
    """

    def __init__(self, scheduler: PhaseScheduler, interval_s: float) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._scheduler = scheduler
        self._interval_s = interval_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.info("Phase scheduler is already running")
            return

        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop,),
            name="phase-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Phase scheduler started, checking every %.0f seconds", self._interval_s)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop issuing checks. Joins only when a timeout is given."""
        if self._thread is None:
            logger.info("Phase scheduler is not running")
            return

        self._stop.set()
        if timeout is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("Phase scheduler stopped")

    def _run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                self._scheduler.run_check_pass()
            except Exception:
                logger.exception("Unexpected error in phase check pass")
            stop.wait(self._interval_s)
