"""Slack bot: slash command handlers, scheduler announcements, Socket Mode.

WHY: Every book club action starts as a slash command in Slack. This
module turns command text into BookClub calls and turns the results (or
errors) into replies, and it posts the scheduler's phase announcements.

HOW: BookClubCommands holds one handler per slash command. create_app()
registers them on a slack-bolt App. Each handler ack()s, parses the
command text, calls the service, and replies with respond(). SlackNotifier
implements the scheduler's Notifier with chat_postMessage.

RULES:
- ack() FIRST, before any processing
- Domain errors become a ":warning:" reply to the member who ran the
  command; anything else is logged and answered with a generic message
- Personal replies are ephemeral; cycle-wide changes are posted in_channel
- Suggestion listings never include who suggested a book
- Vote numbers refer to positions in the /chapters-suggestions list
"""

from __future__ import annotations

import contextlib
import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler
from slack_sdk import WebClient

from chapters import config
from chapters.core.errors import ChaptersError, ValidationError
from chapters.core.models import PHASE_ORDER, Cycle, Phase, Suggestion
from chapters.services.book_club import BookClub, create_book_club
from chapters.services.scheduler import IntervalDriver, LoggingNotifier, Notifier, PhaseScheduler
from chapters.slack.messages import (
    COMMAND_COMPLETE_CYCLE,
    COMMAND_CYCLE_STATUS,
    COMMAND_HELP,
    COMMAND_RATE,
    COMMAND_RATING_RESULTS,
    COMMAND_RESET_CYCLE,
    COMMAND_SET_PHASE,
    COMMAND_START_CYCLE,
    COMMAND_SUGGEST_BOOK,
    COMMAND_SUGGESTIONS,
    COMMAND_VOTE,
    COMMAND_VOTING_RESULTS,
    build_completion_message,
    build_cycle_started_text,
    build_error_text,
    build_extension_notice,
    build_help_text,
    build_phase_announcement,
    build_phase_changed_text,
    build_rating_recorded_text,
    build_rating_results_blocks,
    build_reset_text,
    build_results_blocks,
    build_status_text,
    build_suggestion_added_text,
    build_suggestion_list_blocks,
    build_vote_recorded_text,
)

logger = logging.getLogger(__name__)

EPHEMERAL = "ephemeral"
IN_CHANNEL = "in_channel"

GENERIC_ERROR = "Something went wrong while handling that command. Please try again later."

_YES = frozenset({"yes", "y", "true"})
_NO = frozenset({"no", "n", "false"})


# ---------------------------------------------------------------------------
# Command text parsing
# ---------------------------------------------------------------------------


def parse_phase(text: str) -> Phase:
    value = (text or "").strip().lower()
    try:
        return Phase(value)
    except ValueError:
        raise ValidationError(
            "Unknown phase \"{}\". Use one of: {}.".format(
                value, ", ".join(p.value for p in PHASE_ORDER)
            )
        ) from None


def parse_suggestion(text: str) -> Dict[str, Optional[str]]:
    """Split ``title | author | link | notes`` into suggest_book() arguments.

    Link and notes are optional. Notes may themselves contain "|".
    """
    parts = [part.strip() for part in (text or "").split("|", 3)]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValidationError(
            "Usage: `{} title | author | link | notes` (link and notes are optional).".format(
                COMMAND_SUGGEST_BOOK
            )
        )
    parts += [""] * (4 - len(parts))
    return {
        "book_name": parts[0],
        "author": parts[1],
        "link": parts[2] or None,
        "notes": parts[3] or None,
    }


def parse_vote(text: str, suggestions: List[Suggestion]) -> List[str]:
    """Map the numbers in ``/chapters-vote 2 1 3`` to suggestion ids."""
    picks = []
    for token in re.split(r"[\s,]+", (text or "").strip()):
        if not token:
            continue
        if not token.isdigit():
            raise ValidationError(
                "Usage: `{} 2 1 3` using the numbers from `{}`.".format(
                    COMMAND_VOTE, COMMAND_SUGGESTIONS
                )
            )
        number = int(token)
        if number < 1 or number > len(suggestions):
            raise ValidationError(
                "There is no suggestion number {}. Use `{}` to see the list.".format(
                    number, COMMAND_SUGGESTIONS
                )
            )
        picks.append(suggestions[number - 1].id)
    return picks


def parse_rating(text: str) -> Tuple[int, bool]:
    usage = ValidationError("Usage: `{} <1-10> <yes|no>`".format(COMMAND_RATE))
    tokens = (text or "").split()
    if len(tokens) != 2:
        raise usage

    score, answer = tokens[0], tokens[1].lower()
    if not re.fullmatch(r"-?\d+", score):
        raise usage
    if answer in _YES:
        return int(score), True
    if answer in _NO:
        return int(score), False
    raise usage


# ---------------------------------------------------------------------------
# Slash command handlers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _command_errors(respond: Any, command_name: str) -> Iterator[None]:
    try:
        yield
    except ChaptersError as exc:
        logger.info("%s rejected: %s", command_name, exc)
        respond(response_type=EPHEMERAL, text=build_error_text(str(exc)))
    except Exception:
        logger.exception("Unexpected error handling %s", command_name)
        respond(response_type=EPHEMERAL, text=build_error_text(GENERIC_ERROR))


class BookClubCommands:
    """Handlers for every /chapters-* slash command.

    Each method has the slack-bolt listener signature (ack, command,
    respond) so it can be registered directly with app.command().
    """

    def __init__(self, club: BookClub) -> None:
        self._club = club

    def start_cycle(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_START_CYCLE):
            cycle = self._club.start_cycle(
                channel_id=command.get("channel_id", ""),
                name=command.get("text"),
            )
            respond(response_type=IN_CHANNEL, text=build_cycle_started_text(cycle))

    def cycle_status(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_CYCLE_STATUS):
            view = self._club.status()
            respond(
                response_type=EPHEMERAL,
                text=build_status_text(
                    view.cycle,
                    view.deadline,
                    view.suggestion_count,
                    view.voter_count,
                    view.selected_book,
                ),
            )

    def set_phase(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_SET_PHASE):
            target = parse_phase(command.get("text", ""))
            cycle = self._club.set_phase(target)
            respond(
                response_type=IN_CHANNEL,
                text=build_phase_changed_text(cycle, self._club.selected_book(cycle)),
            )

    def suggest_book(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_SUGGEST_BOOK):
            fields = parse_suggestion(command.get("text", ""))
            suggestion = self._club.suggest_book(user_id=command.get("user_id", ""), **fields)
            respond(response_type=EPHEMERAL, text=build_suggestion_added_text(suggestion))

    def list_suggestions(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_SUGGESTIONS):
            suggestions = self._club.list_suggestions()
            respond(
                response_type=EPHEMERAL,
                blocks=build_suggestion_list_blocks(suggestions),
                text="{} book suggestion(s)".format(len(suggestions)),
            )

    def vote(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_VOTE):
            user_id = command.get("user_id", "")
            picks = parse_vote(command.get("text", ""), self._club.list_suggestions())
            replaced = self._club.has_voted(user_id)
            self._club.cast_vote(user_id, picks)
            respond(response_type=EPHEMERAL, text=build_vote_recorded_text(replaced))

    def voting_results(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_VOTING_RESULTS):
            view = self._club.status()
            respond(
                response_type=EPHEMERAL,
                blocks=build_results_blocks(self._club.results(), view.voter_count),
                text="Voting results for {}".format(view.cycle.name),
            )

    def rate(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_RATE):
            score, recommend = parse_rating(command.get("text", ""))
            rating = self._club.rate_book(command.get("user_id", ""), score, recommend)
            respond(
                response_type=EPHEMERAL,
                text=build_rating_recorded_text(rating.rating, rating.recommend),
            )

    def rating_results(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_RATING_RESULTS):
            stats = self._club.rating_stats()
            cycle = self._club.get_active_cycle()
            respond(
                response_type=EPHEMERAL,
                blocks=build_rating_results_blocks(self._club.selected_book(cycle), stats),
                text="Rating results for {}".format(cycle.name),
            )

    def complete_cycle(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_COMPLETE_CYCLE):
            summary = self._club.complete_cycle()
            respond(response_type=IN_CHANNEL, text=build_completion_message(summary))

    def reset_cycle(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        with _command_errors(respond, COMMAND_RESET_CYCLE):
            cycle = self._club.reset_cycle()
            respond(response_type=IN_CHANNEL, text=build_reset_text(cycle))

    def help(self, ack: Any, command: Dict[str, Any], respond: Any) -> None:
        ack()
        respond(response_type=EPHEMERAL, text=build_help_text())

    def routes(self) -> List[Tuple[str, Any]]:
        return [
            (COMMAND_START_CYCLE, self.start_cycle),
            (COMMAND_CYCLE_STATUS, self.cycle_status),
            (COMMAND_SET_PHASE, self.set_phase),
            (COMMAND_SUGGEST_BOOK, self.suggest_book),
            (COMMAND_SUGGESTIONS, self.list_suggestions),
            (COMMAND_VOTE, self.vote),
            (COMMAND_VOTING_RESULTS, self.voting_results),
            (COMMAND_RATE, self.rate),
            (COMMAND_RATING_RESULTS, self.rating_results),
            (COMMAND_COMPLETE_CYCLE, self.complete_cycle),
            (COMMAND_RESET_CYCLE, self.reset_cycle),
            (COMMAND_HELP, self.help),
        ]


# ---------------------------------------------------------------------------
# Scheduler announcements
# ---------------------------------------------------------------------------


class SlackNotifier(Notifier):
    """Posts automatic phase changes and extension notices to the cycle's channel.

    Errors from Slack propagate; the scheduler logs them and keeps the
    transition.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    def phase_changed(
        self,
        cycle: Cycle,
        previous: Phase,
        selected_book: Optional[Suggestion],
    ) -> None:
        if not cycle.channel_id:
            logger.warning("Cycle %s has no channel; announcement skipped", cycle.id)
            return

        self._client.chat_postMessage(
            channel=cycle.channel_id,
            text=build_phase_announcement(cycle, previous, selected_book),
        )

    def phase_extended(self, cycle: Cycle, reason: str, deadline: datetime) -> None:
        if not cycle.channel_id:
            logger.warning("Cycle %s has no channel; extension notice skipped", cycle.id)
            return

        self._client.chat_postMessage(
            channel=cycle.channel_id,
            text=build_extension_notice(cycle, reason, deadline),
        )


def build_notifier(bot_token: Optional[str] = None) -> Notifier:
    """SlackNotifier when a bot token is available, LoggingNotifier otherwise."""
    token = bot_token if bot_token is not None else config.get_slack_bot_token()
    if not token:
        logger.warning("SLACK_BOT_TOKEN not set; phase changes will only be logged")
        return LoggingNotifier()
    return SlackNotifier(WebClient(token=token))


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------


def create_app(
    club: BookClub,
    bot_token: Optional[str] = None,
    token_verification_enabled: bool = True,
) -> App:
    """Create the Slack Bolt app with every slash command registered.

    WHY: Factory function allows tests to inject a BookClub and a token
    and avoids module-level side effects.

    RULES:
    - If bot_token is None, reads SLACK_BOT_TOKEN
    - token_verification_enabled=False skips the auth.test call (tests)
    """
    token = bot_token or config.get_slack_bot_token()
    app = App(token=token, token_verification_enabled=token_verification_enabled)

    commands = BookClubCommands(club)
    for name, handler in commands.routes():
        app.command(name)(handler)

    return app


def run_bot() -> None:
    """Start the bot in Socket Mode, with the interval scheduler if enabled.

    RULES:
    - Requires SLACK_BOT_TOKEN and SLACK_APP_TOKEN
    - SCHEDULER_MODE=interval starts an IntervalDriver; cron leaves phase
      checks to the HTTP endpoint
    - Blocks on SocketModeHandler.start()
    """
    bot_token, app_token = config.load_slack_tokens()

    club = create_book_club()
    app = create_app(club, bot_token=bot_token)

    driver = None
    if config.SCHEDULER_MODE == "interval":
        scheduler = PhaseScheduler(club, SlackNotifier(app.client))
        driver = IntervalDriver(scheduler, config.SCHEDULER_INTERVAL_MINUTES * 60)
        driver.start()
    else:
        logger.info(
            "Scheduler mode is %s; phase checks run via the cron endpoint",
            config.SCHEDULER_MODE,
        )

    logger.info("Starting Slack bot in Socket Mode...")
    try:
        SocketModeHandler(app, app_token).start()
    finally:
        if driver is not None:
            driver.stop()
