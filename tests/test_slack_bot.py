"""Tests for the Slack slash command handlers and notifier.

WHY: The handlers are the only thing members touch. They must ack()
first, parse command text correctly, turn domain errors into readable
warnings, and never leak who suggested which book.

HOW: Handlers are called directly with MagicMock ack/respond, over a
real BookClub and in-memory store from conftest. The Slack WebClient and
the Bolt App class are mocked.

RULES:
- No real Slack API calls
- ack() must be the first call on every handler
- Each test is independent
"""

from __future__ import annotations

from unittest.mock import MagicMock, call, patch

import pytest

from chapters.core.errors import ValidationError
from chapters.core.models import Phase
from chapters.services.scheduler import LoggingNotifier
from chapters.slack.bot import (
    GENERIC_ERROR,
    BookClubCommands,
    SlackNotifier,
    build_notifier,
    create_app,
    parse_phase,
    parse_rating,
    parse_suggestion,
    parse_vote,
)
from chapters.slack.messages import (
    COMMAND_HELP,
    COMMAND_RATING_RESULTS,
    COMMAND_START_CYCLE,
    COMMAND_VOTE,
)

from conftest import CHANNEL_ID, START


def _command(text="", user_id="U1"):
    return {"text": text, "user_id": user_id, "channel_id": CHANNEL_ID}


def _invoke(handler, text="", user_id="U1"):
    """Run a handler; return the parent mock recording ack/respond order."""
    parent = MagicMock()
    handler(parent.ack, _command(text, user_id), parent.respond)
    return parent


def _reply_text(parent):
    return parent.respond.call_args.kwargs.get("text", "")


@pytest.fixture
def commands(club):
    return BookClubCommands(club)


# ---------------------------------------------------------------------------
# Tests: command text parsing
# ---------------------------------------------------------------------------


class TestParseSuggestion:

    def test_title_and_author(self):
        assert parse_suggestion("Dune | Frank Herbert") == {
            "book_name": "Dune",
            "author": "Frank Herbert",
            "link": None,
            "notes": None,
        }

    def test_all_fields_with_pipe_in_notes(self):
        fields = parse_suggestion("Dune | Frank Herbert | https://example.com | spice | sand")

        assert fields["link"] == "https://example.com"
        assert fields["notes"] == "spice | sand"

    @pytest.mark.parametrize("text", ["", "Dune", "Dune |  ", " | Frank Herbert"])
    def test_missing_title_or_author(self, text):
        with pytest.raises(ValidationError, match="Usage"):
            parse_suggestion(text)


class TestParseVote:

    def test_maps_numbers_to_ids(self, suggested_books):
        picks = parse_vote("3 1", suggested_books)
        assert picks == [suggested_books[2].id, suggested_books[0].id]

    def test_commas_allowed(self, suggested_books):
        assert len(parse_vote("1, 2,3", suggested_books)) == 3

    def test_out_of_range(self, suggested_books):
        with pytest.raises(ValidationError, match="no suggestion number 4"):
            parse_vote("4", suggested_books)

    def test_not_a_number(self, suggested_books):
        with pytest.raises(ValidationError, match="Usage"):
            parse_vote("Dune", suggested_books)


class TestParseRating:

    @pytest.mark.parametrize("text,expected", [
        ("8 yes", (8, True)),
        ("3 NO", (3, False)),
        ("10 y", (10, True)),
    ])
    def test_valid(self, text, expected):
        assert parse_rating(text) == expected

    @pytest.mark.parametrize("text", ["", "8", "eight yes", "8 maybe", "8 yes please"])
    def test_invalid(self, text):
        with pytest.raises(ValidationError, match="Usage"):
            parse_rating(text)


class TestParsePhase:

    def test_case_insensitive(self):
        assert parse_phase(" Reading ") == Phase.READING

    def test_unknown(self):
        with pytest.raises(ValidationError, match="Unknown phase"):
            parse_phase("intermission")


# ---------------------------------------------------------------------------
# Tests: slash command handlers
# ---------------------------------------------------------------------------


class TestCycleCommands:

    def test_start_cycle_acks_first_and_posts_in_channel(self, commands):
        parent = _invoke(commands.start_cycle, "Autumn Reads")

        assert parent.mock_calls[0] == call.ack()
        kwargs = parent.respond.call_args.kwargs
        assert kwargs["response_type"] == "in_channel"
        assert "Autumn Reads" in kwargs["text"]

    def test_second_start_is_a_warning(self, commands):
        _invoke(commands.start_cycle)
        parent = _invoke(commands.start_cycle)

        kwargs = parent.respond.call_args.kwargs
        assert kwargs["response_type"] == "ephemeral"
        assert kwargs["text"].startswith(":warning:")
        assert "already exists" in kwargs["text"]

    def test_status_without_cycle(self, commands):
        parent = _invoke(commands.cycle_status)
        assert "No active book club cycle found" in _reply_text(parent)

    def test_status(self, commands, club):
        club.start_cycle(CHANNEL_ID, "Autumn Reads")

        parent = _invoke(commands.cycle_status)

        assert "*Current phase:* Suggestion" in _reply_text(parent)

    def test_set_phase(self, commands, club, suggested_books):
        parent = _invoke(commands.set_phase, "reading")

        assert club.get_active_cycle().current_phase == Phase.READING
        assert '"Dune"' in _reply_text(parent)

    def test_set_unknown_phase(self, commands, club):
        club.start_cycle(CHANNEL_ID)

        parent = _invoke(commands.set_phase, "intermission")

        assert "Unknown phase" in _reply_text(parent)

    def test_complete_cycle(self, commands, club, suggested_books):
        club.set_phase(Phase.DISCUSSION)

        parent = _invoke(commands.complete_cycle)

        assert parent.respond.call_args.kwargs["response_type"] == "in_channel"
        assert "Book Club Cycle Completed" in _reply_text(parent)

    def test_complete_outside_discussion(self, commands, club, suggested_books):
        parent = _invoke(commands.complete_cycle)
        assert "Discussion phase" in _reply_text(parent)

    def test_reset_cycle(self, commands, club, suggested_books):
        parent = _invoke(commands.reset_cycle)

        assert "has been reset" in _reply_text(parent)
        assert club.store.get_active_cycle() is None

    def test_help(self, commands):
        parent = _invoke(commands.help)

        assert parent.mock_calls[0] == call.ack()
        assert COMMAND_START_CYCLE in _reply_text(parent)


class TestSuggestionCommands:

    def test_suggest_book(self, commands, club):
        club.start_cycle(CHANNEL_ID)

        parent = _invoke(commands.suggest_book, "Dune | Frank Herbert | https://example.com/dune")

        assert '"Dune"' in _reply_text(parent)
        assert club.list_suggestions()[0].link == "https://example.com/dune"

    def test_suggest_bad_input(self, commands, club):
        club.start_cycle(CHANNEL_ID)

        parent = _invoke(commands.suggest_book, "Dune")

        assert "Usage" in _reply_text(parent)
        assert club.list_suggestions() == []

    def test_list_is_anonymous(self, commands, suggested_books):
        parent = _invoke(commands.list_suggestions, user_id="U9")

        blocks = parent.respond.call_args.kwargs["blocks"]
        rendered = str(blocks)
        assert "Dune" in rendered
        for suggestion in suggested_books:
            assert suggestion.user_id not in rendered


class TestVotingCommands:

    def test_vote_and_revote(self, commands, voting_club):
        first = _invoke(commands.vote, "2 1")
        second = _invoke(commands.vote, "3")

        assert "Thanks for voting" in _reply_text(first)
        assert "updated" in _reply_text(second)
        totals = {s.book_name: s.total_points for s in voting_club.list_suggestions()}
        assert totals == {"Dune": 0, "Foundation": 0, "Hyperion": 3}

    def test_vote_outside_voting(self, commands, suggested_books):
        parent = _invoke(commands.vote, "1")
        assert '"Suggestion" phase' in _reply_text(parent)

    def test_voting_results(self, commands, voting_club):
        _invoke(commands.vote, "2 1", user_id="U1")
        _invoke(commands.vote, "2", user_id="U2")

        parent = _invoke(commands.voting_results)

        blocks = parent.respond.call_args.kwargs["blocks"]
        assert ":first_place_medal: *Foundation*" in blocks[1]["text"]["text"]
        assert "2 members" in blocks[2]["elements"][0]["text"]


class TestRateCommand:

    def test_rate(self, commands, voting_club):
        voting_club.set_phase(Phase.READING)

        parent = _invoke(commands.rate, "9 yes")

        assert "9/10" in _reply_text(parent)
        assert voting_club.rating_stats().total == 1

    def test_rate_out_of_range(self, commands, voting_club):
        voting_club.set_phase(Phase.READING)

        parent = _invoke(commands.rate, "11 yes")

        assert _reply_text(parent).startswith(":warning: Rating:")


class TestRatingResultsCommand:

    def test_shows_average_and_recommendation(self, commands, voting_club):
        voting_club.set_phase(Phase.READING)
        voting_club.rate_book("U1", 9, True)
        voting_club.rate_book("U2", 6, False)

        parent = _invoke(commands.rating_results)

        assert parent.mock_calls[0] == call.ack()
        kwargs = parent.respond.call_args.kwargs
        assert kwargs["response_type"] == "ephemeral"
        fields = kwargs["blocks"][2]["fields"]
        assert "7.5/10" in fields[0]["text"]
        assert "50% would recommend" in fields[1]["text"]
        assert "*Book:* Dune" in kwargs["blocks"][1]["text"]["text"]

    def test_before_reading_is_a_warning(self, commands, voting_club):
        parent = _invoke(commands.rating_results)

        assert _reply_text(parent).startswith(":warning:")


class TestUnexpectedErrors:

    def test_generic_reply_and_no_leak(self):
        club = MagicMock()
        club.status.side_effect = RuntimeError("secret stack detail")

        parent = _invoke(BookClubCommands(club).cycle_status)

        text = _reply_text(parent)
        assert GENERIC_ERROR in text
        assert "secret" not in text


# ---------------------------------------------------------------------------
# Tests: notifier and app wiring
# ---------------------------------------------------------------------------


class TestSlackNotifier:

    def test_posts_to_cycle_channel(self, club, suggested_books):
        client = MagicMock()
        cycle = club.set_phase(Phase.VOTING)

        SlackNotifier(client).phase_changed(cycle, Phase.SUGGESTION, None)

        kwargs = client.chat_postMessage.call_args.kwargs
        assert kwargs["channel"] == CHANNEL_ID
        assert "Automatic Book Club Phase Change" in kwargs["text"]

    def test_errors_propagate(self, club, suggested_books):
        client = MagicMock()
        client.chat_postMessage.side_effect = RuntimeError("rate limited")

        with pytest.raises(RuntimeError):
            SlackNotifier(client).phase_changed(club.get_active_cycle(), Phase.SUGGESTION, None)

    def test_posts_extension_notice(self, club, suggested_books):
        client = MagicMock()
        cycle = club.get_active_cycle()

        SlackNotifier(client).phase_extended(cycle, "More votes are needed.", START)

        kwargs = client.chat_postMessage.call_args.kwargs
        assert kwargs["channel"] == CHANNEL_ID
        assert "Phase Change Delayed" in kwargs["text"]
        assert "Monday, October 19, 2026" in kwargs["text"]

    def test_build_notifier_without_token(self):
        assert isinstance(build_notifier(""), LoggingNotifier)

    def test_build_notifier_with_token(self):
        assert isinstance(build_notifier("xoxb-test"), SlackNotifier)


class TestCreateApp:

    @patch("chapters.slack.bot.App")
    def test_registers_every_command(self, mock_app_cls, club):
        app = create_app(club, bot_token="xoxb-test")

        mock_app_cls.assert_called_once_with(token="xoxb-test", token_verification_enabled=True)
        registered = [c.args[0] for c in app.command.call_args_list]
        assert len(registered) == 12
        assert COMMAND_VOTE in registered
        assert COMMAND_HELP in registered
        assert COMMAND_RATING_RESULTS in registered
