"""Message templates, Block Kit builders, and formatters for the Slack bot.

WHY: The bot posts phase announcements, standings, status reports, and a
completion summary. Centralizing the wording here keeps bot.py focused
on command handling, and keeps the scheduler free of Slack formatting.

HOW: Each function returns either a mrkdwn string (for ``text=``) or a
list of Block Kit block dicts (for ``blocks=``). Inputs are core
dataclasses, never raw database documents.

RULES:
- Suggestions are always shown without the member who proposed them
- Command names must match the registrations in bot.py
- Dates are shown as "Monday, October 19, 2026"
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from chapters.core.models import Cycle, Phase, Suggestion
from chapters.core.tally import RatingStats, TallyEntry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Slash commands; must match @app.command() registrations in bot.py
COMMAND_START_CYCLE = "/chapters-start-cycle"
COMMAND_CYCLE_STATUS = "/chapters-cycle-status"
COMMAND_SET_PHASE = "/chapters-set-phase"
COMMAND_SUGGEST_BOOK = "/chapters-suggest-book"
COMMAND_SUGGESTIONS = "/chapters-suggestions"
COMMAND_VOTE = "/chapters-vote"
COMMAND_VOTING_RESULTS = "/chapters-voting-results"
COMMAND_RATE = "/chapters-rate"
COMMAND_RATING_RESULTS = "/chapters-rating-results"
COMMAND_COMPLETE_CYCLE = "/chapters-complete-cycle"
COMMAND_RESET_CYCLE = "/chapters-reset-cycle"
COMMAND_HELP = "/chapters-help"

MEDALS = (":first_place_medal:", ":second_place_medal:", ":third_place_medal:")

PHASE_HINTS = {
    Phase.SUGGESTION: "Suggest a book with `{}`.".format(COMMAND_SUGGEST_BOOK),
    Phase.VOTING: "See the options with `{}` and rank up to three with `{}`.".format(
        COMMAND_SUGGESTIONS, COMMAND_VOTE
    ),
    Phase.READING: "Happy reading! Rate the book any time with `{}`.".format(COMMAND_RATE),
    Phase.DISCUSSION: (
        "Time to talk about the book! Share your thoughts in the channel and "
        "rate it with `{}`.".format(COMMAND_RATE)
    ),
}


# ---------------------------------------------------------------------------
# Phase announcements
# ---------------------------------------------------------------------------


def build_phase_announcement(
    cycle: Cycle,
    previous: Phase,
    selected_book: Optional[Suggestion] = None,
) -> str:
    """Build the channel message posted after an automatic phase change.

    WHY: Members should not have to poll the bot to learn that voting
    opened or which book won.

    RULES:
    - Always names the cycle and the new phase
    - Entering reading or discussion includes the selected book, if any
    - Entering discussion adds a discussion prompt
    - Ends with how many days the new phase lasts
    """
    phase = cycle.current_phase
    lines = [
        ":rotating_light: *Automatic Book Club Phase Change*",
        "",
        "The \"{}\" book club cycle has moved from the {} phase to the *{} Phase*.".format(
            cycle.name, previous.label, phase.label
        ),
    ]

    if phase in (Phase.READING, Phase.DISCUSSION) and selected_book is not None:
        lines += [
            "",
            "The book selected for this cycle is *\"{}\"* by *{}*.".format(
                selected_book.book_name, selected_book.author
            ),
        ]
        if phase == Phase.READING and selected_book.link:
            lines.append("<{}|View book details>".format(selected_book.link))

    if phase == Phase.DISCUSSION:
        lines += [
            "",
            ":speech_balloon: What surprised you? Which character stuck with you? "
            "Start a thread and let's talk about it.",
        ]

    lines += [
        "",
        PHASE_HINTS[phase],
        "",
        "This phase will end in {}.".format(
            _format_days(cycle.phase_durations.for_phase(phase))
        ),
    ]
    return "\n".join(lines)


def build_extension_notice(cycle: Cycle, reason: str, deadline: datetime) -> str:
    """Channel message for a phase that was extended instead of advanced."""
    phase = cycle.current_phase
    return "\n".join([
        ":clock1: *Book Club Phase Change Delayed*",
        "",
        "The {} phase for cycle \"{}\" has been extended by another day.".format(
            phase.label, cycle.name
        ),
        "",
        "Reason: {}".format(reason),
        PHASE_HINTS[phase],
        "",
        "The phase will now end on {} if requirements are met.".format(format_date(deadline)),
    ])


# ---------------------------------------------------------------------------
# Command replies
# ---------------------------------------------------------------------------


def build_cycle_started_text(cycle: Cycle) -> str:
    durations = cycle.phase_durations
    return "\n".join([
        ":books: *New Book Club Cycle Started: {}*".format(cycle.name),
        "",
        "Phase lengths: suggestion {}, voting {}, reading {}, discussion {}.".format(
            _format_days(durations.suggestion),
            _format_days(durations.voting),
            _format_days(durations.reading),
            _format_days(durations.discussion),
        ),
        "",
        PHASE_HINTS[Phase.SUGGESTION],
    ])


def build_status_text(
    cycle: Cycle,
    deadline: Optional[datetime],
    suggestion_count: int,
    voter_count: int,
    selected_book: Optional[Suggestion] = None,
) -> str:
    lines = [
        ":information_source: *Cycle Status: {}*".format(cycle.name),
        "",
        "*Current phase:* {}".format(cycle.current_phase.label),
    ]
    if deadline is not None:
        lines.append("*Phase ends:* {}".format(format_date(deadline)))
    lines += [
        "*Suggestions:* {}".format(suggestion_count),
        "*Members voted:* {}".format(voter_count),
    ]
    if selected_book is not None:
        lines.append("*Selected book:* \"{}\" by {}".format(
            selected_book.book_name, selected_book.author
        ))
    lines += ["", PHASE_HINTS[cycle.current_phase]]
    return "\n".join(lines)


def build_phase_changed_text(cycle: Cycle, selected_book: Optional[Suggestion] = None) -> str:
    text = ":white_check_mark: The \"{}\" cycle is now in the *{} Phase*.".format(
        cycle.name, cycle.current_phase.label
    )
    if cycle.current_phase == Phase.READING and selected_book is not None:
        text += " Selected book: *\"{}\"* by *{}*.".format(
            selected_book.book_name, selected_book.author
        )
    return text


def build_suggestion_added_text(suggestion: Suggestion) -> str:
    return ":book: Thanks! *\"{}\"* by *{}* has been added to the suggestions.".format(
        suggestion.book_name, suggestion.author
    )


def build_suggestion_list_blocks(suggestions: Sequence[Suggestion]) -> List[Dict[str, Any]]:
    """Numbered, anonymous list of suggestions for the current cycle.

    The numbers are what members type in /chapters-vote.
    """
    if not suggestions:
        return [_section("No books have been suggested yet. Use `{}` to add one.".format(
            COMMAND_SUGGEST_BOOK
        ))]

    blocks = [_header("Book Suggestions")]
    for number, suggestion in enumerate(suggestions, start=1):
        lines = ["*{}. {}* by {}".format(number, suggestion.book_name, suggestion.author)]
        if suggestion.link:
            lines.append("<{}|View details>".format(suggestion.link))
        if suggestion.notes:
            lines.append("> {}".format(suggestion.notes))
        blocks.append(_section("\n".join(lines)))

    blocks.append(_context(
        "Vote with `{} 2 1 3` (your 1st, 2nd and 3rd choice).".format(COMMAND_VOTE)
    ))
    return blocks


def build_results_blocks(entries: Sequence[TallyEntry], voter_count: int) -> List[Dict[str, Any]]:
    """Current ranked-choice standings (3/2/1 points per rank)."""
    if not entries:
        return [_section("There are no suggestions to rank yet.")]

    lines = []
    for position, entry in enumerate(entries):
        marker = MEDALS[position] if position < len(MEDALS) else "{}.".format(position + 1)
        lines.append("{} *{}* by {} ({} {})".format(
            marker,
            entry.suggestion.book_name,
            entry.suggestion.author,
            entry.points,
            "pt" if entry.points == 1 else "pts",
        ))

    return [
        _header("Voting Results"),
        _section("\n".join(lines)),
        _context("{} participated in voting. 1st choice = 3 pts, 2nd = 2 pts, 3rd = 1 pt.".format(
            _plural(voter_count, "member")
        )),
    ]


def build_vote_recorded_text(replaced: bool) -> str:
    if replaced:
        return ":ballot_box_with_ballot: Your ballot has been updated. Only your latest vote counts."
    return ":ballot_box_with_ballot: Thanks for voting! Your ranked choices have been recorded."


def build_rating_recorded_text(rating: int, recommend: bool) -> str:
    return ":star: Thanks! You rated the book {}/10 and {} recommend it.".format(
        rating, "would" if recommend else "would not"
    )


def build_rating_results_blocks(
    book: Optional[Suggestion],
    stats: RatingStats,
) -> List[Dict[str, Any]]:
    """Average rating and recommendation share for the selected book."""
    blocks = [_header("Book Rating Results")]
    if book is not None:
        title = "<{}|{}>".format(book.link, book.book_name) if book.link else book.book_name
        blocks.append(_section("*Book:* {}\n*Author:* {}".format(title, book.author)))

    if stats.total == 0:
        blocks.append(_section("Nobody has rated the book yet. Use `{}` to be the first.".format(
            COMMAND_RATE
        )))
        return blocks

    stars = ":star:" * int(stats.average)
    if stats.average % 1 >= 0.5:
        stars += ":sparkles:"
    blocks.append({
        "type": "section",
        "fields": [
            {"type": "mrkdwn", "text": "*Average Rating:*\n{} {}/10".format(stars, stats.average)},
            {
                "type": "mrkdwn",
                "text": "*Recommendation:*\n{}% would recommend".format(
                    stats.recommend_percentage
                ),
            },
        ],
    })
    blocks.append(_context("*Total Ratings:* {}".format(_plural(stats.total, "member"))))
    return blocks


def build_completion_message(summary: Any) -> str:
    """Build the announcement posted when a cycle is completed.

    WHY: The end of a cycle is the moment to celebrate what the club read
    and how members felt about it.

    HOW: Sections are appended only when their data exists: selected
    book, top three standings, reading length, ratings, cycle totals.
    ``summary`` is a services.book_club.CompletionSummary.
    """
    cycle = summary.cycle
    lines = [
        ":tada: *Book Club Cycle Completed!*",
        "",
        "The book club cycle \"*{}*\" has been completed and archived.".format(cycle.name),
    ]

    book = summary.selected_book
    if book is not None:
        lines += ["", ":trophy: *Selected Book*", "> :book: *\"{}\"*".format(book.book_name)]
        lines.append("> :writing_hand: by *{}*".format(book.author))
        if book.link:
            lines.append("> :link: <{}|View Book Details>".format(book.link))
        if book.notes:
            lines.append("> :memo: {}".format(book.notes))

    if summary.standings:
        lines += ["", ":ballot_box_with_ballot: *Voting Summary*"]
        for position, entry in enumerate(summary.standings[:3]):
            lines.append("{} *{}* ({} pts)".format(
                MEDALS[position], entry.suggestion.book_name, entry.points
            ))
        others = len(summary.standings) - 3
        if others > 0:
            lines.append("... and {} other {}".format(others, "book" if others == 1 else "books"))
        lines.append("*{} participated in voting*".format(_plural(summary.voter_count, "member")))

    if summary.reading_days is not None:
        lines += ["", ":calendar: *Reading Phase*", "Duration: {}".format(
            _plural(summary.reading_days, "day")
        )]

    if summary.ratings.total > 0:
        lines += [
            "",
            ":star: *Book Ratings*",
            "Average: {}/10".format(summary.ratings.average),
            "{}% would recommend".format(summary.ratings.recommend_percentage),
            "*{} rated this book*".format(_plural(summary.ratings.total, "member")),
        ]

    lines += [
        "",
        ":books: *Cycle Summary*",
        "- {}".format(_plural(summary.suggestion_count, "book suggestion")),
        "- {} voted".format(_plural(summary.voter_count, "member")),
    ]
    if summary.total_days is not None:
        lines.append("- {} total cycle duration".format(_plural(summary.total_days, "day")))

    lines += [
        "",
        ":sparkles: *Thank you to everyone who participated!* :sparkles:",
        "",
        "To start a new book club cycle, use the `{}` command.".format(COMMAND_START_CYCLE),
    ]
    return "\n".join(lines)


def build_reset_text(cycle: Cycle) -> str:
    return (
        ":wastebasket: The \"{}\" cycle has been reset. All of its suggestions, votes "
        "and ratings were deleted. Use `{}` to begin again.".format(cycle.name, COMMAND_START_CYCLE)
    )


def build_help_text() -> str:
    return "\n".join([
        ":wave: *Chapters book club commands*",
        "",
        "`{} [name]`: start a new cycle".format(COMMAND_START_CYCLE),
        "`{}`: show the current phase and deadline".format(COMMAND_CYCLE_STATUS),
        "`{} <phase>`: move to suggestion, voting, reading or discussion".format(COMMAND_SET_PHASE),
        "`{} title | author | link | notes`: suggest a book".format(COMMAND_SUGGEST_BOOK),
        "`{}`: list the suggested books".format(COMMAND_SUGGESTIONS),
        "`{} 1st 2nd 3rd`: rank up to three books by number".format(COMMAND_VOTE),
        "`{}`: see the current standings".format(COMMAND_VOTING_RESULTS),
        "`{} <1-10> <yes|no>`: rate the book and say if you recommend it".format(COMMAND_RATE),
        "`{}`: see how members rated the book".format(COMMAND_RATING_RESULTS),
        "`{}`: finish and archive the cycle (discussion phase)".format(COMMAND_COMPLETE_CYCLE),
        "`{}`: delete the current cycle and all its data".format(COMMAND_RESET_CYCLE),
    ])


def build_error_text(message: str) -> str:
    return ":warning: {}".format(message)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_date(value: datetime) -> str:
    """Format a date like "Monday, October 19, 2026"."""
    return "{}, {} {}, {}".format(
        value.strftime("%A"), value.strftime("%B"), value.day, value.year
    )


def _format_days(days: float) -> str:
    if days < 1:
        minutes = int(round(days * 24 * 60))
        return _plural(minutes, "minute")
    if float(days).is_integer():
        return _plural(int(days), "day")
    return "{:g} days".format(days)


def _plural(count: int, noun: str) -> str:
    return "{} {}{}".format(count, noun, "" if count == 1 else "s")


def _header(text: str) -> Dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text}}


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> Dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}
