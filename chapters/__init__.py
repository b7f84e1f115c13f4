"""Chapters: a Slack bot that runs a recurring book club cycle.

WHY: A book club needs a predictable rhythm: members suggest books, vote
on them, read the winner, then discuss it. Chapters automates that rhythm
inside Slack so nobody has to remember when a phase ends.

HOW: Four layers, leaves first:
  core: data model, Tally Engine, Phase State Machine (pure code)
  store: persistence contract with in-memory and MongoDB backends
  services: BookClub command operations and the phase scheduler
  slack / server: thin callers for slash commands and the cron endpoint

RULES:
- Core code never talks to Slack or the database directly
- Phase writes are compare-and-swap against the previously observed phase
- At most one cycle is active at a time
"""

__version__ = "0.1.0"
