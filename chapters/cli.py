"""Command-line interface for the Chapters book club bot.

WHY: The same package runs three ways depending on the deployment: a
long-running Socket Mode bot, a one-off phase check (for system cron or
manual runs), and an HTTP server for platform crons.

HOW: argparse with one subcommand per mode. ``bot`` is the default when
no subcommand is given. Logging is configured here, once per process.

RULES:
- ``bot``: Slack Socket Mode, plus the interval scheduler when
  SCHEDULER_MODE=interval
- ``check``: run one phase check pass, print the transitions, exit
- ``api``: serve the FastAPI app with uvicorn
- --log-level overrides LOG_LEVEL
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from chapters import __version__, config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser. Separate from main() so tests can inspect it."""
    parser = argparse.ArgumentParser(
        prog="chapters",
        description="Slack book club bot: suggest, vote, read, discuss.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s {}".format(__version__),
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: %(default)s).",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("bot", help="Run the Slack bot in Socket Mode (default).")
    subparsers.add_parser("check", help="Run one phase check pass and exit.")

    api = subparsers.add_parser("api", help="Serve the cron HTTP endpoint.")
    api.add_argument(
        "--host",
        default=config.API_HOST,
        help="Interface to bind (default: %(default)s).",
    )
    api.add_argument(
        "--port",
        type=int,
        default=config.API_PORT,
        help="Port to listen on (default: %(default)s).",
    )
    return parser


def run_check() -> int:
    """Run one check pass with the configured store and notifier.

    Returns the number of transitions committed.
    """
    from chapters.services.book_club import create_book_club
    from chapters.services.scheduler import PhaseScheduler
    from chapters.slack.bot import build_notifier

    scheduler = PhaseScheduler(create_book_club(), build_notifier())
    results = scheduler.run_check_pass()

    if not results:
        print("No phase transitions needed.")
    for result in results:
        print("Cycle {}: {} -> {}{}".format(
            result.cycle_id,
            result.from_phase.value,
            result.to_phase.value,
            "" if result.notified else " (announcement failed)",
        ))
    return len(results)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``python -m chapters`` and the ``chapters`` script.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    command = args.command or "bot"
    logger.debug("Running %s command", command)

    if command == "check":
        run_check()
    elif command == "api":
        from chapters.server.app import run_api
        run_api(host=args.host, port=args.port)
    else:
        from chapters.slack.bot import run_bot
        run_bot()


if __name__ == "__main__":
    main()
