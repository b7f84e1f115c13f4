"""Configuration constants, phase durations, and .env loading.

WHY: Centralizes every configurable value (phase lengths, scheduler
cadence, database location, Slack credentials) so they are easy to
find and override without touching logic.

HOW: python-dotenv loads the .env file on import. Constants are plain
module-level values read from the environment with sensible defaults.
Helper functions raise clear errors when a required secret is missing.

RULES:
- Phase durations are in days; PHASE_TEST_MODE=true shrinks every phase
  to one minute so transitions can be watched live
- Slack tokens are loaded from the environment, never hardcoded
- All defaults can be overridden via environment variables
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

from dotenv import load_dotenv

from chapters.core.models import PhaseDurations

# Load .env from the project root (where the bot is started from)
load_dotenv()

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


# ---------------------------------------------------------------------------
# Phase durations
# ---------------------------------------------------------------------------

DEFAULT_PHASE_DURATIONS = {
    "suggestion": 7,
    "voting": 7,
    "reading": 30,
    "discussion": 7,
}

TEST_MODE_PHASE_DAYS = 1 / 1440  # one minute

PHASE_TEST_MODE = _env_flag("PHASE_TEST_MODE")


def get_phase_durations(test_mode: Optional[bool] = None) -> PhaseDurations:
    """Return the phase durations new cycles start with.

    RULES:
    - test_mode=None reads PHASE_TEST_MODE
    - In test mode every phase lasts one minute
    """
    if test_mode is None:
        test_mode = PHASE_TEST_MODE

    if test_mode:
        logger.info("Phase test mode enabled: all phase durations set to 1 minute")
        return PhaseDurations(
            suggestion=TEST_MODE_PHASE_DAYS,
            voting=TEST_MODE_PHASE_DAYS,
            reading=TEST_MODE_PHASE_DAYS,
            discussion=TEST_MODE_PHASE_DAYS,
        )

    return PhaseDurations(**DEFAULT_PHASE_DURATIONS)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

SCHEDULER_MODES = ("interval", "cron")
SCHEDULER_MODE = os.getenv("SCHEDULER_MODE", "interval").strip().lower()
SCHEDULER_INTERVAL_MINUTES = float(
    os.getenv("SCHEDULER_INTERVAL_MINUTES", "1" if PHASE_TEST_MODE else "60")
)

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

MONGODB_URI = os.getenv("MONGODB_URI", "")
MONGODB_DB_NAME = os.getenv("MONGODB_DB_NAME", "chapters")

# ---------------------------------------------------------------------------
# HTTP API (cron trigger)
# ---------------------------------------------------------------------------

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "3000"))
CRON_SECRET = os.getenv("CRON_SECRET", "")
CRON_USER_AGENT = "vercel-cron"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def load_slack_tokens() -> Tuple[str, str]:
    """Load the Slack bot and app-level tokens from the environment.

    WHY: Socket Mode needs both tokens; failing early with a message that
    names the variable beats an opaque auth error from Slack.

    RULES:
    - Raises ValueError if either token is missing or empty
    - Bot token must start with xoxb-, app token with xapp-
    """
    bot_token = os.getenv("SLACK_BOT_TOKEN", "").strip()
    app_token = os.getenv("SLACK_APP_TOKEN", "").strip()

    if not bot_token:
        raise ValueError("SLACK_BOT_TOKEN environment variable is required")
    if not app_token:
        raise ValueError("SLACK_APP_TOKEN environment variable is required")
    if not bot_token.startswith("xoxb-"):
        raise ValueError("SLACK_BOT_TOKEN must be a Bot User OAuth Token (starts with xoxb-)")
    if not app_token.startswith("xapp-"):
        raise ValueError("SLACK_APP_TOKEN must be an App-Level Token (starts with xapp-)")

    return bot_token, app_token


def get_slack_bot_token() -> str:
    """SLACK_BOT_TOKEN, or "" when unset. Used where Slack is optional."""
    return os.getenv("SLACK_BOT_TOKEN", "").strip()
