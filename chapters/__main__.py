"""Package entry point for ``python -m chapters``.

RULES:
- ``python -m chapters`` with no arguments starts the Slack bot
- Everything else is handled by chapters.cli
"""

from chapters.cli import main

if __name__ == "__main__":
    main()
