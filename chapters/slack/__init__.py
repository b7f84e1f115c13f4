"""Slack surface for the Chapters book club.

WHY: Members run the book club from Slack: slash commands to suggest,
vote, and rate, and channel announcements when a phase ends.

HOW: The bot runs in Socket Mode via slack-bolt, so no public URL is
needed. Handlers parse command text and call the BookClub service; all
rules live in chapters.services and chapters.core.

RULES:
- Socket Mode requires SLACK_BOT_TOKEN and SLACK_APP_TOKEN
- All slash commands must be ack()'d within 3 seconds
"""
