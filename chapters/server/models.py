"""Pydantic response models for the HTTP API.

WHY: The cron endpoint reports which cycles it moved, and the health
endpoint is polled by the hosting platform. Typed schemas give both a
stable JSON shape and OpenAPI docs at /docs.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Phase values are the lowercase names used everywhere else
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(description="Always 'ok' when the service is up.")
    version: str = Field(description="Installed chapters version.")


class TransitionInfo(BaseModel):
    """One phase change committed by a check pass."""

    cycle_id: str = Field(description="Identifier of the cycle that moved.")
    from_phase: str = Field(description="Phase the cycle left.")
    to_phase: str = Field(description="Phase the cycle entered.")
    notified: bool = Field(description="Whether the channel announcement was posted.")


class CheckResponse(BaseModel):
    """Result of POST /cron/phase-transition."""

    checked_at: datetime = Field(description="Time the check pass ran (UTC).")
    transitions: List[TransitionInfo] = Field(
        default_factory=list,
        description="Transitions committed by this pass. Empty when nothing expired.",
    )


class ErrorResponse(BaseModel):
    detail: str = Field(description="Human-readable error message.")
