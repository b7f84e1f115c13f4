"""FastAPI application exposing the phase check to an external cron.

WHY: Serverless deployments have no long-running process to host the
interval scheduler. A platform cron calls this endpoint instead, and each
call runs exactly one phase check pass.

HOW: POST /cron/phase-transition authenticates the caller, then runs
PhaseScheduler.run_check_pass() and reports the committed transitions.
The scheduler is provided by the get_scheduler() dependency, built on
first use from the configured store and Slack token; tests override it
through app.dependency_overrides.

RULES:
- With CRON_SECRET set, callers must send "Authorization: Bearer <secret>"
- Without CRON_SECRET, the User-Agent must contain "vercel-cron"
- Unauthorised calls get 401 and never touch the store
- Repeated calls are safe: a pass with nothing expired changes nothing
"""

from __future__ import annotations

import hmac
import logging
import threading
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request

from chapters import __version__, config
from chapters.server.models import CheckResponse, ErrorResponse, HealthResponse, TransitionInfo
from chapters.services.book_club import create_book_club
from chapters.services.scheduler import PhaseScheduler
from chapters.slack.bot import build_notifier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and scheduler setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Chapters Book Club API",
    description=(
        "Cron trigger for the Chapters book club bot. Each call checks "
        "active cycles and advances the ones whose phase has ended."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

_scheduler: Optional[PhaseScheduler] = None
_scheduler_lock = threading.Lock()


def get_scheduler() -> PhaseScheduler:
    """Return the process-wide PhaseScheduler, creating it on first use."""
    global _scheduler
    with _scheduler_lock:
        if _scheduler is None:
            _scheduler = PhaseScheduler(create_book_club(), build_notifier())
        return _scheduler


def verify_cron_request(request: Request) -> None:
    """Reject callers that are not the configured cron.

    RULES:
    - CRON_SECRET set: constant-time compare against the Bearer token
    - CRON_SECRET unset: fall back to the platform's User-Agent marker
    """
    if config.CRON_SECRET:
        header = request.headers.get("authorization", "")
        expected = "Bearer {}".format(config.CRON_SECRET)
        if hmac.compare_digest(header.encode(), expected.encode()):
            return
    elif config.CRON_USER_AGENT in request.headers.get("user-agent", ""):
        return

    logger.warning("Rejected unauthorised phase transition request")
    raise HTTPException(status_code=401, detail="Unauthorized")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.api_route(
    "/cron/phase-transition",
    methods=["GET", "POST"],
    response_model=CheckResponse,
    tags=["scheduler"],
    summary="Run one phase check pass",
    description=(
        "Checks every active cycle and advances each one whose current phase "
        "has ended, announcing the change in the cycle's channel. Safe to call "
        "repeatedly; GET is accepted because platform crons send GET."
    ),
    responses={
        401: {"model": ErrorResponse, "description": "Caller is not the configured cron"},
    },
    dependencies=[Depends(verify_cron_request)],
)
def run_phase_transition(
    scheduler: PhaseScheduler = Depends(get_scheduler),
) -> CheckResponse:
    checked_at = scheduler.now()
    results = scheduler.run_check_pass()
    logger.info("Cron phase check finished with %d transition(s)", len(results))
    return CheckResponse(
        checked_at=checked_at,
        transitions=[
            TransitionInfo(
                cycle_id=result.cycle_id,
                from_phase=result.from_phase.value,
                to_phase=result.to_phase.value,
                notified=result.notified,
            )
            for result in results
        ],
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness check for load balancers and the hosting platform.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the API with uvicorn on API_HOST:API_PORT unless overridden."""
    import uvicorn
    uvicorn.run(app, host=host or config.API_HOST, port=port or config.API_PORT)
