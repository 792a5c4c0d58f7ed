"""POST endpoints that trigger background jobs.

Both are fire-and-forget: the job is scheduled and the response returns
immediately. Job failures are logged by the job itself.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

log = structlog.get_logger(__name__)

router = APIRouter()


def _trigger(request: Request, job: str, message: str) -> JSONResponse:
    scheduler = request.app.state.scheduler
    try:
        scheduler.trigger(job)
    except Exception as e:
        log.error("job_trigger_failed", job=job, error=str(e))
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(e) or "Failed to schedule job"},
        )
    log.info("job_triggered_via_dashboard", job=job)
    return JSONResponse(content={"success": True, "message": message})


@router.post("/news/refresh")
async def refresh_news(request: Request) -> JSONResponse:
    """Scrape news and regenerate the daily brief in the background."""
    return _trigger(request, "news_refresh", "Refresh started")


@router.post("/snapshot")
async def take_snapshot(request: Request) -> JSONResponse:
    """Persist a rate snapshot in the background."""
    return _trigger(request, "snapshot", "Snapshot started")
