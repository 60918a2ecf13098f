"""
Stale Session Monitor Routes
============================
HTTP endpoints for monitoring and controlling the stale session monitor.

Endpoints:
  GET  /monitor/status  - Scheduler status, last/next run, dedup stats (public)
  POST /monitor/trigger - Manually trigger a scan (auth required)
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from config import logger
from scheduler.scheduler_service import SchedulerService
from services import background
from services.dedup_service import DedupService

monitor_router = APIRouter(
    prefix="/monitor",
    tags=["monitor"],
)


@monitor_router.get("/status")
async def get_monitor_status():
    """Return scheduler status, last/next run time, and dedup stats.

    Public endpoint (no auth required), read-only.
    """
    status = SchedulerService.get_status()
    status["dedup_cache_size"] = DedupService.get_processed_count()
    status["background_tasks_pending"] = background.pending_count()
    return status


@monitor_router.post("/trigger")
async def trigger_monitor(request: Request):
    """Manually trigger a stale session scan.

    Bypasses the schedule and runs immediately.
    Auth required (X-API-Key).
    """
    request_id = getattr(request.state, "request_id", "unknown")
    logger.info(f"[{request_id}] Manual stale session scan requested")

    success = await SchedulerService.trigger_now()

    if success:
        return {"triggered": True, "message": "Stale session scan completed", "request_id": request_id}
    return JSONResponse(
        status_code=500,
        content={"triggered": False, "message": "Trigger failed — check logs", "request_id": request_id},
    )
