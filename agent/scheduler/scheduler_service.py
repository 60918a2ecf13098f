"""
Scheduler Service
==================
APScheduler wrapper for the stale session monitor.

Features:
  - AsyncIOScheduler for non-blocking execution
  - max_instances=1 prevents overlapping runs
  - coalesce=True merges missed runs into one
  - misfire_grace_time prevents stale runs
  - Graceful shutdown (no blocking on container restart)
  - Runtime status/trigger via class methods
"""

from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import (
    logger,
    STALE_SESSION_MONITOR_ENABLED,
    STALE_SESSION_MONITOR_INTERVAL_MINUTES,
    STALE_SESSION_AFTER_MINUTES,
)
from scheduler.stale_session_monitor import stale_session_monitor_run

JOB_ID = "stale_session_monitor"


class SchedulerService:
    """Manages APScheduler lifecycle for the agent."""

    _scheduler: AsyncIOScheduler = None
    _job_stats: dict = {"last_run_time": None, "total_runs": 0, "last_result": None}

    @classmethod
    def init(cls):
        """Initialize and start the scheduler.

        Called during FastAPI lifespan startup.
        The job is only added if STALE_SESSION_MONITOR_ENABLED is set.
        """
        cls._scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,        # Merge missed runs into one
                "max_instances": 1,      # Prevent overlapping runs
                "misfire_grace_time": 60,  # Skip if >60s late
            }
        )

        if STALE_SESSION_MONITOR_ENABLED:
            cls._scheduler.add_job(
                cls._tracked_run,
                "interval",
                minutes=STALE_SESSION_MONITOR_INTERVAL_MINUTES,
                id=JOB_ID,
                name="Stale Session Monitor",
            )
            logger.info(
                f"Stale Session Monitor scheduled (every {STALE_SESSION_MONITOR_INTERVAL_MINUTES} min)"
            )
        else:
            logger.info("Stale Session Monitor disabled (STALE_SESSION_MONITOR_ENABLED=false)")

        cls._scheduler.start()
        logger.info("Scheduler started")

    @classmethod
    async def _tracked_run(cls) -> dict:
        """Run the monitor and track last run time and total runs."""
        cls._job_stats["last_run_time"] = datetime.now(timezone.utc)
        cls._job_stats["total_runs"] += 1
        result = await stale_session_monitor_run()
        cls._job_stats["last_result"] = result
        return result

    @classmethod
    def shutdown(cls):
        """Stop the scheduler gracefully.

        wait=False ensures we don't block on container shutdown.
        Called during FastAPI lifespan shutdown.
        """
        if cls._scheduler:
            cls._scheduler.shutdown(wait=False)
            cls._scheduler = None
            logger.info("Scheduler shut down")

    @classmethod
    def get_status(cls) -> dict:
        """Return scheduler and monitor job status."""
        if not cls._scheduler:
            return {"running": False, "message": "Scheduler not initialized"}

        job = cls._scheduler.get_job(JOB_ID)
        last_run = cls._job_stats["last_run_time"]
        return {
            "running": cls._scheduler.running,
            JOB_ID: {
                "enabled": STALE_SESSION_MONITOR_ENABLED,
                "paused": job.next_run_time is None if job else True,
                "interval_minutes": STALE_SESSION_MONITOR_INTERVAL_MINUTES,
                "stale_after_minutes": STALE_SESSION_AFTER_MINUTES,
                "next_run": job.next_run_time.isoformat() if job and job.next_run_time else None,
                "last_run": last_run.isoformat() if last_run else None,
                "total_runs": cls._job_stats["total_runs"],
                "last_result": cls._job_stats["last_result"],
            },
        }

    @classmethod
    async def trigger_now(cls) -> bool:
        """Manually trigger a run (bypasses schedule).

        Runs immediately in the current context.
        """
        try:
            await cls._tracked_run()
            return True
        except Exception as e:
            logger.error(f"Manual trigger failed for '{JOB_ID}': {e}")
            return False
