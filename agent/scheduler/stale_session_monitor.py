"""
Stale Session Monitor
=====================
Scheduled scan for chat sessions stuck in processing: the pipeline leaves a
session there when generation, post-back or persistence fails after it was
opened. Stuck sessions are reported (gauge + warning), never retried.
"""

import asyncio
import time
import uuid as uuid_mod

from config import logger, STALE_SESSION_AFTER_MINUTES
from routes.metrics import STALE_SESSIONS, STALE_SESSION_MONITOR_RUNS
from services.supabase_service import SupabaseService

# Session ids listed in a single warning line
LOG_SAMPLE_SIZE = 5


# ================================
# Entry Point (called by scheduler)
# ================================
async def stale_session_monitor_run() -> dict:
    """Top-level entry point called by APScheduler every N minutes."""
    run_id = str(uuid_mod.uuid4())
    start = time.time()

    try:
        sessions = await asyncio.to_thread(SupabaseService.get_stale_sessions, STALE_SESSION_AFTER_MINUTES)
    except Exception as e:
        logger.error(f"[{run_id}] Stale session scan failed: {e}")
        STALE_SESSION_MONITOR_RUNS.labels(status="error").inc()
        raise

    STALE_SESSIONS.set(len(sessions))
    STALE_SESSION_MONITOR_RUNS.labels(status="success").inc()

    if sessions:
        sample = ", ".join(s.get("chat_id", "?") for s in sessions[:LOG_SAMPLE_SIZE])
        logger.warning(
            f"[{run_id}] {len(sessions)} session(s) stuck in processing for more than "
            f"{STALE_SESSION_AFTER_MINUTES} min: {sample}"
            + (" ..." if len(sessions) > LOG_SAMPLE_SIZE else "")
        )
    else:
        logger.info(f"[{run_id}] No stale sessions ({time.time() - start:.1f}s)")

    return {"run_id": run_id, "stale_sessions": len(sessions)}
