import asyncio
import time

from fastapi import APIRouter

from config import logger, OLLAMA_MODEL, FACEBOOK_PAGE_ACCESS_TOKEN, INSTAGRAM_ACCESS_TOKEN
from services import background, supabase_service
from services.llm_service import LLMService

health_router = APIRouter()

_start_time = time.time()
_pipeline_runs = 0
_pipeline_ms_total = 0

# Every table the pipeline reads or writes
AGENT_TABLES = (
    "profiles",
    "posts",
    "comments",
    "chat_sessions",
    "prompt_configurations",
    "detected_intents",
    "user_conversations",
)


def track_request(latency_ms: int):
    """Called once per finished interaction pipeline."""
    global _pipeline_runs, _pipeline_ms_total
    _pipeline_runs += 1
    _pipeline_ms_total += latency_ms


def _check_tables() -> tuple[list, list]:
    client = supabase_service.supabase
    if not client:
        return [], [{"table": "*", "error": "Supabase not configured"}]

    reachable, unreachable = [], []
    for table in AGENT_TABLES:
        try:
            client.table(table).select("id").limit(1).execute()
            reachable.append(table)
        except Exception as e:
            unreachable.append({"table": table, "error": str(e)[:100]})
    return reachable, unreachable


@health_router.get("/health")
async def health():
    """Ollama, Supabase tables and Redis. Anything missing reports degraded."""
    issues = []

    ollama, (tables_ok, tables_failed), redis_ok = await asyncio.gather(
        asyncio.to_thread(LLMService.is_available),
        asyncio.to_thread(_check_tables),
        asyncio.to_thread(supabase_service.is_redis_healthy),
    )

    if not ollama.get("available"):
        issues.append(f"Ollama: {ollama.get('reason', 'unavailable')}")
    if tables_failed:
        issues.append(f"Supabase: {len(tables_failed)} table(s) unreachable")
        logger.warning(f"Health check: unreachable tables {[t['table'] for t in tables_failed]}")
    if not FACEBOOK_PAGE_ACCESS_TOKEN:
        issues.append("Facebook: no page access token")
    if not INSTAGRAM_ACCESS_TOKEN:
        issues.append("Instagram: no access token")
    if not redis_ok:
        # Optional; reported but does not degrade
        issues.append("Redis: unavailable (caching and fast dedup disabled)")

    degraded = any(not issue.startswith("Redis") for issue in issues)

    return {
        "status": "degraded" if degraded else "healthy",
        "model": OLLAMA_MODEL,
        "model_loaded": ollama.get("available", False),
        "models_available": ollama.get("models_loaded", []),
        "db_connection": "connected" if tables_ok and not tables_failed else "degraded",
        "db_tables_ok": tables_ok,
        "db_tables_failed": tables_failed or None,
        "redis_connected": redis_ok,
        "background_tasks_pending": background.pending_count(),
        "uptime_seconds": int(time.time() - _start_time),
        "interactions_processed": _pipeline_runs,
        "average_pipeline_time_ms": int(_pipeline_ms_total / _pipeline_runs) if _pipeline_runs else 0,
        "issues": issues or None,
    }
