"""
Prometheus Metrics Endpoint
============================
Exposes counters, histograms and gauges at GET /metrics (no auth required).
Import metrics from this module in other files to instrument them.
"""

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

metrics_router = APIRouter()

# ================================
# Counters
# ================================
REQUEST_COUNT = Counter(
    "agent_requests_total",
    "Total requests processed",
    ["endpoint", "status"],
)

WEBHOOK_EVENTS = Counter(
    "agent_webhook_events_total",
    "Webhook sub-events by platform, kind and pipeline outcome",
    ["platform", "kind", "outcome"],
)

TRIGGER_DECISIONS = Counter(
    "agent_trigger_decisions_total",
    "Trigger decisions by reason",
    ["reason", "triggered"],
)

INTENT_ROUTES = Counter(
    "agent_intent_routes_total",
    "Intent router decisions",
    ["mode"],  # single, merge
)

GENERATION_ERRORS = Counter(
    "agent_generation_errors_total",
    "Completion failures surfaced as apologies",
    ["channel"],
)

LLM_ERRORS = Counter(
    "agent_llm_errors_total",
    "LLM classification errors that fell back to defaults",
    ["error_type"],
)

PLATFORM_API_CALLS = Counter(
    "agent_platform_api_calls_total",
    "Graph API calls",
    ["platform", "operation", "status"],
)

DB_QUERY_COUNT = Counter(
    "agent_db_queries_total",
    "Supabase queries executed",
    ["table", "operation"],
)

CACHE_HITS = Counter(
    "agent_cache_hits_total",
    "Cache hits",
    ["key_type"],
)

CACHE_MISSES = Counter(
    "agent_cache_misses_total",
    "Cache misses",
    ["key_type"],
)

BACKGROUND_TASK_ERRORS = Counter(
    "agent_background_task_errors_total",
    "Detached background tasks that raised",
    ["task"],
)

STALE_SESSION_MONITOR_RUNS = Counter(
    "agent_stale_session_monitor_runs_total",
    "Stale session monitor cycles",
    ["status"],  # success, error
)

# ================================
# Gauges
# ================================
STALE_SESSIONS = Gauge(
    "agent_stale_sessions",
    "Chat sessions stuck in processing beyond the staleness window",
)

# ================================
# Histograms
# ================================
REQUEST_LATENCY = Histogram(
    "agent_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

PIPELINE_DURATION = Histogram(
    "agent_pipeline_duration_seconds",
    "Duration of one interaction pipeline run",
    ["kind"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 60.0],
)


@metrics_router.get("/metrics")
async def metrics():
    """Expose Prometheus metrics. No auth (in PUBLIC_PATHS)."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
