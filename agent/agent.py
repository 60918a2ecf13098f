"""
Social Reply Agent
==================
Answers Facebook Page and Instagram comments and Facebook direct messages
straight from Meta's webhooks: decides whether to answer, gathers post,
thread and memory context, generates a reply with a local Ollama model and
posts it back through the Graph API.

Endpoints:
  GET  /webhook, /webhook/facebook, /webhook/instagram  - Meta verification challenge
  POST /webhook, /webhook/facebook, /webhook/instagram  - Event delivery
  GET  /health                 - Health check (Ollama + Supabase + Redis)
  GET  /metrics                - Prometheus metrics
  GET  /monitor/status         - Stale session monitor status
  POST /monitor/trigger        - Manual stale session scan
  GET  /sessions/stale         - Sessions stuck in processing
  POST /files/reindex          - Re-index configured file references
"""

import os
import uuid as uuid_mod
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from config import (
    logger,
    limiter,
    verify_supabase_connection,
    validate_schema,
    OLLAMA_HOST,
    OLLAMA_MODEL,
    GRAPH_API_VERSION,
    VERIFY_RATE_LIMIT,
    STALE_SESSION_MONITOR_ENABLED,
)
from middleware import api_key_middleware
from scheduler.scheduler_service import SchedulerService
from services import background
from services.errors import WebhookParseError

from routes.health import health_router
from routes.metrics import metrics_router
from routes.monitor_routes import monitor_router
from routes.operations import operations_router
from routes.webhook import webhook_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("=" * 60)
    logger.info("Social Reply Agent starting up")
    logger.info(f"  Ollama Host: {OLLAMA_HOST}")
    logger.info(f"  Model: {OLLAMA_MODEL}")
    logger.info(f"  Graph API: {GRAPH_API_VERSION}")
    logger.info(f"  Rate Limit: {VERIFY_RATE_LIMIT} on webhook verification")
    logger.info(f"  Webhook Endpoints: /webhook, /webhook/facebook, /webhook/instagram")
    logger.info(f"  Operator: /monitor/*, /sessions/stale, /files/reindex")
    logger.info(f"  Utility: /health, /metrics")
    logger.info("=" * 60)
    verify_supabase_connection()
    validate_schema()
    SchedulerService.init()
    logger.info(f"  Stale Session Monitor: {'enabled' if STALE_SESSION_MONITOR_ENABLED else 'disabled'}")
    yield
    # Shutdown cleanup
    SchedulerService.shutdown()
    await background.drain()


app = FastAPI(
    title="Social Reply Agent",
    description="Webhook-driven reply automation for Facebook and Instagram",
    version="1.0.0",
    lifespan=lifespan,
)

# --- Rate limiting (shared limiter from config) ---
app.state.limiter = limiter


# --- Middleware: Request ID tracing ---
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Generate unique request ID for tracing through logs."""
    request_id = str(uuid_mod.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# --- Middleware: API key auth ---
app.middleware("http")(api_key_middleware)

# --- Register routers ---
app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(webhook_router)
app.include_router(monitor_router)
app.include_router(operations_router)


# ================================
# Global Error Handlers
# ================================
def _get_request_id(request: Request) -> str:
    """Get request ID from state or generate new one."""
    return getattr(request.state, "request_id", str(uuid_mod.uuid4()))


@app.exception_handler(RequestValidationError)
async def validation_exception(request: Request, exc: RequestValidationError):
    """Override FastAPI's default 422 to return 400."""
    request_id = _get_request_id(request)
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": f"Invalid request payload: {exc.errors()}",
            "request_id": request_id,
        }
    )


@app.exception_handler(WebhookParseError)
async def webhook_parse_error(request: Request, exc: WebhookParseError):
    request_id = _get_request_id(request)
    return JSONResponse(
        status_code=400,
        content={
            "error": "parse_error",
            "message": str(exc),
            "request_id": request_id,
        }
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limited(request: Request, exc: RateLimitExceeded):
    request_id = _get_request_id(request)
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "message": "Too many requests. Please slow down.",
            "request_id": request_id,
        }
    )


@app.exception_handler(Exception)
async def catch_all_exception(request: Request, exc: Exception):
    """Catch-all handler: every unhandled exception returns structured JSON."""
    request_id = _get_request_id(request)
    logger.error(f"Unhandled exception [request_id={request_id}]: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "error_type": type(exc).__name__,
            "message": "An unexpected error occurred. Check agent logs.",
            "request_id": request_id,
        }
    )


# Dev server fallback
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 3002))
    uvicorn.run(app, host="0.0.0.0", port=port)
