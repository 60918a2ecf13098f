"""
API Key Middleware
==================
Operator routes (/monitor/trigger, /sessions/*, /files/*) require X-API-Key
when AGENT_API_KEY is set. Meta-facing and health routes stay open: webhook
deliveries carry their own X-Hub-Signature-256 check.
"""

import hmac
import os

from fastapi import Request
from fastapi.responses import JSONResponse

from config import logger

PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/monitor/status",
}

# Every path under these is public (GET challenge + signed POST)
PUBLIC_PREFIXES = ("/webhook",)


def is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


async def api_key_middleware(request: Request, call_next):
    path = request.url.path
    expected = os.getenv("AGENT_API_KEY", "")

    # No key configured: local development, everything open
    if not expected or is_public(path):
        return await call_next(request)

    provided = request.headers.get("X-API-Key", "")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        request_id = getattr(request.state, "request_id", None)
        logger.warning(f"[{request_id}] Rejected {request.method} {path}: bad or missing X-API-Key")
        return JSONResponse(
            status_code=401,
            content={
                "error": "unauthorized",
                "message": "Operator routes need a valid X-API-Key header",
                "request_id": request_id,
            },
        )

    return await call_next(request)
