"""
Operator Routes
===============
Auth-required endpoints for inspecting and maintaining the agent.

Endpoints:
  GET  /sessions/stale - Chat sessions stuck in processing
  POST /files/reindex  - Push the active configuration's file references to the vector index
"""

import asyncio

import httpx
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from config import logger, STALE_SESSION_AFTER_MINUTES
from services.search_service import VectorSearchClient
from services.supabase_service import SupabaseService

operations_router = APIRouter(tags=["operations"])


@operations_router.get("/sessions/stale")
async def list_stale_sessions(
    older_than_minutes: int = Query(STALE_SESSION_AFTER_MINUTES, ge=1),
    limit: int = Query(100, ge=1, le=500),
):
    """Sessions left in processing longer than the window. Never retried automatically."""
    sessions = await asyncio.to_thread(SupabaseService.get_stale_sessions, older_than_minutes, limit)
    return {"older_than_minutes": older_than_minutes, "count": len(sessions), "sessions": sessions}


@operations_router.post("/files/reindex")
async def reindex_files(request: Request):
    """Re-index the file references of the active prompt configuration."""
    request_id = getattr(request.state, "request_id", "unknown")

    config = await asyncio.to_thread(SupabaseService.get_active_prompt_configuration)
    if config is None or not config.file_references:
        return {"indexed": False, "message": "No file references in the active configuration", "request_id": request_id}

    try:
        result = await asyncio.to_thread(VectorSearchClient.index_files, config.file_references)
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"[{request_id}] File reindex failed: {e}")
        return JSONResponse(
            status_code=502,
            content={"indexed": False, "message": f"Vector index rejected the request: {e}", "request_id": request_id},
        )

    logger.info(f"[{request_id}] Reindexed {len(config.file_references)} file reference(s)")
    return {
        "indexed": True,
        "files": len(config.file_references),
        "result": result,
        "request_id": request_id,
    }
