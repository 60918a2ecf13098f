"""
Meta Webhook Entry Point
========================
Receives direct webhook deliveries from the Facebook and Instagram Graph
APIs. One envelope may carry several sub-events; each one runs through
its own pipeline and a failure in one never affects its siblings.

Endpoints (same handlers on every path):
  GET  /webhook, /webhook/facebook, /webhook/instagram  - Meta verification challenge
  POST /webhook, /webhook/facebook, /webhook/instagram  - Event delivery
"""

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from config import logger, limiter, FACEBOOK_VERIFY_TOKEN, INSTAGRAM_VERIFY_TOKEN, VERIFY_RATE_LIMIT
from routes.metrics import REQUEST_COUNT, REQUEST_LATENCY
from routes.webhook_base import InteractionConfig, interaction_pipeline, verify_meta_signature, _get_request_id
from routes.webhook_comment import facebook_comment_config, instagram_comment_config
from routes.webhook_dm import facebook_dm_config
from services.errors import WebhookParseError
from services.models import PipelineOutcome
from services.validation import WebhookEvent, extract_events, parse_envelope

webhook_router = APIRouter(tags=["webhook"])

PIPELINES: dict[tuple[str, str], InteractionConfig] = {
    ("facebook", "post_comment"): facebook_comment_config,
    ("facebook", "direct_message"): facebook_dm_config,
    ("instagram", "post_comment"): instagram_comment_config,
}


async def dispatch_events(events: list[WebhookEvent], request_id: str) -> list[PipelineOutcome]:
    """Run every sub-event through its pipeline, one after another."""
    outcomes = []
    for event in events:
        cfg = PIPELINES.get((event.platform, event.kind))
        if cfg is None:
            logger.info(f"[{request_id}] No pipeline for {event.platform} {event.kind} - ignoring")
            continue
        outcomes.append(await interaction_pipeline(event, cfg, request_id))
    return outcomes


# ================================
# Routes
# ================================
@webhook_router.get("/webhook")
@webhook_router.get("/webhook/facebook")
@webhook_router.get("/webhook/instagram")
@limiter.limit(VERIFY_RATE_LIMIT)
async def verify_webhook(request: Request):
    """Meta webhook verification (GET request).

    Meta sends hub.mode=subscribe, hub.verify_token and hub.challenge;
    the challenge must be echoed back as plain text.
    """
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge")

    accepted = {t for t in (FACEBOOK_VERIFY_TOKEN, INSTAGRAM_VERIFY_TOKEN) if t}
    if mode == "subscribe" and token in accepted:
        logger.info("Webhook verification succeeded")
        return PlainTextResponse(challenge or "")

    logger.warning(f"Webhook verification failed (mode={mode})")
    return PlainTextResponse("Forbidden", status_code=403)


@webhook_router.post("/webhook")
@webhook_router.post("/webhook/facebook")
@webhook_router.post("/webhook/instagram")
async def receive_webhook(request: Request):
    """Process an event delivery. Always 200 once the body parses."""
    start = time.time()
    request_id = _get_request_id(request)
    endpoint = "/webhook"
    body = await request.body()

    if not verify_meta_signature(request, body):
        logger.warning(f"[{request_id}] Invalid webhook signature")
        REQUEST_COUNT.labels(endpoint=endpoint, status="invalid_signature").inc()
        return JSONResponse(
            status_code=401,
            content={"error": "invalid_signature", "message": "Invalid signature", "request_id": request_id},
        )

    try:
        envelope = parse_envelope(body)
    except WebhookParseError as e:
        logger.error(f"[{request_id}] Failed to parse webhook payload: {e}")
        REQUEST_COUNT.labels(endpoint=endpoint, status="parse_error").inc()
        raise  # 400 via the app's WebhookParseError handler

    events = extract_events(envelope)
    logger.info(f"[{request_id}] {envelope.object} delivery with {len(events)} sub-event(s)")

    outcomes = await dispatch_events(events, request_id)

    summary = ", ".join(f"{o.interaction_id}={o.status}" for o in outcomes) or "nothing to do"
    logger.info(f"[{request_id}] Webhook processed: {summary}")
    REQUEST_COUNT.labels(endpoint=endpoint, status="success").inc()
    REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start)
    return PlainTextResponse("OK")
