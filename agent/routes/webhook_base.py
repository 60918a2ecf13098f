"""
Shared Interaction Pipeline
===========================
Generic hook-based pipeline for one inbound comment or direct message.
Per-kind behavior (idempotency claim, post-back, reply formatting) is
supplied through an InteractionConfig; everything else is shared.

Features:
- HMAC-SHA256 signature verification (X-Hub-Signature-256)
- Request ID tracing
- Typed PipelineOutcome per run, never an exception
- Session left in processing on any unrecoverable failure
"""

import asyncio
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from fastapi import Request

from config import logger, FACEBOOK_APP_SECRET, INSTAGRAM_APP_SECRET
from prompts import GENERATION_APOLOGY
from routes.health import track_request
from routes.metrics import WEBHOOK_EVENTS, PIPELINE_DURATION, TRIGGER_DECISIONS, GENERATION_ERRORS
from services import trigger_engine
from services.context_resolver import ContextResolver
from services.conversation_store import ConversationStore
from services.dedup_service import DedupService
from services.errors import GenerationError, PlatformAPIError
from services.intent_router import IntentRouter
from services.models import GenerationRequest, InboundInteraction, PipelineOutcome
from services.response_generator import ResponseGenerator
from services.supabase_service import SupabaseService
from services.validation import WebhookEvent


@dataclass
class InteractionConfig:
    """Hooks for one interaction kind."""
    kind: str                                                      # "post_comment" or "direct_message"
    apply_trigger: bool                                            # DMs are always answered

    # Required hooks
    claim: Callable[[InboundInteraction], Awaitable[bool]]         # False -> duplicate delivery
    post_reply: Callable[[InboundInteraction, str], str]           # blocking, returns platform id

    # Optional hooks
    post_fallback: Optional[Callable[[InboundInteraction, str], str]] = None
    format_reply: Optional[Callable[[InboundInteraction, str], str]] = None


def verify_meta_signature(request: Request, body: bytes) -> bool:
    """Verify the X-Hub-Signature-256 header against the configured app secrets.

    Meta signs the raw request body with the app secret. The Facebook and
    Instagram apps may or may not share one, so either secret is accepted.
    """
    secrets = [s for s in (FACEBOOK_APP_SECRET, INSTAGRAM_APP_SECRET) if s]
    if not secrets:
        logger.warning("No app secret set - skipping signature verification (dev mode)")
        return True

    signature_header = request.headers.get("X-Hub-Signature-256", "")
    if not signature_header:
        logger.warning("Missing X-Hub-Signature-256 header")
        return False

    if not signature_header.startswith("sha256="):
        logger.warning("Invalid signature format")
        return False

    expected_signature = signature_header[7:]

    for secret in secrets:
        computed_signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        if hmac.compare_digest(computed_signature, expected_signature):
            return True
    return False


def _get_request_id(request: Request) -> str:
    """Extract request ID from request state (set by middleware)."""
    return getattr(request.state, "request_id", "unknown")


async def _post_back(interaction: InboundInteraction, cfg: InteractionConfig, text: str, tag: str) -> Optional[str]:
    """Primary post-back, then one fallback. Returns the platform id or None."""
    try:
        return await asyncio.to_thread(cfg.post_reply, interaction, text)
    except PlatformAPIError as e:
        if cfg.post_fallback is None:
            logger.error(f"{tag} Post-back failed: {e}")
            return None
        logger.warning(f"{tag} Post-back rejected ({e}) - trying fallback")

    try:
        return await asyncio.to_thread(cfg.post_fallback, interaction, text)
    except PlatformAPIError as e:
        logger.error(f"{tag} Fallback post-back failed: {e}")
        return None


async def interaction_pipeline(event: WebhookEvent, cfg: InteractionConfig, request_id: str = "-") -> PipelineOutcome:
    """Run one sub-event through the pipeline. Never raises."""
    start = time.time()
    try:
        outcome = await _run(event, cfg, request_id)
    except Exception as e:
        logger.error(
            f"[{request_id}] {event.platform} {event.kind} {event.event_id} failed: {type(e).__name__}: {e}"
        )
        outcome = PipelineOutcome(status="failed", interaction_id=event.event_id, detail=type(e).__name__)

    duration = time.time() - start
    WEBHOOK_EVENTS.labels(platform=event.platform, kind=event.kind, outcome=outcome.status).inc()
    PIPELINE_DURATION.labels(kind=event.kind).observe(duration)
    track_request(int(duration * 1000))
    return outcome


async def _run(event: WebhookEvent, cfg: InteractionConfig, request_id: str) -> PipelineOutcome:
    """
    Flow:
      1. Normalize (admin detection) -> InboundInteraction
      2. Self-loop guard, empty text
      3. Idempotency (atomic delivery claim, then the durable claim)
      4. Active configuration snapshot
      5. Trigger decision (nlp mode classifies first)
      6. Context + session open
      7. Intent routing + durable audit row
      8. Generation (failure -> apology)
      9. Post-back with one fallback
     10. Persist AI reply, memory, complete session
    """
    # Step 1: Normalize
    interaction = await ContextResolver.to_interaction(event)
    tag = f"[{request_id}] {interaction.platform} {interaction.channel} {interaction.id}"

    # Step 2: Guards
    if ContextResolver.is_self_loop(interaction):
        logger.info(f"{tag} Sender is our own account - ignoring")
        return PipelineOutcome(status="ignored_self", interaction_id=interaction.id)

    if not interaction.text:
        logger.info(f"{tag} Empty text - ignoring")
        return PipelineOutcome(status="ignored_empty", interaction_id=interaction.id)

    # Step 3: Idempotency
    delivery_key = DedupService.delivery_key(interaction.platform, interaction.kind, interaction.id)
    if not DedupService.claim(delivery_key):
        logger.info(f"{tag} Duplicate delivery (already claimed) - skipping")
        return PipelineOutcome(status="duplicate", interaction_id=interaction.id)
    try:
        claimed = await cfg.claim(interaction)
    except Exception:
        DedupService.release(delivery_key)
        raise
    if not claimed:
        logger.info(f"{tag} Duplicate delivery - skipping")
        return PipelineOutcome(status="duplicate", interaction_id=interaction.id)

    # Step 4: Configuration snapshot, passed explicitly from here on
    prompt_config = await asyncio.to_thread(SupabaseService.get_active_prompt_configuration)

    # Step 5: Trigger
    intents = None
    if cfg.apply_trigger:
        if prompt_config and prompt_config.trigger_mode == "nlp":
            intents = await IntentRouter.classify(
                interaction.text, interaction.channel, prompt_config.nlp_intents
            )

        decision = trigger_engine.decide(interaction.text, interaction.is_admin, prompt_config, intents)
        TRIGGER_DECISIONS.labels(reason=decision.reason, triggered=str(decision.should_trigger).lower()).inc()
        if not decision.should_trigger:
            logger.info(f"{tag} Not triggered ({decision.reason})")
            return PipelineOutcome(status="not_triggered", interaction_id=interaction.id, detail=decision.reason)
        logger.info(f"{tag} Triggered ({decision.reason}, admin={interaction.is_admin})")

    # Step 6: Context + session
    context = await ContextResolver.resolve(interaction)
    session = await ConversationStore.open_session(interaction)

    # Step 7: Intent routing
    if intents is None:
        configured = prompt_config.nlp_intents if prompt_config else ()
        intents = await IntentRouter.classify(interaction.text, interaction.channel, configured)
    route = IntentRouter.route(intents)
    await IntentRouter.record(interaction.id, intents)

    # Step 8: Generation
    request = GenerationRequest(
        message=interaction.text,
        sender_id=interaction.from_id,
        session_id=(session or {}).get("id"),
        channel=interaction.channel,
        post_content=context.post_content,
        contextual_instructions=context.contextual_instructions,
        route=route,
    )
    try:
        result = await ResponseGenerator.generate(request, prompt_config)
    except GenerationError as e:
        GENERATION_ERRORS.labels(channel=interaction.channel).inc()
        logger.error(f"{tag} Generation failed: {e}")
        apology_id = await _post_back(interaction, cfg, GENERATION_APOLOGY[interaction.channel], tag)
        if apology_id is None:
            logger.warning(f"{tag} Apology not delivered - dropping silently")
        return PipelineOutcome(status="generation_failed", interaction_id=interaction.id, detail=str(e))

    # Step 9: Post-back
    reply_text = cfg.format_reply(interaction, result.text) if cfg.format_reply else result.text
    reply_id = await _post_back(interaction, cfg, reply_text, tag)
    if reply_id is None:
        return PipelineOutcome(status="post_back_failed", interaction_id=interaction.id)

    # Step 10: Persist
    await ConversationStore.record_ai_reply(interaction, reply_id, result.text)
    await ConversationStore.remember_exchange(interaction, result)
    await ConversationStore.complete_session(interaction, session, result.text, reply_id)

    logger.info(f"{tag} Replied ({route.mode}) as {reply_id}")
    return PipelineOutcome(status="replied", interaction_id=interaction.id, reply_id=reply_id)
