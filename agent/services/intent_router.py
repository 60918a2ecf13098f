"""
Intent Router
=============
Classifies a message into zero, one or many intents and picks the
generation path:

  0 or 1 intents -> single-agent generation
  2+ intents     -> merge generation (all intents passed through)

Classification runs on the classifier model with a timeout, against the
built-in intents plus the ones the active configuration lists. An unparseable
answer falls back to a local keyword detector; an error or timeout yields an
empty result flagged as failed so the trigger engine can tell "no intent"
from "no answer".

Recording the detected intents is NOT best effort: one detected_intents row
per routed interaction, written before generation starts.
"""

import asyncio
import re

from config import logger, INTENT_TIMEOUT_SECONDS
from prompts import INTENT_CLASSIFICATION
from routes.metrics import INTENT_ROUTES, LLM_ERRORS
from services.llm_service import LLMService
from services.models import IntentResult, RouteDecision
from services.supabase_service import SupabaseService

MIN_INTENT_CONFIDENCE = 0.2

INTENT_KEYWORDS = {
    "product_question": ["price", "cost", "feature", "spec", "model", "available", "availability",
                         "shipping", "return", "refund"],
    "support_request": ["help", "support", "issue", "problem", "not working", "broken", "error", "bug"],
    "order_status": ["order", "tracking", "where is", "status", "delivery", "shipped"],
    "pricing_question": ["price", "cost", "discount", "offer", "deal", "coupon"],
    "technical_issue": ["crash", "lag", "slow", "cant login", "can't login", "password", "reset", "network"],
    "greeting": ["hello", "hi", "hey", "good morning", "good evening"],
    "testimonial": ["love", "like", "great", "amazing", "best", "recommend"],
}


def _rank(scores: dict[str, float]) -> IntentResult:
    kept = {k: round(v, 3) for k, v in scores.items() if v >= MIN_INTENT_CONFIDENCE}
    ordered = tuple(sorted(kept, key=lambda k: kept[k], reverse=True))
    return IntentResult(intents=ordered, confidence=kept)


def _hits(keys, lowered: str) -> int:
    return sum(1 for k in keys if re.search(rf"\b{re.escape(k)}\b", lowered))


def candidate_intents(configured=()) -> list[str]:
    """Configured intents first, then the built-in ones, without repeats."""
    names = [str(c).strip().lower() for c in configured if c and str(c).strip()]
    return list(dict.fromkeys(names + list(INTENT_KEYWORDS)))


def detect_intents_locally(text: str, configured=()) -> IntentResult:
    """Keyword scoring: hits / max(3, keywords in the intent), capped at 1.

    A configured intent with no keyword list is scored on the words of its
    own name ("product_inquiry" -> product, inquiry).
    """
    lowered = (text or "").lower()
    scores = {}
    for intent in candidate_intents(configured):
        keys = INTENT_KEYWORDS.get(intent)
        if keys is None:
            words = [w for w in re.split(r"[^a-z0-9]+", intent) if len(w) > 2]
            hits = _hits(words, lowered)
            if hits:
                scores[intent] = min(1.0, hits / len(words))
            continue
        hits = _hits(keys, lowered)
        if hits:
            scores[intent] = min(1.0, hits / max(3, len(keys)))
    return _rank(scores)


def _parse_classification(raw: dict) -> IntentResult:
    intents = raw.get("intents")
    if not isinstance(intents, list):
        raise ValueError(raw.get("error", "no intents list"))
    confidence = raw.get("confidence") if isinstance(raw.get("confidence"), dict) else {}
    scores = {}
    for intent in intents:
        name = str(intent).strip().lower()
        if not name or name == "other":
            continue
        try:
            scores[name] = float(confidence.get(intent, confidence.get(name, 1.0)))
        except (TypeError, ValueError):
            scores[name] = MIN_INTENT_CONFIDENCE
    return _rank(scores)


def _classify_blocking(text: str, channel: str, configured) -> IntentResult:
    prompt = INTENT_CLASSIFICATION.format(channel=channel, intents=", ".join(candidate_intents(configured)))
    raw = LLMService.classify_json(prompt, text)
    try:
        return _parse_classification(raw)
    except ValueError:
        logger.info("Intent classifier answer unusable — using keyword detection")
        return detect_intents_locally(text, configured)


class IntentRouter:

    @staticmethod
    async def classify(text: str, channel: str, configured=()) -> IntentResult:
        """Never raises: errors and timeouts come back empty with failed=True.

        `configured` is the active configuration's nlp_intents; they are
        offered to the classifier alongside the built-in intents.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(_classify_blocking, text, channel, tuple(configured or ())),
                timeout=INTENT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            LLM_ERRORS.labels(error_type="intent_timeout").inc()
            logger.warning(f"Intent classification timed out after {INTENT_TIMEOUT_SECONDS}s — no intents")
        except Exception as e:
            LLM_ERRORS.labels(error_type="intent_error").inc()
            logger.warning(f"Intent classification failed — no intents: {e}")
        return IntentResult(failed=True)

    @staticmethod
    def route(result: IntentResult) -> RouteDecision:
        mode = "merge" if len(result.intents) >= 2 else "single"
        INTENT_ROUTES.labels(mode=mode).inc()
        return RouteDecision(mode=mode, intents=result.intents)

    @staticmethod
    async def record(interaction_id: str, result: IntentResult):
        """Append the audit row. Raises AuditWriteError."""
        await asyncio.to_thread(
            SupabaseService.record_detected_intents,
            interaction_id,
            list(result.intents),
            dict(result.confidence),
        )
