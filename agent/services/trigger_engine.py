"""
Trigger Decision Engine
=======================
Decides whether an inbound message gets an automated reply at all.

Pure and deterministic: the same (text, is_admin, config, intents) always
yields the same decision, and nothing here touches I/O.

Rules, in order:
  1. Admin + fixed admin command ("ai summarize ...") -> trigger, any mode
  2. No active configuration -> default rule: text starts/ends with the
     word "ai" or is exactly "ai"
  3. keyword mode -> any configured keyword appears in the text
     nlp mode     -> a configured intent was detected at/above threshold;
                     an admin is answered when the classifier gave no answer
  4. Admin + any configured keyword in the text -> trigger (admin fallback)
"""

import re
from typing import Optional

from config import NLP_TRIGGER_THRESHOLD
from services.models import IntentResult, PromptConfiguration, TriggerDecision

_DEFAULT_PREFIX = re.compile(r"^ai\b")
_DEFAULT_SUFFIX = re.compile(r"\bai$")
ADMIN_COMMAND_PATTERN = re.compile(r"\bai\s+(summarise|summarize|analyze|explain)\b", re.IGNORECASE)


def matches_default_rule(text: str) -> bool:
    normalized = (text or "").strip().lower()
    return (
        normalized == "ai"
        or bool(_DEFAULT_PREFIX.search(normalized))
        or bool(_DEFAULT_SUFFIX.search(normalized))
    )


def is_admin_command(text: str) -> bool:
    return bool(ADMIN_COMMAND_PATTERN.search(text or ""))


def contains_keyword(text: str, keywords: list[str]) -> bool:
    lowered = (text or "").lower()
    return any(k.lower() in lowered for k in keywords if k)


def matches_intents(result: IntentResult, allowed: list[str], threshold: float) -> bool:
    allowed_set = {a.strip().lower() for a in allowed if a}
    return any(
        intent.lower() in allowed_set and result.confidence.get(intent, 0.0) >= threshold
        for intent in result.intents
    )


def decide(
    text: str,
    is_admin: bool,
    config: Optional[PromptConfiguration],
    intents: Optional[IntentResult] = None,
    threshold: float = NLP_TRIGGER_THRESHOLD,
) -> TriggerDecision:
    """Evaluate the trigger rules for one message.

    `intents` is only consulted in nlp mode; callers classify first and pass
    the result so this function stays free of I/O.
    """
    if is_admin and is_admin_command(text):
        return TriggerDecision(True, "admin_command")

    if config is None:
        if matches_default_rule(text):
            return TriggerDecision(True, "default_rule")
        return TriggerDecision(False, "no_match")

    reason = "no_match"
    if config.trigger_mode == "nlp":
        if intents is None or intents.failed:
            if is_admin:
                return TriggerDecision(True, "admin_nlp_unavailable")
            reason = "nlp_unavailable"
        elif matches_intents(intents, config.nlp_intents, threshold):
            return TriggerDecision(True, "intent_match")
    elif contains_keyword(text, config.keywords):
        return TriggerDecision(True, "keyword_match")

    if is_admin and contains_keyword(text, config.keywords):
        return TriggerDecision(True, "admin_keyword")

    return TriggerDecision(False, reason)
