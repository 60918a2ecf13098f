"""
Response Generator
==================
Composes the system prompt and calls the completion service once.

Prompt order:
  1. configuration instructions (placeholders substituted)
  2. caller's contextual instructions (+ merge instructions, related post)
  3. sender memory, most recent first
  4. web search results   (enabled in config AND the message needs it)
  5. file search results  (enabled, files referenced AND the message needs it)

Search-need checks are yes/no classifier calls with a keyword fallback; they
and every search may fail without affecting the reply. The completion call
itself may not: GenerationError propagates to the pipeline.
"""

import asyncio
import re
import uuid
from typing import Optional

from config import (
    logger,
    MAX_MESSAGE_LENGTH,
    MAX_REPLY_LENGTH,
    MEMORY_CONTEXT_LIMIT,
    POST_SEARCH_MIN_SCORE,
    SEARCH_ANALYSIS_TIMEOUT_SECONDS,
    VECTOR_SEARCH_TIMEOUT_SECONDS,
)
from prompts import (
    DEFAULT_SYSTEM_INSTRUCTIONS,
    PERSONAL_CONTEXT,
    PLACEHOLDER_DEFAULTS,
    MERGE_INSTRUCTIONS,
    MERGE_FALLBACK_REPLY,
    RELATED_POST_BLOCK,
    MEMORY_BLOCK,
    WEB_SEARCH_BLOCK,
    FILE_SEARCH_BLOCK,
    CLOSING_INSTRUCTIONS,
    USER_MESSAGE,
    WEB_SEARCH_NEED,
    FILE_SEARCH_NEED,
)
from routes.metrics import LLM_ERRORS
from services.errors import GenerationError
from services.llm_service import LLMService
from services.models import GenerationRequest, GenerationResult, PromptConfiguration
from services.search_service import (
    FileSearchService,
    VectorSearchClient,
    WebSearchClient,
    format_file_results,
    format_web_results,
)
from services.supabase_service import SupabaseService

SEARCH_FALLBACK_KEYWORDS = ("latest", "current", "recent", "news", "today", "now", "weather", "price")
POST_REFERENCE_KEYWORDS = ("post", "article", "content", "owner", "author", "wrote", "said",
                           "mentioned", "means", "summarize", "summary")


def _has_any_word(text: str, words: tuple) -> bool:
    lowered = text.lower()
    return any(re.search(rf"\b{w}\b", lowered) for w in words)


def needs_search_by_keywords(message: str) -> bool:
    return _has_any_word(message, SEARCH_FALLBACK_KEYWORDS)


async def needs_search(kind: str, message: str) -> bool:
    """Yes/no classification; keyword fallback if the classifier fails."""
    prompt = WEB_SEARCH_NEED if kind == "web" else FILE_SEARCH_NEED
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(LLMService.classify_yes_no, prompt, message),
            timeout=SEARCH_ANALYSIS_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        LLM_ERRORS.labels(error_type=f"{kind}_search_need_timeout").inc()
        logger.warning(f"{kind} search-need analysis timed out — using keyword fallback")
    except Exception as e:
        LLM_ERRORS.labels(error_type=f"{kind}_search_need_error").inc()
        logger.warning(f"{kind} search-need analysis failed — using keyword fallback: {e}")
    return needs_search_by_keywords(message)


def substitute_placeholders(template: str, values: dict) -> str:
    """Replace ${name} placeholders; empty values get their 'No ... available' default."""
    for key, default in PLACEHOLDER_DEFAULTS.items():
        template = template.replace("${" + key + "}", values.get(key) or default)
    return template


def format_memory(rows: list) -> str:
    lines = []
    for i, row in enumerate(rows, 1):
        speaker = "AI" if row.get("message_type") == "ai" else "User"
        lines.append(f"{i}. {speaker}: {row.get('content', '')}")
    return "\n".join(lines)


def truncate_reply(text: str, limit: int = MAX_REPLY_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


async def _related_post(message: str) -> Optional[str]:
    """Best semantic post match when the message refers to post content."""
    if not _has_any_word(message, POST_REFERENCE_KEYWORDS):
        return None
    try:
        matches = await asyncio.wait_for(
            asyncio.to_thread(VectorSearchClient.search_posts, message, 1),
            timeout=VECTOR_SEARCH_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning("Vector post search timed out — continuing without it")
        return None
    if matches and matches[0]["score"] > POST_SEARCH_MIN_SCORE:
        return matches[0]["content"]
    return None


class ResponseGenerator:

    @staticmethod
    async def generate(request: GenerationRequest, config: Optional[PromptConfiguration]) -> GenerationResult:
        """Build the prompt, call the completion service, return the reply text.

        Raises GenerationError if the completion call fails or (single-agent)
        comes back empty.
        """
        message = request.message[:MAX_MESSAGE_LENGTH]
        tools_used = []

        web_results = ""
        if config and config.web_search_enabled and await needs_search("web", message):
            found = await asyncio.to_thread(WebSearchClient.search, message)
            if found and (found["answer"] or found["results"]):
                web_results = format_web_results(found)
                tools_used.append("web_search")

        file_results = ""
        if (
            config
            and config.file_search_enabled
            and config.file_references
            and await needs_search("file", message)
        ):
            found = await asyncio.to_thread(FileSearchService.search, message, config.file_references)
            if found:
                file_results = format_file_results(found)
                tools_used.append("file_search")

        # 1. configuration instructions
        instructions = (config.system_instructions if config else "") or DEFAULT_SYSTEM_INSTRUCTIONS
        personal_context = ""
        if config and (config.business_name or config.details):
            personal_context = PERSONAL_CONTEXT.format(business_name=config.business_name, details=config.details)
        sections = [substitute_placeholders(instructions, {
            "postContent": request.post_content,
            "personalContext": personal_context,
            "searchResults": web_results,
            "fileResults": file_results,
        })]

        # 2. situational context
        if request.contextual_instructions:
            sections.append(request.contextual_instructions)
        if request.route.mode == "merge":
            sections.append(MERGE_INSTRUCTIONS.format(intents=", ".join(request.route.intents)))
        if not request.post_content:
            related = await _related_post(message)
            if related:
                sections.append(RELATED_POST_BLOCK.format(content=related))

        # 3. memory
        memories = await asyncio.to_thread(
            SupabaseService.get_recent_memories, request.sender_id, MEMORY_CONTEXT_LIMIT
        )
        if memories:
            sections.append(MEMORY_BLOCK.format(history=format_memory(memories)))

        # 4./5. search augmentation, unless the instructions already embedded it
        if web_results and "${searchResults}" not in instructions:
            sections.append(WEB_SEARCH_BLOCK.format(results=web_results))
        if file_results and "${fileResults}" not in instructions:
            sections.append(FILE_SEARCH_BLOCK.format(results=file_results))

        conversation_id = f"{request.sender_id}_{request.session_id or 'no-session'}_{uuid.uuid4().hex[:12]}"
        sections.append(CLOSING_INSTRUCTIONS.format(conversation_id=conversation_id))

        text = await asyncio.to_thread(
            LLMService.complete,
            "\n\n".join(sections),
            USER_MESSAGE.format(conversation_id=conversation_id, message=message),
        )

        if request.route.mode == "merge":
            text = truncate_reply(text or MERGE_FALLBACK_REPLY)
        elif not text:
            raise GenerationError("Completion service returned an empty response")

        logger.info(
            f"Generated {request.route.mode} reply for {request.sender_id} "
            f"({len(text)} chars, tools={tools_used or 'none'})"
        )
        return GenerationResult(text=text, conversation_id=conversation_id, tools_used=tuple(tools_used))
