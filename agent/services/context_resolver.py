"""
Context Resolver
================
Turns a raw webhook event into an InboundInteraction and gathers what the
trigger decision and the prompt need.

  - Admin detection (profile linked to the sender's platform id)
  - Self-loop guard (the page/account talking to itself)
  - Post content: local row -> cached media analysis -> one fresh analysis
    written back as cache -> platform fetch when no local row exists
  - Thread: parent comment + sibling replies, one round trip per level
  - Background indexing of post content for semantic search

Everything except admin detection is best effort: failures shrink the
context, they never stop the pipeline.
"""

import asyncio
import json

from config import logger, FACEBOOK_PAGE_ID, INSTAGRAM_ACCOUNT_ID, THREAD_CONTEXT_LIMIT
from prompts import (
    COMMENT_CONTEXT_HEADER,
    COMMENT_CONTEXT_POST,
    COMMENT_CONTEXT_MEDIA,
    COMMENT_CONTEXT_PARENT,
    COMMENT_CONTEXT_THREAD,
    COMMENT_CONTEXT_FOOTER,
    DM_CONTEXT,
)
from services import background, graph_client
from services.errors import PlatformAPIError
from services.media_service import MediaAnalysisService, classify_media
from services.models import InboundInteraction, InteractionContext, ThreadContext
from services.search_service import VectorSearchClient
from services.supabase_service import SupabaseService
from services.validation import WebhookEvent


def _page_identities(platform: str, account_id: str) -> set[str]:
    configured = INSTAGRAM_ACCOUNT_ID if platform == "instagram" else FACEBOOK_PAGE_ID
    return {i for i in (configured, account_id) if i}


def _analysis_text(analysis: dict) -> str:
    if analysis.get("summary"):
        return str(analysis["summary"])
    return json.dumps(analysis)


class ContextResolver:

    # --------------------------------------------------
    # Sender
    # --------------------------------------------------
    @staticmethod
    async def to_interaction(event: WebhookEvent) -> InboundInteraction:
        """Normalize an event, resolving the sender's admin status first."""
        is_admin = await asyncio.to_thread(SupabaseService.is_admin, event.platform, event.sender_id)
        return event.to_interaction(is_admin)

    @staticmethod
    def is_self_loop(interaction: InboundInteraction) -> bool:
        """Sender is our own page/account and not a recognized admin."""
        if interaction.is_admin:
            return False
        return interaction.from_id in _page_identities(interaction.platform, interaction.account_id)

    # --------------------------------------------------
    # Post content
    # --------------------------------------------------
    @staticmethod
    async def resolve_post_content(post_id: str, platform: str) -> tuple[str, str]:
        """Returns (post_content, media_analysis_text)."""
        if not post_id:
            return "", ""

        post = await asyncio.to_thread(SupabaseService.get_post, post_id)

        if post is None:
            try:
                text = await asyncio.to_thread(graph_client.get_client(platform).get_post_text, post_id)
            except PlatformAPIError as e:
                logger.warning(f"Could not fetch post {post_id} from {platform}: {e}")
                text = ""
            return text, ""

        if post.has_cached_analysis:
            return post.content, post.cached_analysis_text()

        media_type = classify_media(post.media_url, platform)
        if not media_type:
            return post.content, ""

        logger.info(f"Analyzing {media_type} for post {post_id} (no cached analysis)")
        analysis = await asyncio.to_thread(MediaAnalysisService.analyze, post.media_url, media_type, post_id)
        if not analysis:
            return post.content, ""

        await asyncio.to_thread(SupabaseService.update_post_media_analysis, post_id, analysis)
        return post.content, _analysis_text(analysis)

    # --------------------------------------------------
    # Thread
    # --------------------------------------------------
    @staticmethod
    async def resolve_thread(interaction: InboundInteraction) -> ThreadContext:
        """Parent comment and its replies, or the comment's own replies if top-level."""
        client = graph_client.get_client(interaction.platform)
        try:
            parent_id = interaction.parent_comment_id
            if parent_id is None:
                parent_id = await asyncio.to_thread(client.get_comment_parent_id, interaction.id)

            if parent_id:
                parent = await asyncio.to_thread(client.get_comment, parent_id)
                replies = await asyncio.to_thread(client.get_replies, parent_id, THREAD_CONTEXT_LIMIT)
            else:
                parent = None
                replies = await asyncio.to_thread(client.get_replies, interaction.id, THREAD_CONTEXT_LIMIT)
        except PlatformAPIError as e:
            logger.warning(f"Thread context unavailable for comment {interaction.id}: {e}")
            return ThreadContext()

        messages = tuple(
            f"{r['author']}: {r['text']}"
            for r in replies
            if r["id"] != interaction.id and r["text"]
        )
        if parent:
            return ThreadContext(
                parent_id=parent_id,
                parent_text=parent["text"],
                parent_author=parent["author"],
                messages=messages,
            )
        return ThreadContext(messages=messages)

    # --------------------------------------------------
    # Assembly
    # --------------------------------------------------
    @staticmethod
    def build_contextual_instructions(
        interaction: InboundInteraction, post_content: str, media_analysis: str, thread: ThreadContext
    ) -> str:
        if not interaction.is_comment:
            return DM_CONTEXT.format(platform=interaction.platform.capitalize())

        lines = [COMMENT_CONTEXT_HEADER.format(platform=interaction.platform.capitalize())]
        if post_content:
            lines.append(COMMENT_CONTEXT_POST.format(post_content=post_content))
        if media_analysis:
            lines.append(COMMENT_CONTEXT_MEDIA.format(media_analysis=media_analysis))
        if thread.parent_text:
            lines.append(COMMENT_CONTEXT_PARENT.format(author=thread.parent_author, parent_text=thread.parent_text))
        if thread.messages:
            lines.append(COMMENT_CONTEXT_THREAD.format(
                thread_messages="\n".join(f"  {m}" for m in thread.messages)
            ))
        lines.append(COMMENT_CONTEXT_FOOTER.format(comment_text=interaction.text))
        return "\n".join(lines)

    @staticmethod
    async def resolve(interaction: InboundInteraction) -> InteractionContext:
        if not interaction.is_comment:
            return InteractionContext(
                contextual_instructions=ContextResolver.build_contextual_instructions(
                    interaction, "", "", ThreadContext()
                )
            )

        post_content, media_analysis = await ContextResolver.resolve_post_content(
            interaction.post_id, interaction.platform
        )
        thread = await ContextResolver.resolve_thread(interaction)

        if post_content:
            background.spawn_blocking(
                "index_post",
                VectorSearchClient.index_post,
                interaction.post_id,
                post_content,
                interaction.platform,
            )

        return InteractionContext(
            post_content=post_content,
            media_analysis=media_analysis,
            thread=thread,
            contextual_instructions=ContextResolver.build_contextual_instructions(
                interaction, post_content, media_analysis, thread
            ),
        )
