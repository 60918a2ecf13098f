"""
Conversation State Store
========================
Session lifecycle and interaction records on top of SupabaseService.

  processing -> completed   only after the user turn AND the AI reply are
                            in the session's message log
  processing (left as is)   on any unrecoverable failure; the stale
                            session monitor reports these

Idempotency keys:
  - comments: platform comment id (insert-if-absent)
  - DMs: platform message id inside the session message log
  - sessions: chat_id upsert (comment_<id> or the DM sender id)
"""

import asyncio
import json
from datetime import datetime, timezone, timedelta

from config import logger
from services.models import GenerationResult, InboundInteraction
from services.supabase_service import SupabaseService, trim_messages


def _message(role: str, content: str, message_id: str = None) -> dict:
    entry = {"role": role, "content": content, "timestamp": datetime.now(timezone.utc).isoformat()}
    if message_id:
        entry["message_id"] = message_id
    return entry


def _session_messages(session: dict) -> list:
    messages = (session or {}).get("messages") or []
    if isinstance(messages, str):
        try:
            messages = json.loads(messages)
        except json.JSONDecodeError:
            return []
    return messages if isinstance(messages, list) else []


class ConversationStore:

    @staticmethod
    async def record_inbound_comment(interaction: InboundInteraction) -> bool:
        """Persist the inbound comment. False means it was already stored (duplicate delivery)."""
        return await asyncio.to_thread(SupabaseService.insert_comment_if_absent, {
            "id": interaction.id,
            "post_id": interaction.post_id,
            "content": interaction.text,
            "role": interaction.user_role,
            "parent_comment_id": interaction.parent_comment_id,
            "source_channel": interaction.source_channel,
        })

    @staticmethod
    async def is_duplicate_message(interaction: InboundInteraction) -> bool:
        session = await asyncio.to_thread(SupabaseService.get_chat_session, interaction.chat_id)
        return any(m.get("message_id") == interaction.id for m in _session_messages(session))

    @staticmethod
    async def open_session(interaction: InboundInteraction) -> dict:
        """Upsert the session in processing with the user's turn appended."""
        existing = None
        if not interaction.is_comment:
            existing = await asyncio.to_thread(SupabaseService.get_chat_session, interaction.chat_id)

        messages = trim_messages(
            _session_messages(existing) + [_message("user", interaction.text, interaction.id)]
        )
        return await asyncio.to_thread(SupabaseService.upsert_chat_session, {
            "chat_id": interaction.chat_id,
            "status": "processing",
            "messages": messages,
            "channel_type": interaction.channel,
            "user_role": interaction.user_role,
        })

    @staticmethod
    async def record_ai_reply(interaction: InboundInteraction, reply_id: str, text: str):
        """Persist the AI's comment under its platform-assigned id (comments only)."""
        if not interaction.is_comment:
            return
        await asyncio.to_thread(SupabaseService.insert_comment_if_absent, {
            "id": reply_id,
            "post_id": interaction.post_id,
            "content": text,
            "role": "ai_agent",
            "parent_comment_id": interaction.id,
            "source_channel": interaction.source_channel,
        })

    @staticmethod
    async def complete_session(interaction: InboundInteraction, session: dict, text: str, reply_id: str = None):
        messages = trim_messages(_session_messages(session) + [_message("assistant", text, reply_id)])
        await asyncio.to_thread(SupabaseService.update_chat_session, interaction.chat_id, {
            "status": "completed",
            "messages": messages,
        })

    @staticmethod
    async def remember_exchange(interaction: InboundInteraction, result: GenerationResult):
        """Two memory rows (user, ai). Best effort."""
        now = datetime.now(timezone.utc)
        context = {"channel": interaction.channel, "platform": interaction.platform, "post_id": interaction.post_id}
        stored = await asyncio.to_thread(SupabaseService.store_memories, [
            {
                "user_id": interaction.from_id,
                "conversation_id": result.conversation_id,
                "message_type": "user",
                "content": interaction.text,
                "context": context,
                "tools_used": [],
                "created_at": now.isoformat(),
            },
            {
                "user_id": interaction.from_id,
                "conversation_id": result.conversation_id,
                "message_type": "ai",
                "content": result.text,
                "context": context,
                "tools_used": list(result.tools_used),
                # strictly after the user row so newest-first ordering is stable
                "created_at": (now + timedelta(milliseconds=1)).isoformat(),
            },
        ])
        if not stored:
            logger.warning(f"Conversation memory for {interaction.from_id} not stored")
