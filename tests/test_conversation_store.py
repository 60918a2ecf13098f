"""Session lifecycle, comment idempotency and memory rows."""

import pytest

from services.conversation_store import ConversationStore
from services.models import GenerationResult, InboundInteraction


def _interaction(kind="post_comment", **overrides):
    values = dict(id="c-1", post_id="post-1", from_id="user-1", text="AI hello", is_admin=False,
                  platform="facebook", kind=kind)
    values.update(overrides)
    return InboundInteraction(**values)


@pytest.mark.asyncio
async def test_inbound_comment_is_inserted_once(db):
    interaction = _interaction()

    assert await ConversationStore.record_inbound_comment(interaction) is True
    assert await ConversationStore.record_inbound_comment(interaction) is False

    [row] = db.rows("comments")
    assert row["id"] == "c-1"
    assert row["role"] == "follower"
    assert row["source_channel"] == "facebook_comment"


@pytest.mark.asyncio
async def test_comment_session_lifecycle(db):
    interaction = _interaction()

    session = await ConversationStore.open_session(interaction)
    assert session["chat_id"] == "comment_c-1"
    assert session["status"] == "processing"

    await ConversationStore.complete_session(interaction, session, "Hi there!", "reply-1")

    [stored] = db.rows("chat_sessions")
    assert stored["status"] == "completed"
    assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]
    assert stored["messages"][1]["message_id"] == "reply-1"


@pytest.mark.asyncio
async def test_message_sessions_accumulate_and_detect_duplicates(db):
    first = _interaction(kind="direct_message", id="m-1", post_id="", text="hi")
    second = _interaction(kind="direct_message", id="m-2", post_id="", text="are you open?")

    assert not await ConversationStore.is_duplicate_message(first)
    session = await ConversationStore.open_session(first)
    await ConversationStore.complete_session(first, session, "Hello!", "m-out-1")
    await ConversationStore.open_session(second)

    [stored] = db.rows("chat_sessions")
    assert stored["chat_id"] == "user-1"
    assert stored["channel_type"] == "dm"
    assert [m["content"] for m in stored["messages"]] == ["hi", "Hello!", "are you open?"]
    assert await ConversationStore.is_duplicate_message(first)
    assert await ConversationStore.is_duplicate_message(second)


@pytest.mark.asyncio
async def test_ai_reply_row_only_for_comments(db):
    await ConversationStore.record_ai_reply(_interaction(), "reply-9", "Thanks!")
    await ConversationStore.record_ai_reply(_interaction(kind="direct_message", id="m-1"), "m-out-1", "Thanks!")

    [row] = db.rows("comments")
    assert row["id"] == "reply-9"
    assert row["role"] == "ai_agent"
    assert row["parent_comment_id"] == "c-1"


@pytest.mark.asyncio
async def test_remember_exchange_writes_user_then_ai(db):
    result = GenerationResult(text="We ship worldwide.", conversation_id="conv-1", tools_used=("web_search",))
    await ConversationStore.remember_exchange(_interaction(), result)

    user_row, ai_row = db.rows("user_conversations")
    assert (user_row["message_type"], ai_row["message_type"]) == ("user", "ai")
    assert ai_row["tools_used"] == ["web_search"]
    assert ai_row["created_at"] > user_row["created_at"]
    assert user_row["conversation_id"] == ai_row["conversation_id"] == "conv-1"


@pytest.mark.asyncio
async def test_session_write_failure_propagates(db):
    db.fail_on.add(("chat_sessions", "upsert"))
    with pytest.raises(RuntimeError):
        await ConversationStore.open_session(_interaction())
