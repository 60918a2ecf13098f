"""Admin detection, self-loop guard, post content and thread context."""

import json

import pytest

from conftest import facebook_comment_payload, facebook_message_payload
from services import graph_client, supabase_service
from services.context_resolver import ContextResolver
from services.media_service import MediaAnalysisService
from services.models import InboundInteraction
from services.validation import extract_events, parse_envelope


def _event(payload):
    [event] = extract_events(parse_envelope(json.dumps(payload).encode()))
    return event


def _comment(**overrides):
    values = dict(id="c-1", post_id="post-1", from_id="user-1", text="AI hi", is_admin=False,
                  platform="facebook", kind="post_comment", account_id="page-1")
    values.update(overrides)
    return InboundInteraction(**values)


@pytest.mark.asyncio
async def test_sender_with_linked_profile_is_admin(db):
    db.rows("profiles").append({"id": "p-1", "fb_uid": "owner-1", "role": "admin"})

    admin = await ContextResolver.to_interaction(_event(facebook_comment_payload(from_id="owner-1")))
    follower = await ContextResolver.to_interaction(_event(facebook_comment_payload(from_id="user-1")))

    assert admin.is_admin and admin.user_role == "admin"
    assert not follower.is_admin


@pytest.mark.asyncio
async def test_role_claim_required_when_enabled(db, monkeypatch):
    monkeypatch.setattr(supabase_service, "ADMIN_REQUIRE_ROLE_CLAIM", True)
    db.rows("profiles").append({"id": "p-1", "fb_uid": "staff-1", "role": "editor"})

    interaction = await ContextResolver.to_interaction(_event(facebook_message_payload(sender_id="staff-1")))
    assert not interaction.is_admin


def test_self_loop_guard():
    assert ContextResolver.is_self_loop(_comment(from_id="page-1"))
    assert ContextResolver.is_self_loop(_comment(from_id="ig-1", platform="instagram", account_id="ig-1"))
    assert not ContextResolver.is_self_loop(_comment(from_id="page-1", is_admin=True))
    assert not ContextResolver.is_self_loop(_comment(from_id="user-1"))


@pytest.mark.asyncio
async def test_cached_media_analysis_is_never_recomputed(db, monkeypatch):
    db.rows("posts").append({
        "id": "post-1",
        "content": "New espresso machine",
        "media_url": "https://cdn.example.com/video.mp4",
        "media_analysis": {"summary": "A barista pulls a shot"},
    })

    def fail(*args):
        raise AssertionError("analysis must come from the cache")

    monkeypatch.setattr(MediaAnalysisService, "analyze", fail)

    content, analysis = await ContextResolver.resolve_post_content("post-1", "facebook")
    assert content == "New espresso machine"
    assert analysis == "A barista pulls a shot"


@pytest.mark.asyncio
@pytest.mark.parametrize("empty", [None, "", "{}", {}])
async def test_missing_analysis_is_computed_once_and_cached(db, monkeypatch, empty):
    db.rows("posts").append({
        "id": "post-1",
        "content": "Sunset drop",
        "media_url": "https://cdn.example.com/photo.jpg?size=large",
        "media_analysis": empty,
    })
    calls = []

    def analyze(media_url, media_type, post_id):
        calls.append(media_type)
        return {"summary": "Orange sky over the sea"}

    monkeypatch.setattr(MediaAnalysisService, "analyze", analyze)

    _, analysis = await ContextResolver.resolve_post_content("post-1", "facebook")
    _, again = await ContextResolver.resolve_post_content("post-1", "facebook")

    assert calls == ["image"]
    assert analysis == again == "Orange sky over the sea"
    assert db.rows("posts")[0]["media_analysis"] == {"summary": "Orange sky over the sea"}


@pytest.mark.asyncio
async def test_text_only_post_skips_analysis(db):
    db.rows("posts").append({"id": "post-1", "content": "Hello", "media_url": "text only"})
    assert await ContextResolver.resolve_post_content("post-1", "facebook") == ("Hello", "")


@pytest.mark.asyncio
async def test_post_without_local_row_is_fetched_from_platform(db, platform):
    platform["instagram"].post_text = "Caption from Instagram"
    content, analysis = await ContextResolver.resolve_post_content("media-1", "instagram")
    assert content == "Caption from Instagram"
    assert analysis == ""
    assert platform["instagram"].post_fetches == ["media-1"]


@pytest.mark.asyncio
async def test_thread_for_reply_uses_parent_and_siblings(platform):
    client = platform["facebook"]
    client.comments["c-0"] = {"id": "c-0", "text": "Do you ship abroad?", "author": "Sam"}
    client.thread = [
        {"id": "c-a", "text": "Same question", "author": "Lee"},
        {"id": "c-1", "text": "AI hi", "author": "Jane"},
    ]

    thread = await ContextResolver.resolve_thread(_comment(parent_comment_id="c-0"))

    assert thread.parent_id == "c-0"
    assert thread.parent_author == "Sam"
    assert thread.messages == ("Lee: Same question",)


@pytest.mark.asyncio
async def test_unreadable_graph_response_degrades_to_empty_thread(monkeypatch):
    def not_json(*args, **kwargs):
        raise json.JSONDecodeError("Expecting value", "<html>", 0)

    monkeypatch.setattr(graph_client, "_graph_request", not_json)

    thread = await ContextResolver.resolve_thread(_comment(parent_comment_id="c-0"))

    assert thread.parent_id is None
    assert thread.messages == ()


@pytest.mark.asyncio
async def test_contextual_instructions_for_comment(db, platform):
    db.rows("posts").append({"id": "post-1", "content": "Spring sale starts Monday"})
    context = await ContextResolver.resolve(_comment(text="AI when does it end?"))

    assert context.post_content == "Spring sale starts Monday"
    assert "Facebook comment" in context.contextual_instructions
    assert "Spring sale starts Monday" in context.contextual_instructions
    assert "AI when does it end?" in context.contextual_instructions


@pytest.mark.asyncio
async def test_contextual_instructions_for_message():
    context = await ContextResolver.resolve(_comment(kind="direct_message", post_id=""))
    assert "direct message on Facebook" in context.contextual_instructions
    assert context.post_content == ""
