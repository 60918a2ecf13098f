"""Webhook envelope parsing and sub-event extraction."""

import json

import pytest

from conftest import facebook_comment_payload, facebook_message_payload, instagram_comment_payload
from services.errors import WebhookParseError
from services.validation import (
    FacebookCommentEvent,
    FacebookMessageEvent,
    InstagramCommentEvent,
    extract_events,
    parse_envelope,
)


def _events(payload):
    return extract_events(parse_envelope(json.dumps(payload).encode()))


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"", b'{"entry": []}'])
def test_parse_envelope_rejects_bad_bodies(body):
    with pytest.raises(WebhookParseError):
        parse_envelope(body)


def test_facebook_top_level_comment():
    [event] = _events(facebook_comment_payload(comment_id="c-9", text="<b>AI</b> hello"))

    assert isinstance(event, FacebookCommentEvent)
    interaction = event.to_interaction(is_admin=False)
    assert interaction.id == "c-9"
    assert interaction.post_id == "page-1_post-1"
    assert interaction.text == "AI hello"
    assert interaction.parent_comment_id is None
    assert interaction.account_id == "page-1"
    assert interaction.chat_id == "comment_c-9"
    assert interaction.source_channel == "facebook_comment"


@pytest.mark.parametrize("text,expected", [
    ("How big is your R&D team?", "How big is your R&D team?"),
    ("love it <3", "love it <3"),
    ("a < b & c > d", "a < b & c > d"),
])
def test_comment_text_keeps_plain_text_characters(text, expected):
    [event] = _events(facebook_comment_payload(text=text))
    assert event.to_interaction(is_admin=False).text == expected


def test_facebook_reply_keeps_parent():
    [event] = _events(facebook_comment_payload(comment_id="c-2", parent_id="c-1"))
    assert event.to_interaction(False).parent_comment_id == "c-1"


def test_removed_comments_are_ignored():
    assert _events(facebook_comment_payload(verb="remove")) == []


def test_facebook_message():
    [event] = _events(facebook_message_payload(mid="m-5", sender_id="user-7"))

    assert isinstance(event, FacebookMessageEvent)
    interaction = event.to_interaction(is_admin=True)
    assert interaction.kind == "direct_message"
    assert interaction.chat_id == "user-7"
    assert interaction.user_role == "admin"
    assert interaction.channel == "dm"


def test_echoes_and_receipts_are_ignored():
    payload = facebook_message_payload(is_echo=True)
    payload["entry"][0]["messaging"].append({"sender": {"id": "user-1"}, "delivery": {"mids": ["m-1"]}})
    assert _events(payload) == []


def test_instagram_comment():
    [event] = _events(instagram_comment_payload(comment_id="ig-c-3", parent_id="ig-c-1"))

    assert isinstance(event, InstagramCommentEvent)
    interaction = event.to_interaction(False)
    assert interaction.platform == "instagram"
    assert interaction.post_id == "media-1"
    assert interaction.parent_comment_id == "ig-c-1"
    assert interaction.from_name == "jane"


def test_numeric_ids_are_coerced_to_strings():
    payload = facebook_comment_payload()
    payload["entry"][0]["id"] = 123
    payload["entry"][0]["changes"][0]["value"]["from"]["id"] = 456
    [event] = _events(payload)
    assert event.account_id == "123"
    assert event.sender_id == "456"


def test_malformed_sub_event_does_not_affect_siblings():
    payload = facebook_comment_payload(comment_id="c-ok")
    broken = json.loads(json.dumps(payload["entry"][0]["changes"][0]))
    del broken["value"]["comment_id"]
    payload["entry"][0]["changes"].insert(0, broken)

    events = _events(payload)
    assert [e.event_id for e in events] == ["c-ok"]


def test_unknown_object_is_acknowledged_without_events():
    assert _events({"object": "whatsapp_business_account", "entry": [{"id": "x"}]}) == []


def test_page_envelope_with_messages_and_comments():
    payload = facebook_comment_payload()
    payload["entry"].append(facebook_message_payload()["entry"][0])
    kinds = sorted(e.kind for e in _events(payload))
    assert kinds == ["direct_message", "post_comment"]
