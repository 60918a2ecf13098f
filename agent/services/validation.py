import html
import json
from typing import Literal, Optional, Union

import bleach
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import logger, MAX_MESSAGE_LENGTH
from services.errors import WebhookParseError
from services.models import InboundInteraction


# ================================
# Sanitization Helpers
# ================================
def _sanitize_text(value: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Strip all HTML tags, trim and cap length.

    Message bodies are plain text, so bleach's entity escaping is undone:
    "R&D" and "<3" reach keyword matching and storage as the sender typed them.
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        return str(value)[:max_length]
    cleaned = html.unescape(bleach.clean(value, tags=[], strip=True))
    return cleaned.strip()[:max_length]


class _WebhookModel(BaseModel):
    # Meta sends ids as strings but test tools and older payloads use numbers
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True)


# ================================
# Meta Webhook Payload Models
# ================================
class Party(_WebhookModel):
    id: str = ""
    name: Optional[str] = None
    username: Optional[str] = None


class MessagePayload(_WebhookModel):
    mid: str
    text: str = ""
    is_echo: bool = False

    @field_validator("text", mode="before")
    @classmethod
    def sanitize_text(cls, v):
        return _sanitize_text(v)


class MessagingItem(_WebhookModel):
    """One entry[].messaging item (Messenger)."""
    sender: Party
    recipient: Party = Field(default_factory=Party)
    timestamp: Optional[int] = None
    message: Optional[MessagePayload] = None


class FacebookCommentValue(_WebhookModel):
    """changes[].value for field == "feed", item == "comment"."""
    item: str
    verb: str = "add"
    comment_id: str
    post_id: str
    parent_id: Optional[str] = None
    message: str = ""
    sender: Party = Field(default_factory=Party, alias="from")
    created_time: Optional[int] = None

    @field_validator("message", mode="before")
    @classmethod
    def sanitize_text(cls, v):
        return _sanitize_text(v)


class InstagramMedia(_WebhookModel):
    id: str
    media_product_type: Optional[str] = None


class InstagramCommentValue(_WebhookModel):
    """changes[].value for field == "comments"."""
    id: str
    text: str = ""
    sender: Party = Field(default_factory=Party, alias="from")
    media: Optional[InstagramMedia] = None
    parent_id: Optional[str] = None

    @field_validator("text", mode="before")
    @classmethod
    def sanitize_text(cls, v):
        return _sanitize_text(v)


class ChangeItem(_WebhookModel):
    field: str
    value: dict = {}


class WebhookEntry(_WebhookModel):
    id: str = ""
    time: Optional[int] = None
    messaging: list[dict] = []
    changes: list[ChangeItem] = []


class WebhookEnvelope(_WebhookModel):
    object: str
    entry: list[WebhookEntry] = []


# ================================
# Tagged Union: {platform} x {kind}
# ================================
class FacebookMessageEvent(_WebhookModel):
    platform: Literal["facebook"] = "facebook"
    kind: Literal["direct_message"] = "direct_message"
    account_id: str = ""
    payload: MessagingItem

    @property
    def event_id(self) -> str:
        return self.payload.message.mid if self.payload.message else ""

    @property
    def sender_id(self) -> str:
        return self.payload.sender.id

    def to_interaction(self, is_admin: bool) -> InboundInteraction:
        message = self.payload.message
        return InboundInteraction(
            id=message.mid,
            post_id="",
            from_id=self.payload.sender.id,
            text=message.text,
            is_admin=is_admin,
            platform="facebook",
            kind="direct_message",
            account_id=self.payload.recipient.id or self.account_id,
        )


class FacebookCommentEvent(_WebhookModel):
    platform: Literal["facebook"] = "facebook"
    kind: Literal["post_comment"] = "post_comment"
    account_id: str = ""
    payload: FacebookCommentValue

    @property
    def event_id(self) -> str:
        return self.payload.comment_id

    @property
    def sender_id(self) -> str:
        return self.payload.sender.id

    def to_interaction(self, is_admin: bool) -> InboundInteraction:
        value = self.payload
        # Facebook reports top-level comments with parent_id == post_id
        parent = value.parent_id if value.parent_id and value.parent_id != value.post_id else None
        return InboundInteraction(
            id=value.comment_id,
            post_id=value.post_id,
            from_id=value.sender.id,
            text=value.message,
            is_admin=is_admin,
            platform="facebook",
            kind="post_comment",
            account_id=self.account_id,
            parent_comment_id=parent,
            from_name=value.sender.name,
        )


class InstagramCommentEvent(_WebhookModel):
    platform: Literal["instagram"] = "instagram"
    kind: Literal["post_comment"] = "post_comment"
    account_id: str = ""
    payload: InstagramCommentValue

    @property
    def event_id(self) -> str:
        return self.payload.id

    @property
    def sender_id(self) -> str:
        return self.payload.sender.id

    def to_interaction(self, is_admin: bool) -> InboundInteraction:
        value = self.payload
        return InboundInteraction(
            id=value.id,
            post_id=value.media.id if value.media else "",
            from_id=value.sender.id,
            text=value.text,
            is_admin=is_admin,
            platform="instagram",
            kind="post_comment",
            account_id=self.account_id,
            parent_comment_id=value.parent_id,
            from_name=value.sender.username,
        )


FacebookPageEvent = Union[FacebookMessageEvent, FacebookCommentEvent]
InstagramEvent = InstagramCommentEvent
WebhookEvent = Union[FacebookPageEvent, InstagramEvent]


# ================================
# Boundary parsing
# ================================
def parse_envelope(body: bytes) -> WebhookEnvelope:
    """Validate the raw POST body. Raises WebhookParseError."""
    try:
        raw = json.loads(body or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise WebhookParseError(f"Body is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise WebhookParseError("Body must be a JSON object")
    try:
        return WebhookEnvelope.model_validate(raw)
    except ValidationError as e:
        raise WebhookParseError(f"Invalid webhook envelope: {e.errors()}") from e


def extract_events(envelope: WebhookEnvelope) -> list[WebhookEvent]:
    """Flatten an envelope into typed sub-events.

    page:      entry[].messaging (messages, not echoes) and
               entry[].changes with field == "feed" and value.item == "comment"
    instagram: entry[].changes with field == "comments"

    A sub-event that does not validate is logged and skipped; siblings
    are unaffected.
    """
    events: list[WebhookEvent] = []

    for entry in envelope.entry:
        if envelope.object == "page":
            for item in entry.messaging:
                try:
                    messaging = MessagingItem.model_validate(item)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed messaging event in entry {entry.id}: {e.errors()}")
                    continue
                if messaging.message is None or messaging.message.is_echo:
                    # delivery/read receipts and our own outbound echoes
                    continue
                events.append(FacebookMessageEvent(account_id=entry.id, payload=messaging))

            for change in entry.changes:
                if change.field != "feed" or change.value.get("item") != "comment":
                    continue
                if change.value.get("verb") == "remove":
                    continue
                try:
                    value = FacebookCommentValue.model_validate(change.value)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed feed comment in entry {entry.id}: {e.errors()}")
                    continue
                events.append(FacebookCommentEvent(account_id=entry.id, payload=value))

        elif envelope.object == "instagram":
            for change in entry.changes:
                if change.field != "comments":
                    continue
                try:
                    value = InstagramCommentValue.model_validate(change.value)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed Instagram comment in entry {entry.id}: {e.errors()}")
                    continue
                events.append(InstagramCommentEvent(account_id=entry.id, payload=value))

    return events
