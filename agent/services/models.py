"""
Domain Models
=============
Typed records passed between pipeline stages.

Rows read from Supabase are validated with pydantic (the store is loosely
typed: NULL lists, JSON strings, missing columns). Values produced inside the
pipeline are frozen dataclasses and never mutated after construction.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from pydantic import BaseModel, field_validator

Platform = Literal["facebook", "instagram"]
InteractionKind = Literal["direct_message", "post_comment"]


# ================================
# Store rows
# ================================
class PromptConfiguration(BaseModel):
    """The active row of prompt_configurations."""
    business_name: str = ""
    details: str = ""
    system_instructions: str = ""
    trigger_mode: Literal["keyword", "nlp"] = "keyword"
    keywords: list[str] = []
    nlp_intents: list[str] = []
    web_search_enabled: bool = False
    file_search_enabled: bool = False
    file_references: list[dict] = []
    custom_tools: list[Any] = []

    @field_validator("business_name", "details", "system_instructions", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or ""

    @field_validator("trigger_mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        mode = (v or "keyword").strip().lower()
        return mode if mode in ("keyword", "nlp") else "keyword"

    @field_validator("web_search_enabled", "file_search_enabled", mode="before")
    @classmethod
    def none_to_false(cls, v):
        return bool(v)

    @field_validator("keywords", "nlp_intents", mode="before")
    @classmethod
    def clean_terms(cls, v):
        if not v:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return [str(t).strip() for t in v if str(t).strip()]

    @field_validator("file_references", "custom_tools", mode="before")
    @classmethod
    def decode_json_list(cls, v):
        if not v:
            return []
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except json.JSONDecodeError:
                return []
        return v if isinstance(v, list) else []


class Post(BaseModel):
    """A row of posts, as far as the pipeline reads it."""
    id: str
    content: str = ""
    media_url: Optional[str] = None
    media_analysis: Any = None
    platform: str = "facebook"

    @field_validator("content", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or ""

    @property
    def has_cached_analysis(self) -> bool:
        """Non-empty media_analysis is a cache hit; '{}' and blanks are not."""
        value = self.media_analysis
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip() not in ("", "{}", "null")
        return bool(value)

    def cached_analysis_text(self) -> str:
        """Render the cached analysis for a prompt (its summary when present)."""
        value = self.media_analysis
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return value
        if isinstance(value, dict) and value.get("summary"):
            return str(value["summary"])
        return value if isinstance(value, str) else json.dumps(value)


# ================================
# Pipeline values
# ================================
@dataclass(frozen=True)
class InboundInteraction:
    """Normalized inbound comment or direct message."""
    id: str
    post_id: str
    from_id: str
    text: str
    is_admin: bool
    platform: Platform
    kind: InteractionKind
    account_id: str = ""
    parent_comment_id: Optional[str] = None
    from_name: Optional[str] = None

    @property
    def is_comment(self) -> bool:
        return self.kind == "post_comment"

    @property
    def channel(self) -> str:
        return "comment" if self.is_comment else "dm"

    @property
    def user_role(self) -> str:
        return "admin" if self.is_admin else "follower"

    @property
    def chat_id(self) -> str:
        """Conversation key: one session per comment thread, one per DM sender."""
        return f"comment_{self.id}" if self.is_comment else self.from_id

    @property
    def source_channel(self) -> str:
        return f"{self.platform}_{'comment' if self.is_comment else 'message'}"


@dataclass(frozen=True)
class TriggerDecision:
    should_trigger: bool
    reason: str


@dataclass(frozen=True)
class IntentResult:
    intents: tuple[str, ...] = ()
    confidence: dict[str, float] = field(default_factory=dict)
    failed: bool = False  # classifier errored or timed out; no answer at all

    @property
    def is_empty(self) -> bool:
        return not self.intents


@dataclass(frozen=True)
class RouteDecision:
    mode: Literal["single", "merge"]
    intents: tuple[str, ...] = ()


@dataclass(frozen=True)
class ThreadContext:
    parent_id: Optional[str] = None
    parent_text: str = ""
    parent_author: str = ""
    messages: tuple[str, ...] = ()


@dataclass(frozen=True)
class InteractionContext:
    """Everything the generator needs besides the message itself."""
    post_content: str = ""
    media_analysis: str = ""
    thread: ThreadContext = field(default_factory=ThreadContext)
    contextual_instructions: str = ""


@dataclass(frozen=True)
class GenerationRequest:
    message: str
    sender_id: str
    session_id: Optional[str]
    channel: str
    post_content: str = ""
    contextual_instructions: str = ""
    route: RouteDecision = field(default_factory=lambda: RouteDecision(mode="single"))


@dataclass(frozen=True)
class GenerationResult:
    text: str
    conversation_id: str
    tools_used: tuple[str, ...] = ()


@dataclass(frozen=True)
class PipelineOutcome:
    """Typed result of one interaction pipeline run."""
    status: Literal[
        "ignored_self",
        "ignored_empty",
        "duplicate",
        "not_triggered",
        "replied",
        "generation_failed",
        "post_back_failed",
        "failed",
    ]
    interaction_id: str = ""
    reply_id: Optional[str] = None
    detail: str = ""
