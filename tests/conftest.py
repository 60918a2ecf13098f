import os

# Settings are read at import time; pin them before anything imports config.
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("STALE_SESSION_MONITOR_ENABLED", "false")
os.environ.setdefault("FACEBOOK_PAGE_ID", "page-1")
os.environ.setdefault("INSTAGRAM_ACCOUNT_ID", "ig-1")
os.environ.setdefault("FACEBOOK_VERIFY_TOKEN", "fb-verify")
os.environ.setdefault("INSTAGRAM_VERIFY_TOKEN", "ig-verify")
os.environ.setdefault("FACEBOOK_PAGE_ACCESS_TOKEN", "fb-token")
os.environ.setdefault("FACEBOOK_APP_SECRET", "")
os.environ.setdefault("INSTAGRAM_APP_SECRET", "")
os.environ.setdefault("AGENT_API_KEY", "")
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_KEY"] = ""

import uuid
from collections import defaultdict

import pytest

from services import dedup_service, graph_client, supabase_service
from services.errors import GenerationError, PlatformAPIError
from services.llm_service import LLMService
from services.media_service import MediaAnalysisService
from services.search_service import VectorSearchClient


# ================================
# In-memory Supabase
# ================================
class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Just enough of the supabase-py query builder for SupabaseService."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.on_conflict = "id"
        self.ignore_duplicates = False
        self._order = None
        self._limit = None

    def select(self, *columns, **kwargs):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict="id", ignore_duplicates=False):
        self.op, self.payload = "upsert", payload
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _matching(self) -> list:
        return [r for r in self.db.tables[self.table] if all(f(r) for f in self.filters)]

    def execute(self):
        if (self.table, self.op) in self.db.fail_on:
            raise RuntimeError(f"{self.table}.{self.op} unavailable")

        rows = self.db.tables[self.table]

        if self.op == "select":
            found = self._matching()
            if self._order:
                column, desc = self._order
                found.sort(key=lambda r: r.get(column) or "", reverse=desc)
            if self._limit is not None:
                found = found[: self._limit]
            return FakeResponse([dict(r) for r in found])

        payload = self.payload if isinstance(self.payload, list) else [self.payload]

        if self.op == "insert":
            inserted = []
            for item in payload:
                row = {"id": str(uuid.uuid4()), **item}
                rows.append(row)
                inserted.append(dict(row))
            return FakeResponse(inserted)

        if self.op == "upsert":
            written = []
            for item in payload:
                key = item.get(self.on_conflict)
                existing = next((r for r in rows if r.get(self.on_conflict) == key), None)
                if existing is not None:
                    if self.ignore_duplicates:
                        continue
                    existing.update(item)
                    written.append(dict(existing))
                else:
                    row = {"id": str(uuid.uuid4()), **item}
                    rows.append(row)
                    written.append(dict(row))
            return FakeResponse(written)

        if self.op == "update":
            updated = []
            for row in self._matching():
                row.update(self.payload)
                updated.append(dict(row))
            return FakeResponse(updated)

        raise AssertionError(f"unsupported operation {self.op}")


class FakeSupabase:
    def __init__(self):
        self.tables = defaultdict(list)
        self.fail_on = set()  # {(table, op)}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list:
        return self.tables[name]


@pytest.fixture
def db(monkeypatch):
    fake = FakeSupabase()
    monkeypatch.setattr(supabase_service, "supabase", fake)
    supabase_service._admin_cache.clear()
    supabase_service.db_breaker.close()
    return fake


# ================================
# Graph API
# ================================
class FakeGraphClient:
    def __init__(self, platform: str):
        self.platform = platform
        self.post_text = ""
        self.parent_id = None
        self.comments = {}
        self.thread = []
        self.replies = []
        self.fallbacks = []
        self.messages = []
        self.reject_replies = False
        self.reject_fallback = False
        self.reject_messages = False
        self.post_fetches = []

    def get_post_text(self, post_id):
        self.post_fetches.append(post_id)
        return self.post_text

    def get_comment_parent_id(self, comment_id):
        return self.parent_id

    def get_comment(self, comment_id):
        return self.comments.get(comment_id, {"id": comment_id, "text": "", "author": "unknown"})

    def get_replies(self, comment_id, limit=10):
        return list(self.thread)

    def reply_to_comment(self, comment_id, text):
        if self.reject_replies:
            raise PlatformAPIError("(#100) Replies are not allowed", status_code=400, error_code=100)
        self.replies.append((comment_id, text))
        return f"reply-{len(self.replies)}"

    def reply_fallback(self, comment_id, post_id, text):
        if self.reject_fallback:
            raise PlatformAPIError("(#200) Permissions error", status_code=403, error_code=200)
        self.fallbacks.append((post_id, text))
        return f"fallback-{len(self.fallbacks)}"

    def send_message(self, recipient_id, text):
        if self.reject_messages:
            raise PlatformAPIError("(#10) Outside of allowed window", status_code=400, error_code=10)
        self.messages.append((recipient_id, text))
        return f"m-out-{len(self.messages)}"


@pytest.fixture
def platform(monkeypatch):
    clients = {"facebook": FakeGraphClient("facebook"), "instagram": FakeGraphClient("instagram")}
    monkeypatch.setattr(graph_client, "get_client", lambda name: clients[name])
    return clients


# ================================
# Completion service
# ================================
class FakeLLM:
    def __init__(self):
        self.reply = "Thanks for reaching out!"
        self.classification = '{"intents": [], "confidence": {}}'
        self.fail = False
        self.classify_error = None
        self.prompts = []
        self.classify_prompts = []

    def complete(self, system_prompt, user_message):
        self.prompts.append((system_prompt, user_message))
        if self.fail:
            raise GenerationError("Ollama unreachable")
        return self.reply

    def classify(self, system_prompt, user_message):
        self.classify_prompts.append(system_prompt)
        if self.classify_error is not None:
            raise self.classify_error
        return self.classification


@pytest.fixture
def llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(LLMService, "complete", fake.complete)
    monkeypatch.setattr(LLMService, "classify", fake.classify)
    return fake


@pytest.fixture(autouse=True)
def fresh_delivery_claims():
    dedup_service._claimed.clear()
    yield
    dedup_service._claimed.clear()


@pytest.fixture(autouse=True)
def no_external_services(monkeypatch):
    """Vector index and media analysis never leave the process in tests."""
    monkeypatch.setattr(VectorSearchClient, "index_post", lambda *args: None)
    monkeypatch.setattr(VectorSearchClient, "search_posts", lambda *args, **kwargs: [])
    monkeypatch.setattr(MediaAnalysisService, "analyze", lambda *args: None)


# ================================
# Payload builders
# ================================
def facebook_comment_payload(comment_id="c-1", text="AI what's the weather", from_id="user-1",
                             post_id="page-1_post-1", parent_id=None, verb="add"):
    return {
        "object": "page",
        "entry": [{
            "id": "page-1",
            "time": 1700000000,
            "changes": [{
                "field": "feed",
                "value": {
                    "item": "comment",
                    "verb": verb,
                    "comment_id": comment_id,
                    "post_id": post_id,
                    "parent_id": parent_id or post_id,
                    "message": text,
                    "from": {"id": from_id, "name": "Jane Doe"},
                    "created_time": 1700000000,
                },
            }],
        }],
    }


def facebook_message_payload(mid="m-1", text="hello there", sender_id="user-1", is_echo=False):
    return {
        "object": "page",
        "entry": [{
            "id": "page-1",
            "time": 1700000000,
            "messaging": [{
                "sender": {"id": sender_id},
                "recipient": {"id": "page-1"},
                "timestamp": 1700000000,
                "message": {"mid": mid, "text": text, "is_echo": is_echo},
            }],
        }],
    }


def instagram_comment_payload(comment_id="ig-c-1", text="AI how much is this", from_id="ig-user-1",
                              media_id="media-1", parent_id=None):
    value = {
        "id": comment_id,
        "text": text,
        "from": {"id": from_id, "username": "jane"},
        "media": {"id": media_id, "media_product_type": "FEED"},
    }
    if parent_id:
        value["parent_id"] = parent_id
    return {
        "object": "instagram",
        "entry": [{"id": "ig-1", "time": 1700000000, "changes": [{"field": "comments", "value": value}]}],
    }
