"""
Supabase Service Layer
======================
Handles all Supabase reads (configuration, profiles, posts, sessions, memory)
and writes (comments, sessions, detected intents, memory).
Tables: posts, comments, chat_sessions, prompt_configurations,
detected_intents, user_conversations, profiles.

Features:
  - Retry with exponential backoff (shared tenacity policy)
  - Circuit breaker (pybreaker): fail fast when DB is down
  - Two-tier caching for admin lookups: L1 in-memory (cachetools) + L2 Redis
  - Graceful fallback when Redis is unavailable

Reads degrade to empty defaults. Writes that guard idempotency or the audit
trail raise so the pipeline can stop the interaction.
"""

import json
from datetime import datetime, timezone, timedelta
from typing import Optional

import redis
from cachetools import TTLCache
from pybreaker import CircuitBreaker, CircuitBreakerError
from pydantic import ValidationError

from config import (
    supabase,
    logger,
    ADMIN_REQUIRE_ROLE_CLAIM,
    MAX_SESSION_MESSAGES,
    REDIS_ENABLED,
    REDIS_HOST,
    REDIS_PORT,
)
from routes.metrics import DB_QUERY_COUNT, CACHE_HITS, CACHE_MISSES
from services.errors import AuditWriteError
from services.models import Post, PromptConfiguration
from services.retry import with_backoff


# ================================
# In-Memory L1 Cache (cachetools)
# ================================
# Admin status is read on every event; profiles change rarely
_admin_cache: TTLCache = TTLCache(maxsize=500, ttl=60)


# ================================
# Redis Cache (distributed)
# ================================
_redis = None
_redis_available = False

if REDIS_ENABLED:
    try:
        _redis = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True, socket_timeout=2)
        _redis.ping()
        _redis_available = True
        logger.info(f"Redis connected at {REDIS_HOST}:{REDIS_PORT}")
    except Exception:
        _redis = None
        logger.warning("Redis unavailable — caching disabled, queries go direct to Supabase")


def _cache_get(key: str):
    """Get value from Redis cache. Returns None on miss or Redis failure."""
    if not _redis_available:
        return None
    try:
        cached = _redis.get(key)
        return json.loads(cached) if cached else None
    except Exception:
        return None


def _cache_set(key: str, data, ttl: int = 60):
    """Set value in Redis cache. Failures only cost a cache miss later."""
    if not _redis_available:
        return
    try:
        _redis.setex(key, ttl, json.dumps(data, default=str))
    except Exception as e:
        logger.debug(f"Redis cache set failed for {key} (non-critical): {e}")


# ================================
# Circuit Breaker + Retry
# ================================
db_breaker = CircuitBreaker(fail_max=5, reset_timeout=30)


@db_breaker
@with_backoff(max_attempts=3, base_delay=0.5, max_delay=4)
def _execute_query(query, table: str = "unknown", operation: str = "select"):
    """Execute a Supabase query with retry + circuit breaker.

    - Transient failures retried (3 attempts, exponential backoff)
    - Circuit breaker opens after 5 consecutive failures, fails fast for 30s
    - Tracks DB query metrics
    """
    DB_QUERY_COUNT.labels(table=table, operation=operation).inc()
    return query.execute()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_redis_healthy() -> bool:
    """Check Redis connectivity for health endpoint."""
    if not _redis:
        return False
    try:
        return _redis.ping()
    except Exception:
        return False


# ================================
# Supabase Service
# ================================
class SupabaseService:
    """Table access for the interaction pipeline.

    Schema as used here:
      - prompt_configurations: is_active, trigger_mode, keywords, nlp_intents,
        system_instructions, business_name, details, web/file search flags, file_references
      - profiles: fb_uid, ig_uid, role
      - posts: id, content, media_url, media_analysis (jsonb cache)
      - comments: id (platform id, PK), post_id, content, role, parent_comment_id, source_channel
      - chat_sessions: chat_id (unique), status, messages (jsonb), channel_type, user_role
      - detected_intents: input_id, intents, confidence
      - user_conversations: user_id, conversation_id, message_type, content, context, tools_used
    """

    # --------------------------------------------------
    # READ: Active Prompt Configuration
    # --------------------------------------------------
    @staticmethod
    def get_active_prompt_configuration() -> Optional[PromptConfiguration]:
        """Fetch the single active configuration row, or None.

        Not cached: each interaction reads its own snapshot.
        """
        if not supabase:
            return None

        try:
            result = _execute_query(
                supabase.table("prompt_configurations")
                .select("*")
                .eq("is_active", True)
                .limit(1),
                table="prompt_configurations",
                operation="select",
            )
            if not result.data:
                return None
            return PromptConfiguration.model_validate(result.data[0])

        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — using default trigger rules")
            return None
        except ValidationError as e:
            logger.error(f"Active prompt configuration is malformed — using defaults: {e}")
            return None
        except Exception as e:
            logger.warning(f"Failed to fetch active prompt configuration: {e}")
            return None

    # --------------------------------------------------
    # READ: Admin Profile
    # --------------------------------------------------
    @staticmethod
    def get_profile_by_platform_id(platform: str, user_id: str) -> Optional[dict]:
        """Find the profile linked to a platform user id (fb_uid / ig_uid).

        Caching: L1 in-memory (60s TTL) -> L2 Redis (60s TTL) -> Supabase.
        A miss is cached as {} so unknown commenters do not hit the DB each time.
        """
        if not supabase or not user_id:
            return None

        column = "ig_uid" if platform == "instagram" else "fb_uid"
        cache_key = f"profile:{column}:{user_id}"

        if cache_key in _admin_cache:
            CACHE_HITS.labels(key_type="profile_l1").inc()
            return _admin_cache[cache_key] or None

        cached = _cache_get(cache_key)
        if cached is not None:
            CACHE_HITS.labels(key_type="profile_l2").inc()
            _admin_cache[cache_key] = cached
            return cached or None

        CACHE_MISSES.labels(key_type="profile").inc()

        try:
            result = _execute_query(
                supabase.table("profiles")
                .select("id, role")
                .eq(column, user_id)
                .limit(1),
                table="profiles",
                operation="select",
            )
            profile = result.data[0] if result.data else {}
            _admin_cache[cache_key] = profile
            _cache_set(cache_key, profile, ttl=60)
            return profile or None

        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — treating sender as non-admin")
            return None
        except Exception as e:
            logger.warning(f"Failed to look up profile for {column}={user_id}: {e}")
            return None

    @staticmethod
    def is_admin(platform: str, user_id: str) -> bool:
        """A sender is admin iff a profile is linked to their platform id.

        With ADMIN_REQUIRE_ROLE_CLAIM the profile must also carry role == "admin".
        """
        profile = SupabaseService.get_profile_by_platform_id(platform, user_id)
        if not profile:
            return False
        if ADMIN_REQUIRE_ROLE_CLAIM:
            return profile.get("role") == "admin"
        return True

    # --------------------------------------------------
    # READ/WRITE: Posts
    # --------------------------------------------------
    @staticmethod
    def get_post(post_id: str) -> Optional[Post]:
        """Fetch the local post row used for content and media analysis."""
        if not supabase or not post_id:
            return None

        try:
            result = _execute_query(
                supabase.table("posts")
                .select("id, content, media_url, media_analysis, platform")
                .eq("id", post_id)
                .limit(1),
                table="posts",
                operation="select",
            )
            if not result.data:
                return None
            return Post.model_validate(result.data[0])

        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — skipping post fetch")
            return None
        except Exception as e:
            logger.warning(f"Failed to fetch post {post_id}: {e}")
            return None

    @staticmethod
    def update_post_media_analysis(post_id: str, analysis) -> bool:
        """Back-fill the media analysis cache on a post row."""
        if not supabase or not post_id:
            return False

        try:
            _execute_query(
                supabase.table("posts")
                .update({"media_analysis": analysis, "updated_at": _now()})
                .eq("id", post_id),
                table="posts",
                operation="update",
            )
            return True

        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — media analysis not cached")
            return False
        except Exception as e:
            logger.warning(f"Failed to cache media analysis for post {post_id}: {e}")
            return False

    # --------------------------------------------------
    # WRITE: Comments (idempotency boundary)
    # --------------------------------------------------
    @staticmethod
    def insert_comment_if_absent(row: dict) -> bool:
        """Insert a comment keyed by its platform id. Returns False if it already existed.

        ignore_duplicates makes PostgREST return only rows it actually inserted,
        so two concurrent deliveries of one comment get exactly one True.
        Raises on DB failure.
        """
        result = _execute_query(
            supabase.table("comments").upsert(
                {**row, "created_at": row.get("created_at") or _now()},
                on_conflict="id",
                ignore_duplicates=True,
            ),
            table="comments",
            operation="upsert",
        )
        return bool(result.data)

    # --------------------------------------------------
    # READ/WRITE: Chat Sessions
    # --------------------------------------------------
    @staticmethod
    def get_chat_session(chat_id: str) -> Optional[dict]:
        if not supabase or not chat_id:
            return None
        try:
            result = _execute_query(
                supabase.table("chat_sessions")
                .select("id, chat_id, status, messages, channel_type, user_role")
                .eq("chat_id", chat_id)
                .limit(1),
                table="chat_sessions",
                operation="select",
            )
            return result.data[0] if result.data else None
        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — skipping chat session fetch")
            return None
        except Exception as e:
            logger.warning(f"Failed to fetch chat session {chat_id}: {e}")
            return None

    @staticmethod
    def upsert_chat_session(row: dict) -> dict:
        """Create or refresh a session keyed by chat_id. Raises on DB failure."""
        result = _execute_query(
            supabase.table("chat_sessions").upsert(
                {**row, "updated_at": _now()},
                on_conflict="chat_id",
            ),
            table="chat_sessions",
            operation="upsert",
        )
        return result.data[0] if result.data else dict(row)

    @staticmethod
    def update_chat_session(chat_id: str, fields: dict) -> bool:
        """Update a session by chat_id. Raises on DB failure."""
        result = _execute_query(
            supabase.table("chat_sessions")
            .update({**fields, "updated_at": _now()})
            .eq("chat_id", chat_id),
            table="chat_sessions",
            operation="update",
        )
        return bool(result.data)

    @staticmethod
    def get_stale_sessions(older_than_minutes: int, limit: int = 100) -> list:
        """Sessions still in processing whose last update is older than the window."""
        if not supabase:
            return []

        cutoff = (datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)).isoformat()
        try:
            result = _execute_query(
                supabase.table("chat_sessions")
                .select("id, chat_id, channel_type, user_role, updated_at")
                .eq("status", "processing")
                .lt("updated_at", cutoff)
                .order("updated_at")
                .limit(limit),
                table="chat_sessions",
                operation="select",
            )
            return result.data or []
        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — skipping stale session scan")
            return []
        except Exception as e:
            logger.warning(f"Failed to scan for stale sessions: {e}")
            return []

    # --------------------------------------------------
    # WRITE: Detected Intents (audit trail)
    # --------------------------------------------------
    @staticmethod
    def record_detected_intents(input_id: str, intents: list, confidence: dict) -> None:
        """Append one detected_intents row. Raises AuditWriteError on failure."""
        if not supabase:
            raise AuditWriteError("Supabase not connected — cannot record detected intents")

        try:
            _execute_query(
                supabase.table("detected_intents").insert({
                    "input_id": input_id,
                    "intents": list(intents),
                    "confidence": dict(confidence),
                    "created_at": _now(),
                }),
                table="detected_intents",
                operation="insert",
            )
        except CircuitBreakerError as e:
            raise AuditWriteError("Circuit breaker OPEN — detected intents not recorded") from e
        except Exception as e:
            raise AuditWriteError(f"Failed to record detected intents for {input_id}: {e}") from e

    # --------------------------------------------------
    # READ/WRITE: Per-user Conversation Memory
    # --------------------------------------------------
    @staticmethod
    def get_recent_memories(user_id: str, limit: int = 5) -> list:
        """Most recent memory rows for a user, newest first."""
        if not supabase or not user_id:
            return []

        try:
            result = _execute_query(
                supabase.table("user_conversations")
                .select("message_type, content, created_at")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(limit),
                table="user_conversations",
                operation="select",
            )
            return result.data or []
        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — generating without memory")
            return []
        except Exception as e:
            logger.warning(f"Failed to fetch memory for {user_id}: {e}")
            return []

    @staticmethod
    def store_memories(rows: list) -> bool:
        """Append memory rows. Best effort: the reply has already been delivered."""
        if not supabase or not rows:
            return False

        try:
            now = _now()
            _execute_query(
                supabase.table("user_conversations").insert(
                    [{**row, "created_at": row.get("created_at") or now} for row in rows]
                ),
                table="user_conversations",
                operation="insert",
            )
            return True
        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN — memory not stored")
            return False
        except Exception as e:
            logger.warning(f"Failed to store conversation memory: {e}")
            return False


def trim_messages(messages: list) -> list:
    """Keep the session message log bounded."""
    return messages[-MAX_SESSION_MESSAGES:]
