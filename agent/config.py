import os
import sys
import logging
from dotenv import load_dotenv
from supabase import create_client, Client
from langchain_ollama import ChatOllama

load_dotenv()

# ================================
# Logging
# ================================
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("social-reply-agent")

# ================================
# Supabase (Source of Truth)
# ================================
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

supabase: Client | None = (
    create_client(SUPABASE_URL, SUPABASE_KEY) if SUPABASE_URL and SUPABASE_KEY else None
)


def verify_supabase_connection():
    """Test Supabase connectivity on startup. Crashes if unreachable."""
    if supabase is None:
        logger.error("FATAL: SUPABASE_URL and SUPABASE_KEY environment variables are required")
        sys.exit(1)
    try:
        supabase.table("chat_sessions").select("id").limit(1).execute()
        logger.info("Supabase connection verified successfully")
    except Exception as e:
        logger.error(f"FATAL: Supabase connection failed: {e}")
        sys.exit(1)


def validate_schema():
    """Verify the tables the pipeline writes to expose the expected columns.

    A renamed column would otherwise surface as silently dropped replies.
    """
    required = {
        "posts": ["id", "content", "media_url", "media_analysis"],
        "comments": ["id", "post_id", "content", "role", "parent_comment_id", "source_channel"],
        "chat_sessions": ["id", "chat_id", "status", "messages", "channel_type", "user_role"],
        "prompt_configurations": ["is_active", "trigger_mode", "keywords", "nlp_intents",
                                  "system_instructions", "web_search_enabled", "file_search_enabled"],
        "detected_intents": ["input_id", "intents", "confidence"],
        "user_conversations": ["user_id", "conversation_id", "message_type", "content"],
        "profiles": ["id", "fb_uid", "ig_uid"],
    }
    for table, columns in required.items():
        try:
            supabase.table(table).select(",".join(columns)).limit(0).execute()
            logger.info(f"Schema OK: {table}")
        except Exception as e:
            logger.error(f"SCHEMA MISMATCH: {table} — {e}")
            sys.exit(1)

    logger.info("All required schema validations passed")


# ================================
# Ollama LLM (completion + classification)
# ================================
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://ollama:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
OLLAMA_CLASSIFIER_MODEL = os.getenv("OLLAMA_CLASSIFIER_MODEL", OLLAMA_MODEL)

llm = ChatOllama(
    model=OLLAMA_MODEL,
    base_url=OLLAMA_HOST,
    temperature=0.7,
    num_predict=500,
)

classifier_llm = ChatOllama(
    model=OLLAMA_CLASSIFIER_MODEL,
    base_url=OLLAMA_HOST,
    temperature=0.0,  # Deterministic yes/no and JSON answers
    num_predict=200,
)

# ================================
# Security
# ================================
AGENT_API_KEY = os.getenv("AGENT_API_KEY", "")

# ================================
# Facebook / Instagram Graph API
# ================================
GRAPH_API_VERSION = os.getenv("GRAPH_API_VERSION", "v23.0")
GRAPH_API_BASE_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"
GRAPH_API_TIMEOUT_SECONDS = float(os.getenv("GRAPH_API_TIMEOUT_SECONDS", "10"))

FACEBOOK_PAGE_ID = os.getenv("FACEBOOK_PAGE_ID", "")
FACEBOOK_PAGE_ACCESS_TOKEN = os.getenv("FACEBOOK_PAGE_ACCESS_TOKEN", "")
FACEBOOK_VERIFY_TOKEN = os.getenv("FACEBOOK_VERIFY_TOKEN", "")
FACEBOOK_APP_SECRET = os.getenv("FACEBOOK_APP_SECRET", "")

INSTAGRAM_ACCOUNT_ID = os.getenv("INSTAGRAM_ACCOUNT_ID", "")
INSTAGRAM_ACCESS_TOKEN = os.getenv("INSTAGRAM_ACCESS_TOKEN", FACEBOOK_PAGE_ACCESS_TOKEN)
INSTAGRAM_VERIFY_TOKEN = os.getenv("INSTAGRAM_VERIFY_TOKEN", "")
INSTAGRAM_APP_SECRET = os.getenv("INSTAGRAM_APP_SECRET", "")

# ================================
# Supporting Services (media analysis, vector search, web search)
# ================================
FUNCTIONS_BASE_URL = os.getenv(
    "FUNCTIONS_BASE_URL",
    f"{SUPABASE_URL}/functions/v1" if SUPABASE_URL else "http://localhost:54321/functions/v1",
)
VIDEO_ANALYSIS_ENDPOINT = f"{FUNCTIONS_BASE_URL}/analyze-video"
IMAGE_ANALYSIS_ENDPOINT = f"{FUNCTIONS_BASE_URL}/analyze-image"
VECTOR_SEARCH_URL = os.getenv("VECTOR_SEARCH_URL", f"{FUNCTIONS_BASE_URL}/pinecone-search")
SERVICE_TIMEOUT_SECONDS = float(os.getenv("SERVICE_TIMEOUT_SECONDS", "30"))

TAVILY_API_KEY = os.getenv("TAVILY_API_KEY", "")
TAVILY_SEARCH_URL = "https://api.tavily.com/search"
FILE_STORAGE_BUCKET = os.getenv("FILE_STORAGE_BUCKET", "prompt-files")


def function_headers() -> dict:
    """Auth headers for the Supabase edge functions that back the helper services."""
    return {
        "Authorization": f"Bearer {SUPABASE_KEY}",
        "Content-Type": "application/json",
    }


# ================================
# Timeouts & Resilience
# ================================
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.5"))
INTENT_TIMEOUT_SECONDS = float(os.getenv("INTENT_TIMEOUT_SECONDS", "8"))
SEARCH_ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("SEARCH_ANALYSIS_TIMEOUT_SECONDS", "5"))
VECTOR_SEARCH_TIMEOUT_SECONDS = float(os.getenv("VECTOR_SEARCH_TIMEOUT_SECONDS", "5"))
VERIFY_RATE_LIMIT = os.getenv("VERIFY_RATE_LIMIT", "30/minute")

# ================================
# Pipeline Behavior
# ================================
ADMIN_REQUIRE_ROLE_CLAIM = os.getenv("ADMIN_REQUIRE_ROLE_CLAIM", "false").lower() == "true"
NLP_TRIGGER_THRESHOLD = float(os.getenv("NLP_TRIGGER_THRESHOLD", "0.2"))
MEMORY_CONTEXT_LIMIT = int(os.getenv("MEMORY_CONTEXT_LIMIT", "5"))
THREAD_CONTEXT_LIMIT = int(os.getenv("THREAD_CONTEXT_LIMIT", "10"))
POST_SEARCH_MIN_SCORE = float(os.getenv("POST_SEARCH_MIN_SCORE", "0.7"))
MAX_REPLY_LENGTH = int(os.getenv("MAX_REPLY_LENGTH", "900"))
MAX_MESSAGE_LENGTH = 4000
MAX_SESSION_MESSAGES = 50

# ================================
# Stale Session Monitor (Scheduler)
# ================================
STALE_SESSION_MONITOR_ENABLED = os.getenv("STALE_SESSION_MONITOR_ENABLED", "true").lower() == "true"
STALE_SESSION_MONITOR_INTERVAL_MINUTES = int(os.getenv("STALE_SESSION_MONITOR_INTERVAL_MINUTES", "10"))
STALE_SESSION_AFTER_MINUTES = int(os.getenv("STALE_SESSION_AFTER_MINUTES", "15"))

# ================================
# Redis + Rate Limiter (shared instance; import in routes for @limiter.limit())
# ================================
from slowapi import Limiter
from slowapi.util import get_remote_address as _get_remote_address

REDIS_ENABLED = os.getenv("REDIS_ENABLED", "true").lower() == "true"
REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
RATE_LIMIT_STORAGE_URI = os.getenv(
    "RATE_LIMIT_STORAGE_URI",
    f"redis://{REDIS_HOST}:{REDIS_PORT}" if REDIS_ENABLED else "memory://",
)

limiter = Limiter(
    key_func=_get_remote_address,
    storage_uri=RATE_LIMIT_STORAGE_URI,
    default_limits=["120/minute"],
)
