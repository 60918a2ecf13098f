"""
Search Services
===============
Augmentation sources for the response generator.

  - VectorSearchClient: the vector-search function (index_post, search_posts,
    index_files, search)
  - WebSearchClient: Tavily web search for questions about current events
  - FileSearchService: the business's reference files, via vector search
    first and local keyword relevance as fallback

Every call here is optional context. Failures are logged and come back as
empty results.
"""

import re
from typing import Optional

import httpx

from config import (
    supabase,
    logger,
    VECTOR_SEARCH_URL,
    TAVILY_API_KEY,
    TAVILY_SEARCH_URL,
    FILE_STORAGE_BUCKET,
)
from services.http_client import post_json, get_text

FILE_TYPES = {"upload", "google_docs", "google_sheets"}
FILE_RESULT_LIMIT = 3
FILE_CONTENT_CHARS = 1000


# ================================
# Vector Search
# ================================
class VectorSearchClient:
    """Opaque vector index keyed by post id / file name."""

    @staticmethod
    def _call(action: str, **payload) -> dict:
        return post_json(VECTOR_SEARCH_URL, {"action": action, **payload})

    @staticmethod
    def index_post(post_id: str, content: str, platform: str) -> None:
        """Index post content. Raises: meant to run as a background task."""
        VectorSearchClient._call("index_post", postId=post_id, content=content, platform=platform)
        logger.debug(f"Indexed post {post_id} for semantic search")

    @staticmethod
    def search_posts(query: str, top_k: int = 3) -> list[dict]:
        """Posts semantically close to the query: [{"id", "content", "score"}]."""
        try:
            data = VectorSearchClient._call("search_posts", query=query, topK=top_k)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Vector post search failed: {e}")
            return []
        return [
            {"id": r.get("id", ""), "content": r.get("content", ""), "score": float(r.get("score", 0) or 0)}
            for r in data.get("results", [])
        ]

    @staticmethod
    def index_files(file_references: list[dict]) -> dict:
        """Push file references to the index. Raises on failure (operator call)."""
        return VectorSearchClient._call("index_files", files=file_references)

    @staticmethod
    def search(query: str, top_k: int = FILE_RESULT_LIMIT) -> list[dict]:
        """Indexed file chunks close to the query: [{"name", "content", "score"}]."""
        try:
            data = VectorSearchClient._call("search", query=query, topK=top_k)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Vector file search failed: {e}")
            return []
        return [
            {
                "name": r.get("name") or r.get("id", "file"),
                "content": (r.get("content") or "")[:FILE_CONTENT_CHARS],
                "score": float(r.get("score", 0) or 0),
            }
            for r in data.get("results", [])
        ]


# ================================
# Web Search (Tavily)
# ================================
class WebSearchClient:

    @staticmethod
    def search(query: str) -> Optional[dict]:
        """Returns {"answer", "results": [{"title", "url", "content"}]} or None."""
        if not TAVILY_API_KEY:
            logger.warning("TAVILY_API_KEY not set — web search skipped")
            return None

        try:
            data = post_json(
                TAVILY_SEARCH_URL,
                {
                    "api_key": TAVILY_API_KEY,
                    "query": query,
                    "search_depth": "basic",
                    "include_answer": True,
                    "max_results": 5,
                },
                headers={"Content-Type": "application/json"},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Web search failed: {e}")
            return None

        return {
            "answer": data.get("answer") or "",
            "results": [
                {"title": r.get("title", ""), "url": r.get("url", ""), "content": r.get("content", "")}
                for r in data.get("results", [])[:3]
            ],
        }


def format_web_results(found: dict) -> str:
    lines = []
    if found.get("answer"):
        lines.append(f"Summary: {found['answer']}")
    for i, r in enumerate(found.get("results", []), 1):
        lines.append(f"{i}. {r['title']} ({r['url']})\n{r['content']}")
    return "\n\n".join(lines)


# ================================
# File Search
# ================================
def _relevance(query: str, text: str) -> int:
    """Count whole-word hits of the query's meaningful words in text."""
    words = {w for w in re.findall(r"\w+", query.lower()) if len(w) > 2}
    lowered = text.lower()
    return sum(len(re.findall(rf"\b{re.escape(w)}\b", lowered)) for w in words)


def _export_url(ref: dict) -> Optional[str]:
    if ref.get("url"):
        return ref["url"]
    doc_id = ref.get("doc_id") or ref.get("id")
    if not doc_id:
        return None
    if ref.get("type") == "google_docs":
        return f"https://docs.google.com/document/d/{doc_id}/export?format=txt"
    return f"https://docs.google.com/spreadsheets/d/{doc_id}/export?format=csv"


class FileSearchService:

    @staticmethod
    def _load_text(ref: dict) -> str:
        file_type = ref.get("type")
        if file_type == "upload":
            if not supabase or not ref.get("path"):
                return ""
            content = supabase.storage.from_(FILE_STORAGE_BUCKET).download(ref["path"])
            return content.decode("utf-8", errors="ignore")
        url = _export_url(ref)
        return get_text(url) if url else ""

    @staticmethod
    def search(query: str, file_references: list[dict]) -> list[dict]:
        """Top matching file excerpts: [{"name", "content", "score"}]."""
        results = VectorSearchClient.search(query)
        if results:
            return results[:FILE_RESULT_LIMIT]

        scored = []
        for ref in file_references:
            if ref.get("type") not in FILE_TYPES:
                continue
            name = ref.get("name") or ref.get("path") or ref.get("id", "file")
            try:
                text = FileSearchService._load_text(ref)
            except Exception as e:
                logger.warning(f"Could not read reference file '{name}': {e}")
                continue
            score = _relevance(query, text)
            if score > 0:
                scored.append({"name": name, "content": text[:FILE_CONTENT_CHARS], "score": score})

        scored.sort(key=lambda r: r["score"], reverse=True)
        return scored[:FILE_RESULT_LIMIT]


def format_file_results(results: list[dict]) -> str:
    return "\n\n".join(f"[{r['name']}]\n{r['content']}" for r in results)
