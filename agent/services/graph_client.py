"""
Graph API Clients
=================
Thin request/response adapters for the Facebook and Instagram Graph APIs.

Both platforms share one HTTP helper (httpx + shared retry policy); the
subclasses only differ in edge and field names:

  Facebook:  /{comment}/comments, fields message + from.name, parent object
  Instagram: /{comment}/replies,  fields text + from.username, parent_id

Methods are blocking and return plain values; async callers go through
asyncio.to_thread(). Failures surface as PlatformAPIError.
"""

from typing import Optional

import httpx

from config import (
    logger,
    GRAPH_API_BASE_URL,
    GRAPH_API_TIMEOUT_SECONDS,
    FACEBOOK_PAGE_ACCESS_TOKEN,
    FACEBOOK_PAGE_ID,
    INSTAGRAM_ACCESS_TOKEN,
)
from routes.metrics import PLATFORM_API_CALLS
from services.errors import PlatformAPIError
from services.retry import with_backoff


@with_backoff()
def _graph_request(method: str, path: str, token: str, params: dict = None, data: dict = None,
                   json_body: dict = None) -> dict:
    """Graph API call with retry on transient failures."""
    with httpx.Client(timeout=GRAPH_API_TIMEOUT_SECONDS) as client:
        response = client.request(
            method,
            f"{GRAPH_API_BASE_URL}/{path.lstrip('/')}",
            params={**(params or {}), "access_token": token},
            data=data,
            json=json_body,
        )
        response.raise_for_status()
        return response.json()


def _to_platform_error(exc: httpx.HTTPError) -> PlatformAPIError:
    """Map an httpx failure to PlatformAPIError, keeping Graph's error code."""
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            error = exc.response.json().get("error", {})
        except ValueError:
            error = {}
        return PlatformAPIError(
            error.get("message") or str(exc),
            status_code=exc.response.status_code,
            error_code=error.get("code"),
        )
    return PlatformAPIError(f"{type(exc).__name__}: {exc}")


class GraphClient:
    """Facebook Page Graph API adapter (also the base for Instagram)."""

    platform = "facebook"
    text_field = "message"
    author_field = "name"
    replies_edge = "comments"
    post_text_field = "message"

    def __init__(self, access_token: str):
        self.access_token = access_token

    def _call(self, operation: str, method: str, path: str, **kwargs) -> dict:
        if not self.access_token:
            PLATFORM_API_CALLS.labels(platform=self.platform, operation=operation, status="no_token").inc()
            raise PlatformAPIError(f"No {self.platform} access token configured")
        try:
            result = _graph_request(method, path, self.access_token, **kwargs)
        except httpx.HTTPError as e:
            PLATFORM_API_CALLS.labels(platform=self.platform, operation=operation, status="error").inc()
            raise _to_platform_error(e) from e
        except ValueError as e:
            # 2xx with a body that is not JSON
            PLATFORM_API_CALLS.labels(platform=self.platform, operation=operation, status="bad_response").inc()
            raise PlatformAPIError(f"{operation}: unreadable Graph API response ({e})") from e
        if not isinstance(result, dict):
            PLATFORM_API_CALLS.labels(platform=self.platform, operation=operation, status="bad_response").inc()
            raise PlatformAPIError(f"{operation}: expected a JSON object from the Graph API")
        PLATFORM_API_CALLS.labels(platform=self.platform, operation=operation, status="success").inc()
        return result

    # --------------------------------------------------
    # Reads
    # --------------------------------------------------
    def get_post_text(self, post_id: str) -> str:
        """Raw post text straight from the platform (no local row available)."""
        data = self._call("get_post", "GET", post_id, params={"fields": self.post_text_field})
        return data.get(self.post_text_field) or ""

    def get_comment_parent_id(self, comment_id: str) -> Optional[str]:
        data = self._call("get_parent", "GET", comment_id, params={"fields": "parent"})
        parent = data.get("parent") or {}
        return parent.get("id")

    def get_comment(self, comment_id: str) -> dict:
        """Returns {"id", "text", "author"}."""
        data = self._call("get_comment", "GET", comment_id, params={"fields": f"{self.text_field},from"})
        return self._normalize_comment(data, fallback_id=comment_id)

    def get_replies(self, comment_id: str, limit: int = 10) -> list[dict]:
        """Replies under a comment, oldest first, as [{"id", "text", "author"}]."""
        data = self._call(
            "get_replies",
            "GET",
            f"{comment_id}/{self.replies_edge}",
            params={"fields": f"id,{self.text_field},from", "limit": limit},
        )
        return [self._normalize_comment(item) for item in data.get("data", [])]

    def _normalize_comment(self, item: dict, fallback_id: str = "") -> dict:
        author = item.get("from") or {}
        return {
            "id": item.get("id", fallback_id),
            "text": item.get(self.text_field) or "",
            "author": author.get(self.author_field) or author.get("id") or "unknown",
        }

    # --------------------------------------------------
    # Writes
    # --------------------------------------------------
    def reply_to_comment(self, comment_id: str, text: str) -> str:
        """Post a reply under a comment. Returns the platform-assigned id."""
        data = self._call("reply_comment", "POST", f"{comment_id}/{self.replies_edge}", data={"message": text})
        if not data.get("id"):
            raise PlatformAPIError(f"Reply to {comment_id} returned no id")
        return data["id"]

    def reply_fallback(self, comment_id: str, post_id: str, text: str) -> str:
        """Second attempt when a threaded reply is rejected: comment on the post itself."""
        data = self._call("reply_post", "POST", f"{post_id}/comments", data={"message": text})
        if not data.get("id"):
            raise PlatformAPIError(f"Comment on {post_id} returned no id")
        return data["id"]

    def send_message(self, recipient_id: str, text: str) -> str:
        """Send a direct message from the page. Returns the message id."""
        data = self._call(
            "send_message",
            "POST",
            f"{FACEBOOK_PAGE_ID or 'me'}/messages",
            json_body={
                "recipient": {"id": recipient_id},
                "message": {"text": text},
                "messaging_type": "RESPONSE",
            },
        )
        message_id = data.get("message_id") or data.get("id")
        if not message_id:
            raise PlatformAPIError(f"Message to {recipient_id} returned no id")
        return message_id


class InstagramClient(GraphClient):
    """Instagram Graph API adapter."""

    platform = "instagram"
    text_field = "text"
    author_field = "username"
    replies_edge = "replies"
    post_text_field = "caption"

    def get_comment_parent_id(self, comment_id: str) -> Optional[str]:
        data = self._call("get_parent", "GET", comment_id, params={"fields": "parent_id"})
        return data.get("parent_id")

    def get_comment_media_id(self, comment_id: str) -> Optional[str]:
        data = self._call("get_media", "GET", comment_id, params={"fields": "media"})
        return (data.get("media") or {}).get("id")

    def reply_fallback(self, comment_id: str, post_id: str, text: str) -> str:
        """Comment on the media; the webhook's media id is re-resolved when missing."""
        media_id = post_id or self.get_comment_media_id(comment_id)
        if not media_id:
            raise PlatformAPIError(f"Could not resolve media for comment {comment_id}")
        logger.info(f"Falling back to commenting on media {media_id}")
        return super().reply_fallback(comment_id, media_id, text)

    def send_message(self, recipient_id: str, text: str) -> str:
        raise PlatformAPIError("Instagram direct messages are not handled by this agent")


_clients: dict[str, GraphClient] = {
    "facebook": GraphClient(FACEBOOK_PAGE_ACCESS_TOKEN),
    "instagram": InstagramClient(INSTAGRAM_ACCESS_TOKEN),
}


def get_client(platform: str) -> GraphClient:
    return _clients[platform]
