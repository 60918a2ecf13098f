"""
Service HTTP Helpers
====================
Blocking JSON calls to the helper services (media analysis, vector search,
web search, file export). Same retry policy as the Graph API adapter.
"""

import httpx

from config import SERVICE_TIMEOUT_SECONDS, function_headers
from services.retry import with_backoff


@with_backoff()
def post_json(url: str, payload: dict, headers: dict = None, timeout: float = SERVICE_TIMEOUT_SECONDS) -> dict:
    """POST a JSON body and return the decoded JSON response."""
    with httpx.Client(timeout=timeout) as client:
        response = client.post(url, json=payload, headers=headers or function_headers())
        response.raise_for_status()
        return response.json()


@with_backoff()
def get_text(url: str, timeout: float = SERVICE_TIMEOUT_SECONDS) -> str:
    """GET a document as text (public export links)."""
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        response = client.get(url)
        response.raise_for_status()
        return response.text
