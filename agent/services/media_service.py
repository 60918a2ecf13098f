"""
Media Analysis Service
======================
Classifies a post's media URL and asks the matching analysis function
(analyze-video / analyze-image) to describe it. Results are cached on the
post row by the context resolver; this module never reads the cache.
"""

import re
from typing import Optional

import httpx

from config import logger, VIDEO_ANALYSIS_ENDPOINT, IMAGE_ANALYSIS_ENDPOINT
from services.http_client import post_json

VIDEO_PATTERN = re.compile(r"\.(mp4|mov|avi|mkv|webm|m4v)(\?|$)", re.IGNORECASE)
IMAGE_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp)(\?|$)", re.IGNORECASE)


def classify_media(media_url: Optional[str], platform: str = "facebook") -> Optional[str]:
    """Return "video", "image" or None for a media URL."""
    if not media_url or media_url.strip().lower() == "text only":
        return None
    if VIDEO_PATTERN.search(media_url):
        return "video"
    # Instagram reels URLs carry no file extension
    if platform == "instagram" and "REELS" in media_url.upper():
        return "video"
    if IMAGE_PATTERN.search(media_url):
        return "image"
    return None


class MediaAnalysisService:
    """Client for the external media analysis functions."""

    @staticmethod
    def analyze(media_url: str, media_type: str, post_id: str) -> Optional[dict]:
        """Analyze one media URL. Returns {"summary": ..., ...} or None on any failure."""
        if media_type == "video":
            endpoint, payload = VIDEO_ANALYSIS_ENDPOINT, {"videoUrl": media_url, "postId": post_id}
        else:
            endpoint, payload = IMAGE_ANALYSIS_ENDPOINT, {"imageUrl": media_url, "postId": post_id}

        try:
            data = post_json(endpoint, payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"{media_type.capitalize()} analysis failed for post {post_id}: {e}")
            return None

        analysis = data.get("analysis") if isinstance(data, dict) else None
        if not analysis:
            logger.warning(f"{media_type.capitalize()} analysis for post {post_id} returned nothing")
            return None
        if isinstance(analysis, dict):
            return analysis
        return {"summary": str(analysis), "media_type": media_type}
