"""
Media search for music requests.

Looks up a single music video for a mood query via the YouTube Data API v3.
Without an API key a fixed calming track is returned; a remote failure or an
empty result set returns None.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel, ConfigDict, Field

from voice_coach.config import get_settings

logger = logging.getLogger(__name__)

MUSIC_CATEGORY_ID = "10"


class MediaSearchResult(BaseModel):
    """One media search hit."""

    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    title: str = ""
    thumbnail: str = ""
    channel_title: str = Field(default="", alias="channelTitle")


DEFAULT_RESULT = MediaSearchResult(
    video_id="jfKfPfyJRdk",
    title="Calming Music",
    thumbnail="https://img.youtube.com/vi/jfKfPfyJRdk/mqdefault.jpg",
    channel_title="Liviti",
)


class MediaSearchBase(ABC):
    @abstractmethod
    async def search(self, query: str) -> MediaSearchResult | None:
        """Best single match for ``query``, or None. Never raises."""
        ...


class YouTubeMediaSearch(MediaSearchBase):
    def __init__(
        self,
        api_key: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.youtube_api_key
        self._endpoint = endpoint or settings.youtube_search_endpoint
        self._timeout = timeout or settings.search_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str) -> MediaSearchResult | None:
        if not query or not query.strip():
            return None

        if not self._api_key:
            logger.warning("YouTube API key not set; using default calming track")
            return DEFAULT_RESULT

        params = {
            "part": "snippet",
            "type": "video",
            "videoCategoryId": MUSIC_CATEGORY_ID,
            "q": f"{query} music",
            "maxResults": "1",
            "key": self._api_key,
        }

        try:
            client = await self._get_client()
            res = await client.get(self._endpoint, params=params)
            if res.status_code >= 400:
                logger.error(f"YouTube search failed: status={res.status_code} body={res.text[:300]}")
                return None
            data = res.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"YouTube search error: {e}")
            return None

        items = (data or {}).get("items") or []
        if not items:
            logger.info(f"YouTube search returned no results for {query!r}")
            return None

        video = items[0] if isinstance(items[0], dict) else {}
        video_id = (video.get("id") or {}).get("videoId")
        if not video_id:
            return None

        snippet = video.get("snippet") or {}
        thumbnails = snippet.get("thumbnails") or {}
        thumbnail = (thumbnails.get("medium") or {}).get("url") or (thumbnails.get("default") or {}).get("url") or ""
        return MediaSearchResult(
            video_id=video_id,
            title=snippet.get("title") or "",
            thumbnail=thumbnail,
            channel_title=snippet.get("channelTitle") or "",
        )


class NullMediaSearch(MediaSearchBase):
    async def search(self, query: str) -> MediaSearchResult | None:
        return None
