"""
Research reference lookup.

Fetches a few topical psychology references for the user's text from the
MediaWiki search API. Any failure degrades to an empty list; a missing
reference never aborts a turn.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from urllib.parse import quote

import httpx

from voice_coach.config import get_settings
from voice_coach.orchestrator.schemas import Reference

logger = logging.getLogger(__name__)

USER_AGENT = "VoiceCoach/1.0"
DEFAULT_SNIPPET = "Reference from Wikipedia search results."


def strip_html(snippet: str) -> str:
    """Remove markup from a search snippet and collapse whitespace."""
    text = re.sub(r"</?span[^>]*>", "", snippet)
    text = re.sub(r"</?div[^>]*>", "", text)
    text = re.sub(r"</?[^>]+(>|$)", "", text)
    return re.sub(r"\s+", " ", text).strip()


class ReferenceSearchBase(ABC):
    """Abstract base class for reference search backends."""

    @abstractmethod
    async def search(self, query: str) -> list[Reference]:
        """Return up to the configured number of references; never raises."""
        ...


class WikipediaReferenceSearch(ReferenceSearchBase):
    """Reference search against the MediaWiki ``list=search`` API."""

    def __init__(
        self,
        endpoint: str | None = None,
        max_results: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._endpoint = endpoint or settings.reference_search_endpoint
        self._max_results = max_results or settings.max_references
        self._timeout = timeout or settings.search_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str) -> list[Reference]:
        if not query or not query.strip():
            return []

        params = {
            "action": "query",
            "list": "search",
            "srsearch": f"{query} psychology",
            "utf8": "",
            "format": "json",
            "srlimit": str(self._max_results),
        }

        try:
            client = await self._get_client()
            res = await client.get(self._endpoint, params=params)
            if res.status_code >= 400:
                logger.error(f"Failed to fetch references: status={res.status_code}")
                return []
            data = res.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching references: {e}")
            return []

        results = ((data or {}).get("query") or {}).get("search") or []
        references: list[Reference] = []
        for result in results[: self._max_results]:
            title = str(result.get("title") or "").strip()
            if not title:
                continue
            url = f"https://en.wikipedia.org/wiki/{quote(title.replace(' ', '_'), safe='')}"
            snippet = strip_html(result.get("snippet") or DEFAULT_SNIPPET)
            references.append(Reference(title=title, url=url, snippet=snippet))
        return references


class NullReferenceSearch(ReferenceSearchBase):
    """Used when research context is disabled."""

    async def search(self, query: str) -> list[Reference]:
        return []
