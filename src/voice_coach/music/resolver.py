"""Turn a model-issued music request into a player instance."""

from __future__ import annotations

import logging

from voice_coach.music.media_search import MediaSearchBase, YouTubeMediaSearch
from voice_coach.orchestrator.schemas import MusicPlayerInstance, MusicRequest

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Music"


class MusicRequestResolver:
    def __init__(self, media_search: MediaSearchBase | None = None) -> None:
        self._search = media_search or YouTubeMediaSearch()

    async def resolve(
        self,
        request: MusicRequest,
        triggering_message_id: str,
    ) -> MusicPlayerInstance | None:
        """
        Resolve a request to a player tagged with the triggering message.

        Args:
            request: The model's music request.
            triggering_message_id: Id of the assistant message that asked for music.

        Returns:
            A new player, or None when nothing could be resolved.
        """
        if not request.youtube_video_id and not request.search_query:
            return None

        video_id = request.youtube_video_id
        if not video_id and request.search_query:
            try:
                result = await self._search.search(request.search_query)
            except Exception as e:
                logger.error(f"Music search failed for {request.search_query!r}: {e}")
                return None
            video_id = result.video_id if result else None

        if not video_id:
            logger.info(f"No media found for music request query={request.search_query!r}")
            return None

        return MusicPlayerInstance(
            trigger_message_id=triggering_message_id,
            video_id=video_id,
            title=request.music_type or DEFAULT_TITLE,
        )

    async def close(self) -> None:
        close = getattr(self._search, "close", None)
        if close is not None:
            await close()
