"""Music request resolution."""

from voice_coach.music.media_search import (
    DEFAULT_RESULT,
    MediaSearchBase,
    MediaSearchResult,
    NullMediaSearch,
    YouTubeMediaSearch,
)
from voice_coach.music.resolver import MusicRequestResolver

__all__ = [
    "DEFAULT_RESULT",
    "MediaSearchBase",
    "MediaSearchResult",
    "MusicRequestResolver",
    "NullMediaSearch",
    "YouTubeMediaSearch",
]
