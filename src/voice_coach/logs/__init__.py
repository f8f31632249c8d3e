"""Conversation logging: the logger front and its storage sinks."""

from voice_coach.logs.conversation_logger import ConversationLogger
from voice_coach.logs.sinks import (
    CONVERSATIONS_FILE,
    JsonlLogSink,
    LogSink,
    NullLogSink,
    SqlLogSink,
)

__all__ = [
    "CONVERSATIONS_FILE",
    "ConversationLogger",
    "JsonlLogSink",
    "LogSink",
    "NullLogSink",
    "SqlLogSink",
    "build_log_sink",
]


def build_log_sink(settings=None) -> LogSink:
    """Pick the sink named by ``Settings.log_backend``."""
    from voice_coach.config import get_settings

    settings = settings or get_settings()
    if settings.log_backend == "sql":
        return SqlLogSink(settings.log_database_url)
    if settings.log_backend == "jsonl":
        return JsonlLogSink(settings.log_dir)
    return NullLogSink()
