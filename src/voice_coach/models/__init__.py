"""
Models module for LLM client abstraction.

Provides a unified interface for an OpenAI-compatible chat API.
"""

from voice_coach.models.llm_client import (
    DEFAULT_CHAT_MODEL,
    JSON_OBJECT_FORMAT,
    ChatCompletionError,
    ChatMessage,
    LLMClient,
    LLMClientBase,
    LLMResponse,
    parse_json_object,
)

__all__ = [
    "LLMClient",
    "LLMClientBase",
    "LLMResponse",
    "ChatMessage",
    "ChatCompletionError",
    "DEFAULT_CHAT_MODEL",
    "JSON_OBJECT_FORMAT",
    "parse_json_object",
]
