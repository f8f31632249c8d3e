"""
AI response orchestrator.

Builds the coach request (system prompt, rendered user message, research
context), calls the chat model, normalizes its JSON reply into an AIResponse
and schedules a conversation log record for the turn. Any remote or parsing
failure yields the fixed fallback response instead of an exception.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from voice_coach.agents.prompts import (
    PROMPT_VERSION,
    build_system_prompt,
    build_user_message,
    with_research_context,
)
from voice_coach.logs.conversation_logger import ConversationLogger
from voice_coach.models.llm_client import (
    JSON_OBJECT_FORMAT,
    ChatMessage,
    LLMClient,
    LLMClientBase,
    LLMResponse,
    parse_json_object,
)
from voice_coach.orchestrator.background import DetachedTasks
from voice_coach.orchestrator.schemas import (
    AIResponse,
    ConversationLogRecord,
    LLMInput,
    LLMOutput,
    MicroAction,
    MusicRequest,
    Reference,
    SafetyLevel,
    TurnType,
)
from voice_coach.retrieval.reference_search import ReferenceSearchBase, WikipediaReferenceSearch

logger = logging.getLogger(__name__)

MAX_MICRO_ACTIONS = 3

DEFAULT_MESSAGE = "I'm sorry, I wasn't able to put a response together just now, but I'm still here with you."

FALLBACK_MESSAGE = (
    "I'm sorry, I ran into a technical problem and couldn't respond properly. "
    "What you just shared still matters to me. Maybe take a slow breath, and if you're up for it, "
    "could you tell me the one thing that's troubling you most right now?"
)

FALLBACK_MICRO_ACTION = MicroAction(
    id="fallback-1",
    title="Take 3 deep breaths",
    description="Breathe in slowly for 4 seconds, pause for 1 second, then breathe out for 6 seconds. Repeat 3 times.",
)


def fallback_response() -> AIResponse:
    """The safe reply used whenever a model turn cannot be completed."""
    return AIResponse(
        message=FALLBACK_MESSAGE,
        safety_level=SafetyLevel.SAFE,
        micro_actions=[FALLBACK_MICRO_ACTION.model_copy()],
        references=[],
    )


@dataclass
class RespondOptions:
    """Per-turn context for a response request."""

    session_id: str = "unknown"
    turn_type: TurnType = TurnType.USER_MESSAGE
    metadata: dict[str, Any] = field(default_factory=dict)
    # Text shown to the user, logged as userMessage. Defaults to the user text.
    display_text: str | None = None
    # Replaces the rendered user message (micro-action turns).
    prompt_override: str | None = None


def normalize_micro_actions(raw: Any) -> list[MicroAction] | None:
    """Coerce the model's microActions into at most three well-formed actions."""
    if not isinstance(raw, list):
        return None

    actions: list[MicroAction] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            logger.warning(f"Dropping malformed micro-action at index {index}: {item!r}")
            continue
        actions.append(
            MicroAction(
                id=str(item.get("id") or f"llm-{index + 1}"),
                title=str(item.get("title") or ""),
                description=str(item.get("description") or ""),
            )
        )
        if len(actions) == MAX_MICRO_ACTIONS:
            break
    return actions


def normalize_music_request(raw: Any) -> MusicRequest | None:
    if not isinstance(raw, dict):
        return None
    try:
        return MusicRequest.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed musicRequest: {e.error_count()} errors")
        return None


def build_ai_response(parsed: dict[str, Any], references: Sequence[Reference]) -> AIResponse:
    """Turn parsed model JSON into an AIResponse, substituting safe defaults."""
    message = str(parsed.get("message") or "").strip() or DEFAULT_MESSAGE
    raw_level = parsed.get("safetyLevel")
    safety_level = SafetyLevel.coerce(raw_level)
    if raw_level is not None and safety_level.value != raw_level:
        logger.warning(f"Unknown safetyLevel {raw_level!r}, defaulting to safe")

    return AIResponse(
        message=message,
        safety_level=safety_level,
        micro_actions=normalize_micro_actions(parsed.get("microActions")),
        music_request=normalize_music_request(parsed.get("musicRequest")),
        references=list(references),
    )


def _token_usage(usage: dict[str, int]) -> dict[str, int] | None:
    if not usage:
        return None
    return {
        "promptTokens": usage.get("prompt_tokens", 0),
        "completionTokens": usage.get("completion_tokens", 0),
        "totalTokens": usage.get("total_tokens", 0),
    }


class AIResponseOrchestrator:
    """
    Produces the coach's reply for one turn.

    Reference lookup runs first (sequentially), then the chat call. The log
    write is detached so a slow or failing store never delays the reply.
    """

    def __init__(
        self,
        llm_client: LLMClientBase | None = None,
        reference_search: ReferenceSearchBase | None = None,
        conversation_logger: ConversationLogger | None = None,
        background: DetachedTasks | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            llm_client: Chat client. Creates default if None.
            reference_search: Research reference lookup. Creates default if None.
            conversation_logger: Where turn records go. None disables logging.
            background: Task set for detached log writes. Logs are awaited inline if None.
        """
        self._llm_client = llm_client or LLMClient()
        self._reference_search = reference_search or WikipediaReferenceSearch()
        self._conversation_logger = conversation_logger
        self._background = background

    @property
    def llm_client(self) -> LLMClientBase:
        return self._llm_client

    async def _fetch_references(self, query: str) -> list[Reference]:
        try:
            return await self._reference_search.search(query)
        except Exception as e:
            logger.error(f"Reference lookup failed: {e}")
            return []

    async def respond(
        self,
        user_text: str,
        history: Sequence[dict[str, str]],
        options: RespondOptions | None = None,
    ) -> AIResponse:
        """
        Generate the reply for one turn.

        Args:
            user_text: The user's text (or the clicked action's title).
            history: Prior turns as ``{"role", "content"}`` dicts.
            options: Session id, turn type, metadata and prompt override.

        Returns:
            The normalized reply, or the fallback response.
        """
        options = options or RespondOptions()
        history = [dict(turn) for turn in history]

        system_prompt = build_system_prompt()
        base_message = options.prompt_override or build_user_message(user_text, history)
        references = await self._fetch_references(user_text)
        user_content = with_research_context(base_message, references)

        messages = [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=user_content),
        ]

        start = time.perf_counter()
        try:
            llm_response = await self._llm_client.chat(messages, response_format=JSON_OBJECT_FORMAT)
        except Exception as e:
            logger.error(f"Chat call raised: {e}")
            llm_response = LLMResponse(
                content="",
                finish_reason="error",
                model=self._llm_client.model,
                raw_response={"error": str(e)},
            )
        response_time_ms = int((time.perf_counter() - start) * 1000)

        parsed: dict[str, Any] | None = None
        error: str | None = None
        content = llm_response.content or ""
        if llm_response.failed:
            error = str(llm_response.raw_response.get("error") or "Chat request failed")
        elif not content.strip():
            error = "Empty response from chat model"
        else:
            parsed, error = parse_json_object(content)

        if parsed is None:
            logger.error(f"Falling back for session {options.session_id}: {error}")
            ai_response = fallback_response()
        else:
            ai_response = build_ai_response(parsed, references)

        metadata = {**options.metadata, "responseTimeMs": response_time_ms}
        usage = _token_usage(llm_response.usage)
        if usage:
            metadata["tokenUsage"] = usage

        record = ConversationLogRecord(
            session_id=options.session_id,
            type=options.turn_type,
            user_message=options.display_text or user_text,
            user_message_raw=base_message if options.prompt_override else user_text,
            ai_response=ai_response.model_dump(mode="json", by_alias=True, exclude_none=True),
            system_prompt=system_prompt,
            system_prompt_version=PROMPT_VERSION,
            model=llm_response.model or self._llm_client.model,
            conversation_history=history,
            llm_input=LLMInput(
                messages=[m.model_dump() for m in messages],
                model=self._llm_client.model,
                response_format=JSON_OBJECT_FORMAT,
            ),
            llm_output=LLMOutput(
                raw_response=llm_response.raw_response or None,
                raw_content=content or None,
                parsed_content=parsed,
                error=error,
            ),
            metadata=metadata,
        )
        await self._schedule_log(record)
        return ai_response

    async def _schedule_log(self, record: ConversationLogRecord) -> None:
        if self._conversation_logger is None:
            return
        if self._background is None:
            await self._conversation_logger.append(record)
            return
        self._background.spawn(
            self._conversation_logger.append(record),
            name=f"log-{record.interaction_id}",
        )

    async def close(self) -> None:
        """Close the chat client, the reference search and the log store."""
        for resource in (self._llm_client, self._reference_search, self._conversation_logger):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
