"""
Pydantic schemas for the orchestrator module.

Defines data models for messages, AI responses, music players, turn inputs,
and the conversation log record.
"""

import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def new_id(prefix: str, *, suffix_len: int = 9) -> str:
    """Build an opaque id like ``msg-1718000000000-k3j9x0a1b``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=suffix_len))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class SafetyLevel(str, Enum):
    """Risk tier of a user message, ordered by severity."""

    SAFE = "safe"
    CAUTION = "caution"
    CRISIS = "crisis"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def coerce(cls, value: Any) -> "SafetyLevel":
        """Map a model-reported value onto a level; unknown values become SAFE."""
        try:
            return cls(value)
        except ValueError:
            return cls.SAFE

    @classmethod
    def stricter(cls, *levels: "SafetyLevel") -> "SafetyLevel":
        """Return the most severe of the given levels."""
        if not levels:
            return cls.SAFE
        return max(levels, key=lambda level: level.severity)


_SEVERITY = {SafetyLevel.SAFE: 0, SafetyLevel.CAUTION: 1, SafetyLevel.CRISIS: 2}


class MessageRole(str, Enum):
    """Speaker of a message."""

    USER = "user"
    ASSISTANT = "assistant"


class SessionState(str, Enum):
    """States of the session state machine."""

    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    RESPONDING = "responding"


class TurnType(str, Enum):
    """How a turn was initiated, as recorded in the conversation log."""

    USER_MESSAGE = "user_message"
    MICRO_ACTION_CLICK = "micro_action_click"


class TurnKind(str, Enum):
    """Source of a turn's input."""

    VOICE = "voice"
    TYPED = "typed"
    MICRO_ACTION = "microAction"


class EmotionCheckResult(str, Enum):
    """How the user feels at the end of a session."""

    BETTER = "better"
    SAME = "same"
    WORSE = "worse"


class Reference(BaseModel):
    """A research citation attached to an assistant message."""

    title: str = Field(..., description="Reference title")
    url: str = Field(..., description="Link to the source")
    snippet: str = Field(default="", description="Plain-text excerpt")


class Message(BaseModel):
    """A single message in the session transcript. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("msg"), description="Message identifier")
    role: MessageRole = Field(..., description="Who sent the message")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(default_factory=_now_utc, description="When the message was created")
    references: tuple[Reference, ...] | None = Field(
        default=None,
        description="Research references (assistant messages only)",
    )


class MicroAction(BaseModel):
    """A small suggested activity offered after a reply."""

    id: str = Field(default="", description="Action identifier")
    title: str = Field(default="", description="Short title")
    description: str = Field(default="", description="What to do")


class MusicRequest(BaseModel):
    """A model-issued intent to play mood-appropriate music."""

    model_config = ConfigDict(populate_by_name=True)

    should_play: bool = Field(default=False, alias="shouldPlay")
    search_query: str | None = Field(default=None, alias="searchQuery")
    music_type: str | None = Field(default=None, alias="musicType")
    youtube_video_id: str | None = Field(default=None, alias="youtubeVideoId")


class MusicPlayerInstance(BaseModel):
    """A resolved music player shown alongside the reply that triggered it."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: new_id("music", suffix_len=5))
    trigger_message_id: str = Field(..., alias="triggerMessageId")
    video_id: str = Field(..., alias="videoId")
    title: str = Field(default="Music")


class AIResponse(BaseModel):
    """Structured reply produced for one turn."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., description="Natural-language reply")
    safety_level: SafetyLevel = Field(default=SafetyLevel.SAFE, alias="safetyLevel")
    micro_actions: list[MicroAction] | None = Field(default=None, alias="microActions")
    music_request: MusicRequest | None = Field(default=None, alias="musicRequest")
    references: list[Reference] = Field(default_factory=list)


class TurnInput(BaseModel):
    """Tagged input for one turn: voice transcript, typed text, or a micro-action."""

    kind: TurnKind
    payload: str | MicroAction

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "TurnInput":
        if self.kind == TurnKind.MICRO_ACTION and not isinstance(self.payload, MicroAction):
            raise ValueError("microAction turns require a MicroAction payload")
        if self.kind != TurnKind.MICRO_ACTION and not isinstance(self.payload, str):
            raise ValueError(f"{self.kind.value} turns require a text payload")
        return self

    @classmethod
    def voice(cls, transcript: str) -> "TurnInput":
        return cls(kind=TurnKind.VOICE, payload=transcript)

    @classmethod
    def typed(cls, text: str) -> "TurnInput":
        return cls(kind=TurnKind.TYPED, payload=text)

    @classmethod
    def micro_action(cls, action: MicroAction) -> "TurnInput":
        return cls(kind=TurnKind.MICRO_ACTION, payload=action)


class LLMInput(BaseModel):
    """Exactly what was sent to the chat model."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[dict[str, str]] = Field(default_factory=list)
    model: str = ""
    response_format: dict[str, str] | None = Field(default=None, alias="responseFormat")


class LLMOutput(BaseModel):
    """Exactly what came back from the chat model (or why nothing usable did)."""

    model_config = ConfigDict(populate_by_name=True)

    raw_response: Any = Field(default=None, alias="rawResponse")
    raw_content: str | None = Field(default=None, alias="rawContent")
    parsed_content: Any = Field(default=None, alias="parsedContent")
    error: str | None = None


class ConversationLogRecord(BaseModel):
    """One append-only record per turn, kept for prompt analysis."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    timestamp: str = Field(default_factory=lambda: _now_utc().isoformat())
    interaction_id: str = Field(default_factory=lambda: new_id("interaction"), alias="interactionId")
    type: TurnType = TurnType.USER_MESSAGE
    user_message: str | None = Field(default=None, alias="userMessage")
    user_message_raw: str | None = Field(default=None, alias="userMessageRaw")
    ai_response: dict[str, Any] | None = Field(default=None, alias="aiResponse")
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    system_prompt_version: str | None = Field(default=None, alias="systemPromptVersion")
    model: str = ""
    conversation_history: list[dict[str, str]] = Field(default_factory=list, alias="conversationHistory")
    llm_input: LLMInput | None = Field(default=None, alias="llmInput")
    llm_output: LLMOutput | None = Field(default=None, alias="llmOutput")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


class SessionSummary(BaseModel):
    """Check-out view of a finished session."""

    session_id: str
    messages: list[Message] = Field(default_factory=list)
    micro_actions: list[MicroAction] = Field(default_factory=list)
    emotion_check_result: EmotionCheckResult | None = None
    created_at: datetime = Field(default_factory=_now_utc)

    @property
    def summary_text(self) -> str:
        user_count = sum(1 for m in self.messages if m.role == MessageRole.USER)
        assistant_count = sum(1 for m in self.messages if m.role == MessageRole.ASSISTANT)
        if user_count == 0:
            return "In this session, you shared your feelings and thoughts."
        return (
            f"In this session, you shared {user_count} message{'s' if user_count > 1 else ''}, "
            f"and the AI coach provided {assistant_count} response{'s' if assistant_count > 1 else ''}."
        )
