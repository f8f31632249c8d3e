"""
Orchestrator module: session state, turn flow and the shared data model.

`SessionStateMachine` lives in `voice_coach.orchestrator.session_machine`.
"""

from voice_coach.orchestrator.schemas import (
    AIResponse,
    ConversationLogRecord,
    EmotionCheckResult,
    Message,
    MessageRole,
    MicroAction,
    MusicPlayerInstance,
    MusicRequest,
    Reference,
    SafetyLevel,
    SessionState,
    SessionSummary,
    TurnInput,
    TurnKind,
    TurnType,
)
from voice_coach.orchestrator.session import Session

__all__ = [
    "AIResponse",
    "ConversationLogRecord",
    "EmotionCheckResult",
    "Message",
    "MessageRole",
    "MicroAction",
    "MusicPlayerInstance",
    "MusicRequest",
    "Reference",
    "SafetyLevel",
    "Session",
    "SessionState",
    "SessionSummary",
    "TurnInput",
    "TurnKind",
    "TurnType",
]
