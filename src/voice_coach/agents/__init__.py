"""
Agents module.

The per-turn workers: the keyword safety classifier and the AI response
orchestrator that talks to the chat model.
"""

from voice_coach.agents.response_orchestrator import (
    AIResponseOrchestrator,
    RespondOptions,
    fallback_response,
)
from voice_coach.agents.safety_classifier import SafetyClassifier

__all__ = [
    "AIResponseOrchestrator",
    "RespondOptions",
    "SafetyClassifier",
    "fallback_response",
]
