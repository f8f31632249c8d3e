"""
Safety classifier agent.

Derives a risk tier from raw user text with fixed keyword rules. Runs
alongside the response orchestrator; the stricter of its result and the
model-reported level governs the safety banner.
"""

from __future__ import annotations

from collections.abc import Iterable

from voice_coach.orchestrator.schemas import SafetyLevel

CRISIS_KEYWORDS: tuple[str, ...] = (
    "suicide",
    "kill myself",
    "end it all",
    "hurt myself",
    "harm",
    "kill",
)

CAUTION_KEYWORDS: tuple[str, ...] = (
    "hopeless",
    "helpless",
    "no hope",
    "can't continue",
    "give up",
)


class SafetyClassifier:
    """Keyword-based classifier. Pure and deterministic."""

    def __init__(
        self,
        crisis_keywords: Iterable[str] = CRISIS_KEYWORDS,
        caution_keywords: Iterable[str] = CAUTION_KEYWORDS,
    ) -> None:
        self._crisis = tuple(k.lower() for k in crisis_keywords)
        self._caution = tuple(k.lower() for k in caution_keywords)

    def classify(self, text: str) -> SafetyLevel:
        """
        Classify a message.

        Args:
            text: Raw user text.

        Returns:
            CRISIS if any crisis term appears, else CAUTION if any despair
            term appears, else SAFE.
        """
        lowered = (text or "").lower()
        if any(keyword in lowered for keyword in self._crisis):
            return SafetyLevel.CRISIS
        if any(keyword in lowered for keyword in self._caution):
            return SafetyLevel.CAUTION
        return SafetyLevel.SAFE

    async def aclassify(self, text: str) -> SafetyLevel:
        """Awaitable form so the classifier can be gathered with remote calls."""
        return self.classify(text)
