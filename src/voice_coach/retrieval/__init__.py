"""
Retrieval module for research references attached to coach replies.
"""

from voice_coach.retrieval.reference_search import (
    NullReferenceSearch,
    ReferenceSearchBase,
    WikipediaReferenceSearch,
)

__all__ = ["ReferenceSearchBase", "WikipediaReferenceSearch", "NullReferenceSearch"]
