"""
IO module for session interfaces.

Provides text and voice interfaces for coaching sessions.
"""

from voice_coach.io.text_interface import SessionInterface, TextInterface
from voice_coach.io.voice_interface import VoiceInterface

__all__ = ["SessionInterface", "TextInterface", "VoiceInterface"]
