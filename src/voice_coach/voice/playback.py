"""Assistant voice playback.

At most one utterance plays at a time. Every `claim`, `speak` or `stop` bumps
a generation counter; a synthesis that finishes after it was superseded is
dropped instead of played.
"""

from __future__ import annotations

import logging

from voice_coach.config import get_settings
from voice_coach.voice.tts import TTSProvider

logger = logging.getLogger(__name__)


class PlaybackHandle:
    """A started playback."""

    @property
    def is_active(self) -> bool:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class PlaybackDevice:
    """Audio output. ``preserves_pitch`` gates faster-than-natural playback."""

    preserves_pitch: bool = False

    async def play(self, audio: bytes, *, rate: float = 1.0) -> PlaybackHandle:
        raise NotImplementedError


class _SilentHandle(PlaybackHandle):
    def __init__(self) -> None:
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    def stop(self) -> None:
        self._active = False


class NullPlaybackDevice(PlaybackDevice):
    """Accepts audio and plays nothing, for environments without a speaker."""

    def __init__(self) -> None:
        self.played: list[tuple[int, float]] = []

    async def play(self, audio: bytes, *, rate: float = 1.0) -> PlaybackHandle:
        self.played.append((len(audio), rate))
        return _SilentHandle()


class VoicePlaybackController:
    def __init__(
        self,
        synthesizer: TTSProvider,
        device: PlaybackDevice | None = None,
        *,
        rate: float | None = None,
    ) -> None:
        self._synthesizer = synthesizer
        self._device = device or NullPlaybackDevice()
        self._rate = rate if rate is not None else get_settings().playback_rate
        self._generation = 0
        self._handle: PlaybackHandle | None = None

    @property
    def is_playing(self) -> bool:
        return self._handle is not None and self._handle.is_active

    @property
    def active_count(self) -> int:
        return 1 if self.is_playing else 0

    @property
    def effective_rate(self) -> float:
        return self._rate if self._device.preserves_pitch else 1.0

    def claim(self) -> int:
        """Stop current playback and reserve the next utterance's generation.

        Callers that schedule `speak` for later claim first, so a `stop()`
        issued before the task runs still cancels it.
        """
        self.stop()
        return self._generation

    async def speak(self, text: str, *, generation: int | None = None) -> bool:
        """Synthesize and play ``text``. Returns True if playback started. Never raises.

        Args:
            text: Reply text to speak.
            generation: A value from `claim()`; omitted means claim now.
        """
        if not text or not text.strip():
            return False

        if generation is None:
            generation = self.claim()
        elif generation != self._generation:
            logger.info("[VOICE][PLAYBACK] superseded before synthesis; skipping")
            return False

        try:
            audio = await self._synthesizer.synthesize(text)
        except Exception as e:
            logger.error(f"[VOICE][PLAYBACK] synthesis failed: {e}")
            return False

        if generation != self._generation:
            logger.info("[VOICE][PLAYBACK] superseded before playback; dropping audio")
            return False
        if not audio:
            return False

        try:
            handle = await self._device.play(audio, rate=self.effective_rate)
        except Exception as e:
            logger.error(f"[VOICE][PLAYBACK] device failed: {e}")
            return False

        if generation != self._generation:
            handle.stop()
            return False

        self._handle = handle
        logger.info(f"[VOICE][PLAYBACK] playing bytes={len(audio)} rate={self.effective_rate}")
        return True

    def stop(self) -> None:
        """Stop and release current playback and cancel any pending one."""
        self._generation += 1
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.stop()
        except Exception as e:
            logger.warning(f"[VOICE][PLAYBACK] failed to stop playback: {e}")

    async def close(self) -> None:
        """Stop playback and release the synthesizer's connection."""
        self.stop()
        close = getattr(self._synthesizer, "close", None)
        if close is not None:
            await close()
