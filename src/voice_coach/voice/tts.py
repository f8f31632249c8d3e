"""Text-to-speech.

Default implementation calls an OpenAI-compatible ``/audio/speech`` endpoint
and returns WAV bytes ready for the playback device.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from voice_coach.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TTSConfig:
    model: str | None = None
    voice: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    timeout_s: float | None = None
    response_format: str = "wav"


class SynthesisError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TTSProvider:
    async def synthesize(self, text: str) -> bytes:
        raise NotImplementedError


class OpenAISpeechSynthesizer(TTSProvider):
    def __init__(
        self,
        config: TTSConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._config = config or TTSConfig()
        self._model = self._config.model or settings.openai_tts_model
        self._voice = self._config.voice or settings.openai_tts_voice
        self._api_key = self._config.api_key if self._config.api_key is not None else settings.openai_api_key
        self._base_url = self._config.base_url or settings.openai_base_url
        self._timeout = self._config.timeout_s or settings.tts_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> TTSConfig:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def synthesize(self, text: str) -> bytes:
        t = (text or "").strip()
        if not t:
            return b""
        if not self._api_key:
            raise SynthesisError("API key not configured")

        payload = {
            "model": self._model,
            "voice": self._voice,
            "input": t,
            "response_format": self._config.response_format,
        }

        client = await self._get_client()
        try:
            res = await client.post(
                "/audio/speech",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise SynthesisError(f"Speech request failed: {e}") from e

        if res.status_code >= 400:
            raise SynthesisError(
                f"Speech API responded with status {res.status_code}: {res.text[:300]}",
                status_code=res.status_code,
            )

        logger.info(f"[VOICE][TTS] synthesized chars={len(t)} bytes={len(res.content)}")
        return res.content
