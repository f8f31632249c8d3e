"""Speech-to-text.

Default implementation posts the utterance to an OpenAI-compatible
``/audio/transcriptions`` endpoint. A failed transcription never stops a turn:
`TranscriptionClient` substitutes a gentle sentence asking the user to type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from voice_coach.config import get_settings

logger = logging.getLogger(__name__)

FALLBACK_TRANSCRIPT = (
    "(Speech-to-text ran into a problem just now. If it's convenient, "
    "you could type a few sentences describing how you're feeling.)"
)

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "mp4",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}


@dataclass(frozen=True)
class STTConfig:
    model: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    timeout_s: float | None = None
    language: str | None = None


@dataclass(frozen=True)
class AudioSegment:
    """One recorded utterance."""

    data: bytes
    mime_type: str = "audio/wav"
    sample_rate: int | None = None

    @property
    def file_name(self) -> str:
        base = self.mime_type.split(";", 1)[0].strip().lower()
        return f"audio.{_EXTENSIONS.get(base, 'webm')}"


class TranscriptionError(Exception):
    """Raised by providers when no transcript could be obtained."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class STTProvider:
    async def transcribe(self, segment: AudioSegment) -> str:
        raise NotImplementedError


class OpenAITranscriber(STTProvider):
    """OpenAI-compatible transcription over httpx."""

    def __init__(
        self,
        config: STTConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._config = config or STTConfig()
        self._model = self._config.model or settings.openai_stt_model
        self._api_key = self._config.api_key if self._config.api_key is not None else settings.openai_api_key
        self._base_url = self._config.base_url or settings.openai_base_url
        self._timeout = self._config.timeout_s or settings.stt_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._model

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

    async def transcribe(self, segment: AudioSegment) -> str:
        if not self._api_key:
            raise TranscriptionError("API key not configured")
        if not segment.data:
            raise TranscriptionError("Empty audio segment")

        data = {"model": self._model, "response_format": "json"}
        if self._config.language:
            data["language"] = self._config.language

        client = await self._get_client()
        try:
            res = await client.post(
                "/audio/transcriptions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                files={"file": (segment.file_name, segment.data, segment.mime_type)},
                data=data,
            )
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Transcription request failed: {e}") from e

        if res.status_code >= 400:
            logger.error(f"[VOICE][STT] error status={res.status_code} body={res.text[:500]}")
            raise TranscriptionError(
                f"Transcription API responded with status {res.status_code}",
                status_code=res.status_code,
            )

        try:
            body = res.json()
        except ValueError as e:
            raise TranscriptionError("Transcription API returned a non-JSON body") from e

        return str((body or {}).get("text") or "").strip()


class TranscriptionClient:
    """Turns an utterance into user text, or the fallback sentence."""

    def __init__(self, provider: STTProvider | None = None) -> None:
        self._provider = provider or OpenAITranscriber()

    @property
    def provider(self) -> STTProvider:
        return self._provider

    async def transcribe(self, segment: AudioSegment) -> str:
        try:
            text = await self._provider.transcribe(segment)
        except Exception as e:
            logger.error(f"[VOICE][STT] transcription failed: {e}")
            return FALLBACK_TRANSCRIPT

        if not text or not text.strip():
            logger.warning("[VOICE][STT] empty transcript")
            return FALLBACK_TRANSCRIPT
        logger.info(f"[VOICE][STT] transcript_chars={len(text)}")
        return text.strip()

    async def close(self) -> None:
        close = getattr(self._provider, "close", None)
        if close is not None:
            await close()
