import json

import httpx
import pytest

from voice_coach.voice.stt import (
    FALLBACK_TRANSCRIPT,
    AudioSegment,
    OpenAITranscriber,
    STTConfig,
    TranscriptionClient,
    TranscriptionError,
)
from voice_coach.voice.tts import OpenAISpeechSynthesizer, SynthesisError, TTSConfig

STT_CONFIG = STTConfig(model="whisper-test", base_url="https://speech.example/v1", api_key="sk-test")
TTS_CONFIG = TTSConfig(model="tts-test", voice="alloy", base_url="https://speech.example/v1", api_key="sk-test")


def _transport(captured: list[httpx.Request], response: httpx.Response) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return response

    return httpx.MockTransport(handler)


def test_segment_file_name_follows_mime_type() -> None:
    assert AudioSegment(b"x", mime_type="audio/webm;codecs=opus").file_name == "audio.webm"
    assert AudioSegment(b"x", mime_type="audio/wav").file_name == "audio.wav"
    assert AudioSegment(b"x", mime_type="audio/unknown").file_name == "audio.webm"


@pytest.mark.asyncio
async def test_transcriber_posts_multipart_audio() -> None:
    captured: list[httpx.Request] = []
    transcriber = OpenAITranscriber(
        STT_CONFIG,
        transport=_transport(captured, httpx.Response(200, json={"text": "  I feel calmer  "})),
    )

    text = await transcriber.transcribe(AudioSegment(b"RIFFdata", mime_type="audio/wav"))
    await transcriber.close()

    assert text == "I feel calmer"
    request = captured[0]
    assert request.url == "https://speech.example/v1/audio/transcriptions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.read()
    assert b'filename="audio.wav"' in body
    assert b"whisper-test" in body
    assert b"RIFFdata" in body


@pytest.mark.asyncio
async def test_transcriber_raises_on_error_status() -> None:
    transcriber = OpenAITranscriber(
        STT_CONFIG,
        transport=_transport([], httpx.Response(429, text="rate limited")),
    )

    with pytest.raises(TranscriptionError) as exc:
        await transcriber.transcribe(AudioSegment(b"data"))

    assert exc.value.status_code == 429


@pytest.mark.asyncio
async def test_transcriber_rejects_empty_audio_without_sending() -> None:
    captured: list[httpx.Request] = []
    transcriber = OpenAITranscriber(STT_CONFIG, transport=_transport(captured, httpx.Response(200, json={})))

    with pytest.raises(TranscriptionError):
        await transcriber.transcribe(AudioSegment(b""))

    assert captured == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"text": "   "}),
        httpx.Response(200, text="<html>"),
    ],
)
async def test_transcription_client_falls_back(response: httpx.Response) -> None:
    client = TranscriptionClient(OpenAITranscriber(STT_CONFIG, transport=_transport([], response)))

    assert await client.transcribe(AudioSegment(b"data")) == FALLBACK_TRANSCRIPT
    await client.close()


@pytest.mark.asyncio
async def test_transcription_client_falls_back_on_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    client = TranscriptionClient(OpenAITranscriber(STT_CONFIG, transport=httpx.MockTransport(handler)))

    assert await client.transcribe(AudioSegment(b"data")) == FALLBACK_TRANSCRIPT


@pytest.mark.asyncio
async def test_synthesizer_posts_speech_request() -> None:
    captured: list[httpx.Request] = []
    synthesizer = OpenAISpeechSynthesizer(
        TTS_CONFIG,
        transport=_transport(captured, httpx.Response(200, content=b"RIFFaudio")),
    )

    audio = await synthesizer.synthesize("  Take a slow breath.  ")
    await synthesizer.close()

    assert audio == b"RIFFaudio"
    request = captured[0]
    assert request.url == "https://speech.example/v1/audio/speech"
    assert json.loads(request.content) == {
        "model": "tts-test",
        "voice": "alloy",
        "input": "Take a slow breath.",
        "response_format": "wav",
    }


@pytest.mark.asyncio
async def test_synthesizer_skips_blank_text() -> None:
    captured: list[httpx.Request] = []
    synthesizer = OpenAISpeechSynthesizer(TTS_CONFIG, transport=_transport(captured, httpx.Response(200)))

    assert await synthesizer.synthesize("   ") == b""
    assert captured == []


@pytest.mark.asyncio
async def test_synthesizer_raises_on_error_status() -> None:
    synthesizer = OpenAISpeechSynthesizer(TTS_CONFIG, transport=_transport([], httpx.Response(401, text="bad key")))

    with pytest.raises(SynthesisError) as exc:
        await synthesizer.synthesize("hello")

    assert exc.value.status_code == 401
