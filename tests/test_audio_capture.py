import types

import numpy as np
import pytest

from voice_coach.voice import audio_io
from voice_coach.voice.audio_io import SoundDevicePlayback, classify_portaudio_error, decode_wav, encode_wav
from voice_coach.voice.capture import (
    PREFERRED_CONSTRAINTS,
    AudioCaptureManager,
    CaptureBackend,
    CaptureFailure,
    CaptureStream,
    DeviceAccessError,
    MicrophoneError,
    Recorder,
)
from voice_coach.voice.stt import AudioSegment


class FakeStream(CaptureStream):
    def __init__(self, tracks: int = 1) -> None:
        self._tracks = tracks
        self.stop_calls = 0

    @property
    def track_count(self) -> int:
        return self._tracks

    def stop(self) -> None:
        self.stop_calls += 1
        self._tracks = 0


class FakeRecorder(Recorder):
    def __init__(self, *, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.started = False

    async def start(self) -> None:
        if self.fail_start:
            raise RuntimeError("recorder refused to start")
        self.started = True

    async def stop(self) -> AudioSegment:
        return AudioSegment(data=b"\x00\x01", mime_type="audio/wav")


class FakeBackend(CaptureBackend):
    def __init__(
        self,
        *,
        secure: bool = True,
        supported: bool = True,
        permission: str | None = None,
        failures: list[DeviceAccessError] | None = None,
        tracks: int = 1,
        encodings: tuple[str, ...] = ("audio/wav",),
        recorder: FakeRecorder | None = None,
        recorder_error: Exception | None = None,
    ) -> None:
        self.secure = secure
        self.supported = supported
        self.permission = permission
        self.failures = list(failures or [])
        self.tracks = tracks
        self.encodings = encodings
        self.recorder = recorder or FakeRecorder()
        self.recorder_error = recorder_error
        self.open_calls: list[object] = []
        self.recorder_encodings: list[str | None] = []
        self.streams: list[FakeStream] = []

    def is_secure_context(self) -> bool:
        return self.secure

    def is_capture_supported(self) -> bool:
        return self.supported

    async def permission_state(self) -> str | None:
        return self.permission

    async def open_stream(self, constraints):
        self.open_calls.append(constraints)
        if self.failures:
            raise self.failures.pop(0)
        stream = FakeStream(self.tracks)
        self.streams.append(stream)
        return stream

    def is_encoding_supported(self, encoding: str) -> bool:
        return encoding in self.encodings

    def create_recorder(self, stream, encoding):
        self.recorder_encodings.append(encoding)
        if self.recorder_error is not None:
            raise self.recorder_error
        return self.recorder


@pytest.mark.asyncio
async def test_acquire_opens_once_with_preferred_constraints() -> None:
    backend = FakeBackend()
    manager = AudioCaptureManager(backend)

    first = await manager.acquire()
    second = await manager.acquire()

    assert first is second
    assert manager.is_ready
    assert backend.open_calls == [PREFERRED_CONSTRAINTS]


@pytest.mark.asyncio
async def test_insecure_context_fails_before_opening() -> None:
    backend = FakeBackend(secure=False)

    with pytest.raises(MicrophoneError) as exc:
        await AudioCaptureManager(backend).acquire()

    assert exc.value.failure == CaptureFailure.INSECURE_CONTEXT
    assert "secure context" in exc.value.user_message
    assert backend.open_calls == []


@pytest.mark.asyncio
async def test_missing_capture_capability_is_reported() -> None:
    backend = FakeBackend(supported=False)

    with pytest.raises(MicrophoneError) as exc:
        await AudioCaptureManager(backend).acquire()

    assert exc.value.failure == CaptureFailure.CAPTURE_UNSUPPORTED
    assert backend.open_calls == []


@pytest.mark.asyncio
async def test_denied_permission_short_circuits() -> None:
    backend = FakeBackend(permission="denied")

    with pytest.raises(MicrophoneError) as exc:
        await AudioCaptureManager(backend).acquire()

    assert exc.value.failure == CaptureFailure.PERMISSION_DENIED
    assert exc.value.user_message.startswith("Unable to access microphone.")
    assert backend.open_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("failure", "fragment"),
    [
        (CaptureFailure.PERMISSION_DENIED, "permission was denied"),
        (CaptureFailure.NO_DEVICE, "No microphone found"),
        (CaptureFailure.DEVICE_BUSY, "used by another application"),
    ],
)
async def test_device_failures_map_to_user_messages(failure: CaptureFailure, fragment: str) -> None:
    backend = FakeBackend(failures=[DeviceAccessError(failure, "backend detail")])

    with pytest.raises(MicrophoneError) as exc:
        await AudioCaptureManager(backend).acquire()

    assert exc.value.failure == failure
    assert fragment in exc.value.user_message
    assert len(backend.open_calls) == 1


@pytest.mark.asyncio
async def test_unknown_failure_includes_detail() -> None:
    backend = FakeBackend(failures=[DeviceAccessError(CaptureFailure.UNKNOWN, "driver exploded")])

    with pytest.raises(MicrophoneError) as exc:
        await AudioCaptureManager(backend).acquire()

    assert "Error: driver exploded." in exc.value.user_message


@pytest.mark.asyncio
async def test_rejected_constraints_retry_once_with_defaults() -> None:
    backend = FakeBackend(failures=[DeviceAccessError(CaptureFailure.UNSUPPORTED_CONSTRAINTS, "bad rate")])
    manager = AudioCaptureManager(backend)

    await manager.acquire()

    assert backend.open_calls == [PREFERRED_CONSTRAINTS, None]
    assert manager.is_ready


@pytest.mark.asyncio
async def test_failed_retry_reports_default_settings_failure() -> None:
    backend = FakeBackend(
        failures=[
            DeviceAccessError(CaptureFailure.UNSUPPORTED_CONSTRAINTS, "bad rate"),
            DeviceAccessError(CaptureFailure.NO_DEVICE, "gone"),
        ]
    )

    with pytest.raises(MicrophoneError) as exc:
        await AudioCaptureManager(backend).acquire()

    assert exc.value.user_message == "Failed to access microphone with default settings."
    assert len(backend.open_calls) == 2


@pytest.mark.asyncio
async def test_stream_without_tracks_is_rejected() -> None:
    backend = FakeBackend(tracks=0)
    manager = AudioCaptureManager(backend)

    with pytest.raises(MicrophoneError) as exc:
        await manager.acquire()

    assert exc.value.failure == CaptureFailure.UNKNOWN
    assert "No audio tracks available" in exc.value.user_message
    assert not manager.is_ready


def test_select_encoding_follows_preference_order() -> None:
    backend = FakeBackend(encodings=("audio/mp4", "audio/webm"))
    assert AudioCaptureManager(backend).select_encoding() == "audio/webm"


def test_select_encoding_falls_back_to_backend_default() -> None:
    backend = FakeBackend(encodings=())
    assert AudioCaptureManager(backend).select_encoding() is None


@pytest.mark.asyncio
async def test_start_and_stop_recording() -> None:
    backend = FakeBackend()
    manager = AudioCaptureManager(backend)
    await manager.acquire()

    recorder = await manager.start_recording()
    segment = await manager.stop_recording(recorder)

    assert backend.recorder.started
    assert backend.recorder_encodings == ["audio/wav"]
    assert segment.data == b"\x00\x01"


@pytest.mark.asyncio
async def test_recorder_construction_failure_is_unsupported() -> None:
    backend = FakeBackend(recorder_error=ValueError("no such format"))
    manager = AudioCaptureManager(backend)
    await manager.acquire()

    with pytest.raises(MicrophoneError) as exc:
        await manager.start_recording()

    assert exc.value.failure == CaptureFailure.RECORDER_UNSUPPORTED


@pytest.mark.asyncio
async def test_recorder_start_failure_is_reported() -> None:
    backend = FakeBackend(recorder=FakeRecorder(fail_start=True))
    manager = AudioCaptureManager(backend)
    await manager.acquire()

    with pytest.raises(MicrophoneError) as exc:
        await manager.start_recording()

    assert exc.value.failure == CaptureFailure.RECORDER_START_FAILED


@pytest.mark.asyncio
async def test_start_recording_without_stream_fails() -> None:
    with pytest.raises(MicrophoneError):
        await AudioCaptureManager(FakeBackend()).start_recording()


@pytest.mark.asyncio
async def test_release_is_idempotent() -> None:
    backend = FakeBackend()
    manager = AudioCaptureManager(backend)
    await manager.acquire()

    manager.release()
    manager.release()

    assert not manager.is_ready
    assert manager.handle is None
    assert backend.streams[0].stop_calls == 1


@pytest.mark.parametrize(
    ("message", "failure"),
    [
        ("Error opening InputStream: Permission denied", CaptureFailure.PERMISSION_DENIED),
        ("Error querying device -1", CaptureFailure.NO_DEVICE),
        ("Device unavailable [PaErrorCode -9985]", CaptureFailure.DEVICE_BUSY),
        ("Invalid sample rate [PaErrorCode -9997]", CaptureFailure.UNSUPPORTED_CONSTRAINTS),
        ("something odd", CaptureFailure.UNKNOWN),
        ("", CaptureFailure.UNKNOWN),
    ],
)
def test_classify_portaudio_error(message: str, failure: CaptureFailure) -> None:
    assert classify_portaudio_error(message) == failure


def test_wav_encode_decode_keeps_samples() -> None:
    samples = np.array([0, 1000, -1000, 32767, -32768], dtype=np.int16)

    data = encode_wav(samples, sample_rate=16000, channels=1)
    decoded, rate = decode_wav(data)

    assert data[:4] == b"RIFF"
    assert rate == 16000
    assert decoded.shape == (5, 1)
    assert decoded[:, 0].tolist() == samples.tolist()


@pytest.mark.asyncio
async def test_stream_with_no_live_tracks_is_reacquired() -> None:
    backend = FakeBackend()
    manager = AudioCaptureManager(backend)
    first = await manager.acquire()

    first.stop()
    assert not manager.is_ready

    second = await manager.acquire()

    assert second is not first
    assert manager.handle is second
    assert manager.is_ready
    assert len(backend.open_calls) == 2
    assert first.stop_calls == 2


@pytest.mark.asyncio
async def test_start_recording_on_ended_stream_fails() -> None:
    manager = AudioCaptureManager(FakeBackend())
    stream = await manager.acquire()
    stream.stop()

    with pytest.raises(MicrophoneError) as exc_info:
        await manager.start_recording()

    assert exc_info.value.failure == CaptureFailure.UNKNOWN
    assert "No microphone stream available" in exc_info.value.user_message


class FakeSoundDevice:
    def __init__(self) -> None:
        self.played = 0
        self.stops = 0

    def play(self, data, samplerate, device=None, blocking=False) -> None:  # noqa: ANN001
        self.played += 1

    def stop(self) -> None:
        self.stops += 1

    def get_stream(self):
        return types.SimpleNamespace(active=True)


@pytest.mark.asyncio
async def test_superseded_output_handle_does_not_stop_newer_playback(monkeypatch) -> None:
    sd = FakeSoundDevice()
    monkeypatch.setattr(audio_io, "_require_sounddevice", lambda: sd)
    device = SoundDevicePlayback()
    audio = encode_wav(np.zeros(160, dtype=np.int16), sample_rate=16000, channels=1)

    first = await device.play(audio)
    second = await device.play(audio)
    assert sd.played == 2
    assert not first.is_active
    assert second.is_active

    first.stop()
    assert sd.stops == 0
    assert second.is_active

    second.stop()
    second.stop()
    assert sd.stops == 1
    assert not second.is_active
    assert device.current is None
