"""Audio capture + playback on local hardware.

This module is "dumb hardware I/O": it knows nothing about the conversation,
prompts, or models. It provides:
- a `CaptureBackend` over the default PortAudio input device
- push-to-talk recorders that produce 16-bit PCM WAV segments
- a `PlaybackDevice` for the default output device
- WAV encode/decode helpers
"""

from __future__ import annotations

import asyncio
import io
import logging
import wave
from dataclasses import dataclass

import numpy as np

from voice_coach.voice.capture import (
    CaptureBackend,
    CaptureConstraints,
    CaptureFailure,
    CaptureStream,
    DeviceAccessError,
    Recorder,
)
from voice_coach.voice.playback import PlaybackDevice, PlaybackHandle
from voice_coach.voice.stt import AudioSegment

logger = logging.getLogger(__name__)

WAV_MIME = "audio/wav"


@dataclass(frozen=True)
class AudioIOConfig:
    dtype: str = "int16"  # sounddevice dtype and WAV sample width
    device: int | str | None = None  # None = system default
    output_device: int | str | None = None


def _require_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "sounddevice is required for voice mode. Install Python deps with: pip install -e '.[voice]'. "
            "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
        ) from e


def classify_portaudio_error(message: str) -> CaptureFailure:
    """Map a PortAudio error message onto a capture failure kind."""
    m = (message or "").lower()
    if "permission" in m or "access denied" in m or "not authorized" in m:
        return CaptureFailure.PERMISSION_DENIED
    if any(s in m for s in ("no default input device", "no input device", "error querying device -1", "invalid device")):
        return CaptureFailure.NO_DEVICE
    if "busy" in m or "device unavailable" in m or "unanticipated host error" in m:
        return CaptureFailure.DEVICE_BUSY
    if "invalid sample rate" in m or "invalid number of channels" in m or "sample format not supported" in m:
        return CaptureFailure.UNSUPPORTED_CONSTRAINTS
    return CaptureFailure.UNKNOWN


def encode_wav(audio: np.ndarray, sample_rate: int, channels: int) -> bytes:
    """Encode int16 samples ``[samples, channels]`` as a WAV file."""
    if audio.ndim == 1:
        audio = audio[:, None]
    audio_i16 = audio.astype(np.int16, copy=False)

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)  # int16
        wf.setframerate(sample_rate)
        wf.writeframes(audio_i16.tobytes())
    return buf.getvalue()


def decode_wav(data: bytes) -> tuple[np.ndarray, int]:
    """Decode a 16-bit WAV file into ``([samples, channels], sample_rate)``."""
    with wave.open(io.BytesIO(data), "rb") as wf:
        sr = wf.getframerate()
        n_channels = wf.getnchannels()
        sampwidth = wf.getsampwidth()
        if sampwidth != 2:
            raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
        frames = wf.readframes(wf.getnframes())

    audio = np.frombuffer(frames, dtype=np.int16)
    return audio.reshape(-1, max(n_channels, 1)), sr


class SoundDeviceStream(CaptureStream):
    """A validated input device configuration held for the session."""

    def __init__(self, device: int | str | None, sample_rate: int, channels: int) -> None:
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self._open = True
        self._active_input = None

    @property
    def track_count(self) -> int:
        return self.channels if self._open else 0

    def stop(self) -> None:
        self._open = False
        stream, self._active_input = self._active_input, None
        if stream is not None:
            stream.stop()
            stream.close()


class SoundDeviceRecorder(Recorder):
    mime_type = WAV_MIME

    def __init__(self, stream: SoundDeviceStream, dtype: str = "int16") -> None:
        self._stream = stream
        self._dtype = dtype
        self._frames: list[np.ndarray] = []
        self._input = None

    async def start(self) -> None:
        sd = _require_sounddevice()
        self._frames = []

        def callback(indata, frames, time, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            self._frames.append(indata.copy())

        self._input = sd.InputStream(
            device=self._stream.device,
            samplerate=self._stream.sample_rate,
            channels=self._stream.channels,
            dtype=self._dtype,
            callback=callback,
        )
        self._stream._active_input = self._input
        await asyncio.to_thread(self._input.start)

    async def stop(self) -> AudioSegment:
        channels = self._stream.channels
        if self._input is not None:
            stream = self._input
            self._input = None
            self._stream._active_input = None
            await asyncio.to_thread(stream.stop)
            await asyncio.to_thread(stream.close)

        if self._frames:
            audio = np.concatenate(self._frames, axis=0)
        else:
            audio = np.zeros((0, channels), dtype=np.int16)

        data = encode_wav(audio, self._stream.sample_rate, channels)
        return AudioSegment(data=data, mime_type=WAV_MIME, sample_rate=self._stream.sample_rate)


class SoundDeviceMicrophone(CaptureBackend):
    """Capture backend over the PortAudio input device.

    PortAudio exposes no echo-cancellation or gain controls, so only the
    sample rate and channel count of the constraints are applied.
    """

    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    def is_capture_supported(self) -> bool:
        try:
            _require_sounddevice()
        except RuntimeError as e:
            logger.warning(f"[VOICE][MIC] {e}")
            return False
        return True

    async def open_stream(self, constraints: CaptureConstraints | None) -> SoundDeviceStream:
        sd = _require_sounddevice()

        def _open() -> SoundDeviceStream:
            try:
                info = sd.query_devices(self._config.device, kind="input")
            except (sd.PortAudioError, ValueError) as e:
                raise DeviceAccessError(CaptureFailure.NO_DEVICE, str(e)) from e

            max_channels = int(info.get("max_input_channels", 0))
            if max_channels <= 0:
                raise DeviceAccessError(CaptureFailure.NO_DEVICE, f"{info.get('name')} has no input channels")

            if constraints is None:
                sample_rate = int(info.get("default_samplerate") or 16000)
                channels = 1
            else:
                sample_rate = constraints.sample_rate
                channels = constraints.channels

            try:
                sd.check_input_settings(
                    device=self._config.device,
                    channels=channels,
                    dtype=self._config.dtype,
                    samplerate=sample_rate,
                )
            except (sd.PortAudioError, ValueError) as e:
                raise DeviceAccessError(classify_portaudio_error(str(e)), str(e)) from e

            return SoundDeviceStream(self._config.device, sample_rate, channels)

        return await asyncio.to_thread(_open)

    def is_encoding_supported(self, encoding: str) -> bool:
        return encoding == WAV_MIME

    def create_recorder(self, stream: CaptureStream, encoding: str | None) -> Recorder:
        if encoding not in (None, WAV_MIME):
            raise ValueError(f"Unsupported recording encoding: {encoding}")
        if not isinstance(stream, SoundDeviceStream):
            raise TypeError("SoundDeviceMicrophone can only record from its own streams")
        return SoundDeviceRecorder(stream, dtype=self._config.dtype)


class SoundDevicePlaybackHandle(PlaybackHandle):
    """One `sd.play` call. Only the device's current handle may silence it."""

    def __init__(self, sd, owner: SoundDevicePlayback) -> None:  # noqa: ANN001
        self._sd = sd
        self._owner = owner
        self._stopped = False

    @property
    def is_current(self) -> bool:
        return not self._stopped and self._owner.current is self

    @property
    def is_active(self) -> bool:
        if not self.is_current:
            return False
        try:
            return bool(self._sd.get_stream().active)
        except RuntimeError:
            return False

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        # sd.stop() is global to the module; a superseded handle must not cut off a newer one.
        if self._owner.current is self:
            self._owner.current = None
            self._sd.stop()


class SoundDevicePlayback(PlaybackDevice):
    """Plays WAV bytes on the default output device.

    Resampling changes pitch, so this device reports ``preserves_pitch = False``
    and plays at natural speed.
    """

    preserves_pitch = False

    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self.current: SoundDevicePlaybackHandle | None = None

    async def play(self, audio: bytes, *, rate: float = 1.0) -> PlaybackHandle:
        sd = _require_sounddevice()
        samples, sr = decode_wav(audio)
        audio_f32 = samples.astype(np.float32) / 32768.0
        if audio_f32.shape[1] == 1:
            audio_f32 = audio_f32.squeeze(-1)

        await asyncio.to_thread(
            sd.play,
            audio_f32,
            samplerate=int(sr * rate),
            device=self._config.output_device,
            blocking=False,
        )
        handle = SoundDevicePlaybackHandle(sd, self)
        self.current = handle
        return handle
