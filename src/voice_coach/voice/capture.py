"""Microphone acquisition and push-to-talk recording.

`AudioCaptureManager` owns the session's microphone handle. It knows nothing
about transcription or the conversation; it only turns a capture backend into
a held stream, recorders and finished `AudioSegment`s, and turns every backend
failure into a `MicrophoneError` with a message the user can act on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from voice_coach.voice.stt import AudioSegment

logger = logging.getLogger(__name__)

ENCODING_PREFERENCES: tuple[str, ...] = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/ogg;codecs=opus",
    "audio/mp4",
    "audio/wav",
)


class CaptureFailure(str, Enum):
    INSECURE_CONTEXT = "insecure_context"
    CAPTURE_UNSUPPORTED = "capture_unsupported"
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    DEVICE_BUSY = "device_busy"
    UNSUPPORTED_CONSTRAINTS = "unsupported_constraints"
    UNKNOWN = "unknown"
    RECORDER_UNSUPPORTED = "recorder_unsupported"
    RECORDER_START_FAILED = "recorder_start_failed"


_PREFIX = "Unable to access microphone. "

MESSAGES: dict[CaptureFailure, str] = {
    CaptureFailure.INSECURE_CONTEXT: (
        "Microphone access requires a secure context. Run the client locally or over HTTPS."
    ),
    CaptureFailure.CAPTURE_UNSUPPORTED: (
        "This environment does not support microphone access. "
        "Install the voice extra (pip install -e '.[voice]') and PortAudio, or use text mode."
    ),
    CaptureFailure.PERMISSION_DENIED: (
        _PREFIX + "Microphone permission was denied. "
        "Allow microphone access for this terminal in your system privacy settings, then try again."
    ),
    CaptureFailure.NO_DEVICE: _PREFIX + "No microphone found. Please connect a microphone and try again.",
    CaptureFailure.DEVICE_BUSY: (
        _PREFIX + "Microphone is being used by another application. "
        "Please close other apps using the microphone."
    ),
    CaptureFailure.UNSUPPORTED_CONSTRAINTS: "Failed to access microphone with default settings.",
    CaptureFailure.RECORDER_UNSUPPORTED: (
        "The audio device does not support a recording format this client can use. "
        "Try another input device or use text mode."
    ),
    CaptureFailure.RECORDER_START_FAILED: (
        "Failed to start recording. Please check your microphone and permissions, then try again."
    ),
}


def user_message_for(failure: CaptureFailure, detail: str = "") -> str:
    if failure == CaptureFailure.UNKNOWN:
        return (
            f"{_PREFIX}Error: {detail or 'Unknown error'}. "
            "Please check your microphone permissions and try again."
        )
    return MESSAGES[failure]


class DeviceAccessError(Exception):
    """Raised by a capture backend when a stream cannot be opened."""

    def __init__(self, failure: CaptureFailure, detail: str = "") -> None:
        super().__init__(detail or failure.value)
        self.failure = failure
        self.detail = detail


class MicrophoneError(Exception):
    """A user-visible microphone failure."""

    def __init__(self, failure: CaptureFailure, user_message: str | None = None) -> None:
        self.failure = failure
        self.user_message = user_message or user_message_for(failure)
        super().__init__(self.user_message)


@dataclass(frozen=True)
class CaptureConstraints:
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    sample_rate: int = 44100
    channels: int = 1


PREFERRED_CONSTRAINTS = CaptureConstraints()


class CaptureStream:
    """An open microphone handle."""

    @property
    def track_count(self) -> int:
        raise NotImplementedError

    def stop(self) -> None:
        """Stop every track. Safe to call more than once."""
        raise NotImplementedError


class Recorder:
    """One push-to-talk recording on a held stream."""

    mime_type: str = "audio/wav"

    async def start(self) -> None:
        raise NotImplementedError

    async def stop(self) -> AudioSegment:
        raise NotImplementedError


class CaptureBackend:
    """Platform capabilities the manager relies on."""

    def is_secure_context(self) -> bool:
        return True

    def is_capture_supported(self) -> bool:
        raise NotImplementedError

    async def permission_state(self) -> str | None:
        """``"granted"``, ``"denied"``, ``"prompt"`` or None when unknown."""
        return None

    async def open_stream(self, constraints: CaptureConstraints | None) -> CaptureStream:
        """Open the input device. ``None`` means device defaults.

        Raises:
            DeviceAccessError: classified access failure.
        """
        raise NotImplementedError

    def is_encoding_supported(self, encoding: str) -> bool:
        raise NotImplementedError

    def create_recorder(self, stream: CaptureStream, encoding: str | None) -> Recorder:
        raise NotImplementedError


class AudioCaptureManager:
    def __init__(
        self,
        backend: CaptureBackend,
        *,
        constraints: CaptureConstraints = PREFERRED_CONSTRAINTS,
        encodings: tuple[str, ...] = ENCODING_PREFERENCES,
    ) -> None:
        self._backend = backend
        self._constraints = constraints
        self._encodings = encodings
        self._stream: CaptureStream | None = None

    @property
    def handle(self) -> CaptureStream | None:
        return self._stream

    @property
    def is_ready(self) -> bool:
        """True while a held stream still has live tracks."""
        return self._stream is not None and self._stream.track_count > 0

    async def acquire(self) -> CaptureStream:
        """Return the held stream, opening it on first use or after it died.

        Raises:
            MicrophoneError: when the microphone cannot be used.
        """
        if self.is_ready:
            return self._stream
        if self._stream is not None:
            logger.warning("[VOICE][MIC] held stream has no live tracks; re-acquiring")
            self.release()

        if not self._backend.is_secure_context():
            raise MicrophoneError(CaptureFailure.INSECURE_CONTEXT)
        if not self._backend.is_capture_supported():
            raise MicrophoneError(CaptureFailure.CAPTURE_UNSUPPORTED)

        if await self._backend.permission_state() == "denied":
            raise MicrophoneError(CaptureFailure.PERMISSION_DENIED)

        try:
            stream = await self._backend.open_stream(self._constraints)
        except DeviceAccessError as e:
            if e.failure != CaptureFailure.UNSUPPORTED_CONSTRAINTS:
                logger.error(f"[VOICE][MIC] access failed failure={e.failure.value} detail={e.detail}")
                raise MicrophoneError(e.failure, user_message_for(e.failure, e.detail)) from e

            logger.warning(f"[VOICE][MIC] constraints rejected ({e.detail}); retrying with defaults")
            try:
                stream = await self._backend.open_stream(None)
            except DeviceAccessError as retry_error:
                logger.error(f"[VOICE][MIC] default constraints failed: {retry_error.detail}")
                raise MicrophoneError(CaptureFailure.UNSUPPORTED_CONSTRAINTS) from retry_error

        if stream.track_count <= 0:
            stream.stop()
            raise MicrophoneError(
                CaptureFailure.UNKNOWN,
                user_message_for(CaptureFailure.UNKNOWN, "No audio tracks available"),
            )

        self._stream = stream
        logger.info(f"[VOICE][MIC] ready tracks={stream.track_count}")
        return stream

    def select_encoding(self) -> str | None:
        """First supported encoding, or None for the backend default."""
        for encoding in self._encodings:
            if self._backend.is_encoding_supported(encoding):
                return encoding
        return None

    async def start_recording(self, handle: CaptureStream | None = None) -> Recorder:
        stream = handle or self._stream
        if stream is None or stream.track_count <= 0:
            raise MicrophoneError(
                CaptureFailure.UNKNOWN,
                user_message_for(CaptureFailure.UNKNOWN, "No microphone stream available"),
            )

        encoding = self.select_encoding()
        try:
            recorder = self._backend.create_recorder(stream, encoding)
        except Exception as e:
            logger.error(f"[VOICE][MIC] recorder construction failed encoding={encoding}: {e}")
            raise MicrophoneError(CaptureFailure.RECORDER_UNSUPPORTED) from e

        try:
            await recorder.start()
        except Exception as e:
            logger.error(f"[VOICE][MIC] recorder start failed: {e}")
            raise MicrophoneError(CaptureFailure.RECORDER_START_FAILED) from e

        logger.info(f"[VOICE][MIC] recording encoding={encoding or 'default'}")
        return recorder

    async def stop_recording(self, recorder: Recorder) -> AudioSegment:
        segment = await recorder.stop()
        logger.info(f"[VOICE][MIC] recorded bytes={len(segment.data)} mime={segment.mime_type}")
        return segment

    def release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            logger.info("[VOICE][MIC] released")
