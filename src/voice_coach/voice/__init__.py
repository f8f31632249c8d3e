"""Voice subsystem.

mic -> capture -> STT -> (session) -> TTS -> speaker

The session state machine remains the single authority for turn flow.
"""

from voice_coach.voice.capture import (
    ENCODING_PREFERENCES,
    PREFERRED_CONSTRAINTS,
    AudioCaptureManager,
    CaptureBackend,
    CaptureConstraints,
    CaptureFailure,
    CaptureStream,
    DeviceAccessError,
    MicrophoneError,
    Recorder,
)
from voice_coach.voice.playback import (
    NullPlaybackDevice,
    PlaybackDevice,
    PlaybackHandle,
    VoicePlaybackController,
)
from voice_coach.voice.stt import (
    FALLBACK_TRANSCRIPT,
    AudioSegment,
    OpenAITranscriber,
    STTConfig,
    STTProvider,
    TranscriptionClient,
)
from voice_coach.voice.tts import OpenAISpeechSynthesizer, TTSConfig, TTSProvider

__all__ = [
    "ENCODING_PREFERENCES",
    "FALLBACK_TRANSCRIPT",
    "PREFERRED_CONSTRAINTS",
    "AudioCaptureManager",
    "AudioSegment",
    "CaptureBackend",
    "CaptureConstraints",
    "CaptureFailure",
    "CaptureStream",
    "DeviceAccessError",
    "MicrophoneError",
    "NullPlaybackDevice",
    "OpenAISpeechSynthesizer",
    "OpenAITranscriber",
    "PlaybackDevice",
    "PlaybackHandle",
    "Recorder",
    "STTConfig",
    "STTProvider",
    "TTSConfig",
    "TTSProvider",
    "TranscriptionClient",
    "VoicePlaybackController",
]
