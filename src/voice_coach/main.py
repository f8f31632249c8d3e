"""
Main entry point for the voice coach application.
"""

import argparse
import asyncio
import logging
import sys

from voice_coach.agents.response_orchestrator import AIResponseOrchestrator
from voice_coach.agents.safety_classifier import SafetyClassifier
from voice_coach.config import Settings, get_settings
from voice_coach.io.text_interface import SessionInterface, TextInterface
from voice_coach.logs import ConversationLogger, build_log_sink
from voice_coach.models.llm_client import LLMClient
from voice_coach.music.resolver import MusicRequestResolver
from voice_coach.orchestrator.background import DetachedTasks
from voice_coach.orchestrator.session_machine import SessionConfig, SessionStateMachine
from voice_coach.retrieval.reference_search import WikipediaReferenceSearch
from voice_coach.voice.capture import AudioCaptureManager
from voice_coach.voice.playback import NullPlaybackDevice, PlaybackDevice, VoicePlaybackController
from voice_coach.voice.stt import TranscriptionClient
from voice_coach.voice.tts import OpenAISpeechSynthesizer


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voice-coach")
    parser.add_argument(
        "--mode",
        choices=["text", "voice"],
        default="text",
        help="Run in text or voice mode",
    )
    parser.add_argument(
        "--no-speech",
        action="store_true",
        help="Do not synthesize or play the coach's replies",
    )
    return parser


def build_machine(settings: Settings, *, mode: str, speak: bool = True) -> SessionStateMachine:
    """Wire the session state machine from settings."""
    background = DetachedTasks()
    conversation_logger = ConversationLogger(build_log_sink(settings))

    responder = AIResponseOrchestrator(
        llm_client=LLMClient(
            model=settings.openai_model,
            timeout=settings.llm_timeout,
        ),
        reference_search=WikipediaReferenceSearch(),
        conversation_logger=conversation_logger,
        background=background,
    )

    device: PlaybackDevice = NullPlaybackDevice()
    capture = None
    transcriber = None
    if mode == "voice":
        # Lazy import so text mode doesn't touch audio hardware.
        from voice_coach.voice.audio_io import SoundDeviceMicrophone, SoundDevicePlayback

        capture = AudioCaptureManager(SoundDeviceMicrophone())
        transcriber = TranscriptionClient()
        if speak:
            device = SoundDevicePlayback()

    playback = VoicePlaybackController(OpenAISpeechSynthesizer(), device, rate=settings.playback_rate)

    return SessionStateMachine(
        responder=responder,
        playback=playback,
        classifier=SafetyClassifier(),
        transcriber=transcriber,
        capture=capture,
        music=MusicRequestResolver(),
        background=background,
        config=SessionConfig(speak_replies=speak and mode == "voice"),
    )


async def run_session(argv: list[str] | None = None) -> None:
    """
    Run an interactive coaching session.

    This is the main async entry point that initializes all components
    and runs the session loop.
    """
    settings = get_settings()
    logger = logging.getLogger(__name__)
    args = build_parser().parse_args(argv)

    logger.info("Initializing voice coach...")
    logger.debug(f"Using chat model: {settings.openai_model}")

    machine = build_machine(settings, mode=args.mode, speak=not args.no_speech)

    interface: SessionInterface
    if args.mode == "voice":
        from voice_coach.io.voice_interface import VoiceInterface

        interface = VoiceInterface(machine)
    else:
        interface = TextInterface(machine)

    logger.info(f"Starting session {machine.session.session_id}...")
    await interface.run()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_session(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nSession terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
