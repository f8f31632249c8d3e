"""Session state machine (glue layer).

This module orchestrates one conversational turn:
mic -> STT -> (safety || coach reply) -> playback (+ music, + log)

It owns the Session and its four-state lifecycle. It intentionally does NOT
build prompts, talk to devices, or store logs itself; those are injected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from voice_coach.agents.prompts import build_micro_action_message
from voice_coach.agents.response_orchestrator import AIResponseOrchestrator, RespondOptions
from voice_coach.agents.safety_classifier import SafetyClassifier
from voice_coach.music.resolver import MusicRequestResolver
from voice_coach.orchestrator.background import DetachedTasks
from voice_coach.orchestrator.schemas import (
    AIResponse,
    EmotionCheckResult,
    Message,
    MessageRole,
    MicroAction,
    MusicRequest,
    SafetyLevel,
    SessionState,
    SessionSummary,
    TurnInput,
    TurnKind,
    TurnType,
)
from voice_coach.orchestrator.session import Session
from voice_coach.voice.capture import AudioCaptureManager, MicrophoneError, Recorder
from voice_coach.voice.playback import VoicePlaybackController
from voice_coach.voice.stt import TranscriptionClient

logger = logging.getLogger(__name__)

MICRO_ACTION_MARKER = "[Clicked on micro-action: {title}]"
TURN_FAILED_MESSAGE = "Failed to process your message. Please try again."
NO_CAPTURE_MESSAGE = "Voice capture is not available in this session. Please type your message instead."

_SOURCES = {
    TurnKind.VOICE: "voice_input",
    TurnKind.TYPED: "text_input",
    TurnKind.MICRO_ACTION: "micro_action",
}


@dataclass(frozen=True)
class SessionConfig:
    speak_replies: bool = True
    resolve_music: bool = True


class SessionStateMachine:
    def __init__(
        self,
        *,
        responder: AIResponseOrchestrator,
        playback: VoicePlaybackController,
        classifier: SafetyClassifier | None = None,
        transcriber: TranscriptionClient | None = None,
        capture: AudioCaptureManager | None = None,
        music: MusicRequestResolver | None = None,
        background: DetachedTasks | None = None,
        session: Session | None = None,
        config: SessionConfig | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self._responder = responder
        self._playback = playback
        self._classifier = classifier or SafetyClassifier()
        self._transcriber = transcriber
        self._capture = capture
        self._music = music
        self._background = background or DetachedTasks()
        self._session = session or Session()
        self._config = config or SessionConfig()
        self._on_error = on_error

        self._recorder: Recorder | None = None
        self._last_error: str | None = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def background(self) -> DetachedTasks:
        return self._background

    @property
    def playback(self) -> VoicePlaybackController:
        return self._playback

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def can_end_session(self) -> bool:
        return self._session.assistant_message_count > 0

    # -- lifecycle ---------------------------------------------------------

    async def open(self) -> bool:
        """Eagerly acquire the microphone. Failure is recorded, not raised."""
        if self._capture is None:
            return False
        try:
            await self._capture.acquire()
        except MicrophoneError as e:
            logger.warning(f"[VOICE][MIC] not ready: {e.failure.value}")
            self._session.set_mic_status(False, e.user_message)
            return False
        self._session.set_mic_status(True)
        return True

    async def close(self) -> None:
        """Stop playback, release the microphone, wait for detached work, then
        close the remote clients and the log store."""
        self._playback.stop()
        if self._recorder is not None:
            recorder, self._recorder = self._recorder, None
            try:
                await recorder.stop()
            except Exception as e:
                logger.warning(f"[VOICE][MIC] failed to stop recorder at close: {e}")
        if self._capture is not None:
            self._capture.release()
        self._session.set_mic_status(False, self._session.mic_error)
        # Pending log writes must land before the store is closed.
        await self.drain_background()

        for resource in (self._responder, self._playback, self._transcriber, self._music):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Failed to close {type(resource).__name__}: {e}")

    async def drain_background(self) -> None:
        await self._background.drain()

    # -- inputs ------------------------------------------------------------

    async def start_recording(self) -> bool:
        if self.state != SessionState.IDLE:
            return False
        self._last_error = None

        self._playback.stop()

        if self._capture is None:
            self._report(NO_CAPTURE_MESSAGE)
            return False

        if not self._capture.is_ready and not await self.open():
            self._report(self._session.mic_error or NO_CAPTURE_MESSAGE)
            return False

        try:
            recorder = await self._capture.start_recording()
        except MicrophoneError as e:
            self._session.set_mic_status(self._capture.is_ready, e.user_message)
            self._report(e.user_message)
            return False

        if self.state != SessionState.IDLE:
            # Another input claimed the session while the recorder was starting.
            await recorder.stop()
            return False

        self._recorder = recorder
        self._session.set_mic_status(True)
        self._session.state = SessionState.RECORDING
        return True

    async def stop_recording(self) -> bool:
        if self.state != SessionState.RECORDING or self._recorder is None:
            return False

        recorder, self._recorder = self._recorder, None
        self._session.state = SessionState.PROCESSING
        await self._guard_turn(self._voice_turn(recorder))
        return True

    async def submit_text(self, text: str) -> bool:
        if self.state != SessionState.IDLE:
            return False
        text = (text or "").strip()
        if not text:
            return False
        self._last_error = None

        self._session.state = SessionState.RESPONDING
        await self._guard_turn(self._run_turn(TurnInput.typed(text)))
        return True

    async def select_micro_action(self, action: MicroAction) -> bool:
        if self.state != SessionState.IDLE:
            return False
        self._last_error = None

        self._session.state = SessionState.RESPONDING
        await self._guard_turn(self._run_turn(TurnInput.micro_action(action)))
        return True

    def dismiss_music_player(self, player_id: str) -> bool:
        return self._session.remove_music_player(player_id)

    def dismiss_safety_banner(self) -> None:
        self._session.dismiss_safety_banner()

    def end_session(self, emotion: EmotionCheckResult | None = None) -> SessionSummary | None:
        """Summary of the session, or None before the coach has replied."""
        if not self.can_end_session:
            return None
        self._playback.stop()
        return self._session.to_summary(emotion)

    # -- turn internals ----------------------------------------------------

    async def _guard_turn(self, turn) -> None:  # noqa: ANN001
        try:
            await turn
        except Exception as e:
            logger.error(f"Turn failed in session {self._session.session_id}: {e}", exc_info=True)
            self._report(TURN_FAILED_MESSAGE)
        finally:
            self._session.state = SessionState.IDLE

    async def _voice_turn(self, recorder: Recorder) -> None:
        segment = await self._capture.stop_recording(recorder)
        if self._transcriber is None:
            raise RuntimeError("No transcription client configured")
        transcript = await self._transcriber.transcribe(segment)
        self._session.state = SessionState.RESPONDING
        await self._run_turn(TurnInput.voice(transcript))

    async def _run_turn(self, turn: TurnInput) -> None:
        session_id = self._session.session_id
        source = _SOURCES[turn.kind]

        if turn.kind == TurnKind.MICRO_ACTION:
            action: MicroAction = turn.payload  # type: ignore[assignment]
            history = self._session.conversation_history
            display_text = MICRO_ACTION_MARKER.format(title=action.title)
            model_text = action.title
            classify_text = f"{action.title} {action.description}"
            options = RespondOptions(
                session_id=session_id,
                turn_type=TurnType.MICRO_ACTION_CLICK,
                metadata={"source": source, "clickedAction": action.model_dump()},
                display_text=display_text,
                prompt_override=build_micro_action_message(action, history),
            )
            self._session.add_message(MessageRole.USER, display_text)
        else:
            model_text = display_text = classify_text = str(turn.payload).strip()
            self._session.add_message(MessageRole.USER, display_text)
            history = self._session.conversation_history
            options = RespondOptions(
                session_id=session_id,
                turn_type=TurnType.USER_MESSAGE,
                metadata={"source": source},
            )

        local_level, ai_response = await asyncio.gather(
            self._classifier.aclassify(classify_text),
            self._responder.respond(model_text, history, options),
        )
        self._apply_response(local_level, ai_response)

    def _apply_response(self, local_level: SafetyLevel, ai_response: AIResponse) -> Message:
        level = SafetyLevel.stricter(local_level, ai_response.safety_level)
        self._session.apply_safety_level(level)

        assistant = self._session.add_message(
            MessageRole.ASSISTANT,
            ai_response.message,
            references=ai_response.references,
        )
        self._session.set_micro_actions(ai_response.micro_actions)

        if self._config.speak_replies:
            # Claimed now so a recording started before the task runs still cancels it.
            generation = self._playback.claim()
            self._background.spawn(
                self._playback.speak(ai_response.message, generation=generation),
                name=f"speak-{assistant.id}",
            )

        request = ai_response.music_request
        if request is not None and request.should_play and self._config.resolve_music and self._music is not None:
            self._background.spawn(
                self._resolve_music(request, assistant.id),
                name=f"music-{assistant.id}",
            )

        logger.info(
            f"Turn complete session={self._session.session_id} safety={level.value} "
            f"actions={len(ai_response.micro_actions or [])}"
        )
        return assistant

    async def _resolve_music(self, request: MusicRequest, trigger_message_id: str) -> None:
        player = await self._music.resolve(request, trigger_message_id)
        if player is not None:
            self._session.add_music_player(player)
            logger.info(f"Music player added video={player.video_id} trigger={trigger_message_id}")

    def _report(self, message: str) -> None:
        self._last_error = message
        if self._on_error is None:
            return
        try:
            self._on_error(message)
        except Exception as e:
            logger.warning(f"Error callback failed: {e}")
