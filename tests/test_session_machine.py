import asyncio
import json

import pytest

from voice_coach.agents.response_orchestrator import AIResponseOrchestrator, RespondOptions
from voice_coach.logs import ConversationLogger, JsonlLogSink, NullLogSink
from voice_coach.models.llm_client import LLMClientBase, LLMResponse
from voice_coach.music.media_search import MediaSearchBase, MediaSearchResult
from voice_coach.music.resolver import MusicRequestResolver
from voice_coach.orchestrator.background import DetachedTasks
from voice_coach.orchestrator.schemas import (
    AIResponse,
    EmotionCheckResult,
    MessageRole,
    MicroAction,
    MusicRequest,
    SafetyLevel,
    SessionState,
)
from voice_coach.orchestrator.session_machine import SessionStateMachine
from voice_coach.retrieval.reference_search import NullReferenceSearch
from voice_coach.voice.capture import (
    AudioCaptureManager,
    CaptureBackend,
    CaptureFailure,
    CaptureStream,
    DeviceAccessError,
    Recorder,
)
from voice_coach.voice.playback import PlaybackDevice, PlaybackHandle, VoicePlaybackController
from voice_coach.voice.stt import FALLBACK_TRANSCRIPT, AudioSegment, STTProvider, TranscriptionClient

ALL_STATES = set(SessionState)


class FakeResponder:
    """Stands in for AIResponseOrchestrator; records what it was asked."""

    def __init__(self, *responses: AIResponse) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, list[dict[str, str]], RespondOptions]] = []
        self.machine: SessionStateMachine | None = None
        self.states_seen: list[SessionState] = []

    async def respond(self, user_text, history, options=None) -> AIResponse:
        self.calls.append((user_text, list(history), options))
        if self.machine is not None:
            self.states_seen.append(self.machine.state)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


class ExplodingResponder:
    async def respond(self, user_text, history, options=None) -> AIResponse:
        raise RuntimeError("boom")


class FakeSynth:
    async def synthesize(self, text: str) -> bytes:
        return b"RIFF" + text.encode()


class FakeHandle(PlaybackHandle):
    def __init__(self) -> None:
        self.active = True

    @property
    def is_active(self) -> bool:
        return self.active

    def stop(self) -> None:
        self.active = False


class FakeDevice(PlaybackDevice):
    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    async def play(self, audio: bytes, *, rate: float = 1.0) -> PlaybackHandle:
        handle = FakeHandle()
        self.handles.append(handle)
        return handle

    @property
    def active(self) -> int:
        return sum(1 for h in self.handles if h.active)


class FakeStream(CaptureStream):
    def __init__(self) -> None:
        self.stopped = False

    @property
    def track_count(self) -> int:
        return 0 if self.stopped else 1

    def stop(self) -> None:
        self.stopped = True


class FakeRecorder(Recorder):
    def __init__(self, on_start) -> None:  # noqa: ANN001
        self._on_start = on_start

    async def start(self) -> None:
        self._on_start()

    async def stop(self) -> AudioSegment:
        return AudioSegment(data=b"voice", mime_type="audio/wav")


class FakeBackend(CaptureBackend):
    def __init__(self, *, fail_with: CaptureFailure | None = None) -> None:
        self.fail_with = fail_with
        self.on_recorder_start = lambda: None
        self.opened = 0
        self.streams: list[FakeStream] = []

    def is_capture_supported(self) -> bool:
        return True

    async def open_stream(self, constraints):
        self.opened += 1
        if self.fail_with is not None:
            raise DeviceAccessError(self.fail_with, "fake failure")
        stream = FakeStream()
        self.streams.append(stream)
        return stream

    def is_encoding_supported(self, encoding: str) -> bool:
        return encoding == "audio/wav"

    def create_recorder(self, stream, encoding):
        return FakeRecorder(self.on_recorder_start)


class FailingSTT(STTProvider):
    async def transcribe(self, segment: AudioSegment) -> str:
        raise ConnectionError("network down")


class EchoSTT(STTProvider):
    def __init__(self, text: str) -> None:
        self._text = text

    async def transcribe(self, segment: AudioSegment) -> str:
        return self._text


class FakeMediaSearch(MediaSearchBase):
    def __init__(self, result: MediaSearchResult | None) -> None:
        self._result = result

    async def search(self, query: str) -> MediaSearchResult | None:
        return self._result


def _reply(message: str = "I hear you.", **kwargs) -> AIResponse:
    return AIResponse(message=message, **kwargs)


def _machine(responder, *, backend=None, stt=None, media=None, on_error=None):
    device = FakeDevice()
    playback = VoicePlaybackController(FakeSynth(), device, rate=1.3)
    machine = SessionStateMachine(
        responder=responder,
        playback=playback,
        transcriber=TranscriptionClient(stt) if stt else None,
        capture=AudioCaptureManager(backend) if backend else None,
        music=MusicRequestResolver(media or FakeMediaSearch(None)),
        on_error=on_error,
    )
    if isinstance(responder, FakeResponder):
        responder.machine = machine
    return machine, device


@pytest.mark.asyncio
async def test_typed_turn_returns_to_idle_with_transcript() -> None:
    responder = FakeResponder(_reply("Tell me more."))
    machine, _ = _machine(responder)

    assert machine.state == SessionState.IDLE
    assert await machine.submit_text("  I had a rough day  ") is True
    assert machine.state == SessionState.IDLE
    assert responder.states_seen == [SessionState.RESPONDING]
    assert set(responder.states_seen) <= ALL_STATES

    messages = machine.session.messages
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert messages[0].content == "I had a rough day"
    assert messages[1].content == "Tell me more."

    user_text, history, options = responder.calls[0]
    assert user_text == "I had a rough day"
    assert history[-1] == {"role": "user", "content": "I had a rough day"}
    assert options.metadata["source"] == "text_input"
    await machine.drain_background()


@pytest.mark.asyncio
async def test_blank_text_is_ignored() -> None:
    responder = FakeResponder(_reply())
    machine, _ = _machine(responder)

    assert await machine.submit_text("   ") is False
    assert responder.calls == []
    assert machine.session.messages == []


@pytest.mark.asyncio
async def test_input_while_busy_is_ignored() -> None:
    release = asyncio.Event()
    entered = asyncio.Event()

    class SlowResponder(FakeResponder):
        async def respond(self, user_text, history, options=None):
            entered.set()
            await release.wait()
            return await super().respond(user_text, history, options)

    responder = SlowResponder(_reply())
    machine, _ = _machine(responder)

    first = asyncio.create_task(machine.submit_text("first"))
    await entered.wait()

    assert machine.state == SessionState.RESPONDING
    assert await machine.submit_text("second") is False
    assert await machine.select_micro_action(MicroAction(id="a", title="Walk")) is False
    assert await machine.start_recording() is False

    release.set()
    assert await first is True
    assert machine.state == SessionState.IDLE
    assert [c[0] for c in responder.calls] == ["first"]
    await machine.drain_background()


@pytest.mark.asyncio
async def test_model_caution_and_classifier_crisis_shows_crisis() -> None:
    responder = FakeResponder(_reply(safety_level=SafetyLevel.CAUTION))
    machine, _ = _machine(responder)

    await machine.submit_text("I want to end it all")

    assert machine.session.safety_level == SafetyLevel.CRISIS
    assert machine.session.show_safety_banner is True
    await machine.drain_background()


@pytest.mark.asyncio
async def test_safety_banner_persists_until_dismissed() -> None:
    responder = FakeResponder(_reply(safety_level=SafetyLevel.CRISIS), _reply(safety_level=SafetyLevel.SAFE))
    machine, _ = _machine(responder)

    await machine.submit_text("first")
    await machine.submit_text("second")

    assert machine.session.safety_level == SafetyLevel.SAFE
    assert machine.session.show_safety_banner is True

    machine.dismiss_safety_banner()
    assert machine.session.show_safety_banner is False
    await machine.drain_background()


@pytest.mark.asyncio
async def test_missing_micro_actions_empty_the_suggestions() -> None:
    actions = [MicroAction(id="llm-1", title="Breathe", description="Slow breaths")]
    responder = FakeResponder(_reply(micro_actions=actions), _reply(micro_actions=None))
    machine, _ = _machine(responder)

    await machine.submit_text("first")
    assert machine.session.micro_actions == actions

    await machine.submit_text("second")
    assert machine.session.micro_actions == []
    await machine.drain_background()


@pytest.mark.asyncio
async def test_micro_action_turn_uses_marker_and_prompt() -> None:
    responder = FakeResponder(_reply("Great choice."))
    machine, _ = _machine(responder)
    await machine.submit_text("I feel tense")

    action = MicroAction(id="llm-2", title="Stretch", description="Stretch for two minutes")
    assert await machine.select_micro_action(action) is True

    messages = machine.session.messages
    assert messages[-2].content == "[Clicked on micro-action: Stretch]"
    assert messages[-1].content == "Great choice."

    user_text, history, options = responder.calls[-1]
    assert options.turn_type.value == "micro_action_click"
    assert options.metadata["clickedAction"]["title"] == "Stretch"
    assert 'Action: "Stretch"' in options.prompt_override
    assert history == [
        {"role": "user", "content": "I feel tense"},
        {"role": "assistant", "content": "Great choice."},
    ]
    await machine.drain_background()


@pytest.mark.asyncio
async def test_reply_is_spoken_in_the_background() -> None:
    responder = FakeResponder(_reply("Let's breathe together."))
    machine, device = _machine(responder)

    await machine.submit_text("hi")
    await machine.drain_background()

    assert device.active == 1
    assert machine.playback.is_playing


@pytest.mark.asyncio
async def test_start_recording_stops_playback_first() -> None:
    backend = FakeBackend()
    responder = FakeResponder(_reply("Something to listen to."))
    machine, device = _machine(responder, backend=backend, stt=EchoSTT("hello"))
    await machine.open()

    await machine.submit_text("hi")
    await machine.drain_background()
    assert device.active == 1

    active_at_record_start: list[int] = []
    backend.on_recorder_start = lambda: active_at_record_start.append(device.active)

    assert await machine.start_recording() is True
    assert machine.state == SessionState.RECORDING
    assert active_at_record_start == [0]
    assert machine.playback.active_count == 0


@pytest.mark.asyncio
async def test_voice_turn_runs_through_transcription() -> None:
    backend = FakeBackend()
    responder = FakeResponder(_reply("Thanks for sharing."))
    machine, _ = _machine(responder, backend=backend, stt=EchoSTT("I am nervous"))
    await machine.open()

    assert await machine.start_recording() is True
    assert await machine.stop_recording() is True

    assert machine.state == SessionState.IDLE
    assert machine.session.messages[0].content == "I am nervous"
    assert responder.calls[0][2].metadata["source"] == "voice_input"
    await machine.drain_background()


@pytest.mark.asyncio
async def test_failing_transcription_still_yields_assistant_message() -> None:
    backend = FakeBackend()
    responder = FakeResponder(_reply("No problem, you can type too."))
    machine, _ = _machine(responder, backend=backend, stt=FailingSTT())
    await machine.open()

    await machine.start_recording()
    await machine.stop_recording()

    messages = machine.session.messages
    assert messages[0].content == FALLBACK_TRANSCRIPT
    assert messages[-1].role == MessageRole.ASSISTANT
    assert machine.state == SessionState.IDLE
    await machine.drain_background()


@pytest.mark.asyncio
async def test_stop_recording_outside_recording_is_ignored() -> None:
    machine, _ = _machine(FakeResponder(_reply()), backend=FakeBackend(), stt=EchoSTT("x"))
    assert await machine.stop_recording() is False
    assert machine.state == SessionState.IDLE


@pytest.mark.asyncio
async def test_microphone_failure_is_reported_and_state_stays_idle() -> None:
    errors: list[str] = []
    backend = FakeBackend(fail_with=CaptureFailure.PERMISSION_DENIED)
    machine, _ = _machine(FakeResponder(_reply()), backend=backend, stt=EchoSTT("x"), on_error=errors.append)

    assert await machine.open() is False
    assert "permission was denied" in machine.session.mic_error

    assert await machine.start_recording() is False
    assert machine.state == SessionState.IDLE
    assert errors == [machine.session.mic_error]
    assert machine.last_error == machine.session.mic_error


@pytest.mark.asyncio
async def test_unexpected_turn_error_is_reported_once_and_state_restored() -> None:
    errors: list[str] = []
    machine, _ = _machine(ExplodingResponder(), on_error=errors.append)

    assert await machine.submit_text("hello") is True

    assert machine.state == SessionState.IDLE
    assert len(errors) == 1
    assert machine.last_error == errors[0]


@pytest.mark.asyncio
async def test_resolvable_music_request_adds_one_tagged_player() -> None:
    request = MusicRequest(should_play=True, search_query="rain sounds", music_type="calm")
    responder = FakeResponder(_reply("Here is something soothing.", music_request=request))
    media = FakeMediaSearch(MediaSearchResult(video_id="abc123", title="Rain"))
    machine, _ = _machine(responder, media=media)

    await machine.submit_text("help me relax")
    await machine.drain_background()

    (player,) = machine.session.music_players
    assistant = machine.session.messages[-1]
    assert player.trigger_message_id == assistant.id
    assert player.video_id == "abc123"
    assert player.title == "calm"

    assert machine.dismiss_music_player(player.id) is True
    assert machine.session.music_players == []


@pytest.mark.asyncio
async def test_unresolvable_music_request_adds_nothing() -> None:
    request = MusicRequest(should_play=True, search_query="nothing matches")
    responder = FakeResponder(_reply(music_request=request))
    machine, _ = _machine(responder, media=FakeMediaSearch(None))

    await machine.submit_text("play something")
    await machine.drain_background()

    assert machine.session.music_players == []
    assert machine.last_error is None


@pytest.mark.asyncio
async def test_music_request_without_should_play_is_ignored() -> None:
    request = MusicRequest(should_play=False, youtube_video_id="abc123")
    responder = FakeResponder(_reply(music_request=request))
    machine, _ = _machine(responder, media=FakeMediaSearch(None))

    await machine.submit_text("hi")
    await machine.drain_background()

    assert machine.session.music_players == []


@pytest.mark.asyncio
async def test_end_session_requires_an_assistant_reply() -> None:
    responder = FakeResponder(_reply("Take care."))
    machine, _ = _machine(responder)

    assert machine.can_end_session is False
    assert machine.end_session() is None

    await machine.submit_text("thanks")
    summary = machine.end_session(EmotionCheckResult.BETTER)

    assert summary is not None
    assert summary.session_id == machine.session.session_id
    assert summary.emotion_check_result == EmotionCheckResult.BETTER
    assert summary.summary_text == "In this session, you shared 1 message, and the AI coach provided 1 response."
    await machine.close()


class ScriptedLLM(LLMClientBase):
    def __init__(self, replies: list[dict]) -> None:
        self._replies = list(replies)

    @property
    def model(self) -> str:
        return "scripted"

    async def chat(self, messages, response_format=None, **kwargs) -> LLMResponse:
        return LLMResponse(content=json.dumps(self._replies.pop(0)), model=self.model)


@pytest.mark.asyncio
async def test_every_completed_turn_is_logged_once(tmp_path) -> None:
    background = DetachedTasks()
    conversation_logger = ConversationLogger(JsonlLogSink(tmp_path))
    responder = AIResponseOrchestrator(
        llm_client=ScriptedLLM(
            [
                {"message": "What happened today?", "safetyLevel": "safe"},
                {"message": "That walk could help.", "safetyLevel": "safe"},
            ]
        ),
        reference_search=NullReferenceSearch(),
        conversation_logger=conversation_logger,
        background=background,
    )
    machine = SessionStateMachine(
        responder=responder,
        playback=VoicePlaybackController(FakeSynth(), FakeDevice(), rate=1.0),
        background=background,
    )

    await machine.submit_text("I feel stuck")
    await machine.select_micro_action(MicroAction(id="m1", title="Walk", description="Ten minutes outside"))
    await machine.drain_background()

    records = await conversation_logger.read_by_session(machine.session.session_id)
    assert len(records) == 2
    assert records[0].user_message == "I feel stuck"
    assert records[0].ai_response["message"] == "What happened today?"
    assert records[1].type.value == "micro_action_click"
    assert records[1].user_message == "[Clicked on micro-action: Walk]"
    assert records[1].ai_response["message"] == "That walk could help."
    assert records[1].metadata["clickedAction"]["id"] == "m1"


@pytest.mark.asyncio
async def test_recording_right_after_a_reply_cancels_pending_speech() -> None:
    backend = FakeBackend()
    responder = FakeResponder(_reply("This should never be heard."))
    machine, device = _machine(responder, backend=backend, stt=EchoSTT("hello"))
    await machine.open()

    await machine.submit_text("hi")
    assert await machine.start_recording() is True
    await machine.drain_background()

    assert machine.state == SessionState.RECORDING
    assert device.active == 0
    assert device.handles == []


@pytest.mark.asyncio
async def test_ended_microphone_stream_is_reacquired_on_next_recording() -> None:
    backend = FakeBackend()
    machine, _ = _machine(FakeResponder(_reply()), backend=backend, stt=EchoSTT("x"))
    assert await machine.open() is True

    # Device unplugged or permission revoked: every track ends.
    backend.streams[0].stop()

    assert await machine.start_recording() is True
    assert backend.opened == 2
    assert machine.state == SessionState.RECORDING
    assert machine.session.mic_ready is True


class ClosableLLM(ScriptedLLM):
    closed = False

    async def close(self) -> None:
        self.closed = True


class ClosableReferences(NullReferenceSearch):
    closed = False

    async def close(self) -> None:
        self.closed = True


class CountingSink(NullLogSink):
    def __init__(self) -> None:
        self.records: list = []
        self.records_at_close: int | None = None

    async def append(self, record) -> None:  # noqa: ANN001
        self.records.append(record)

    async def close(self) -> None:
        self.records_at_close = len(self.records)


class ClosableSynth(FakeSynth):
    closed = False

    async def close(self) -> None:
        self.closed = True


class ClosableSTT(EchoSTT):
    closed = False

    async def close(self) -> None:
        self.closed = True


class ClosableMediaSearch(FakeMediaSearch):
    closed = False

    async def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_close_flushes_logs_then_closes_every_client() -> None:
    background = DetachedTasks()
    llm = ClosableLLM([{"message": "Glad you came.", "safetyLevel": "safe"}])
    references = ClosableReferences()
    sink = CountingSink()
    synth = ClosableSynth()
    stt = ClosableSTT("unused")
    media = ClosableMediaSearch(None)
    machine = SessionStateMachine(
        responder=AIResponseOrchestrator(
            llm_client=llm,
            reference_search=references,
            conversation_logger=ConversationLogger(sink),
            background=background,
        ),
        playback=VoicePlaybackController(synth, FakeDevice(), rate=1.0),
        transcriber=TranscriptionClient(stt),
        music=MusicRequestResolver(media),
        background=background,
    )

    await machine.submit_text("hello")
    await machine.close()

    assert sink.records_at_close == 1
    assert llm.closed
    assert references.closed
    assert synth.closed
    assert stt.closed
    assert media.closed
