"""
Session state management.

Tracks one guided conversation: transcript, turn state, safety banner,
music players, suggested micro-actions and microphone status.
"""

from datetime import datetime, timezone

from voice_coach.orchestrator.schemas import (
    EmotionCheckResult,
    Message,
    MessageRole,
    MicroAction,
    MusicPlayerInstance,
    Reference,
    SafetyLevel,
    SessionState,
    SessionSummary,
    new_id,
)


class Session:
    """
    Mutable state of a conversation session.

    Messages are append-only. Everything else is replaced wholesale by the
    state machine as turns complete.
    """

    def __init__(self, session_id: str | None = None) -> None:
        """
        Initialize session state.

        Args:
            session_id: Explicit id; generated once if omitted.
        """
        self._session_id: str = session_id or new_id("session")
        self._messages: list[Message] = []
        self._state: SessionState = SessionState.IDLE
        self._safety_level: SafetyLevel = SafetyLevel.SAFE
        self._show_safety_banner: bool = False
        self._music_players: list[MusicPlayerInstance] = []
        self._micro_actions: list[MicroAction] = []
        self._mic_error: str | None = None
        self._mic_ready: bool = False
        self._started_at: datetime = datetime.now(timezone.utc)

    @property
    def session_id(self) -> str:
        """Get the unique session identifier."""
        return self._session_id

    @property
    def messages(self) -> list[Message]:
        """Get all messages in order."""
        return self._messages.copy()

    @property
    def state(self) -> SessionState:
        return self._state

    @state.setter
    def state(self, value: SessionState) -> None:
        self._state = SessionState(value)

    @property
    def safety_level(self) -> SafetyLevel:
        return self._safety_level

    @property
    def show_safety_banner(self) -> bool:
        return self._show_safety_banner

    @property
    def music_players(self) -> list[MusicPlayerInstance]:
        return self._music_players.copy()

    @property
    def micro_actions(self) -> list[MicroAction]:
        return self._micro_actions.copy()

    @property
    def mic_error(self) -> str | None:
        return self._mic_error

    @property
    def mic_ready(self) -> bool:
        return self._mic_ready

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def conversation_history(self) -> list[dict[str, str]]:
        """Get conversation history in a format suitable for model context."""
        return [{"role": m.role.value, "content": m.content} for m in self._messages]

    @property
    def assistant_message_count(self) -> int:
        return sum(1 for m in self._messages if m.role == MessageRole.ASSISTANT)

    def add_message(
        self,
        role: MessageRole,
        content: str,
        references: list[Reference] | None = None,
    ) -> Message:
        """
        Append a message to the transcript.

        Args:
            role: Who sent the message.
            content: Message text.
            references: Research references (assistant messages only).

        Returns:
            The created message.
        """
        refs = tuple(references) if references and role == MessageRole.ASSISTANT else None
        message = Message(role=role, content=content, references=refs)
        self._messages.append(message)
        return message

    def apply_safety_level(self, level: SafetyLevel) -> None:
        """Record the turn's reconciled level; raise the banner when not safe."""
        self._safety_level = level
        if level != SafetyLevel.SAFE:
            self._show_safety_banner = True

    def dismiss_safety_banner(self) -> None:
        self._show_safety_banner = False

    def set_micro_actions(self, actions: list[MicroAction] | None) -> None:
        """Replace current suggestions; None clears them."""
        self._micro_actions = list(actions or [])

    def add_music_player(self, player: MusicPlayerInstance) -> None:
        self._music_players.append(player)

    def remove_music_player(self, player_id: str) -> bool:
        before = len(self._music_players)
        self._music_players = [p for p in self._music_players if p.id != player_id]
        return len(self._music_players) != before

    def set_mic_status(self, ready: bool, error: str | None = None) -> None:
        self._mic_ready = ready
        self._mic_error = error

    def to_summary(self, emotion: EmotionCheckResult | None = None) -> SessionSummary:
        return SessionSummary(
            session_id=self._session_id,
            messages=self.messages,
            micro_actions=self.micro_actions,
            emotion_check_result=emotion,
        )
