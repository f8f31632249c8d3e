"""
Text-based session interface.

Provides a command-line REPL that drives a SessionStateMachine with typed
text, micro-action selection and music player dismissal.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from collections.abc import Callable

from voice_coach.orchestrator.schemas import (
    EmotionCheckResult,
    MessageRole,
    SafetyLevel,
    SessionSummary,
)
from voice_coach.orchestrator.session_machine import SessionStateMachine

HELP_TEXT = """Commands:
  <text>        talk to the coach
  /1 /2 /3      try one of the suggested micro-actions
  /close <id>   close a music player
  /dismiss      hide the safety notice
  /end          end the session and see a summary
  /quit         leave without a summary
  /help         show this help"""

SAFETY_NOTICES = {
    SafetyLevel.CRISIS: (
        "[!] Immediate Attention Needed\n"
        "I noticed you mentioned some concerning content. Please remember, I am an AI assistant "
        "and cannot replace professional mental health support.\n"
        "  - Contact a trusted friend, family member, or colleague\n"
        "  - Call your local mental health hotline or emergency services\n"
        "  - Seek professional mental health support"
    ),
    SafetyLevel.CAUTION: (
        "[*] Please Note\n"
        "If you are experiencing significant difficulty, please consider reaching out to someone "
        "you trust or seeking professional support."
    ),
}

EMOTION_REPLIES = {
    EmotionCheckResult.BETTER: "Thank you for your feedback! I'm glad to hear you're feeling better.",
    EmotionCheckResult.SAME: "Thank you for your honest feedback.",
    EmotionCheckResult.WORSE: (
        "Thank you for your feedback! If you need more support, please consider reaching out to a professional."
    ),
}

_ACTION_CMD = re.compile(r"/([1-9])")


class SessionInterface(ABC):
    """Abstract base class for session interfaces."""

    @abstractmethod
    async def run(self) -> None:
        """Run the session interface."""
        ...

    @abstractmethod
    async def send_message(self, message: str) -> None:
        """
        Send a message to the user.

        Args:
            message: Message to display.
        """
        ...

    @abstractmethod
    async def receive_input(self) -> str:
        """
        Receive input from the user.

        Returns:
            User's input string.
        """
        ...


class TextInterface(SessionInterface):
    """
    Command-line text interface for a coaching session.

    Provides a simple REPL; slash commands map onto state machine inputs.
    """

    def __init__(
        self,
        machine: SessionStateMachine,
        *,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ) -> None:
        """
        Initialize the text interface.

        Args:
            machine: Session state machine to drive.
            input_func: Blocking line reader (run in a worker thread).
            output_func: Line writer.
        """
        self._machine = machine
        self._input = input_func
        self._output = output_func
        self._seen_messages = 0
        self._seen_players: set[str] = set()
        self._banner_shown = False
        self.summary: SessionSummary | None = None

    async def run(self) -> None:
        """Run the interactive session."""
        await self.send_message("=" * 60 + "\nVoice Coach - text session\n" + "=" * 60)
        await self.send_message(HELP_TEXT)

        try:
            while True:
                line = await self.receive_input()
                if not await self.handle_line(line):
                    break
        finally:
            await self._machine.close()

    async def handle_line(self, line: str) -> bool:
        """
        Apply one line of input.

        Returns:
            False when the session should end.
        """
        cmd = (line or "").strip()
        if not cmd:
            return True

        if cmd in ("/quit", "/exit"):
            return False
        if cmd == "/help":
            await self.send_message(HELP_TEXT)
            return True
        if cmd == "/end":
            return not await self._end_session()
        if cmd == "/dismiss":
            self._machine.dismiss_safety_banner()
            self._banner_shown = False
            return True
        if cmd.startswith("/close"):
            player_id = cmd[len("/close"):].strip()
            if not self._machine.dismiss_music_player(player_id):
                await self.send_message(f"No music player with id {player_id!r}.")
            return True

        match = _ACTION_CMD.fullmatch(cmd)
        if match:
            actions = self._machine.session.micro_actions
            index = int(match.group(1)) - 1
            if index >= len(actions):
                await self.send_message("There is no suggestion with that number.")
                return True
            await self._machine.select_micro_action(actions[index])
        else:
            await self._machine.submit_text(cmd)

        await self.render()
        return True

    async def render(self) -> None:
        """Print whatever changed since the last render."""
        session = self._machine.session

        if self._machine.last_error:
            await self.send_message(f"[error] {self._machine.last_error}")

        if session.show_safety_banner and not self._banner_shown:
            notice = SAFETY_NOTICES.get(session.safety_level)
            if notice:
                await self.send_message(notice + "\n(Type /dismiss to hide this notice.)")
            self._banner_shown = True
        elif not session.show_safety_banner:
            self._banner_shown = False

        messages = session.messages
        for message in messages[self._seen_messages:]:
            if message.role != MessageRole.ASSISTANT:
                continue
            await self.send_message(f"Coach: {message.content}")
            for ref in message.references or ():
                await self.send_message(f"  [ref] {ref.title} - {ref.url}")
        self._seen_messages = len(messages)

        actions = session.micro_actions
        if actions:
            lines = ["Suggestions:"]
            lines += [f"  /{i} {a.title}: {a.description}" for i, a in enumerate(actions, start=1)]
            await self.send_message("\n".join(lines))

        await self._render_players()

    async def _render_players(self) -> None:
        for player in self._machine.session.music_players:
            if player.id in self._seen_players:
                continue
            self._seen_players.add(player.id)
            await self.send_message(
                f"[music] {player.title}: https://www.youtube.com/watch?v={player.video_id}"
                f"  (/close {player.id})"
            )

    async def _end_session(self) -> bool:
        if not self._machine.can_end_session:
            await self.send_message("You can end the session once the coach has replied at least once.")
            return False

        answer = (await self._get_input("How do you feel now? [better/same/worse, Enter to skip]: ")).strip().lower()
        try:
            emotion = EmotionCheckResult(answer) if answer else None
        except ValueError:
            emotion = None

        self.summary = self._machine.end_session(emotion)
        await self._display_summary(self.summary)
        return True

    async def _display_summary(self, summary: SessionSummary | None) -> None:
        if summary is None:
            return
        lines = ["=" * 60, "Session Summary", "=" * 60, summary.summary_text]
        if summary.micro_actions:
            lines.append("\nSuggestions to try:")
            lines += [f"  - {a.title}: {a.description}" for a in summary.micro_actions]
        if summary.emotion_check_result:
            lines.append("\n" + EMOTION_REPLIES[summary.emotion_check_result])
        lines.append("=" * 60)
        await self.send_message("\n".join(lines))

    async def send_message(self, message: str) -> None:
        """
        Display a message to the terminal.

        Args:
            message: Message to display.
        """
        self._output(f"\n{message}\n")

    async def receive_input(self) -> str:
        await self._render_players()
        return await self._get_input("You: ")

    async def _get_input(self, prompt: str) -> str:
        try:
            return await asyncio.to_thread(self._input, prompt)
        except EOFError:
            return "/quit"
