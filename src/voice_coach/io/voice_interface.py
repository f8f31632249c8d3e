"""Push-to-talk voice session interface.

This file stays intentionally thin: recording, transcription and playback
live in `voice_coach.voice.*`; the state machine remains the single authority
for turn flow. Typed lines and slash commands work as in text mode; an empty
line toggles recording.
"""

from __future__ import annotations

from voice_coach.io.text_interface import HELP_TEXT, TextInterface
from voice_coach.orchestrator.schemas import MessageRole, SessionState

VOICE_HELP = "Press Enter to start recording, Enter again to stop. Type a line to send it as text instead."


class VoiceInterface(TextInterface):
    async def run(self) -> None:
        await self.send_message("=" * 60 + "\nVoice Coach - voice session\n" + "=" * 60)
        await self.send_message(VOICE_HELP + "\n" + HELP_TEXT)

        if not await self._machine.open():
            error = self._machine.session.mic_error
            if error:
                await self.send_message(f"[mic] {error}")

        try:
            while True:
                line = await self.receive_input()
                if not await self.handle_line(line):
                    break
        finally:
            await self._machine.close()

    async def receive_input(self) -> str:
        await self._render_players()
        if self._machine.state == SessionState.RECORDING:
            return await self._get_input("[Voice] Recording... press Enter to stop. ")
        return await self._get_input("[Voice] Enter to talk, or type: ")

    async def handle_line(self, line: str) -> bool:
        if (line or "").strip():
            return await super().handle_line(line)

        if self._machine.state == SessionState.RECORDING:
            await self.send_message("[Voice] Transcribing...")
            await self._machine.stop_recording()
            await self._render_user_transcript()
            await self.render()
            return True

        if not await self._machine.start_recording():
            await self.send_message(f"[mic] {self._machine.last_error or 'Recording could not start.'}")
        return True

    async def _render_user_transcript(self) -> None:
        for message in reversed(self._machine.session.messages):
            if message.role == MessageRole.USER:
                await self.send_message(f"You said: {message.content}")
                return
