"""
Conversation logger.

Best-effort, append-only record of every turn for later prompt analysis.
Nothing here ever raises into a turn: write failures are logged and dropped,
read failures come back as empty results.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict

from voice_coach.logs.sinks import LogSink, NullLogSink
from voice_coach.orchestrator.schemas import ConversationLogRecord

logger = logging.getLogger(__name__)


class ConversationLogger:
    """Front for a LogSink with the error policy applied."""

    def __init__(self, sink: LogSink | None = None) -> None:
        """
        Initialize the logger.

        Args:
            sink: Storage backend. Defaults to a no-op sink.
        """
        self._sink = sink or NullLogSink()

    @property
    def sink(self) -> LogSink:
        return self._sink

    async def append(self, record: ConversationLogRecord) -> None:
        """Store one record. Errors are logged, never raised."""
        try:
            await self._sink.append(record)
            logger.debug(f"Logged interaction {record.interaction_id} for session {record.session_id}")
        except Exception as e:
            logger.error(f"Failed to log conversation for session {record.session_id}: {e}")

    async def read_all(self) -> list[ConversationLogRecord]:
        try:
            return await self._sink.read_all()
        except Exception as e:
            logger.error(f"Failed to read conversation logs: {e}")
            return []

    async def read_by_session(self, session_id: str) -> list[ConversationLogRecord]:
        try:
            return await self._sink.read_by_session(session_id)
        except Exception as e:
            logger.error(f"Failed to read conversation logs for session {session_id}: {e}")
            return []

    async def group_by_session(self) -> dict[str, list[ConversationLogRecord]]:
        """Records keyed by session id, sessions in order of first appearance."""
        grouped: dict[str, list[ConversationLogRecord]] = OrderedDict()
        for record in await self.read_all():
            grouped.setdefault(record.session_id, []).append(record)
        return grouped

    async def export_json(self, session_id: str | None = None) -> str:
        """
        Export records as a pretty-printed JSON array.

        Args:
            session_id: Restrict the export to one session.

        Returns:
            JSON text using wire (camelCase) field names.
        """
        if session_id:
            records = await self.read_by_session(session_id)
        else:
            records = await self.read_all()
        return json.dumps([r.to_json_dict() for r in records], indent=2, ensure_ascii=False)

    async def close(self) -> None:
        await self._sink.close()
