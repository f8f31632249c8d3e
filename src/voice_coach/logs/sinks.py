"""Storage backends for the conversation log.

A sink is injected only where durable storage exists; everywhere else the
NullLogSink keeps the logger inert.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from voice_coach.db.models import Base
from voice_coach.db.repository import ConversationLogRepository
from voice_coach.orchestrator.schemas import ConversationLogRecord

logger = logging.getLogger(__name__)

CONVERSATIONS_FILE = "conversations.jsonl"


class LogSink(ABC):
    """Append-only record store."""

    @abstractmethod
    async def append(self, record: ConversationLogRecord) -> None:
        """Persist one record. Never rewrites earlier records."""
        ...

    @abstractmethod
    async def read_all(self) -> list[ConversationLogRecord]:
        """All records in append order."""
        ...

    async def read_by_session(self, session_id: str) -> list[ConversationLogRecord]:
        return [r for r in await self.read_all() if r.session_id == session_id]

    async def close(self) -> None:
        return None


class NullLogSink(LogSink):
    async def append(self, record: ConversationLogRecord) -> None:
        return None

    async def read_all(self) -> list[ConversationLogRecord]:
        return []


class JsonlLogSink(LogSink):
    """One JSON object per line in ``<log_dir>/conversations.jsonl``."""

    def __init__(self, log_dir: str | Path) -> None:
        self._path = Path(log_dir) / CONVERSATIONS_FILE

    @property
    def path(self) -> Path:
        return self._path

    async def append(self, record: ConversationLogRecord) -> None:
        line = json.dumps(record.to_json_dict(), ensure_ascii=False) + "\n"

        def _write() -> None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)

        await asyncio.to_thread(_write)

    async def read_all(self) -> list[ConversationLogRecord]:
        if not self._path.exists():
            return []

        content = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        records: list[ConversationLogRecord] = []
        for lineno, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                records.append(ConversationLogRecord.model_validate_json(line))
            except ValidationError as e:
                logger.warning(f"Skipping malformed log line {lineno} in {self._path}: {e.error_count()} errors")
        return records


class SqlLogSink(LogSink):
    """SQLAlchemy-backed sink; one row per record, keyed by session and turn id."""

    def __init__(self, database_url: str, *, engine: AsyncEngine | None = None) -> None:
        self._database_url = database_url
        self._engine = engine or create_async_engine(database_url)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            url = make_url(self._database_url)
            if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._schema_ready = True

    async def append(self, record: ConversationLogRecord) -> None:
        await self._ensure_schema()
        async with self._sessionmaker() as session:
            async with session.begin():
                await ConversationLogRepository(session).add(record)

    async def read_all(self) -> list[ConversationLogRecord]:
        await self._ensure_schema()
        async with self._sessionmaker() as session:
            return await ConversationLogRepository(session).list_all()

    async def read_by_session(self, session_id: str) -> list[ConversationLogRecord]:
        await self._ensure_schema()
        async with self._sessionmaker() as session:
            return await ConversationLogRepository(session).list_by_session(session_id)

    async def close(self) -> None:
        await self._engine.dispose()
