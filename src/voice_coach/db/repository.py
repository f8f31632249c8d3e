"""
Repository pattern for database operations.

Provides a clean abstraction over SQLAlchemy for the conversation log.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voice_coach.db.models import ConversationLogModel
from voice_coach.orchestrator.schemas import ConversationLogRecord


class ConversationLogRepository:
    """Append and query conversation log rows."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    async def add(self, record: ConversationLogRecord) -> ConversationLogModel:
        """
        Insert one record.

        Args:
            record: The record to append.

        Returns:
            The created row.
        """
        row = ConversationLogModel(
            session_id=record.session_id,
            interaction_id=record.interaction_id,
            turn_type=record.type.value,
            timestamp=record.timestamp,
            record=record.to_json_dict(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_all(self) -> list[ConversationLogRecord]:
        """All records in append order."""
        stmt = select(ConversationLogModel).order_by(ConversationLogModel.id)
        result = await self._session.execute(stmt)
        return [ConversationLogRecord.model_validate(row.record) for row in result.scalars().all()]

    async def list_by_session(self, session_id: str) -> list[ConversationLogRecord]:
        """
        Records for one session in append order.

        Args:
            session_id: Session identifier.

        Returns:
            Matching records, possibly empty.
        """
        stmt = (
            select(ConversationLogModel)
            .where(ConversationLogModel.session_id == session_id)
            .order_by(ConversationLogModel.id)
        )
        result = await self._session.execute(stmt)
        return [ConversationLogRecord.model_validate(row.record) for row in result.scalars().all()]
