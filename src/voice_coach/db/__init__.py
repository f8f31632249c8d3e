"""
Database module for persistence.

Provides the SQLAlchemy model and repository backing the SQL
conversation log sink.
"""

from voice_coach.db.models import Base, ConversationLogModel
from voice_coach.db.repository import ConversationLogRepository

__all__ = [
    "Base",
    "ConversationLogModel",
    "ConversationLogRepository",
]
