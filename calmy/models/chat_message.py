# calmy/models/chat_message.py
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Index, Integer, String, TEXT, DateTime, CheckConstraint, Uuid
from sqlalchemy.sql import func
from calmy.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(Base):
    """
    SQLAlchemy model for one chat turn. Rows are grouped by (user_id, session_id)
    and are never updated or deleted by the chat subsystem.
    """
    __tablename__ = "chat_messages"

    # Autoincrement id breaks ties between rows sharing a created_at value
    id: int = Column(Integer, primary_key=True, autoincrement=True)
    # Generated once per save_message call and reused by its retries
    message_id: uuid.UUID = Column(Uuid(as_uuid=True), nullable=False, unique=True, default=uuid.uuid4)
    user_id: str = Column(String(64), nullable=False, index=True)
    session_id: str = Column(String(64), nullable=False, index=True)
    role: str = Column(String(10), nullable=False) # 'user', 'model'
    content: str = Column(TEXT, nullable=False)

    created_at: datetime = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), index=True
    )

    __table_args__ = (
        CheckConstraint("role IN ('user', 'model')", name="chat_message_role_check"),
        Index('idx_chat_messages_user_session_created_at', user_id, session_id, created_at),
    )

    def __repr__(self):
        return f"<ChatMessage(id={self.id}, session_id='{self.session_id}', role='{self.role}')>"
