import logging
import asyncio
import uuid
from typing import Callable, List, Optional, Sequence, TypeVar
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy import select, exc as sa_exc

from calmy.models.chat_message import ChatMessage
from calmy.schemas.chat import ContextTurn
from calmy.core.exceptions import ConversationStoreError
from calmy.services.prompts import SYSTEM_PROMPT, GREETING

DEFAULT_HISTORY_LIMIT = 10
DEFAULT_PERSIST_TIMEOUT_SECONDS = 10.0
DEFAULT_PERSIST_MAX_ATTEMPTS = 3
DEFAULT_PERSIST_RETRY_BACKOFF_SECONDS = 0.5

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["ConversationService", "build_context"]


def build_context(history: Sequence[ChatMessage], message: str) -> List[ContextTurn]:
    """
    Assembles the turns sent to the language model: the instruction turn, the
    greeting turn, the stored history (oldest first), then the new message.

    Stored role 'user' maps to a user turn and anything else to a model turn.
    Adjacent turns with the same role are merged, so the result always
    alternates user/model, starts with the instruction and ends with the new
    user message, whatever shape the stored history has.
    """
    turns = [
        ContextTurn(role="user", text=SYSTEM_PROMPT),
        ContextTurn(role="model", text=GREETING),
    ]
    turns.extend(
        ContextTurn(role="user" if msg.role == "user" else "model", text=msg.content)
        for msg in history
    )
    turns.append(ContextTurn(role="user", text=message))

    merged: List[ContextTurn] = []
    for turn in turns:
        if merged and merged[-1].role == turn.role:
            merged[-1] = ContextTurn(role=turn.role, text=f"{merged[-1].text}\n\n{turn.text}")
        else:
            merged.append(turn)

    if len(merged) != len(turns):
        logger.debug(f"Merged {len(turns) - len(merged)} adjacent same-role turns while assembling context")
    return merged


class ConversationService:
    """
    Append-only store of chat turns, scoped by (user_id, session_id).

    Each call opens its own SQLAlchemy session and runs the blocking work in a
    worker thread, bounded by a timeout. Writes are retried; reads are not.
    """
    def __init__(
        self,
        session_factory: sessionmaker,
        timeout_seconds: float = DEFAULT_PERSIST_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_PERSIST_MAX_ATTEMPTS,
        retry_backoff_seconds: float = DEFAULT_PERSIST_RETRY_BACKOFF_SECONDS,
    ):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds

    # --- Core Methods ---

    async def get_recent_messages(
        self, user_id: str, session_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[ChatMessage]:
        """Retrieves the last `limit` messages of the session, oldest first."""
        if limit <= 0:
            return []

        def _query(db: Session) -> List[ChatMessage]:
            recent_messages = db.scalars(
                select(ChatMessage)
                .where(ChatMessage.user_id == user_id, ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
                .limit(limit)
            ).all()
            return list(recent_messages)[::-1] # Reverse for chronological order

        messages = await self._run("get_recent_messages", _query, attempts=1)
        logger.debug(f"Loaded {len(messages)} recent messages for session {session_id}")
        return messages

    async def list_messages(self, user_id: str, session_id: str) -> List[ChatMessage]:
        """Retrieves every message of the session, oldest first."""
        def _query(db: Session) -> List[ChatMessage]:
            return list(db.scalars(
                select(ChatMessage)
                .where(ChatMessage.user_id == user_id, ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
            ).all())

        return await self._run("list_messages", _query, attempts=1)

    async def save_message(self, user_id: str, session_id: str, role: str, content: str) -> ChatMessage:
        """
        Appends one message to the session. Raises ConversationStoreError on failure.

        Every attempt writes under the same message_id. An attempt that timed
        out may still commit in its worker thread, so a retry first looks the
        key up and returns the existing row instead of inserting a second one.
        """
        message_id = uuid.uuid4()

        def _insert(db: Session) -> ChatMessage:
            existing = self._find_by_message_id(db, message_id)
            if existing is not None:
                logger.info(f"Message {message_id} already stored by an earlier attempt")
                return existing
            db_message = ChatMessage(
                message_id=message_id, user_id=user_id, session_id=session_id, role=role, content=content
            )
            db.add(db_message)
            try:
                db.commit()
            except sa_exc.IntegrityError:
                db.rollback()
                existing = self._find_by_message_id(db, message_id)
                if existing is None:
                    raise
                return existing
            return db_message

        db_message = await self._run("save_message", _insert, attempts=self.max_attempts)
        logger.info(f"Saved {role} message {db_message.id} for session {session_id}")
        return db_message

    @staticmethod
    def _find_by_message_id(db: Session, message_id: uuid.UUID) -> Optional[ChatMessage]:
        return db.scalars(select(ChatMessage).where(ChatMessage.message_id == message_id)).first()

    # --- Database Interaction Helpers ---

    async def _run(self, operation: str, work: Callable[[Session], T], attempts: int) -> T:
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self._in_session, work),
                    timeout=self.timeout_seconds,
                )
            except (sa_exc.SQLAlchemyError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning(f"{operation} failed (attempt {attempt}/{attempts}): {e!r}")
                if attempt < attempts:
                    await asyncio.sleep(self.retry_backoff_seconds * attempt)

        logger.error(f"{operation} gave up after {attempts} attempt(s): {last_error!r}", exc_info=last_error)
        raise ConversationStoreError(f"{operation} failed") from last_error

    def _in_session(self, work: Callable[[Session], T]) -> T:
        db = self.session_factory(expire_on_commit=False)
        try:
            return work(db)
        except sa_exc.SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()
