import os

# Keep test runs from writing log files or touching a real database
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import asyncio
from typing import Dict, List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from calmy.core.dependencies import get_chat_gateway
from calmy.core.exceptions import AuthenticationError, GenerationError
from calmy.database import create_tables
from calmy.main import app
from calmy.models.chat_message import ChatMessage
from calmy.schemas.chat import ContextTurn
from calmy.services.chat_gateway import ChatGateway
from calmy.services.conversation import ConversationService


class FakeLlm:
    """Records every context it is asked about and replays canned chunks."""

    def __init__(self, chunks: Sequence[str] = ("Halo ", "Bunda"), fail_after: Optional[int] = None):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.calls: List[List[ContextTurn]] = []

    async def stream_reply(self, turns):
        self.calls.append(list(turns))
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise GenerationError("provider went away")
            await asyncio.sleep(0)
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise GenerationError("provider went away")


class FakeAuthVerifier:
    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens = tokens if tokens is not None else {"token-ibu": "user-1"}
        self.calls: List[str] = []

    async def verify(self, token: str) -> str:
        self.calls.append(token)
        if token not in self.tokens:
            raise AuthenticationError("unknown token")
        return self.tokens[token]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ConversationService(session_factory, timeout_seconds=5, max_attempts=3, retry_backoff_seconds=0)


@pytest.fixture
def fake_llm():
    return FakeLlm()


@pytest.fixture
def fake_auth():
    return FakeAuthVerifier()


@pytest.fixture
def gateway(fake_llm, store, fake_auth):
    return ChatGateway(llm=fake_llm, store=store, auth_verifier=fake_auth, history_limit=10)


@pytest.fixture
def client(gateway):
    app.dependency_overrides[get_chat_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def rows(session_factory):
    """Returns a callable listing stored (user_id, session_id, role, content) tuples in insertion order."""
    def _rows():
        with session_factory() as db:
            return [
                (m.user_id, m.session_id, m.role, m.content)
                for m in db.scalars(select(ChatMessage).order_by(ChatMessage.id)).all()
            ]
    return _rows


AUTH = {"Authorization": "Bearer token-ibu"}
