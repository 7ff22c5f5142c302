import asyncio
import time
from types import SimpleNamespace

import pytest
from sqlalchemy import exc as sa_exc

from calmy.core.exceptions import ConversationStoreError
from calmy.services.conversation import ConversationService, build_context
from calmy.services.prompts import GREETING, SYSTEM_PROMPT


def stored(role, content):
    return SimpleNamespace(role=role, content=content)


class FlakySessionFactory:
    """Fails the first `failures` calls, then hands out real sessions."""

    def __init__(self, session_factory, failures):
        self.session_factory = session_factory
        self.failures = failures
        self.calls = 0

    def __call__(self, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise sa_exc.OperationalError("SELECT 1", {}, Exception("database is down"))
        return self.session_factory(**kwargs)


class SlowCommitSessionFactory:
    """The first session commits normally but only returns after `delay` seconds."""

    def __init__(self, session_factory, delay):
        self.session_factory = session_factory
        self.delay = delay
        self.calls = 0

    def __call__(self, **kwargs):
        self.calls += 1
        db = self.session_factory(**kwargs)
        if self.calls == 1:
            commit = db.commit

            def slow_commit():
                commit()
                time.sleep(self.delay)

            db.commit = slow_commit
        return db


# --- build_context ---

def test_context_without_history():
    turns = build_context([], "Halo")

    assert [(t.role, t.text) for t in turns] == [
        ("user", SYSTEM_PROMPT),
        ("model", GREETING),
        ("user", "Halo"),
    ]


def test_context_keeps_well_formed_history_as_is():
    history = [stored("user", "q1"), stored("model", "a1"), stored("user", "q2"), stored("model", "a2")]

    turns = build_context(history, "q3")

    assert [t.text for t in turns[2:]] == ["q1", "a1", "q2", "a2", "q3"]


def test_unknown_roles_map_to_model_turns():
    turns = build_context([stored("user", "q1"), stored("assistant", "a1")], "q2")

    assert [t.role for t in turns] == ["user", "model", "user", "model", "user"]


def test_dangling_user_turn_merges_into_new_message():
    turns = build_context([stored("user", "q1"), stored("model", "a1"), stored("user", "unanswered")], "again")

    assert turns[-1].role == "user"
    assert turns[-1].text == "unanswered\n\nagain"
    assert len(turns) == 5


def test_leading_model_turn_merges_into_greeting():
    turns = build_context([stored("model", "earlier reply"), stored("user", "q")], "q2")

    assert turns[1].text == f"{GREETING}\n\nearlier reply"
    roles = [t.role for t in turns]
    assert all(a != b for a, b in zip(roles, roles[1:]))


# --- ConversationService ---

@pytest.mark.asyncio
async def test_save_and_list_are_scoped_and_ordered(store):
    await store.save_message("user-1", "sesi-1", "user", "satu")
    await store.save_message("user-1", "sesi-2", "user", "sesi lain")
    await store.save_message("user-2", "sesi-1", "user", "pengguna lain")
    await store.save_message("user-1", "sesi-1", "model", "dua")

    messages = await store.list_messages("user-1", "sesi-1")

    assert [(m.role, m.content) for m in messages] == [("user", "satu"), ("model", "dua")]
    assert messages[0].created_at <= messages[1].created_at


@pytest.mark.asyncio
async def test_recent_messages_are_latest_oldest_first(store):
    for i in range(1, 8):
        await store.save_message("user-1", "sesi-1", "user" if i % 2 else "model", f"m{i}")

    recent = await store.get_recent_messages("user-1", "sesi-1", limit=3)

    assert [m.content for m in recent] == ["m5", "m6", "m7"]


@pytest.mark.asyncio
async def test_recent_messages_with_zero_limit(store):
    await store.save_message("user-1", "sesi-1", "user", "m1")

    assert await store.get_recent_messages("user-1", "sesi-1", limit=0) == []


@pytest.mark.asyncio
async def test_saved_message_carries_identifiers(store):
    message = await store.save_message("user-1", "sesi-1", "model", "jawaban")

    assert message.id is not None
    assert (message.user_id, message.session_id, message.role, message.content) == (
        "user-1", "sesi-1", "model", "jawaban"
    )
    assert message.created_at is not None


@pytest.mark.asyncio
async def test_invalid_role_is_rejected(store):
    with pytest.raises(ConversationStoreError):
        await store.save_message("user-1", "sesi-1", "loading", "")


@pytest.mark.asyncio
async def test_writes_are_retried(session_factory):
    flaky = FlakySessionFactory(session_factory, failures=2)
    store = ConversationService(flaky, max_attempts=3, retry_backoff_seconds=0)

    await store.save_message("user-1", "sesi-1", "user", "halo")

    assert flaky.calls == 3
    assert len(await ConversationService(session_factory).list_messages("user-1", "sesi-1")) == 1


@pytest.mark.asyncio
async def test_writes_give_up_after_max_attempts(session_factory):
    flaky = FlakySessionFactory(session_factory, failures=5)
    store = ConversationService(flaky, max_attempts=2, retry_backoff_seconds=0)

    with pytest.raises(ConversationStoreError):
        await store.save_message("user-1", "sesi-1", "user", "halo")

    assert flaky.calls == 2


@pytest.mark.asyncio
async def test_reads_are_not_retried(session_factory):
    flaky = FlakySessionFactory(session_factory, failures=1)
    store = ConversationService(flaky, max_attempts=3, retry_backoff_seconds=0)

    with pytest.raises(ConversationStoreError):
        await store.get_recent_messages("user-1", "sesi-1")

    assert flaky.calls == 1


@pytest.mark.asyncio
async def test_retry_after_timeout_does_not_duplicate_the_row(session_factory):
    slow = SlowCommitSessionFactory(session_factory, delay=0.3)
    store = ConversationService(slow, timeout_seconds=0.1, max_attempts=2, retry_backoff_seconds=0)

    message = await store.save_message("user-1", "sesi-1", "user", "halo")
    # Let the timed-out worker thread finish before inspecting the table
    await asyncio.sleep(0.4)

    assert slow.calls == 2
    stored_messages = await ConversationService(session_factory).list_messages("user-1", "sesi-1")
    assert [(m.role, m.content) for m in stored_messages] == [("user", "halo")]
    assert stored_messages[0].message_id == message.message_id


@pytest.mark.asyncio
async def test_each_save_gets_its_own_message_id(store):
    first = await store.save_message("user-1", "sesi-1", "user", "halo")
    second = await store.save_message("user-1", "sesi-1", "user", "halo")

    assert first.message_id != second.message_id
    assert len(await store.list_messages("user-1", "sesi-1")) == 2
