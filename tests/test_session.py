"""
Tests for the session store.
"""

import asyncio

import pytest

from chat_session_agent.agent.session import KeyedLock, SessionStore
from chat_session_agent.exceptions import NotFoundError, PersistenceError, ValidationError
from chat_session_agent.history import MessageRole
from chat_session_agent.storage import EphemeralBackend


class FlakyBackend(EphemeralBackend):
    """Ephemeral backend whose saves can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_saves = False

    async def save(self, session_id, messages):
        if self.fail_saves:
            raise PersistenceError("disk full", backend=self.name)
        await super().save(session_id, messages)


@pytest.mark.asyncio
async def test_be_terse_scenario(any_backend):
    """History is bounded to the most recent messages after the system one."""
    store = SessionStore(any_backend, retention_limit=2)

    session = await store.initialize("s1", "Be terse.")
    assert session.system_instruction == "Be terse."

    await store.append("s1", MessageRole.USER, "hi")
    history = await store.get_history("s1")
    assert [(m.role, m.content) for m in history] == [
        (MessageRole.SYSTEM, "Be terse."),
        (MessageRole.USER, "hi"),
    ]

    for text in ("one", "two", "three"):
        await store.append("s1", MessageRole.USER, text)

    history = await store.get_history("s1")
    assert history[0].content == "Be terse."
    assert [m.content for m in history[1:]] == ["two", "three"]


@pytest.mark.asyncio
async def test_retention_bound_holds_after_every_append(any_backend):
    """No append leaves more than retention_limit non-system messages."""
    store = SessionStore(any_backend, retention_limit=3, default_system_instruction="sys")
    await store.initialize("s1")

    for i in range(12):
        role = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
        session = await store.append("s1", role, f"m{i}")
        assert session.message_count <= 3
        assert session.history[0].role == MessageRole.SYSTEM

    history = await store.get_history("s1")
    assert [m.content for m in history[1:]] == ["m9", "m10", "m11"]


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", ["", "   ", None])
async def test_initialize_rejects_empty_id(store, session_id):
    """Session ids must be non-empty strings."""
    with pytest.raises(ValidationError):
        await store.initialize(session_id)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_initialize_resets_existing_session(store):
    """Initializing again drops the history and sets the new instruction."""
    await store.initialize("s1", "old")
    await store.append("s1", "user", "hi")

    session = await store.initialize("s1", "new")

    assert session.system_instruction == "new"
    assert session.message_count == 0
    assert [m.content for m in await store.get_history("s1")] == ["new"]


@pytest.mark.asyncio
async def test_append_creates_session_lazily(store):
    """First use of an id creates the session with the default instruction."""
    session = await store.append("fresh", MessageRole.USER, "hi")

    assert session.system_instruction == "Be terse."
    assert [m.role for m in session.history] == [MessageRole.SYSTEM, MessageRole.USER]


@pytest.mark.asyncio
async def test_append_without_lazy_init_raises(memory_backend):
    """Unknown sessions are an error when lazy creation is off."""
    store = SessionStore(memory_backend, lazy_init=False)

    with pytest.raises(NotFoundError) as exc_info:
        await store.append("missing", MessageRole.USER, "hi")

    assert exc_info.value.session_id == "missing"
    assert await memory_backend.load("missing") == []


@pytest.mark.asyncio
async def test_append_validation(store):
    """Bad roles and empty content are rejected before any mutation."""
    await store.initialize("s1")

    with pytest.raises(ValidationError):
        await store.append("s1", "narrator", "hi")
    with pytest.raises(ValidationError):
        await store.append("s1", MessageRole.SYSTEM, "new rules")
    with pytest.raises(ValidationError):
        await store.append("s1", MessageRole.USER, "   ")

    assert len(await store.get_history("s1")) == 1


@pytest.mark.asyncio
async def test_failed_save_leaves_history_untouched():
    """A backend write failure surfaces and nothing changes."""
    backend = FlakyBackend()
    store = SessionStore(backend, retention_limit=2)
    await store.initialize("s1", "Be terse.")
    await store.append("s1", MessageRole.USER, "one")
    await store.append("s1", MessageRole.USER, "two")
    before = await store.get_history("s1")

    backend.fail_saves = True
    with pytest.raises(PersistenceError):
        await store.append("s1", MessageRole.USER, "three")

    backend.fail_saves = False
    assert await store.get_history("s1") == before


@pytest.mark.asyncio
async def test_get_history_unknown_session(store):
    """Reads never create sessions."""
    with pytest.raises(NotFoundError):
        await store.get_history("nobody")

    assert not await store.exists("nobody")


@pytest.mark.asyncio
async def test_get_history_is_a_snapshot(store):
    """Later appends do not change a snapshot already taken."""
    await store.append("s1", MessageRole.USER, "hi")
    snapshot = await store.get_history("s1")

    await store.append("s1", MessageRole.ASSISTANT, "hello")

    assert isinstance(snapshot, tuple)
    assert len(snapshot) == 2
    assert len(await store.get_history("s1")) == 3


@pytest.mark.asyncio
async def test_clear_keeps_system_instruction(any_backend):
    """Clearing leaves only the instruction."""
    store = SessionStore(any_backend)
    await store.initialize("s1", "Be terse.")
    await store.append("s1", MessageRole.USER, "hi")
    await store.append("s1", MessageRole.ASSISTANT, "hello")

    session = await store.clear("s1")

    assert session.message_count == 0
    history = await store.get_history("s1")
    assert [(m.role, m.content) for m in history] == [(MessageRole.SYSTEM, "Be terse.")]


@pytest.mark.asyncio
async def test_clear_unknown_session(store):
    """Clearing a session that was never created is an error."""
    with pytest.raises(NotFoundError):
        await store.clear("nobody")


@pytest.mark.asyncio
async def test_delete_and_list_sessions(store):
    """Deleted sessions disappear from the listing."""
    await store.initialize("a")
    await store.initialize("b")
    assert await store.list_sessions() == ["a", "b"]

    await store.delete("a")

    assert await store.list_sessions() == ["b"]
    assert not await store.exists("a")


@pytest.mark.asyncio
async def test_concurrent_appends_are_not_lost(any_backend):
    """Appends racing on one session are serialized, none is lost."""
    store = SessionStore(any_backend, retention_limit=50)
    await store.initialize("s1", "sys")

    await asyncio.gather(*(
        store.append("s1", MessageRole.USER, f"m{i}") for i in range(20)
    ))

    history = await store.get_history("s1")
    assert len(history) == 21
    assert {m.content for m in history[1:]} == {f"m{i}" for i in range(20)}
    timestamps = [m.timestamp for m in history[1:]]
    assert timestamps == sorted(timestamps)


@pytest.mark.asyncio
async def test_durable_history_survives_restart(tmp_path):
    """A new backend on the same database sees the stored history."""
    from chat_session_agent.storage import DurableBackend

    url = f"sqlite+aiosqlite:///{tmp_path / 'restart.db'}"
    first = await DurableBackend.from_url(url)
    store = SessionStore(first)
    await store.initialize("s1", "Be terse.")
    await store.append("s1", MessageRole.USER, "hi")
    await first.close()

    second = await DurableBackend.from_url(url)
    try:
        history = await SessionStore(second).get_history("s1")
    finally:
        await second.close()

    assert [m.content for m in history] == ["Be terse.", "hi"]


def test_store_rejects_invalid_retention_limit(memory_backend):
    """The store needs a retention limit of at least one."""
    with pytest.raises(ValidationError):
        SessionStore(memory_backend, retention_limit=0)


@pytest.mark.asyncio
async def test_keyed_lock_isolates_keys():
    """Holding one key's lock does not block another key."""
    locks = KeyedLock()

    async with locks.hold("a"):
        assert locks.locked("a")
        assert not locks.locked("b")
        async with locks.hold("b"):
            assert locks.locked("b")


@pytest.mark.asyncio
async def test_append_with_stale_epoch_is_dropped(store):
    """Writes tied to an epoch from before a reset are not stored."""
    session = await store.append("s1", MessageRole.USER, "hi")

    await store.clear("s1")
    dropped = await store.append("s1", MessageRole.ASSISTANT, "late", expected_epoch=session.epoch)
    current = await store.append("s1", MessageRole.USER, "again", expected_epoch=store.epoch("s1"))

    assert dropped is None
    assert current is not None
    history = await store.get_history("s1")
    assert [m.content for m in history] == ["Be terse.", "again"]


@pytest.mark.asyncio
async def test_resets_bump_epoch(store):
    """initialize, clear and delete each advance the session epoch."""
    first = await store.initialize("s1")
    cleared = await store.clear("s1")
    await store.delete("s1")

    assert cleared.epoch == first.epoch + 1
    assert store.epoch("s1") == first.epoch + 2
    assert store.epoch("other") == 0
