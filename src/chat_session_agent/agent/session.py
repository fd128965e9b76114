"""
Session management for conversations.

SessionStore owns the session lifecycle on top of a PersistenceBackend:
every mutation loads the stored history, builds the new sequence, trims it
and saves it in one call. Nothing is kept between calls, so a failed save
leaves the caller with exactly what was stored before.

Resets (initialize, clear, delete) bump a per-session epoch. A writer that
read the epoch earlier can pass it back to ``append`` so that a message
built from pre-reset context never lands in the reset session.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import structlog

from ..config import DEFAULT_SYSTEM_INSTRUCTION
from ..exceptions import NotFoundError, ValidationError
from ..history import DEFAULT_RETENTION_LIMIT, Message, MessageRole, trim
from ..storage.base import PersistenceBackend

logger = structlog.get_logger()


class KeyedLock:
    """One asyncio.Lock per key.

    Locks are held weakly, so a session's lock disappears once nobody is
    waiting on it.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


@dataclass(frozen=True)
class Session:
    """Snapshot of one conversation."""

    id: str
    system_instruction: str
    history: tuple[Message, ...]
    retention_limit: int
    # Bumped by every reset (initialize, clear, delete) of this session
    epoch: int = 0

    @property
    def messages(self) -> tuple[Message, ...]:
        """The non-system portion of the history."""
        return tuple(m for m in self.history if not m.is_system)

    @property
    def message_count(self) -> int:
        return len(self.messages)


def _validate_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("Session ID must be a non-empty string")
    return session_id


class SessionStore:
    """Bounded, ordered message history per session id."""

    def __init__(
        self,
        backend: PersistenceBackend,
        retention_limit: int = DEFAULT_RETENTION_LIMIT,
        default_system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION,
        lazy_init: bool = True,
    ):
        if retention_limit < 1:
            raise ValidationError(f"retention_limit must be >= 1, got {retention_limit}")
        self.backend = backend
        self.retention_limit = retention_limit
        self.default_system_instruction = default_system_instruction
        self.lazy_init = lazy_init
        self._locks = KeyedLock()
        self._epochs: dict[str, int] = {}

    def _to_session(self, session_id: str, history: tuple[Message, ...]) -> Session:
        return Session(
            id=session_id,
            system_instruction=history[0].content,
            history=history,
            retention_limit=self.retention_limit,
            epoch=self.epoch(session_id),
        )

    def epoch(self, session_id: str) -> int:
        """How many times this session has been reset in this process."""
        return self._epochs.get(session_id, 0)

    def _bump_epoch(self, session_id: str) -> None:
        self._epochs[session_id] = self.epoch(session_id) + 1

    def _normalize(self, session_id: str, stored: list[Message]) -> tuple[Message, ...]:
        if not stored:
            raise NotFoundError(session_id)
        return trim(stored, self.default_system_instruction, self.retention_limit)

    async def initialize(self, session_id: str, system_instruction: str | None = None) -> Session:
        """Create a session, or reset an existing one to just its instruction."""
        _validate_session_id(session_id)
        if system_instruction is None:
            system_instruction = self.default_system_instruction
        if not isinstance(system_instruction, str):
            raise ValidationError("System instruction must be a string")

        history = (Message.system(system_instruction),)
        async with self._locks.hold(session_id):
            await self.backend.save(session_id, history)
            self._bump_epoch(session_id)
            session = self._to_session(session_id, history)

        logger.info("Session initialized", session_id=session_id, backend=self.backend.name)
        return session

    async def append(
        self,
        session_id: str,
        role: MessageRole | str,
        content: str,
        expected_epoch: int | None = None,
    ) -> Session | None:
        """Append a message, trim to the retention limit and persist.

        With ``expected_epoch`` the message is only stored if the session has
        not been reset since that epoch was read; otherwise nothing is written
        and None is returned.
        """
        _validate_session_id(session_id)
        try:
            role = MessageRole(role)
        except ValueError:
            raise ValidationError(f"Unknown message role '{role}'") from None
        if role == MessageRole.SYSTEM:
            raise ValidationError("System messages are set through initialize()")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content must be a non-empty string")

        async with self._locks.hold(session_id):
            if expected_epoch is not None and expected_epoch != self.epoch(session_id):
                logger.warning(
                    "Session reset since epoch; message dropped",
                    session_id=session_id,
                    role=role.value,
                    expected_epoch=expected_epoch,
                    epoch=self.epoch(session_id),
                )
                return None

            stored = await self.backend.load(session_id)
            if not stored:
                if not self.lazy_init:
                    raise NotFoundError(session_id)
                stored = [Message.system(self.default_system_instruction)]
                logger.info("Session created lazily", session_id=session_id)

            staged = trim(
                [*stored, Message(role=role, content=content)],
                self.default_system_instruction,
                self.retention_limit,
            )
            await self.backend.save(session_id, staged)
            session = self._to_session(session_id, staged)

        logger.debug(
            "Message appended",
            session_id=session_id,
            role=role.value,
            message_count=session.message_count,
        )
        return session

    async def get_history(self, session_id: str) -> tuple[Message, ...]:
        """Read-only snapshot of a session's history."""
        session = await self.get_session(session_id)
        return session.history

    async def get_session(self, session_id: str) -> Session:
        _validate_session_id(session_id)
        async with self._locks.hold(session_id):
            stored = await self.backend.load(session_id)
            return self._to_session(session_id, self._normalize(session_id, stored))

    async def clear(self, session_id: str) -> Session:
        """Reset history to only the system instruction."""
        _validate_session_id(session_id)
        async with self._locks.hold(session_id):
            stored = await self.backend.load(session_id)
            if not stored:
                raise NotFoundError(session_id)
            history = (self._normalize(session_id, stored)[0],)
            await self.backend.save(session_id, history)
            self._bump_epoch(session_id)
            session = self._to_session(session_id, history)

        logger.info("Session cleared", session_id=session_id)
        return session

    async def delete(self, session_id: str) -> None:
        """Remove a session from the backend entirely."""
        _validate_session_id(session_id)
        async with self._locks.hold(session_id):
            await self.backend.clear(session_id)
            self._bump_epoch(session_id)
        logger.info("Session deleted", session_id=session_id)

    async def exists(self, session_id: str) -> bool:
        _validate_session_id(session_id)
        async with self._locks.hold(session_id):
            return bool(await self.backend.load(session_id))

    async def list_sessions(self) -> list[str]:
        return await self.backend.list_sessions()
