"""
Durable backend on SQLAlchemy's async ORM.

Every write runs in one transaction, so a failed save leaves the previously
stored history untouched. Connection pooling comes from the engine.
Database errors are surfaced as PersistenceError and never retried here.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..history import Message, MessageRole
from ..exceptions import PersistenceError
from ..models import ChatMessage, ChatSession, ChatSummary, init_database
from .base import PersistenceBackend

logger = structlog.get_logger()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Transactional:
    """Shared transaction handling for database-backed components."""

    name = "database"

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as db:
                async with db.begin():
                    yield db
        except (SQLAlchemyError, OSError) as e:
            logger.error("Database operation failed", operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e}", backend=self.name) from e


class DurableBackend(_Transactional, PersistenceBackend):
    """Session history stored in ``chat_sessions`` / ``chat_messages``."""

    @classmethod
    async def from_url(cls, database_url: str) -> "DurableBackend":
        """Create tables if needed and return a backend bound to the URL."""
        try:
            session_maker = await init_database(database_url)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"cannot open database: {e}", backend=cls.name) from e
        logger.info("Database initialized", url=database_url)
        return cls(session_maker)

    @property
    def session_maker(self) -> async_sessionmaker:
        return self._session_maker

    async def load(self, session_id: str) -> list[Message]:
        async with self._transaction("load") as db:
            result = await db.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.position)
            )
            rows = result.scalars().all()

        return [
            Message(
                role=MessageRole(row.role),
                content=row.content,
                timestamp=_as_utc(row.created_at),
            )
            for row in rows
        ]

    async def save(self, session_id: str, messages: Sequence[Message]) -> None:
        async with self._transaction("save") as db:
            record = await db.get(ChatSession, session_id)
            if record is None:
                db.add(ChatSession(id=session_id))
            else:
                record.updated_at = datetime.now(timezone.utc)

            await db.execute(
                delete(ChatMessage).where(ChatMessage.session_id == session_id)
            )
            db.add_all([
                ChatMessage(
                    session_id=session_id,
                    position=position,
                    role=message.role.value,
                    content=message.content,
                    created_at=message.timestamp,
                )
                for position, message in enumerate(messages)
            ])

    async def clear(self, session_id: str) -> None:
        async with self._transaction("clear") as db:
            await db.execute(
                delete(ChatMessage).where(ChatMessage.session_id == session_id)
            )
            await db.execute(
                delete(ChatSession).where(ChatSession.id == session_id)
            )

    async def list_sessions(self) -> list[str]:
        async with self._transaction("list_sessions") as db:
            result = await db.execute(
                select(ChatSession.id).order_by(ChatSession.created_at, ChatSession.id)
            )
            return list(result.scalars().all())

    async def close(self) -> None:
        engine = self._session_maker.kw.get("bind")
        if engine is not None:
            await engine.dispose()


class TranscriptRecorder(_Transactional):
    """Writes one ``chat_summaries`` row per successful turn."""

    async def record(self, session_id: str, user_message: str, assistant_message: str) -> None:
        async with self._transaction("record_transcript") as db:
            db.add(ChatSummary(
                session_id=session_id,
                user_message=user_message,
                assistant_message=assistant_message,
                created_at=datetime.now(timezone.utc),
            ))
