"""
Ephemeral in-process backend. History is lost when the process exits.
"""

from typing import Sequence

from ..history import Message
from .base import PersistenceBackend


class EphemeralBackend(PersistenceBackend):
    """Keeps each session as an immutable tuple in a dict."""

    def __init__(self):
        self._sessions: dict[str, tuple[Message, ...]] = {}

    @property
    def name(self) -> str:
        return "memory"

    async def load(self, session_id: str) -> list[Message]:
        return list(self._sessions.get(session_id, ()))

    async def save(self, session_id: str, messages: Sequence[Message]) -> None:
        self._sessions[session_id] = tuple(messages)

    async def clear(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def list_sessions(self) -> list[str]:
        return sorted(self._sessions)
