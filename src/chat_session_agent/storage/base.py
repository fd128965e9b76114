"""
Persistence backend interface for session history.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from ..history import Message


class PersistenceBackend(ABC):
    """Stores and retrieves message sequences keyed by session id.

    The system instruction is stored as the leading message of a sequence,
    so a session exists exactly when ``load`` returns something non-empty.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name used in logs and errors."""
        ...

    @abstractmethod
    async def load(self, session_id: str) -> list[Message]:
        """Return the stored sequence, or an empty list for unknown ids."""
        ...

    @abstractmethod
    async def save(self, session_id: str, messages: Sequence[Message]) -> None:
        """Replace the stored sequence for ``session_id`` in one step."""
        ...

    @abstractmethod
    async def clear(self, session_id: str) -> None:
        """Remove everything stored for ``session_id``."""
        ...

    @abstractmethod
    async def list_sessions(self) -> list[str]:
        """List the ids of all stored sessions."""
        ...

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None
