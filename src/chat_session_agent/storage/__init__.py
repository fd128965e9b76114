"""
Persistence backends for session history.

- EphemeralBackend: process memory, lost on restart
- DurableBackend: SQLAlchemy async database, survives restarts
"""

from ..config import Settings, get_settings
from .base import PersistenceBackend
from .database import DurableBackend, TranscriptRecorder
from .memory import EphemeralBackend


async def create_backend(settings: Settings | None = None) -> PersistenceBackend:
    """Create the backend selected by ``settings.session_backend``."""
    settings = settings or get_settings()

    if settings.session_backend == "memory":
        return EphemeralBackend()
    elif settings.session_backend == "database":
        return await DurableBackend.from_url(settings.database_url)
    else:
        raise ValueError(f"Unknown session backend: {settings.session_backend}")


__all__ = [
    "PersistenceBackend",
    "EphemeralBackend",
    "DurableBackend",
    "TranscriptRecorder",
    "create_backend",
]
