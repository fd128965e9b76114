"""
Agent module - session history and turn orchestration.

Includes:
- SessionStore: bounded, ordered history per session
- HistoryFormatter: history -> provider request (inline or structured)
- TurnOrchestrator: one user message in, one reply out
"""

from .core import TurnOrchestrator, TurnResult, TurnStatus, create_orchestrator
from .formatting import FormattingStrategy, HistoryFormatter
from .session import Session, SessionStore

__all__ = [
    "TurnOrchestrator",
    "TurnResult",
    "TurnStatus",
    "create_orchestrator",
    "FormattingStrategy",
    "HistoryFormatter",
    "Session",
    "SessionStore",
]
