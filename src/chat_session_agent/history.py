"""
Conversation history primitives: the Message unit and the retention policy.

History is an ordered, immutable sequence of messages. The system
instruction travels as the leading message and is never evicted; every
other message is subject to first-in-first-out trimming once a session
holds more than its retention limit.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from .exceptions import ValidationError

DEFAULT_RETENTION_LIMIT = 10


class MessageRole(str, Enum):
    """Message roles for conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single immutable conversation entry."""

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)

    @property
    def is_system(self) -> bool:
        return self.role == MessageRole.SYSTEM

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        if timestamp is None:
            timestamp = _utcnow()
        elif timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            role=MessageRole(data["role"]),
            content=data["content"],
            timestamp=timestamp,
        )


def trim(
    history: Iterable[Message],
    system_instruction: str,
    retention_limit: int = DEFAULT_RETENTION_LIMIT,
) -> tuple[Message, ...]:
    """Bound a history to its system message plus the newest messages.

    The first system message found anchors the session; if none is present
    one is built from ``system_instruction``. Of the remaining messages only
    the most recent ``retention_limit`` survive, in their original order.
    Applying ``trim`` to its own output returns the same sequence.
    """
    if retention_limit < 1:
        raise ValidationError(f"retention_limit must be >= 1, got {retention_limit}")

    anchor: Message | None = None
    remainder: list[Message] = []

    for message in history:
        if message.is_system:
            if anchor is None:
                anchor = message
            continue
        remainder.append(message)

    if anchor is None:
        anchor = Message.system(system_instruction)

    if len(remainder) > retention_limit:
        remainder = remainder[-retention_limit:]

    return (anchor, *remainder)
