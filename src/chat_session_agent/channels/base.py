"""
Base channel abstraction for messaging platforms.

A channel turns a platform's webhook payload into ChannelMessages and
delivers OutgoingMessages back through the platform's API.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ChannelType(str, Enum):
    """Supported messaging channel types."""
    LINE = "line"


@dataclass
class ChannelMessage:
    """Platform-agnostic inbound message."""

    text: str
    sender_id: str
    channel_type: ChannelType

    # Token or id needed to answer this particular message
    reply_token: str = ""
    message_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Platform-specific raw data
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def session_id(self) -> str:
        """Session key for this sender on this channel."""
        return f"{self.channel_type.value}:{self.sender_id}"


@dataclass
class OutgoingMessage:
    """Message being sent back to a channel."""

    text: str
    reply_token: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class BaseChannel(ABC):
    """Abstract base class for messaging channel plugins."""

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        """The type of this channel."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable channel name."""
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> list[ChannelMessage]:
        """Extract text messages from a webhook payload."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        """Deliver a reply through the platform API."""
        ...

    async def close(self) -> None:
        """Release platform connections."""
        return None
