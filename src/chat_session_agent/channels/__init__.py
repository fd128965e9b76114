"""
Messaging channels that relay replies to chat platforms.
"""

from .base import BaseChannel, ChannelMessage, ChannelType, OutgoingMessage
from .line import LineChannel

__all__ = ["BaseChannel", "ChannelMessage", "ChannelType", "OutgoingMessage", "LineChannel"]
