"""
LINE Messaging API channel.

Inbound: webhook payloads with a list of ``events``; only text message
events are turned into ChannelMessages.
Outbound: replies go to ``/v2/bot/message/reply`` with the event's reply
token and the channel access token as bearer auth.
"""

from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from .base import BaseChannel, ChannelMessage, ChannelType, OutgoingMessage

logger = structlog.get_logger()

# LINE rejects text messages longer than this
MAX_TEXT_LENGTH = 5000


def parse_line_events(payload: dict[str, Any]) -> list[ChannelMessage]:
    """Extract text message events from a LINE webhook payload."""
    messages = []

    for event in payload.get("events", []):
        if event.get("type") != "message":
            continue
        message = event.get("message") or {}
        if message.get("type") != "text":
            continue

        source = event.get("source") or {}
        sender_id = (
            source.get("userId")
            or source.get("groupId")
            or source.get("roomId")
            or event.get("replyToken", "")
        )

        timestamp = datetime.now(timezone.utc)
        if isinstance(event.get("timestamp"), (int, float)):
            timestamp = datetime.fromtimestamp(event["timestamp"] / 1000, tz=timezone.utc)

        messages.append(ChannelMessage(
            text=message.get("text", ""),
            sender_id=sender_id,
            channel_type=ChannelType.LINE,
            reply_token=event.get("replyToken", ""),
            message_id=str(message.get("id", "")),
            timestamp=timestamp,
            raw_data=event,
        ))

    return messages


class LineChannel(BaseChannel):
    """Reply-token based LINE channel."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.line.me",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.LINE

    @property
    def name(self) -> str:
        return "LINE"

    def parse_webhook(self, payload: dict[str, Any]) -> list[ChannelMessage]:
        return parse_line_events(payload)

    async def send_message(self, message: OutgoingMessage) -> None:
        """Reply to a message. Raises httpx.HTTPError on delivery failure."""
        if not message.reply_token:
            raise ValueError("LINE replies need a reply token")

        response = await self._client.post(
            f"{self.base_url}/v2/bot/message/reply",
            json={
                "replyToken": message.reply_token,
                "messages": [
                    {"type": "text", "text": message.text[:MAX_TEXT_LENGTH]},
                ],
            },
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
        )
        response.raise_for_status()
        logger.info("LINE reply sent", reply_token=message.reply_token)

    async def close(self) -> None:
        await self._client.aclose()
