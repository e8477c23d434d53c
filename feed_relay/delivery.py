from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aiohttp
import discord

from .exceptions import DeliveryError

logger = logging.getLogger(__name__)

# discord.py lets transport failures through unwrapped.
_SEND_ERRORS = (discord.DiscordException, aiohttp.ClientError, OSError, asyncio.TimeoutError)


class Sink(Protocol):
    async def send(self, chat_id: int, text: str) -> int:  # pragma: no cover - interface
        ...


class DiscordSink:
    """Send pre-formatted messages to a Discord channel through a logged-in client."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def send(self, chat_id: int, text: str) -> int:
        try:
            channel = self.client.get_channel(chat_id) or await self.client.fetch_channel(chat_id)
            message = await channel.send(text)
        except _SEND_ERRORS as e:
            raise DeliveryError(f"failed to send message to channel {chat_id}: {e}") from e
        logger.debug("Sent message %s to channel %s", message.id, chat_id)
        return message.id
