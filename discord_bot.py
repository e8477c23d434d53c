import asyncio
import logging
from typing import Awaitable, Callable, List

import discord

from feed_relay.commands import CommandHandler
from feed_relay.config import Settings, load_settings
from feed_relay.core import FetchScheduler
from feed_relay.dedup import DedupFilter
from feed_relay.delivery import DiscordSink
from feed_relay.extractor import ContentExtractor
from feed_relay.notifier import NotificationScheduler
from feed_relay.storage import ArticleStore
from feed_relay.summarizers import ApiKeyStore, build_summarizer

logger = logging.getLogger("feed_relay.bot")


class RelayBot(discord.Client):
    """Discord client that runs the fetch and notification loops next to the chat commands."""

    def __init__(self, settings: Settings) -> None:
        # Reading command messages needs the message content intent.
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(intents=intents)

        self.settings = settings
        self.failed = False
        self._tasks: List[asyncio.Task] = []

        self.store = ArticleStore(settings.database_url)
        self.keys = ApiKeyStore(settings.summarizer_api_key)
        self.summarizer = build_summarizer(settings.summarize_options(), self.keys)
        dedup = DedupFilter(self.store)

        self.fetcher = FetchScheduler(
            self.store,
            interval=settings.fetch_interval,
            keywords=settings.filter_keywords,
            dedup=dedup,
        )
        self.notifier = NotificationScheduler(
            self.store,
            ContentExtractor(self.summarizer),
            DiscordSink(self),
            channel_id=settings.channel_id,
            interval=settings.notification_interval,
            lookup_window=settings.lookup_window,
            dedup=dedup,
        )
        self.command_handler = CommandHandler(self.store, self.notifier, self.keys, self.summarizer)

    async def setup_hook(self) -> None:
        await asyncio.to_thread(self.store.create_tables)
        self._tasks.append(asyncio.create_task(self._supervise("fetcher", self.fetcher.start)))
        self._tasks.append(asyncio.create_task(self._supervise("notifier", self.notifier.start)))

    async def _supervise(self, name: str, start: Callable[[], Awaitable[None]]) -> None:
        await self.wait_until_ready()
        try:
            await start()
        except asyncio.CancelledError:
            logger.info("%s stopped", name)
            raise
        except Exception:
            # No in-process retry: exit and let the process supervisor restart us.
            logger.exception("Failed to run %s", name)
            self.failed = True
            await self.close()

    async def close(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        await super().close()

    async def on_ready(self) -> None:
        logger.info("Logged in as %s", self.user)

    async def on_message(self, message: discord.Message) -> None:
        # Ignore the bot's own messages.
        if message.author == self.user:
            return

        reply = await self.command_handler.dispatch(message.content)
        if reply:
            await message.channel.send(reply)


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    bot = RelayBot(settings)
    bot.run(settings.discord_token, log_handler=None)
    if bot.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
