from __future__ import annotations

import asyncio
import logging
import shlex
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from .exceptions import StoreError
from .notifier import NotificationScheduler
from .storage import ArticleStore
from .summarizers import ApiKeyStore, Summarizer

logger = logging.getLogger(__name__)

PREFIX = "!"

_PERIODS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}

HELP_TEXT = (
    "Commands:\n"
    "!sources - list all sources\n"
    "!getsource <id> - show one source\n"
    "!addsource <name> <url> [priority] - add a source (priority 1-10)\n"
    "!deletesource <id> - delete a source and its articles\n"
    "!setpriority <id> <priority> - change a source's priority (1-10)\n"
    "!publish [day|week|month] [limit] - publish recent articles to the channel\n"
    "!checkkey - check the summarizer API key\n"
    "!setkey <key> - replace the summarizer API key"
)


class CommandHandler:
    """
    Chat commands for managing sources and publishing by hand.

    Replies are plain text; internal errors are logged, never echoed back.
    """

    def __init__(
        self,
        store: ArticleStore,
        notifier: NotificationScheduler,
        keys: ApiKeyStore,
        summarizer: Summarizer,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.keys = keys
        self.summarizer = summarizer
        self._commands: Dict[str, Callable[[List[str]], Awaitable[str]]] = {
            "help": self.cmd_help,
            "start": self.cmd_help,
            "sources": self.cmd_sources,
            "getsource": self.cmd_get_source,
            "addsource": self.cmd_add_source,
            "deletesource": self.cmd_delete_source,
            "setpriority": self.cmd_set_priority,
            "publish": self.cmd_publish,
            "checkkey": self.cmd_check_key,
            "setkey": self.cmd_set_key,
        }

    async def dispatch(self, content: str) -> Optional[str]:
        """Reply text for a command message, or None if the message is not a known command."""
        if not content.startswith(PREFIX):
            return None
        try:
            parts = shlex.split(content[len(PREFIX):])
        except ValueError:
            return "Could not parse the command arguments."
        if not parts:
            return None

        handler = self._commands.get(parts[0].lower())
        if handler is None:
            return None
        try:
            return await handler(parts[1:])
        except StoreError as e:
            logger.error("Command %r failed: %s", parts[0], e)
            return "Database error, please try again later."

    async def cmd_help(self, args: List[str]) -> str:
        return HELP_TEXT

    async def cmd_sources(self, args: List[str]) -> str:
        sources = await asyncio.to_thread(self.store.list_sources)
        if not sources:
            return "No sources yet. Add one with !addsource."
        lines = [f"{s.id}. {s.name} (priority {s.priority}) - {s.feed_url}" for s in sources]
        return "\n".join(lines)

    async def cmd_get_source(self, args: List[str]) -> str:
        source_id = _int_arg(args, 0)
        if source_id is None:
            return "Usage: !getsource <id>"
        source = await asyncio.to_thread(self.store.get_source, source_id)
        if source is None:
            return f"Source {source_id} not found."
        added = source.created_at.strftime("%Y-%m-%d %H:%M") if source.created_at else "unknown"
        return f"{source.id}. {source.name}\nURL: {source.feed_url}\nPriority: {source.priority}\nAdded: {added}"

    async def cmd_add_source(self, args: List[str]) -> str:
        if len(args) < 2:
            return "Usage: !addsource <name> <url> [priority]"
        name, url = args[0], args[1]
        priority = _int_arg(args, 2) if len(args) > 2 else 1
        if priority is None or not 1 <= priority <= 10:
            return "Priority must be a number from 1 to 10."
        source_id = await asyncio.to_thread(self.store.add_source, name, url, priority)
        logger.info("Source %r added with id %d", name, source_id)
        return f"Source added with ID {source_id}. Use this ID to update or delete the source."

    async def cmd_delete_source(self, args: List[str]) -> str:
        source_id = _int_arg(args, 0)
        if source_id is None:
            return "Usage: !deletesource <id>"
        if not await asyncio.to_thread(self.store.delete_source, source_id):
            return f"Source {source_id} not found."
        return f"Source {source_id} deleted."

    async def cmd_set_priority(self, args: List[str]) -> str:
        source_id, priority = _int_arg(args, 0), _int_arg(args, 1)
        if source_id is None or priority is None:
            return "Usage: !setpriority <id> <priority>"
        if not 1 <= priority <= 10:
            return "Priority must be a number from 1 to 10."
        if not await asyncio.to_thread(self.store.set_priority, source_id, priority):
            return f"Source {source_id} not found."
        return f"Priority of source {source_id} set to {priority}."

    async def cmd_publish(self, args: List[str]) -> str:
        period = args[0].lower() if args else "week"
        if period not in _PERIODS:
            period = "week"
        limit = _int_arg(args, 1) if len(args) > 1 else None
        if limit is None or not 1 <= limit <= 20:
            limit = 5

        since = datetime.now(timezone.utc) - _PERIODS[period]
        articles = await asyncio.to_thread(self.store.articles_since, since, limit)
        if not articles:
            return "No articles found for the specified period."

        stats = await self.notifier.publish_batch(articles)
        return (
            f"Found {len(articles)} articles for period: {period}.\n"
            f"Published: {stats.published}, failed: {stats.failed}, skipped: {stats.skipped}"
        )

    async def cmd_check_key(self, args: List[str]) -> str:
        check = getattr(self.summarizer, "check_key", None)
        if check is None:
            return "Summarizer does not support key checks."
        return await asyncio.to_thread(check)

    async def cmd_set_key(self, args: List[str]) -> str:
        if not args or not args[0].strip():
            return "Usage: !setkey <key>"
        self.keys.set(args[0])
        return "API key updated. Use !checkkey to verify it."


def _int_arg(args: List[str], index: int) -> Optional[int]:
    try:
        return int(args[index])
    except (IndexError, ValueError):
        return None
