"""
catalyst.services.throttle — Per-channel notification throttle
===============================================================

Drama tends to arrive in bursts.  Each channel gets a sliding window of
send timestamps; once it is full, embeds wait in a per-channel FIFO and a
background loop retries them every ``drain_interval`` seconds.  Queued
embeds keep their ``on_sent`` callback so vote reactions still get added
when the message finally goes out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import discord
from discord.abc import Messageable

logger = logging.getLogger(__name__)

# Called with the sent message once a (possibly queued) embed goes out.
OnSent = Callable[[discord.Message], Awaitable[None]]


@dataclass(slots=True)
class QueuedEmbed:
    embed: discord.Embed
    channel: Messageable
    on_sent: OnSent | None = None


class AnnouncementThrottle:
    """At most ``max_per_window`` sends per channel per ``window`` seconds."""

    def __init__(
        self,
        max_per_window: int = 3,
        window: float = 60,
        *,
        drain_interval: float = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_per_window = max_per_window
        self.window = window
        self.drain_interval = drain_interval
        self._clock = clock
        self._sent_at: dict[int, deque[float]] = defaultdict(deque)
        self._backlog: dict[int, deque[QueuedEmbed]] = defaultdict(deque)
        self._drain_task: asyncio.Task | None = None

    def is_allowed(self, channel_id: int) -> bool:
        """Claim a send slot for *channel_id* if the window has room."""
        now = self._clock()
        stamps = self._sent_at[channel_id]
        while stamps and stamps[0] <= now - self.window:
            stamps.popleft()
        if len(stamps) >= self.max_per_window:
            return False
        stamps.append(now)
        return True

    def enqueue(
        self,
        channel_id: int,
        embed: discord.Embed,
        channel: Messageable,
        on_sent: OnSent | None = None,
    ) -> None:
        self._backlog[channel_id].append(QueuedEmbed(embed, channel, on_sent))
        logger.debug(
            "Channel %d throttled; %d embed(s) waiting",
            channel_id, len(self._backlog[channel_id]),
        )

    def pending(self) -> int:
        return sum(len(q) for q in self._backlog.values())

    async def drain_once(self) -> int:
        """Send what the reopened windows allow.  Returns the number sent."""
        sent = 0
        for channel_id, backlog in list(self._backlog.items()):
            while backlog and self.is_allowed(channel_id):
                item = backlog.popleft()
                try:
                    message = await item.channel.send(embed=item.embed)
                except Exception:
                    logger.exception(
                        "Failed to send queued embed to channel %d", channel_id
                    )
                    continue
                sent += 1
                if item.on_sent is not None:
                    try:
                        await item.on_sent(message)
                    except Exception:
                        logger.exception(
                            "Post-send hook failed for channel %d", channel_id
                        )
            if not backlog:
                del self._backlog[channel_id]
        return sent

    async def _drain_forever(self) -> None:
        while True:
            await asyncio.sleep(self.drain_interval)
            try:
                await self.drain_once()
            except Exception:
                logger.exception("Throttle drain error")

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._drain_task is None:
            self._drain_task = loop.create_task(
                self._drain_forever(), name="notify-drain"
            )

    def stop(self) -> None:
        if self._drain_task is not None:
            self._drain_task.cancel()
            self._drain_task = None
