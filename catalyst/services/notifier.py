"""
catalyst.services.notifier — Notification contract & Discord delivery
======================================================================

The core only ever asks for one thing: *post this structured notification
to that named channel, optionally with reaction-vote options and a callback
for the result*.  That request is a :class:`Notification`; anything with an
``async notify(notification)`` method is a :class:`Notifier`.

:class:`DiscordNotifier` is the production implementation.  It owns
channel resolution, embed construction (:mod:`catalyst.services.embeds`),
per-channel throttling (:mod:`catalyst.services.throttle`) and vote
tallying.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from discord.abc import Messageable

from catalyst.services.embeds import build_notification_embed
from catalyst.services.throttle import AnnouncementThrottle

if TYPE_CHECKING:
    import discord
    from discord.ext import commands

logger = logging.getLogger(__name__)

# emoji → votes (the bot's own seed reaction excluded)
VoteTally = dict[str, int]
OnResolved = Callable[[VoteTally], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class VoteOption:
    emoji: str
    label: str


@dataclass(frozen=True, slots=True)
class Notification:
    """A request to render something in chat."""

    title: str
    description: str
    color: int = 0x95A5A6
    channel: str | None = None  # logical channel name; None → default
    fields: tuple[tuple[str, str], ...] = ()
    vote_options: tuple[VoteOption, ...] = ()
    on_resolved: OnResolved | None = field(default=None, compare=False)
    vote_window_seconds: float | None = None


class Notifier(Protocol):
    async def notify(self, notification: Notification) -> None: ...


async def call_resolved(callback: OnResolved, tally: VoteTally) -> None:
    result = callback(tally)
    if inspect.isawaitable(result):
        await result


class DiscordNotifier:
    """Posts notifications as embeds in the primary guild.

    Parameters
    ----------
    bot:
        Connected ``commands.Bot`` (used for guild/channel lookup).
    guild_id:
        Primary guild snowflake.
    default_channel:
        Channel *name* used when a notification doesn't specify one.
    vote_window_seconds:
        How long reaction votes stay open by default.
    """

    def __init__(
        self,
        bot: commands.Bot,
        guild_id: int,
        default_channel: str,
        *,
        vote_window_seconds: float = 600,
        throttle: AnnouncementThrottle | None = None,
    ) -> None:
        self.bot = bot
        self.guild_id = guild_id
        self.default_channel = default_channel
        self.vote_window_seconds = vote_window_seconds
        self.throttle = throttle or AnnouncementThrottle()
        self._vote_tasks: set[asyncio.Task] = set()

    def start(self) -> None:
        self.throttle.start(asyncio.get_running_loop())

    async def close(self) -> None:
        self.throttle.stop()
        tasks = list(self._vote_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._vote_tasks.clear()

    # -------------------------------------------------------------------
    # Channel resolution
    # -------------------------------------------------------------------
    def resolve_channel(self, name: str | None) -> Messageable | None:
        """Find a text channel by name in the primary guild.

        Priority: requested name → default channel → ``None``.
        """
        guild = self.bot.get_guild(self.guild_id)
        if guild is None:
            return None
        for wanted in (name, self.default_channel):
            if not wanted:
                continue
            wanted = wanted.lstrip("#").lower()
            for ch in guild.text_channels:
                if ch.name.lower() == wanted and isinstance(ch, Messageable):
                    return ch
        return None

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------
    async def notify(self, notification: Notification) -> None:
        channel = self.resolve_channel(notification.channel)
        if channel is None:
            logger.warning(
                "No channel %r in guild %d; dropping notification %r",
                notification.channel or self.default_channel,
                self.guild_id,
                notification.title,
            )
            return
        await self.send_to(channel, notification)

    async def send_to(self, channel: Messageable, notification: Notification) -> None:
        """Deliver to an explicit channel (e.g. replies to a command)."""
        embed = build_notification_embed(notification)

        async def _after_send(message: discord.Message) -> None:
            await self._open_vote(message, notification)

        channel_id = getattr(channel, "id", 0)
        if self.throttle.is_allowed(channel_id):
            message = await channel.send(embed=embed)
            await _after_send(message)
        else:
            self.throttle.enqueue(channel_id, embed, channel, _after_send)

    async def _open_vote(self, message: discord.Message, notification: Notification) -> None:
        if not notification.vote_options:
            return
        for option in notification.vote_options:
            try:
                await message.add_reaction(option.emoji)
            except Exception:
                logger.exception("Could not add vote reaction %s", option.emoji)
        if notification.on_resolved is None:
            return
        window = notification.vote_window_seconds or self.vote_window_seconds
        task = asyncio.get_running_loop().create_task(
            self._close_vote(message, notification, window),
            name=f"vote-{message.id}",
        )
        self._vote_tasks.add(task)
        task.add_done_callback(self._vote_tasks.discard)

    async def _close_vote(
        self, message: discord.Message, notification: Notification, window: float
    ) -> None:
        await asyncio.sleep(window)
        try:
            fresh = await message.channel.fetch_message(message.id)
            tally = tally_reactions(fresh.reactions, notification.vote_options)
            await call_resolved(notification.on_resolved, tally)
        except Exception:
            logger.exception("Failed to close vote on message %s", message.id)


def tally_reactions(reactions, options: tuple[VoteOption, ...]) -> VoteTally:
    """Count votes for each option, excluding the bot's own seed reaction."""
    wanted = {o.emoji for o in options}
    tally = {o.emoji: 0 for o in options}
    for reaction in reactions:
        emoji = str(reaction.emoji)
        if emoji in wanted:
            tally[emoji] = max(0, reaction.count - (1 if getattr(reaction, "me", False) else 0))
    return tally
