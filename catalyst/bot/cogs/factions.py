"""
catalyst.bot.cogs.factions — Faction commands
==============================================

Prefix commands on top of :class:`~catalyst.services.factions.FactionManager`::

    !faction create <name> [| description]
    !faction join <name>
    !faction leave
    !faction info [name]
    !faction lead @member        (hand leadership over)
    !faction suggest
    !factions

Validation failures come back as a rejection notification in the invoking
channel.  Anything else is logged and answered with a generic apology.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from catalyst.errors import ValidationError
from catalyst.services.embeds import build_faction_embed, build_faction_list_embed
from catalyst.services.notifier import Notification

if TYPE_CHECKING:
    from catalyst.bot.core import CatalystBot

logger = logging.getLogger(__name__)

_REJECT_COLOR = 0xE74C3C
_OK_COLOR = 0x2ECC71


class Factions(commands.Cog, name="Factions"):
    """Create, join and leave factions."""

    def __init__(self, bot: CatalystBot) -> None:
        self.bot = bot

    async def _reply(self, ctx: commands.Context, title: str, text: str, color: int) -> None:
        await self.bot.notifier.send_to(
            ctx.channel, Notification(title=title, description=text, color=color)
        )

    async def _reject(self, ctx: commands.Context, text: str) -> None:
        await self._reply(ctx, "❌ Not quite", text, _REJECT_COLOR)

    async def cog_command_error(self, ctx: commands.Context, error: Exception) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, ValidationError):
            await self._reject(ctx, str(original))
            return
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await self._reject(ctx, f"Usage: `{ctx.prefix}{ctx.command.qualified_name} {ctx.command.signature}`")
            return
        logger.exception("Faction command %s failed", ctx.command, exc_info=original)
        await self._reject(ctx, "Something went wrong. The incident has been logged.")

    @commands.group(name="faction", invoke_without_command=True)
    async def faction(self, ctx: commands.Context) -> None:
        await ctx.send_help(ctx.command)

    @faction.command(name="create")
    async def create(self, ctx: commands.Context, *, details: str) -> None:
        name, _, description = details.partition("|")
        faction = await self.bot.factions.create(
            name, ctx.author.id, description.strip(), ctx.author.display_name
        )
        await self._reply(
            ctx,
            f"{faction.emoji} {faction.name} is born",
            f"<@{ctx.author.id}> founded **{faction.name}**.",
            _OK_COLOR,
        )

    @faction.command(name="join")
    async def join(self, ctx: commands.Context, *, name: str) -> None:
        target = self.bot.store.find_faction_by_name(name)
        if target is None:
            await self._reject(ctx, f"No faction called **{name.strip()}**.")
            return
        faction = await self.bot.factions.join(ctx.author.id, target.id, ctx.author.display_name)
        await self._reply(
            ctx, "\U0001f91d New recruit", f"<@{ctx.author.id}> joined **{faction.name}**.", _OK_COLOR
        )

    @faction.command(name="leave")
    async def leave(self, ctx: commands.Context) -> None:
        faction, dissolved = await self.bot.factions.leave(ctx.author.id)
        text = f"<@{ctx.author.id}> left **{faction.name}**."
        if dissolved:
            text += " With nobody left, the faction has dissolved."
        await self._reply(ctx, "\U0001f6aa Farewell", text, _OK_COLOR)

    @faction.command(name="lead")
    async def lead(self, ctx: commands.Context, member: discord.Member) -> None:
        current = self.bot.factions.faction_of(ctx.author.id)
        if current is None:
            await self._reject(ctx, "You're not in a faction.")
            return
        await self.bot.factions.transfer_leadership(current.id, ctx.author.id, member.id)
        await self._reply(
            ctx, "\U0001f451 New leadership",
            f"<@{member.id}> now leads **{current.name}**.", _OK_COLOR,
        )

    @faction.command(name="info")
    async def info(self, ctx: commands.Context, *, name: str | None = None) -> None:
        faction = (
            self.bot.store.find_faction_by_name(name) if name
            else self.bot.factions.faction_of(ctx.author.id)
        )
        if faction is None:
            await self._reject(ctx, "No such faction.")
            return
        await ctx.send(embed=build_faction_embed(
            faction, self.bot.factions.active_alliance_count(faction.id)
        ))

    @faction.command(name="suggest")
    async def suggest(self, ctx: commands.Context) -> None:
        faction = self.bot.factions.suggest_faction(ctx.author.id)
        if faction is None:
            await self._reject(ctx, "No suggestion: you're already in a faction, or none have room.")
            return
        await self._reply(
            ctx, "\U0001f52e Destiny calls",
            f"**{faction.name}** could use someone like you. `!faction join {faction.name}`",
            _OK_COLOR,
        )

    @commands.command(name="factions")
    async def factions(self, ctx: commands.Context) -> None:
        await ctx.send(embed=build_faction_list_embed(self.bot.store.get_all_factions()))


async def setup(bot: CatalystBot) -> None:
    await bot.add_cog(Factions(bot))
