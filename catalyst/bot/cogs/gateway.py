"""
catalyst.bot.cogs.gateway — Raw gateway relay
==============================================

Forwards the four gateway callbacks Catalyst cares about to the
:class:`~catalyst.engine.normalizer.EventNormalizer`.  No gating or
business logic here; bot and DM filtering happen downstream.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

if TYPE_CHECKING:
    from catalyst.bot.core import CatalystBot

logger = logging.getLogger(__name__)


class Gateway(commands.Cog, name="Gateway"):
    """Relays messages, reactions and voice moves onto the event bus."""

    def __init__(self, bot: CatalystBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        logger.debug("Gateway event: MESSAGE %s in channel %s", message.id, message.channel.id)
        try:
            await self.bot.normalizer.relay_message(message)
        except Exception:
            logger.exception("Error relaying message %s", message.id)

    @commands.Cog.listener()
    async def on_reaction_add(self, reaction: discord.Reaction, user: discord.User) -> None:
        try:
            await self.bot.normalizer.relay_reaction(reaction, user, added=True)
        except Exception:
            logger.exception("Error relaying reaction add from user %s", user.id)

    @commands.Cog.listener()
    async def on_reaction_remove(self, reaction: discord.Reaction, user: discord.User) -> None:
        try:
            await self.bot.normalizer.relay_reaction(reaction, user, added=False)
        except Exception:
            logger.exception("Error relaying reaction remove from user %s", user.id)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        try:
            await self.bot.normalizer.relay_voice_state(member, before, after)
        except Exception:
            logger.exception("Error relaying voice state for user %s", member.id)


async def setup(bot: CatalystBot) -> None:
    await bot.add_cog(Gateway(bot))
