"""
catalyst.services.embeds — Discord embed builders
==================================================

All embed construction lives here so the notifier and cogs only need to
supply data — no layout concerns.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord

from catalyst.engine.world import Faction

if TYPE_CHECKING:
    from catalyst.services.notifier import Notification


def build_notification_embed(notification: Notification) -> discord.Embed:
    """Render a :class:`Notification`, listing vote options in the footer."""
    embed = discord.Embed(
        title=notification.title,
        description=notification.description,
        color=discord.Color(notification.color),
    )
    for name, value in notification.fields:
        embed.add_field(name=name, value=value or "​", inline=True)
    if notification.vote_options:
        embed.set_footer(
            text="Vote: " + "  ".join(f"{o.emoji} {o.label}" for o in notification.vote_options)
        )
    return embed


def build_faction_embed(faction: Faction, active_alliances: int = 0) -> discord.Embed:
    """Faction profile card."""
    try:
        color = discord.Color(int(faction.color.lstrip("#"), 16))
    except (ValueError, AttributeError):
        color = discord.Color.light_grey()

    embed = discord.Embed(
        title=f"{faction.emoji} {faction.name}".strip(),
        description=faction.description or "*No description.*",
        color=color,
    )
    embed.add_field(name="Power", value=str(faction.power))
    embed.add_field(name="Members", value=str(len(faction.member_ids)))
    embed.add_field(name="Drama wins", value=str(faction.drama_wins))
    embed.add_field(
        name="Leaders",
        value=", ".join(f"<@{m}>" for m in faction.leader_ids) or "—",
        inline=False,
    )
    embed.add_field(name="Alliances", value=str(active_alliances))
    embed.add_field(name="Instability", value=f"{faction.entropy:.0%}")
    return embed


def build_faction_list_embed(factions: list[Faction]) -> discord.Embed:
    embed = discord.Embed(title="\U0001f3f4 Factions", color=discord.Color.dark_purple())
    if not factions:
        embed.description = "No factions yet. Start one with `!faction create <name>`."
        return embed
    ranked = sorted(factions, key=lambda f: (-f.power, f.name.lower()))
    embed.description = "\n".join(
        f"{f.emoji} **{f.name}** — power {f.power}, {len(f.member_ids)} member(s)"
        for f in ranked[:25]
    )
    return embed
