"""
tests/test_notifier.py — Notifier, Throttle & Embeds
=====================================================

Channel resolution, throttled delivery, reaction votes (with the bot's
own seed reaction discounted) and the embed builders.  Discord objects
are MagicMock/AsyncMock stand-ins.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
from conftest import run_async

from catalyst.constants import VOTE_ESCALATE, VOTE_OPPOSE, VOTE_SUPPORT
from catalyst.engine.world import Faction
from catalyst.services.dispatcher import VOTE_OPTIONS
from catalyst.services.embeds import (
    build_faction_embed,
    build_faction_list_embed,
    build_notification_embed,
)
from catalyst.services.notifier import DiscordNotifier, Notification, tally_reactions
from catalyst.services.throttle import AnnouncementThrottle


def _text_channel(name, channel_id=100):
    ch = MagicMock(spec=discord.TextChannel)
    ch.name = name
    ch.id = channel_id
    ch.send = AsyncMock()
    return ch


def _bot_with(*channels):
    bot = MagicMock()
    bot.get_guild.return_value = SimpleNamespace(text_channels=list(channels))
    return bot


def _sent_message(reactions=()):
    message = MagicMock()
    message.id = 555
    message.add_reaction = AsyncMock()
    message.channel.fetch_message = AsyncMock(
        return_value=SimpleNamespace(reactions=list(reactions))
    )
    return message


# ---------------------------------------------------------------------------
# Throttle
# ---------------------------------------------------------------------------
class TestAnnouncementThrottle:
    def test_window_limit(self):
        now = [0.0]
        throttle = AnnouncementThrottle(max_per_window=3, window=60, clock=lambda: now[0])
        assert all(throttle.is_allowed(1) for _ in range(3))
        assert not throttle.is_allowed(1)
        assert throttle.is_allowed(2)
        now[0] = 61.0
        assert throttle.is_allowed(1)

    def test_drain_sends_queued(self):
        now = [0.0]
        throttle = AnnouncementThrottle(max_per_window=1, window=60, clock=lambda: now[0])
        channel = _text_channel("timeline")
        channel.send.return_value = _sent_message()
        on_sent = AsyncMock()

        async def scenario():
            assert throttle.is_allowed(100)
            throttle.enqueue(100, discord.Embed(title="queued"), channel, on_sent)
            held = await throttle.drain_once()
            now[0] = 61.0
            sent = await throttle.drain_once()
            return held, sent

        held, sent = run_async(scenario())
        assert (held, sent) == (0, 1)
        assert throttle.pending() == 0
        on_sent.assert_awaited_once_with(channel.send.return_value)

    def test_failed_send_is_logged(self):
        throttle = AnnouncementThrottle(max_per_window=5, window=60)
        channel = _text_channel("timeline")
        channel.send.side_effect = RuntimeError("boom")

        async def scenario():
            throttle.enqueue(100, discord.Embed(title="x"), channel)
            return await throttle.drain_once()

        assert run_async(scenario()) == 0


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
class TestTallyReactions:
    def test_bot_seed_reaction_discounted(self):
        reactions = [
            SimpleNamespace(emoji=VOTE_SUPPORT, count=4, me=True),
            SimpleNamespace(emoji=VOTE_OPPOSE, count=2, me=False),
            SimpleNamespace(emoji="🍕", count=9, me=False),
        ]
        tally = tally_reactions(reactions, VOTE_OPTIONS)
        assert tally == {VOTE_SUPPORT: 3, VOTE_OPPOSE: 2, VOTE_ESCALATE: 0}

    def test_never_negative(self):
        reactions = [SimpleNamespace(emoji=VOTE_SUPPORT, count=0, me=True)]
        assert tally_reactions(reactions, VOTE_OPTIONS)[VOTE_SUPPORT] == 0


# ---------------------------------------------------------------------------
# DiscordNotifier
# ---------------------------------------------------------------------------
class TestDiscordNotifier:
    def test_resolve_requested_then_default(self):
        timeline = _text_channel("timeline", 1)
        drama = _text_channel("drama", 2)
        notifier = DiscordNotifier(_bot_with(timeline, drama), 42, "timeline")
        assert notifier.resolve_channel("#Drama") is drama
        assert notifier.resolve_channel("missing") is timeline
        assert notifier.resolve_channel(None) is timeline

    def test_unknown_guild(self):
        bot = MagicMock()
        bot.get_guild.return_value = None
        notifier = DiscordNotifier(bot, 42, "timeline")
        assert notifier.resolve_channel("timeline") is None

    def test_notify_without_channel_drops(self):
        notifier = DiscordNotifier(_bot_with(_text_channel("general")), 42, "timeline")
        notifier.send_to = AsyncMock()
        run_async(notifier.notify(Notification(title="t", description="d")))
        notifier.send_to.assert_not_awaited()

    def test_notify_sends_embed(self):
        channel = _text_channel("timeline")
        channel.send.return_value = _sent_message()
        notifier = DiscordNotifier(_bot_with(channel), 42, "timeline")

        run_async(notifier.notify(Notification(title="Hello", description="world")))

        channel.send.assert_awaited_once()
        embed = channel.send.await_args.kwargs["embed"]
        assert embed.title == "Hello"
        channel.send.return_value.add_reaction.assert_not_awaited()

    def test_vote_round_trip(self):
        reactions = [
            SimpleNamespace(emoji=VOTE_SUPPORT, count=3, me=True),
            SimpleNamespace(emoji=VOTE_OPPOSE, count=1, me=True),
        ]
        message = _sent_message(reactions)
        channel = _text_channel("timeline")
        channel.send.return_value = message
        notifier = DiscordNotifier(_bot_with(channel), 42, "timeline")
        on_resolved = AsyncMock()

        async def scenario():
            await notifier.notify(Notification(
                title="Vote",
                description="?",
                vote_options=VOTE_OPTIONS,
                on_resolved=on_resolved,
                vote_window_seconds=0.01,
            ))
            await asyncio.gather(*list(notifier._vote_tasks))

        run_async(scenario())

        assert message.add_reaction.await_count == len(VOTE_OPTIONS)
        on_resolved.assert_awaited_once_with({VOTE_SUPPORT: 2, VOTE_OPPOSE: 0, VOTE_ESCALATE: 0})

    def test_throttled_notification_is_queued(self):
        channel = _text_channel("timeline")
        channel.send.return_value = _sent_message()
        throttle = AnnouncementThrottle(max_per_window=1, window=60)
        notifier = DiscordNotifier(_bot_with(channel), 42, "timeline", throttle=throttle)

        async def scenario():
            await notifier.notify(Notification(title="one", description="."))
            await notifier.notify(Notification(title="two", description="."))

        run_async(scenario())
        channel.send.assert_awaited_once()
        assert throttle.pending() == 1


# ---------------------------------------------------------------------------
# Embeds
# ---------------------------------------------------------------------------
class TestEmbeds:
    def test_notification_embed_lists_votes(self):
        embed = build_notification_embed(Notification(
            title="Drama",
            description="it happened",
            color=0xE74C3C,
            fields=(("Intensity", "7/10"),),
            vote_options=VOTE_OPTIONS,
        ))
        assert embed.title == "Drama"
        assert embed.fields[0].name == "Intensity"
        assert VOTE_SUPPORT in embed.footer.text

    def test_faction_embed(self):
        faction = Faction(
            id="f1", name="Wolves", member_ids=[1, 2], leader_ids=[1],
            power=18, color="#e74c3c", emoji="🐺",
        )
        embed = build_faction_embed(faction, active_alliances=1)
        assert embed.title == "🐺 Wolves"
        values = {f.name: f.value for f in embed.fields}
        assert values["Members"] == "2"
        assert values["Leaders"] == "<@1>"
        assert embed.color.value == 0xE74C3C

    def test_faction_list_ranked_by_power(self):
        weak = Faction(id="a", name="Ants", power=5)
        strong = Faction(id="b", name="Bears", power=50)
        embed = build_faction_list_embed([weak, strong])
        assert embed.description.index("Bears") < embed.description.index("Ants")

    def test_empty_faction_list(self):
        assert "No factions yet" in build_faction_list_embed([]).description
