"""
tests/test_bus_normalizer.py — Event Bus & Gateway Normalizer
==============================================================

Subscriber isolation, topic validation, the init-once lifecycle and the
pure discord.py → dataclass translators (fed with SimpleNamespace
stand-ins for gateway objects).
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_message, run_async

from catalyst.engine.bus import EventBus
from catalyst.engine.events import EventName, MessageEvent, VoiceStateEvent
from catalyst.engine.normalizer import (
    EventNormalizer,
    message_to_event,
    reaction_to_event,
    voice_to_event,
)
from catalyst.errors import InvariantError


def _member(uid, *, bot=False, name=None):
    return SimpleNamespace(id=uid, bot=bot, display_name=name or f"user{uid}", name=f"user{uid}")


def _message(author, *, mentions=(), reference=None, guild=True, content="hello"):
    return SimpleNamespace(
        id=1000,
        author=author,
        guild=SimpleNamespace(id=1) if guild else None,
        channel=SimpleNamespace(id=100),
        content=content,
        mentions=list(mentions),
        reference=reference,
        created_at=None,
    )


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------
class TestEventBus:
    def test_publish_reaches_sync_and_async_handlers(self):
        bus = EventBus()
        sync_handler = MagicMock()
        async_handler = AsyncMock()
        bus.subscribe(EventName.MESSAGE, sync_handler)
        bus.subscribe(EventName.MESSAGE, async_handler)
        event = make_message()

        delivered = run_async(bus.publish(EventName.MESSAGE, event))

        assert delivered == 2
        sync_handler.assert_called_once_with(event)
        async_handler.assert_awaited_once_with(event)

    def test_failing_subscriber_does_not_block_siblings(self):
        bus = EventBus()
        order = []

        def boom(event):
            order.append("boom")
            raise RuntimeError("subscriber bug")

        bus.subscribe(EventName.MESSAGE, boom)
        bus.subscribe(EventName.MESSAGE, lambda e: order.append("after"))

        delivered = run_async(bus.publish(EventName.MESSAGE, make_message()))

        assert order == ["boom", "after"]
        assert delivered == 1

    def test_subscribe_is_idempotent(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventName.REACTION_ADD, handler)
        bus.subscribe(EventName.REACTION_ADD, handler)
        assert bus.handler_count(EventName.REACTION_ADD) == 1
        bus.unsubscribe(EventName.REACTION_ADD, handler)
        assert bus.handler_count(EventName.REACTION_ADD) == 0

    def test_topics_are_isolated(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventName.VOICE_STATE_UPDATE, handler)
        run_async(bus.publish(EventName.MESSAGE, make_message()))
        handler.assert_not_called()

    def test_unknown_topic_rejected(self):
        bus = EventBus()
        with pytest.raises(InvariantError):
            bus.subscribe("typingStart", MagicMock())
        with pytest.raises(InvariantError):
            run_async(bus.publish("typingStart", object()))


# ---------------------------------------------------------------------------
# Translators
# ---------------------------------------------------------------------------
class TestMessageTranslation:
    def test_basic_fields(self):
        author = _member(1, name="Alice")
        event = message_to_event(_message(author, content="hi"))
        assert isinstance(event, MessageEvent)
        assert event.user_id == 1
        assert event.display_name == "Alice"
        assert event.channel_id == 100
        assert event.guild_id == 1
        assert event.content == "hi"
        assert event.reply_to_id is None
        assert not event.is_bot

    def test_mentions_deduplicated_without_author(self):
        author = _member(1)
        msg = _message(author, mentions=[_member(2), _member(1), _member(2), _member(3)])
        assert message_to_event(msg).mention_ids == (2, 3)

    def test_reply_reference(self):
        msg = _message(_member(1), reference=SimpleNamespace(message_id=77))
        assert message_to_event(msg).reply_to_id == 77

    def test_dm_is_skipped(self):
        assert message_to_event(_message(_member(1), guild=False)) is None

    def test_bot_flag_carried(self):
        assert message_to_event(_message(_member(1, bot=True))).is_bot


class TestReactionTranslation:
    def test_fields(self):
        msg = _message(_member(9))
        reaction = SimpleNamespace(message=msg, emoji="🙄", count=3)
        event = reaction_to_event(reaction, _member(2), added=True)
        assert event.user_id == 2
        assert event.message_author_id == 9
        assert event.emoji == "🙄"
        assert event.count == 3
        assert event.added

    def test_partial_reaction_skipped(self):
        reaction = SimpleNamespace(message=None, emoji="🙄", count=1)
        assert reaction_to_event(reaction, _member(2), added=True) is None


class TestVoiceTranslation:
    def _state(self, channel_id):
        return SimpleNamespace(channel=SimpleNamespace(id=channel_id) if channel_id else None)

    def test_join(self):
        event = voice_to_event(_member(1), self._state(None), self._state(7))
        assert isinstance(event, VoiceStateEvent)
        assert event.joined == 7
        assert event.left is None

    def test_move_is_both_leave_and_join(self):
        event = voice_to_event(_member(1), self._state(7), self._state(8))
        assert event.left == 7
        assert event.joined == 8

    def test_mute_toggle_skipped(self):
        assert voice_to_event(_member(1), self._state(7), self._state(7)) is None


# ---------------------------------------------------------------------------
# EventNormalizer
# ---------------------------------------------------------------------------
class TestEventNormalizer:
    def test_publish_before_init_is_noop(self):
        bus = EventBus()
        handler = MagicMock()
        normalizer = EventNormalizer(bus)
        normalizer.subscribe(EventName.MESSAGE, handler)

        run_async(normalizer.relay_message(_message(_member(1))))

        handler.assert_not_called()

    def test_relay_after_init(self):
        bus = EventBus()
        handler = MagicMock()
        normalizer = EventNormalizer(bus)
        normalizer.subscribe(EventName.MESSAGE, handler)
        normalizer.init(MagicMock())

        run_async(normalizer.relay_message(_message(_member(1))))

        handler.assert_called_once()
        assert handler.call_args.args[0].user_id == 1

    def test_init_twice_keeps_first_client(self):
        normalizer = EventNormalizer(EventBus())
        first, second = MagicMock(), MagicMock()
        normalizer.init(first)
        normalizer.init(second)
        assert normalizer.initialized
        assert normalizer._client is first

    def test_reaction_routes_by_direction(self):
        bus = EventBus()
        added, removed = MagicMock(), MagicMock()
        bus.subscribe(EventName.REACTION_ADD, added)
        bus.subscribe(EventName.REACTION_REMOVE, removed)
        normalizer = EventNormalizer(bus)
        normalizer.init(MagicMock())
        reaction = SimpleNamespace(message=_message(_member(9)), emoji="👍", count=1)

        run_async(normalizer.relay_reaction(reaction, _member(2), added=False))

        added.assert_not_called()
        removed.assert_called_once()
        assert removed.call_args.args[0].added is False

    def test_unchanged_voice_state_not_published(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventName.VOICE_STATE_UPDATE, handler)
        normalizer = EventNormalizer(bus)
        normalizer.init(MagicMock())
        state = SimpleNamespace(channel=SimpleNamespace(id=7))

        run_async(normalizer.relay_voice_state(_member(1), state, state))

        handler.assert_not_called()
