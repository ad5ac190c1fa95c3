"""
catalyst.engine.normalizer — Gateway → bus relay
=================================================

**Why this file exists:**
discord.py hands us ``Message``, ``Reaction`` and ``VoiceState`` objects.
Nothing past this module should depend on those shapes.  The normalizer
performs the minimal translation into :mod:`catalyst.engine.events`
dataclasses and publishes each one exactly once on the :class:`EventBus`.

It holds no business logic and no state besides "initialized".  Publishing
before :meth:`EventNormalizer.init` is a logged no-op.

Objects are read duck-typed (``getattr`` with defaults) so partial or
uncached gateway payloads are detected and skipped instead of raising.
"""

from __future__ import annotations

import logging
from typing import Any

from catalyst.engine.bus import EventBus, Handler
from catalyst.engine.events import (
    EventName,
    MessageEvent,
    ReactionEvent,
    VoiceStateEvent,
)

logger = logging.getLogger(__name__)


def _channel_id(state: Any) -> int | None:
    channel = getattr(state, "channel", None)
    return getattr(channel, "id", None) if channel is not None else None


def _display_name(user: Any) -> str:
    return str(getattr(user, "display_name", None) or getattr(user, "name", None) or user.id)


# ---------------------------------------------------------------------------
# Shape translation (pure)
# ---------------------------------------------------------------------------
def message_to_event(message: Any) -> MessageEvent | None:
    """Translate a ``discord.Message``; ``None`` for partial or DM messages."""
    author = getattr(message, "author", None)
    guild = getattr(message, "guild", None)
    channel = getattr(message, "channel", None)
    if author is None or guild is None or channel is None:
        return None

    mention_ids: list[int] = []
    for user in getattr(message, "mentions", None) or []:
        if user.id != author.id and user.id not in mention_ids:
            mention_ids.append(user.id)

    reference = getattr(message, "reference", None)
    created = getattr(message, "created_at", None)
    extra = {"timestamp": created} if created is not None else {}
    return MessageEvent(
        user_id=author.id,
        display_name=_display_name(author),
        is_bot=bool(getattr(author, "bot", False)),
        channel_id=channel.id,
        message_id=message.id,
        content=getattr(message, "content", "") or "",
        mention_ids=tuple(mention_ids),
        reply_to_id=getattr(reference, "message_id", None) if reference else None,
        guild_id=guild.id,
        **extra,
    )


def reaction_to_event(reaction: Any, user: Any, *, added: bool) -> ReactionEvent | None:
    """Translate a ``discord.Reaction`` + reacting user."""
    message = getattr(reaction, "message", None)
    if message is None or user is None:
        return None
    guild = getattr(message, "guild", None)
    channel = getattr(message, "channel", None)
    if guild is None or channel is None:
        return None

    author = getattr(message, "author", None)
    return ReactionEvent(
        user_id=user.id,
        display_name=_display_name(user),
        is_bot=bool(getattr(user, "bot", False)),
        channel_id=channel.id,
        message_id=message.id,
        emoji=str(reaction.emoji),
        count=int(getattr(reaction, "count", 0) or 0),
        added=added,
        message_author_id=getattr(author, "id", None),
        guild_id=guild.id,
    )


def voice_to_event(member: Any, before: Any, after: Any) -> VoiceStateEvent | None:
    """Translate ``on_voice_state_update``; ``None`` when no channel changed."""
    if member is None:
        return None
    before_id = _channel_id(before)
    after_id = _channel_id(after)
    if before_id == after_id:
        # Mute/deafen toggles; not a presence change
        return None
    guild = getattr(member, "guild", None)
    return VoiceStateEvent(
        user_id=member.id,
        display_name=_display_name(member),
        is_bot=bool(getattr(member, "bot", False)),
        before_channel_id=before_id,
        after_channel_id=after_id,
        guild_id=getattr(guild, "id", None),
    )


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------
class EventNormalizer:
    """Relays gateway callbacks onto an :class:`EventBus`.

    Usage::

        normalizer = EventNormalizer(bus)
        normalizer.init(bot)              # exactly once, from setup_hook
        await normalizer.relay_message(message)
    """

    def __init__(self, bus: EventBus) -> None:
        self.bus = bus
        self._initialized = False
        self._client: Any = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self, client: Any) -> None:
        if self._initialized:
            logger.warning("EventNormalizer.init called twice, ignoring")
            return
        self._client = client
        self._initialized = True
        logger.info("Event normalizer live")

    def subscribe(self, name: str, handler: Handler) -> None:
        """Read-only tap on the normalized stream (plugins, analytics)."""
        self.bus.subscribe(name, handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        self.bus.unsubscribe(name, handler)

    async def publish(self, name: str, event: Any) -> None:
        if not self._initialized:
            logger.warning("Dropping %s event: normalizer not initialized", name)
            return
        await self.bus.publish(name, event)

    async def relay_message(self, message: Any) -> None:
        event = message_to_event(message)
        if event is None:
            logger.debug("Skipping partial message %s", getattr(message, "id", "?"))
            return
        await self.publish(EventName.MESSAGE, event)

    async def relay_reaction(self, reaction: Any, user: Any, *, added: bool = True) -> None:
        event = reaction_to_event(reaction, user, added=added)
        if event is None:
            logger.debug("Skipping partial reaction")
            return
        name = EventName.REACTION_ADD if added else EventName.REACTION_REMOVE
        await self.publish(name, event)

    async def relay_voice_state(self, member: Any, before: Any, after: Any) -> None:
        event = voice_to_event(member, before, after)
        if event is None:
            return
        await self.publish(EventName.VOICE_STATE_UPDATE, event)
