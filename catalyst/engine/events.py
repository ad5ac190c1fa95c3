"""
catalyst.engine.events — Normalized gateway events
===================================================

Every raw Discord callback is translated into one of these frozen
dataclasses before anything downstream sees it.  Consumers never touch
``discord.Message`` or ``discord.Reaction`` directly.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = [
    "EventName",
    "MessageEvent",
    "ReactionEvent",
    "VoiceStateEvent",
    "NormalizedEvent",
]


class EventName(enum.StrEnum):
    """The closed set of internal bus topics."""
    MESSAGE = "message"
    REACTION_ADD = "reactionAdd"
    REACTION_REMOVE = "reactionRemove"
    VOICE_STATE_UPDATE = "voiceStateUpdate"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class MessageEvent:
    """A message was posted in a guild channel."""

    user_id: int
    display_name: str
    is_bot: bool
    channel_id: int
    message_id: int
    content: str
    mention_ids: tuple[int, ...] = ()
    reply_to_id: int | None = None
    guild_id: int | None = None
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class ReactionEvent:
    """A reaction was added to (or removed from) a message.

    ``count`` is the emoji's tally on the message *after* the change.
    """

    user_id: int
    display_name: str
    is_bot: bool
    channel_id: int
    message_id: int
    emoji: str
    count: int
    added: bool = True
    message_author_id: int | None = None
    guild_id: int | None = None
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class VoiceStateEvent:
    """A member moved between voice channels (either side may be ``None``)."""

    user_id: int
    display_name: str
    is_bot: bool
    before_channel_id: int | None
    after_channel_id: int | None
    guild_id: int | None = None
    timestamp: datetime = field(default_factory=_now)

    @property
    def joined(self) -> int | None:
        """Channel joined by this transition, if any."""
        if self.after_channel_id is not None and self.after_channel_id != self.before_channel_id:
            return self.after_channel_id
        return None

    @property
    def left(self) -> int | None:
        """Channel left by this transition, if any."""
        if self.before_channel_id is not None and self.before_channel_id != self.after_channel_id:
            return self.before_channel_id
        return None


NormalizedEvent = MessageEvent | ReactionEvent | VoiceStateEvent
