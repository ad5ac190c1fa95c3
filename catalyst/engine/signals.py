"""
catalyst.engine.signals — Rolling buffers & pattern detectors
==============================================================

Keeps short, bounded windows of recent activity and looks for
higher-order patterns a single message score can't see:

- **high_velocity_thread** — a burst of replies to the same parent.
- **split_vote** — two reaction emoji neck and neck on one message.
- **sarcasm_cluster** — 🙄 🤔 😏 👀 💅 piling up on one message.
- **voice_flood** — several joins into one voice channel in quick succession.
- **rage_quit** — someone leaves a channel others just piled into.

Detectors return :class:`Signal` records and never mutate world state;
the dispatcher decides what (if anything) to do with them.  Bot-authored
events are ignored and never buffered.  Every buffer is capped and evicts
oldest-first.

Signal intensity starts at :data:`BASE_INTENSITY` when a detector fires and
grows by one for each unit past the detector's minimum, clamped to 10.
"""

from __future__ import annotations

import logging
from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime

from catalyst.config import SignalSettings
from catalyst.constants import SARCASM_EMOJI
from catalyst.engine.events import MessageEvent, ReactionEvent, VoiceStateEvent
from catalyst.engine.scoring import MAX_SCORE

logger = logging.getLogger(__name__)

BASE_INTENSITY = 5

# Channel is "heated" with this many messages inside the window.
_HEAT_MESSAGES = 10
_HEAT_WINDOW_SECONDS = 180.0
_MENTION_BUFFER = 200


@dataclass(frozen=True, slots=True)
class Signal:
    """A detected activity pattern."""

    name: str
    channel_id: int | None
    participants: tuple[int, ...]
    intensity: int
    detail: str
    message_id: int | None = None


@dataclass(frozen=True, slots=True)
class _BufferedMessage:
    ts: float
    user_id: int
    message_id: int
    reply_to_id: int | None
    content: str


@dataclass(frozen=True, slots=True)
class _BufferedVoice:
    ts: float
    user_id: int
    joined: int | None
    left: int | None


@dataclass(slots=True)
class _ReactionTally:
    channel_id: int
    author_id: int | None
    counts: dict[str, int] = field(default_factory=dict)
    reactors: list[int] = field(default_factory=list)


def _intensity(excess: int) -> int:
    return max(0, min(BASE_INTENSITY + max(excess, 0), MAX_SCORE))


def _ts(when: datetime) -> float:
    return when.timestamp()


class SignalTracker:
    """Bounded per-channel/per-message/voice buffers plus detectors.

    Only touched from the bot's event loop, so the buffers are unguarded.
    """

    def __init__(self, settings: SignalSettings | None = None) -> None:
        self.settings = settings or SignalSettings()
        # channel_id → recent messages (FIFO, per channel)
        self._messages: dict[int, deque[_BufferedMessage]] = defaultdict(
            lambda: deque(maxlen=self.settings.message_buffer_size)
        )
        # message_id → tally; FIFO eviction by first-seen message
        self._reactions: OrderedDict[int, _ReactionTally] = OrderedDict()
        self._voice: deque[_BufferedVoice] = deque(maxlen=self.settings.voice_buffer_size)
        # (ts, author_id, target_id)
        self._mentions: deque[tuple[float, int, int]] = deque(maxlen=_MENTION_BUFFER)

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------
    def observe_message(self, event: MessageEvent) -> list[Signal]:
        if event.is_bot:
            return []
        now = _ts(event.timestamp)
        self._messages[event.channel_id].append(
            _BufferedMessage(now, event.user_id, event.message_id, event.reply_to_id, event.content)
        )
        for target in event.mention_ids:
            self._mentions.append((now, event.user_id, target))
        signal = self._detect_velocity(event.channel_id, event.reply_to_id, now)
        return [signal] if signal else []

    def _detect_velocity(self, channel_id: int, parent_id: int | None, now: float) -> Signal | None:
        if parent_id is None:
            return None
        s = self.settings
        cutoff = now - s.velocity_window_seconds
        replies = [
            m for m in self._messages[channel_id]
            if m.reply_to_id == parent_id and m.ts >= cutoff
        ]
        if len(replies) < s.velocity_min_messages:
            return None
        participants = tuple(dict.fromkeys(m.user_id for m in replies))
        return Signal(
            name="high_velocity_thread",
            channel_id=channel_id,
            participants=participants,
            intensity=_intensity(len(replies) - s.velocity_min_messages),
            detail=f"{len(replies)} replies to one message in under "
                   f"{int(s.velocity_window_seconds)}s",
            message_id=parent_id,
        )

    # -------------------------------------------------------------------
    # Reactions
    # -------------------------------------------------------------------
    def observe_reaction(self, event: ReactionEvent) -> list[Signal]:
        if event.is_bot:
            return []
        tally = self._reactions.get(event.message_id)
        if tally is None:
            if not event.added:
                return []
            tally = _ReactionTally(channel_id=event.channel_id, author_id=event.message_author_id)
            self._reactions[event.message_id] = tally
            while len(self._reactions) > self.settings.reaction_buffer_size:
                self._reactions.popitem(last=False)

        if event.count > 0:
            tally.counts[event.emoji] = event.count
        else:
            tally.counts.pop(event.emoji, None)
        if event.added and event.user_id not in tally.reactors:
            tally.reactors.append(event.user_id)

        if not event.added:
            return []
        signals = [
            s for s in (
                self._detect_split_vote(event.message_id, tally),
                self._detect_sarcasm(event.message_id, tally, event.emoji),
            ) if s is not None
        ]
        return signals

    def _participants(self, tally: _ReactionTally) -> tuple[int, ...]:
        people = ([tally.author_id] if tally.author_id is not None else []) + tally.reactors
        return tuple(dict.fromkeys(people))

    def _detect_split_vote(self, message_id: int, tally: _ReactionTally) -> Signal | None:
        s = self.settings
        ranked = sorted(tally.counts.items(), key=lambda kv: kv[1], reverse=True)
        if len(ranked) < 2:
            return None
        (top_emoji, top), (second_emoji, second) = ranked[0], ranked[1]
        if second < s.split_vote_min_count or second < s.split_vote_ratio * top:
            return None
        return Signal(
            name="split_vote",
            channel_id=tally.channel_id,
            participants=self._participants(tally),
            intensity=_intensity(second - s.split_vote_min_count),
            detail=f"{top_emoji} {top} vs {second_emoji} {second}",
            message_id=message_id,
        )

    def _detect_sarcasm(self, message_id: int, tally: _ReactionTally, emoji: str) -> Signal | None:
        if emoji not in SARCASM_EMOJI:
            return None
        count = tally.counts.get(emoji, 0)
        minimum = self.settings.sarcasm_min_count
        if count < minimum:
            return None
        return Signal(
            name="sarcasm_cluster",
            channel_id=tally.channel_id,
            participants=self._participants(tally),
            intensity=_intensity(count - minimum),
            detail=f"{emoji} ×{count}",
            message_id=message_id,
        )

    # -------------------------------------------------------------------
    # Voice
    # -------------------------------------------------------------------
    def observe_voice(self, event: VoiceStateEvent) -> list[Signal]:
        if event.is_bot:
            return []
        now = _ts(event.timestamp)
        recent = list(self._voice)[-self.settings.voice_recent_events:]
        entry = _BufferedVoice(now, event.user_id, event.joined, event.left)
        self._voice.append(entry)
        signals = [
            s for s in (
                self._detect_voice_flood(recent + [entry], event.joined),
                self._detect_rage_quit(recent, event, now),
            ) if s is not None
        ]
        return signals

    def _detect_voice_flood(self, window: list[_BufferedVoice], channel_id: int | None) -> Signal | None:
        if channel_id is None:
            return None
        s = self.settings
        window = window[-s.voice_recent_events:]
        joins = [v for v in window if v.joined == channel_id]
        if len(joins) < s.voice_flood_min_joins:
            return None
        return Signal(
            name="voice_flood",
            channel_id=channel_id,
            participants=tuple(dict.fromkeys(v.user_id for v in joins)),
            intensity=_intensity(len(joins) - s.voice_flood_min_joins),
            detail=f"{len(joins)} joins in the last {len(window)} voice events",
        )

    def _detect_rage_quit(
        self, recent: list[_BufferedVoice], event: VoiceStateEvent, now: float
    ) -> Signal | None:
        channel_id = event.left
        if channel_id is None:
            return None
        s = self.settings
        cutoff = now - s.rage_quit_window_seconds
        joiners = list(dict.fromkeys(
            v.user_id for v in recent
            if v.joined == channel_id and v.user_id != event.user_id and v.ts >= cutoff
        ))
        if len(joiners) < s.rage_quit_min_joins:
            return None
        return Signal(
            name="rage_quit",
            channel_id=channel_id,
            participants=(event.user_id, *joiners),
            intensity=_intensity(len(joiners) - s.rage_quit_min_joins),
            detail=f"left right after {len(joiners)} others joined",
        )

    # -------------------------------------------------------------------
    # Read helpers
    # -------------------------------------------------------------------
    def recent_user_messages(self, user_id: int, limit: int = 10) -> list[str]:
        """Newest-first contents of *user_id*'s buffered messages."""
        found = [
            m for buf in self._messages.values() for m in buf if m.user_id == user_id
        ]
        found.sort(key=lambda m: m.ts, reverse=True)
        return [m.content for m in found[:limit]]

    def recent_mentions(self, user_id: int, limit: int = 10) -> list[int]:
        """Newest-first ids of users that *user_id* mentioned."""
        targets = [t for _, author, t in reversed(self._mentions) if author == user_id]
        return targets[:limit]

    def is_channel_heated(self, channel_id: int, now: float) -> bool:
        cutoff = now - _HEAT_WINDOW_SECONDS
        buf = self._messages.get(channel_id)
        if not buf:
            return False
        return sum(1 for m in buf if m.ts >= cutoff) >= _HEAT_MESSAGES

    def buffer_sizes(self) -> dict[str, int]:
        return {
            "channels": len(self._messages),
            "messages": sum(len(b) for b in self._messages.values()),
            "reaction_messages": len(self._reactions),
            "voice": len(self._voice),
        }
