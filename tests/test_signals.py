"""
tests/test_signals.py — Rolling Buffer Pattern Detectors
=========================================================

Drives :class:`SignalTracker` with synthetic events and explicit
timestamps; no event loop or Discord objects involved.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from conftest import make_message

from catalyst.config import SignalSettings
from catalyst.engine.events import ReactionEvent, VoiceStateEvent
from catalyst.engine.signals import SignalTracker

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def _reaction(user_id, emoji, count, *, message_id=500, added=True, is_bot=False):
    return ReactionEvent(
        user_id=user_id,
        display_name=f"user{user_id}",
        is_bot=is_bot,
        channel_id=100,
        message_id=message_id,
        emoji=emoji,
        count=count,
        added=added,
        message_author_id=99,
    )


def _voice(user_id, before, after, seconds, *, is_bot=False):
    return VoiceStateEvent(
        user_id=user_id,
        display_name=f"user{user_id}",
        is_bot=is_bot,
        before_channel_id=before,
        after_channel_id=after,
        timestamp=_at(seconds),
    )


# ---------------------------------------------------------------------------
# High-velocity threads
# ---------------------------------------------------------------------------
class TestVelocity:
    def test_fires_on_fifth_reply(self):
        tracker = SignalTracker(SignalSettings())
        signals = []
        for i in range(5):
            signals = tracker.observe_message(
                make_message(i + 1, "no u", reply_to=42, message_id=i, timestamp=_at(i * 10))
            )
            if i < 4:
                assert signals == []
        assert len(signals) == 1
        signal = signals[0]
        assert signal.name == "high_velocity_thread"
        assert signal.message_id == 42
        assert signal.participants == (1, 2, 3, 4, 5)
        assert signal.intensity == 5

    def test_replies_outside_window_ignored(self):
        tracker = SignalTracker(SignalSettings(velocity_window_seconds=60))
        for i in range(5):
            signals = tracker.observe_message(
                make_message(i + 1, "no u", reply_to=42, message_id=i, timestamp=_at(i * 30))
            )
        assert signals == []

    def test_intensity_grows_with_excess(self):
        tracker = SignalTracker(SignalSettings())
        for i in range(8):
            signals = tracker.observe_message(
                make_message(1, "again", reply_to=42, message_id=i, timestamp=_at(i))
            )
        assert signals[0].intensity == 8
        assert signals[0].participants == (1,)

    def test_non_replies_never_fire(self):
        tracker = SignalTracker(SignalSettings())
        for i in range(10):
            assert tracker.observe_message(make_message(i, "hi", message_id=i)) == []


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------
class TestReactions:
    def test_split_vote(self):
        tracker = SignalTracker(SignalSettings())
        assert tracker.observe_reaction(_reaction(1, "👍", 5)) == []
        signals = tracker.observe_reaction(_reaction(2, "👎", 4))
        assert [s.name for s in signals] == ["split_vote"]
        assert signals[0].participants == (99, 1, 2)

    def test_lopsided_vote_is_not_split(self):
        tracker = SignalTracker(SignalSettings())
        tracker.observe_reaction(_reaction(1, "👍", 10))
        assert tracker.observe_reaction(_reaction(2, "👎", 4)) == []

    def test_sarcasm_cluster(self):
        tracker = SignalTracker(SignalSettings())
        assert tracker.observe_reaction(_reaction(1, "🙄", 2)) == []
        signals = tracker.observe_reaction(_reaction(2, "🙄", 3))
        assert [s.name for s in signals] == ["sarcasm_cluster"]
        assert signals[0].intensity == 5

    def test_removal_updates_tally_without_firing(self):
        tracker = SignalTracker(SignalSettings())
        tracker.observe_reaction(_reaction(1, "🙄", 3))
        assert tracker.observe_reaction(_reaction(1, "🙄", 2, added=False)) == []

    def test_removal_on_unknown_message_is_ignored(self):
        tracker = SignalTracker(SignalSettings())
        assert tracker.observe_reaction(_reaction(1, "🙄", 0, added=False)) == []
        assert tracker.buffer_sizes()["reaction_messages"] == 0

    def test_reaction_buffer_evicts_oldest(self):
        tracker = SignalTracker(SignalSettings(reaction_buffer_size=3))
        for mid in range(5):
            tracker.observe_reaction(_reaction(1, "👍", 1, message_id=mid))
        assert tracker.buffer_sizes()["reaction_messages"] == 3


# ---------------------------------------------------------------------------
# Voice
# ---------------------------------------------------------------------------
class TestVoice:
    def test_voice_flood(self):
        tracker = SignalTracker(SignalSettings())
        signals = []
        for i in range(4):
            signals = tracker.observe_voice(_voice(i + 1, None, 7, i))
        assert [s.name for s in signals] == ["voice_flood"]
        assert signals[0].channel_id == 7
        assert signals[0].participants == (1, 2, 3, 4)

    def test_rage_quit(self):
        tracker = SignalTracker(SignalSettings())
        tracker.observe_voice(_voice(2, None, 7, 0))
        tracker.observe_voice(_voice(3, None, 7, 10))
        signals = tracker.observe_voice(_voice(1, 7, None, 20))
        assert [s.name for s in signals] == ["rage_quit"]
        assert signals[0].participants == (1, 2, 3)

    def test_rage_quit_needs_recent_joins(self):
        tracker = SignalTracker(SignalSettings())
        tracker.observe_voice(_voice(2, None, 7, 0))
        tracker.observe_voice(_voice(3, None, 7, 10))
        assert tracker.observe_voice(_voice(1, 7, None, 500)) == []

    def test_voice_buffer_is_capped(self):
        tracker = SignalTracker(SignalSettings(voice_buffer_size=5))
        for i in range(20):
            tracker.observe_voice(_voice(i, None, i, i))
        assert tracker.buffer_sizes()["voice"] == 5


# ---------------------------------------------------------------------------
# Bots and read helpers
# ---------------------------------------------------------------------------
class TestBotsAndHelpers:
    def test_bots_never_buffered(self):
        tracker = SignalTracker(SignalSettings())
        tracker.observe_message(make_message(1, "beep", is_bot=True))
        tracker.observe_reaction(_reaction(1, "🙄", 9, is_bot=True))
        tracker.observe_voice(_voice(1, None, 7, 0, is_bot=True))
        assert tracker.buffer_sizes() == {
            "channels": 0, "messages": 0, "reaction_messages": 0, "voice": 0,
        }

    def test_message_buffer_is_capped(self):
        tracker = SignalTracker(SignalSettings(message_buffer_size=10))
        for i in range(50):
            tracker.observe_message(make_message(1, str(i), message_id=i))
        assert tracker.buffer_sizes()["messages"] == 10

    def test_recent_user_messages_newest_first(self):
        tracker = SignalTracker(SignalSettings())
        for i in range(3):
            tracker.observe_message(make_message(1, f"m{i}", message_id=i, timestamp=_at(i)))
        tracker.observe_message(make_message(2, "other", message_id=9, timestamp=_at(9)))
        assert tracker.recent_user_messages(1) == ["m2", "m1", "m0"]

    def test_recent_mentions(self):
        tracker = SignalTracker(SignalSettings())
        tracker.observe_message(make_message(1, "hey", mentions=(2, 3)))
        tracker.observe_message(make_message(1, "you", mentions=(4,)))
        assert tracker.recent_mentions(1) == [4, 3, 2]
        assert tracker.recent_mentions(2) == []

    def test_channel_heat(self):
        tracker = SignalTracker(SignalSettings())
        for i in range(10):
            tracker.observe_message(make_message(i, "go", message_id=i, timestamp=_at(i)))
        now = _at(10).timestamp()
        assert tracker.is_channel_heated(100, now)
        assert not tracker.is_channel_heated(100, now + 600)
        assert not tracker.is_channel_heated(999, now)
