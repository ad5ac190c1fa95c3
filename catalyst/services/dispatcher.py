"""
catalyst.services.dispatcher — Drama Dispatcher
================================================

**Why this file exists:**
This is the only place a raw intensity score turns into a persisted
:class:`~catalyst.engine.world.DramaEvent` and the world mutations that
follow it.

Message pipeline::

    message ─► score_message ─► score ≥ threshold? ─► category cooldown ready?
                                                          │
               ┌──────────────────────────────────────────┘
               ▼
    get-or-create author ─► log DramaEvent ─► update participants
               ─► mark cooldown ─► notify (fire-and-forget, with vote)

Pattern signals from :class:`~catalyst.engine.signals.SignalTracker` go
through the same threshold + cooldown gate, keyed by signal name.

Every message score also feeds the :class:`ChaosMeter`.  When the meter
crosses its threshold (and the surge cooldown allows) a server-wide
``chaos_surge`` event fires and the meter resets.

Notifier failures are logged and swallowed; they never undo state that was
already committed to the store.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable
from functools import partial

from catalyst.config import DramaSettings, SignalSettings
from catalyst.constants import (
    EVENT_COLORS,
    EVENT_EMOJI,
    HOSTILE_CATEGORIES,
    VOTE_ESCALATE,
    VOTE_OPPOSE,
    VOTE_SUPPORT,
)
from catalyst.engine.bus import EventBus
from catalyst.engine.cooldown import ChaosMeter, CooldownTracker
from catalyst.engine.events import EventName, MessageEvent, ReactionEvent, VoiceStateEvent
from catalyst.engine.scoring import TriggerMatch, match_trigger, score_message
from catalyst.engine.signals import Signal, SignalTracker
from catalyst.engine.world import AllianceScope, DramaEvent, DramaEventType, User
from catalyst.services.factions import FactionManager
from catalyst.services.notifier import Notification, Notifier, VoteOption, VoteTally
from catalyst.services.world_state import WorldStateStore

logger = logging.getLogger(__name__)

VOTE_OPTIONS: tuple[VoteOption, ...] = (
    VoteOption(VOTE_SUPPORT, "Support"),
    VoteOption(VOTE_OPPOSE, "Oppose"),
    VoteOption(VOTE_ESCALATE, "Escalate"),
)

SIGNAL_TYPES: dict[str, DramaEventType] = {
    "high_velocity_thread": DramaEventType.SCANDAL,
    "split_vote": DramaEventType.VOTE,
    "sarcasm_cluster": DramaEventType.REACTION,
    "voice_flood": DramaEventType.VOICE,
    "rage_quit": DramaEventType.VOICE,
}

DEFAULT_CATEGORY = "message"
DEFAULT_TRIGGER = "intensity"
CHAOS_SURGE_CATEGORY = "chaos_surge"
ESCALATION_CHAOS = 5.0


class DramaDispatcher:
    """Score → cooldown → DramaEvent orchestrator.

    Parameters
    ----------
    store / factions:
        World state and faction rules (shared, constructed by the bot).
    notifier:
        Anything with ``async notify(Notification)``; ``None`` disables output.
    settings / signal_settings:
        Threshold, cooldown windows, chaos tuning; detector thresholds.
    rng:
        Random source for staged coups.
    clock:
        Wall-clock seconds (``time.time`` by default) for cooldowns/chaos.
    """

    def __init__(
        self,
        store: WorldStateStore,
        factions: FactionManager,
        notifier: Notifier | None = None,
        settings: DramaSettings | None = None,
        signal_settings: SignalSettings | None = None,
        *,
        tracker: SignalTracker | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
        announce_channel: str | None = None,
    ) -> None:
        self.store = store
        self.factions = factions
        self.notifier = notifier
        self.settings = settings or DramaSettings()
        self.tracker = tracker or SignalTracker(signal_settings)
        self.rng = rng or random.Random()
        self.clock = clock
        self.announce_channel = announce_channel

        s = self.settings
        self.cooldowns = CooldownTracker(s.cooldown_minutes * 60)
        self.chaos = ChaosMeter(s.chaos_decay_percent_per_minute, now=clock())
        self._surge_cooldown = CooldownTracker(s.chaos_cooldown_hours * 3600)
        self._pending: set[asyncio.Task] = set()
        # drama event id → (faction_id, leader_id, challenger_id)
        self._coups: dict[str, tuple[str, int, int]] = {}

    # ===================================================================
    # Wiring
    # ===================================================================
    def attach(self, bus: EventBus) -> None:
        bus.subscribe(EventName.MESSAGE, self.on_message)
        bus.subscribe(EventName.REACTION_ADD, self.on_reaction)
        bus.subscribe(EventName.REACTION_REMOVE, self.on_reaction)
        bus.subscribe(EventName.VOICE_STATE_UPDATE, self.on_voice_state)

    def detach(self, bus: EventBus) -> None:
        bus.unsubscribe(EventName.MESSAGE, self.on_message)
        bus.unsubscribe(EventName.REACTION_ADD, self.on_reaction)
        bus.unsubscribe(EventName.REACTION_REMOVE, self.on_reaction)
        bus.unsubscribe(EventName.VOICE_STATE_UPDATE, self.on_voice_state)

    def start(self) -> None:
        """Register the maintenance tick with the store's scheduler."""
        self.store.schedule_periodic(
            "drama-maintenance",
            self.settings.maintenance_interval_seconds,
            self.maintenance_tick,
        )

    async def wait_idle(self) -> None:
        """Wait for every in-flight notification."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.wait_idle()

    # ===================================================================
    # Bus handlers
    # ===================================================================
    async def on_message(self, event: MessageEvent) -> DramaEvent | None:
        if event.is_bot:
            return None
        now = self.clock()
        signals = self.tracker.observe_message(event)
        score = score_message(event)
        match = match_trigger(event.content)
        self.chaos.add(score, now)

        await self._record_interactions(event, score, match)

        drama = None
        if score >= self.settings.score_threshold:
            drama = await self.trigger_message(event, score, match, now=now)

        for signal in signals:
            await self.handle_signal(signal, now=now)
        await self.check_chaos(now)
        return drama

    async def on_reaction(self, event: ReactionEvent) -> None:
        if event.is_bot:
            return
        now = self.clock()
        for signal in self.tracker.observe_reaction(event):
            await self.handle_signal(signal, now=now)

    async def on_voice_state(self, event: VoiceStateEvent) -> None:
        if event.is_bot:
            return
        now = self.clock()
        for signal in self.tracker.observe_voice(event):
            await self.handle_signal(signal, now=now)

    # ===================================================================
    # Message triggers
    # ===================================================================
    async def trigger_message(
        self,
        event: MessageEvent,
        score: int,
        match: TriggerMatch | None = None,
        *,
        now: float | None = None,
    ) -> DramaEvent | None:
        """Gate on cooldown, then log a DramaEvent and update participants."""
        now = self.clock() if now is None else now
        category = str(match.category) if match else DEFAULT_CATEGORY
        if not self.cooldowns.ready(category, now):
            logger.debug(
                "Drama %s suppressed: %.0fs cooldown left",
                category, self.cooldowns.remaining(category, now),
            )
            return None
        # Claim the window before any await so a concurrent handler can't
        # slip a second event through.
        self.cooldowns.mark(category, now)

        author = await self.store.get_or_create_user(event.user_id, event.display_name)
        targets = [await self.store.get_or_create_user(m) for m in event.mention_ids]
        people = [author] + [t for t in targets if t.id != author.id]

        event_type = match.category if match else DramaEventType.MESSAGE
        drama = self.store.log_drama_event(
            event_type,
            participants=[u.id for u in people],
            factions_involved=[u.faction_id for u in people if u.faction_id],
            score=score,
            trigger=match.keyword if match else DEFAULT_TRIGGER,
            description=self._describe_message(author, people[1:], event_type),
            channel_id=event.channel_id,
            message_id=event.message_id,
        )

        for user in people:
            user.drama_points += score
            user.karma += -1 if user.id == author.id else 1
        for user in people:
            await self.store.update_user(
                user.id, drama_points=user.drama_points, karma=user.karma
            )

        self.notify(self._drama_notification(drama, votes=True))
        return drama

    @staticmethod
    def _describe_message(author: User, targets: list[User], event_type: DramaEventType) -> str:
        if targets:
            who = ", ".join(f"<@{t.id}>" for t in targets)
            return f"<@{author.id}> just called out {who}. Things are getting {event_type}-y."
        return f"<@{author.id}> is turning up the heat."

    # ===================================================================
    # Signals
    # ===================================================================
    async def handle_signal(self, signal: Signal, *, now: float | None = None) -> DramaEvent | None:
        now = self.clock() if now is None else now
        if signal.intensity < self.settings.score_threshold:
            return None
        if not self.cooldowns.ready(signal.name, now):
            return None
        self.cooldowns.mark(signal.name, now)

        people = [await self.store.get_or_create_user(uid) for uid in signal.participants]
        drama = self.store.log_drama_event(
            SIGNAL_TYPES.get(signal.name, DramaEventType.RANDOM),
            participants=[u.id for u in people],
            factions_involved=[u.faction_id for u in people if u.faction_id],
            score=signal.intensity,
            trigger=signal.name,
            description=signal.detail,
            channel_id=signal.channel_id,
            message_id=signal.message_id,
        )
        for user in people:
            await self.store.update_user(user.id, drama_points=user.drama_points + signal.intensity)

        self.notify(self._drama_notification(drama, votes=False))
        return drama

    # ===================================================================
    # Faction / user relationships
    # ===================================================================
    async def _record_interactions(
        self, event: MessageEvent, score: int, match: TriggerMatch | None
    ) -> None:
        if not event.mention_ids:
            return
        hostile = score >= self.settings.score_threshold or (
            match is not None and match.category in HOSTILE_CATEGORIES
        )
        author = self.store.peek_user(event.user_id)
        author_faction = author.faction_id if author else None

        for target_id in event.mention_ids:
            _, twist = self.factions.record_interaction(
                AllianceScope.USER, str(event.user_id), str(target_id), hostile=hostile
            )
            if twist:
                self.notify(self._drama_notification(twist, votes=False))

            target = await self.store.get_user(target_id)
            target_faction = target.faction_id if target else None
            if author_faction and target_faction and author_faction != target_faction:
                _, twist = self.factions.record_interaction(
                    AllianceScope.FACTION, author_faction, target_faction, hostile=hostile
                )
                if twist:
                    self.notify(self._drama_notification(twist, votes=False))

    # ===================================================================
    # Chaos meter
    # ===================================================================
    async def check_chaos(self, now: float | None = None) -> DramaEvent | None:
        now = self.clock() if now is None else now
        level = self.chaos.level(now)
        if level < self.settings.chaos_threshold:
            return None
        if not self._surge_cooldown.ready(CHAOS_SURGE_CATEGORY, now):
            return None
        self._surge_cooldown.mark(CHAOS_SURGE_CATEGORY, now)
        self.chaos.reset(now)

        recent = self.store.get_recent_drama_events(5)
        participants = [p for e in recent for p in e.participants]
        drama = self.store.log_drama_event(
            DramaEventType.CHAOS_SURGE,
            participants=participants,
            factions_involved=[f for e in recent for f in e.factions_involved],
            score=10,
            trigger=CHAOS_SURGE_CATEGORY,
            description=f"Chaos hit {level:.0f}%. The server is reorganizing!",
        )
        logger.warning("Chaos surge at level %.1f", level)
        self.notify(self._drama_notification(drama, votes=False))
        return drama

    # ===================================================================
    # Maintenance (scheduled by the store)
    # ===================================================================
    async def maintenance_tick(self, now: float | None = None) -> None:
        now = self.clock() if now is None else now
        self.chaos.level(now)
        self.cooldowns.prune(now)
        self.store.cache.purge()

        for twist in self.factions.sweep_stale():
            self.notify(self._drama_notification(twist, votes=False))
        self._prune_coups()

        if self.rng.random() < self.settings.coup_probability:
            self.stage_coup()

    def _prune_coups(self) -> None:
        # Forget coups whose vote can no longer resolve
        for event_id, (faction_id, _, _) in list(self._coups.items()):
            drama = self.store.get_drama_event(event_id)
            if drama is None or drama.resolved or self.store.peek_faction(faction_id) is None:
                del self._coups[event_id]

    def stage_coup(self) -> DramaEvent | None:
        """Pick a faction with ≥2 members and let a member challenge its leader."""
        candidates = [
            f for f in self.store.get_all_factions()
            if len(f.member_ids) >= 2 and f.leader_ids
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda f: f.created_at)
        faction = self.rng.choice(candidates)
        leader = faction.leader_ids[0]
        challengers = [m for m in faction.member_ids if m not in faction.leader_ids]
        if not challengers:
            return None
        challenger = self.rng.choice(challengers)

        drama = self.store.log_drama_event(
            DramaEventType.COUP,
            participants=[challenger, leader],
            factions_involved=[faction.id],
            score=7,
            trigger="random_coup",
            description=(
                f"<@{challenger}> is making a move on <@{leader}>'s seat in "
                f"**{faction.name}**. Support the coup?"
            ),
        )
        self._coups[drama.id] = (faction.id, leader, challenger)
        self.notify(self._drama_notification(drama, votes=True))
        return drama

    # ===================================================================
    # Votes
    # ===================================================================
    async def resolve_vote(self, event_id: str, tally: VoteTally) -> DramaEvent | None:
        """Apply the community's verdict on a drama event."""
        drama = self.store.get_drama_event(event_id)
        if drama is None or drama.resolved:
            return None

        support = tally.get(VOTE_SUPPORT, 0)
        oppose = tally.get(VOTE_OPPOSE, 0)
        escalate = tally.get(VOTE_ESCALATE, 0)
        if support > oppose:
            verdict = "supported"
        elif oppose > support:
            verdict = "opposed"
        else:
            verdict = "split"
        outcome = f"{verdict} ({VOTE_SUPPORT} {support} / {VOTE_OPPOSE} {oppose} / {VOTE_ESCALATE} {escalate})"

        coup = self._coups.pop(event_id, None)
        if verdict == "supported":
            if coup is not None:
                faction_id, leader, challenger = coup
                try:
                    await self.factions.transfer_leadership(faction_id, leader, challenger)
                    outcome += "; the coup succeeded"
                except ValueError as exc:
                    logger.info("Coup %s fizzled: %s", event_id, exc)
                    outcome += "; the coup fizzled"
            elif drama.participants:
                instigator = self.store.peek_user(drama.participants[0])
                if instigator and instigator.faction_id:
                    self.factions.record_drama_win(instigator.faction_id)
        if escalate:
            self.chaos.add(escalate * ESCALATION_CHAOS, self.clock())

        return self.store.resolve_drama_event(event_id, outcome)

    # ===================================================================
    # Notification plumbing
    # ===================================================================
    def _drama_notification(self, drama: DramaEvent, *, votes: bool) -> Notification:
        emoji = EVENT_EMOJI.get(drama.type, "")
        fields = [("Intensity", f"{drama.score}/10"), ("Trigger", drama.trigger or "—")]
        if drama.factions_involved:
            names = [
                f.name for f in (self.store.peek_faction(fid) for fid in drama.factions_involved) if f
            ]
            if names:
                fields.append(("Factions", ", ".join(names)))
        return Notification(
            title=f"{emoji} {drama.type.replace('_', ' ').title()}".strip(),
            description=drama.description,
            color=EVENT_COLORS.get(drama.type, 0x95A5A6),
            channel=self.announce_channel,
            fields=tuple(fields),
            vote_options=VOTE_OPTIONS if votes else (),
            on_resolved=partial(self.resolve_vote, drama.id) if votes else None,
            vote_window_seconds=self.settings.vote_window_minutes * 60,
        )

    def notify(self, notification: Notification) -> None:
        """Fire-and-forget delivery; failures are logged only."""
        if self.notifier is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; dropping notification %r", notification.title)
            return
        task = loop.create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self.notifier.notify(notification)
        except Exception:
            logger.exception("Notifier failed for %r", notification.title)
