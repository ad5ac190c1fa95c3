"""
catalyst.services.factions — Faction Lifecycle Manager
=======================================================

Owns the rules around factions; the data itself lives in the
:class:`~catalyst.services.world_state.WorldStateStore`.

Lifecycle::

    create ──► active (≥1 member) ──► dissolved (0 members, terminal)
                  ▲   │
             join │   │ leave / transfer_leadership
                  └───┘

- A user belongs to at most one faction.  Joining another requires leaving
  first.
- The sole leader cannot leave while others remain; leadership must be
  transferred.  A leader who is also the last member may leave, which
  dissolves the faction.
- Power is recomputed on every membership or alliance change (see
  :func:`~catalyst.engine.world.calculate_power`).

Alliances carry an aura score clamped to the configured bounds.  When the
aura sinks to the plot-twist threshold, a roll against the injected
``random.Random`` may dissolve the relationship and log a single
``betrayal`` drama event naming both sides.
"""

from __future__ import annotations

import logging
import random
from collections import OrderedDict
from datetime import datetime, timedelta

from catalyst.config import FactionSettings
from catalyst.engine.world import (
    Alliance,
    AllianceScope,
    AllianceType,
    DramaEvent,
    DramaEventType,
    Faction,
    calculate_power,
    new_id,
    utcnow,
)
from catalyst.errors import MembershipError, ValidationError
from catalyst.services.world_state import WorldStateStore

logger = logging.getLogger(__name__)

ENTROPY_MAX = 1.0
ALLIANCE_BREAK_ENTROPY = 0.25
PLOT_TWIST_TRIGGER = "faction_plot_twist"
STALE_TRIGGER = "alliance_faded"
# Pairs tallied toward a first relationship; oldest evicted beyond this
PENDING_PAIR_LIMIT = 1000


class FactionManager:
    """Create/join/leave/dissolve, power, alliances and plot twists.

    Parameters
    ----------
    store:
        The world state store (single writer for all faction data).
    settings:
        Naming bounds, membership cap, aura rules.
    rng:
        Random source for plot twists and suggestions.  Pass a seeded
        ``random.Random`` (or a stub) for deterministic tests.
    """

    def __init__(
        self,
        store: WorldStateStore,
        settings: FactionSettings | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or store.faction_settings
        self.rng = rng or random.Random()
        # Pairs without a relationship yet: key → (total, hostile, last_seen)
        self._pending: OrderedDict[tuple[str, str, str], tuple[int, int, datetime]] = (
            OrderedDict()
        )

    def pending_pairs(self) -> int:
        return len(self._pending)

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def faction_of(self, user_id: int) -> Faction | None:
        user = self.store.peek_user(user_id)
        return self.store.peek_faction(user.faction_id) if user else None

    def members_of(self, faction_id: str) -> list[int]:
        faction = self.store.peek_faction(faction_id)
        return list(faction.member_ids) if faction else []

    def active_alliance_count(self, faction_id: str) -> int:
        return sum(
            1
            for a in self.store.alliances_for(faction_id, scope=AllianceScope.FACTION)
            if a.kind == AllianceType.ALLIANCE and a.aura > 0
        )

    # -------------------------------------------------------------------
    # Derived fields
    # -------------------------------------------------------------------
    def recalculate_power(self, faction: Faction) -> int:
        faction.power = calculate_power(
            len(faction.member_ids),
            faction.drama_wins,
            self.active_alliance_count(faction.id),
        )
        return faction.power

    def _bump_entropy(self, faction: Faction, amount: float) -> None:
        faction.entropy = round(min(ENTROPY_MAX, faction.entropy + amount), 4)

    def _churn(self, faction: Faction) -> None:
        self._bump_entropy(faction, 1.0 / max(1, len(faction.member_ids)))
        self.recalculate_power(faction)
        self.store.save_faction(faction)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def create(
        self,
        name: str,
        creator_id: int,
        description: str = "",
        creator_name: str | None = None,
    ) -> Faction:
        faction = await self.store.create_faction(name, creator_id, description, creator_name)
        self.recalculate_power(faction)
        self.store.save_faction(faction)
        return faction

    async def join(self, user_id: int, faction_id: str, username: str | None = None) -> Faction:
        faction = await self.store.get_faction(faction_id)
        if faction is None:
            raise ValidationError("That faction doesn't exist.")
        user = await self.store.get_or_create_user(user_id, username)

        if user.faction_id == faction_id:
            raise MembershipError(f"You're already in **{faction.name}**.")
        current = self.store.peek_faction(user.faction_id)
        if current is not None:
            raise MembershipError(
                f"You already belong to **{current.name}**. Leave it before joining another."
            )
        if len(faction.member_ids) >= self.settings.max_members:
            raise MembershipError(f"**{faction.name}** is full.")

        faction.member_ids.append(user_id)
        user.faction_id = faction_id
        user.role_history.append("member")
        self.store.save_user(user)
        self._churn(faction)
        logger.info("User %s joined faction %r", user_id, faction.name)
        return faction

    async def leave(self, user_id: int) -> tuple[Faction, bool]:
        """Remove *user_id* from their faction.

        Returns ``(faction, dissolved)``.
        """
        user = await self.store.get_user(user_id)
        faction = self.store.peek_faction(user.faction_id) if user else None
        if user is None or faction is None:
            raise MembershipError("You're not in a faction.")

        others = [m for m in faction.member_ids if m != user_id]
        if user_id in faction.leader_ids and len(faction.leader_ids) == 1 and others:
            raise MembershipError(
                "You're the only leader. Transfer leadership before leaving."
            )

        faction.member_ids = others
        faction.leader_ids = [m for m in faction.leader_ids if m != user_id]
        user.faction_id = None
        self.store.save_user(user)

        if not faction.member_ids:
            self.dissolve(faction.id)
            return faction, True

        self._churn(faction)
        logger.info("User %s left faction %r", user_id, faction.name)
        return faction, False

    async def transfer_leadership(self, faction_id: str, from_id: int, to_id: int) -> Faction:
        faction = await self.store.get_faction(faction_id)
        if faction is None:
            raise ValidationError("That faction doesn't exist.")
        if from_id not in faction.leader_ids:
            raise MembershipError("Only a leader can hand over leadership.")
        if to_id not in faction.member_ids:
            raise MembershipError("The new leader must already be a member.")
        if to_id in faction.leader_ids:
            raise MembershipError("They're already a leader.")

        faction.leader_ids = [to_id if m == from_id else m for m in faction.leader_ids]
        heir = await self.store.get_user(to_id)
        if heir is not None:
            heir.role_history.append("leader")
            self.store.save_user(heir)
        self.store.save_faction(faction)
        logger.info("Faction %r leadership: %s → %s", faction.name, from_id, to_id)
        return faction

    def dissolve(self, faction_id: str) -> bool:
        """Delete the faction; alliances touching it go with it."""
        partners = {
            a.party_b if a.party_a == faction_id else a.party_a
            for a in self.store.alliances_for(faction_id, scope=AllianceScope.FACTION)
        }
        removed = self.store.delete_faction(faction_id)
        for partner_id in partners:
            partner = self.store.peek_faction(partner_id)
            if partner is not None:
                self.recalculate_power(partner)
                self.store.save_faction(partner)
        return removed

    def record_drama_win(self, faction_id: str) -> Faction | None:
        faction = self.store.peek_faction(faction_id)
        if faction is None:
            return None
        faction.drama_wins += 1
        self.recalculate_power(faction)
        self.store.save_faction(faction)
        return faction

    def suggest_faction(self, user_id: int) -> Faction | None:
        """A random faction with room, for a user who has none."""
        if self.faction_of(user_id) is not None:
            return None
        candidates = [
            f for f in self.store.get_all_factions()
            if len(f.member_ids) < self.settings.max_members
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda f: f.created_at)
        return self.rng.choice(candidates)

    # -------------------------------------------------------------------
    # Alliances
    # -------------------------------------------------------------------
    def form_relationship(
        self,
        scope: AllianceScope,
        a: str,
        b: str,
        kind: AllianceType = AllianceType.ALLIANCE,
        *,
        now: datetime | None = None,
    ) -> Alliance:
        """Create (or return the existing) relationship for the pair."""
        existing = self.store.find_alliance(scope, kind, a, b)
        if existing is not None:
            return existing
        lo, hi = sorted((str(a), str(b)))
        stamp = now or utcnow()
        alliance = self.store.save_alliance(Alliance(
            id=new_id(),
            scope=scope,
            kind=kind,
            party_a=lo,
            party_b=hi,
            created_at=stamp,
            last_interaction=stamp,
        ))
        self._refresh_faction_power(alliance)
        logger.info("New %s %s: %s ↔ %s", scope, kind, lo, hi)
        return alliance

    def _relationship(self, scope: AllianceScope, a: str, b: str) -> Alliance | None:
        return (
            self.store.find_alliance(scope, AllianceType.ALLIANCE, a, b)
            or self.store.find_alliance(scope, AllianceType.RIVALRY, a, b)
        )

    def record_interaction(
        self,
        scope: AllianceScope,
        a: str,
        b: str,
        *,
        hostile: bool,
        now: datetime | None = None,
    ) -> tuple[Alliance | None, DramaEvent | None]:
        """Count an interaction between two parties.

        Until the pair has interacted ``co_mention_threshold`` times nothing
        is stored; then a relationship is formed (a rivalry if most of those
        interactions were hostile).  Afterwards each interaction nudges the
        aura by ±1.

        Returns ``(relationship_or_None, plot_twist_event_or_None)``.
        """
        a, b = str(a), str(b)
        if a == b:
            return None, None
        existing = self._relationship(scope, a, b)
        if existing is not None:
            twist = self.update_aura(existing.id, -1 if hostile else 1, now=now)
            return (None if twist else existing), twist

        lo, hi = sorted((a, b))
        key = (str(scope), lo, hi)
        total, hostile_count, _ = self._pending.pop(key, (0, 0, None))
        total += 1
        hostile_count += int(hostile)
        if total < self.settings.co_mention_threshold:
            self._pending[key] = (total, hostile_count, now or utcnow())
            while len(self._pending) > PENDING_PAIR_LIMIT:
                self._pending.popitem(last=False)
            return None, None

        kind = AllianceType.RIVALRY if hostile_count * 2 > total else AllianceType.ALLIANCE
        return self.form_relationship(scope, lo, hi, kind, now=now), None

    def update_aura(
        self, alliance_id: str, delta: int, *, now: datetime | None = None
    ) -> DramaEvent | None:
        """Shift the aura by *delta* (clamped).  Returns the plot-twist event
        if the relationship just broke apart, else ``None``.
        """
        alliance = self.store.get_alliance(alliance_id)
        if alliance is None:
            return None
        s = self.settings
        alliance.aura = max(s.aura_min, min(alliance.aura + delta, s.aura_max))
        alliance.interactions += 1
        alliance.last_interaction = now or utcnow()

        if alliance.aura <= s.plot_twist_threshold and self.rng.random() < s.plot_twist_probability:
            return self._plot_twist(alliance, PLOT_TWIST_TRIGGER)

        self.store.save_alliance(alliance)
        self._refresh_faction_power(alliance)
        return None

    def sweep_stale(self, now: datetime | None = None) -> list[DramaEvent]:
        """Dissolve relationships idle past the staleness window with aura ≤ 0.

        Interaction tallies for pairs that never formed a relationship are
        forgotten after the same window.
        """
        now = now or utcnow()
        cutoff = now - timedelta(days=self.settings.alliance_stale_days)
        for key in [k for k, (_, _, seen) in self._pending.items() if seen < cutoff]:
            del self._pending[key]
        stale = [
            a for a in self.store.get_all_alliances()
            if a.last_interaction < cutoff and a.aura <= 0
        ]
        return [self._plot_twist(a, STALE_TRIGGER) for a in stale]

    def _plot_twist(self, alliance: Alliance, trigger: str) -> DramaEvent:
        self.store.delete_alliance(alliance.id)

        factions: list[str] = []
        participants: list[int] = []
        names: list[str] = []
        if alliance.scope == AllianceScope.FACTION:
            for fid in (alliance.party_a, alliance.party_b):
                faction = self.store.peek_faction(fid)
                factions.append(fid)
                if faction is not None:
                    names.append(faction.name)
                    participants.extend(faction.leader_ids)
                    self._bump_entropy(faction, ALLIANCE_BREAK_ENTROPY)
                    self.recalculate_power(faction)
                    self.store.save_faction(faction)
        else:
            participants = [int(alliance.party_a), int(alliance.party_b)]
            names = [f"<@{p}>" for p in participants]

        label = " and ".join(names) or "Two old friends"
        if trigger == STALE_TRIGGER:
            description = f"The {alliance.kind} between {label} quietly fell apart."
        else:
            description = f"Plot twist! The {alliance.kind} between {label} has shattered."

        logger.info("Plot twist on %s %s (aura %d)", alliance.scope, alliance.id, alliance.aura)
        return self.store.log_drama_event(
            DramaEventType.BETRAYAL,
            participants=participants,
            factions_involved=factions,
            score=min(10, abs(alliance.aura)),
            trigger=trigger,
            description=description,
        )

    def _refresh_faction_power(self, alliance: Alliance) -> None:
        if alliance.scope != AllianceScope.FACTION:
            return
        for fid in (alliance.party_a, alliance.party_b):
            faction = self.store.peek_faction(fid)
            if faction is not None:
                self.recalculate_power(faction)
                self.store.save_faction(faction)
