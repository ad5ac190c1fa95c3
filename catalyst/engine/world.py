"""
catalyst.engine.world — World model records
============================================

Plain in-memory records for the four entities the world state store owns:
:class:`User`, :class:`Faction`, :class:`Alliance` and :class:`DramaEvent`.

These are deliberately *not* ORM objects.  The store mutates them
synchronously on the event loop; :mod:`catalyst.services.persistence`
converts them to and from database rows on a worker thread.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


POWER_MIN = 1
POWER_MAX = 100


def calculate_power(member_count: int, drama_wins: int, active_alliances: int) -> int:
    """Faction power: 5/member + 10/drama win + 8/active alliance, in [1, 100]."""
    raw = member_count * 5 + drama_wins * 10 + active_alliances * 8
    return max(POWER_MIN, min(raw, POWER_MAX))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class DramaEventType(enum.StrEnum):
    """Closed set of drama event categories."""
    MESSAGE = "message"
    REACTION = "reaction"
    VOICE = "voice"
    BETRAYAL = "betrayal"
    ALLIANCE = "alliance"
    WAR = "war"
    COUP = "coup"
    VOTE = "vote"
    SCANDAL = "scandal"
    RIVALRY = "rivalry"
    CHAOS_SURGE = "chaos_surge"
    RANDOM = "random"


class AllianceType(enum.StrEnum):
    ALLIANCE = "alliance"
    RIVALRY = "rivalry"


class AllianceScope(enum.StrEnum):
    """Whether an alliance links two factions or two users."""
    FACTION = "faction"
    USER = "user"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class User:
    """A community member, created lazily on first sight."""

    id: int
    username: str
    karma: int = 0
    drama_points: int = 0
    faction_id: str | None = None
    role_history: list[str] = field(default_factory=list)
    traits: set[str] = field(default_factory=set)
    badges: set[str] = field(default_factory=set)
    last_active: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Faction:
    """A named group.  ``leader_ids`` is always a subset of ``member_ids``."""

    id: str
    name: str
    description: str = ""
    member_ids: list[int] = field(default_factory=list)
    leader_ids: list[int] = field(default_factory=list)
    power: int = 1
    entropy: float = 0.0
    drama_wins: int = 0
    color: str = "#95a5a6"
    emoji: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Alliance:
    """Pairwise relationship between two factions (or two users).

    ``party_a``/``party_b`` hold faction ids for faction scope and stringified
    user ids for user scope.  The pair is unordered: see :meth:`key`.
    """

    id: str
    scope: AllianceScope
    kind: AllianceType
    party_a: str
    party_b: str
    aura: int = 0
    interactions: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_interaction: datetime = field(default_factory=utcnow)

    @staticmethod
    def make_key(
        scope: AllianceScope, kind: AllianceType, a: str, b: str
    ) -> tuple[str, str, str, str]:
        lo, hi = sorted((str(a), str(b)))
        return (str(scope), str(kind), lo, hi)

    def key(self) -> tuple[str, str, str, str]:
        return self.make_key(self.scope, self.kind, self.party_a, self.party_b)

    def involves(self, party_id: str) -> bool:
        return party_id in (self.party_a, self.party_b)


@dataclass(slots=True)
class DramaEvent:
    """A detected, socially significant occurrence.

    Immutable once ``resolved`` is set; the store refuses further edits.
    """

    id: str
    type: DramaEventType
    participants: list[int] = field(default_factory=list)
    factions_involved: list[str] = field(default_factory=list)
    score: int = 0
    trigger: str = ""
    description: str = ""
    outcome: str | None = None
    resolved: bool = False
    channel_id: int | None = None
    message_id: int | None = None
    timestamp: datetime = field(default_factory=utcnow)
