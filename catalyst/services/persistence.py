"""
catalyst.services.persistence — Persistence adapter
====================================================

The world state store talks to durable storage only through the
:class:`PersistenceAdapter` protocol: get/upsert/delete per entity plus a
"most recent N drama events" range query.  Every method is synchronous and
is called from a worker thread via :func:`~catalyst.database.engine.run_db`.

Upserts are idempotent full-row merges keyed by entity id, so writing the
same unchanged state twice yields the same rows.  Lookups that find nothing
return ``None``.

:class:`SqlAlchemyAdapter` is the production implementation.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import delete, select

from catalyst.database.engine import get_session
from catalyst.database.models import AllianceRow, DramaEventRow, FactionRow, UserRow
from catalyst.engine.world import (
    Alliance,
    AllianceScope,
    AllianceType,
    DramaEvent,
    DramaEventType,
    Faction,
    User,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class PersistenceAdapter(Protocol):
    """What the world state store needs from storage."""

    def get_user(self, user_id: int) -> User | None: ...
    def upsert_user(self, user: User) -> None: ...

    def get_faction(self, faction_id: str) -> Faction | None: ...
    def list_factions(self) -> list[Faction]: ...
    def upsert_faction(self, faction: Faction) -> None: ...
    def delete_faction(self, faction_id: str) -> None: ...

    def list_alliances(self) -> list[Alliance]: ...
    def upsert_alliance(self, alliance: Alliance) -> None: ...
    def delete_alliance(self, alliance_id: str) -> None: ...

    def upsert_drama_event(self, event: DramaEvent) -> None: ...
    def recent_drama_events(self, limit: int) -> list[DramaEvent]: ...


# ---------------------------------------------------------------------------
# Row ↔ record conversion
# ---------------------------------------------------------------------------
def _aware(value: datetime | None) -> datetime:
    # SQLite drops tzinfo on the way back
    if value is None:
        return datetime.now(UTC)
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def user_from_row(row: UserRow) -> User:
    return User(
        id=row.id,
        username=row.username,
        karma=row.karma or 0,
        drama_points=row.drama_points or 0,
        faction_id=row.faction_id,
        role_history=list(row.role_history or []),
        traits=set(row.traits or []),
        badges=set(row.badges or []),
        last_active=_aware(row.last_active),
    )


def user_to_row(user: User) -> UserRow:
    return UserRow(
        id=user.id,
        username=user.username,
        karma=user.karma,
        drama_points=user.drama_points,
        faction_id=user.faction_id,
        role_history=list(user.role_history),
        traits=sorted(user.traits),
        badges=sorted(user.badges),
        last_active=user.last_active,
    )


def faction_from_row(row: FactionRow) -> Faction:
    return Faction(
        id=row.id,
        name=row.name,
        description=row.description or "",
        member_ids=[int(m) for m in row.member_ids or []],
        leader_ids=[int(m) for m in row.leader_ids or []],
        power=row.power,
        entropy=row.entropy or 0.0,
        drama_wins=row.drama_wins or 0,
        color=row.color,
        emoji=row.emoji or "",
        created_at=_aware(row.created_at),
    )


def faction_to_row(faction: Faction) -> FactionRow:
    return FactionRow(
        id=faction.id,
        name=faction.name,
        description=faction.description,
        member_ids=list(faction.member_ids),
        leader_ids=list(faction.leader_ids),
        power=faction.power,
        entropy=faction.entropy,
        drama_wins=faction.drama_wins,
        color=faction.color,
        emoji=faction.emoji,
        created_at=faction.created_at,
    )


def alliance_from_row(row: AllianceRow) -> Alliance:
    return Alliance(
        id=row.id,
        scope=AllianceScope(row.scope),
        kind=AllianceType(row.kind),
        party_a=row.party_a,
        party_b=row.party_b,
        aura=row.aura,
        interactions=row.interactions or 0,
        created_at=_aware(row.created_at),
        last_interaction=_aware(row.last_interaction),
    )


def alliance_to_row(alliance: Alliance) -> AllianceRow:
    lo, hi = sorted((alliance.party_a, alliance.party_b))
    return AllianceRow(
        id=alliance.id,
        scope=str(alliance.scope),
        kind=str(alliance.kind),
        party_a=lo,
        party_b=hi,
        aura=alliance.aura,
        interactions=alliance.interactions,
        created_at=alliance.created_at,
        last_interaction=alliance.last_interaction,
    )


def drama_event_from_row(row: DramaEventRow) -> DramaEvent:
    return DramaEvent(
        id=row.id,
        type=DramaEventType(row.type),
        participants=[int(p) for p in row.participants or []],
        factions_involved=list(row.factions_involved or []),
        score=row.score,
        trigger=row.trigger or "",
        description=row.description or "",
        outcome=row.outcome,
        resolved=bool(row.resolved),
        channel_id=row.channel_id,
        message_id=row.message_id,
        timestamp=_aware(row.timestamp),
    )


def drama_event_to_row(event: DramaEvent) -> DramaEventRow:
    return DramaEventRow(
        id=event.id,
        type=str(event.type),
        participants=list(event.participants),
        factions_involved=list(event.factions_involved),
        score=event.score,
        trigger=event.trigger[:200],
        description=event.description,
        outcome=event.outcome,
        resolved=event.resolved,
        channel_id=event.channel_id,
        message_id=event.message_id,
        timestamp=event.timestamp,
    )


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------
class SqlAlchemyAdapter:
    """:class:`PersistenceAdapter` over the ORM tables.

    A single lock serializes access so two writer threads never interleave
    merges for the same row.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._lock = threading.Lock()

    # --- users -------------------------------------------------------------
    def get_user(self, user_id: int) -> User | None:
        with self._lock, get_session(self.engine) as session:
            row = session.get(UserRow, user_id)
            return user_from_row(row) if row else None

    def upsert_user(self, user: User) -> None:
        with self._lock, get_session(self.engine) as session:
            session.merge(user_to_row(user))

    # --- factions ------------------------------------------------------------
    def get_faction(self, faction_id: str) -> Faction | None:
        with self._lock, get_session(self.engine) as session:
            row = session.get(FactionRow, faction_id)
            return faction_from_row(row) if row else None

    def list_factions(self) -> list[Faction]:
        with self._lock, get_session(self.engine) as session:
            rows = session.scalars(select(FactionRow).order_by(FactionRow.created_at)).all()
            return [faction_from_row(r) for r in rows]

    def upsert_faction(self, faction: Faction) -> None:
        with self._lock, get_session(self.engine) as session:
            session.merge(faction_to_row(faction))

    def delete_faction(self, faction_id: str) -> None:
        with self._lock, get_session(self.engine) as session:
            session.execute(delete(FactionRow).where(FactionRow.id == faction_id))

    # --- alliances -----------------------------------------------------------
    def list_alliances(self) -> list[Alliance]:
        with self._lock, get_session(self.engine) as session:
            rows = session.scalars(select(AllianceRow)).all()
            return [alliance_from_row(r) for r in rows]

    def upsert_alliance(self, alliance: Alliance) -> None:
        with self._lock, get_session(self.engine) as session:
            session.merge(alliance_to_row(alliance))

    def delete_alliance(self, alliance_id: str) -> None:
        with self._lock, get_session(self.engine) as session:
            session.execute(delete(AllianceRow).where(AllianceRow.id == alliance_id))

    # --- drama events ----------------------------------------------------------
    def upsert_drama_event(self, event: DramaEvent) -> None:
        with self._lock, get_session(self.engine) as session:
            session.merge(drama_event_to_row(event))

    def recent_drama_events(self, limit: int) -> list[DramaEvent]:
        """Newest *limit* events, returned oldest-first."""
        with self._lock, get_session(self.engine) as session:
            rows = session.scalars(
                select(DramaEventRow).order_by(DramaEventRow.timestamp.desc()).limit(limit)
            ).all()
            return [drama_event_from_row(r) for r in reversed(rows)]
