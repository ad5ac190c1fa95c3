"""
catalyst.database.models — SQLAlchemy 2.0 Data Models
======================================================

Durable mirror of the world state.  Only
:mod:`catalyst.services.persistence` reads or writes these rows; everything
else works with the plain records in :mod:`catalyst.engine.world`.

Tables:
- users         — Community members (Discord snowflake PK)
- factions      — Named groups with membership and power
- alliances     — Pairwise faction/user relationships with an aura score
- drama_events  — Append-mostly timeline of detected drama
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Catalyst ORM models."""


# ---------------------------------------------------------------------------
# Users: one row per Discord member
# ---------------------------------------------------------------------------
class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    karma: Mapped[int] = mapped_column(Integer, default=0)
    drama_points: Mapped[int] = mapped_column(Integer, default=0)
    faction_id: Mapped[str | None] = mapped_column(String(36), default=None, index=True)
    role_history: Mapped[list] = mapped_column(JSONB, default=list)
    traits: Mapped[list] = mapped_column(JSONB, default=list)
    badges: Mapped[list] = mapped_column(JSONB, default=list)
    last_active: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserRow id={self.id} name={self.username!r} faction={self.faction_id}>"


# ---------------------------------------------------------------------------
# Factions
# ---------------------------------------------------------------------------
class FactionRow(Base):
    __tablename__ = "factions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    member_ids: Mapped[list] = mapped_column(JSONB, default=list)
    leader_ids: Mapped[list] = mapped_column(JSONB, default=list)
    power: Mapped[int] = mapped_column(Integer, default=1)
    entropy: Mapped[float] = mapped_column(Float, default=0.0)
    drama_wins: Mapped[int] = mapped_column(Integer, default=0)
    color: Mapped[str] = mapped_column(String(9), default="#95a5a6")
    emoji: Mapped[str] = mapped_column(String(32), default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_factions_name", "name"),
    )

    def __repr__(self) -> str:
        return f"<FactionRow id={self.id} name={self.name!r} power={self.power}>"


# ---------------------------------------------------------------------------
# Alliances: at most one row per (scope, kind, unordered pair)
# ---------------------------------------------------------------------------
class AllianceRow(Base):
    __tablename__ = "alliances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)  # AllianceScope
    kind: Mapped[str] = mapped_column(String(16), nullable=False)   # AllianceType
    party_a: Mapped[str] = mapped_column(String(36), nullable=False)  # lower of the pair
    party_b: Mapped[str] = mapped_column(String(36), nullable=False)
    aura: Mapped[int] = mapped_column(Integer, default=0)
    interactions: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_interaction: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("scope", "kind", "party_a", "party_b", name="uq_alliances_pair"),
    )

    def __repr__(self) -> str:
        return f"<AllianceRow {self.kind} {self.party_a}↔{self.party_b} aura={self.aura}>"


# ---------------------------------------------------------------------------
# DramaEvents: the timeline
# ---------------------------------------------------------------------------
class DramaEventRow(Base):
    __tablename__ = "drama_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # DramaEventType
    participants: Mapped[list] = mapped_column(JSONB, default=list)
    factions_involved: Mapped[list] = mapped_column(JSONB, default=list)
    score: Mapped[int] = mapped_column(Integer, default=0)
    trigger: Mapped[str] = mapped_column(String(200), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    outcome: Mapped[str | None] = mapped_column(Text, default=None)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    channel_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    message_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_drama_events_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<DramaEventRow id={self.id} type={self.type} resolved={self.resolved}>"
