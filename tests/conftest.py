"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import random

import pytest
from sqlalchemy import BigInteger, Engine, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from catalyst.config import FactionSettings, WorldSettings
from catalyst.database.models import Base
from catalyst.engine.events import MessageEvent
from catalyst.services.factions import FactionManager
from catalyst.services.world_state import WorldStateStore


# SQLite stand-ins for the Postgres-only column types used by the models.
@compiles(JSONB, "sqlite")
def _jsonb_on_sqlite(type_, compiler, **kw):
    return "TEXT"


@compiles(BigInteger, "sqlite")
def _bigint_on_sqlite(type_, compiler, **kw):
    # INTEGER keeps SQLite rowid semantics for snowflake primary keys
    return "INTEGER"


def run_async(coro):
    """Drive *coro* to completion on a fresh event loop (no pytest-asyncio)."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


class FixedRandom(random.Random):
    """``random()`` always returns *value*; ``choice`` picks the first item."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value

    def choice(self, seq):
        return seq[0]


def make_message(
    user_id: int = 1,
    content: str = "hello",
    *,
    mentions: tuple[int, ...] = (),
    reply_to: int | None = None,
    channel_id: int = 100,
    message_id: int = 1000,
    is_bot: bool = False,
    **kwargs,
) -> MessageEvent:
    return MessageEvent(
        user_id=user_id,
        display_name=f"user{user_id}",
        is_bot=is_bot,
        channel_id=channel_id,
        message_id=message_id,
        content=content,
        mention_ids=mentions,
        reply_to_id=reply_to,
        guild_id=1,
        **kwargs,
    )


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Catalyst tables.

    StaticPool keeps a single connection, so the writer thread behind
    ``run_db`` sees the same in-memory database as the test.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def store() -> WorldStateStore:
    """In-memory world (no persistence adapter)."""
    return WorldStateStore(None, WorldSettings(), FactionSettings())


@pytest.fixture
def factions(store: WorldStateStore) -> FactionManager:
    return FactionManager(store, FactionSettings(), rng=FixedRandom(0.99))
