"""
catalyst.services.world_state — World State Store
==================================================

**Why this file exists:**
One object owns the canonical copy of every user, faction, alliance and
drama event.  Everything else reads through its accessors and mutates
through its methods.  It is constructed once by the bot and handed to
whoever needs it (no module-level singleton).

Write ordering
--------------
Every mutation follows the same contract:

1. Validate.  Nothing is touched if validation fails.
2. Mutate the in-memory maps synchronously.
3. Enqueue a snapshot of the changed record on the background writer.

The writer is a single ``asyncio`` task draining a queue and shipping each
write to a thread with :func:`run_db`.  Callers never await I/O for a
mutation, and a failed write is only logged: the periodic autosave upserts
the full current state again on its next tick.  The autosave snapshot rides
the same queue, so a delete issued after the snapshot was taken always
lands after it and a dissolved faction cannot be written back.

Read path
---------
``memory → TTL cache → persistence adapter``.  An adapter hit populates
both the memory map and the cache.  An adapter miss (or error) is cached
as "absent" for the TTL and returned as ``None``, never raised.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import re
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from catalyst.config import FactionSettings, WorldSettings
from catalyst.constants import FACTION_COLORS, FACTION_EMOJI
from catalyst.database.engine import run_db
from catalyst.engine.bus import EventBus
from catalyst.engine.cache import TTLCache
from catalyst.engine.events import EventName
from catalyst.engine.world import (
    Alliance,
    AllianceScope,
    AllianceType,
    DramaEvent,
    DramaEventType,
    Faction,
    User,
    calculate_power,
    new_id,
    utcnow,
)
from catalyst.errors import (
    DuplicateNameError,
    InvariantError,
    MembershipError,
    ValidationError,
)
from catalyst.services.persistence import PersistenceAdapter

logger = logging.getLogger(__name__)

_ABSENT = object()
_STOP = object()

_FACTION_NAME_RE = re.compile(r"^[\w\s-]+$")

USER_FIELDS = frozenset({
    "username", "karma", "drama_points", "faction_id",
    "role_history", "traits", "badges",
})
FACTION_FIELDS = frozenset({
    "name", "description", "member_ids", "leader_ids", "power",
    "entropy", "drama_wins", "color", "emoji",
})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_faction_name(name: str, settings: FactionSettings) -> str:
    """Return the trimmed name or raise :class:`ValidationError`."""
    trimmed = (name or "").strip()
    if not settings.name_min_length <= len(trimmed) <= settings.name_max_length:
        raise ValidationError(
            f"Faction names must be {settings.name_min_length}–"
            f"{settings.name_max_length} characters long."
        )
    if not _FACTION_NAME_RE.match(trimmed):
        raise ValidationError(
            "Faction names may only contain letters, numbers, spaces, "
            "hyphens and underscores."
        )
    return trimmed


def validate_faction_description(description: str | None, settings: FactionSettings) -> str:
    text = (description or "").strip()
    if len(text) > settings.description_max_length:
        raise ValidationError(
            f"Descriptions are limited to {settings.description_max_length} characters."
        )
    return text


class WorldStateStore:
    """Authoritative in-memory world with asynchronous persistence.

    Parameters
    ----------
    adapter:
        Durable storage, or ``None`` for a purely in-memory world.
    settings / faction_settings:
        Autosave cadence, cache TTL, timeline size and faction naming rules.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter | None = None,
        settings: WorldSettings | None = None,
        faction_settings: FactionSettings | None = None,
        *,
        cache: TTLCache | None = None,
    ) -> None:
        self.adapter = adapter
        self.settings = settings or WorldSettings()
        self.faction_settings = faction_settings or FactionSettings()
        self.cache = cache or TTLCache(self.settings.cache_ttl_seconds)

        self._users: dict[int, User] = {}
        self._factions: dict[str, Faction] = {}
        self._alliances: dict[str, Alliance] = {}
        self._alliance_index: dict[tuple[str, str, str, str], str] = {}
        self._timeline: deque[DramaEvent] = deque()
        self._events: dict[str, DramaEvent] = {}

        self._queue: asyncio.Queue | None = None
        self._writer: asyncio.Task | None = None
        self._periodic: dict[str, asyncio.Task] = {}
        self._started = False
        self._destroyed = False
        self.failed_writes = 0

    # ===================================================================
    # Lifecycle
    # ===================================================================
    async def start(self) -> None:
        """Load persisted state, start the writer and the autosave loop."""
        if self._started:
            return
        self._started = True
        self._destroyed = False
        await self.load()
        self._ensure_writer()
        self.schedule_periodic(
            "autosave", self.settings.autosave_interval_seconds, self.save_all
        )
        logger.info(
            "World state ready: %d users, %d factions, %d alliances, %d events",
            len(self._users), len(self._factions), len(self._alliances), len(self._timeline),
        )

    async def load(self) -> None:
        """Pull factions, alliances, recent events and faction members."""
        if self.adapter is None:
            return
        try:
            factions = await run_db(self.adapter.list_factions)
            alliances = await run_db(self.adapter.list_alliances)
            events = await run_db(self.adapter.recent_drama_events, self.settings.timeline_limit)
        except Exception:
            logger.exception("Failed to load world state; starting empty")
            return

        for faction in factions:
            self._factions[faction.id] = faction
        for alliance in alliances:
            self._index_alliance(alliance)
        for event in events:
            self._append_timeline(event)

        member_ids = {m for f in factions for m in f.member_ids}
        for user_id in member_ids:
            await self.get_user(user_id)

    def schedule_periodic(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[Any] | Any],
    ) -> asyncio.Task:
        """Run *callback* every *interval* seconds until :meth:`destroy`.

        Re-scheduling an existing *name* replaces the previous loop.
        """
        old = self._periodic.pop(name, None)
        if old is not None:
            old.cancel()

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    result = callback()
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Periodic task %r failed", name)

        task = asyncio.get_running_loop().create_task(_loop(), name=f"world-{name}")
        self._periodic[name] = task
        return task

    async def save_all(self) -> int:
        """Upsert every entity.  Idempotent; failures are logged, not raised.

        Returns the number of records written (0 on failure or no adapter).
        """
        if self.adapter is None:
            return 0
        users = [copy.deepcopy(u) for u in self._users.values()]
        factions = [copy.deepcopy(f) for f in self._factions.values()]
        alliances = [copy.deepcopy(a) for a in self._alliances.values()]
        events = [copy.deepcopy(e) for e in self._timeline]
        snapshot = (users, factions, alliances, events)
        try:
            if self._ensure_writer():
                # Queued behind earlier writes and ahead of later deletes
                done = asyncio.get_running_loop().create_future()
                self._queue.put_nowait((self._write_snapshot, snapshot, done))
                await done
            else:
                await run_db(self._write_snapshot, *snapshot)
        except Exception:
            logger.warning("Autosave failed; will retry next interval")
            return 0
        total = len(users) + len(factions) + len(alliances) + len(events)
        logger.debug("Autosaved %d records", total)
        return total

    def _write_snapshot(self, users, factions, alliances, events) -> None:
        adapter = self.adapter
        for u in users:
            adapter.upsert_user(u)
        for f in factions:
            adapter.upsert_faction(f)
        for a in alliances:
            adapter.upsert_alliance(a)
        for e in events:
            adapter.upsert_drama_event(e)

    async def flush(self) -> None:
        """Wait until every queued write has been attempted."""
        if self._queue is not None and self._writer is not None and not self._writer.done():
            await self._queue.join()

    async def destroy(self) -> None:
        """Cancel timers, save once, drain the writer, clear memory.

        Safe to call any number of times.
        """
        if self._destroyed:
            return
        self._destroyed = True

        tasks = list(self._periodic.values())
        self._periodic.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._started:
            await self.save_all()
        await self.flush()

        if self._writer is not None:
            self._queue.put_nowait(_STOP)
            await asyncio.gather(self._writer, return_exceptions=True)
        self._writer = None
        self._queue = None

        self._users.clear()
        self._factions.clear()
        self._alliances.clear()
        self._alliance_index.clear()
        self._timeline.clear()
        self._events.clear()
        self.cache.clear()
        self._started = False
        logger.info("World state destroyed")

    # ===================================================================
    # Background writer
    # ===================================================================
    def _ensure_writer(self) -> bool:
        if self.adapter is None:
            return False
        if self._writer is not None and not self._writer.done():
            return True
        if self._destroyed:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): the next autosave picks the change up
            return False
        self._queue = asyncio.Queue()
        self._writer = loop.create_task(self._drain(), name="world-writer")
        return True

    async def _drain(self) -> None:
        queue = self._queue
        while True:
            item = await queue.get()
            try:
                if item is _STOP:
                    return
                func, args, done = item
                try:
                    await run_db(func, *args)
                except Exception as exc:
                    self.failed_writes += 1
                    logger.exception("Persistence write failed; autosave will retry")
                    if done is not None and not done.done():
                        done.set_exception(exc)
                else:
                    if done is not None and not done.done():
                        done.set_result(None)
            finally:
                queue.task_done()

    def _enqueue(self, func: Callable[..., Any], *args: Any) -> None:
        if self._ensure_writer():
            self._queue.put_nowait((func, args, None))

    def _persist_user(self, user: User) -> None:
        if self.adapter is not None:
            self._enqueue(self.adapter.upsert_user, copy.deepcopy(user))

    def _persist_faction(self, faction: Faction) -> None:
        if self.adapter is not None:
            self._enqueue(self.adapter.upsert_faction, copy.deepcopy(faction))

    def _persist_alliance(self, alliance: Alliance) -> None:
        if self.adapter is not None:
            self._enqueue(self.adapter.upsert_alliance, copy.deepcopy(alliance))

    def _persist_event(self, event: DramaEvent) -> None:
        if self.adapter is not None:
            self._enqueue(self.adapter.upsert_drama_event, copy.deepcopy(event))

    # ===================================================================
    # Read path helper
    # ===================================================================
    async def _read_through(self, kind: str, key: Any, memory: dict, fetch) -> Any:
        if key in memory:
            return memory[key]
        cached = self.cache.get((kind, key), None)
        if cached is _ABSENT:
            return None
        if cached is not None:
            memory[key] = cached
            return cached
        if self.adapter is None:
            return None
        try:
            found = await run_db(fetch, key)
        except Exception:
            logger.exception("Adapter lookup failed for %s %s", kind, key)
            found = None
        if found is None:
            self.cache.set((kind, key), _ABSENT)
            return None
        # A concurrent handler may have created it while we were waiting
        if key in memory:
            return memory[key]
        memory[key] = found
        self.cache.set((kind, key), found)
        return found

    # ===================================================================
    # Users
    # ===================================================================
    async def get_user(self, user_id: int) -> User | None:
        fetch = self.adapter.get_user if self.adapter else None
        return await self._read_through("user", user_id, self._users, fetch)

    def peek_user(self, user_id: int) -> User | None:
        """Memory-only lookup (no I/O)."""
        return self._users.get(user_id)

    async def get_or_create_user(self, user_id: int, username: str | None = None) -> User:
        user = await self.get_user(user_id)
        if user is not None:
            if username and user.username != username:
                user.username = username
                self._persist_user(user)
            return user
        user = User(id=user_id, username=username or str(user_id))
        self._users[user_id] = user
        self.cache.set(("user", user_id), user)
        self._persist_user(user)
        logger.debug("Created user %s (%s)", user_id, user.username)
        return user

    def save_user(self, user: User) -> bool:
        """Replace the canonical record for ``user.id``."""
        self._users[user.id] = user
        self.cache.set(("user", user.id), user)
        self._persist_user(user)
        return True

    async def update_user(self, user_id: int, **fields: Any) -> bool:
        """Partial update.  ``last_active`` is always refreshed.

        Returns ``False`` if the user does not exist.  Unknown field names
        raise :class:`InvariantError` before anything changes.
        """
        unknown = set(fields) - USER_FIELDS
        if unknown:
            raise InvariantError(f"Unknown user field(s): {', '.join(sorted(unknown))}")
        user = await self.get_user(user_id)
        if user is None:
            return False
        for name, value in fields.items():
            setattr(user, name, value)
        user.last_active = utcnow()
        self._persist_user(user)
        return True

    async def touch_user(self, user_id: int, username: str | None = None) -> User:
        """Get-or-create and mark active now."""
        user = await self.get_or_create_user(user_id, username)
        user.last_active = utcnow()
        self._persist_user(user)
        return user

    def all_users(self) -> list[User]:
        return list(self._users.values())

    # ===================================================================
    # Factions
    # ===================================================================
    async def get_faction(self, faction_id: str) -> Faction | None:
        fetch = self.adapter.get_faction if self.adapter else None
        return await self._read_through("faction", faction_id, self._factions, fetch)

    def peek_faction(self, faction_id: str | None) -> Faction | None:
        if faction_id is None:
            return None
        return self._factions.get(faction_id)

    def find_faction_by_name(self, name: str) -> Faction | None:
        wanted = (name or "").strip().casefold()
        for faction in self._factions.values():
            if faction.name.casefold() == wanted:
                return faction
        return None

    def get_all_factions(self) -> list[Faction]:
        return list(self._factions.values())

    async def create_faction(
        self,
        name: str,
        creator_id: int,
        description: str = "",
        creator_name: str | None = None,
    ) -> Faction:
        """Create a faction with *creator_id* as its sole member and leader.

        Raises
        ------
        ValidationError
            Bad name/description.
        DuplicateNameError
            Name already used (case-insensitive).
        MembershipError
            Creator already belongs to a faction.
        """
        settings = self.faction_settings
        trimmed = validate_faction_name(name, settings)
        text = validate_faction_description(description, settings)
        if self.find_faction_by_name(trimmed) is not None:
            raise DuplicateNameError(trimmed)

        creator = await self.get_or_create_user(creator_id, creator_name)
        if creator.faction_id is not None and creator.faction_id in self._factions:
            current = self._factions[creator.faction_id]
            raise MembershipError(
                f"You already belong to **{current.name}**. Leave it first."
            )
        # Re-check after the await: another handler may have taken the name
        if self.find_faction_by_name(trimmed) is not None:
            raise DuplicateNameError(trimmed)

        n = len(self._factions)
        faction = Faction(
            id=new_id(),
            name=trimmed,
            description=text,
            member_ids=[creator_id],
            leader_ids=[creator_id],
            power=calculate_power(1, 0, 0),
            color=FACTION_COLORS[n % len(FACTION_COLORS)],
            emoji=FACTION_EMOJI[n % len(FACTION_EMOJI)],
        )
        self._factions[faction.id] = faction
        self.cache.set(("faction", faction.id), faction)

        creator.faction_id = faction.id
        creator.role_history.append("leader")
        creator.last_active = utcnow()

        self._persist_faction(faction)
        self._persist_user(creator)
        logger.info("Faction %r created by %s", faction.name, creator_id)
        return faction

    async def update_faction(self, faction_id: str, **fields: Any) -> bool:
        """Partial update of a faction.  Returns ``False`` if it doesn't exist."""
        unknown = set(fields) - FACTION_FIELDS
        if unknown:
            raise InvariantError(f"Unknown faction field(s): {', '.join(sorted(unknown))}")
        faction = await self.get_faction(faction_id)
        if faction is None:
            return False
        if "name" in fields:
            fields["name"] = validate_faction_name(fields["name"], self.faction_settings)
            clash = self.find_faction_by_name(fields["name"])
            if clash is not None and clash.id != faction_id:
                raise DuplicateNameError(fields["name"])
        if "description" in fields:
            fields["description"] = validate_faction_description(
                fields["description"], self.faction_settings
            )
        for name, value in fields.items():
            setattr(faction, name, value)
        self._persist_faction(faction)
        return True

    def save_faction(self, faction: Faction) -> None:
        self._factions[faction.id] = faction
        self.cache.set(("faction", faction.id), faction)
        self._persist_faction(faction)

    def delete_faction(self, faction_id: str) -> bool:
        """Remove a faction, clear its members' ``faction_id`` and cascade
        its alliances.  Returns ``False`` if it was not present.
        """
        faction = self._factions.pop(faction_id, None)
        if faction is None:
            return False
        self.cache.set(("faction", faction_id), _ABSENT)

        for member_id in faction.member_ids:
            user = self._users.get(member_id)
            if user is not None and user.faction_id == faction_id:
                user.faction_id = None
                self._persist_user(user)
        # Any other in-memory user still pointing here
        for user in self._users.values():
            if user.faction_id == faction_id:
                user.faction_id = None
                self._persist_user(user)

        for alliance in self.alliances_for(faction_id, scope=AllianceScope.FACTION):
            self.delete_alliance(alliance.id)

        if self.adapter is not None:
            self._enqueue(self.adapter.delete_faction, faction_id)
        logger.info("Faction %r deleted", faction.name)
        return True

    # ===================================================================
    # Alliances
    # ===================================================================
    def _index_alliance(self, alliance: Alliance) -> None:
        self._alliances[alliance.id] = alliance
        self._alliance_index[alliance.key()] = alliance.id

    def get_alliance(self, alliance_id: str) -> Alliance | None:
        return self._alliances.get(alliance_id)

    def find_alliance(
        self, scope: AllianceScope, kind: AllianceType, a: str, b: str
    ) -> Alliance | None:
        alliance_id = self._alliance_index.get(Alliance.make_key(scope, kind, a, b))
        return self._alliances.get(alliance_id) if alliance_id else None

    def alliances_for(self, party_id: str, *, scope: AllianceScope | None = None) -> list[Alliance]:
        return [
            a for a in self._alliances.values()
            if a.involves(party_id) and (scope is None or a.scope == scope)
        ]

    def get_all_alliances(self) -> list[Alliance]:
        return list(self._alliances.values())

    def save_alliance(self, alliance: Alliance) -> Alliance:
        """Insert or update *alliance*.

        Raises :class:`InvariantError` for an unknown scope/kind, a self-pair,
        or a second record for an already-related pair.
        """
        try:
            alliance.scope = AllianceScope(alliance.scope)
            alliance.kind = AllianceType(alliance.kind)
        except ValueError as exc:
            raise InvariantError(str(exc)) from None
        if alliance.party_a == alliance.party_b:
            raise InvariantError("An alliance needs two distinct parties")
        existing = self._alliance_index.get(alliance.key())
        if existing is not None and existing != alliance.id:
            raise InvariantError(f"Pair already related by alliance {existing}")
        self._index_alliance(alliance)
        self._persist_alliance(alliance)
        return alliance

    def delete_alliance(self, alliance_id: str) -> bool:
        alliance = self._alliances.pop(alliance_id, None)
        if alliance is None:
            return False
        self._alliance_index.pop(alliance.key(), None)
        if self.adapter is not None:
            self._enqueue(self.adapter.delete_alliance, alliance_id)
        return True

    # ===================================================================
    # Drama events
    # ===================================================================
    def _append_timeline(self, event: DramaEvent) -> None:
        self._timeline.append(event)
        self._events[event.id] = event
        while len(self._timeline) > self.settings.timeline_limit:
            evicted = self._timeline.popleft()
            self._events.pop(evicted.id, None)

    def log_drama_event(
        self,
        type: DramaEventType | str,
        *,
        participants: Iterable[int] = (),
        factions_involved: Iterable[str] = (),
        score: int = 0,
        trigger: str = "",
        description: str = "",
        channel_id: int | None = None,
        message_id: int | None = None,
    ) -> DramaEvent:
        """Assign id + timestamp, append to the timeline, persist async."""
        try:
            event_type = DramaEventType(type)
        except ValueError:
            raise InvariantError(f"Unknown drama event type: {type!r}") from None

        event = DramaEvent(
            id=new_id(),
            type=event_type,
            participants=list(dict.fromkeys(participants)),
            factions_involved=list(dict.fromkeys(f for f in factions_involved if f)),
            score=max(0, min(int(score), 10)),
            trigger=trigger,
            description=description,
            channel_id=channel_id,
            message_id=message_id,
            timestamp=utcnow(),
        )
        self._append_timeline(event)
        self._persist_event(event)
        logger.info(
            "Drama event %s [%s] score=%d trigger=%r participants=%s",
            event.id[:8], event.type, event.score, event.trigger, event.participants,
        )
        return event

    def get_drama_event(self, event_id: str) -> DramaEvent | None:
        return self._events.get(event_id)

    def get_recent_drama_events(self, limit: int = 10) -> list[DramaEvent]:
        """Newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._timeline))[:limit]

    def resolve_drama_event(self, event_id: str, outcome: str) -> DramaEvent | None:
        """Mark an event resolved.  Resolved events are frozen."""
        event = self._events.get(event_id)
        if event is None:
            return None
        if event.resolved:
            raise InvariantError(f"Drama event {event_id} is already resolved")
        event.outcome = outcome
        event.resolved = True
        self._persist_event(event)
        return event

    # ===================================================================
    # Bus integration
    # ===================================================================
    def attach(self, bus: EventBus) -> None:
        """Keep ``last_active`` fresh for every non-bot participant."""
        for name in EventName:
            bus.subscribe(name, self._on_activity)

    async def _on_activity(self, event: Any) -> None:
        if getattr(event, "is_bot", False):
            return
        await self.touch_user(event.user_id, getattr(event, "display_name", None))
