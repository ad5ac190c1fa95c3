"""
Catalyst — A Drama Engine for Discord Communities
==================================================
Watches messages, reactions and voice presence, turns heated moments into
scored "drama events", and runs a small world of users, factions and
alliances that reacts to what the community does.

Package layout::

    catalyst/
    ├── config.py          # YAML → typed, closed config sections
    ├── constants.py       # Keyword categories, emoji sets, colours
    ├── errors.py          # Validation / invariant error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM rows (users, factions, alliances, drama_events)
    ├── engine/
    │   ├── events.py      # Normalized gateway event dataclasses
    │   ├── bus.py         # Publish/subscribe bus with per-handler isolation
    │   ├── normalizer.py  # Gateway → bus relay
    │   ├── scoring.py     # Message intensity score + keyword triggers
    │   ├── signals.py     # Rolling buffers + pattern detectors
    │   ├── cooldown.py    # Per-category cooldowns + chaos meter
    │   ├── cache.py       # Short-TTL read cache
    │   └── world.py       # User / Faction / Alliance / DramaEvent records
    ├── services/
    │   ├── persistence.py # Persistence adapter (SQLAlchemy)
    │   ├── world_state.py # Authoritative in-memory store + autosave
    │   ├── factions.py    # Faction lifecycle, power, alliances, plot twists
    │   ├── dispatcher.py  # Score → cooldown → DramaEvent orchestration
    │   ├── notifier.py    # Notification contract + Discord notifier
    │   ├── embeds.py      # Embed builders
    │   └── throttle.py    # Per-channel announcement throttle
    └── bot/
        ├── core.py        # Bot subclass, component assembly
        └── cogs/
            ├── gateway.py # Raw gateway listeners → normalizer
            └── factions.py # !faction commands
"""

__version__ = "0.1.0"
