"""
catalyst.config — YAML Configuration Loader
============================================

**Why this file exists:**
Every tunable in Catalyst (score threshold, cooldowns, chaos decay, faction
bounds, autosave cadence) lives in ``config.yaml``.  The file is parsed into
a small tree of frozen dataclasses, one per section, so each component gets
a typed, closed settings object instead of a free-form dict.

Unknown sections or keys are rejected at load time.  A typo such as
``cooldown_minuets`` fails loudly instead of silently falling back to the
default.

Usage::

    from catalyst.config import load_config

    cfg = load_config()                  # reads ./config.yaml by default
    print(cfg.drama.score_threshold)     # 5
    print(cfg.factions.max_members)      # 25
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


class ConfigError(ValueError):
    """Raised when ``config.yaml`` contains unknown keys or bad values."""


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DramaSettings:
    """Dispatcher tuning: threshold, cooldowns, chaos meter, random coups."""

    score_threshold: int = 5
    cooldown_minutes: float = 30.0
    chaos_decay_percent_per_minute: float = 1.0
    chaos_threshold: float = 80.0
    chaos_cooldown_hours: float = 24.0
    coup_probability: float = 0.01
    maintenance_interval_seconds: float = 60.0
    vote_window_minutes: float = 10.0


@dataclass(frozen=True, slots=True)
class SignalSettings:
    """Rolling-buffer sizes and detector thresholds."""

    message_buffer_size: int = 1000
    reaction_buffer_size: int = 500
    voice_buffer_size: int = 200
    velocity_min_messages: int = 5
    velocity_window_seconds: float = 120.0
    split_vote_min_count: int = 4
    split_vote_ratio: float = 0.8
    sarcasm_min_count: int = 3
    voice_flood_min_joins: int = 4
    voice_recent_events: int = 10
    rage_quit_min_joins: int = 2
    rage_quit_window_seconds: float = 120.0


@dataclass(frozen=True, slots=True)
class WorldSettings:
    """World state store: autosave cadence, cache TTL, timeline size."""

    autosave_interval_seconds: float = 300.0
    cache_ttl_seconds: float = 300.0
    timeline_limit: int = 500


@dataclass(frozen=True, slots=True)
class FactionSettings:
    """Faction naming bounds, membership cap, alliance aura rules."""

    name_min_length: int = 3
    name_max_length: int = 32
    description_max_length: int = 500
    max_members: int = 25
    aura_min: int = -10
    aura_max: int = 10
    plot_twist_threshold: int = -8
    plot_twist_probability: float = 0.5
    alliance_stale_days: float = 7.0
    co_mention_threshold: int = 3


# ---------------------------------------------------------------------------
# Root object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CatalystConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str = "Catalyst"

    # Discord
    bot_prefix: str = "!"
    guild_id: int = 0  # Primary guild snowflake
    announce_channel: str = "timeline"  # Channel name drama is posted to

    drama: DramaSettings = field(default_factory=DramaSettings)
    signals: SignalSettings = field(default_factory=SignalSettings)
    world: WorldSettings = field(default_factory=WorldSettings)
    factions: FactionSettings = field(default_factory=FactionSettings)


_SECTIONS: dict[str, type] = {
    "drama": DramaSettings,
    "signals": SignalSettings,
    "world": WorldSettings,
    "factions": FactionSettings,
}


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
def _coerce(where: str, value: Any, default: Any) -> Any:
    """Coerce *value* to the type of *default*, rejecting lossy conversions."""
    if isinstance(value, bool) and not isinstance(default, bool):
        raise ConfigError(f"{where}: expected a number, got a boolean")
    try:
        if isinstance(default, int):
            if isinstance(value, float) and not value.is_integer():
                raise ConfigError(f"{where}: expected an integer, got {value!r}")
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where}: invalid value {value!r}") from exc
    if not isinstance(value, str):
        raise ConfigError(f"{where}: expected a string, got {value!r}")
    return value


def _build(cls: type, raw: Any, prefix: str) -> Any:
    """Build dataclass *cls* from mapping *raw*; unknown keys are an error."""
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"{prefix or 'config'}: expected a mapping")

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(
            f"Unknown key(s) in {prefix or 'config'}: {', '.join(map(str, unknown))}"
        )

    defaults = cls()
    kwargs = {
        name: _coerce(f"{prefix}.{name}" if prefix else name, value, getattr(defaults, name))
        for name, value in raw.items()
    }
    return cls(**kwargs)


def _validate(cfg: CatalystConfig) -> None:
    d, s, w, f = cfg.drama, cfg.signals, cfg.world, cfg.factions
    checks = [
        (0 <= d.score_threshold <= 10, "drama.score_threshold must be within 0..10"),
        (d.cooldown_minutes >= 0, "drama.cooldown_minutes must be >= 0"),
        (d.chaos_decay_percent_per_minute >= 0, "drama.chaos_decay_percent_per_minute must be >= 0"),
        (0 < d.chaos_threshold <= 100, "drama.chaos_threshold must be within (0, 100]"),
        (0 <= d.coup_probability <= 1, "drama.coup_probability must be within 0..1"),
        (d.maintenance_interval_seconds > 0, "drama.maintenance_interval_seconds must be > 0"),
        (s.message_buffer_size > 0, "signals.message_buffer_size must be > 0"),
        (s.reaction_buffer_size > 0, "signals.reaction_buffer_size must be > 0"),
        (s.voice_buffer_size > 0, "signals.voice_buffer_size must be > 0"),
        (0 < s.split_vote_ratio <= 1, "signals.split_vote_ratio must be within (0, 1]"),
        (w.autosave_interval_seconds > 0, "world.autosave_interval_seconds must be > 0"),
        (w.cache_ttl_seconds >= 0, "world.cache_ttl_seconds must be >= 0"),
        (w.timeline_limit > 0, "world.timeline_limit must be > 0"),
        (1 <= f.name_min_length <= f.name_max_length, "factions name bounds are inconsistent"),
        (f.max_members >= 1, "factions.max_members must be >= 1"),
        (f.aura_min < 0 < f.aura_max, "factions aura bounds must straddle 0"),
        (f.aura_min <= f.plot_twist_threshold <= 0, "factions.plot_twist_threshold out of range"),
        (0 <= f.plot_twist_probability <= 1, "factions.plot_twist_probability must be within 0..1"),
        (f.co_mention_threshold >= 1, "factions.co_mention_threshold must be >= 1"),
    ]
    for ok, message in checks:
        if not ok:
            raise ConfigError(message)


def parse_config(raw: dict | None) -> CatalystConfig:
    """Build a :class:`CatalystConfig` from an already-parsed YAML mapping."""
    if raw is not None and not isinstance(raw, dict):
        raise ConfigError("config: expected a mapping at the top level")
    raw = dict(raw or {})

    sections = {
        name: _build(cls, raw.pop(name, None), name)
        for name, cls in _SECTIONS.items()
    }
    root: CatalystConfig = _build(CatalystConfig, raw, "")
    cfg = CatalystConfig(
        community_name=root.community_name,
        bot_prefix=root.bot_prefix,
        guild_id=root.guild_id,
        announce_channel=root.announce_channel,
        **sections,
    )
    _validate(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> CatalystConfig:
    """Read *path* and return a :class:`CatalystConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ConfigError
        If the file holds unknown keys or values of the wrong type/range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    if raw is not None and not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: expected a mapping at the top level")
    return parse_config(raw)
