"""
catalyst.constants — Shared Constants
======================================

Single source of truth for keyword categories, emoji sets and presentation
colours.  Import from here instead of duplicating in the scorer, dispatcher
and embed builders.
"""

from __future__ import annotations

import re

from catalyst.engine.world import DramaEventType

# ---------------------------------------------------------------------------
# Drama keyword categories, in PRIORITY order.
# When a message matches several categories the first one listed wins.
# ---------------------------------------------------------------------------
KEYWORD_CATEGORIES: tuple[tuple[DramaEventType, tuple[str, ...]], ...] = (
    (DramaEventType.WAR, ("war", "battle", "fight", "conflict", "attack")),
    (DramaEventType.BETRAYAL, ("betray", "backstab", "traitor", "turncoat", "defect")),
    (DramaEventType.COUP, ("overthrow", "coup", "rebellion", "revolt", "usurp", "takeover")),
    (DramaEventType.SCANDAL, ("drama", "chaos", "mayhem", "scandal", "exposed")),
    (DramaEventType.ALLIANCE, ("alliance", "ally", "allies", "truce", "pact", "team up")),
    (DramaEventType.RIVALRY, ("rival", "nemesis", "beef", "duel")),
)

# Compiled once: whole word plus a common suffix, case-insensitive.
# "betray" matches "betrayed", "war" does not match "warm".
KEYWORD_PATTERNS: tuple[tuple[DramaEventType, re.Pattern[str]], ...] = tuple(
    (
        category,
        re.compile(
            r"\b(" + "|".join(re.escape(k) for k in keywords) + r")(?:s|es|d|ed|ing|er|ers|al)?\b",
            re.IGNORECASE,
        ),
    )
    for category, keywords in KEYWORD_CATEGORIES
)

# Categories that make an inter-faction interaction hostile.
HOSTILE_CATEGORIES: frozenset[DramaEventType] = frozenset({
    DramaEventType.WAR,
    DramaEventType.BETRAYAL,
    DramaEventType.COUP,
    DramaEventType.RIVALRY,
})

# ---------------------------------------------------------------------------
# Reaction emoji
# ---------------------------------------------------------------------------
SARCASM_EMOJI: frozenset[str] = frozenset({
    "\U0001f644",  # 🙄
    "\U0001f914",  # 🤔
    "\U0001f60f",  # 😏
    "\U0001f440",  # 👀
    "\U0001f485",  # 💅
})

VOTE_SUPPORT = "\U0001f44d"   # 👍
VOTE_OPPOSE = "\U0001f44e"    # 👎
VOTE_ESCALATE = "\U0001f525"  # 🔥

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
EVENT_COLORS: dict[DramaEventType, int] = {
    DramaEventType.MESSAGE: 0x95A5A6,
    DramaEventType.REACTION: 0xF1C40F,
    DramaEventType.VOICE: 0x3498DB,
    DramaEventType.BETRAYAL: 0x8E44AD,
    DramaEventType.ALLIANCE: 0x2ECC71,
    DramaEventType.WAR: 0xE74C3C,
    DramaEventType.COUP: 0xC0392B,
    DramaEventType.VOTE: 0x1ABC9C,
    DramaEventType.SCANDAL: 0xE67E22,
    DramaEventType.RIVALRY: 0xD35400,
    DramaEventType.CHAOS_SURGE: 0x2C3E50,
    DramaEventType.RANDOM: 0x7F8C8D,
}

EVENT_EMOJI: dict[DramaEventType, str] = {
    DramaEventType.MESSAGE: "\U0001f4ac",      # 💬
    DramaEventType.REACTION: "\U0001f4ca",     # 📊
    DramaEventType.VOICE: "\U0001f50a",        # 🔊
    DramaEventType.BETRAYAL: "\U0001f5e1",     # 🗡
    DramaEventType.ALLIANCE: "\U0001f91d",     # 🤝
    DramaEventType.WAR: "⚔️",        # ⚔️
    DramaEventType.COUP: "\U0001f451",         # 👑
    DramaEventType.VOTE: "\U0001f5f3",         # 🗳
    DramaEventType.SCANDAL: "\U0001f4f0",      # 📰
    DramaEventType.RIVALRY: "\U0001f94a",      # 🥊
    DramaEventType.CHAOS_SURGE: "\U0001f32a",  # 🌪
    DramaEventType.RANDOM: "\U0001f3b2",       # 🎲
}

# Palette handed out to new factions, round-robin by faction count.
FACTION_COLORS: tuple[str, ...] = (
    "#e74c3c", "#3498db", "#2ecc71", "#9b59b6",
    "#f1c40f", "#1abc9c", "#e67e22", "#34495e",
)
FACTION_EMOJI: tuple[str, ...] = (
    "\U0001f43a",  # 🐺
    "\U0001f985",  # 🦅
    "\U0001f40d",  # 🐍
    "\U0001f981",  # 🦁
    "\U0001f989",  # 🦉
    "\U0001f982",  # 🦂
)
