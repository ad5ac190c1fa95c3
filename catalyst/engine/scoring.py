"""
catalyst.engine.scoring — Message intensity score
==================================================

``score_message`` turns a single message into an integer in ``[0, 10]``:

======================================  =====
Feature                                 Bonus
======================================  =====
length ≥ 100 chars                      +1
length ≥ 200 chars                      +1 (cumulative)
> 50 % uppercase, with ≥ 10 letters     +2
more than two ``!``                     +1
more than two ``?``                     +1
mentions                                +min(3, n)
reply to another message                +1
======================================  =====

Bot-authored messages always score 0.

``match_trigger`` finds the first drama keyword category (in the fixed
priority order from :data:`catalyst.constants.KEYWORD_PATTERNS`) that the
content mentions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from catalyst.constants import KEYWORD_PATTERNS
from catalyst.engine.events import MessageEvent
from catalyst.engine.world import DramaEventType

MAX_SCORE = 10

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------
_LENGTH_TIERS = (100, 200)
_CAPS_MIN_LETTERS = 10
_CAPS_RATIO = 0.5
_CAPS_BONUS = 2
_PUNCTUATION_MIN = 3  # strictly more than two
_MENTION_CAP = 3

# <@123>, <@!123>, <@&123>, <#123>: raw mention tokens carry no letters
# worth counting toward the shouting ratio.
_MENTION_TOKEN = re.compile(r"<[@#][!&]?\d+>")


@dataclass(frozen=True, slots=True)
class TriggerMatch:
    category: DramaEventType
    keyword: str


def caps_ratio(text: str) -> tuple[float, int]:
    """Return ``(uppercase_ratio, letter_count)`` over alphabetic characters."""
    letters = [ch for ch in _MENTION_TOKEN.sub("", text) if ch.isalpha()]
    if not letters:
        return 0.0, 0
    upper = sum(1 for ch in letters if ch.isupper())
    return upper / len(letters), len(letters)


def score_text(
    content: str,
    *,
    mention_count: int = 0,
    is_reply: bool = False,
) -> int:
    """Score raw content.  See the module docstring for the table."""
    score = 0

    length = len(content)
    score += sum(1 for tier in _LENGTH_TIERS if length >= tier)

    ratio, letters = caps_ratio(content)
    if letters >= _CAPS_MIN_LETTERS and ratio > _CAPS_RATIO:
        score += _CAPS_BONUS

    if content.count("!") >= _PUNCTUATION_MIN:
        score += 1
    if content.count("?") >= _PUNCTUATION_MIN:
        score += 1

    score += min(_MENTION_CAP, max(mention_count, 0))

    if is_reply:
        score += 1

    return max(0, min(score, MAX_SCORE))


def score_message(event: MessageEvent) -> int:
    """Intensity of *event* in ``[0, 10]``; bots score 0."""
    if event.is_bot:
        return 0
    return score_text(
        event.content,
        mention_count=len(event.mention_ids),
        is_reply=event.reply_to_id is not None,
    )


def match_trigger(content: str) -> TriggerMatch | None:
    """First keyword category mentioned in *content*, by priority order."""
    if not content:
        return None
    for category, pattern in KEYWORD_PATTERNS:
        match = pattern.search(content)
        if match:
            return TriggerMatch(category=category, keyword=match.group(1).lower())
    return None
