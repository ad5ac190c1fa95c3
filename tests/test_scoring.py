"""
tests/test_scoring.py — Message Intensity Scoring
==================================================

Covers every scoring tier, the [0, 10] clamp, bot exclusion and keyword
trigger priority.
"""

from __future__ import annotations

import pytest
from conftest import make_message

from catalyst.engine.scoring import (
    MAX_SCORE,
    caps_ratio,
    match_trigger,
    score_message,
    score_text,
)
from catalyst.engine.world import DramaEventType


class TestScoreText:
    def test_plain_message_scores_zero(self):
        assert score_text("hey, how's everyone doing") == 0

    def test_caps_exclamations_and_mentions(self):
        """All caps (+2), three exclamations (+1), two mentions (+2)."""
        event = make_message(
            1, "WHY DID YOU DO THIS!!! <@2> <@3>", mentions=(2, 3)
        )
        assert score_message(event) == 5

    @pytest.mark.parametrize(
        "length, expected",
        [(99, 0), (100, 1), (199, 1), (200, 2), (1500, 2)],
    )
    def test_length_tiers(self, length, expected):
        assert score_text("a" * length) == expected

    def test_caps_needs_ten_letters(self):
        assert score_text("NO WAY") == 0
        assert score_text("ABSOLUTELY NOT") == 2

    def test_caps_ratio_must_exceed_half(self):
        # 5 upper / 10 letters is exactly half: no bonus
        assert score_text("ABCDEfghij") == 0
        assert score_text("ABCDEFghij") == 2

    def test_mention_tokens_do_not_count_as_letters(self):
        ratio, letters = caps_ratio("<@123456> <#99> ok")
        assert letters == 2
        assert ratio == 0.0

    def test_two_exclamations_are_not_enough(self):
        assert score_text("really!!") == 0
        assert score_text("really!!!") == 1

    def test_question_marks(self):
        assert score_text("what???") == 1
        assert score_text("what?!?!?!") == 2

    def test_mentions_capped_at_three(self):
        assert score_text("hi", mention_count=2) == 2
        assert score_text("hi", mention_count=7) == 3

    def test_reply_bonus(self):
        assert score_text("fair point", is_reply=True) == 1

    def test_score_is_clamped(self):
        content = "WHAT IS HAPPENING HERE!!!??? " * 10
        assert score_text(content, mention_count=10, is_reply=True) == MAX_SCORE

    def test_empty_content(self):
        assert score_text("") == 0


class TestScoreMessage:
    def test_bot_scores_zero(self):
        event = make_message(1, "WHY DID YOU DO THIS!!!", mentions=(2, 3), is_bot=True)
        assert score_message(event) == 0

    def test_reply_detected_from_event(self):
        event = make_message(1, "ok", reply_to=555)
        assert score_message(event) == 1


class TestMatchTrigger:
    def test_no_keyword(self):
        assert match_trigger("lovely weather today") is None
        assert match_trigger("") is None

    def test_keyword_found_case_insensitive(self):
        match = match_trigger("This means WAR")
        assert match is not None
        assert match.category == DramaEventType.WAR
        assert match.keyword == "war"

    def test_inflections_match(self):
        match = match_trigger("you betrayed us all")
        assert match is not None
        assert match.category == DramaEventType.BETRAYAL

    def test_word_boundary(self):
        """'warm' is not 'war'."""
        assert match_trigger("it's warm outside") is None

    def test_priority_order(self):
        """War outranks alliance even when alliance appears first."""
        match = match_trigger("our alliance is over, this is war")
        assert match is not None
        assert match.category == DramaEventType.WAR
