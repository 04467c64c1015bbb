"""
Tests for the pacing simulator: typing delays and wait-notice throttling.
"""
import random

import pytest

from app.conversation.pacing import (
    DEFAULT_WAIT_MESSAGE,
    MAX_DELAY_MS,
    MIN_DELAY_MS,
    WAIT_PREFIXES,
    WAIT_SUFFIXES,
    WaitNoticeThrottle,
    typing_delay_ms,
    wait_message,
)
from app.conversation.session import ChatSession


class TestTypingDelay:
    """Tests for typing_delay_ms"""

    @pytest.mark.unit
    def test_short_and_empty_replies_count_as_one_word(self):
        one_word = int(1 / 140 * 60_000 + 250)

        assert typing_delay_ms("জি", jitter=lambda: 0.0) == one_word
        assert typing_delay_ms("", jitter=lambda: 0.0) == one_word
        assert typing_delay_ms(None, jitter=lambda: 0.0) == one_word

    @pytest.mark.unit
    def test_never_below_the_floor(self):
        assert typing_delay_ms("", jitter=lambda: -1.0) >= MIN_DELAY_MS

    @pytest.mark.unit
    def test_long_reply_hits_the_ceiling(self):
        assert typing_delay_ms("x" * 5000, jitter=lambda: 1.0) == MAX_DELAY_MS

    @pytest.mark.unit
    def test_medium_reply_without_jitter(self):
        # 25 chars -> 5 words -> 5/140 min + 250ms
        expected = int(5 / 140 * 60_000 + 250)

        assert typing_delay_ms("a" * 25, jitter=lambda: 0.0) == expected

    @pytest.mark.unit
    def test_jitter_stays_within_ten_percent(self):
        base = 5 / 140 * 60_000 + 250

        low = typing_delay_ms("a" * 25, jitter=lambda: -1.0)
        high = typing_delay_ms("a" * 25, jitter=lambda: 1.0)

        assert low == int(base * 0.9)
        assert high == int(base * 1.1)

    @pytest.mark.unit
    def test_longer_text_never_waits_less(self):
        delays = [typing_delay_ms("a" * n, jitter=lambda: 0.0) for n in range(0, 2000, 50)]

        assert delays == sorted(delays)


class TestWaitMessage:
    """Tests for wait_message"""

    @pytest.mark.unit
    @pytest.mark.parametrize("tool", sorted(WAIT_PREFIXES))
    def test_known_tool_gets_prefix_and_suffix(self, tool: str):
        message = wait_message(tool, rng=random.Random(7))

        assert message.startswith(WAIT_PREFIXES[tool])
        assert message[len(WAIT_PREFIXES[tool]):] in WAIT_SUFFIXES

    @pytest.mark.unit
    @pytest.mark.parametrize("tool", [None, "", "place_order", "made_up"])
    def test_other_tools_get_default(self, tool):
        assert wait_message(tool) == DEFAULT_WAIT_MESSAGE


class TestWaitNoticeThrottle:
    """Tests for WaitNoticeThrottle"""

    @pytest.mark.unit
    def test_first_notice_is_allowed(self):
        session = ChatSession(session_id="s1")

        assert WaitNoticeThrottle(5000).try_acquire(session, 10_000) is True
        assert session.last_wait_at == 10_000

    @pytest.mark.unit
    def test_second_notice_inside_window_is_blocked(self):
        session = ChatSession(session_id="s1")
        throttle = WaitNoticeThrottle(5000)

        throttle.try_acquire(session, 10_000)

        assert throttle.try_acquire(session, 14_999) is False
        assert session.last_wait_at == 10_000

    @pytest.mark.unit
    def test_notice_allowed_again_after_window(self):
        session = ChatSession(session_id="s1")
        throttle = WaitNoticeThrottle(5000)

        throttle.try_acquire(session, 10_000)

        assert throttle.try_acquire(session, 15_000) is True
        assert session.last_wait_at == 15_000

    @pytest.mark.unit
    def test_sessions_are_throttled_independently(self):
        throttle = WaitNoticeThrottle(5000)
        a = ChatSession(session_id="a")
        b = ChatSession(session_id="b")

        assert throttle.try_acquire(a, 10_000) is True
        assert throttle.try_acquire(b, 10_001) is True
