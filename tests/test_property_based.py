"""
Property-based tests with hypothesis.

Invariants checked:
1. Search normalization is idempotent and only yields ASCII keywords
2. Typing delays stay inside their bounds for any text and jitter
3. Message timestamps of a session strictly increase, whatever the clock does
4. Wait notices are never closer together than the throttle window
5. Order line sanitizing never lets an invalid line through
"""
import string

import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import (
    dictionaries,
    floats,
    integers,
    lists,
    none,
    one_of,
    sampled_from,
    text,
)

from app.conversation.pacing import MAX_DELAY_MS, MIN_DELAY_MS, WaitNoticeThrottle, typing_delay_ms
from app.conversation.replay import parse_last_ts
from app.conversation.session import ChatSession
from app.conversation.states import Who
from app.domain.services.catalog.search import normalize_search_query
from app.domain.services.order_service import sanitize_lines


# ============================================================================
# Strategies
# ============================================================================

ASCII_QUERIES = text(alphabet=string.ascii_letters + string.digits + " -", max_size=60)

KEYWORDS = sampled_from([
    "watch", "tshart", "t-shirt", "smarwatch", "earbud", "airbud", "mobil", "mobile", "cover",
])

JITTER = floats(min_value=-1.0, max_value=1.0, allow_nan=False)

LINE_VALUES = one_of(
    none(),
    integers(min_value=-5, max_value=50),
    text(max_size=5),
    floats(allow_nan=True, allow_infinity=True),
)

RAW_ITEMS = lists(
    dictionaries(sampled_from(["product_id", "quantity", "variation_id"]), LINE_VALUES),
    max_size=6,
)


# ============================================================================
# Search normalization
# ============================================================================


class TestNormalizationProperties:
    """Invariants of normalize_search_query"""

    @pytest.mark.unit
    @given(raw=ASCII_QUERIES)
    def test_idempotent(self, raw: str):
        once = normalize_search_query(raw)
        assert normalize_search_query(once) == once

    @pytest.mark.unit
    @given(raw=text(max_size=60))
    def test_output_is_deduplicated_ascii_keywords(self, raw: str):
        tokens = normalize_search_query(raw).split()

        assert len(tokens) == len(set(tokens))
        for token in tokens:
            assert len(token) > 1
            assert all(c in string.ascii_lowercase + string.digits for c in token)

    @pytest.mark.unit
    @given(words=lists(KEYWORDS, min_size=1, max_size=5))
    def test_known_keywords_always_yield_a_query(self, words: list[str]):
        assert normalize_search_query(" ".join(words)) != ""


# ============================================================================
# Pacing
# ============================================================================


class TestPacingProperties:
    """Invariants of typing delays and the wait-notice throttle"""

    @pytest.mark.unit
    @given(reply=text(max_size=3000), jitter=JITTER)
    def test_delay_within_bounds(self, reply: str, jitter: float):
        delay = typing_delay_ms(reply, jitter=lambda: jitter)
        assert MIN_DELAY_MS <= delay <= MAX_DELAY_MS

    @pytest.mark.unit
    @given(gaps=lists(integers(min_value=0, max_value=8000), min_size=1, max_size=30))
    def test_notices_respect_window(self, gaps: list[int]):
        throttle = WaitNoticeThrottle(5000)
        session = ChatSession(session_id="s1")
        now = 1_000_000
        accepted: list[int] = []

        for gap in gaps:
            now += gap
            if throttle.try_acquire(session, now):
                accepted.append(now)

        assert accepted
        assert all(b - a >= 5000 for a, b in zip(accepted, accepted[1:]))


# ============================================================================
# Session log
# ============================================================================


class TestSessionLogProperties:
    """Invariants of the in-memory message log"""

    @pytest.mark.unit
    @h_settings(max_examples=50)
    @given(clock=lists(integers(min_value=0, max_value=10**13), min_size=1, max_size=40))
    def test_timestamps_strictly_increase(self, clock: list[int]):
        session = ChatSession(session_id="s1")

        for i, now in enumerate(clock):
            session.append(Who.USER if i % 2 else Who.BOT, f"m{i}", now)

        stamps = [m.ts for m in session.messages]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    @pytest.mark.unit
    @given(raw=one_of(none(), text(max_size=20), integers(), floats()))
    def test_watermark_parse_never_fails(self, raw):
        assert parse_last_ts(raw) >= 0


# ============================================================================
# Order lines
# ============================================================================


class TestOrderLineProperties:
    """Invariants of sanitize_lines"""

    @pytest.mark.unit
    @given(items=RAW_ITEMS)
    def test_only_valid_lines_survive(self, items):
        lines = sanitize_lines(items)

        assert len(lines) <= len(items)
        for line in lines:
            assert line.product_id > 0
            assert line.quantity >= 1
            assert line.variation_id is None or line.variation_id != 0
