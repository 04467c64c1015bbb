"""
Pacing Simulator

Human-like typing delay for bot replies and the throttle that keeps interim
"please wait" notices to one per window.
"""
import random
from typing import Callable

from app.conversation.session import ChatSession

WORDS_PER_MINUTE = 140
CHARS_PER_WORD = 5
BASE_DELAY_MS = 250
JITTER_RATIO = 0.10
MIN_DELAY_MS = 600
MAX_DELAY_MS = 8000

WAIT_SUFFIXES = (
    "একটু অপেক্ষা করুন, দেখে জানাচ্ছি…",
    "অল্প সময় দিন, চেক করে জানাচ্ছি…",
    "দয়া করে একটু অপেক্ষা করবেন, যাচাই করছি…",
    "একটু অপেক্ষা করুন—তথ্য মিলিয়ে জানাচ্ছি…",
)

WAIT_PREFIXES = {
    "search_products": "পণ্যগুলো খুঁজে দেখছি—",
    "get_product_details": "পণ্যের বিস্তারিত যাচাই করছি—",
    "estimate_shipping_eta": "ডেলিভারি সময় যাচাই করছি—",
    "get_current_offer": "বর্তমান অফার দেখছি—",
}

DEFAULT_WAIT_MESSAGE = "একটু অপেক্ষা করুন, দেখে জানাচ্ছি…"


def _uniform_jitter() -> float:
    return random.uniform(-1.0, 1.0)


def typing_delay_ms(text: str | None, jitter: Callable[[], float] = _uniform_jitter) -> int:
    """
    Delay before a reply of this length, in milliseconds.

    Args:
        text: Reply text (HTML counted as-is)
        jitter: Source of a value in [-1, 1] scaling the ±10% jitter

    Returns:
        Delay clamped to [600, 8000]
    """
    length = len(text or "")
    words = max(1, round(length / CHARS_PER_WORD))
    ms = words / WORDS_PER_MINUTE * 60_000 + BASE_DELAY_MS
    ms += ms * JITTER_RATIO * jitter()
    return int(min(MAX_DELAY_MS, max(MIN_DELAY_MS, ms)))


def wait_message(tool_name: str | None, rng: random.Random | None = None) -> str:
    """Tool-specific interim notice with a random polite suffix"""
    prefix = WAIT_PREFIXES.get(tool_name or "")
    if prefix is None:
        return DEFAULT_WAIT_MESSAGE
    chooser = rng or random
    return prefix + chooser.choice(WAIT_SUFFIXES)


class WaitNoticeThrottle:
    """At most one wait notice per session per window"""

    def __init__(self, window_ms: int = 5000):
        self.window_ms = window_ms

    def try_acquire(self, session: ChatSession, now: int) -> bool:
        """Record a notice at `now` when the window allows it"""
        if session.last_wait_at and now - session.last_wait_at < self.window_ms:
            return False
        session.last_wait_at = now
        return True
