"""
Rate-Limit Backoff Controller

Wraps every model call of a session:
- keeps a minimum spacing between calls of the same session
- on HTTP 429 retries along a fixed ladder with shrinking history windows
- installs a cooldown after the last rung, during which turns skip the model
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from app.conversation.session import ChatSession, now_ms
from app.core.exceptions import LLMRateLimitError
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffStep:
    """One attempt of the ladder"""
    delay_ms: int
    jitter_ms: int
    # None sends the full history
    history_window: int | None


DEFAULT_LADDER = (
    BackoffStep(delay_ms=0, jitter_ms=0, history_window=None),
    BackoffStep(delay_ms=3000, jitter_ms=400, history_window=25),
    BackoffStep(delay_ms=5000, jitter_ms=600, history_window=12),
)


class RateLimitBackoff:
    """Spacing, retry ladder and cooldown for one process"""

    def __init__(
        self,
        *,
        min_spacing_ms: int = 2500,
        cooldown_ms: int = 10_000,
        ladder: tuple[BackoffStep, ...] = DEFAULT_LADDER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
        rng: Callable[[], float] = random.random,
    ):
        self.min_spacing_ms = min_spacing_ms
        self.cooldown_ms = cooldown_ms
        self.ladder = ladder
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

    def in_cooldown(self, session: ChatSession, now: int | None = None) -> bool:
        current = now if now is not None else self._clock()
        return current < session.cool_down_until

    def cooldown_remaining_ms(self, session: ChatSession, now: int | None = None) -> int:
        current = now if now is not None else self._clock()
        return max(0, session.cool_down_until - current)

    async def _respect_spacing(self, session: ChatSession) -> None:
        if not session.last_llm_at:
            return
        wait_ms = session.last_llm_at + self.min_spacing_ms - self._clock()
        if wait_ms > 0:
            await self._sleep(wait_ms / 1000)

    async def call(
        self,
        session: ChatSession,
        request: Callable[[int | None], Awaitable[T]],
        *,
        spaced: bool = True,
    ) -> T:
        """
        Run `request(history_window)` under the spacing and retry policy.

        Only LLMRateLimitError is retried; other errors propagate at once.
        Reaching the last rung installs a cooldown whether it succeeds or not.
        `spaced=False` skips the spacing wait (follow-up call of the same turn).
        """
        if spaced:
            await self._respect_spacing(session)
        last_index = len(self.ladder) - 1

        for index, step in enumerate(self.ladder):
            if step.delay_ms:
                delay_ms = step.delay_ms + self._rng() * step.jitter_ms
                await self._sleep(delay_ms / 1000)

            session.last_llm_at = self._clock()
            try:
                return await request(step.history_window)
            except LLMRateLimitError:
                if index == last_index:
                    logger.error(
                        "Model still rate limited after backoff",
                        extra_data={"session_id": session.session_id, "attempts": index + 1}
                    )
                    raise
                logger.warning(
                    "Model rate limited, backing off",
                    extra_data={
                        "session_id": session.session_id,
                        "attempt": index + 1,
                        "next_window": self.ladder[index + 1].history_window,
                    }
                )
            finally:
                if index == last_index:
                    session.cool_down_until = self._clock() + self.cooldown_ms

        raise RuntimeError("backoff ladder is empty")
