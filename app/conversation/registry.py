"""
Session Registry

Owns the in-memory ChatSession objects. Each session has its own asyncio.Lock
so turns of one session run one at a time while different sessions interleave
freely. Sessions are hydrated from the store on first contact and evicted
after an idle period or when the registry grows past its capacity.
"""
import asyncio
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

from app.conversation.session import ChatMessage, ChatSession, CustomerProfile
from app.conversation.states import Stage
from app.core.logging import get_logger

logger = get_logger(__name__)


class SessionHydrator(Protocol):
    """The parts of the store the registry reads from"""

    async def load_recent_messages(self, session_id: str, limit: int = 100) -> list[ChatMessage]: ...

    async def load_customer(self, session_id: str) -> CustomerProfile | None: ...

    async def load_summary(self, session_id: str) -> str: ...


class SessionRegistry:
    """Keyed collection of live chat sessions with per-session turn locks"""

    def __init__(
        self,
        store: SessionHydrator | None = None,
        *,
        idle_ttl_seconds: float = 6 * 60 * 60,
        max_entries: int = 10_000,
        hydrate_limit: int = 100,
        default_locale: str = "bn-BD",
    ):
        self._store = store
        self._idle_ttl_seconds = idle_ttl_seconds
        self._max_entries = max_entries
        self._hydrate_limit = hydrate_limit
        self._default_locale = default_locale
        self._sessions: "OrderedDict[str, ChatSession]" = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def peek(self, session_id: str) -> ChatSession | None:
        """Session if it is live, without touching or creating it"""
        return self._sessions.get(session_id)

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def get_or_create(
        self,
        session_id: str,
        *,
        stage: Stage = Stage.WELCOME,
        locale: str | None = None,
    ) -> tuple[ChatSession, bool]:
        """
        Return the session and whether it was freshly created.

        A session rebuilt from stored history is not "freshly created": the
        caller must not greet it again.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
            session.touch()
            return session, False

        session = ChatSession(
            session_id=session_id,
            stage=stage,
            locale=locale or self._default_locale,
        )
        hydrated = await self._hydrate(session)

        # another caller may have registered the same id while the store was read
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing, False

        self._sessions[session_id] = session
        self.evict(keep=session_id)

        logger.info(
            "Chat session registered",
            extra_data={
                "session_id": session_id,
                "hydrated": hydrated,
                "messages": len(session.messages),
            }
        )
        return session, not hydrated

    @asynccontextmanager
    async def turn(
        self,
        session_id: str,
        *,
        stage: Stage = Stage.WELCOME,
        locale: str | None = None,
    ) -> AsyncIterator[tuple[ChatSession, bool]]:
        """Hold the session's turn lock for the duration of one operation"""
        lock = self.lock_for(session_id)
        async with lock:
            session, created = await self.get_or_create(session_id, stage=stage, locale=locale)
            try:
                yield session, created
            finally:
                session.touch()

    async def _hydrate(self, session: ChatSession) -> bool:
        if self._store is None:
            return False

        messages = await self._store.load_recent_messages(session.session_id, self._hydrate_limit)
        customer = await self._store.load_customer(session.session_id)
        summary = await self._store.load_summary(session.session_id)

        session.messages.extend(messages)
        session.customer = customer
        session.summary = summary or ""
        if messages:
            session.last_seen_at = messages[-1].ts
        return bool(messages or customer or summary)

    def _evictable(self, session_id: str, keep: str | None) -> bool:
        if session_id == keep:
            return False
        lock = self._locks.get(session_id)
        if lock is not None and lock.locked():
            return False
        return self._sessions[session_id].connections <= 0

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            self._locks.pop(session_id, None)

    def evict(self, now: float | None = None, keep: str | None = None) -> int:
        """
        Drop idle sessions and trim to capacity (least recently used first).

        Sessions with a held lock or a live socket are kept.

        Returns:
            Number of sessions evicted
        """
        current = now if now is not None else time.monotonic()
        evicted = 0

        for session_id in list(self._sessions):
            idle_for = current - self._sessions[session_id].last_activity
            if idle_for >= self._idle_ttl_seconds and self._evictable(session_id, keep):
                self._drop(session_id)
                evicted += 1

        if len(self._sessions) > self._max_entries:
            for session_id in list(self._sessions):
                if len(self._sessions) <= self._max_entries:
                    break
                if self._evictable(session_id, keep):
                    self._drop(session_id)
                    evicted += 1

        if evicted:
            logger.info(
                "Evicted chat sessions",
                extra_data={"evicted": evicted, "remaining": len(self._sessions)}
            )
        return evicted
