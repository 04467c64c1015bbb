"""
Tests for the session registry: creation, hydration, per-session turn
serialization and eviction.
"""
import asyncio
import time

import pytest

from app.conversation.registry import SessionRegistry
from app.conversation.session import ChatMessage, CustomerProfile
from app.conversation.states import Stage, Who
from tests.conftest import FakeLLMClient


class TestGetOrCreate:
    """Tests for get_or_create"""

    @pytest.mark.unit
    async def test_new_session_is_created(self):
        registry = SessionRegistry()

        session, created = await registry.get_or_create("s1")

        assert created is True
        assert session.session_id == "s1"
        assert session.stage == Stage.WELCOME
        assert session.locale == "bn-BD"
        assert "s1" in registry

    @pytest.mark.unit
    async def test_same_id_returns_same_object(self):
        registry = SessionRegistry()

        first, _ = await registry.get_or_create("s1")
        second, created = await registry.get_or_create("s1")

        assert second is first
        assert created is False
        assert len(registry) == 1

    @pytest.mark.unit
    async def test_stage_and_locale_apply_to_new_sessions(self):
        registry = SessionRegistry(default_locale="en-US")

        fb, _ = await registry.get_or_create("fb:1", stage=Stage.FB)
        plain, _ = await registry.get_or_create("s2")

        assert fb.stage == Stage.FB
        assert fb.locale == "en-US"
        assert plain.stage == Stage.WELCOME

    @pytest.mark.unit
    async def test_hydrated_session_is_not_fresh(self, session_store):
        await session_store.save_message("s1", ChatMessage(who="user", text="হ্যালো", ts=100))
        await session_store.save_message("s1", ChatMessage(who="bot", text="জি স্যার", ts=200))
        await session_store.save_customer("s1", CustomerProfile(name="Rahim", phone="01712345678"))
        await session_store.save_summary("s1", "ঘড়ি খুঁজছেন")
        registry = SessionRegistry(session_store)

        session, created = await registry.get_or_create("s1")

        assert created is False
        assert [m.text for m in session.messages] == ["হ্যালো", "জি স্যার"]
        assert session.last_seen_at == 200
        assert session.customer.name == "Rahim"
        assert session.summary == "ঘড়ি খুঁজছেন"

    @pytest.mark.unit
    async def test_empty_store_means_fresh_session(self, session_store):
        registry = SessionRegistry(session_store)

        _, created = await registry.get_or_create("nobody")

        assert created is True

    @pytest.mark.unit
    async def test_peek_does_not_create(self):
        registry = SessionRegistry()

        assert registry.peek("ghost") is None
        assert len(registry) == 0


class TestTurnSerialization:
    """Tests for the per-session turn lock"""

    @pytest.mark.unit
    async def test_turns_of_one_session_do_not_interleave(self):
        registry = SessionRegistry()
        trace: list[str] = []

        async def turn(label: str):
            async with registry.turn("s1") as (session, _):
                trace.append(f"{label}:start")
                session.append(Who.USER, label)
                await asyncio.sleep(0.01)
                trace.append(f"{label}:end")

        await asyncio.gather(turn("a"), turn("b"), turn("c"))

        for i in range(0, len(trace), 2):
            label = trace[i].split(":")[0]
            assert trace[i + 1] == f"{label}:end"
        session = registry.peek("s1")
        assert len(session.messages) == 3

    @pytest.mark.unit
    async def test_concurrent_messages_get_consecutive_seqs(self, make_service, emitter):
        count = 8

        class YieldingLLM(FakeLLMClient):
            async def chat(self, messages, **kwargs):
                await asyncio.sleep(0)
                return await super().chat(messages, **kwargs)

        service = make_service(YieldingLLM([f"reply {i}" for i in range(count)]))
        texts = [f"message {i}" for i in range(count)]

        outcomes = await asyncio.gather(*(
            service.handle_user_message("s1", text, emitter) for text in texts
        ))

        assert [o.seq for o in outcomes] == list(range(1, count + 1))
        session = service.registry.peek("s1")
        assert session.seq == count
        assert [m.text for m in session.messages if m.who == Who.USER] == texts
        # each reply directly follows its own message
        assert [m.text for m in session.messages] == [
            text for i in range(count) for text in (f"message {i}", f"reply {i}")
        ]

    @pytest.mark.unit
    async def test_different_sessions_run_concurrently(self):
        registry = SessionRegistry()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def slow():
            async with registry.turn("a"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(slow())
        await inside.wait()

        # a second session is not blocked by the first one's lock
        async with registry.turn("b") as (session, created):
            assert created is True
        release.set()
        await task

    @pytest.mark.unit
    async def test_message_timestamps_strictly_increase(self):
        registry = SessionRegistry()

        async with registry.turn("s1") as (session, _):
            first = session.append(Who.USER, "one", now=1000)
            second = session.append(Who.BOT, "two", now=1000)
            third = session.append(Who.USER, "three", now=500)

        assert first.ts < second.ts < third.ts


class TestEviction:
    """Tests for idle and capacity eviction"""

    @pytest.mark.unit
    async def test_idle_sessions_are_evicted(self):
        registry = SessionRegistry(idle_ttl_seconds=60)
        session, _ = await registry.get_or_create("old")
        await registry.get_or_create("fresh")
        session.last_activity = time.monotonic() - 120

        evicted = registry.evict()

        assert evicted == 1
        assert "old" not in registry
        assert "fresh" in registry

    @pytest.mark.unit
    async def test_connected_sessions_are_kept(self):
        registry = SessionRegistry(idle_ttl_seconds=60)
        session, _ = await registry.get_or_create("live")
        session.connections = 1
        session.last_activity = time.monotonic() - 120

        assert registry.evict() == 0
        assert "live" in registry

    @pytest.mark.unit
    async def test_capacity_evicts_least_recently_used(self):
        registry = SessionRegistry(max_entries=2)
        await registry.get_or_create("a")
        await registry.get_or_create("b")
        await registry.get_or_create("a")  # a becomes most recent

        await registry.get_or_create("c")

        assert "b" not in registry
        assert "a" in registry and "c" in registry

    @pytest.mark.unit
    async def test_locked_session_survives_eviction(self):
        registry = SessionRegistry(idle_ttl_seconds=0)

        async with registry.turn("busy") as (session, _):
            session.last_activity = time.monotonic() - 10
            assert registry.evict() == 0
            assert "busy" in registry
