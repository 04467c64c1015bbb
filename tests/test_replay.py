"""
Tests for reconnect handling: greeting vs. history replay.
"""
import pytest

from app.conversation import texts
from app.conversation.replay import parse_last_ts, plan_replay
from app.conversation.session import ChatSession
from app.conversation.states import Who


def _session_with_log() -> ChatSession:
    session = ChatSession(session_id="s1")
    session.append(Who.USER, "ঘড়ি দেখান", now=1000)
    session.append(Who.BOT, "জি স্যার, দেখাচ্ছি", now=2000)
    session.append(Who.USER, "দাম কত?", now=3000)
    return session


class TestPlanReplay:
    """Tests for plan_replay"""

    @pytest.mark.unit
    def test_brand_new_session_is_greeted(self):
        plan = plan_replay(ChatSession(session_id="new"), created=True, last_ts=0)

        assert plan.greet is True
        assert plan.history == []

    @pytest.mark.unit
    def test_zero_watermark_replays_everything(self):
        session = _session_with_log()

        plan = plan_replay(session, created=False, last_ts=0)

        assert plan.greet is False
        assert [m.ts for m in plan.history] == [1000, 2000, 3000]

    @pytest.mark.unit
    def test_only_newer_messages_are_replayed(self):
        session = _session_with_log()

        plan = plan_replay(session, created=False, last_ts=2000)

        assert plan.history_payload() == [{"who": "user", "text": "দাম কত?", "ts": 3000}]

    @pytest.mark.unit
    def test_up_to_date_client_gets_empty_history(self):
        session = _session_with_log()

        plan = plan_replay(session, created=False, last_ts=3000)

        assert plan.greet is False
        assert plan.history == []

    @pytest.mark.unit
    def test_replay_is_repeatable(self):
        session = _session_with_log()

        first = plan_replay(session, created=False, last_ts=1000)
        second = plan_replay(session, created=False, last_ts=1000)

        assert first.history_payload() == second.history_payload()
        assert session.reconnects == 2
        assert len(session.messages) == 3

    @pytest.mark.unit
    def test_created_session_with_messages_is_not_greeted(self):
        session = _session_with_log()

        plan = plan_replay(session, created=True, last_ts=None)

        assert plan.greet is False
        assert len(plan.history) == 3


class TestParseLastTs:
    """Tests for parse_last_ts"""

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        (None, 0),
        ("", 0),
        ("1700000000000", 1700000000000),
        ("1700000000000.9", 1700000000000),
        (1500, 1500),
        ("abc", 0),
        ("-5", 0),
    ])
    def test_parse(self, raw, expected):
        assert parse_last_ts(raw) == expected


class TestConnect:
    """Tests for ConversationService.connect"""

    @pytest.mark.unit
    async def test_first_connect_greets_without_logging(self, make_service, emitter):
        service = make_service()

        plan = await service.connect("s1", emitter)

        assert plan.greet is True
        assert emitter.texts == [texts.GREETING]
        assert service.registry.peek("s1").messages == []

    @pytest.mark.unit
    async def test_reconnect_replays_missed_messages(self, make_service, emitter, clock):
        service = make_service(use_llm=False)
        await service.connect("s1", emitter)
        await service.handle_user_message("s1", "হ্যালো", emitter)
        session = service.registry.peek("s1")
        first_ts = session.messages[0].ts

        replay_emitter = type(emitter)()
        await service.connect("s1", replay_emitter, last_ts=first_ts)

        history = replay_emitter.of("server:history")
        assert len(history) == 1
        assert [m["who"] for m in history[0]] == ["bot"]
        assert replay_emitter.of("server:message") == []

    @pytest.mark.unit
    async def test_reconnect_without_news_sends_nothing(self, make_service, emitter):
        service = make_service(use_llm=False)
        await service.connect("s1", emitter)
        await service.handle_user_message("s1", "হ্যালো", emitter)
        last = service.registry.peek("s1").last_ts

        replay_emitter = type(emitter)()
        await service.connect("s1", replay_emitter, last_ts=last)

        assert replay_emitter.events == []

    @pytest.mark.unit
    async def test_connect_after_restart_replays_stored_log(self, make_service, emitter, session_store):
        service = make_service(use_llm=False, store=session_store)
        await service.connect("s1", emitter)
        await service.handle_user_message("s1", "হ্যালো", emitter)

        restarted = make_service(use_llm=False, store=session_store)
        replay_emitter = type(emitter)()
        plan = await restarted.connect("s1", replay_emitter, last_ts=0)

        assert plan.greet is False
        assert [m["text"] for m in replay_emitter.of("server:history")[0]][0] == "হ্যালো"
