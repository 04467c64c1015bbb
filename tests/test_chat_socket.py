"""
Tests for the chat WebSocket transport.
"""
import pytest
from fastapi.testclient import TestClient

from app.conversation import texts
from app.conversation.factory import get_conversation_service
from app.main import app
from tests.conftest import FakeLLMClient

ORDER_FORM = {
    "name": "Rahim Uddin",
    "phone": "01712345678",
    "address": "House 1, Road 2, Mirpur",
    "district": "Dhaka",
    "items": [{"product_id": 11}],
    "shipping": {"method_id": "flat_rate", "method_title": "ঢাকা ভেতর", "total": "60.00"},
}


@pytest.fixture
def llm() -> FakeLLMClient:
    return FakeLLMClient(["জি স্যার, বলুন কী খুঁজছেন?", "আর কিছু?"])


@pytest.fixture
def client(make_service, llm, catalog):
    service = make_service(llm, catalog)
    app.dependency_overrides[get_conversation_service] = lambda: service
    return TestClient(app)


def _receive_until(ws, event: str, limit: int = 20) -> list[dict]:
    """Collect envelopes up to and including the first `event`"""
    received = []
    for _ in range(limit):
        envelope = ws.receive_json()
        received.append(envelope)
        if envelope["event"] == event:
            return received
    raise AssertionError(f"{event} not received")


def _turn_done(envelope: dict) -> bool:
    return envelope["event"] == "server:typing" and envelope["data"] == {"isTyping": False}


def _receive_turn(ws, limit: int = 20) -> list[dict]:
    received = []
    for _ in range(limit):
        envelope = ws.receive_json()
        received.append(envelope)
        if _turn_done(envelope):
            return received
    raise AssertionError("turn did not finish")


class TestChatSocket:
    """Tests for /ws/chat"""

    @pytest.mark.unit
    def test_new_session_is_greeted(self, client):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            envelope = ws.receive_json()

        assert envelope["event"] == "server:message"
        assert envelope["data"]["text"] == texts.GREETING

    @pytest.mark.unit
    def test_message_is_acked_then_answered(self, client):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            ws.receive_json()
            ws.send_json({"event": "client:message", "data": {"text": "হ্যালো"}, "id": "m1"})
            envelopes = _receive_turn(ws)

        ack = envelopes[0]
        assert ack == {"event": "server:ack", "data": {"id": "m1", "ok": True, "seq": 1}, "id": "m1"}
        assert [e["event"] for e in envelopes[1:]] == ["server:typing", "server:message", "server:typing"]
        assert envelopes[2]["data"]["text"] == "জি স্যার, বলুন কী খুঁজছেন?"

    @pytest.mark.unit
    def test_blank_message_is_nacked(self, client, llm):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            ws.receive_json()
            ws.send_json({"event": "client:message", "data": {"text": "  "}, "id": "m1"})
            ack = ws.receive_json()

        assert ack["data"] == {"id": "m1", "ok": False, "error": "EMPTY_MESSAGE"}
        assert llm.calls == []

    @pytest.mark.unit
    def test_reconnect_replays_missed_messages(self, client):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            ws.receive_json()
            ws.send_json({"event": "client:message", "data": {"text": "হ্যালো"}, "id": "m1"})
            _receive_turn(ws)

        with client.websocket_connect("/ws/chat?sessionId=s1&lastTs=0") as ws:
            envelope = ws.receive_json()

        assert envelope["event"] == "server:history"
        assert [(m["who"], m["text"]) for m in envelope["data"]] == [
            ("user", "হ্যালো"),
            ("bot", "জি স্যার, বলুন কী খুঁজছেন?"),
        ]

    @pytest.mark.unit
    def test_order_details_are_confirmed(self, client):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            ws.receive_json()
            ws.send_json({"event": "client:orderDetails", "data": ORDER_FORM, "id": "o1"})
            envelopes = _receive_until(ws, "server:ack")

        assert [e["event"] for e in envelopes] == ["server:confirm", "server:message", "server:ack"]
        assert envelopes[0]["data"]["orderId"] == "1001"
        assert envelopes[-1]["data"] == {"id": "o1", "ok": True, "orderId": "1001", "reusedCustomer": False}

    @pytest.mark.unit
    def test_image_without_url(self, client):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            ws.receive_json()
            ws.send_json({"event": "client:image", "data": {}, "id": "i1"})
            ack = ws.receive_json()

        assert ack["data"] == {"id": "i1", "ok": False, "error": "NO_URL"}

    @pytest.mark.unit
    def test_unknown_event(self, client):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            ws.receive_json()
            ws.send_json({"event": "client:dance", "data": {}})
            envelope = ws.receive_json()

        assert envelope["event"] == "server:error"
        assert envelope["data"]["code"] == "UNKNOWN_EVENT"

    @pytest.mark.unit
    def test_malformed_envelope(self, client):
        with client.websocket_connect("/ws/chat?sessionId=s1") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            envelope = ws.receive_json()

        assert envelope == {
            "event": "server:error",
            "data": {"code": "INVALID_JSON", "message": "Envelope is not JSON"},
        }

    @pytest.mark.unit
    def test_missing_session_id_gets_a_fresh_session(self, client):
        with client.websocket_connect("/ws/chat") as ws:
            envelope = ws.receive_json()

        assert envelope["data"]["text"] == texts.GREETING
