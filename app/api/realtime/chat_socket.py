"""
Chat WebSocket

`/ws/chat?sessionId=...&lastTs=...` carries JSON envelopes
`{"event": str, "data": {...}, "id": str?}` in both directions.

Inbound events: client:message, client:image, client:orderDetails.
Turn output (typing, messages, confirmations) goes to every socket joined to
the session; acks, history replay and heartbeat metrics go to the sender only.
"""
import asyncio
import json
import uuid
from collections import defaultdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.conversation.factory import get_conversation_service
from app.conversation.orchestrator import ConversationService, Event, TurnOutcome
from app.conversation.replay import parse_last_ts
from app.core.config import settings
from app.core.logging import bind_session_id, get_logger, set_correlation_id

logger = get_logger(__name__)

router = APIRouter()

CLIENT_MESSAGE = "client:message"
CLIENT_IMAGE = "client:image"
CLIENT_ORDER_DETAILS = "client:orderDetails"


class SocketConnection:
    """One accepted WebSocket bound to a chat session"""

    def __init__(self, websocket: WebSocket, session_id: str):
        self.websocket = websocket
        self.session_id = session_id
        self.correlation_id = set_correlation_id()
        self._send_lock = asyncio.Lock()

    @property
    def open(self) -> bool:
        return self.websocket.application_state == WebSocketState.CONNECTED

    async def send(self, event: str, data: Any, message_id: Optional[str] = None) -> None:
        envelope: dict[str, Any] = {"event": event, "data": data}
        if message_id is not None:
            envelope["id"] = message_id
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(envelope, ensure_ascii=False))

    async def emit(self, event: str, data: Any) -> None:
        await self.send(event, data)


class RoomEmitter:
    """Emits to every live socket of one session"""

    def __init__(self, hub: "ConnectionHub", session_id: str):
        self._hub = hub
        self._session_id = session_id

    async def emit(self, event: str, data: Any) -> None:
        for connection in self._hub.members(self._session_id):
            if not connection.open:
                self._hub.leave(connection)
                continue
            try:
                await connection.send(event, data)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(
                    "Dropping socket after failed send",
                    extra_data={"session_id": self._session_id, "error": str(e)}
                )
                self._hub.leave(connection)


class ConnectionHub:
    """Sockets grouped by session id"""

    def __init__(self):
        self._rooms: dict[str, set[SocketConnection]] = defaultdict(set)

    @property
    def active(self) -> int:
        return sum(len(room) for room in self._rooms.values())

    def join(self, connection: SocketConnection) -> None:
        self._rooms[connection.session_id].add(connection)

    def leave(self, connection: SocketConnection) -> None:
        room = self._rooms.get(connection.session_id)
        if room is None:
            return
        room.discard(connection)
        if not room:
            self._rooms.pop(connection.session_id, None)

    def members(self, session_id: str) -> list[SocketConnection]:
        return list(self._rooms.get(session_id, ()))

    def room(self, session_id: str) -> RoomEmitter:
        return RoomEmitter(self, session_id)


hub = ConnectionHub()


def get_connection_hub() -> ConnectionHub:
    return hub


async def _heartbeat(connection: SocketConnection, service: ConversationService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        if not connection.open:
            return
        payload = service.metrics(connection.session_id)
        if payload is None:
            continue
        try:
            await connection.send(Event.METRICS, payload)
        except (WebSocketDisconnect, RuntimeError):
            return


async def _dispatch(
    connection: SocketConnection,
    service: ConversationService,
    connections: ConnectionHub,
    envelope: dict[str, Any],
) -> None:
    event = envelope.get("event")
    data = envelope.get("data") if isinstance(envelope.get("data"), dict) else {}
    message_id = envelope.get("id")
    session_id = connection.session_id
    set_correlation_id(connection.correlation_id)
    bind_session_id(session_id)

    if event == CLIENT_MESSAGE:
        async def acknowledge(outcome: TurnOutcome) -> None:
            await connection.send(Event.ACK, {"id": message_id, **outcome.ack()}, message_id)

        await service.handle_user_message(
            session_id,
            data.get("text"),
            connections.room(session_id),
            locale=data.get("locale") or None,
            on_accepted=acknowledge,
        )
    elif event == CLIENT_IMAGE:
        result = await service.handle_image(session_id, data.get("url"), connections.room(session_id))
        await connection.send(Event.ACK, {"id": message_id, **result}, message_id)
    elif event == CLIENT_ORDER_DETAILS:
        result = await service.handle_order_details(session_id, data, connections.room(session_id))
        await connection.send(Event.ACK, {"id": message_id, **result}, message_id)
    else:
        await connection.send(Event.ERROR, {"code": "UNKNOWN_EVENT", "message": f"Unknown event: {event}"})


async def _run_dispatch(
    connection: SocketConnection,
    service: ConversationService,
    connections: ConnectionHub,
    envelope: dict[str, Any],
) -> None:
    try:
        await _dispatch(connection, service, connections, envelope)
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info(
            "Socket closed while answering",
            extra_data={"session_id": connection.session_id, "error": str(e)}
        )


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    session_id: Optional[str] = Query(None, alias="sessionId"),
    last_ts: Optional[str] = Query(None, alias="lastTs"),
    service: ConversationService = Depends(get_conversation_service),
    connections: ConnectionHub = Depends(get_connection_hub),
) -> None:
    await websocket.accept()
    session_id = (session_id or "").strip() or str(uuid.uuid4())
    connection = SocketConnection(websocket, session_id)
    bind_session_id(session_id)
    connections.join(connection)

    heartbeat: Optional[asyncio.Task] = None
    pending: set[asyncio.Task] = set()
    try:
        await service.connect(session_id, connection, last_ts=parse_last_ts(last_ts))
        heartbeat = asyncio.create_task(
            _heartbeat(connection, service, settings.HEARTBEAT_INTERVAL_SECONDS)
        )

        while True:
            raw = await websocket.receive_text()
            try:
                envelope = json.loads(raw)
            except ValueError:
                await connection.send(Event.ERROR, {"code": "INVALID_JSON", "message": "Envelope is not JSON"})
                continue
            if not isinstance(envelope, dict):
                await connection.send(Event.ERROR, {"code": "INVALID_JSON", "message": "Envelope must be an object"})
                continue

            # turns of one session are serialized by the registry; the reader keeps going
            task = asyncio.create_task(_run_dispatch(connection, service, connections, envelope))
            pending.add(task)
            task.add_done_callback(pending.discard)
    except WebSocketDisconnect:
        logger.info("Chat socket disconnected", extra_data={"session_id": session_id})
    finally:
        if heartbeat is not None:
            heartbeat.cancel()
        connections.leave(connection)
        service.disconnect(session_id)
