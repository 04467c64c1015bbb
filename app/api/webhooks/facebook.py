"""
Facebook Messenger Webhook

GET answers Meta's subscription challenge. POST acknowledges at once and
handles each text message in a background task: session `fb:<psid>`, Graph
API typing indicators and HTML-free replies.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from app.api.dependencies.webhook_auth import verify_facebook_signature
from app.conversation import texts
from app.conversation.factory import get_conversation_service, get_messenger_client
from app.conversation.orchestrator import FACEBOOK_CHANNEL, ConversationService, Event
from app.conversation.states import Stage
from app.core.config import settings
from app.core.exceptions import ExternalServiceException
from app.core.logging import get_logger
from app.domain.services.messenger import MessengerClient

logger = get_logger(__name__)

router = APIRouter()


class MessengerEmitter:
    """Maps orchestrator events onto the Send API"""

    def __init__(self, messenger: MessengerClient, psid: str):
        self._messenger = messenger
        self._psid = psid
        self.sent: list[str] = []

    async def emit(self, event: str, data: Any) -> None:
        if event == Event.TYPING:
            await self._messenger.send_typing(self._psid, bool(data.get("isTyping")))
        elif event == Event.MESSAGE:
            await self._messenger.send_text(self._psid, data.get("text") or "")
            self.sent.append(data.get("text") or "")


def extract_text_messages(payload: dict[str, Any]) -> list[tuple[str, str]]:
    """(psid, text) pairs of the text messages in a page webhook payload"""
    messages = []
    for entry in payload.get("entry") or []:
        for event in entry.get("messaging") or []:
            sender_id = (event.get("sender") or {}).get("id")
            text = (event.get("message") or {}).get("text")
            if sender_id and text:
                messages.append((str(sender_id), str(text)))
    return messages


async def process_messenger_message(
    service: ConversationService,
    messenger: MessengerClient,
    psid: str,
    text: str,
) -> None:
    emitter = MessengerEmitter(messenger, psid)
    try:
        await service.handle_user_message(
            f"fb:{psid}",
            text,
            emitter,
            channel=FACEBOOK_CHANNEL,
            stage=Stage.FB,
        )
    except ExternalServiceException as e:
        logger.error(
            "Messenger reply failed",
            extra_data={"psid": psid, "error": e.message, "error_code": e.code}
        )
        if not emitter.sent:
            try:
                await messenger.send_text(psid, texts.WEBHOOK_ERROR_REPLY)
            except ExternalServiceException:
                logger.warning("Messenger apology could not be sent", extra_data={"psid": psid})


@router.get(
    "/facebook",
    summary="Messenger Webhook Verification",
    description="Meta subscription check; echoes hub.challenge.",
    tags=["Webhooks"],
    response_class=PlainTextResponse,
)
async def facebook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
) -> str:
    if (
        hub_mode == "subscribe"
        and settings.FB_VERIFY_TOKEN
        and hub_verify_token == settings.FB_VERIFY_TOKEN
    ):
        logger.info("Messenger webhook verified")
        return hub_challenge or ""
    logger.warning("Messenger webhook verification failed", extra_data={"hub_mode": hub_mode})
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post(
    "/facebook",
    summary="Messenger Webhook",
    description="Receives page messages; replies are sent asynchronously.",
    responses={
        200: {"description": "Event received"},
        403: {"description": "Invalid signature"},
        404: {"description": "Not a page subscription"},
    },
    tags=["Webhooks"],
    dependencies=[Depends(verify_facebook_signature)],
)
async def facebook_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    service: ConversationService = Depends(get_conversation_service),
    messenger: MessengerClient = Depends(get_messenger_client),
) -> PlainTextResponse:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if not isinstance(payload, dict) or payload.get("object") != "page":
        raise HTTPException(status_code=404, detail="Not a page event")

    if not (service.llm_ready and messenger.configured):
        logger.warning(
            "Messenger webhook received but replies are disabled",
            extra_data={"llm": service.llm_ready, "page_token": messenger.configured}
        )
        return PlainTextResponse("EVENT_RECEIVED")

    messages = extract_text_messages(payload)
    for psid, text in messages:
        background_tasks.add_task(process_messenger_message, service, messenger, psid, text)

    logger.info("Messenger webhook accepted", extra_data={"messages": len(messages)})
    return PlainTextResponse("EVENT_RECEIVED")
