"""
Zapier Webhook

Ingests chat events relayed by a Zap and answers synchronously with the
assistant's reply as plain text.

Body: `{"data": <json string | object>}` or the event object itself, with
`sender_psid | psid | senderId | sender_id`, `text | message`, `time` and
`locale`.
"""
import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from app.conversation import texts
from app.conversation.factory import get_conversation_service
from app.conversation.orchestrator import ZAPIER_CHANNEL, ConversationService
from app.conversation.states import Stage
from app.core.exceptions import ErrorCode
from app.core.logging import get_logger
from app.core.validation import html_to_plain_text

logger = get_logger(__name__)

router = APIRouter()

_PSID_KEYS = ("sender_psid", "psid", "senderId", "sender_id")


class _Discard:
    """Zapier has no live channel; only the turn outcome is used"""

    async def emit(self, event: str, data: Any) -> None:
        return None


def parse_zapier_payload(body: Any) -> dict[str, Any]:
    """
    Unwrap the event object.

    Raises:
        ValueError: "MISSING_DATA" or "INVALID_JSON"
    """
    raw = body.get("data", body) if isinstance(body, dict) else body
    if not raw:
        raise ValueError(ErrorCode.MISSING_DATA.value)
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValueError(ErrorCode.INVALID_JSON.value)
    if not isinstance(raw, dict):
        raise ValueError(ErrorCode.INVALID_JSON.value)
    return raw


def sender_psid(payload: dict[str, Any]) -> str:
    for key in _PSID_KEYS:
        if payload.get(key):
            return str(payload[key])
    return "anonymous"


@router.post(
    "/zapier",
    summary="Zapier Chat Webhook",
    description="Runs one assistant turn and returns the reply as plain text.",
    responses={
        200: {"description": "Plain-text reply"},
        400: {"description": "MISSING_DATA or INVALID_JSON"},
    },
    tags=["Webhooks"],
    response_class=PlainTextResponse,
)
async def zapier_webhook(
    request: Request,
    service: ConversationService = Depends(get_conversation_service),
) -> PlainTextResponse:
    body_bytes = await request.body()
    if not body_bytes.strip():
        return PlainTextResponse(ErrorCode.MISSING_DATA.value, status_code=400)
    try:
        payload = parse_zapier_payload(json.loads(body_bytes))
    except ValueError as e:
        code = str(e) if str(e) == ErrorCode.MISSING_DATA.value else ErrorCode.INVALID_JSON.value
        logger.warning("Zapier webhook rejected", extra_data={"error": code})
        return PlainTextResponse(code, status_code=400)

    psid = sender_psid(payload)
    text = str(payload.get("text") or payload.get("message") or "")
    locale = str(payload.get("locale") or "") or None

    outcome = await service.handle_user_message(
        f"zap:{psid}",
        text,
        _Discard(),
        channel=ZAPIER_CHANNEL,
        stage=Stage.ZAPIER,
        locale=locale,
    )
    logger.info(
        "Zapier turn handled",
        extra_data={"psid": psid, "accepted": outcome.accepted, "error_code": outcome.error_code}
    )

    plain = html_to_plain_text(outcome.reply) or texts.GENERIC_DEFAULT
    return PlainTextResponse(plain)
