"""
Messenger Client - Facebook Graph API Send API.

Sends plain-text replies and typing indicators to a page-scoped user id.
Calls go through the Messenger circuit breaker; HTML produced for the web
widget is flattened to text before sending.
"""
from __future__ import annotations

import httpx

from app.core.circuit_breaker import CircuitBreaker, get_messenger_circuit_breaker
from app.core.config import settings
from app.core.exceptions import ExternalServiceException, MessengerError, ServiceTimeoutError
from app.core.logging import get_logger
from app.core.validation import html_to_plain_text

logger = get_logger(__name__)

# Send API rejects texts longer than this
MAX_TEXT_CHARS = 2000


class MessengerClient:
    """Graph API sender for one page"""

    def __init__(
        self,
        circuit_breaker: CircuitBreaker | None = None,
        *,
        page_token: str | None = None,
        graph_url: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker or get_messenger_circuit_breaker()
        self._page_token = page_token if page_token is not None else settings.FB_PAGE_TOKEN
        self._graph_url = (graph_url or settings.FB_GRAPH_URL).rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._page_token)

    async def _post(self, payload: dict, operation: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._graph_url}/me/messages",
                    params={"access_token": self._page_token},
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise ServiceTimeoutError("messenger", self._timeout) from e
        except httpx.HTTPError as e:
            raise MessengerError(f"{operation} transport error: {e}") from e

        if response.status_code >= 400:
            raise MessengerError.from_response(operation, response)

    async def send_text(self, psid: str, text: str) -> None:
        plain = html_to_plain_text(text)[:MAX_TEXT_CHARS]
        if not plain:
            return
        await self._circuit_breaker.execute(
            self._post,
            {"recipient": {"id": psid}, "message": {"text": plain}},
            "send_text",
        )

    async def send_typing(self, psid: str, on: bool) -> None:
        """Typing indicators are cosmetic; failures are only logged"""
        action = "typing_on" if on else "typing_off"
        try:
            await self._circuit_breaker.execute(
                self._post,
                {"recipient": {"id": psid}, "sender_action": action},
                action,
            )
        except ExternalServiceException as e:
            logger.debug("Messenger typing indicator failed", extra_data={"action": action, "error": str(e)})
