"""
Language Model Client

Thin httpx wrapper over the OpenAI-compatible chat completions and responses
endpoints. Transport failures are mapped to the LLMError family so the
backoff controller can tell rate limits from everything else.
"""
import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.config import settings
from app.core.exceptions import (
    ConfigurationError,
    ErrorCode,
    LLMError,
    LLMHTTPError,
    LLMTimeoutError,
)
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ToolCall:
    """A function call requested by the model"""
    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Arguments as a dict; malformed JSON yields an empty dict"""
        try:
            value = json.loads(self.arguments or "{}")
        except ValueError:
            return {}
        return value if isinstance(value, dict) else {}

    def to_message_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


@dataclass
class AssistantMessage:
    """First choice of a chat completion"""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    @classmethod
    def from_completion(cls, data: dict[str, Any]) -> "AssistantMessage":
        choices = data.get("choices") or []
        message = (choices[0] if choices else {}).get("message") or {}
        calls = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            calls.append(ToolCall(
                id=str(raw.get("id") or ""),
                name=str(function.get("name") or ""),
                arguments=function.get("arguments") or "{}",
            ))
        return cls(content=(message.get("content") or "").strip(), tool_calls=calls)


class LLMClient:
    """Client for the model provider"""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        vision_model: str | None = None,
        timeout_seconds: float | None = None,
        vision_timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.model = model or settings.OPENAI_MODEL
        self.vision_model = vision_model or settings.OPENAI_VISION_MODEL
        self.timeout_seconds = timeout_seconds or settings.LLM_TIMEOUT_SECONDS
        self.vision_timeout_seconds = vision_timeout_seconds or settings.VISION_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, payload: dict[str, Any], timeout: float, operation: str) -> dict[str, Any]:
        if not self.configured:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set",
                error_code=ErrorCode.LLM_CONFIG,
            )

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(timeout) from e
        except httpx.HTTPError as e:
            raise LLMError(f"{operation} transport error: {e}") from e

        if response.status_code >= 400:
            logger.warning(
                "Model provider returned an error",
                extra_data={"operation": operation, "status_code": response.status_code}
            )
            raise LLMHTTPError.from_response(operation, response)

        try:
            return response.json()
        except ValueError as e:
            raise LLMError(f"{operation} returned invalid JSON") from e

    async def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 180,
        temperature: float | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ) -> AssistantMessage:
        """One chat completion; tools are offered with tool_choice=auto"""
        payload: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": settings.LLM_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        data = await self._post(
            "/chat/completions",
            payload,
            timeout_seconds or self.timeout_seconds,
            "chat.completions",
        )
        return AssistantMessage.from_completion(data)

    async def describe_image(self, prompt: str, image_url: str, max_output_tokens: int = 300) -> str:
        """Vision via the Responses API, falling back to chat completions"""
        try:
            data = await self._post(
                "/responses",
                {
                    "model": self.vision_model,
                    "input": [{
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": prompt},
                            {"type": "input_image", "image_url": image_url},
                        ],
                    }],
                    "max_output_tokens": max_output_tokens,
                },
                self.vision_timeout_seconds,
                "responses",
            )
            text = _responses_output_text(data)
            if text:
                return text
        except LLMError as e:
            logger.warning(
                "Responses API vision failed, falling back to chat completions",
                extra_data={"error": str(e)}
            )

        message = await self.chat(
            [{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }],
            max_tokens=max_output_tokens,
            temperature=0.2,
            model=self.vision_model,
            timeout_seconds=self.vision_timeout_seconds,
        )
        return message.content


def _responses_output_text(data: dict[str, Any]) -> str:
    """Collect the text of a Responses API payload"""
    if isinstance(data.get("output_text"), str):
        return data["output_text"].strip()

    parts: list[str] = []
    for item in data.get("output") or []:
        for content in item.get("content") or []:
            text = content.get("text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts).strip()
