"""
Tool-Calling Bridge

One model turn: persona + summary + trimmed history + user text, offered the
tool catalog. When the model asks for tools only the first call is executed;
its JSON result goes back in a second call that produces the final reply.
Every model call runs under the session's rate-limit backoff.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from app.conversation.backoff import RateLimitBackoff
from app.conversation.session import ChatMessage
from app.conversation.states import Who
from app.core.config import settings
from app.core.logging import get_logger, log_async_operation
from app.llm.client import AssistantMessage, LLMClient
from app.llm.prompts import SYSTEM_PROMPT, summary_message
from app.llm.tools import (
    DEFAULT_REPLY_MAX_TOKENS,
    ToolContext,
    ToolResult,
    execute_tool,
    resolve,
    tool_schemas,
)

logger = get_logger(__name__)

FIRST_CALL_MAX_TOKENS = 180

ToolStartCallback = Callable[[str], Awaitable[None]]


@dataclass
class TurnResult:
    """Final reply of a turn and, when a tool ran, its name and result payload"""
    reply: str
    used_tool: bool = False
    tool_name: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)


def history_messages(history: list[ChatMessage], window: Optional[int] = None) -> list[dict[str, str]]:
    """Chat-completion messages for the last `window` log entries"""
    if window is not None:
        history = history[-window:] if window > 0 else []
    roles = {Who.USER.value: "user", Who.BOT.value: "assistant"}
    return [
        {"role": roles[m.who], "content": m.text}
        for m in history
        if m.who in roles and m.text
    ]


class ToolCallingBridge:
    """Runs model turns with the tool catalog"""

    def __init__(
        self,
        client: LLMClient,
        backoff: RateLimitBackoff,
        *,
        tools_enabled: Optional[bool] = None,
        temperature: Optional[float] = None,
    ):
        self.client = client
        self.backoff = backoff
        self.tools_enabled = settings.USE_LLM_TOOLING if tools_enabled is None else tools_enabled
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature

    @property
    def configured(self) -> bool:
        return self.client.configured

    def compose(
        self,
        user_text: str,
        history: list[ChatMessage],
        summary: str = "",
        window: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
        if summary:
            messages.append(summary_message(summary))
        messages.extend(history_messages(history, window))
        messages.append({"role": "user", "content": user_text})
        return messages

    @log_async_operation("llm_turn")
    async def run_turn(
        self,
        ctx: ToolContext,
        user_text: str,
        history: list[ChatMessage],
        *,
        summary: str = "",
        on_tool_start: Optional[ToolStartCallback] = None,
    ) -> TurnResult:
        """
        Run one turn for `ctx.session`.

        Raises:
            ConfigurationError: no API key
            LLMError: transport failure after the backoff policy gave up
        """
        session = ctx.session
        tools = tool_schemas() if self.tools_enabled else None

        async def first_call(window: Optional[int]) -> AssistantMessage:
            return await self.client.chat(
                self.compose(user_text, history, summary, window),
                tools=tools,
                max_tokens=FIRST_CALL_MAX_TOKENS,
                temperature=self.temperature,
            )

        message = await self.backoff.call(session, first_call)
        if not (self.tools_enabled and message.tool_calls):
            return TurnResult(reply=message.content)

        call = message.tool_calls[0]
        if len(message.tool_calls) > 1:
            logger.info(
                "Model requested several tools, running the first",
                extra_data={"session_id": session.session_id, "tools": [c.name for c in message.tool_calls]}
            )

        if on_tool_start is not None:
            try:
                await on_tool_start(call.name)
            except Exception as e:
                logger.warning("Tool start callback failed", extra_data={"error": str(e)})

        result: ToolResult = await execute_tool(ctx, call.name, call.parsed_arguments())
        logger.info(
            "Tool executed",
            extra_data={"session_id": session.session_id, "tool": call.name, "ok": result.ok}
        )

        spec = resolve(call.name)
        reply_tokens = spec.reply_max_tokens if spec else DEFAULT_REPLY_MAX_TOKENS
        # the model only sees the call it asked for first
        assistant_message = {
            "role": "assistant",
            "content": message.content or None,
            "tool_calls": [call.to_message_dict()],
        }
        tool_message = {"role": "tool", "tool_call_id": call.id, "content": result.to_content()}

        async def second_call(window: Optional[int]) -> AssistantMessage:
            messages = self.compose(user_text, history, summary, window)
            messages.extend([assistant_message, tool_message])
            return await self.client.chat(
                messages,
                max_tokens=reply_tokens,
                temperature=self.temperature,
            )

        final = await self.backoff.call(session, second_call, spaced=False)
        return TurnResult(
            reply=final.content,
            used_tool=True,
            tool_name=call.name,
            payload=result.payload,
        )

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        temperature: float = 0.2,
    ) -> str:
        """Plain completion without tools or backoff (summaries, intent extraction)"""
        message = await self.client.chat(messages, max_tokens=max_tokens, temperature=temperature)
        return message.content
