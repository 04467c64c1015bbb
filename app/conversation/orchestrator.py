"""
Conversation Orchestrator

Turn processing shared by every transport. A transport hands in an emitter
(`emit(event, data)`) and the orchestrator drives typing indicators, interim
wait notices, replies, order confirmations and product blocks through it.

Each operation runs under the session's turn lock. Whatever happens inside a
turn, the emitter sees one final reply (or a configuration error event) and
the typing indicator ends off.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from app.conversation import texts
from app.conversation.backoff import RateLimitBackoff
from app.conversation.pacing import WaitNoticeThrottle, typing_delay_ms, wait_message
from app.conversation.registry import SessionRegistry
from app.conversation.replay import ReplayPlan, plan_replay
from app.conversation.session import ChatSession, CustomerProfile, ProductCard, now_ms
from app.conversation.states import ATTACHMENT_PREFIX, Stage, Who
from app.core.config import settings
from app.core.exceptions import AppException, ConfigurationError, ErrorCode, OrderValidationError
from app.core.logging import bind_session_id, get_logger
from app.db.store import SessionStore
from app.domain.services.catalog.base import BaseCatalogProvider, ShippingOption
from app.domain.services.catalog.search import normalize_search_query
from app.domain.services.order_service import OrderService, sanitize_lines, validate_customer
from app.llm.bridge import ToolCallingBridge, TurnResult, history_messages
from app.llm.prompts import INTENT_PROMPT, SUMMARY_PROMPT, VISION_PROMPT, intent_request
from app.llm.tools import ToolContext, ToolName
from app.llm.vision import ImageResolver, parse_intent

logger = get_logger(__name__)


class Event:
    ACK = "server:ack"
    TYPING = "server:typing"
    MESSAGE = "server:message"
    CONFIRM = "server:confirm"
    ERROR = "server:error"
    HISTORY = "server:history"
    METRICS = "server:metrics"


class Emitter(Protocol):
    async def emit(self, event: str, data: Any) -> None: ...


@dataclass(frozen=True)
class ChannelOptions:
    """How a transport wants its turns rendered"""
    pace: bool = True
    product_blocks: bool = True
    fallback_text: str = texts.TURN_ERROR_FALLBACK
    # reply used when the model is unavailable; None emits a configuration error event
    unavailable_text: Optional[str] = None


SOCKET_CHANNEL = ChannelOptions()
FACEBOOK_CHANNEL = ChannelOptions(product_blocks=False, fallback_text=texts.WEBHOOK_ERROR_REPLY)
ZAPIER_CHANNEL = ChannelOptions(
    pace=False,
    product_blocks=False,
    fallback_text=texts.GENERIC_DEFAULT,
    unavailable_text=texts.GENERIC_DEFAULT,
)

# Stages owned by a webhook channel are never replaced by sales-flow stages
_CHANNEL_STAGES = (Stage.FB, Stage.ZAPIER)

SUMMARY_TURNS = 20
SUMMARY_MAX_TOKENS = 200
INTENT_MAX_TOKENS = 100


@dataclass
class TurnOutcome:
    """What a turn produced, for transports that answer synchronously"""
    accepted: bool
    seq: int = 0
    replies: list[str] = field(default_factory=list)
    error_code: Optional[str] = None
    used_tool: Optional[str] = None

    @property
    def reply(self) -> str:
        return self.replies[0] if self.replies else ""

    def ack(self) -> dict[str, Any]:
        if not self.accepted:
            return {"ok": False, "error": self.error_code}
        return {"ok": True, "seq": self.seq}


def product_cards(products: list[dict[str, Any]]) -> list[ProductCard]:
    """Compact cards for products that carry a numeric id"""
    cards = []
    for product in products or []:
        try:
            product_id = int(product.get("id"))
        except (TypeError, ValueError):
            continue
        images = product.get("images") or []
        image = images[0].get("src") if images and isinstance(images[0], dict) else ""
        cards.append(ProductCard(
            product_id=product_id,
            name=str(product.get("name") or ""),
            price=str(product.get("price") or ""),
            image=image or "",
            link=str(product.get("permalink") or ""),
        ))
    return cards


class ConversationService:
    """Turn processing on top of the registry, the bridge and the store"""

    def __init__(
        self,
        registry: SessionRegistry,
        bridge: ToolCallingBridge,
        *,
        store: Optional[SessionStore] = None,
        catalog: Optional[BaseCatalogProvider] = None,
        orders: Optional[OrderService] = None,
        images: Optional[ImageResolver] = None,
        use_llm: Optional[bool] = None,
        history_limit: Optional[int] = None,
        max_message_chars: Optional[int] = None,
        wait_throttle: Optional[WaitNoticeThrottle] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
    ):
        self.registry = registry
        self.bridge = bridge
        self.store = store
        self.catalog = catalog
        self.orders = orders
        self.images = images or ImageResolver()
        self.use_llm = settings.USE_LLM if use_llm is None else use_llm
        self.history_limit = history_limit or settings.LLM_HISTORY_LIMIT
        self.max_message_chars = max_message_chars or settings.MAX_MESSAGE_CHARS
        self.wait_throttle = wait_throttle or WaitNoticeThrottle(int(settings.WAIT_NOTICE_WINDOW_SECONDS * 1000))
        self._sleep = sleep
        self._clock = clock

    @property
    def backoff(self) -> RateLimitBackoff:
        return self.bridge.backoff

    @property
    def llm_ready(self) -> bool:
        return self.use_llm and self.bridge.configured

    @property
    def catalog_ready(self) -> bool:
        return self.catalog is not None and self.catalog.configured

    # ── Persistence ──

    async def _persist_session(self, session: ChatSession) -> None:
        if self.store is not None:
            await self.store.save_session(
                session.session_id, session.stage.value, session.locale, session.last_seen_at
            )

    async def _record(self, session: ChatSession, who: Who, text: str) -> int:
        message = session.append(who, text, self._clock())
        if self.store is not None:
            await self.store.save_message(session.session_id, message)
        return message.ts

    async def _say(
        self,
        session: ChatSession,
        emitter: Emitter,
        text: str,
        *,
        keep_typing: bool = False,
        outcome: Optional[TurnOutcome] = None,
    ) -> None:
        """Log, persist and emit one bot message"""
        ts = await self._record(session, Who.BOT, text)
        data: dict[str, Any] = {"text": text, "stage": session.stage.value, "ts": ts}
        if keep_typing:
            data["keepTyping"] = True
        await emitter.emit(Event.MESSAGE, data)
        if outcome is not None and not keep_typing:
            outcome.replies.append(text)

    async def _typing(self, emitter: Emitter, on: bool) -> None:
        await emitter.emit(Event.TYPING, {"isTyping": on})

    async def _wait_notice(self, session: ChatSession, emitter: Emitter, tool_name: str) -> None:
        if self.wait_throttle.try_acquire(session, self._clock()):
            await self._say(session, emitter, wait_message(tool_name), keep_typing=True)

    @staticmethod
    def _advance(session: ChatSession, stage: Stage) -> None:
        if session.stage not in _CHANNEL_STAGES:
            session.stage = stage

    # ── Connection ──

    async def connect(
        self,
        session_id: str,
        emitter: Emitter,
        *,
        last_ts: Optional[int] = None,
        locale: Optional[str] = None,
    ) -> ReplayPlan:
        """Register a live connection and send the greeting or the missed history"""
        bind_session_id(session_id)
        async with self.registry.turn(session_id, locale=locale) as (session, created):
            session.connections += 1
            plan = plan_replay(session, created, last_ts)
            await self._persist_session(session)

            if plan.greet:
                await emitter.emit(Event.MESSAGE, {
                    "text": texts.GREETING,
                    "stage": session.stage.value,
                    "ts": self._clock(),
                })
            elif plan.history:
                await emitter.emit(Event.HISTORY, plan.history_payload())

        logger.info(
            "Chat client connected",
            extra_data={
                "session_id": session_id,
                "greeted": plan.greet,
                "replayed": len(plan.history),
                "last_ts": last_ts,
            }
        )
        return plan

    def disconnect(self, session_id: str) -> None:
        session = self.registry.peek(session_id)
        if session is not None:
            session.connections = max(0, session.connections - 1)
            session.touch()

    def metrics(self, session_id: str) -> Optional[dict[str, Any]]:
        """Heartbeat payload for a live session"""
        session = self.registry.peek(session_id)
        if session is None:
            return None
        return {
            "sessionId": session_id,
            "stage": session.stage.value,
            "elapsedMs": max(0, self._clock() - session.last_seen_at),
        }

    # ── Text turns ──

    async def handle_user_message(
        self,
        session_id: str,
        text: Any,
        emitter: Emitter,
        *,
        channel: ChannelOptions = SOCKET_CHANNEL,
        stage: Stage = Stage.WELCOME,
        locale: Optional[str] = None,
        on_accepted: Optional[Callable[[TurnOutcome], Awaitable[None]]] = None,
    ) -> TurnOutcome:
        """
        Process one user text turn.

        Blank text is rejected without consuming a sequence number.
        `on_accepted` runs right after the turn got its sequence number, before
        any reply, so transports can acknowledge early.
        """
        clean = str(text or "").strip()[: self.max_message_chars]
        if not clean:
            outcome = TurnOutcome(accepted=False, error_code=ErrorCode.EMPTY_MESSAGE.value)
            if on_accepted is not None:
                await on_accepted(outcome)
            return outcome

        bind_session_id(session_id)
        async with self.registry.turn(session_id, stage=stage, locale=locale) as (session, _):
            if locale:
                session.locale = locale
            outcome = TurnOutcome(accepted=True, seq=session.accept_user_turn())
            logger.info(
                "User message accepted",
                extra_data={"session_id": session_id, "seq": outcome.seq, "chars": len(clean)}
            )
            if on_accepted is not None:
                await on_accepted(outcome)

            await self._record(session, Who.USER, clean)
            await self._persist_session(session)
            await self._run_text_turn(session, clean, emitter, channel, outcome)
            await self._persist_session(session)
        return outcome

    async def _run_text_turn(
        self,
        session: ChatSession,
        text: str,
        emitter: Emitter,
        channel: ChannelOptions,
        outcome: TurnOutcome,
    ) -> None:
        if self.backoff.in_cooldown(session, self._clock()):
            logger.info(
                "Turn received during cooldown",
                extra_data={
                    "session_id": session.session_id,
                    "remaining_ms": self.backoff.cooldown_remaining_ms(session, self._clock()),
                }
            )
            if self.wait_throttle.try_acquire(session, self._clock()):
                await self._say(
                    session, emitter, wait_message(ToolName.SEARCH_PRODUCTS.value),
                    keep_typing=True,
                )
                outcome.replies.append(session.messages[-1].text)
            outcome.error_code = ErrorCode.LLM_RATE_LIMITED.value
            await self._typing(emitter, False)
            return

        typing = True

        async def stop_typing() -> None:
            nonlocal typing
            if typing:
                typing = False
                await self._typing(emitter, False)

        await self._typing(emitter, True)
        try:
            if self.use_llm and not self.bridge.configured:
                outcome.error_code = ErrorCode.LLM_CONFIG.value
                if channel.unavailable_text is not None:
                    await stop_typing()
                    await self._say(session, emitter, channel.unavailable_text, outcome=outcome)
                else:
                    await emitter.emit(Event.ERROR, {
                        "code": ErrorCode.LLM_CONFIG.value,
                        "message": texts.LLM_UNAVAILABLE_MESSAGE,
                    })
                return

            result = TurnResult(reply="")
            if self.use_llm:
                history = session.messages[:-1][-self.history_limit:]

                async def on_tool_start(tool_name: str) -> None:
                    await self._wait_notice(session, emitter, tool_name)

                result = await self.bridge.run_turn(
                    self._tool_context(session),
                    text,
                    history,
                    summary=session.summary,
                    on_tool_start=on_tool_start,
                )

            if result.used_tool:
                outcome.used_tool = result.tool_name
                await self._finish_tool_turn(session, emitter, channel, result, outcome)
                return

            reply = result.reply or (
                channel.unavailable_text if not self.use_llm and channel.unavailable_text else texts.EMPTY_REPLY_DEFAULT
            )
            if channel.pace and settings.PACING_ENABLED:
                await self._sleep(typing_delay_ms(reply) / 1000)
            await stop_typing()
            await self._say(session, emitter, reply, outcome=outcome)
            if self.use_llm:
                await self._refresh_summary(session)
        except Exception as e:
            outcome.error_code = e.code if isinstance(e, AppException) else ErrorCode.INTERNAL_ERROR.value
            logger.error(
                "Turn failed, sending fallback",
                extra_data={"session_id": session.session_id, "error": str(e), "error_code": outcome.error_code},
                exc_info=not isinstance(e, AppException),
            )
            await stop_typing()
            if not outcome.replies:
                await self._say(session, emitter, channel.fallback_text, outcome=outcome)
        finally:
            await stop_typing()

    def _tool_context(self, session: ChatSession) -> ToolContext:
        return ToolContext(session=session, catalog=self.catalog, orders=self.orders)

    async def _finish_tool_turn(
        self,
        session: ChatSession,
        emitter: Emitter,
        channel: ChannelOptions,
        result: TurnResult,
        outcome: TurnOutcome,
    ) -> None:
        payload = result.payload

        if result.tool_name == ToolName.PLACE_ORDER.value:
            placed = payload.get("placed") if payload.get("ok") else None
            if placed and placed.get("orderId"):
                await self._confirm_order(session, emitter, str(placed["orderId"]), placed.get("eta") or "", outcome)
                if self.store is not None and session.customer is not None:
                    await self.store.save_customer(session.session_id, session.customer)
            else:
                await self._say(session, emitter, texts.ORDER_FAILED, outcome=outcome)
            return

        await self._say(session, emitter, result.reply or "…", outcome=outcome)

        if result.tool_name == ToolName.CANCEL_ORDER.value and payload.get("ok"):
            self._advance(session, Stage.ORDER_CANCELLED)

        if result.tool_name == ToolName.SEARCH_PRODUCTS.value:
            cards = product_cards(payload.get("products") or [])
            session.last_products = cards
            self._advance(session, Stage.BROWSING)
            blocks = texts.product_blocks(cards)
            if channel.product_blocks and blocks:
                await self._say(session, emitter, blocks)

    async def _confirm_order(
        self,
        session: ChatSession,
        emitter: Emitter,
        order_id: str,
        eta: str,
        outcome: Optional[TurnOutcome] = None,
    ) -> None:
        await emitter.emit(Event.CONFIRM, {
            "summary": texts.ORDER_PLACED_SUMMARY,
            "eta": eta,
            "orderId": order_id,
        })
        await self._say(session, emitter, texts.order_confirmation(order_id, eta), outcome=outcome)
        self._advance(session, Stage.ORDER_PLACED)

    async def _refresh_summary(self, session: ChatSession) -> None:
        """Best-effort rolling summary of the latest turns"""
        if self.store is None:
            return
        messages = [{"role": "system", "content": SUMMARY_PROMPT}]
        messages.extend(history_messages(session.recent_history(SUMMARY_TURNS)))
        try:
            summary = await self.bridge.complete(messages, max_tokens=SUMMARY_MAX_TOKENS)
        except AppException as e:
            logger.warning(
                "Summary refresh failed",
                extra_data={"session_id": session.session_id, "error": e.code}
            )
            return
        if summary:
            session.summary = summary
            await self.store.save_summary(session.session_id, summary)

    # ── Image turns ──

    async def handle_image(self, session_id: str, url: Any, emitter: Emitter) -> dict[str, Any]:
        """
        Suggest products for an uploaded image.

        The model's description of the image stays internal; the customer sees
        an intro line and product blocks, or a follow-up question.

        Returns:
            Ack payload for the transport
        """
        image_url = str(url or "").strip()
        if not image_url:
            return {"ok": False, "error": "NO_URL"}

        bind_session_id(session_id)
        async with self.registry.turn(session_id) as (session, _):
            await self._record(session, Who.USER, f"{ATTACHMENT_PREFIX}{image_url}")
            await self._persist_session(session)
            await self._typing(emitter, True)
            try:
                if not self.llm_ready:
                    raise ConfigurationError("Model unavailable for image turn")
                await self._run_image_turn(session, image_url, emitter)
            except Exception as e:
                logger.warning(
                    "Image turn failed",
                    extra_data={"session_id": session_id, "error": str(e)},
                    exc_info=not isinstance(e, AppException),
                )
                await self._say(session, emitter, texts.IMAGE_FAILED)
                return {"ok": False, "error": "VISION_ERROR"}
            finally:
                await self._typing(emitter, False)
                await self._persist_session(session)
        return {"ok": True}

    async def _run_image_turn(self, session: ChatSession, image_url: str, emitter: Emitter) -> None:
        image_ref = await self.images.resolve(image_url)
        description = await self.bridge.client.describe_image(VISION_PROMPT, image_ref)
        logger.info(
            "Image described",
            extra_data={"session_id": session.session_id, "chars": len(description or "")}
        )
        if not self.catalog_ready:
            await self._say(session, emitter, texts.IMAGE_ASK_PREFERENCE)
            return

        try:
            raw_intent = await self.bridge.complete(
                [
                    {"role": "system", "content": INTENT_PROMPT},
                    {"role": "user", "content": intent_request(description or texts.IMAGE_SHORT_FALLBACK)},
                ],
                max_tokens=INTENT_MAX_TOKENS,
            )
            intent = parse_intent(raw_intent)
            query = normalize_search_query(intent.query) or intent.query
            if not query:
                await self._say(session, emitter, texts.IMAGE_ASK_PREFERENCE)
                return

            await self._wait_notice(session, emitter, ToolName.SEARCH_PRODUCTS.value)
            try:
                products = await self.catalog.search_products(query, per_page=intent.per_page)
            except AppException as e:
                logger.warning(
                    "Image product search failed",
                    extra_data={"session_id": session.session_id, "error": e.code}
                )
                products = []
        except AppException as e:
            logger.warning(
                "Image search intent failed",
                extra_data={"session_id": session.session_id, "error": e.code}
            )
            await self._say(session, emitter, texts.IMAGE_SHORT_FALLBACK)
            return

        await self._say(session, emitter, texts.image_intro(query))
        cards = product_cards(products)
        session.last_products = cards
        self._advance(session, Stage.BROWSING)
        blocks = texts.product_blocks(cards)
        await self._say(session, emitter, blocks or texts.IMAGE_ASK_PREFERENCE)

    # ── Order form ──

    async def handle_order_details(
        self,
        session_id: str,
        details: dict[str, Any] | None,
        emitter: Emitter,
    ) -> dict[str, Any]:
        """
        Place an order from the checkout form.

        Missing fields fall back to the saved customer, missing items to the
        first product last shown. Without a shipping choice the available
        options are listed and the caller is told NEED_SHIPPING.

        Returns:
            Ack payload for the transport
        """
        details = details if isinstance(details, dict) else {}
        bind_session_id(session_id)
        async with self.registry.turn(session_id) as (session, _):
            saved = session.customer or CustomerProfile()
            submitted = CustomerProfile(**{
                key: str(details[key] if details.get(key) is not None else getattr(saved, key) or "").strip()
                for key in CustomerProfile.__dataclass_fields__
            })

            try:
                customer = validate_customer(submitted)
            except OrderValidationError as e:
                await self._say(session, emitter, e.message)
                return {"ok": False, "error": e.code}

            items = details.get("items") if isinstance(details.get("items"), list) else []
            if not sanitize_lines(items) and session.last_products:
                items = [{"product_id": session.last_products[0].product_id, "quantity": 1}]
            if not sanitize_lines(items):
                await self._say(session, emitter, texts.NO_ITEMS_SELECTED)
                return {"ok": False, "error": ErrorCode.NO_ITEMS.value}

            if self.orders is None or not self.catalog_ready:
                await self._say(session, emitter, texts.ORDER_FORM_FAILED)
                return {"ok": False, "error": ErrorCode.CATALOG_NOT_CONFIGURED.value}

            shipping = ShippingOption.from_dict(details.get("shipping") if isinstance(details.get("shipping"), dict) else None)
            if shipping is None:
                options = await self.catalog.list_shipping_options(customer.district)
                option_dicts = [o.to_dict() for o in options]
                self._advance(session, Stage.ORDERING)
                await self._say(session, emitter, texts.shipping_options_prompt(option_dicts))
                return {"ok": False, "error": ErrorCode.NEED_SHIPPING.value, "options": option_dicts}

            outcome = await self.orders.try_place_order(customer, items, shipping)
            if not outcome.ok:
                await self._say(session, emitter, outcome.message or texts.ORDER_FORM_FAILED)
                return {"ok": False, "error": outcome.error_code}

            placed = outcome.placed
            await self._confirm_order(session, emitter, placed.order_id, placed.eta)
            session.customer = customer
            if self.store is not None:
                await self.store.save_customer(session_id, customer)
            await self._persist_session(session)

        return {"ok": True, "orderId": placed.order_id, "reusedCustomer": bool(saved.name)}
