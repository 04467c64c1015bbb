"""
Pytest Configuration and Fixtures

Provides fixtures for:
- An in-memory session store (async SQLite)
- Test doubles for the model provider and the catalog backend
- A recording emitter and a controllable clock
- A fully wired ConversationService built from those doubles
"""
# Settings are read at import time; keep tests away from real backends
import os
os.environ.setdefault("PERSISTENCE_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("WC_CONSUMER_KEY", "")
os.environ.setdefault("WC_CONSUMER_SECRET", "")
os.environ.setdefault("FB_APP_SECRET", "")

import json
from typing import Any, Optional
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.conversation.backoff import RateLimitBackoff
from app.conversation.orchestrator import ConversationService
from app.conversation.pacing import WaitNoticeThrottle
from app.conversation.registry import SessionRegistry
from app.core.exceptions import CatalogError
from app.db.database import Base
from app.db.store import SessionStore
from app.domain.services.catalog.base import (
    BaseCatalogProvider,
    CreatedOrder,
    OrderLine,
    ShippingOption,
)
from app.domain.services.order_service import OrderService
from app.llm.bridge import ToolCallingBridge
from app.llm.client import AssistantMessage, ToolCall
import app.db.models  # noqa: F401  (register chat tables)


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed wall clock for tests (2023-11-14T22:13:20Z)
T0_MS = 1_700_000_000_000


# ============================================================================
# Database
# ============================================================================

@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_store(async_engine) -> SessionStore:
    """SessionStore over the in-memory database"""
    return SessionStore(async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False))


# ============================================================================
# Test doubles
# ============================================================================

class FakeClock:
    """Epoch-millisecond clock; sleeping advances it instead of waiting"""

    def __init__(self, start: int = T0_MS) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += int(seconds * 1000)


class FakeLLMClient:
    """
    Scripted model provider.

    `replies` are consumed in order by chat(): a string becomes a plain
    assistant message, an AssistantMessage is returned as-is and an exception
    is raised. When the script runs out an empty reply is returned.
    """

    def __init__(
        self,
        replies: Optional[list[Any]] = None,
        *,
        api_key: str = "test-key",
        vision_text: Any = "একটি কালো অ্যানালগ হাতঘড়ি",
    ) -> None:
        self.replies = list(replies or [])
        self.api_key = api_key
        self.vision_text = vision_text
        self.calls: list[dict[str, Any]] = []
        self.image_calls: list[str] = []

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: int = 180,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> AssistantMessage:
        self.calls.append({"messages": messages, "tools": tools, "max_tokens": max_tokens})
        if not self.replies:
            return AssistantMessage(content="")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            return AssistantMessage(content=reply)
        return reply

    async def describe_image(self, prompt: str, image_url: str, max_output_tokens: int = 300) -> str:
        self.image_calls.append(image_url)
        if isinstance(self.vision_text, BaseException):
            raise self.vision_text
        return self.vision_text


def tool_call(name: str, call_id: str = "call_1", /, **arguments: Any) -> AssistantMessage:
    """Assistant message asking for one tool"""
    return AssistantMessage(
        content="",
        tool_calls=[ToolCall(id=call_id, name=name, arguments=json.dumps(arguments, ensure_ascii=False))],
    )


WATCH = {
    "id": 11,
    "name": "Smart Watch X",
    "price": "1500",
    "permalink": "https://shop.test/p/11",
    "images": [{"src": "https://shop.test/img/11.jpg", "alt": ""}],
}
EARBUDS = {
    "id": 12,
    "name": "Wireless Earbuds",
    "price": "900",
    "permalink": "https://shop.test/p/12",
    "images": [{"src": "https://shop.test/img/12.jpg", "alt": ""}],
}
NO_IMAGE_SHIRT = {
    "id": 13,
    "name": "Cotton Shirt",
    "price": "650",
    "permalink": "https://shop.test/p/13",
    "images": [],
}


class FakeCatalog(BaseCatalogProvider):
    """In-memory catalog and order backend"""

    def __init__(
        self,
        products: Optional[list[dict[str, Any]]] = None,
        *,
        configured: bool = True,
        shipping: Optional[list[ShippingOption]] = None,
        orders: Optional[dict[str, dict[str, Any]]] = None,
    ) -> None:
        self.products = products if products is not None else [WATCH, EARBUDS, NO_IMAGE_SHIRT]
        self._configured = configured
        self.shipping = shipping or [
            ShippingOption("flat_rate", "ঢাকা ভেতর", "60.00"),
            ShippingOption("flat_rate", "ঢাকার বাইরে", "120.00"),
        ]
        self.orders = orders if orders is not None else {}
        self.searches: list[dict[str, Any]] = []
        self.created: list[tuple[Any, list[OrderLine], ShippingOption]] = []
        self.updated: list[tuple[str, str]] = []
        self.search_error: Optional[Exception] = None
        self.next_order_id = 1001

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def configured(self) -> bool:
        return self._configured

    async def search_products(self, search="", per_page=12, min_price=None, max_price=None, category=None):
        self.searches.append({"search": search, "per_page": per_page, "category": category})
        if self.search_error is not None:
            raise self.search_error
        tokens = search.lower().split()
        matches = [
            p for p in self.products
            if not tokens or any(t in p["name"].lower() for t in tokens)
        ]
        return matches[:per_page]

    async def get_product(self, product_id):
        return next((p for p in self.products if p["id"] == product_id), None)

    async def list_categories(self, search="", per_page=50):
        return [{"id": 1, "name": "Watches", "slug": "watches", "count": 1}][:per_page]

    async def list_variations(self, product_id, per_page=50):
        return [{"id": 501, "price": "1500", "stock_status": "instock", "attributes": [{"name": "Color", "option": "Black"}]}]

    async def list_shipping_options(self, district=""):
        return list(self.shipping)

    async def choose_shipping(self, district):
        return self.shipping[0]

    async def create_order(self, customer, lines, shipping):
        self.created.append((customer, lines, shipping))
        order_id = str(self.next_order_id)
        self.next_order_id += 1
        return CreatedOrder(id=order_id, number=order_id, status="processing")

    async def get_order(self, order_id):
        if order_id not in self.orders:
            raise CatalogError("orders.get returned status 404", details={"status_code": 404})
        return self.orders[order_id]

    async def update_order_status(self, order_id, status):
        self.updated.append((order_id, status))
        return CreatedOrder(id=order_id, number=order_id, status=status)


class RecordingEmitter:
    """Collects (event, data) pairs emitted by the orchestrator"""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    async def emit(self, event: str, data: Any) -> None:
        self.events.append((event, data))

    def of(self, event: str) -> list[Any]:
        return [data for name, data in self.events if name == event]

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    @property
    def texts(self) -> list[str]:
        return [data["text"] for data in self.of("server:message")]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def make_service(clock: FakeClock):
    """Factory for a ConversationService over fakes; sleeps advance `clock`"""
    def _make(
        llm: Optional[FakeLLMClient] = None,
        catalog: Optional[BaseCatalogProvider] = None,
        *,
        store: Optional[SessionStore] = None,
        use_llm: bool = True,
        tools_enabled: bool = True,
        history_limit: int = 40,
        wait_window_ms: int = 5000,
        min_spacing_ms: int = 0,
        cooldown_ms: int = 10_000,
    ) -> ConversationService:
        backoff = RateLimitBackoff(
            min_spacing_ms=min_spacing_ms,
            cooldown_ms=cooldown_ms,
            sleep=clock.sleep,
            clock=clock,
            rng=lambda: 0.0,
        )
        bridge = ToolCallingBridge(
            llm if llm is not None else FakeLLMClient(),
            backoff,
            tools_enabled=tools_enabled,
            temperature=0.4,
        )
        return ConversationService(
            SessionRegistry(store),
            bridge,
            store=store,
            catalog=catalog,
            orders=OrderService(catalog) if catalog is not None else None,
            use_llm=use_llm,
            history_limit=history_limit,
            wait_throttle=WaitNoticeThrottle(wait_window_ms),
            sleep=clock.sleep,
            clock=clock,
        )
    return _make


@pytest.fixture(scope="function")
async def test_client():
    """HTTP client over the ASGI app; background tasks finish before a call returns"""
    from httpx import AsyncClient, ASGITransport
    from app.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_service_singletons():
    """Drop factory singletons and dependency overrides between tests"""
    from app.conversation.factory import reset_services
    from app.main import app
    reset_services()
    yield
    app.dependency_overrides.clear()
    reset_services()


class FakeRedis:
    """In-memory stand-in for Redis with TTL tracking"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET with NX (only if absent) and EX (expiry in seconds)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for every test"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis):
        yield _fake
