"""
Service Factory

Process-wide singletons wired from settings: the catalog provider, the
session registry and store, the conversation service and the Messenger
client. FastAPI routes reach them through dependencies so tests can swap
them with `app.dependency_overrides`.
"""
from __future__ import annotations

import threading

from app.conversation.backoff import RateLimitBackoff
from app.conversation.orchestrator import ConversationService
from app.conversation.registry import SessionRegistry
from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal
from app.db.store import SessionStore
from app.domain.services.catalog.base import BaseCatalogProvider
from app.domain.services.catalog.woocommerce import WooCommerceProvider
from app.domain.services.messenger import MessengerClient
from app.domain.services.order_service import OrderService
from app.llm.bridge import ToolCallingBridge
from app.llm.client import LLMClient

logger = get_logger(__name__)

_catalog: BaseCatalogProvider | None = None
_service: ConversationService | None = None
_messenger: MessengerClient | None = None
_lock = threading.RLock()


def get_catalog_provider() -> BaseCatalogProvider:
    global _catalog
    if _catalog is None:
        with _lock:
            if _catalog is None:
                _catalog = WooCommerceProvider()
                logger.info(
                    "Catalog provider initialized",
                    extra_data={"provider": _catalog.provider_name, "configured": _catalog.configured},
                )
    return _catalog


def build_conversation_service(catalog: BaseCatalogProvider | None = None) -> ConversationService:
    """A fully wired service; the store is left out when persistence is disabled"""
    catalog = catalog or get_catalog_provider()
    store = SessionStore(AsyncSessionLocal) if settings.PERSISTENCE_ENABLED else None
    registry = SessionRegistry(
        store,
        idle_ttl_seconds=settings.SESSION_IDLE_TTL_SECONDS,
        max_entries=settings.SESSION_MAX_ENTRIES,
        hydrate_limit=settings.HYDRATE_MESSAGE_LIMIT,
        default_locale=settings.DEFAULT_LOCALE,
    )
    backoff = RateLimitBackoff(
        min_spacing_ms=int(settings.LLM_MIN_SPACING_SECONDS * 1000),
        cooldown_ms=int(settings.LLM_COOLDOWN_SECONDS * 1000),
    )
    return ConversationService(
        registry,
        ToolCallingBridge(LLMClient(), backoff),
        store=store,
        catalog=catalog,
        orders=OrderService(catalog, cancel_window_hours=settings.CANCEL_WINDOW_HOURS),
    )


def get_conversation_service() -> ConversationService:
    global _service
    if _service is None:
        with _lock:
            if _service is None:
                _service = build_conversation_service()
                logger.info(
                    "Conversation service initialized",
                    extra_data={
                        "persistence": settings.PERSISTENCE_ENABLED,
                        "llm": _service.llm_ready,
                        "tools": _service.bridge.tools_enabled,
                    },
                )
    return _service


def get_messenger_client() -> MessengerClient:
    global _messenger
    if _messenger is None:
        with _lock:
            if _messenger is None:
                _messenger = MessengerClient()
    return _messenger


def reset_services() -> None:
    """Drop the singletons (tests)"""
    global _catalog, _service, _messenger
    with _lock:
        _catalog = None
        _service = None
        _messenger = None
