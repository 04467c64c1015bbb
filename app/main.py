"""
Bangla Sales Assistant - Main FastAPI Application
"""
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.api.realtime.chat_socket import hub, router as chat_socket_router
from app.api.webhooks.facebook import router as facebook_router
from app.api.webhooks.zapier import router as zapier_router
from app.db.database import engine, create_tables

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)

_STARTED_AT = time.monotonic()


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "Products", "description": "Storefront catalog search for the chat widget."},
    {"name": "Webhooks", "description": "Facebook Messenger and Zapier chat ingress."},
    {"name": "Health", "description": "Liveness and status probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Bangla-speaking storefront sales assistant. Chat over `/ws/chat`, "
        "Messenger and Zapier webhooks, catalog search and order placement."
    ),
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging, webhook rate limit)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local frontend development without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")
app.include_router(facebook_router, prefix="/webhooks")
app.include_router(zapier_router, prefix="/webhooks")
app.include_router(chat_socket_router)


@app.on_event("startup")
async def startup() -> None:
    """Create chat tables when persistence is on"""
    logger.info(
        "Starting application",
        extra_data={
            "app_name": settings.APP_NAME,
            "llm": settings.USE_LLM and bool(settings.OPENAI_API_KEY),
            "catalog": settings.catalog_configured,
            "persistence": settings.PERSISTENCE_ENABLED,
        }
    )
    if settings.PERSISTENCE_ENABLED:
        await create_tables()
        logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    from app.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="Process is up and answering. Does not touch external dependencies.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/healthz",
    summary="Status probe",
    description="Uptime, build version and the number of open chat sockets.",
    responses={
        200: {
            "content": {
                "application/json": {
                    "example": {"ok": True, "uptime": 12.5, "version": "1.0.0", "activeSockets": 3}
                }
            },
        },
    },
    tags=["Health"],
)
async def healthz() -> dict:
    return {
        "ok": True,
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "version": settings.APP_VERSION,
        "activeSockets": hub.active,
    }
