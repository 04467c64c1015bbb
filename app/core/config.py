"""
Application Configuration
"""
from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    APP_NAME: str = "Sales Assistant Bot"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS
    # Comma-separated list of allowed origins (e.g. "https://shop.example.com")
    ALLOWED_ORIGINS: str = ""

    # Session store (best-effort persistence)
    PERSISTENCE_ENABLED: bool = True
    DATABASE_URL: str = "sqlite+aiosqlite:///./data.sqlite"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgres:// or postgresql:// to postgresql+asyncpg:// for async support"""
        if v:
            if v.startswith("postgres://"):
                return v.replace("postgres://", "postgresql+asyncpg://", 1)
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Redis (catalog response cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    CATALOG_CACHE_ENABLED: bool = True
    CATALOG_CACHE_TTL_SECONDS: int = 60
    SHIPPING_CACHE_TTL_SECONDS: int = 300

    # Language model provider
    USE_LLM: bool = True
    USE_LLM_TOOLING: bool = True
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_VISION_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.4
    LLM_TIMEOUT_SECONDS: float = 12.0
    VISION_TIMEOUT_SECONDS: float = 15.0
    LLM_HISTORY_LIMIT: int = 40

    # Rate-limit backoff
    LLM_MIN_SPACING_SECONDS: float = 2.5
    LLM_COOLDOWN_SECONDS: float = 10.0

    @field_validator("LLM_MIN_SPACING_SECONDS", "LLM_COOLDOWN_SECONDS", mode="after")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("backoff intervals must not be negative")
        return v

    # Pacing / conversation
    WAIT_NOTICE_WINDOW_SECONDS: float = 5.0
    PACING_ENABLED: bool = True
    MAX_MESSAGE_CHARS: int = 1000
    DEFAULT_LOCALE: str = "bn-BD"

    # Session registry lifecycle
    SESSION_IDLE_TTL_SECONDS: int = 6 * 60 * 60
    SESSION_MAX_ENTRIES: int = 10_000
    HYDRATE_MESSAGE_LIMIT: int = 100

    # Real-time channel
    HEARTBEAT_INTERVAL_SECONDS: float = 20.0

    # WooCommerce catalog
    WC_BASE_URL: str = "https://dhakacarts.com"
    WC_CONSUMER_KEY: str = ""
    WC_CONSUMER_SECRET: str = ""
    WC_SHIPPING_METHOD_ID: str = "flat_rate"
    WC_SHIPPING_TITLE: str = "Flat Rate"
    WC_SHIPPING_FEE: str = "0.00"
    WC_USE_ZONE_SHIPPING: bool = True
    WC_TIMEOUT_SECONDS: float = 15.0

    @field_validator("WC_BASE_URL", mode="before")
    @classmethod
    def normalize_wc_url(cls, v: str) -> str:
        return (v or "").rstrip("/")

    # Orders / shipping
    CANCEL_WINDOW_HOURS: int = 24
    HOME_DISTRICT_KEYWORDS: str = "dhaka,ঢাকা"
    CURRENT_OFFER_TEXT: str = "আজ অর্ডার করলে ফ্রি ডেলিভারি।"
    CURRENT_OFFER_CODE: str = "FREE_DELIVERY"

    # Facebook Messenger webhook
    FB_VERIFY_TOKEN: str = ""
    FB_PAGE_TOKEN: str = ""
    FB_APP_SECRET: str = ""
    FB_GRAPH_URL: str = "https://graph.facebook.com/v18.0"

    # Webhook rate limiting
    WEBHOOK_RATE_LIMIT_MAX_REQUESTS: int = 100
    WEBHOOK_RATE_LIMIT_WINDOW_SECONDS: int = 60

    # File uploads (served by an external static host)
    UPLOAD_DIR: str = "./uploads"
    PUBLIC_ORIGIN: Optional[str] = None

    @property
    def home_district_keywords(self) -> list[str]:
        return [k.strip().lower() for k in self.HOME_DISTRICT_KEYWORDS.split(",") if k.strip()]

    @property
    def catalog_configured(self) -> bool:
        return bool(self.WC_CONSUMER_KEY and self.WC_CONSUMER_SECRET)

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
