"""
PreOrder Manager — Configuration
"""
from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class PeakWindow(BaseModel):
    """Local time-of-day range (both ends inclusive) with a prep multiplier."""

    name: str
    start: str
    end: str
    multiplier: float


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "preorder-manager"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8006
    LOG_LEVEL: str = "INFO"

    # ── PostgreSQL (PreOrder DB) ──────────────────────────────
    POSTGRES_HOST: str = "preorder-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "preorder_db"
    POSTGRES_USER: str = "preorder_user"
    POSTGRES_PASSWORD: str = "preorder_pass"
    DATABASE_URL: str | None = None

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis (change feed) / Celery Broker ────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def celery_broker_url(self) -> str:
        return self.redis_url

    @property
    def celery_result_backend(self) -> str:
        return self.redis_url

    # ── Calendar ─────────────────────────────────────────────
    # Vendor-local IANA zone used for time-of-day and calendar-day logic.
    TIMEZONE: str = "UTC"

    # ── Admission Windows (minutes of lead time) ──────────────
    STANDARD_ADVANCE_MINUTES: int = 60
    PREMIUM_ADVANCE_MINUTES: int = 120

    # ── Wait-Time Estimation ─────────────────────────────────
    DEFAULT_PREP_MINUTES: float = 15
    BUFFER_MINUTES: float = 5
    UNKNOWN_CATEGORY_PREP_MINUTES: float = 10
    CATEGORY_PREP_MINUTES: dict[str, float] = {
        "burger": 12,
        "pizza": 15,
        "asian": 10,
        "mexican": 8,
        "salad": 5,
        "dessert": 3,
    }
    PEAK_WINDOWS: list[PeakWindow] = [
        PeakWindow(name="lunch", start="11:30", end="13:30", multiplier=1.5),
        PeakWindow(name="dinner", start="18:00", end="20:00", multiplier=1.3),
    ]

    # ── Recurring Orders ─────────────────────────────────────
    MAX_RECURRING_WEEKS: int = 12
    RECURRING_RUN_HOUR: int = 0
    RECURRING_RUN_MINUTE: int = 5

    # ── Optimistic Locking Retry (queue counters) ─────────────
    OPT_LOCK_MAX_RETRIES: int = 5
    OPT_LOCK_BASE_DELAY_MS: int = 20
    OPT_LOCK_MAX_DELAY_MS: int = 500
    OPT_LOCK_JITTER_MS: int = 20

    # ── Downstream Services ────────────────────────────────────
    NOTIFICATION_HUB_URL: str = "http://notification-hub:8005"
    HTTP_TIMEOUT_SECONDS: float = 3.0

    # ── SSE ───────────────────────────────────────────────────
    SSE_KEEPALIVE_INTERVAL_SECONDS: int = 15
    SSE_RETRY_MILLISECONDS: int = 3000

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
