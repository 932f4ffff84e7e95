from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Pro Escrow API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    # Used to hash arrival codes at rest
    SECRET_KEY: str = "change-me"

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Arrival verification
    OTP_LENGTH: int = 6
    OTP_EXPIRY_MINUTES: int = 30
    OTP_MAX_ATTEMPTS: int = 3

    NO_SHOW_GRACE_MINUTES: int = 30

    # Rectification timings
    RECTIFICATION_RESPONSE_HOURS: int = 24
    RECTIFICATION_FIX_DEADLINE_HOURS: int = 72
    RECTIFICATION_DISPUTE_ESCALATE_HOURS: int = 72
    MINI_OBSERVATION_DAYS: int = 2
    MAX_RECTIFICATION_ATTEMPTS: int = 2

    # Scheduled job retries (exponential backoff, capped)
    JOB_RETRY_BASE_SECONDS: int = 60
    JOB_RETRY_MAX_SECONDS: int = 3600
    JOB_BATCH_SIZE: int = 100

    # Payment gateway (REST, bearer key)
    PAYMENT_GATEWAY_URL: str = ""
    PAYMENT_GATEWAY_API_KEY: str = ""
    PAYMENT_GATEWAY_TIMEOUT: int = 25
    PAYMENT_GATEWAY_SANDBOX: bool = False  # If True, skip the real gateway and return synthetic success (local dev)

    # Notification delivery (fire-and-forget webhook). Empty = record only.
    NOTIFICATION_WEBHOOK_URL: str = ""
    NOTIFICATION_BATCH_SIZE: int = 50


settings = Settings()


# tier -> (observation days, commitment fee %)
TIER_CONFIG = {
    1: {"label": "Tier 1 - Visual / Immediate", "observation_days": 3, "commitment_fee_percent": 20},
    2: {"label": "Tier 2 - Functional", "observation_days": 5, "commitment_fee_percent": 25},
    3: {"label": "Tier 3 - Complex / Specialist", "observation_days": 7, "commitment_fee_percent": 30},
    4: {"label": "Tier 4 - Custom / Project", "observation_days": 14, "commitment_fee_percent": 30},
}


def get_tier_config(tier: int) -> dict:
    try:
        return TIER_CONFIG[int(tier)]
    except (KeyError, TypeError, ValueError):
        raise ValueError(f"unknown tier: {tier}")
