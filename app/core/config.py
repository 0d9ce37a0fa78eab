from functools import lru_cache

import orjson
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://localhost:5173")


def parse_origins(raw: str | None) -> list[str]:
    """CORS_ORIGINS as a comma list or a JSON array; blank or unparseable falls back to the dev origins."""
    text = (raw or "").strip()
    if text.startswith("["):
        try:
            values = orjson.loads(text)
        except orjson.JSONDecodeError:
            values = []
    else:
        values = text.split(",")
    origins = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    return origins or list(DEFAULT_CORS_ORIGINS)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    env: str = Field(default="development", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    # Signs session tokens; shared with the chat app that issues them
    secret_key: str = Field(default="change-me-in-production-min-32-chars", alias="SECRET_KEY")

    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="tokenpay", alias="MONGODB_DB_NAME")
    # Needs a replica set. Off: capture and credit are paired by compensating writes
    mongodb_transactions: bool = Field(default=False, alias="MONGODB_TRANSACTIONS")

    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    razorpay_key_id: str = Field(default="", alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: str = Field(default="", alias="RAZORPAY_KEY_SECRET")
    razorpay_webhook_secret: str = Field(default="", alias="RAZORPAY_WEBHOOK_SECRET")

    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")
    cors_origins_raw: str = Field(default=",".join(DEFAULT_CORS_ORIGINS), alias="CORS_ORIGINS")

    default_currency: str = Field(default="INR", alias="DEFAULT_CURRENCY")
    order_ttl_minutes: int = Field(default=30, alias="ORDER_TTL_MINUTES")
    expiry_sweep_minutes: int = Field(default=5, alias="EXPIRY_SWEEP_MINUTES")

    @field_validator("order_ttl_minutes", "expiry_sweep_minutes")
    @classmethod
    def _positive_minutes(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1 minute")
        return v

    @field_validator("default_currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def cors_origins(self) -> list[str]:
        return parse_origins(self.cors_origins_raw)


@lru_cache
def get_settings() -> Settings:
    return Settings()
