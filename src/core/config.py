import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

from .prefect_secrets import env_or_prefect_secret

load_dotenv()
class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = "TradFi vs DeFi Valuations"
    DEBUG: bool = False

    # Database Settings
    # Optional so imports don't fail where the DB url is only available at
    # runtime (e.g. Prefect-managed execution). The store falls back to a
    # local SQLite file when nothing is configured.
    DATABASE_URL: str | None = Field(
        env_or_prefect_secret("DATABASE_URL", "database-url"),
        alias="DATABASE_URL",
    )

    # Prefect Settings
    # These are typically provided by the runtime (Prefect worker/agent).
    PREFECT_API_URL: str | None = os.getenv('PREFECT_API_URL')
    PREFECT_API_KEY: str | None = os.getenv('PREFECT_API_KEY')

    # Provider Settings
    FMP_API_KEY: str | None = env_or_prefect_secret("FMP_API_KEY", "fmp-api-key")
    FMP_DEBUG: bool = False
    COINGECKO_API_KEY: str | None = env_or_prefect_secret("COINGECKO_API_KEY", "coingecko-api-key")
    COINGECKO_RATE_LIMIT_BACKOFF_SECONDS: float = 60.0
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Fetch cycle
    FETCH_INTER_ENTITY_DELAY_SECONDS: float = 0.5
    FETCH_DEADLINE_SECONDS: float = 300.0
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Alerts / scheduled entry point
    ALERT_WEBHOOK_URL: str | None = env_or_prefect_secret("ALERT_WEBHOOK_URL", "alert-webhook-url")
    CRON_SECRET: str | None = env_or_prefect_secret("CRON_SECRET", "cron-secret")

    # Config for Pydantic V2
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore" # Ignore extra env vars not defined here
    )

# Singleton instance to be imported across the app
settings = Settings()
