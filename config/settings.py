"""
Configuration settings for the application
"""
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Storage backends
STORAGE_MEMORY = "memory"
STORAGE_SQL = "sql"

# Stripe API version the subscription response shape depends on
# (latest_invoice.payment_intent was removed from invoices in later versions)
DEFAULT_STRIPE_API_VERSION = "2024-12-18.acacia"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_publishable_key: Optional[str] = Field(default=None, alias="STRIPE_PUBLISHABLE_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_api_version: str = Field(default=DEFAULT_STRIPE_API_VERSION, alias="STRIPE_API_VERSION")

    # Billing behaviour
    currency: str = Field(default="usd", alias="CURRENCY")
    gateway_timeout_seconds: float = Field(default=10.0, gt=0, alias="GATEWAY_TIMEOUT_SECONDS")

    # Infrastructure configuration
    storage_backend: str = Field(default=STORAGE_MEMORY, alias="STORAGE_BACKEND")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    rate_limit_per_minute: int = Field(default=60, gt=0, alias="RATE_LIMIT_PER_MINUTE")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    logs_dir: Path = Field(default=Path("./logs"), alias="LOGS_DIR")

    # Render.com deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")
    render_external_url: Optional[str] = Field(default=None, alias="RENDER_EXTERNAL_URL")
    render_service_name: Optional[str] = Field(default=None, alias="RENDER_SERVICE_NAME")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or bool(settings.env and settings.env.lower() == "production")
