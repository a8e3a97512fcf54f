"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_BASE_PATH = Path(os.environ.get("RECO_BASE_PATH", Path.cwd()))
ENV_FILE_PATH = APP_BASE_PATH / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Transaction store (remote data API)
    store_api_url: str = Field(default="http://localhost:8000/api")
    store_timeout_seconds: float = Field(default=30.0)
    store_max_concurrency: int = Field(default=8, ge=1)
    store_retry_attempts: int = Field(default=3, ge=1)

    # Money
    amount_decimal_places: int = Field(default=3, ge=0)
    tax_tolerance: Decimal = Field(default=Decimal("0"), ge=0)

    # Audit trail; written to reports_dir after each run when enabled
    audit_export: bool = Field(default=False)
    reports_dir: Path = Field(default=Path("./data/reports"))

    @property
    def amount_quantum(self) -> Decimal:
        """Smallest representable monetary step, e.g. Decimal('0.001')."""
        return Decimal(1).scaleb(-self.amount_decimal_places)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
