"""Application configuration"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    app_name: str = "Crowdfund Proposals API"
    app_version: str = "0.1.0"
    debug: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"

    # Database (event journal)
    database_url: str = "sqlite+aiosqlite:///./crowdfund.db"
    database_pool_size: int = 10  # ignored for SQLite
    journal_enabled: bool = True

    # Proposal lifecycle
    cooldown_seconds: int = 86400  # between execution and profit distribution
    allow_funding_reopen: bool = False  # proposer may reopen a closed funding window

    # Ledger of record; unset means in-memory transfers (demo mode)
    ledger_url: Optional[str] = None
    ledger_timeout_seconds: float = 10.0

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
