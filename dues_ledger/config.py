from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via .env file or environment variables.
    """

    # Registry database (tenants and principals)
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/registry.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Tenant storage
    # "database": one physical database per tenant
    # "shared": one database, every table keyed by tenant_id
    TENANCY_STRATEGY: Literal["database", "shared"] = "database"
    TENANT_DATABASE_URL_TEMPLATE: str = "sqlite+aiosqlite:///./data/tenants/{storage_id}.db"
    SHARED_DATABASE_URL: str | None = None
    SHARED_STORAGE_ID: str = "shared"

    # Per-handle limits
    TENANT_POOL_SIZE: int = 2
    TENANT_POOL_MAX_OVERFLOW: int = 8
    TENANT_MAX_CONCURRENT_OPS: int = 10

    # Timeouts (seconds)
    HANDLE_CONNECT_TIMEOUT: float = 10.0
    PROVISION_TIMEOUT: float = 30.0
    HANDLE_IDLE_TIMEOUT: float = 300.0
    POOL_SWEEP_INTERVAL: float = 60.0

    # Default tenant for principals without a tenant binding
    DEFAULT_TENANT_NAME: str = "Demo Organization"
    DEFAULT_TENANT_SLUG: str = "demo"
    DEFAULT_TENANT_STORAGE_ID: str = "demo-tenant"

    # JWT Authentication
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    # Application
    APP_NAME: str = "Dues Ledger API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: str = ""
    CORS_ALLOW_CREDENTIALS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @field_validator("TENANT_DATABASE_URL_TEMPLATE")
    @classmethod
    def _template_has_placeholder(cls, v: str) -> str:
        if "{storage_id}" not in v:
            raise ValueError("TENANT_DATABASE_URL_TEMPLATE must contain '{storage_id}'")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from comma-separated string"""
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def shared_database_url(self) -> str:
        """Shared-table partition URL, defaulting to the registry database"""
        return self.SHARED_DATABASE_URL or self.DATABASE_URL

    def tenant_database_url(self, storage_id: str) -> str:
        """Build the per-tenant database URL for a storage identifier"""
        return self.TENANT_DATABASE_URL_TEMPLATE.format(storage_id=storage_id)


# Global settings instance
settings = Settings()
