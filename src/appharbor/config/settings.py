from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="APPHARBOR_",
        env_file=".env",
        extra="ignore",
    )

    # Runtime
    ENVIRONMENT: str = Field(default="dev", description="Environment name")
    HOST: str = Field(default="0.0.0.0", description="Bind host")
    PORT: int = Field(default=7920, description="Bind port")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level for CLI/server")

    # Request context headers
    TENANT_HEADER: str = Field(default="x-tenant-id", description="Tenant header name")
    USER_HEADER: str = Field(default="x-user-id", description="Acting user header name")

    # Database
    DATABASE_URL: str = Field(default="sqlite:///appharbor_dev.db")
    SCHEMA_MODE: str = Field(
        default="create_all",
        description="create_all: auto-create tables (dev), migrations: use Alembic only (prod)",
    )

    # App registry
    DEFAULT_INSTALL_VERSION: str = Field(
        default="1.0.0",
        description="Version recorded when an app is installed before any version is published",
    )
    EXTENSION_PATH_PREFIX: str = Field(
        default="/extensions/",
        description="Only tenant extensions whose implementation_url starts with this prefix are loadable",
    )

    # MCP actions
    MCP_PAYLOAD_LIMIT_BYTES: int = Field(
        default=256 * 1024, description="Maximum serialized MCP action payload size"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
