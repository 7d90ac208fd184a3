"""
Platform Configuration Management

Centralizes all configuration for the tenant control plane.
Supports multiple environments (local, dev, prod) with proper secret management.
"""

import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Bundled change scripts shipped with the package
DEFAULT_CHANGE_SCRIPTS_PATH = str(Path(__file__).resolve().parent / "change_scripts")


class Environment(str, Enum):
    """Supported deployment environments."""

    LOCAL = "local"
    DEV = "dev"
    PROD = "prod"


class PlatformConfig(BaseSettings):
    """
    Platform-wide configuration settings.

    Loads from environment variables with .env file support.
    All secrets should be injected via environment in production.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(default=Environment.LOCAL)

    # Platform Database (stores tenant, plan and domain records)
    platform_mongo_db_url: str = Field(default="mongodb://localhost:27017")
    platform_mongo_db_name: str = Field(default="control_plane")

    # Redis (realtime provisioning broadcasts)
    redis_url: str = Field(default="redis://localhost:6379/0")
    enable_realtime_broadcasts: bool = Field(default=False)

    # Platform URLs
    central_domain: str = Field(default="localhost")
    tenant_url_scheme: str = Field(default="https")
    support_email: str = Field(default="support@localhost")

    # Tenant Provisioning
    tenant_store_prefix: str = Field(default="tenant_")
    change_scripts_path: str = Field(default=DEFAULT_CHANGE_SCRIPTS_PATH)
    default_module_codes: list[str] = Field(default_factory=lambda: ["core"])
    provisioning_workers: int = Field(default=4, ge=1)
    provisioning_max_attempts: int = Field(default=3, ge=1)
    provisioning_backoff_seconds: list[float] = Field(default_factory=lambda: [30.0, 60.0, 120.0])
    provisioning_max_exceptions: int = Field(default=1, ge=1)
    preserve_failed_tenants: bool = Field(default=False)

    # Contact notifications
    notification_webhook_url: Optional[str] = Field(default=None)
    notification_timeout_seconds: float = Field(default=10.0)

    # Audit & Logging
    log_level: str = Field(default="INFO")
    enable_audit_logging: bool = Field(default=True)

    # CORS Configuration
    allowed_origins: str = Field(default="http://localhost:3000")

    @field_validator("tenant_store_prefix")
    @classmethod
    def validate_store_prefix(cls, v: str) -> str:
        """Ensure the store prefix is usable inside a database name."""
        if not re.fullmatch(r"[a-z0-9_]*", v):
            raise ValueError("tenant_store_prefix may only contain lowercase letters, digits and underscores")
        return v

    @field_validator("provisioning_backoff_seconds")
    @classmethod
    def validate_backoff(cls, v: list[float]) -> list[float]:
        """Ensure backoff delays are non-negative."""
        if any(delay < 0 for delay in v):
            raise ValueError("provisioning_backoff_seconds must not contain negative delays")
        return v

    def get_allowed_origins_list(self) -> list[str]:
        """Parse CORS allowed origins into a list."""
        if self.environment == Environment.LOCAL:
            return ["*"]  # Allow all in local development
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    def get_tenant_store_name(self, subdomain: str) -> str:
        """Generate the isolated store name for a tenant subdomain."""
        return f"{self.tenant_store_prefix}{re.sub(r'[^a-z0-9]', '_', subdomain.lower())}"

    def get_tenant_domain(self, subdomain: str) -> str:
        """Build the fully qualified tenant domain."""
        return f"{subdomain}.{self.central_domain}"

    def get_login_url(self, subdomain: str) -> str:
        """Build the URL a tenant admin lands on once the workspace is ready."""
        return f"{self.tenant_url_scheme}://{self.get_tenant_domain(subdomain)}/login"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PROD

    @property
    def is_local(self) -> bool:
        """Check if running in local development environment."""
        return self.environment == Environment.LOCAL


@lru_cache()
def get_config() -> PlatformConfig:
    """
    Get cached platform configuration.

    Uses lru_cache to ensure config is loaded only once.
    """
    return PlatformConfig()


# Export for easy importing
config = get_config()
