"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="REQSIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Auth
    auth_mode: Literal["none", "signature"] = Field(
        default="signature",
        description="Authentication mode for incoming requests",
    )
    auth_exempt_paths: tuple[str, ...] = Field(
        default=("/health", "/metrics"),
        description="Paths exempt from signature verification",
    )
    credentials: dict[str, str] = Field(
        default_factory=dict,
        description="Mapping of access key to secret key (JSON)",
    )
    live_minutes: int = Field(
        default=2,
        description="Minutes a signed request stays valid after its timestamp",
    )

    # Headers
    access_key_header: str = Field(
        default="ak",
        description="Header carrying the access key",
    )
    timestamp_header: str = Field(
        default="accessTs",
        description="Header carrying the unix-seconds signing timestamp",
    )
    signature_header: str = Field(
        default="sign",
        description="Header carrying the request signature",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Host for the verifying HTTP service",
    )
    server_port: int = Field(
        default=8080,
        description="Port for the verifying HTTP service",
    )

    # Client
    client_base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL used by the signing client",
    )
    client_timeout: float = Field(
        default=30.0,
        description="Timeout for signed client requests in seconds",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level name",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines",
    )

    def secret_for(self, access_key: str) -> str | None:
        """Look up the secret key for an access key."""
        return self.credentials.get(access_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
