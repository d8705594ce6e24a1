"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI routes, the OAuth handshake
and the credential manager share one consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class GoogleSettings(BaseSettings):
    """Configuration required for interacting with Google APIs."""

    client_id: str = Field(..., validation_alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="GOOGLE_REDIRECT_URI")


class OAuthSettings(BaseSettings):
    """OAuth flow and token lifecycle configuration."""

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "openid",
            "email",
            "profile",
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/drive.readonly",
            "https://www.googleapis.com/auth/calendar.readonly",
        ),
        validation_alias="OAUTH_SCOPES",
    )
    refresh_buffer_seconds: int = Field(
        300,
        validation_alias="OAUTH_REFRESH_BUFFER_SECONDS",
        description="Refresh access tokens this long before they expire.",
    )
    refresh_attempts: int = Field(3, validation_alias="OAUTH_REFRESH_ATTEMPTS")
    refresh_backoff_seconds: float = Field(
        2.0, validation_alias="OAUTH_REFRESH_BACKOFF_SECONDS"
    )
    default_token_ttl_seconds: int = Field(
        3600,
        validation_alias="OAUTH_DEFAULT_TOKEN_TTL_SECONDS",
        description="Assumed lifetime when the token endpoint omits expiry data.",
    )
    http_timeout_seconds: float = Field(
        10.0, validation_alias="OAUTH_HTTP_TIMEOUT_SECONDS"
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    token_encryption_previous_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Retired secrets that may still decrypt stored tokens.",
    )
    session_secret: Optional[str] = Field(
        None,
        validation_alias="SESSION_SECRET",
        description="HMAC key for OAuth state tokens. Defaults to the client secret.",
    )
    session_ttl_seconds: int = Field(86400, validation_alias="SESSION_TTL_SECONDS")
    session_cookie_name: str = Field(
        "workspace_agent_sid", validation_alias="SESSION_COOKIE_NAME"
    )
    session_cookie_secure: bool = Field(
        False, validation_alias="SESSION_COOKIE_SECURE"
    )
    session_save_timeout_seconds: float = Field(
        10.0, validation_alias="SESSION_SAVE_TIMEOUT_SECONDS"
    )

    @field_validator("token_encryption_previous_secrets", mode="before")
    @classmethod
    def _split_secrets(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        if isinstance(value, (tuple, list)):
            return tuple(value)
        return tuple(item.strip() for item in value.split(",") if item.strip())


class StoreSettings(BaseSettings):
    """Document store backing credentials and sessions."""

    backend: Literal["sqlite", "dynamodb"] = Field(
        "sqlite", validation_alias="STORE_BACKEND"
    )
    sqlite_db_path: str = Field(
        "data/workspace_agent.db", validation_alias="SQLITE_DB_PATH"
    )
    dynamodb_table_name: Optional[str] = Field(
        None, validation_alias="DYNAMODB_TABLE_NAME"
    )
    region_name: str = Field("us-east-1", validation_alias="AWS_REGION")
    connect_attempts: int = Field(3, validation_alias="STORE_CONNECT_ATTEMPTS")
    connect_backoff_seconds: float = Field(
        2.0, validation_alias="STORE_CONNECT_BACKOFF_SECONDS"
    )
    connect_timeout_seconds: float = Field(
        10.0, validation_alias="STORE_CONNECT_TIMEOUT_SECONDS"
    )


class ProviderSettings(BaseSettings):
    """Retry, timeout and fallback policy for Gmail, Drive and Calendar calls."""

    max_retries: int = Field(
        3,
        validation_alias="PROVIDER_MAX_RETRIES",
        description="Retries allowed after the first attempt.",
    )
    backoff_seconds: float = Field(1.0, validation_alias="PROVIDER_BACKOFF_SECONDS")
    item_timeout_seconds: float = Field(
        10.0, validation_alias="PROVIDER_ITEM_TIMEOUT_SECONDS"
    )
    demo_fallback_enabled: bool = Field(
        True,
        validation_alias="DEMO_FALLBACK_ENABLED",
        description="Serve demo data instead of surfacing provider failures.",
    )
    mail_page_size: int = Field(10, validation_alias="MAIL_PAGE_SIZE")
    files_page_size: int = Field(10, validation_alias="FILES_PAGE_SIZE")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    post_signin_redirect: str = Field(
        "/tabs/personal/index.html", validation_alias="POST_SIGNIN_REDIRECT"
    )
    post_signout_redirect: str = Field(
        "/tabs/personal/index.html", validation_alias="POST_SIGNOUT_REDIRECT"
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "OAuthSettings",
    "ProviderSettings",
    "SecuritySettings",
    "StoreSettings",
    "get_settings",
]
