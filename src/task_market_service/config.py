"""
Configuration management for the task market service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEY_FRAGMENTS: tuple[str, ...] = ("password", "secret", "token", "api_key", "private_key")


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_path: str
    timeout_seconds: int


class CategoriesConfig(BaseModel):
    """Category catalogue service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    category_path: str
    timeout_seconds: int


class RealtimeConfig(BaseModel):
    """Realtime gateway connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    deliver_path: str
    timeout_seconds: int


class PushConfig(BaseModel):
    """Push notification gateway connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    send_path: str
    timeout_seconds: int


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class FeesConfig(BaseModel):
    """Fallback fee policy used until an administrator stores one."""

    model_config = ConfigDict(extra="forbid")
    default_platform_fee_percentage: float = Field(ge=0, le=100)
    default_commission_percentage: float = Field(ge=0, le=100)
    default_trust_and_support_fee: float = Field(ge=0)


class ListingConfig(BaseModel):
    """Page sizes for list endpoints."""

    model_config = ConfigDict(extra="forbid")
    task_page_size: int = Field(gt=0)
    notification_page_size: int = Field(gt=0)


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    categories: CategoriesConfig
    realtime: RealtimeConfig
    push: PushConfig
    request: RequestConfig
    fees: FeesConfig
    listing: ListingConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and validate settings from the YAML config file.

    The result is cached; call clear_settings_cache() to force a reload.

    Raises:
        FileNotFoundError: If the config file does not exist
        pydantic.ValidationError: If the file is missing required values
    """
    config_path = get_config_path()
    if not config_path.is_file():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as config_file:
        raw = yaml.safe_load(config_file)

    if not isinstance(raw, dict):
        msg = f"Configuration file must contain a mapping: {config_path}"
        raise ValueError(msg)

    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Clear the cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER
            if any(fragment in key.lower() for fragment in _SENSITIVE_KEY_FRAGMENTS)
            else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted
