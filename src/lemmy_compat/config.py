"""Configuration models for the compatibility proxy.

Values come from keyword arguments, an optional YAML file and ``COMPAT_``
prefixed environment variables (nested fields use ``__``, for example
``COMPAT_CONFIG__MAX_PAGE_WALK``). The upstream address is read from
``LEMMY_UPSTREAM`` like the legacy deployment, ``COMPAT_UPSTREAM`` also works.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TranslationPolicy(BaseModel):
    """What to do with a request whose fields could not all be translated."""

    abort_on_required: bool = True
    abort_on_optional: bool = False


class ProxyConfig(BaseModel):
    upstream_timeout_seconds: float = Field(default=30.0, gt=0)
    connect_timeout_seconds: float = Field(default=5.0, gt=0)
    # Deepest legacy page resolved by following upstream cursors
    max_page_walk: int = Field(default=10, ge=0)
    lift_legacy_auth: bool = True
    disconnect_poll_interval_ms: int = Field(default=100, ge=10)
    translation: TranslationPolicy = TranslationPolicy()


class ProxySettings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COMPAT_",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    upstream: str = Field(
        validation_alias=AliasChoices("upstream", "LEMMY_UPSTREAM", "COMPAT_UPSTREAM")
    )
    upstream_scheme: str = "http"
    environment: str = "dev"
    log_level: str = "INFO"
    bind_host: str = "127.0.0.1"
    bind_port: int = 8536
    legacy_prefix: str = "/api/v3"
    upstream_prefix: str = "/api/v3"
    internal_prefix: str = "/_compat"
    config: ProxyConfig = ProxyConfig()

    def __init__(self, _config_file: Optional[str] = None, **values: Any) -> None:
        file_values: Dict[str, Any] = {}
        if _config_file:
            cfg_path = Path(_config_file)
            if cfg_path.exists():
                loaded = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
                if isinstance(loaded, dict):
                    file_values = loaded
        merged = {**file_values, **values}
        super().__init__(**merged)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("upstream")
    @classmethod
    def validate_upstream(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("upstream address must not be empty")
        return v

    @property
    def upstream_base_url(self) -> str:
        if "://" in self.upstream:
            return self.upstream
        return f"{self.upstream_scheme}://{self.upstream}"
