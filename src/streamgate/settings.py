"""
Settings Management Module

Provides pydantic-based configuration management with:
- YAML configuration file loading
- Environment variable overrides (STREAMGATE_*, nested with "__")
- Multi-environment support (config.{environment}.yaml)

Every feature degrades gracefully when unconfigured: without a token secret
the secure proxy answers 503, without an ad tag or decision URL ads are
disabled, and without a worker or public base URL sources are returned raw.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigError
from .types import AdSlot


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class AdSettings(BaseModel):
    """Ad tag and resolution settings."""

    vast_url: Optional[str] = None
    preroll_url: Optional[str] = None
    midroll_url: Optional[str] = None
    decision_url: Optional[str] = None

    client_timeout: float = 8.0
    server_timeout: float = 9.0
    max_wrapper_depth: int = 3

    normalize_urls = field_validator(
        "vast_url", "preroll_url", "midroll_url", "decision_url", mode="before"
    )(_blank_to_none)

    @property
    def enabled(self) -> bool:
        return any((self.vast_url, self.preroll_url, self.midroll_url, self.decision_url))

    def tag_url_for(self, slot: AdSlot | str) -> Optional[str]:
        """Return the ad tag for a slot.

        Mid-roll prefers its own tag, then the shared tag, then the pre-roll
        tag; pre-roll mirrors that order.
        """
        if AdSlot.parse(slot) is AdSlot.MIDROLL:
            return self.midroll_url or self.vast_url or self.preroll_url
        return self.preroll_url or self.vast_url or self.midroll_url


class ProxySettings(BaseModel):
    """Secure playlist proxy and proxy token settings."""

    token_secret: Optional[str] = None
    token_ttl_seconds: int = 6 * 60 * 60
    worker_key: Optional[str] = None
    worker_base_url: Optional[str] = None
    public_base_url: Optional[str] = None
    path: str = "/secure-proxy"
    user_agent: str = DEFAULT_USER_AGENT

    normalize_blanks = field_validator(
        "token_secret", "worker_key", "worker_base_url", "public_base_url", mode="before"
    )(_blank_to_none)


class ProviderSettings(BaseModel):
    """Settings for a single upstream source provider."""

    enabled: bool = True
    base_url: Optional[str] = None
    timeout: float = 12.0
    label: Optional[str] = None
    provider: Optional[str] = None

    normalize_blanks = field_validator("base_url", "label", "provider", mode="before")(
        _blank_to_none
    )


class ProvidersSettings(BaseModel):
    """Built-in providers, queried in declaration order."""

    opuk: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            base_url="https://www.opuk.cc", timeout=12.0, label="Amsterdam", provider="amsterdam"
        )
    )
    vixsrc: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            base_url="https://vixsrc.to", timeout=12.0, label="Berlin", provider="berlin"
        )
    )
    playlist: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(enabled=False, timeout=10.0)
    )
    sourcelist: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(enabled=False, timeout=10.0)
    )


class HttpSettings(BaseModel):
    """HTTP client pool settings."""

    timeout: float = 30.0
    tracking_timeout: float = 5.0
    max_connections: int = 20
    max_keepalive_connections: int = 10
    keepalive_expiry: float = 5.0
    verify_ssl: bool = True
    tracking_verify_ssl: bool = False


class LoggingSettings(BaseModel):
    """structlog output settings."""

    level: str = "INFO"
    json_output: bool = False


class Settings(BaseSettings):
    """
    Main application settings.

    Configuration hierarchy (lowest to highest precedence):
    1. settings/config.yaml (base)
    2. settings/config.{environment}.yaml (environment-specific)
    3. Environment variables (STREAMGATE_*)

    Examples:
        >>> settings = get_settings()
        >>> settings.ads.tag_url_for("midroll")
        >>> settings.proxy.token_secret is None
        True
    """

    model_config = SettingsConfigDict(
        env_prefix="STREAMGATE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"
    metrics_enabled: bool = False

    ads: AdSettings = Field(default_factory=AdSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    providers: ProvidersSettings = Field(default_factory=ProvidersSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs; the environment still wins.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def load_from_yaml(cls, config_path: Path | None = None) -> "Settings":
        """
        Load settings from a YAML configuration file.

        Args:
            config_path: Path to config file (default: settings/config.yaml
                in the project root, or $STREAMGATE_CONFIG_FILE)

        Returns:
            Settings instance

        Raises:
            ConfigError: If a configuration file exists but is not a mapping
        """
        if config_path is None:
            env_path = os.getenv("STREAMGATE_CONFIG_FILE")
            if env_path:
                config_path = Path(env_path)
            else:
                project_root = Path(__file__).resolve().parents[2]
                config_path = project_root / "settings" / "config.yaml"

        if not config_path.exists():
            return cls()

        config_data = cls._read_yaml(config_path)

        env = os.getenv("STREAMGATE_ENVIRONMENT", config_data.get("environment", "development"))
        env_config_path = config_path.parent / f"config.{env}.yaml"
        if env_config_path.exists():
            config_data = cls._deep_merge(config_data, cls._read_yaml(env_config_path))

        return cls(**config_data)

    @staticmethod
    def _read_yaml(path: Path) -> dict[str, Any]:
        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError("Invalid YAML configuration", {"path": str(path)}) from e
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping", {"path": str(path)})
        return data

    @staticmethod
    def _deep_merge(base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = Settings._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


@lru_cache
def get_settings(config_path: Path | None = None) -> Settings:
    """Get cached settings instance."""
    return Settings.load_from_yaml(config_path)


def reload_settings() -> Settings:
    """Reload settings by clearing cache."""
    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "Settings",
    "AdSettings",
    "ProxySettings",
    "ProviderSettings",
    "ProvidersSettings",
    "HttpSettings",
    "LoggingSettings",
    "DEFAULT_USER_AGENT",
    "get_settings",
    "reload_settings",
]
