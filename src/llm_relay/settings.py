"""Настройки приложения (env + `.env`) и неизменяемая политика relay."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic-настройки (всё, что обычно лежит в `.env`)."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = Field(default="local", validation_alias="APP_ENV")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    enforce_include_usage: bool = Field(default=False, validation_alias="ENFORCE_INCLUDE_USAGE")
    openrouter_provider_sort: str = Field(default="", validation_alias="OPENROUTER_PROVIDER_SORT")
    openrouter_referer: str = Field(
        default="https://github.com/llm-relay/llm-relay",
        validation_alias="OPENROUTER_REFERER",
    )
    openrouter_title: str = Field(default="LLM Relay", validation_alias="OPENROUTER_TITLE")

    relay_timeout_seconds: float = Field(default=600.0, validation_alias="RELAY_TIMEOUT_SECONDS")
    ali_image_poll_interval_seconds: float = Field(
        default=2.0,
        validation_alias="ALI_IMAGE_POLL_INTERVAL_SECONDS",
    )
    ali_image_poll_max_attempts: int = Field(default=60, validation_alias="ALI_IMAGE_POLL_MAX_ATTEMPTS")

    # Один канал на процесс: выбор канала/ретраи живут снаружи.
    channel_id: int = Field(default=1, validation_alias="CHANNEL_ID")
    channel_type: str = Field(default="openai", validation_alias="CHANNEL_TYPE")
    channel_base_url: str | None = Field(default=None, validation_alias="CHANNEL_BASE_URL")
    channel_api_key: str = Field(default="", validation_alias="CHANNEL_API_KEY")
    channel_api_version: str = Field(
        default="2024-03-01-preview",
        validation_alias="CHANNEL_API_VERSION",
    )
    channel_plugin: str = Field(default="", validation_alias="CHANNEL_PLUGIN")
    channel_model_mapping: dict[str, str] = Field(
        default_factory=dict,
        validation_alias="CHANNEL_MODEL_MAPPING",
    )
    channel_model_ratio: dict[str, float] = Field(
        default_factory=dict,
        validation_alias="CHANNEL_MODEL_RATIO",
    )


@dataclass(frozen=True)
class RelayPolicy:
    """Политики процесса, которые адаптеры получают явно (через RelayContext)."""

    enforce_include_usage: bool = False
    openrouter_provider_sort: str = ""
    openrouter_referer: str = "https://github.com/llm-relay/llm-relay"
    openrouter_title: str = "LLM Relay"


_settings: Settings | None = None
_policy: RelayPolicy | None = None


def get_settings() -> Settings:
    """Ленивая загрузка настроек (один раз на процесс)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_policy() -> RelayPolicy:
    """Политика relay, собранная из настроек (один раз на процесс)."""
    global _policy
    if _policy is None:
        settings = get_settings()
        _policy = RelayPolicy(
            enforce_include_usage=settings.enforce_include_usage,
            openrouter_provider_sort=settings.openrouter_provider_sort,
            openrouter_referer=settings.openrouter_referer,
            openrouter_title=settings.openrouter_title,
        )
    return _policy
