import secrets
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: Path = Field(default=Path("./data"))

    # HTTP server
    port: int = Field(default=3000)
    cors_origin: str = Field(default="")
    reverse_proxy: bool = Field(default=False)

    # Authentication
    jwt_secret: str = Field(default="")
    jwt_secret_generated: bool = Field(default=False, exclude=True)
    token_expiration: str = Field(default="7d")

    # Upstream Miniflux (environment configuration wins over manual config)
    miniflux_url: str = Field(default="")
    miniflux_api_key: str = Field(default="")
    miniflux_username: str = Field(default="")
    miniflux_password: str = Field(default="")

    # Application
    debug: bool = Field(default=False)
    scheduler_enabled: bool = Field(default=True)

    @field_validator("miniflux_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def cors_origins(self) -> list[str]:
        """Allowed CORS origins, `*` when CORS_ORIGIN is unset."""
        if not self.cors_origin:
            return ["*"]
        return [o.strip().rstrip("/") for o in self.cors_origin.split(",") if o.strip()]

    @property
    def miniflux_env_configured(self) -> bool:
        has_basic = bool(self.miniflux_username and self.miniflux_password)
        return bool(self.miniflux_url) and (bool(self.miniflux_api_key) or has_basic)


class DigestConfig:
    """Digest generation tunables from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.article_limit: int = data.get("article_limit", 500)
        self.batch_size: int = data.get("batch_size", 20)
        self.safe_content_length: int = data.get("safe_content_length", 50_000)
        self.max_tokens_per_article: int = data.get("max_tokens_per_article", 1000)
        self.default_target_lang: str = data.get("default_target_lang", "zh-CN")


class SchedulerConfig:
    """Scheduler timing from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.initial_delay_seconds: int = data.get("initial_delay_seconds", 10)
        self.tick_offset_seconds: int = data.get("tick_offset_seconds", 5)


class UpstreamConfig:
    """Miniflux client behaviour from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.timeout_seconds: float = data.get("timeout_seconds", 30.0)
        self.max_retries: int = data.get("max_retries", 3)
        self.retry_delay_seconds: float = data.get("retry_delay_seconds", 0.5)


class LLMConfig:
    """LLM endpoint defaults from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.default_model: str = data.get("default_model", "gpt-4.1-mini")
        self.default_temperature: float = data.get("default_temperature", 1)
        self.timeout_seconds: float = data.get("timeout_seconds", 600.0)


class AppConfig:
    """Combined application configuration from .env and config.yml."""

    def __init__(self, config_path: Path | None = None) -> None:
        self.settings = get_settings()
        self._load_yaml(config_path or Path("config.yml"))

    def _load_yaml(self, config_path: Path) -> None:
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        else:
            data = {}

        self.digest = DigestConfig(data.get("digest", {}))
        self.scheduler = SchedulerConfig(data.get("scheduler", {}))
        self.upstream = UpstreamConfig(data.get("upstream", {}))
        self.llm = LLMConfig(data.get("llm", {}))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    if not settings.jwt_secret:
        # Sessions will not survive a restart; warned about at startup.
        settings.jwt_secret = secrets.token_hex(32)
        settings.jwt_secret_generated = True
    return settings


@lru_cache
def get_config() -> AppConfig:
    """Get cached full config instance."""
    return AppConfig()
