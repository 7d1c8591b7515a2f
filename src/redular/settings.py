"""
Configuration record for a Redular instance.

All fields can be set via ``REDULAR_*`` environment variables (e.g.
``REDULAR_REDIS_HOST=cache.internal``) or a ``.env`` file. Explicit keyword
arguments passed to :class:`~redular.scheduler.Redular` override them.

Tags:
    redular, configuration, settings, pydantic, environment

Doc-Types:
    api-reference
"""

from __future__ import annotations

from urllib.parse import quote

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from redis.connection import parse_url


class RedularSettings(BaseSettings):
    """Redular configuration.

    Fields
    ──────
    id            : Instance id (generated when unset)
    auto_config   : Enable keyspace expiry notifications on start
    data_expiry   : Seconds a payload outlives its event key
    redis_*       : Store connection parameters
    redis_url     : Full URL, overrides the host/port/db/password fields
    log_level     : structlog log level
    log_format    : ``json`` or ``console``
    """

    model_config = SettingsConfigDict(
        env_prefix="REDULAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Instance ─────────────────────────────────────────────────
    id: str | None = Field(default=None, description="Instance id; generated when unset")
    auto_config: bool = Field(default=False)
    data_expiry: int = Field(default=30, ge=0, description="Payload grace period in seconds")

    # ── Redis ────────────────────────────────────────────────────
    redis_host: str = Field(default="127.0.0.1")
    redis_port: int = Field(default=6379)
    redis_password: str | None = Field(default=None)
    redis_db: int = Field(default=0, ge=0)
    redis_url: str | None = Field(default=None)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @property
    def connection_url(self) -> str:
        """Redis URL built from the individual fields unless ``redis_url`` is set."""
        if self.redis_url:
            return self.redis_url
        auth = f":{quote(self.redis_password, safe='')}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def database(self) -> int:
        """Database index the clients connect to (and whose expirations fire)."""
        if self.redis_url:
            return int(parse_url(self.redis_url).get("db", 0))
        return self.redis_db


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, RedularSettings] = {}


def get_settings(*, _force_reload: bool = False) -> RedularSettings:
    """Load, validate, and cache a :class:`RedularSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = RedularSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["RedularSettings", "get_settings", "clear_settings_cache"]
