"""Jackpot helper configuration management.

Configuration sources (in priority order):
1. Environment variables (DEJ_ prefix)
2. Config file (config.yaml)
3. Defaults
"""

from __future__ import annotations

import os
import socket
import uuid
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dejackpot.errors import ConfigError


class DatabaseConfig(BaseModel):
    """Database configuration."""

    # Local/dev: SQLite; production: postgresql+asyncpg://
    url: str = "sqlite+aiosqlite:///./dejackpot.db"
    echo: bool = False
    # The main bot owns the schema; enable for local development only
    create_tables: bool = False
    pool_size: int = 5
    pool_timeout_seconds: float = 10.0
    query_timeout_seconds: float = 10.0


class WorkerConfig(BaseModel):
    """Claim loop and turn timer configuration."""

    owner_id: str | None = None
    poll_interval_seconds: float = 3.0
    max_concurrent_sessions: int = 1
    turn_timeout_seconds: float = 45.0
    claim_spacing_seconds: float = 0.25
    shutdown_grace_seconds: float = 10.0

    def resolve_owner_id(self) -> str:
        """Owner identity written on claim; unique per process unless pinned."""
        if self.owner_id:
            return self.owner_id
        return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class SweeperConfig(BaseModel):
    """Stale session sweep configuration."""

    enabled: bool = True
    interval_seconds: float = 60.0
    stale_after_seconds: float = 600.0


class TelegramConfig(BaseModel):
    """Telegram Bot API transport configuration."""

    bot_token: str | None = None
    api_base: str = "https://api.telegram.org"
    request_timeout_seconds: float = 15.0
    poll_timeout_seconds: int = 30
    main_bot_username: str = "MainCasinoBot"


class PriceConfig(BaseModel):
    """SOL/USD price feed configuration."""

    api_url: str = "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"
    retries: int = 3
    initial_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    cache_ttl_seconds: float = 180.0
    request_timeout_seconds: float = 10.0
    # Upper bound on how long a prompt waits for a price before falling back to SOL
    display_timeout_seconds: float = 5.0


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_output: bool = Field(default=False, alias="json")

    model_config = {"populate_by_name": True}


class Settings(BaseSettings):
    """Jackpot helper settings."""

    model_config = SettingsConfigDict(
        env_prefix="DEJ_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    price: PriceConfig = Field(default_factory=PriceConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML file values arrive as init kwargs; the environment wins over them.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


CONFIG_FILE_ENV = "DEJ_CONFIG_FILE"
DEFAULT_CONFIG_PATHS = (Path("config.yaml"), Path("/etc/dejackpot/config.yaml"))


def _load_config_file() -> dict:
    """Read the first YAML config file found, or nothing.

    $DEJ_CONFIG_FILE is tried before ./config.yaml and /etc/dejackpot/config.yaml.

    Raises:
        ConfigError: If the file does not hold a mapping
    """
    candidates = [Path(p) for p in (os.environ.get(CONFIG_FILE_ENV),) if p]
    candidates.extend(DEFAULT_CONFIG_PATHS)

    for path in candidates:
        if not path.is_file():
            continue
        data = yaml.safe_load(path.read_text())
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at the top level")
        return data

    return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Environment variables override values from the YAML config file.
    """
    file_config = _load_config_file()
    return Settings(**file_config)
