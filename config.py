"""Application configuration."""
import os
from pathlib import Path
from typing import List, Optional, Tuple, Type

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, TomlConfigSettingsSource

from crawler.errors import ConfigError
from crawler.fetcher import (
    DEFAULT_ATTEMPTS,
    DEFAULT_DELAY,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    RetryPolicy,
    default_backoff,
)
from models import ChapterPolicy

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

CONFIG_FILE_NAME = "serialscrape.toml"


def config_file_candidates() -> List[Path]:
    """Config file search order: ./serialscrape.toml, then the user config dir."""
    config_home = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return [Path.cwd() / CONFIG_FILE_NAME, Path(config_home) / "serialscrape" / "config.toml"]


def find_config_file() -> Optional[Path]:
    """First existing config file, or None. Files are not merged."""
    for path in config_file_candidates():
        if path.is_file():
            return path
    return None


class Settings(BaseSettings):
    """
    Application settings.

    Sources, highest priority first: command-line flags, ``SERIALSCRAPE_*``
    environment variables, an optional ``.env`` file, then the first TOML
    config file found by :func:`find_config_file`.
    """

    # Output
    output_dir: Optional[Path] = None
    toc_page: bool = True

    # Fetching
    user_agent: str = DEFAULT_USER_AGENT
    request_delay_secs: float = Field(DEFAULT_DELAY, ge=0)
    timeout_secs: float = Field(DEFAULT_TIMEOUT, gt=0)
    retry_count: int = Field(DEFAULT_ATTEMPTS, ge=1)
    retry_backoff_secs: Optional[List[float]] = None

    # Chapter policies
    locked_chapters: ChapterPolicy = ChapterPolicy.SKIP
    empty_chapters: ChapterPolicy = ChapterPolicy.SKIP

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "SERIALSCRAPE_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        toml_file = find_config_file()
        sources = (init_settings, env_settings, dotenv_settings)
        if toml_file is not None:
            sources += (TomlConfigSettingsSource(settings_cls, toml_file=toml_file),)
        return sources + (file_secret_settings,)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return level

    @model_validator(mode="after")
    def _check_retry(self) -> "Settings":
        if self.retry_backoff_secs is not None and len(self.retry_backoff_secs) != self.retry_count - 1:
            raise ValueError(
                f"retry_backoff_secs needs {self.retry_count - 1} value(s) for "
                f"retry_count={self.retry_count}, got {len(self.retry_backoff_secs)}"
            )
        return self

    def retry_policy(self) -> RetryPolicy:
        """Retry policy for the fetcher; backoff defaults to 1, 2, 4, ..."""
        backoff = self.retry_backoff_secs
        if backoff is None:
            backoff = default_backoff(self.retry_count)
        return RetryPolicy(attempts=self.retry_count, backoff=tuple(backoff))


def load_settings(**overrides) -> Settings:
    """
    Load settings, applying non-None keyword overrides (e.g. from CLI flags).

    Raises:
        ConfigError: If any value is invalid
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = Settings(**values)
        settings.retry_policy()
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    except (OSError, ValueError) as e:
        # Unreadable or malformed TOML config file
        raise ConfigError(f"Invalid config file {find_config_file()}: {e}") from e
    return settings
