"""Harness configuration using Pydantic settings.

Values are resolved once, highest precedence first:

1. keyword arguments passed to ``Settings(...)`` / ``load_settings(...)``
2. the JSON config file (``n8n-harness.json`` in the working directory)
3. ``N8N_*`` environment variables
4. the ``.env`` file
5. the defaults declared below
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple, Type, Union

from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_CONFIG_FILE = "n8n-harness.json"


class Settings(BaseSettings):
    """Harness settings."""

    model_config = SettingsConfigDict(
        env_prefix="N8N_",
        env_file=".env",
        env_file_encoding="utf-8",
        json_file=DEFAULT_CONFIG_FILE,
        json_file_encoding="utf-8",
        extra="ignore",
    )

    # API
    api_url: str = "http://localhost:5678/api/v1"
    api_key: str = ""
    request_timeout: float = 30.0

    # Container
    container_name: str = "n8n"
    image: str = "n8nio/n8n"
    port: int = 5678
    data_dir: str = "./n8n_data"
    health_check_timeout: int = 60

    # Resilience
    rate_limit_max_requests: int = 60
    rate_limit_interval: float = 60.0
    max_retries: int = 3
    retry_initial_delay: float = 1.0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            JsonConfigSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
        )


def load_settings(
    config_path: Optional[Union[str, Path]] = None, **overrides
) -> Settings:
    """Build settings, optionally reading a specific JSON config file."""
    if config_path is None:
        return Settings(**overrides)

    class FileSettings(Settings):
        model_config = SettingsConfigDict(json_file=str(config_path))

    return FileSettings(**overrides)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
