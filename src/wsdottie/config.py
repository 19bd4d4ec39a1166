"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (WSDOTTIE__API__ACCESS_TOKEN=...)
  3. wsdottie.yaml          (searched in cwd, then platform config dir)
  4. Hardcoded defaults

The config file is optional: all fields except the access token have
sensible defaults. Settings are read once per process; the pipeline itself
only ever sees the ``Credentials`` object built from them.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from wsdottie.models.endpoint import TransportMode

DEFAULT_BASE_URL = "https://www.wsdot.wa.gov"

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("wsdottie")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first wsdottie.yaml found, or None."""
    candidates = [
        Path("wsdottie.yaml"),
        Path(platformdirs.user_config_dir("wsdottie")) / "wsdottie.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ApiSettings(BaseModel):
    access_token: str = ""
    base_url: str = DEFAULT_BASE_URL


class TransportSettings(BaseModel):
    mode: TransportMode = TransportMode.AUTO
    user_agent: str = "ws-dottie/1.0"
    max_connections: int = 10


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    # Entries are deleted this many days after their hard expiry
    cleanup_grace_days: int = 7
    cleanup_interval_hours: float = 24


class MonitorSettings(BaseModel):
    enabled: bool = True
    domains: list[str] = ["fares", "vessels", "terminals", "schedule"]


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: WSDOTTIE__API__BASE_URL=...
        env_prefix="WSDOTTIE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    api: ApiSettings = ApiSettings()
    transport: TransportSettings = TransportSettings()
    cache: CacheSettings = CacheSettings()
    monitor: MonitorSettings = MonitorSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )

    def credentials(self) -> Credentials:
        return Credentials(
            access_token=self.api.access_token,
            base_url=self.api.base_url,
        )


@dataclass(frozen=True)
class Credentials:
    """Access token and base URL, resolved once and passed into the Fetcher."""

    access_token: str
    base_url: str = DEFAULT_BASE_URL
