"""Typed configuration — single source of truth for all plogseq runtime settings.

Loading priority (highest to lowest):
  1. Explicit init kwargs (programmatic overrides, tests)
  2. Environment variables: PLOGSEQ_<SECTION>__<KEY>  (double-underscore separator)
  3. Config file: PLOGSEQ_CONFIG_FILE env var, or conf/settings.toml at project root
  4. Model field defaults

Example env overrides:
  PLOGSEQ_PATHS__PLOG_LOCATION=/u01/replicate/mine
  PLOGSEQ_SCAN__SCAN_WAIT_TIME_MS=250
  PLOGSEQ_LOGGING__LEVEL=DEBUG
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import unquote, urlparse

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# Derive project root from this file's location: src/plogseq/config.py → ../../..
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_DEFAULT_CONFIG = _PROJECT_ROOT / "conf" / "settings.toml"


def _config_file() -> Path:
    """Resolve the config file path.

    Returns PLOGSEQ_CONFIG_FILE if set (raises FileNotFoundError if missing),
    otherwise returns the bundled default at conf/settings.toml.
    """
    if env_val := os.environ.get("PLOGSEQ_CONFIG_FILE"):
        p = Path(env_val)
        if not p.is_file():
            raise FileNotFoundError(f"PLOGSEQ_CONFIG_FILE not found: {p}")
        return p
    return _DEFAULT_CONFIG


# ---------------------------------------------------------------------------
# Section models — each maps to a [section] in conf/settings.toml
# ---------------------------------------------------------------------------


class PathsSettings(BaseModel):
    """Where the producer writes segments, and where plogseq keeps its lock."""

    # Producer-owned; plogseq only ever lists and reads it.
    plog_location: Path = Path("/var/lib/replicate/mine")
    state_dir: Path = Path("/var/lib/plogseq/state")

    @field_validator("plog_location", mode="before")
    @classmethod
    def _accept_file_uri(cls, v: object) -> object:
        if isinstance(v, str) and v.startswith("file:"):
            parsed = urlparse(v)
            if parsed.netloc not in ("", "localhost"):
                raise ValueError(f"plog_location must be a local file URI, got {v!r}")
            return Path(unquote(parsed.path))
        return v


class ScanSettings(BaseModel):
    """Polling cadence and liveness budget for the segment scan loop.

    The producer is considered offline once
    ``scan_quit_interval_count * health_check_interval_count`` polls in a
    row have found nothing, i.e. after roughly
    ``scan_quit_interval_count * health_check_interval_count * scan_wait_time_ms``.
    """

    # Multiplier on scan_wait_time_ms while waiting for a control header.
    scan_interval_count: int = Field(default=5, gt=0)
    scan_wait_time_ms: int = Field(default=1000, gt=0)
    # Polls between "producer still alive?" warnings.
    health_check_interval_count: int = Field(default=60, gt=0)
    # Health checks without a new segment before giving up.
    scan_quit_interval_count: int = Field(default=10, gt=0)
    # Cancel instead of failing when the budget runs out.
    force_interrupt: bool = False


class LoggingSettings(BaseModel):
    """Logging verbosity and output format."""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"

    @field_validator("level", mode="before")
    @classmethod
    def _normalise_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"level must be one of {sorted(valid)}, got {v!r}")
        return v.upper()


# ---------------------------------------------------------------------------
# Root settings class
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """All plogseq runtime settings, fully resolved and validated."""

    paths: PathsSettings = PathsSettings()
    scan: ScanSettings = ScanSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(
        env_prefix="PLOGSEQ_",
        env_nested_delimiter="__",  # PLOGSEQ_SCAN__SCAN_WAIT_TIME_MS → scan.scan_wait_time_ms
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # TOML + env only; no dotenv or file secrets.
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=_config_file()),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide Settings instance (loaded once, cached thereafter).

    Tests should call ``get_settings.cache_clear()`` before each test that
    patches environment variables or the config file.
    """
    return Settings()
