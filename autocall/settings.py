from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .config_schema import ConfigModel, resolve_config_path
from .logging_utils import logger


class EnvSettings(BaseSettings):
    """Environment-specific values.

    Reads from process environment first; falls back to `.env` file if present.
    """

    sqlite_path: str = "data/autocall.db"
    autocall_config_path: Optional[str] = None
    autocall_allow_config_example: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_env() -> EnvSettings:
    """Return cached environment settings."""

    env_settings = EnvSettings()
    logger.debug("Environment settings loaded: %s", env_settings.model_dump())
    return env_settings


def get_sqlite_url() -> str:
    """Return the SQLAlchemy URL for the configured number store."""

    db_path = Path(get_env().sqlite_path).expanduser()
    return f"sqlite:///{db_path}"


# ---------------------------------------------------------------------------
# Configuration file
# ---------------------------------------------------------------------------


@lru_cache
def config_path() -> Path:
    """Return the YAML file named by ``AUTOCALL_CONFIG_PATH`` or the project default."""

    env = get_env()
    path = resolve_config_path(
        env.autocall_config_path,
        allow_example_fallback=env.autocall_allow_config_example,
    )
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found at {path}")
    if path.name == "config.example.yaml":
        logger.info("Using config.example.yaml; copy it to config.yaml to customise the dialer.")
    return path


def read_config(path: Path) -> ConfigModel:
    """Parse and validate *path* without caching."""

    with path.open("r", encoding="utf-8") as fp:
        raw_data: Dict[str, Any] = yaml.safe_load(fp) or {}

    try:
        return ConfigModel.model_validate(raw_data)
    except ValidationError as exc:
        logger.error("Invalid configuration in %s: %s", path, exc)
        raise ValueError(f"Configuration validation failed for {path}") from exc


@lru_cache
def get_config() -> ConfigModel:
    config = read_config(config_path())
    logger.debug("Configuration loaded from %s", config_path())
    return config


def refresh_config_cache() -> None:
    """Clear cached configuration so subsequent calls reload from disk."""

    get_env.cache_clear()
    config_path.cache_clear()
    get_config.cache_clear()


# ---------------------------------------------------------------------------
# Typed accessors
# ---------------------------------------------------------------------------


def get_project_name() -> str:
    return get_config().defaults.project_name.strip() or "autocall"


def get_default_region() -> str:
    """Return the ISO region used to parse numbers without a country code."""

    return get_config().defaults.default_region


def ninth_digit_heuristic_enabled() -> bool:
    return get_config().defaults.ninth_digit_heuristic


def get_dialer_config() -> Dict[str, Any]:
    """Return the ``dialer`` section as a plain dict."""

    return get_config().dialer.model_dump(mode="python")


def get_call_timeout_seconds() -> Optional[float]:
    return get_config().dialer.call_timeout_seconds


def calls_permitted() -> bool:
    """Capability gate: whether the device may place calls right now.

    Re-reads the config file on every call so that flipping
    ``dialer.calls_permitted`` takes effect without a restart.
    """

    return read_config(config_path()).dialer.calls_permitted
