"""Persistent runtime configuration helpers."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from trailblazer.contracts import CONFIG_SCHEMA_V1, SUPPORTED_CONFIG_SCHEMAS
from trailblazer.errors import ConfigError

logger = logging.getLogger("trailblazer.config")

TRAILBLAZER_DIR = Path.home() / ".trailblazer"
CONFIG_PATH = TRAILBLAZER_DIR / "config.json"
DEFAULT_DB_PATH = TRAILBLAZER_DIR / "trailblazer.db"
ALLOWED_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class ApiConfig(BaseModel):
    """Remote Trailblazer API location."""

    base_url: str = "app.trailblazer.io"
    version: str = "v1"


class TrailblazerConfig(BaseModel):
    schema_version: str = CONFIG_SCHEMA_V1
    db_path: Path = DEFAULT_DB_PATH
    log_level: str = "INFO"
    api: ApiConfig = Field(default_factory=ApiConfig)
    host_url: str = "http://127.0.0.1:7332"
    receiver_host: str = "127.0.0.1"
    receiver_port: int = 7331
    api_host: str = "127.0.0.1"
    api_port: int = 7777
    fire_create_on_ready: bool = True

    @field_validator("schema_version")
    @classmethod
    def _check_schema_version(cls, value: str) -> str:
        if value not in SUPPORTED_CONFIG_SCHEMAS:
            raise ValueError("unsupported config schema_version")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = str(value).strip().upper()
        if normalized not in ALLOWED_LOG_LEVELS:
            raise ValueError("log_level must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG")
        return normalized

    @field_validator("receiver_port", "api_port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 <= value <= 65535:
            raise ValueError("port out of range")
        return value


def default_config() -> TrailblazerConfig:
    return TrailblazerConfig()


def config_path() -> Path:
    override = str(os.getenv("TRAILBLAZER_CONFIG", "")).strip()
    if override:
        return Path(override)
    return CONFIG_PATH


def validate_config(raw: dict[str, Any]) -> TrailblazerConfig:
    """Validate a raw config mapping, raising ConfigError on bad values."""
    if not isinstance(raw, dict):
        raise ConfigError("config must be object")
    try:
        return TrailblazerConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


ENV_OVERRIDES = {
    "db_path": "TRAILBLAZER_DB_PATH",
    "log_level": "TRAILBLAZER_LOG_LEVEL",
}


def _apply_env_overrides(config: TrailblazerConfig) -> TrailblazerConfig:
    for key, env_name in ENV_OVERRIDES.items():
        value = str(os.getenv(env_name, "")).strip()
        if not value:
            continue
        try:
            config = validate_config({**config.model_dump(), key: value})
        except ConfigError as exc:
            logger.warning("Ignoring invalid %s: %s", env_name, exc)
    return config


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    """Return the values stored on disk, without env overrides or defaults."""
    path = path or config_path()
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        logger.warning("Ignoring unreadable config at %s: %s", path, exc)
        return {}
    if not isinstance(raw, dict):
        return {}
    return raw


def load_config(path: Path | None = None) -> TrailblazerConfig:
    """Load config from disk or return defaults, then apply env overrides."""
    path = path or config_path()
    config = default_config()
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            config = validate_config(raw)
        except (ValueError, ConfigError) as exc:
            logger.warning("Ignoring invalid config at %s: %s", path, exc)
            config = default_config()
    return _apply_env_overrides(config)


def save_config(config: TrailblazerConfig | dict[str, Any], path: Path | None = None) -> TrailblazerConfig:
    """Validate and persist config to disk."""
    path = path or config_path()
    if isinstance(config, TrailblazerConfig):
        validated = config
    else:
        validated = validate_config(config)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(validated.model_dump_json(indent=2), encoding="utf-8")
    return validated
