from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .config import ConfigError, read_config, resolve_config_path
from .model import SENTINEL_AGENT_ID
from .tools import DEFAULT_DELEGATE_TOOLS, DEFAULT_TARGET_KEYS


class TracefoldSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="TRACEFOLD__",
        env_nested_delimiter="__",
    )

    sentinel_agent_id: str = SENTINEL_AGENT_ID
    delegate_tools: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_DELEGATE_TOOLS)
    )
    delegate_target_keys: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TARGET_KEYS)
    )
    main_session_id: str | None = None
    tick_interval_s: float = 1.0

    @field_validator("sentinel_agent_id", mode="before")
    @classmethod
    def _validate_sentinel(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("sentinel_agent_id must be a non-empty string")
        return value.strip()

    @field_validator("delegate_tools", mode="after")
    @classmethod
    def _normalize_delegate_tools(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip().lower() for item in value if item.strip()]
        if not cleaned:
            raise ValueError("delegate_tools must name at least one tool")
        return cleaned

    @field_validator("tick_interval_s", mode="after")
    @classmethod
    def _validate_tick(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("tick_interval_s must be positive")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @property
    def delegate_tool_set(self) -> frozenset[str]:
        return frozenset(self.delegate_tools)


def load_settings(path: str | Path | None = None) -> tuple[TracefoldSettings, Path]:
    cfg_path = resolve_config_path(path)
    if cfg_path.exists() and not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.") from None
    if not cfg_path.exists():
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    return _load_settings_from_path(cfg_path), cfg_path


def load_settings_if_exists(
    path: str | Path | None = None,
) -> tuple[TracefoldSettings, Path] | None:
    cfg_path = resolve_config_path(path)
    if cfg_path.exists():
        if not cfg_path.is_file():
            raise ConfigError(
                f"Config path {cfg_path} exists but is not a file."
            ) from None
        return _load_settings_from_path(cfg_path), cfg_path
    return None


def _load_settings_from_path(cfg_path: Path) -> TracefoldSettings:
    # Surfaces malformed TOML as ConfigError before pydantic sees the file.
    read_config(cfg_path)
    cfg = dict(TracefoldSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "TracefoldSettingsBound",
        (TracefoldSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc
