from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

HOME_CONFIG_PATH = Path.home() / ".tracefold" / "tracefold.toml"
CONFIG_PATH_ENV = "TRACEFOLD_CONFIG"


class ConfigError(RuntimeError):
    pass


def read_config(cfg_path: Path) -> dict[str, Any]:
    if not cfg_path.exists():
        raise ConfigError(f"Missing config file {cfg_path}.")
    if not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.")
    try:
        with cfg_path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {exc}") from None
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {cfg_path}: {exc}") from exc


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Explicit path, then ``$TRACEFOLD_CONFIG``, then the home config."""
    if path:
        return Path(path).expanduser()
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return HOME_CONFIG_PATH
