from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

ENV_APP_KEY = "INFOFLOW_APP_KEY"
ENV_APP_SECRET = "INFOFLOW_APP_SECRET"

LOCAL_CONFIG_NAME = Path(".infoflow") / "infoflow.toml"
HOME_CONFIG_PATH = Path.home() / ".infoflow" / "infoflow.toml"


class ConfigError(RuntimeError):
    pass


def config_candidates() -> tuple[Path, ...]:
    """Config files searched in order: the working directory, then home."""
    return tuple(dict.fromkeys((Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH)))


def read_config_file(cfg_path: Path) -> dict[str, Any]:
    try:
        with cfg_path.open("rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {exc}") from None
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {cfg_path}: {exc}") from exc


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Return ``config`` with credentials taken from the environment.

    INFOFLOW_APP_KEY and INFOFLOW_APP_SECRET take precedence over the
    top-level values in the config file.
    """
    merged = dict(config)
    for env_name, key in ((ENV_APP_KEY, "app_key"), (ENV_APP_SECRET, "app_secret")):
        value = os.environ.get(env_name)
        if value and value.strip():
            merged[key] = value.strip()
    return merged


def load_config(path: str | Path | None = None) -> tuple[dict[str, Any], Path]:
    if path:
        cfg_path = Path(path).expanduser()
        return apply_env_overrides(read_config_file(cfg_path)), cfg_path

    for candidate in config_candidates():
        if candidate.is_file():
            return apply_env_overrides(read_config_file(candidate)), candidate

    raise ConfigError("Missing infoflow config.")

