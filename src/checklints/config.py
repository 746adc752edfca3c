"""Layered settings: defaults, user config file, environment, command line."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from checklints.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHECKLINTS_"
CONFIG_FILE_NAME = "config.yml"

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class Settings:
    """Effective run settings after all layers are applied."""

    user_checklists: bool = True
    fail_fast: bool = False
    read_cache: bool = True
    write_cache: bool = True
    clear_cache: bool = False
    jobs: int = 8
    command_timeout: float = 30.0
    cache_path: Path | None = None


_BOOL_KEYS = frozenset(
    {"user_checklists", "fail_fast", "read_cache", "write_cache", "clear_cache", "no_cache"}
)
SETTING_KEYS: tuple[str, ...] = (*(f.name for f in dataclasses.fields(Settings)), "no_cache")


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


def user_config_dir() -> Path:
    """Return ``$XDG_CONFIG_HOME/checklints`` (``~/.config/checklints`` when unset)."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "checklints"


def user_checklists_dir() -> Path:
    return user_config_dir() / "checklists"


def user_templates_dir() -> Path:
    return user_config_dir() / "templates"


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _coerce(key: str, raw: Any, origin: str) -> Any:
    if key in _BOOL_KEYS:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUTHY:
            return True
        if text in _FALSY:
            return False
        msg = f"{origin}: '{key}' must be a boolean, got {raw!r}"
        raise ConfigError(msg)

    if key == "jobs":
        try:
            jobs = int(raw)
        except (TypeError, ValueError):
            jobs = 0
        if isinstance(raw, bool) or jobs < 1:
            msg = f"{origin}: 'jobs' must be a positive integer, got {raw!r}"
            raise ConfigError(msg)
        return jobs

    if key == "command_timeout":
        try:
            timeout = float(raw)
        except (TypeError, ValueError):
            timeout = 0.0
        if isinstance(raw, bool) or timeout <= 0:
            msg = f"{origin}: 'command_timeout' must be a positive number, got {raw!r}"
            raise ConfigError(msg)
        return timeout

    if key == "cache_path":
        if not isinstance(raw, (str, Path)) or not str(raw):
            msg = f"{origin}: 'cache_path' must be a path, got {raw!r}"
            raise ConfigError(msg)
        return Path(raw).expanduser()

    msg = f"{origin}: unknown setting '{key}'"
    raise ConfigError(msg)


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------


def read_config_file(path: Path) -> dict[str, Any]:
    """Read settings from a YAML config file; a missing file yields ``{}``.

    Raises :class:`ConfigError` for unreadable files, malformed YAML, and
    unknown keys.
    """
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        msg = f"cannot read config file {path}: {exc}"
        raise ConfigError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{path}: expected a mapping of settings"
        raise ConfigError(msg)

    unknown = sorted(str(k) for k in data if k not in SETTING_KEYS)
    if unknown:
        msg = f"{path}: unknown settings {unknown}; known: {list(SETTING_KEYS)}"
        raise ConfigError(msg)
    logger.debug("Loaded settings from %s", path)
    return {key: _coerce(key, value, str(path)) for key, value in data.items()}


def read_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``CHECKLINTS_<SETTING>`` variables (case-insensitive setting names)."""
    values: dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        key = name[len(ENV_PREFIX) :].lower()
        if key not in SETTING_KEYS:
            logger.debug("Ignoring unknown environment setting %s", name)
            continue
        values[key] = _coerce(key, raw, f"environment variable {name}")
    return values


def _apply(values: dict[str, Any], layer: Mapping[str, Any]) -> None:
    layer = dict(layer)
    if layer.pop("no_cache", False):
        layer["read_cache"] = False
        layer["write_cache"] = False
    values.update(layer)


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build :class:`Settings` from every layer, later layers winning.

    *overrides* holds command-line values; ``None`` entries are ignored so
    unset flags fall through to the lower layers.
    """
    path = config_path if config_path is not None else user_config_dir() / CONFIG_FILE_NAME
    env = environ if environ is not None else os.environ

    values: dict[str, Any] = {}
    _apply(values, read_config_file(path))
    _apply(values, read_env(env))
    if overrides:
        _apply(
            values,
            {
                key: _coerce(key, value, "command line")
                for key, value in overrides.items()
                if value is not None
            },
        )
    return Settings(**values)
