"""Configuration for pulls.

Settings come from three layers, later layers winning:

1. ``PullSettings`` defaults
2. an optional YAML file (``${VAR}`` / ``$VAR`` references expanded)
3. ``PULLSYNC_*`` environment variables (a ``.env`` file is loaded first)

Example YAML (pullsync.yaml):
    base_url: https://myapp.azurewebsites.net
    api_key: ${APP_KEY}
    state_dir: ./.state
    default_page_size: 50
    max_page_size: 1000
    keep_tombstones: false
    timeout: 30
    max_retries: 3
    backoff_factor: 1.0

Usage:
    settings = load_settings("pullsync.yaml")
    store = build_store(settings)
    reader = build_reader(settings)
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from pullsync.lib.errors import ConfigurationError
from pullsync.lib.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from pullsync.lib.reader import HttpTableReader
from pullsync.lib.store import DEFAULT_STATE_DIR, JsonFileLocalStore

logger = logging.getLogger(__name__)

__all__ = [
    "PullSettings",
    "build_reader",
    "build_store",
    "expand_env_vars",
    "load_settings",
]

ENV_PREFIX = "PULLSYNC_"

# Pattern for ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class PullSettings:
    """Tunables for the pull driver, local store and remote reader."""

    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    keep_tombstones: bool = False
    state_dir: str = DEFAULT_STATE_DIR
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 1.0

    def __post_init__(self) -> None:
        if self.default_page_size <= 0:
            raise ConfigurationError(
                "default_page_size must be positive",
                field="default_page_size",
                value=self.default_page_size,
            )
        if self.max_page_size < self.default_page_size:
            raise ConfigurationError(
                "max_page_size must be at least default_page_size",
                field="max_page_size",
                value=self.max_page_size,
            )
        if self.max_retries < 1:
            raise ConfigurationError(
                "max_retries must be at least 1",
                field="max_retries",
                value=self.max_retries,
            )


def expand_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``$VAR``; unknown variables are left as-is."""

    def replacer(match: "re.Match[str]") -> str:
        var_name = match.group(1) or match.group(2)
        return os.environ.get(var_name, match.group(0))

    return ENV_VAR_PATTERN.sub(replacer, value)


def _coerce(name: str, raw: Any, target: str) -> Any:
    """Convert a raw config value to the type of the settings field."""
    if raw is None:
        return None
    try:
        if target == "bool":
            if isinstance(raw, bool):
                return raw
            text = str(raw).strip().lower()
            if text in _TRUE_VALUES:
                return True
            if text in _FALSE_VALUES:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if target == "int":
            return int(raw)
        if target == "float":
            return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid value for {name}: {exc}",
            field=name,
            value=raw,
        ) from exc
    return str(raw)


def _field_types() -> Dict[str, str]:
    # Annotations are strings under postponed evaluation
    types: Dict[str, str] = {}
    for f in fields(PullSettings):
        annotation = str(f.type)
        for candidate in ("bool", "int", "float"):
            if annotation == candidate:
                types[f.name] = candidate
                break
        else:
            types[f.name] = "str"
    return types


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read settings file {path}",
            details={"cause": str(exc)},
        ) from exc

    try:
        data = yaml.safe_load(expand_env_vars(text)) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Invalid YAML in settings file {path}",
            details={"cause": str(exc)},
        ) from exc

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Settings file {path} must contain a mapping",
            details={"type": type(data).__name__},
        )
    return data


def load_settings(
    path: Optional[Union[str, Path]] = None,
    *,
    env_file: Optional[Union[str, Path]] = None,
) -> PullSettings:
    """Load settings from defaults, an optional YAML file and the environment.

    Args:
        path: Optional YAML settings file
        env_file: Optional .env file; by default ``.env`` is searched for

    Raises:
        ConfigurationError: For unreadable files, unknown keys or bad values
    """
    load_dotenv(dotenv_path=env_file, override=False)

    types = _field_types()
    values: Dict[str, Any] = {}

    if path is not None:
        for key, raw in _read_yaml(Path(path)).items():
            if key not in types:
                raise ConfigurationError(
                    f"Unknown setting '{key}'",
                    field=key,
                    suggestion=f"Valid settings: {', '.join(sorted(types))}",
                )
            values[key] = _coerce(key, raw, types[key])
        logger.debug("Loaded settings from %s", path)

    for name, target in types.items():
        env_value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value is not None:
            values[name] = _coerce(name, env_value, target)

    return PullSettings(**values)


def build_store(settings: PullSettings) -> JsonFileLocalStore:
    return JsonFileLocalStore(settings.state_dir)


def build_reader(settings: PullSettings) -> HttpTableReader:
    if not settings.base_url:
        raise ConfigurationError(
            "base_url is required to read from the remote table",
            field="base_url",
            suggestion="Set base_url in the settings file or PULLSYNC_BASE_URL.",
        )
    return HttpTableReader(
        settings.base_url,
        api_key=settings.api_key,
        timeout=settings.timeout,
        max_retries=settings.max_retries,
        backoff_factor=settings.backoff_factor,
    )
