from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .logger import get_logger

_logger = get_logger("config")

CONFIG_ENV = "HEIC_CONVERTER_CONFIG"
DEFAULT_CONFIG_NAME = "config.json"

BACKENDS = ("auto", "sips", "heif-convert", "vips", "pyvips")


@dataclass
class ConversionConfig:
    jpeg_quality: int = 90
    max_file_size_mb: int = 100
    backend: str = "auto"
    timeout_seconds: int = 120


@dataclass
class UiConfig:
    window_width: int = 600
    window_height: int = 500
    max_concurrent_conversions: int = 5


@dataclass
class StorageConfig:
    cleanup_temp_files: bool = True
    temp_file_retention_hours: int = 24


# JSON key -> (attribute, type, minimum, maximum); None means unbounded
_SCHEMA: dict[str, dict[str, tuple[str, type, int | None, int | None]]] = {
    "conversion": {
        "jpegQuality": ("jpeg_quality", int, 0, 100),
        "maxFileSizeMB": ("max_file_size_mb", int, 1, None),
        "backend": ("backend", str, None, None),
        "timeoutSeconds": ("timeout_seconds", int, 1, None),
    },
    "ui": {
        "windowWidth": ("window_width", int, 1, None),
        "windowHeight": ("window_height", int, 1, None),
        "maxConcurrentConversions": ("max_concurrent_conversions", int, 1, 64),
    },
    "storage": {
        "cleanupTempFiles": ("cleanup_temp_files", bool, None, None),
        "tempFileRetentionHours": ("temp_file_retention_hours", int, 0, None),
    },
}

# env var -> (section, json key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "HEIC_JPEG_QUALITY": ("conversion", "jpegQuality"),
    "HEIC_MAX_FILE_SIZE_MB": ("conversion", "maxFileSizeMB"),
    "HEIC_CONVERTER_BACKEND": ("conversion", "backend"),
    "HEIC_MAX_CONCURRENT_CONVERSIONS": ("ui", "maxConcurrentConversions"),
}


@dataclass
class AppConfig:
    conversion: ConversionConfig = field(default_factory=ConversionConfig)
    ui: UiConfig = field(default_factory=UiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @property
    def max_file_size_bytes(self) -> int:
        return self.conversion.max_file_size_mb * 1024 * 1024

    @classmethod
    def load(cls, path: str | os.PathLike[str] | None = None, environ: Mapping[str, str] | None = None) -> AppConfig:
        """Build the configuration from defaults, a JSON file and the environment.

        The file is `path` if given, else `$HEIC_CONVERTER_CONFIG`, else
        `config.json` in the working directory when it exists. Environment
        variables win over the file. Any invalid value raises ConfigError.
        """
        env = os.environ if environ is None else environ
        config = cls()

        config_path = _resolve_config_path(path, env)
        if config_path is not None:
            config._apply_mapping(_read_json(config_path), source=str(config_path))

        for var, (section, key) in _ENV_OVERRIDES.items():
            raw = env.get(var)
            if raw is None or raw.strip() == "":
                continue
            typ = _SCHEMA[section][key][1]
            value = _parse_env_value(var, raw.strip(), typ)
            config._set(section, key, value, source=var)

        _logger.debug(
            "config loaded: quality=%d max=%dMB backend=%s workers=%d",
            config.conversion.jpeg_quality,
            config.conversion.max_file_size_mb,
            config.conversion.backend,
            config.ui.max_concurrent_conversions,
        )
        return config

    def _apply_mapping(self, data: Any, source: str) -> None:
        if not isinstance(data, dict):
            raise ConfigError(f"{source}: top-level value must be an object")
        for section, values in data.items():
            if section not in _SCHEMA:
                raise ConfigError(f"{source}: unknown section '{section}'")
            if not isinstance(values, dict):
                raise ConfigError(f"{source}: section '{section}' must be an object")
            for key, value in values.items():
                self._set(section, key, value, source=source)

    def _set(self, section: str, key: str, value: Any, source: str) -> None:
        entry = _SCHEMA[section].get(key)
        if entry is None:
            raise ConfigError(f"{source}: unknown key '{section}.{key}'")
        attr, typ, lo, hi = entry
        name = f"{section}.{key}"
        # bool is an int subclass; keep the two apart
        if typ is int and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigError(f"{source}: '{name}' must be an integer, got {value!r}")
        if typ is not int and not isinstance(value, typ):
            raise ConfigError(f"{source}: '{name}' must be of type {typ.__name__}, got {value!r}")
        if lo is not None and value < lo:
            raise ConfigError(f"{source}: '{name}' must be >= {lo}, got {value}")
        if hi is not None and value > hi:
            raise ConfigError(f"{source}: '{name}' must be <= {hi}, got {value}")
        if attr == "backend" and value not in BACKENDS:
            raise ConfigError(f"{source}: '{name}' must be one of {', '.join(BACKENDS)}, got {value!r}")
        setattr(getattr(self, section), attr, value)


def _resolve_config_path(path: str | os.PathLike[str] | None, env: Mapping[str, str]) -> Path | None:
    if path is not None:
        p = Path(path)
        if not p.is_file():
            raise ConfigError(f"config file not found: {p}")
        return p
    env_path = (env.get(CONFIG_ENV) or "").strip()
    if env_path:
        p = Path(env_path)
        if not p.is_file():
            raise ConfigError(f"{CONFIG_ENV} points to a missing file: {p}")
        return p
    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.is_file() else None


def _read_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON ({e})") from e
    except OSError as e:
        raise ConfigError(f"{path}: cannot read ({e})") from e


def _parse_env_value(var: str, raw: str, typ: type) -> Any:
    if typ is int:
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{var} must be an integer, got {raw!r}") from e
    return raw
