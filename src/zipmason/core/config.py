"""Configuration resolver with 4-level priority.

Priority (highest to lowest):
1. CLI arguments
2. Environment variables (ZIPMASON_*)
3. Config files (user > system)
4. Defaults
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from zipmason.core.errors import ConfigError

ALLOWED_LOGGING_LEVELS = frozenset({"quiet", "normal", "verbose", "debug"})
DEFAULT_LOGGING_LEVEL = "normal"
ALLOWED_COMPRESSION_LEVELS = (0, 1, 5)


@dataclass
class ConfigSource:
    """Represents where a config value came from."""

    value: Any
    source: str  # 'cli' | 'env' | 'user_config' | 'system_config' | 'default'


CONFIG_TYPE_ANY = "any"
CONFIG_TYPE_STRING = "string"
CONFIG_TYPE_INT = "int"
CONFIG_TYPE_BOOL = "bool"
CONFIG_TYPE_LIST = "list"
CONFIG_TYPE_OBJECT = "object"


@dataclass(frozen=True)
class ConfigKeySchema:
    key_path: str
    type: str
    description: str = ""
    default: Any | None = None


class ConfigSchema:
    """Registry of known config keys and their metadata."""

    def __init__(self, keys: dict[str, ConfigKeySchema]) -> None:
        self._keys = dict(keys)

    @classmethod
    def from_defaults(cls, defaults: dict[str, Any]) -> ConfigSchema:
        keys: dict[str, ConfigKeySchema] = {}
        for key_path, value in _flatten_items(defaults):
            keys[key_path] = ConfigKeySchema(
                key_path=key_path,
                type=_infer_schema_type(value),
                default=value,
            )
        return cls(keys)

    def list_known_keys(self) -> list[str]:
        return sorted(self._keys.keys())

    def get(self, key_path: str) -> ConfigKeySchema | None:
        return self._keys.get(key_path)


def _infer_schema_type(value: Any) -> str:
    if isinstance(value, bool):
        return CONFIG_TYPE_BOOL
    if isinstance(value, int):
        return CONFIG_TYPE_INT
    if isinstance(value, list):
        return CONFIG_TYPE_LIST
    if isinstance(value, dict):
        return CONFIG_TYPE_OBJECT
    if isinstance(value, str):
        return CONFIG_TYPE_STRING
    return CONFIG_TYPE_ANY


def _flatten_items(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    """Flatten nested dicts to dot-notation key paths."""
    items: list[tuple[str, Any]] = []

    for key, value in data.items():
        key_path = f"{prefix}.{key}" if prefix else str(key)

        if isinstance(value, dict):
            items.extend(_flatten_items(value, key_path))
        else:
            items.append((key_path, value))

    return items


def _flatten_keys(data: dict[str, Any], prefix: str = "") -> set[str]:
    return {k for k, _v in _flatten_items(data, prefix=prefix)}


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Config key '{key}' must be an int, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ConfigError(f"Config key '{key}' must be an int, got {value!r}")


@dataclass(frozen=True)
class LoggingPolicy:
    """Resolved, immutable logging policy."""

    level_name: str  # quiet | normal | verbose | debug
    emit_error: bool
    emit_warning: bool
    emit_info: bool
    emit_progress: bool
    emit_debug: bool
    color: bool
    sources: dict[str, ConfigSource]


@dataclass(frozen=True)
class SchedulerConfig:
    """Settings a JobScheduler is created with."""

    executable_path: str = "7za"
    max_concurrent: int = 1  # 1 for spinning disks, 2+ for SSD/NVMe

    def __post_init__(self) -> None:
        if not self.executable_path:
            raise ConfigError("executable_path must not be empty")
        if isinstance(self.max_concurrent, bool) or not isinstance(self.max_concurrent, int):
            raise ConfigError("max_concurrent must be an int")
        if self.max_concurrent < 1:
            raise ConfigError(
                f"max_concurrent must be >= 1, got {self.max_concurrent}",
                "Use 1 for spinning disks and 2 or more for solid-state storage",
            )

    @classmethod
    def from_resolver(cls, resolver: ConfigResolver) -> SchedulerConfig:
        return cls(
            executable_path=resolver.resolve_executable_path(),
            max_concurrent=resolver.resolve_max_concurrent(),
        )


class ConfigResolver:
    """Resolve configuration with strict 4-level priority.

    Example:
        resolver = ConfigResolver(
            cli_args={'max_concurrent': 2},
            user_config_path=Path('~/.config/zipmason/config.yaml')
        )

        value, source = resolver.resolve('max_concurrent')
        # value = 2, source = 'cli'
    """

    def __init__(
        self,
        cli_args: dict[str, Any] | None = None,
        user_config_path: Path | None = None,
        system_config_path: Path | None = None,
        defaults: dict[str, Any] | None = None,
        schema: ConfigSchema | None = None,
    ) -> None:
        """Initialize config resolver.

        Args:
            cli_args: Arguments from CLI (highest priority)
            user_config_path: Path to user config file
            system_config_path: Path to system config file
            defaults: Default values (lowest priority)
        """
        self.cli_args = cli_args or {}
        self.user_config_path = user_config_path or Path.home() / ".config/zipmason/config.yaml"
        self.system_config_path = system_config_path or Path("/etc/zipmason/config.yaml")
        self.defaults = defaults if defaults is not None else self._default_config()

        self.schema = schema or ConfigSchema.from_defaults(self.defaults)

        self._user_config: dict[str, Any] | None = None
        self._system_config: dict[str, Any] | None = None

    def resolve(self, key: str) -> tuple[Any, str]:
        """Resolve config value with priority.

        Args:
            key: Config key (supports dot notation: 'logging.level')

        Returns:
            (value, source) tuple

        Raises:
            ConfigError: If key not found in any source
        """
        value = self._from_cli(key)
        if value is not None:
            return value, "cli"

        value = self._from_env(key)
        if value is not None:
            return value, "env"

        value = self._from_user_config(key)
        if value is not None:
            return value, "user_config"

        value = self._from_system_config(key)
        if value is not None:
            return value, "system_config"

        value = self._from_defaults(key)
        if value is not None:
            return value, "default"

        raise ConfigError(f"Config key '{key}' not found in any source")

    def resolve_executable_path(self) -> str:
        key = "executable_path"
        value, _src = self.resolve(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"Config key '{key}' must be a non-empty string")
        return os.path.expanduser(value.strip())

    def resolve_max_concurrent(self) -> int:
        key = "max_concurrent"
        value, _src = self.resolve(key)
        n = _coerce_int(key, value)
        if n < 1:
            raise ConfigError(f"Config key '{key}' must be >= 1, got {n}")
        return n

    def resolve_compression_level(self) -> int:
        key = "compression_level"
        value, _src = self.resolve(key)
        level = _coerce_int(key, value)
        if level not in ALLOWED_COMPRESSION_LEVELS:
            allowed = ", ".join(str(v) for v in ALLOWED_COMPRESSION_LEVELS)
            raise ConfigError(f"Invalid '{key}': {value!r}. Allowed values: {allowed}")
        return level

    def resolve_logging_level(self) -> str:
        """Resolve and validate logging.level.

        Allowed values (after normalization):
            quiet | normal | verbose | debug

        Alias (resolver-only):
            verbosity -> logging.level

        Raises:
            ConfigError: If the resolved value is invalid.
        """
        level, _src = self._resolve_logging_level_and_source()
        return level

    def resolve_logging_color(self) -> bool:
        key = "logging.color"
        found = self._try_resolve_value(key)
        if found is None:
            return True
        value, _src = found
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false", "1", "0"}:
            return value.strip().lower() in {"true", "1"}
        raise ConfigError(f"Config key '{key}' must be a bool, got {value!r}")

    def resolve_logging_policy(self) -> LoggingPolicy:
        """Resolve canonical logging policy. Side-effect free."""
        level_name, src = self._resolve_logging_level_and_source()

        emit_info = level_name != "quiet"
        return LoggingPolicy(
            level_name=level_name,
            emit_error=True,
            emit_warning=True,
            emit_info=emit_info,
            emit_progress=emit_info,
            emit_debug=level_name == "debug",
            color=self.resolve_logging_color(),
            sources={"level_name": src},
        )

    def _resolve_logging_level_and_source(self) -> tuple[str, ConfigSource]:
        key = "logging.level"
        found = self._try_resolve_value(key)
        if found is None:
            found = self._try_resolve_value("verbosity")

        if found is None:
            return DEFAULT_LOGGING_LEVEL, ConfigSource(
                value=DEFAULT_LOGGING_LEVEL,
                source="default",
            )

        value, source = found
        norm = self._normalize_logging_level(key, value)
        return norm, ConfigSource(value=norm, source=source)

    def _try_resolve_value(self, key: str) -> tuple[Any, str] | None:
        try:
            return self.resolve(key)
        except ConfigError as e:
            if "not found in any source" in str(e):
                return None
            raise

    def _normalize_logging_level(self, key: str, value: Any) -> str:
        if not isinstance(value, str):
            raise ConfigError(f"Config key '{key}' must be a string, got {type(value).__name__}")

        norm = value.strip().lower()
        if norm == "":
            raise ConfigError(f"Config key '{key}' must not be empty")

        if norm not in ALLOWED_LOGGING_LEVELS:
            allowed = ", ".join(sorted(ALLOWED_LOGGING_LEVELS))
            raise ConfigError(f"Invalid '{key}': {value!r}. Allowed values: {allowed}")

        return norm

    def list_known_keys(self) -> list[str]:
        """Return a deterministic list of known keys (schema-driven)."""
        return self.schema.list_known_keys()

    def resolve_all(self) -> dict[str, ConfigSource]:
        """Resolve all known keys plus any extra keys found in CLI args or config files."""
        result: dict[str, ConfigSource] = {}

        all_keys: set[str] = set(self.list_known_keys())
        all_keys.update(_flatten_keys(self.cli_args))
        all_keys.update(_flatten_keys(self._get_user_config()))
        all_keys.update(_flatten_keys(self._get_system_config()))

        for key in sorted(all_keys):
            try:
                value, source = self.resolve(key)
                result[key] = ConfigSource(value=value, source=source)
            except ConfigError:
                continue

        return result

    def _from_cli(self, key: str) -> Any | None:
        return self._get_nested(self.cli_args, key)

    def _from_env(self, key: str) -> Any | None:
        """Environment variable format: ZIPMASON_KEY_NAME (dots become underscores)."""
        env_key = f"ZIPMASON_{key.upper().replace('.', '_')}"
        return os.environ.get(env_key)

    def _from_user_config(self, key: str) -> Any | None:
        return self._get_nested(self._get_user_config(), key)

    def _from_system_config(self, key: str) -> Any | None:
        return self._get_nested(self._get_system_config(), key)

    def _from_defaults(self, key: str) -> Any | None:
        return self._get_nested(self.defaults, key)

    def _get_user_config(self) -> dict[str, Any]:
        if self._user_config is None:
            self._user_config = self._load_yaml(self.user_config_path)
        return self._user_config

    def _get_system_config(self) -> dict[str, Any]:
        if self._system_config is None:
            self._system_config = self._load_yaml(self.system_config_path)
        return self._system_config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
                return data if isinstance(data, dict) else {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}") from e

    def _get_nested(self, data: dict[str, Any], key: str) -> Any | None:
        """Get nested value using dot notation.

        Example:
            data = {'logging': {'level': 'debug'}}
            _get_nested(data, 'logging.level') -> 'debug'
        """
        if key in data and "." in key:
            # CLI args may use flat dotted keys
            return data[key]

        current: Any = data
        for part in key.split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(part)
            if current is None:
                return None

        return current

    @staticmethod
    def _default_config() -> dict[str, Any]:
        return {
            "executable_path": "7za",
            "max_concurrent": 1,
            "compression_level": 1,
            "logging": {
                "level": DEFAULT_LOGGING_LEVEL,
                "color": True,
            },
        }
