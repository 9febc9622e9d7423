"""
Config system - Layered typed configuration for the ingestion worker.

Sources are merged with precedence:
overrides > environment variables > .env file > config files > defaults
"""

from typing import Any, Dict, Generic, Optional, Type, TypeVar, get_type_hints, get_origin, get_args
from dataclasses import dataclass, field, fields, is_dataclass, MISSING
from pathlib import Path
import json
import os
import threading

from .faults import ConfigInvalidFault

T = TypeVar("T")


class ConfigError(ConfigInvalidFault):
    """Raised when configuration validation fails."""


@dataclass
class WorkerConfig:
    """
    Settings consumed by the ingestion pipeline.

    ``dbs_dir_maximum_size_bytes`` below zero disables retention.
    ``max_attempts`` bounds how often an upload failing with a retryable
    fault is processed before it is marked errored.
    """

    storage_root: str = "lsif-storage"
    database_url: str = "sqlite:///lsif.db"
    dbs_dir_maximum_size_bytes: int = 10 * 1024 * 1024 * 1024
    gitservers: list = field(default_factory=list)
    converter: str = ""
    max_commits_per_update: int = 150
    lock_ttl: float = 300.0
    lock_timeout: float = 600.0
    lock_poll_interval: float = 0.5
    poll_interval: float = 1.0
    max_attempts: int = 3
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources with precedence:
    overrides > environment variables > .env file > config files > defaults
    """

    def __init__(self, env_prefix: str = "LSIF_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list] = None,
        env_prefix: str = "LSIF_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from multiple sources with proper merge strategy.

        Merge order (later overrides earlier):
        1. Config files (YAML or JSON, glob patterns supported)
        2. .env file (only keys with the prefix)
        3. Environment variables (LSIF_* prefix)
        4. Manual overrides

        Args:
            paths: List of config file paths
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or []:
            loader._load_from_files(pattern)

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, {k: v for k, v in overrides.items() if v is not None})

        return loader

    def _load_from_files(self, pattern: str):
        """Load config from JSON or YAML files."""
        from glob import glob

        for path_str in sorted(glob(pattern)):
            path = Path(path_str)
            if path.suffix == ".json":
                self._load_json_file(path)
            elif path.suffix in (".yaml", ".yml"):
                self._load_yaml_file(path)

    def _load_json_file(self, path: Path):
        """Load config from JSON file."""
        with open(path) as f:
            data = json.load(f)
            self._merge_dict(self.config_data, data)

    def _load_yaml_file(self, path: Path):
        """Load config from YAML file."""
        import yaml
        with open(path) as f:
            data = yaml.safe_load(f)
            if data:
                self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load config from .env file."""
        env_path = Path(path)
        if not env_path.exists():
            return

        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                if "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip('"').strip("'")

                    if key.startswith(self.env_prefix):
                        self._set_nested(key, value)

    def _load_from_env(self):
        """Load config from environment variables."""
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert LSIF_SECTION__KEY to nested dict."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def get_worker_config(self) -> WorkerConfig:
        """Validated ``WorkerConfig`` built from the merged sources."""
        return self.instantiate(WorkerConfig, self.config_data)

    @classmethod
    def instantiate(cls, config_class: Type[T], data: dict) -> T:
        """Instantiate dataclass config with validation."""
        if not is_dataclass(config_class):
            raise TypeError(f"{config_class.__name__} is not a dataclass")

        hints = get_type_hints(config_class)
        kwargs = {}

        for field_info in fields(config_class):
            name = field_info.name
            expected = hints.get(name, field_info.type)

            if name in data:
                value = cls._coerce(data[name], expected)
                if not cls._check_type(value, expected):
                    raise ConfigError(
                        name,
                        f"expected {getattr(expected, '__name__', expected)}, got {type(value).__name__}",
                    )
                kwargs[name] = value
            elif field_info.default is not MISSING:
                kwargs[name] = field_info.default
            elif field_info.default_factory is not MISSING:
                kwargs[name] = field_info.default_factory()
            else:
                raise ConfigError(name, "required field not provided")

        return config_class(**kwargs)

    @staticmethod
    def _coerce(value: Any, expected_type: Type) -> Any:
        """Apply the few conversions environment values need."""
        if expected_type is float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        if expected_type is str and isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if (expected_type is list or get_origin(expected_type) is list) and isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @classmethod
    def _check_type(cls, value: Any, expected_type: Type) -> bool:
        """Basic type checking."""
        import types
        origin = get_origin(expected_type)
        if origin is types.UnionType or str(origin) == "typing.Union":
            if value is None:
                return True
            args = get_args(expected_type)
            return cls._check_type(value, args[0]) if args else True

        if origin:
            return isinstance(value, origin)

        if expected_type is int and isinstance(value, bool):
            return False

        try:
            return isinstance(value, expected_type)
        except TypeError:
            return True


# ============================================================================
# Runtime updates
# ============================================================================

class _Unset:
    """Marker for a field an update leaves unchanged."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "Unset"

    def __bool__(self) -> bool:
        return False


Unset = _Unset()


@dataclass(frozen=True)
class Replace(Generic[T]):
    """Marker for a field an update sets, even to ``None`` or an empty value."""

    value: T


@dataclass(frozen=True)
class ConfigUpdate:
    """
    A partial change to ``WorkerConfig``.

    Each field is either ``Unset`` (leave unchanged) or ``Replace(value)``
    (set it), so clearing a value is never confused with not touching it.
    """

    storage_root: Any = Unset
    database_url: Any = Unset
    dbs_dir_maximum_size_bytes: Any = Unset
    gitservers: Any = Unset
    converter: Any = Unset
    max_commits_per_update: Any = Unset
    lock_ttl: Any = Unset
    lock_timeout: Any = Unset
    lock_poll_interval: Any = Unset
    poll_interval: Any = Unset
    max_attempts: Any = Unset
    log_level: Any = Unset

    def requested(self) -> Dict[str, Any]:
        """Fields the update sets, with their new values."""
        changes = {}
        for f in fields(self):
            marker = getattr(self, f.name)
            if marker is Unset:
                continue
            if not isinstance(marker, Replace):
                raise ConfigError(f.name, "updates must be wrapped in Replace(...)")
            changes[f.name] = marker.value
        return changes

    def apply(self, config: WorkerConfig) -> WorkerConfig:
        """Return a validated copy of ``config`` with the requested fields set."""
        merged = {**config.to_dict(), **self.requested()}
        return ConfigLoader.instantiate(WorkerConfig, merged)


class ConfigStore:
    """
    Holds the live configuration.

    ``fetch`` is handed to the pipeline so each upload reads the settings
    current at the time it is processed.
    """

    def __init__(self, config: WorkerConfig):
        self._config = config
        self._lock = threading.Lock()

    def fetch(self) -> WorkerConfig:
        with self._lock:
            return self._config

    def apply(self, update: ConfigUpdate) -> WorkerConfig:
        with self._lock:
            self._config = update.apply(self._config)
            return self._config
