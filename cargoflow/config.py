"""
CargoFlow Configuration System

Configuration management with YAML files, environment variables and
validation.

Configuration Sources (in order of precedence):
    1. Environment variables (CARGOFLOW_*)
    2. Runtime overrides and loaded files
    3. Default values

Loaded files are checked against ``schemas/config.schema.json`` before any
value is applied, so a malformed file changes nothing.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "config.schema.json"

DWELL_ANCHORS = ("creation", "previous_status_change")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")
LOG_FORMATS = ("json", "text")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value!r}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce an environment string to the default's type."""
        target_type = type(self.default)
        try:
            if target_type == bool:
                return value.lower() in ("true", "1", "yes", "on")  # type: ignore
            elif target_type == int:
                return int(value)  # type: ignore
        except ValueError as e:
            raise ValidationError(f"{self.env_var}: cannot parse {value!r}") from e
        return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _is_int(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)


@dataclass
class LedgerConfig:
    """Record store and status machine parameters."""
    min_tracking_id_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=6,
        env_var="CARGOFLOW_MIN_TRACKING_ID_LENGTH",
        description="Minimum tracking id length in bytes",
        validator=lambda x: _is_int(x) and 1 <= x <= 256,
    ))
    max_delivery_window_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=365 * 24 * 3600,
        env_var="CARGOFLOW_MAX_DELIVERY_WINDOW_SECONDS",
        description="Latest estimated delivery, in seconds after creation",
        validator=lambda x: _is_int(x) and x > 0,
    ))
    min_dwell_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3600,
        env_var="CARGOFLOW_MIN_DWELL_SECONDS",
        description="Minimum time before a status update is accepted",
        validator=lambda x: _is_int(x) and x >= 0,
    ))
    dwell_anchor: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="creation",
        env_var="CARGOFLOW_DWELL_ANCHOR",
        description="Dwell measured from shipment creation or from the previous status change",
        validator=lambda x: x in DWELL_ANCHORS,
    ))


@dataclass
class ConfidentialConfig:
    """Confidential field parameters."""
    max_contents_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=64,
        env_var="CARGOFLOW_MAX_CONTENTS_BYTES",
        description="Maximum encrypted contents length in bytes",
        validator=lambda x: _is_int(x) and 1 <= x <= 4096,
    ))
    weight_bits: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=32,
        env_var="CARGOFLOW_WEIGHT_BITS",
        description="Bit width of the encrypted weight (grams)",
        validator=lambda x: x == 32,
    ))
    max_decrypt_validity_days: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=365,
        env_var="CARGOFLOW_MAX_DECRYPT_VALIDITY_DAYS",
        description="Longest validity period a decrypt authorization may request",
        validator=lambda x: _is_int(x) and 1 <= x <= 3650,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="CARGOFLOW_LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        validator=lambda x: x in LOG_LEVELS,
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="CARGOFLOW_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in LOG_FORMATS,
    ))


@dataclass
class CargoFlowConfig:
    """
    Root configuration.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    confidential: ConfidentialConfig = field(default_factory=ConfidentialConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)


@lru_cache(maxsize=1)
def config_file_validator() -> Draft202012Validator:
    """Validator for configuration files."""
    with open(SCHEMA_PATH, encoding="utf-8") as f:
        schema = json.load(f)
    return Draft202012Validator(schema)


def validate_config_document(data: Any) -> List[str]:
    """Schema errors for a loaded configuration document (empty if valid)."""
    return [
        f"{error.json_path}: {error.message}"
        for error in config_file_validator().iter_errors(data)
    ]


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = CargoFlowConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[CargoFlowConfig], None]] = []
        self._initialized = True

    @property
    def config(self) -> CargoFlowConfig:
        return self._config

    @property
    def loaded_paths(self) -> List[Path]:
        return list(self._config_paths)

    def reset(self) -> None:
        """Drop overrides and loaded files; back to defaults."""
        self._config = CargoFlowConfig()
        self._config_paths = []
        self._watchers = []

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data:
            errors = validate_config_document(data)
            if errors:
                raise ValidationError(f"{path}: " + "; ".join(errors))
            self._apply_dict(data)
        if path not in self._config_paths:
            self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load ``./cargoflow.yaml`` if present."""
        path = Path("cargoflow.yaml")
        if path.exists():
            self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                if hasattr(config_obj, key):
                    attr = getattr(config_obj, key)
                    if isinstance(attr, ConfigValue):
                        attr.set(value)
                    elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                        apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, "__dataclass_fields__") or part not in obj.__dataclass_fields__:
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("ledger.min_dwell_seconds", 600)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("confidential.max_contents_bytes")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def watch(self, callback: Callable[[CargoFlowConfig], None]) -> None:
        """Register a callback for configuration changes."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        for path in self._config_paths:
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value!r}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = obj.default
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> CargoFlowConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
