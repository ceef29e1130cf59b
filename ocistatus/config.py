"""
ocistatus Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (OCISTATUS_*)
    2. Runtime overrides
    3. User config file (~/.ocistatus/config.yaml)
    4. Project config file (./ocistatus.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from ocistatus.errors import ConfigurationError

T = TypeVar("T")

DEFAULT_USER_AGENT = "ocireconciler-statusmanager"


class ValidationError(ConfigurationError):
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
    secret: bool = False  # Don't log if True
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value
        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == float:
            return float(value)  # type: ignore
        elif target_type == list:
            return [v for v in value.split(",") if v]  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class SigstoreConfig:
    """Sigstore instance and identity token sources."""
    instance: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="production",
        env_var="OCISTATUS_SIGSTORE_INSTANCE",
        description="Public sigstore instance (production, staging)",
        validator=lambda x: x in ("production", "staging"),
    ))
    trust_config: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="OCISTATUS_TRUST_CONFIG",
        description="Client trust config file for a private instance; overrides instance",
    ))
    offline: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="OCISTATUS_SIGSTORE_OFFLINE",
        description="Use cached trust material instead of refreshing it",
    ))
    token_env: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="SIGSTORE_ID_TOKEN",
        env_var="OCISTATUS_TOKEN_ENV",
        description="Environment variable holding an ambient identity token",
    ))
    token_file: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="OCISTATUS_TOKEN_FILE",
        description="File holding a projected identity token",
    ))


@dataclass
class RegistryConfig:
    """OCI registry transport settings."""
    repository_override: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="OCISTATUS_REPOSITORY",
        description="Store attestations in this repository instead of the subject's",
    ))
    insecure: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="OCISTATUS_REGISTRY_INSECURE",
        description="Talk plain HTTP to the registry (local test registries only)",
    ))
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=30.0,
        env_var="OCISTATUS_REGISTRY_TIMEOUT",
        description="HTTP timeout for registry requests",
        validator=lambda x: x > 0,
    ))
    username: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="OCISTATUS_REGISTRY_USERNAME",
        description="Registry username",
    ))
    password: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="OCISTATUS_REGISTRY_PASSWORD",
        description="Registry password or token",
        secret=True,
    ))
    user_agent: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=DEFAULT_USER_AGENT,
        env_var="OCISTATUS_USER_AGENT",
        description="User-Agent attached to registry requests",
        validator=lambda x: bool(str(x).strip()),
    ))


@dataclass
class VerificationConfig:
    """Identity expected on attestations read back."""
    expected_subject: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="OCISTATUS_EXPECTED_SUBJECT",
        description="Signer subject (email or URI) expected on attestations",
    ))
    expected_issuer: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="OCISTATUS_EXPECTED_ISSUER",
        description="OIDC issuer expected on attestations",
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="OCISTATUS_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="OCISTATUS_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class StatusManagerConfig:
    """
    Root configuration for ocistatus.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    sigstore: SigstoreConfig = field(default_factory=SigstoreConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                if obj.secret and not include_secrets:
                    return "***" if obj.get() else ""
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


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

        self._config = StatusManagerConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> StatusManagerConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as ex:
                raise ConfigurationError(f"Invalid YAML in {path}: {ex}") from ex

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file must be a mapping: {path}")
        self._apply_dict(data)
        self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path("ocistatus.yaml"),
            Path("config/ocistatus.yaml"),
            Path.home() / ".ocistatus" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigurationError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("sigstore.instance", "staging")
        """
        attr = self._resolve(path)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigurationError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("registry.repository_override")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigurationError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        paths = list(self._config_paths)
        self._config_paths.clear()
        for path in paths:
            if path.exists():
                self.load_from_file(path)

    def reset(self) -> None:
        """Drop runtime overrides and loaded files, back to defaults."""
        self._config = StatusManagerConfig()
        self._config_paths.clear()

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
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ValueError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors


def get_config() -> StatusManagerConfig:
    """Get the current ocistatus configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
