"""
Configuration Manager.

Persists the active engine and the layered engine configuration in a JSON
file. Configuration values come from three layers, lowest precedence first:

    package  defaults shipped with the package
    engine   values from the active engine's manifest
    user     overrides set by the user

Keys are dotted strings (e.g. "server.port"); each layer stores them flat.
"""

import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from engine_selector.utils.logger import log

CONFIG_DIR_ENV = "ENGINE_SELECTOR_CONFIG_DIR"
ENGINES_DIR_ENV = "ENGINE_SELECTOR_ENGINES_DIR"

PACKAGE_LAYER = "package"
ENGINE_LAYER = "engine"
USER_LAYER = "user"

# Lowest to highest precedence
LAYER_PRECEDENCE = (PACKAGE_LAYER, ENGINE_LAYER, USER_LAYER)


class UnknownConfigKeyError(KeyError):
    """Raised when a user override targets a key no lower layer defines."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"unknown key: {key}")

    def __str__(self) -> str:
        return self.args[0]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(key: str, prefix: str) -> bool:
    # "model" matches "model" and "model.source", not "models"
    return not prefix or key == prefix or key.startswith(prefix + ".")


class ConfigManager:
    """
    JSON-backed configuration store.

    Features:
    - Schema versioning
    - Nested key access via dot notation
    - Backup of the previous file on every save
    - Active engine tracking and layered engine configuration
    """

    CURRENT_SCHEMA_VERSION = 1
    CONFIG_FILENAME = "config.json"

    DEFAULT_CONFIG = {
        "schema_version": 1,
        "created_at": None,  # Set on creation
        "updated_at": None,  # Set on every save

        "cache": {
            "active-engine": None,
        },

        "paths": {
            "engines": "engines",
        },

        "hardware": {
            "storage-path": "/var/lib/snapd",
        },

        "layers": {
            PACKAGE_LAYER: {},
            ENGINE_LAYER: {},
            USER_LAYER: {},
        },
    }

    def __init__(self, config_dir: Union[str, Path, None] = None):
        """
        Load (or create) the config file.

        Args:
            config_dir: Directory for config.json; defaults to
                $ENGINE_SELECTOR_CONFIG_DIR or ~/.engine_selector
        """
        if config_dir is None:
            config_dir = os.environ.get(CONFIG_DIR_ENV) or Path.home() / ".engine_selector"
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / self.CONFIG_FILENAME

        self._ensure_config_dir()
        self.config = self._load_config()
        self._validate_structure()

    def _ensure_config_dir(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def _load_config(self) -> Dict[str, Any]:
        """Load config from file or create default."""
        if not self.config_file.exists():
            config = self._create_default_config()
            self._save_config(config)
            return config

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to load config: {e}. Creating new config.")
            config = self._create_default_config()
            self._save_config(config)
            return config

        if not isinstance(config, dict):
            log.error(f"Config file {self.config_file} is not a JSON object. Creating new config.")
            config = self._create_default_config()
            self._save_config(config)
        return config

    def _create_default_config(self) -> Dict[str, Any]:
        config = self._deep_copy(self.DEFAULT_CONFIG)
        now = _now()
        config["created_at"] = now
        config["updated_at"] = now
        return config

    def _save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Save config to file, keeping the previous file as config.json.bak."""
        if config is None:
            config = self.config

        config["updated_at"] = _now()

        if self.config_file.exists():
            try:
                shutil.copy2(self.config_file, str(self.config_file) + ".bak")
            except IOError as e:
                log.warning(f"Failed to backup config: {e}")

        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)

    def _validate_structure(self) -> None:
        """Add missing keys and replace sections of the wrong type with defaults."""
        schema_version = self.config.get("schema_version", self.CURRENT_SCHEMA_VERSION)
        if schema_version > self.CURRENT_SCHEMA_VERSION:
            log.warning(
                f"Config schema v{schema_version} is newer than supported v{self.CURRENT_SCHEMA_VERSION}"
            )

        for key, default in self.DEFAULT_CONFIG.items():
            if key not in self.config:
                self.config[key] = self._deep_copy(default)
            elif isinstance(default, dict) and not isinstance(self.config[key], dict):
                log.warning(f"Config section {key} has the wrong type, resetting it")
                self.config[key] = self._deep_copy(default)
            elif isinstance(default, dict):
                for subkey, subdefault in default.items():
                    if subkey not in self.config[key]:
                        self.config[key][subkey] = self._deep_copy(subdefault)

    def _deep_copy(self, obj: Any) -> Any:
        """Deep copy a JSON-serializable object."""
        if isinstance(obj, dict):
            return {k: self._deep_copy(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._deep_copy(i) for i in obj]
        return obj

    # =========================================================================
    # Public API - Get/Set
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a config value by key.

        Supports dot notation for nested keys:
            manager.get("cache.active-engine")

        Args:
            key: The config key (supports dot notation)
            default: Default value if key not found

        Returns:
            The config value or default
        """
        value = self.config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a config value by key and save.

        Supports dot notation for nested keys:
            manager.set("paths.engines", "/opt/engines")
        """
        parts = key.split(".")

        parent = self.config
        for part in parts[:-1]:
            if not isinstance(parent.get(part), dict):
                parent[part] = {}
            parent = parent[part]

        parent[parts[-1]] = value
        self._save_config()

    # =========================================================================
    # Active engine API
    # =========================================================================

    def get_active_engine(self) -> Optional[str]:
        """Name of the active engine, or None if none was selected."""
        return self.get("cache.active-engine") or None

    def set_active_engine(self, engine_name: str) -> None:
        if not engine_name:
            raise ValueError("engine name cannot be empty")
        self.set("cache.active-engine", engine_name)

    # =========================================================================
    # Layered configuration API
    # =========================================================================

    def _layer(self, layer: str) -> Dict[str, Any]:
        if layer not in LAYER_PRECEDENCE:
            raise ValueError(f"Invalid config layer: {layer}. Must be one of {list(LAYER_PRECEDENCE)}")
        layers = self.config["layers"]
        if not isinstance(layers.get(layer), dict):
            layers[layer] = {}
        return layers[layer]

    def get_layered(self, key: str = "") -> Dict[str, Any]:
        """
        Get configuration values after applying layer precedence.

        Args:
            key: Dotted key; returns the key itself and all keys below it.
                An empty key returns everything.

        Returns:
            Flat {dotted.key: value} mapping

        Example:
            manager.get_layered("server")  # {"server.port": 8080, "server.host": "0.0.0.0"}
        """
        merged: Dict[str, Any] = {}
        for layer in LAYER_PRECEDENCE:
            merged.update(self._layer(layer))
        return {k: v for k, v in merged.items() if _matches(k, key)}

    def set_layer_value(self, key: str, value: Any, layer: str = USER_LAYER) -> None:
        """
        Set a configuration value in one layer.

        Raises:
            UnknownConfigKeyError: layer is "user" and no lower layer defines key
        """
        if not key:
            raise ValueError("config key cannot be empty")
        if layer == USER_LAYER and not self._defined_below_user(key):
            raise UnknownConfigKeyError(key)

        self._layer(layer)[key] = value
        self._save_config()

    def _defined_below_user(self, key: str) -> bool:
        for layer in (PACKAGE_LAYER, ENGINE_LAYER):
            if any(_matches(k, key) for k in self._layer(layer)):
                return True
        return False

    def _remove(self, key: str, layer: str) -> int:
        values = self._layer(layer)
        removed = [k for k in values if _matches(k, key)]
        for k in removed:
            del values[k]
        return len(removed)

    def unset_layer_value(self, key: str, layer: str = USER_LAYER) -> int:
        """
        Remove key and all keys below it from one layer.

        Returns:
            Number of keys removed
        """
        removed = self._remove(key, layer)
        if removed:
            self._save_config()
        return removed

    def activate_engine(
        self,
        engine_name: str,
        configurations: Dict[str, Any],
        previous_configurations: Iterable[str] = (),
    ) -> None:
        """
        Make engine_name the active engine.

        The previous engine's engine-layer values and the user overrides of
        its keys are removed, then the new engine's configurations are
        written to the engine layer. Saved once at the end.

        Args:
            engine_name: Engine to activate
            configurations: The engine's configuration values
            previous_configurations: Keys configured by the previous engine
        """
        if not engine_name:
            raise ValueError("engine name cannot be empty")

        self._layer(ENGINE_LAYER).clear()

        for key in previous_configurations:
            self._remove(key, USER_LAYER)

        self._layer(ENGINE_LAYER).update(configurations)
        self.config["cache"]["active-engine"] = engine_name
        self._save_config()
        log.info(f"Active engine set to {engine_name}")

    # =========================================================================
    # Path API
    # =========================================================================

    def get_engines_dir(self) -> Path:
        """Manifests directory: $ENGINE_SELECTOR_ENGINES_DIR, else paths.engines."""
        env_dir = os.environ.get(ENGINES_DIR_ENV)
        if env_dir:
            return Path(env_dir)
        return Path(self.get("paths.engines") or self.DEFAULT_CONFIG["paths"]["engines"])

    def get_storage_path(self) -> str:
        """Disk key checked against manifests' disk-space requirement."""
        return self.get("hardware.storage-path") or self.DEFAULT_CONFIG["hardware"]["storage-path"]
