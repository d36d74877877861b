#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Centralized Configuration Manager for the Specialty Mapper

This module provides a singleton ConfigManager class that loads engine settings
from config.yaml (or a remote copy of it) and environment variables, with
fallback to sensible defaults. It serves as a single point of access for the
engine, the batch CLI and the HTTP API.
"""

import os
import copy
import yaml
import logging
import requests
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path

from pydantic import ValidationError

from .config_loader import ConfigurationError
from .schemas import EngineSettings

logger = logging.getLogger(__name__)

# Named tuning presets. A preset supplies the decision threshold and the
# scoring weight set; explicit settings in config.yaml win over the preset.
PRESETS: Dict[str, Dict[str, Any]] = {
    'default': {
        'min_decision_threshold': 0.68,
        'weights': {'token': 0.45, 'synonym': 0.25, 'char_sim': 0.15, 'negative': -0.35, 'source_hint': 0.05},
    },
    'conservative': {
        'min_decision_threshold': 0.80,
        'weights': {'token': 0.50, 'synonym': 0.25, 'char_sim': 0.10, 'negative': -0.40, 'source_hint': 0.05},
    },
    'aggressive': {
        'min_decision_threshold': 0.55,
        'weights': {'token': 0.35, 'synonym': 0.20, 'char_sim': 0.20, 'negative': -0.25, 'source_hint': 0.10},
    },
    'pediatric': {
        'min_decision_threshold': 0.70,
        'weights': {'token': 0.45, 'synonym': 0.20, 'char_sim': 0.15, 'negative': -0.35, 'source_hint': 0.05},
    },
    'adult': {
        'min_decision_threshold': 0.65,
        'weights': {'token': 0.40, 'synonym': 0.20, 'char_sim': 0.15, 'negative': -0.30, 'source_hint': 0.05},
    },
}


DEFAULT_SETTINGS: Dict[str, Any] = {
    'api': {
        'port': 10000,
        'host': '0.0.0.0',
        'debug': False,
        'workers': 4
    },
    'engine': {
        'preset': 'default',
        'hard_map_confidence': 0.95,
        'override_confidence': 1.0,
        'top_n': 5,
        'char_similarity': 'jaro_winkler',
        'min_token_length': 2,
        'max_workers': 1
    },
    'data': {
        'directory': None,
        'taxonomy': 'taxonomy.json',
        'synonyms': 'synonyms.yaml',
        'rules': [
            'rules/base.yaml',
            'rules/pediatric.yaml',
            'rules/source_mgma.yaml',
            'rules/source_sullivancotter.yaml',
            'rules/source_gallagher.yaml'
        ],
        'overrides': 'overrides.yaml'
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    }
}


class ConfigSnapshot:
    """
    One loaded copy of the settings: the file contents with environment
    overrides applied, read through dot paths with fallback to the defaults.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, config_source: str = 'defaults'):
        self.defaults = DEFAULT_SETTINGS
        self.config: Dict[str, Any] = config if config is not None else copy.deepcopy(DEFAULT_SETTINGS)
        self.config_source = config_source

    @staticmethod
    def _config_path() -> Tuple[Path, bool]:
        """Resolves the local settings file and whether it was named explicitly."""
        if explicit := os.environ.get('SPECIALTY_MAPPER_CONFIG'):
            return Path(explicit), True
        return Path(__file__).parent / 'config.yaml', False

    @classmethod
    def _load_config_file(cls) -> 'ConfigSnapshot':
        """
        Load configuration from the local config.yaml file.

        Only the bundled file may be absent (built-in defaults apply). A file
        named by SPECIALTY_MAPPER_CONFIG that does not exist, or any file that
        cannot be read or parsed into a mapping, is a ConfigurationError.
        """
        config_path, explicit = cls._config_path()
        if not config_path.exists():
            if explicit:
                raise ConfigurationError(f"Config file not found at {config_path}")
            logger.warning(f"Config file not found at {config_path}, using defaults")
            return cls()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Error loading configuration file {config_path}: {e}") from e
        if not isinstance(loaded_config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping of sections")
        logger.info(f"Loaded configuration from {config_path}")
        return cls(loaded_config, str(config_path))

    @staticmethod
    def _load_remote_config(url: str) -> Optional[Dict[str, Any]]:
        """Fetch the settings file once from a URL. Returns None on any failure."""
        try:
            logger.info(f"Fetching config from {url}")
            response = requests.get(url, timeout=10)
            response.raise_for_status()
            remote_config = yaml.safe_load(response.text)
            if isinstance(remote_config, dict) and remote_config:
                return remote_config
            logger.warning("Remote config file is empty")
            return None
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to fetch remote config: {e}")
            return None
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse remote config YAML: {e}")
            return None

    @classmethod
    def load(cls) -> 'ConfigSnapshot':
        """
        Reads the settings from the remote URL if configured, else the local
        file, then applies environment overrides. Nothing shared is modified.
        """
        snapshot = None
        if url := os.environ.get('SPECIALTY_MAPPER_CONFIG_URL'):
            remote_config = cls._load_remote_config(url)
            if remote_config:
                logger.info("Using config from remote URL")
                snapshot = cls(remote_config, url)
            else:
                logger.warning("Remote config unavailable, falling back to local config file")
        if snapshot is None:
            snapshot = cls._load_config_file()
        snapshot._load_env_variables()
        return snapshot

    def _load_env_variables(self) -> None:
        """Override configuration with environment variables."""
        # API configuration
        if port := os.environ.get('API_PORT'):
            self._set_nested_value(['api', 'port'], int(port))

        if host := os.environ.get('API_HOST'):
            self._set_nested_value(['api', 'host'], host)

        if debug := os.environ.get('API_DEBUG'):
            self._set_nested_value(['api', 'debug'], debug.lower() in ('true', '1', 'yes'))

        # Engine configuration
        if preset := os.environ.get('MAPPER_PRESET'):
            self._set_nested_value(['engine', 'preset'], preset)

        if threshold := os.environ.get('MAPPER_MIN_THRESHOLD'):
            self._set_nested_value(['engine', 'min_decision_threshold'], float(threshold))

        if workers := os.environ.get('MAPPER_MAX_WORKERS'):
            self._set_nested_value(['engine', 'max_workers'], int(workers))

        if data_dir := os.environ.get('MAPPER_DATA_DIR'):
            self._set_nested_value(['data', 'directory'], data_dir)

        # Logging configuration
        if log_level := os.environ.get('LOG_LEVEL'):
            self._set_nested_value(['logging', 'level'], log_level)

    def _set_nested_value(self, path: List[str], value: Any) -> None:
        """Set a nested value in the configuration dictionary."""
        current = self.config
        for key in path[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _get_nested_value(self, path: List[str], default: Any = None) -> Any:
        """Get a nested value from the configuration dictionary."""
        current = self.config
        try:
            for key in path:
                current = current[key]
            return current
        except (KeyError, TypeError):
            current = self.defaults
            try:
                for key in path:
                    current = current[key]
                return current
            except (KeyError, TypeError):
                return default

    def get(self, path: str, default: Any = None) -> Any:
        """
        Get a configuration value by dot-separated path.

        Args:
            path: Dot-separated path to the configuration value (e.g., 'engine.top_n')
            default: Default value to return if the path is not found

        Returns:
            The configuration value or the default value if not found
        """
        return self._get_nested_value(path.split('.'), default)

    def set(self, path: str, value: Any) -> None:
        self._set_nested_value(path.split('.'), value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section, merged over its defaults.

        Returns:
            Dictionary containing the configuration section or empty dict if not found
        """
        merged = dict(self.defaults.get(section, {}))
        result = self.get(section, {})
        if isinstance(result, dict):
            merged.update(result)
        return merged

    def __getitem__(self, key: str) -> Any:
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class ConfigManager(ConfigSnapshot):
    """
    Singleton configuration manager that loads settings from config.yaml
    and environment variables, with fallback to sensible defaults.
    """
    _instance = None

    def __new__(cls):
        """Ensure only one instance of ConfigManager exists (singleton pattern)."""
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        super().__init__()
        self.apply(ConfigSnapshot.load())
        self._initialized = True
        logger.info(f"Configuration manager initialized from {self.config_source}")

    def load_snapshot(self) -> ConfigSnapshot:
        """Reads the current sources into a new snapshot without touching this manager."""
        return ConfigSnapshot.load()

    def apply(self, snapshot: ConfigSnapshot) -> None:
        """Installs a previously loaded snapshot as the live configuration."""
        self.config = snapshot.config
        self.config_source = snapshot.config_source

    def reload(self) -> None:
        """Reload configuration from its sources and re-apply environment overrides."""
        self.apply(self.load_snapshot())
        logger.info("Configuration reloaded")


# Create a singleton instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the singleton ConfigManager instance.

    Returns:
        The ConfigManager instance
    """
    return config


def setup_logging(config_manager: Optional[ConfigSnapshot] = None, level: Optional[str] = None) -> None:
    """Applies the `logging` section via logging.basicConfig."""
    manager = config_manager or config
    section = manager.get_section('logging')
    log_level = (level or section.get('level') or 'INFO').upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format=section.get('format') or manager.defaults['logging']['format'],
    )


def build_engine_settings(config_manager: Optional[ConfigSnapshot] = None,
                          preset: Optional[str] = None,
                          threshold: Optional[float] = None) -> EngineSettings:
    """
    Validates the `engine` section into EngineSettings.

    Precedence, lowest first: built-in defaults, the named preset, explicit
    values in the `engine` section, then the `preset`/`threshold` arguments.
    An explicit `preset` argument re-applies that preset's threshold and
    weights over the file values.

    Raises:
        ConfigurationError: Unknown preset name or settings that fail validation.
    """
    manager = config_manager or config
    section = manager.get_section('engine')
    preset_name = preset or section.get('preset') or 'default'
    if preset_name not in PRESETS:
        raise ConfigurationError(
            f"Unknown preset '{preset_name}'. Known presets: {', '.join(sorted(PRESETS))}"
        )

    values: Dict[str, Any] = copy.deepcopy(PRESETS[preset_name])
    if preset:
        overlay = {k: v for k, v in section.items() if k not in ('min_decision_threshold', 'weights')}
    else:
        overlay = section
    for key, value in overlay.items():
        if value is None:
            continue
        if key == 'weights' and isinstance(value, dict):
            values['weights'].update(value)
        else:
            values[key] = value
    values['preset'] = preset_name
    if threshold is not None:
        values['min_decision_threshold'] = threshold

    try:
        return EngineSettings.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid engine settings: {e}") from e
