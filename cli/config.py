"""
Configuration Management Module for the Metaplex Auth CLI

Handles layered configuration: built-in defaults, then the first config
file found (or an explicit one), then environment variables, then
command line options.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from crypto.auth import SolanaCluster
from crypto.exceptions import ConfigurationError
from network.backends import BACKENDS

# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / '.metaplex-auth.json',
    Path.cwd() / '.metaplex-auth.yml',
    Path.home() / '.metaplex-auth' / 'config.json',
    Path.home() / '.metaplex-auth' / 'config.yml',
]

# Environment variable prefix
ENV_PREFIX = 'METAPLEX_AUTH_'

MINTING_AGENT = 'metaplex-auth/cli'

DEFAULT_CONFIG = {
    'endpoint': None,  # backend default
    'backend': 'nft.storage',
    'cluster': 'devnet',
    'gateway_host': 'https://nftstorage.link',
    'max_retries': 1,
    'max_concurrency': 3,
    'chunk_size': 10 * 1024 * 1024,
    'minting_agent': MINTING_AGENT,
    'output_format': 'table',  # table, json, yaml
}


class ConfigurationManager:
    """Manages layered configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None,
                 search_paths: Optional[List[Path]] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            environ: Environment to read; defaults to os.environ
            search_paths: Config file locations; defaults to CONFIG_SEARCH_PATHS
        """
        self.logger = logging.getLogger(__name__)
        self.config_file = config_file
        self.environ = environ if environ is not None else os.environ
        self.search_paths = search_paths if search_paths is not None else CONFIG_SEARCH_PATHS
        self._config_cache: Optional[Dict[str, Any]] = None
        self._config_sources: List[str] = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in layered order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        configs = [dict(DEFAULT_CONFIG)]
        self._config_sources = ["defaults"]

        if self.config_file:
            path = Path(self.config_file)
            if not path.exists():
                raise ConfigurationError(f"Config file not found: {path}")
            configs.append(self._load_config_file(path))
            self._config_sources.append(f"file:{path}")
        else:
            for path in self.search_paths:
                if path.exists():
                    configs.append(self._load_config_file(path))
                    self._config_sources.append(f"file:{path}")
                    self.logger.debug(f"Loaded config from {path}")
                    break  # Use first found config file

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        return self._config_cache

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a JSON or YAML file."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix in ('.yml', '.yaml'):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config = {}

        for key, value in self.environ.items():
            if key.startswith(ENV_PREFIX):
                # METAPLEX_AUTH_MAX_RETRIES -> max_retries
                config_key = key[len(ENV_PREFIX):].lower()
                env_config[config_key] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool]:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ('true', 'yes'):
            return True
        if value.lower() in ('false', 'no'):
            return False

        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = value

        return result

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self.load()

        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def set(self, key_path: str, value: Any):
        """Set configuration value by dot-notation path."""
        config = self.load()

        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})

        current[keys[-1]] = value

    def apply_overrides(self, **overrides: Any):
        """Apply command line options that were actually given."""
        for key, value in overrides.items():
            if value is not None:
                self.set(key, value)

    def get_validation_errors(self) -> List[str]:
        """
        Check the current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        if config.get('backend') not in BACKENDS:
            errors.append(f"Invalid backend: {config.get('backend')}")

        clusters = [c.value for c in SolanaCluster]
        if config.get('cluster') not in clusters:
            errors.append(f"Invalid cluster: {config.get('cluster')}")

        for key in ('max_concurrency', 'chunk_size'):
            value = config.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                errors.append(f"{key} must be a positive integer")

        max_retries = config.get('max_retries')
        if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 0:
            errors.append("max_retries must be a non-negative integer")

        if not config.get('minting_agent'):
            errors.append("minting_agent is required")

        if config.get('output_format') not in ('table', 'json', 'yaml'):
            errors.append(f"Invalid output format: {config.get('output_format')}")

        return errors

    def validate(self) -> Dict[str, Any]:
        """
        Validate the configuration and return it.

        Raises:
            ConfigurationError: If any setting is invalid
        """
        errors = self.get_validation_errors()
        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))
        return self.load()

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources
