"""
Configuration Manager for the word arithmetic engine
Handles settings for the embedding provider, cache, budget, ranking and credentials
"""

import os
import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Dict, Any, Optional


class ConfigManager:
    """
    Manages application configuration through a JSON configuration file,
    with ``CONFIG_*`` environment variables taking precedence.
    """
    # Default configuration values
    DEFAULT_CONFIG = {
        "embedding": {
            "provider": "huggingface",
            "model": "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2",
            "model_cache_dir": "~/.cache/sentence_transformers",
            "dimension": 384,
            "timeout": 10.0,
            "max_retries": 0,
            "retry_interval": 0.5,
            "synthetic_fallback": True
        },
        "api": {
            "huggingface": {
                "endpoint": "https://api-inference.huggingface.co/models",
                "api_key": "",
                "api_key_env": "HUGGINGFACE_API_KEY"
            }
        },
        "cache": {
            "ttl_seconds": 24 * 60 * 60,
            "max_size": 10000
        },
        "store": {
            "backend": "memory",
            "directory": "~/.wordmath/vectors"
        },
        "budget": {
            "max_requests": 60,
            "window_seconds": 60,
            "daily_budget": 1.0,
            "cost_per_1k_tokens": 0.0001
        },
        "ranking": {
            "top_k": 3,
            "min_similarity": None
        },
        "request": {
            "max_word_length": 100,
            "preview_dims": 5
        },
        "vocabulary": {
            "file": None,
            "min_frequency": 0.0
        },
        "logging": {
            "level": "INFO",
            "directory": None,
            "json": True
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager with optional custom config path.

        Args:
            config_path: Path to custom config file (defaults to ~/.wordmath/config.json)
        """
        self.logger = logging.getLogger("wordmath.config")
        self.config_dir = Path(os.path.expanduser("~/.wordmath"))

        # Determine config file path
        self.config_path: Optional[Path] = Path(config_path) if config_path else self.config_dir / "config.json"

        # Load configuration
        self.config = deepcopy(self.DEFAULT_CONFIG)
        self.load_config()

    @classmethod
    def in_memory(cls, overrides: Optional[Dict[str, Any]] = None) -> "ConfigManager":
        """Configuration that never touches the filesystem."""
        instance = cls.__new__(cls)
        instance.logger = logging.getLogger("wordmath.config")
        instance.config_dir = None
        instance.config_path = None
        instance.config = deepcopy(cls.DEFAULT_CONFIG)
        if overrides:
            instance._deep_update(instance.config, deepcopy(overrides))
        return instance

    def load_config(self) -> None:
        """Load configuration from file, creating default if not exists."""
        if self.config_path is None:
            return
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r', encoding='utf-8') as file:
                    user_config = json.load(file)
                    # Update default config with user settings
                    self._deep_update(self.config, user_config)
                    self.logger.info(f"Configuration loaded from {self.config_path}")
            except (json.JSONDecodeError, IOError) as e:
                self.logger.error(f"Error loading configuration: {e}")
                self.logger.info("Using default configuration")
        else:
            self.save_config()
            self.logger.info(f"Created default configuration at {self.config_path}")

    def save_config(self) -> None:
        """Save current configuration to file."""
        if self.config_path is None:
            return
        try:
            # Create parent directories if they don't exist
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, 'w', encoding='utf-8') as file:
                json.dump(self.config, file, indent=2)

            # Set restrictive permissions (only user can read/write)
            if os.name == 'posix':
                os.chmod(self.config_path, 0o600)

            self.logger.info(f"Configuration saved to {self.config_path}")
        except IOError as e:
            self.logger.error(f"Error saving configuration: {e}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation path. Environment variables
        prefixed with ``CONFIG_`` take precedence over values stored in the
        configuration file.

        For example, requesting ``budget.daily_budget`` will first look for an
        environment variable named ``CONFIG_BUDGET_DAILY_BUDGET``. If found,
        the string value is converted to int/float/bool if possible.
        """
        keys = key_path.split('.')

        # 1) Environment variable override
        env_var = 'CONFIG_' + '_'.join(keys).upper()
        env_val = os.environ.get(env_var)
        if env_val is not None:
            lowered = env_val.lower()
            if lowered in {'true', 'false'}:
                return lowered == 'true'
            try:
                return int(env_val)
            except ValueError:
                pass
            try:
                return float(env_val)
            except ValueError:
                pass
            try:
                return json.loads(env_val)
            except json.JSONDecodeError:
                return env_val  # raw string

        # 2) Regular config lookup
        value: Any = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return default if value is None else value

    def set(self, key_path: str, value: Any, save: bool = True) -> None:
        """
        Set a value using dot notation, creating intermediate sections. A
        ``ValueError`` is raised when the path runs through a scalar value.
        """
        keys = key_path.split('.')
        config_section = self.config

        for key in keys[:-1]:
            current_val = config_section.get(key)
            if current_val is None:
                config_section[key] = {}
                current_val = config_section[key]
            if not isinstance(current_val, dict):
                raise ValueError(f"Cannot create sub-key under non-mapping path '{'.'.join(keys[:-1])}'")
            config_section = current_val

        config_section[keys[-1]] = value

        if save:
            self.save_config()

    def get_api_key(self, service: str) -> Optional[str]:
        """
        Get API key for specified service.

        Args:
            service: Service name (huggingface)

        Returns:
            API key or None if not set
        """
        api_key = self.get(f"api.{service}.api_key")

        # If not in config, try environment variable
        if not api_key:
            env_var = self.get(f"api.{service}.api_key_env", f"{service.upper()}_API_KEY")
            api_key = os.environ.get(env_var)

            # If found in environment, update config but don't save to file
            if api_key:
                self.set(f"api.{service}.api_key", api_key, save=False)

        return api_key or None

    def is_api_configured(self, service: str) -> bool:
        """True if an API key for *service* is set in the configuration itself."""
        return bool(self.get(f"api.{service}.api_key"))

    def _deep_update(self, target: Dict, source: Dict) -> None:
        """
        Recursively update nested dictionaries.

        Args:
            target: Target dictionary to update
            source: Source dictionary with updates
        """
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_update(target[key], value)
            else:
                target[key] = value

    def __iter__(self):
        """Iterate over top-level configuration section names."""
        return iter(self.config.keys())

    def __contains__(self, item):
        """True if *item* is a top-level section present in the config."""
        return item in self.config

    _SENSITIVE_PATTERNS = {"password", "secret", "token", "api_key"}

    def __str__(self) -> str:
        """Return a JSON representation with sensitive values masked."""
        def mask(obj):
            if isinstance(obj, dict):
                masked = {}
                for k, v in obj.items():
                    if any(p in k.lower() for p in self._SENSITIVE_PATTERNS) and k != "api_key_env":
                        masked[k] = "***" if v else v
                    else:
                        masked[k] = mask(v)
                return masked
            if isinstance(obj, list):
                return [mask(x) for x in obj]
            return obj

        return json.dumps(mask(self.config), indent=2, ensure_ascii=False)
