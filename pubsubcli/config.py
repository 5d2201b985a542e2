"""
Configuration management supporting both file-based and environment variable configurations.
"""
import os
import json
import logging
from typing import Any, Dict, Optional


class Config:
    """Configuration manager with defaults and environment variable support"""

    # Default configuration values
    DEFAULTS = {
        # Client settings
        'client': {
            'project': None,            # Google Cloud project ID
            'request_timeout': 60,      # seconds per RPC
        },

        # Publisher settings
        'publisher': {
            'publish_timeout': None,    # None waits for the broker indefinitely
        },

        # Subscriber settings
        'subscriber': {
            'poll_interval': 0.5,       # seconds between cancellation checks
        },

        # Logging
        'logging': {
            'level': 'WARNING',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'file': None,  # None means stderr only
        }
    }

    ENV_MAPPINGS = {
        'GOOGLE_CLOUD_PROJECT': 'client.project',
        'PSC_PROJECT': 'client.project',
        'PSC_REQUEST_TIMEOUT': 'client.request_timeout',
        'PSC_PUBLISH_TIMEOUT': 'publisher.publish_timeout',
        'PSC_POLL_INTERVAL': 'subscriber.poll_interval',
        'PSC_LOG_LEVEL': 'logging.level',
        'PSC_LOG_FILE': 'logging.file',
    }

    # Keys that always stay strings, even when they look numeric
    STRING_KEYS = {'client.project', 'logging.level', 'logging.file'}

    def __init__(self, config_file: Optional[str] = None):
        self._config = self._deep_copy(self.DEFAULTS)

        # Load from file if provided
        if config_file and os.path.exists(config_file):
            self._load_from_file(config_file)

        # Override with environment variables
        self._load_from_env()

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.
        Example: config.get('subscriber.poll_interval') returns the poll interval
        """
        keys = key_path.split('.')
        value = self._config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        keys = key_path.split('.')
        config = self._config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def _load_from_file(self, config_file: str) -> None:
        """Load configuration from JSON file"""
        try:
            with open(config_file, 'r') as f:
                file_config = json.load(f)
            self._merge_config(self._config, file_config)
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load config file {config_file}: {e}")

    def _load_from_env(self) -> None:
        """Load configuration from environment variables (later mappings win)"""
        for env_var, config_key in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is None:
                continue
            if config_key in self.STRING_KEYS:
                self.set(config_key, env_value)
            else:
                self.set(config_key, self._convert_env_value(env_value))

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Try integer
        try:
            return int(value)
        except ValueError:
            pass

        # Try float
        try:
            return float(value)
        except ValueError:
            pass

        # Try boolean
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        if value.lower() in ('none', 'null', ''):
            return None

        # Return as string
        return value

    def _merge_config(self, base: Dict, override: Dict) -> None:
        """Recursively merge configuration dictionaries"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _deep_copy(self, obj: Any) -> Any:
        """Deep copy configuration"""
        if isinstance(obj, dict):
            return {k: self._deep_copy(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._deep_copy(item) for item in obj]
        else:
            return obj

    def __str__(self) -> str:
        return json.dumps(self._config, indent=2)


def configure_logging(config: Config, level: Optional[str] = None) -> None:
    """Configure the root logger from the logging.* settings"""
    level_name = (level or config.get('logging.level') or 'WARNING').upper()
    log_file = config.get('logging.file')

    handlers = [logging.FileHandler(log_file)] if log_file else [logging.StreamHandler()]
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format=config.get('logging.format'),
        handlers=handlers,
        force=True,
    )


# Global configuration instance
_config_instance: Optional[Config] = None

def get_config() -> Config:
    """Get global configuration instance"""
    global _config_instance
    if _config_instance is None:
        config_file = os.getenv('PSC_CONFIG_FILE', 'config/pubsub-cli.json')
        _config_instance = Config(config_file)
    return _config_instance

def initialize_config(config_file: Optional[str] = None) -> Config:
    """Initialize global configuration"""
    global _config_instance
    _config_instance = Config(config_file)
    return _config_instance
