import json
import logging
import os
from typing import Any, Dict, Optional

from .cache_key import DEFAULT_CACHE_PATH, CacheNameStyle

logger = logging.getLogger(__name__)

TRANSPORTS = ("requests", "socket")


class ProxyConfig:
    """Settings of a caching proxy: defaults, overridden by a JSON file."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Load the settings.

        Args:
            config_path: Path to a JSON object of settings; ignored when it
                does not exist

        Raises:
            ValueError: If the file cannot be read or holds invalid settings
        """
        self.config_path = config_path
        self.config = self._defaults()

        if config_path and os.path.exists(config_path):
            self.config.update(self._read_file(config_path))
        self._validate()

    @staticmethod
    def _defaults() -> Dict[str, Any]:
        return {
            "cache_path": DEFAULT_CACHE_PATH,
            "cache_name_style": CacheNameStyle.SHA1.value,
            "max_redirects": 10,
            "timeout": 5,
            "transport": "requests",
        }

    @staticmethod
    def _read_file(config_path: str) -> Dict[str, Any]:
        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
        except (OSError, ValueError) as e:
            raise ValueError(f"Error loading config file: {e}")

        if not isinstance(file_config, dict):
            raise ValueError(f"Config file {config_path} must hold a JSON object")
        return file_config

    def _validate(self) -> None:
        unknown = set(self.config) - set(self._defaults())
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")

        # Raises ValueError for unknown styles
        CacheNameStyle.parse(self.config["cache_name_style"])

        if self.config["transport"] not in TRANSPORTS:
            raise ValueError(f"Unknown transport: {self.config['transport']!r}")
        max_redirects = self.config["max_redirects"]
        if not isinstance(max_redirects, int) or max_redirects < 0:
            raise ValueError(f"max_redirects must be a non-negative integer, got {max_redirects!r}")
        if not isinstance(self.config["timeout"], (int, float)) or self.config["timeout"] <= 0:
            raise ValueError(f"timeout must be a positive number, got {self.config['timeout']!r}")

    def get(self, key: str) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Configuration key

        Returns:
            Configuration value, or None for unknown keys
        """
        return self.config.get(key)
