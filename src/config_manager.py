"""
Configuration management for DevMind
"""

import copy
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from constants import (
    DEFAULT_BANKS,
    CLAUDE_DIR,
    CLAUDE_PROJECTS_DIR,
    MAX_CONTENT_CHARS,
    QUALITY_THRESHOLD,
    DEFAULT_SEARCH_LIMIT,
    UNIFIED_SESSION_LIMIT,
    MAX_LINES_SCANNED,
    MAX_MATCHES_PER_SESSION,
    SESSION_SAMPLE_LINES,
    DEFAULT_SOCKET_PATH,
    DEFAULT_LOG_LEVEL,
)

logger = logging.getLogger(__name__)


class ConfigManager:
    """
    Manages DevMind configuration

    Values from the config file are merged over DEFAULT_CONFIG, so a user
    file only needs the keys it changes.
    """

    DEFAULT_CONFIG = {
        "banks": DEFAULT_BANKS,
        "paths": {
            "claude_dir": CLAUDE_DIR,
            "projects_dir": CLAUDE_PROJECTS_DIR,
            "log_file": "~/.devmind/devmind.log",
            "pid_file": "~/.devmind/server.pid"
        },
        "search": {
            "default_limit": DEFAULT_SEARCH_LIMIT,
            "session_limit": UNIFIED_SESSION_LIMIT,
            "max_lines_scanned": MAX_LINES_SCANNED,
            "max_matches_per_session": MAX_MATCHES_PER_SESSION,
            "sample_lines": SESSION_SAMPLE_LINES
        },
        "extraction": {
            "max_content_chars": MAX_CONTENT_CHARS,
            "quality_threshold": QUALITY_THRESHOLD
        },
        "server": {
            "socket_path": DEFAULT_SOCKET_PATH
        },
        "logging": {
            "level": DEFAULT_LOG_LEVEL
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager"""
        if config_path:
            self.config_path = Path(config_path).expanduser()
        else:
            self.config_path = self._find_config_file()

        self.config = self.load()

    def _find_config_file(self) -> Path:
        """Find configuration file in standard locations"""
        candidates = [
            Path.cwd() / ".devmind" / "config.json",
            Path.cwd() / "devmind.json",
            Path.home() / ".devmind" / "config.json"
        ]

        for path in candidates:
            if path.exists():
                return path

        return Path.home() / ".devmind" / "config.json"

    def load(self) -> Dict[str, Any]:
        """Load configuration from file or use defaults"""
        if not self.config_path.exists():
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                json.dump(self.DEFAULT_CONFIG, f, indent=2)
            return copy.deepcopy(self.DEFAULT_CONFIG)

        try:
            with open(self.config_path, 'r') as f:
                user_config = json.load(f)
        except json.JSONDecodeError:
            logger.warning("Invalid config file %s, using defaults", self.config_path)
            return copy.deepcopy(self.DEFAULT_CONFIG)

        return self._merge_configs(self.DEFAULT_CONFIG, user_config)

    def _merge_configs(self, default: Dict, user: Dict) -> Dict:
        """Recursively merge user config with defaults"""
        result = copy.deepcopy(default)

        for key, value in user.items():
            # A user bank table replaces the default one wholesale
            if key == "banks":
                result[key] = value
            elif key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def save(self):
        """Save current configuration to file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(self.config, f, indent=2)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get('search.session_limit')
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any):
        """
        Set configuration value using dot notation
        Example: config.set('search.session_limit', 100)
        """
        keys = key_path.split('.')
        config = self.config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value
        self.save()

    def get_path(self, path_key: str) -> Path:
        """Get a configured path as an expanded Path object"""
        path_value = self.get(f'paths.{path_key}')
        if path_value:
            return Path(path_value).expanduser()
        raise ValueError(f"Path not configured: {path_key}")

    def get_banks(self) -> Dict[str, Dict[str, Any]]:
        """Bank table used to build the bank store"""
        return self.get('banks', DEFAULT_BANKS)
