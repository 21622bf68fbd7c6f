"""
Configuration Manager - Handle backend settings persistence
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .log import log, set_verbose


def resolve_config_dir() -> Path:
    """Env DIFFAGENT_CONFIG_DIR, then ~/.diffagent, then a temp dir"""
    candidates = [os.environ.get("DIFFAGENT_CONFIG_DIR"), os.path.expanduser("~/.diffagent")]
    for candidate in candidates:
        if not candidate:
            continue
        config_path = Path(candidate)
        try:
            config_path.mkdir(parents=True, exist_ok=True)
            return config_path
        except OSError as e:
            log("Config", f"Warning: Cannot write to {candidate}: {e}")

    tmp_dir = Path(tempfile.gettempdir()) / "diffagent"
    tmp_dir.mkdir(parents=True, exist_ok=True)
    log("Config", f"Using temporary config path: {tmp_dir}")
    return tmp_dir


class ConfigManager:
    """Manage configuration persistence"""

    _instance = None

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or resolve_config_dir()
        self._config_file = self.config_dir / "config.json"
        self._config = self._load_config()
        set_verbose(self._config.get("enableVerboseLogs", False))

    @classmethod
    def get_instance(cls) -> "ConfigManager":
        """Get singleton instance"""
        if cls._instance is None:
            cls._instance = ConfigManager()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Drop the singleton so the next get_instance() re-reads the environment"""
        cls._instance = None

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from file, filling in missing defaults"""
        config = self._default_config()
        if not self._config_file.exists():
            return config

        try:
            with open(self._config_file) as f:
                config.update(json.load(f))
        except (json.JSONDecodeError, OSError) as e:
            log("Config", f"Error loading config: {e}")
        return config

    def _default_config(self) -> dict[str, Any]:
        """Get default configuration"""
        return {
            "provider": "ollama",
            "ollama": {"endpoint": "http://localhost:11434", "model": "qwen2.5-coder:7b"},
            "openai": {"apiKey": "", "model": "gpt-4o-mini"},
            "vllm": {"endpoint": "http://localhost:8000", "apiKey": "", "model": "default"},
            "workspaceRoot": os.getcwd(),
            "contextSize": 32768,
            "maxTokens": 8192,
            "chunkSize": 25000,
            "requestTimeoutMs": 120000,
            "requireTerminalCommandConfirmation": True,
            "enableVerboseLogs": False,
            "server": {"host": "127.0.0.1", "port": 8000},
        }

    def get_config(self) -> dict[str, Any]:
        """Get current configuration"""
        # Reload config from file to ensure we have the latest
        self._config = self._load_config()
        return self._config.copy()

    def save_config(self, config: dict[str, Any]):
        """Save configuration to file"""
        self._config.update(config)
        set_verbose(self._config.get("enableVerboseLogs", False))

        self._config_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._config_file, "w") as f:
                json.dump(self._config, f, indent=2)
        except OSError as e:
            raise RuntimeError(f"Failed to save config: {e}")

    def get(self, key: str, default=None):
        """Get specific config value"""
        return self._config.get(key, default)

    def set(self, key: str, value: Any):
        """Set specific config value"""
        self._config[key] = value
        self.save_config(self._config)
