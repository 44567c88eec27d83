"""YAML configuration loader for Earpiece."""

import copy
import os
import tempfile
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from ..errors import ConfigError

logger = logging.getLogger(__name__)


DEFAULTS: Dict[str, Any] = {
    "tools": {
        "ffmpeg": "ffmpeg",
        "ffprobe": "ffprobe",
        "whisper_cli": "whisper-cli",
        "whisper_model": str(Path.home() / "tools" / "ggml-base.en.bin"),
    },
    "capture": {
        "input_format": "avfoundation",
        "interviewer_device": ":0",
        "interviewee_device": ":1",
        "sample_rate": 16000,
        "channels": 1,
        "codec": "pcm_s16le",
        "startup_grace_seconds": 0.5,
        "stop_grace_seconds": 2.0,
    },
    "pipeline": {
        "segment_seconds": 5.0,
        "dispatch_interval_seconds": 2.0,
        "probe_timeout_seconds": 2.0,
        "extract_timeout_seconds": 2.0,
        "transcription_timeout_seconds": 10.0,
        "min_segment_bytes": 1000,
        "backoff_after": 3,
        "max_backoff_seconds": 30.0,
        "max_consecutive_failures": 6,
        "cycle_wait_seconds": 5.0,
    },
    "transcription": {
        "backend": "whisper",
        "language": "auto",
        "threads": None,
    },
    "google_cloud": {
        "language": "en-US",
        "use_enhanced_model": True,
        "enable_automatic_punctuation": True,
    },
    "coaching": {
        "model": "gpt-4o-mini",
        "base_url": "https://api.openai.com/v1/chat/completions",
        "timeout_seconds": 30,
    },
    "auto_recorder": {
        "default_source": "system",
    },
    "storage": {
        "temp_directory": str(Path(tempfile.gettempdir()) / "earpiece-audio"),
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/earpiece.log",
        "console_output": True,
    },
}

# Environment variables that override tool locations, as the desktop app allowed.
ENV_OVERRIDES = {
    "FFMPEG_PATH": "tools.ffmpeg",
    "FFPROBE_PATH": "tools.ffprobe",
    "WHISPER_CLI_PATH": "tools.whisper_cli",
    "WHISPER_MODEL_PATH": "tools.whisper_model",
    "OPENAI_API_KEY": "coaching.api_key",
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class EarpieceConfig:
    """Earpiece configuration loader."""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None,
                 use_environment: bool = True):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, only built-in defaults
                        (plus ``overrides``) are used.
            overrides: Values layered on top of the file, same shape as the YAML.
            use_environment: Apply FFMPEG_PATH / WHISPER_MODEL_PATH / ... overrides.
        """
        self.config_file = Path(config_path) if config_path else None

        if self.config_file is not None and not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        file_config: Dict[str, Any] = {}
        if self.config_file is not None:
            logger.info(f"Loading configuration from: {self.config_file}")
            file_config = self._load_config()

        self.config = _merge(DEFAULTS, file_config)
        if overrides:
            self.config = _merge(self.config, overrides)
        if use_environment:
            self._apply_environment()

    @classmethod
    def from_dict(cls, values: Dict[str, Any], use_environment: bool = False) -> "EarpieceConfig":
        """Build a configuration without a YAML file."""
        return cls(None, overrides=values, use_environment=use_environment)

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to load configuration: {e}") from e

        if not config:
            raise ConfigError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level")

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (("google_cloud", "credentials_path"),
                             ("storage", "temp_directory"),
                             ("logging", "file_path"),
                             ("tools", "whisper_model")):
            value = config.get(section, {}).get(key) if isinstance(config.get(section), dict) else None
            if not value:
                continue
            value = os.path.expanduser(str(value))
            if not os.path.isabs(value):
                value = str(config_dir / value)
            config[section][key] = value

    def _apply_environment(self) -> None:
        for env_name, key_path in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.set(key_path, value)
                logger.debug(f"Configuration key '{key_path}' taken from ${env_name}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'pipeline.segment_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict or not isinstance(config_dict[key], dict):
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set")

    def get_float(self, key_path: str) -> float:
        value = self.get(key_path)
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Configuration key '{key_path}' must be a number, got {value!r}") from e

    def get_int(self, key_path: str) -> int:
        value = self.get(key_path)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Configuration key '{key_path}' must be an integer, got {value!r}") from e

    def get_temp_directory(self) -> str:
        """Get the private directory for capture and segment files."""
        return str(Path(os.path.expanduser(self.get('storage.temp_directory'))).absolute())

    def get_google_credentials_path(self) -> str:
        """Get Google credentials path; raises if not configured or missing."""
        creds_path = self.get('google_cloud.credentials_path')
        if not creds_path:
            raise ConfigError("Google credentials path not configured (google_cloud.credentials_path)")

        creds_file = Path(creds_path)
        if not creds_file.exists():
            raise FileNotFoundError(f"Google credentials file not found: {creds_path}")

        return str(creds_file.absolute())
