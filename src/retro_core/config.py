"""Retro Configuration

Configuration loading with environment variable support and sensible defaults.

Environment Variables:
    RETRO_HOME: Data directory (default: ~/.retro)
    RETRO_CONFIG_PATH: Path to config file (default: <RETRO_HOME>/config.yaml)
    RETRO_LOG_LEVEL: Override server.log_level

Configuration Schema:
    analysis:
        confidence_threshold: float - Minimum confidence to qualify (default: 0.7)
        window_days: int - Only sessions active in the last N days are analyzed (default: 14)
        batch_size: int - Sessions per AI analysis call (default: 20)
    ai:
        model: str - Model alias passed to the backend (default: "sonnet")
        timeout_seconds: int - Wall-clock limit per AI call (default: 600)
        max_generation_retries: int - Regenerations after validation failure (default: 2)
    hooks:
        ingest_cooldown_minutes: int (default: 5)
        analyze_cooldown_minutes: int (default: 1440)
        apply_cooldown_minutes: int (default: 1440)
        auto_apply: bool - Chain analyze/generate after ingest (default: True)
        auto_analyze_max_sessions: int - Backlog cap for auto analysis (default: 15)
    paths:
        claude_dir: str - Agent home directory (default: "~/.claude")
    privacy:
        scrub_secrets: bool (default: True)
        exclude_projects: list[str] (default: [])
    server:
        log_level: str - Logging level (default: "WARNING")
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "analysis": {
        "confidence_threshold": 0.7,
        "window_days": 14,
        "batch_size": 20,
    },
    "ai": {
        "model": "sonnet",
        "timeout_seconds": 600,
        "max_generation_retries": 2,
    },
    "hooks": {
        "ingest_cooldown_minutes": 5,
        "analyze_cooldown_minutes": 1440,
        "apply_cooldown_minutes": 1440,
        "auto_apply": True,
        "auto_analyze_max_sessions": 15,
    },
    "paths": {
        "claude_dir": "~/.claude",
    },
    "privacy": {
        "scrub_secrets": True,
        "exclude_projects": [],
    },
    "server": {
        "log_level": "WARNING",
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_retro_home() -> Path:
    """Get the retro data directory (RETRO_HOME or ~/.retro)."""
    override = os.environ.get("RETRO_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".retro"


def expand_tilde(path: str) -> Path:
    """Expand ~ at the start of a path."""
    return Path(path).expanduser()


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"top-level value must be a mapping, got {type(data).__name__}")
    return data


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (from config_path, RETRO_CONFIG_PATH or <RETRO_HOME>/config.yaml)
    3. Environment variable overrides (RETRO_LOG_LEVEL)

    Args:
        config_path: Explicit config file path (overrides RETRO_CONFIG_PATH)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If an explicitly named config file is invalid YAML
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    file_path = config_path or os.environ.get("RETRO_CONFIG_PATH")

    if file_path:
        resolved_path = expand_tilde(file_path)
        if resolved_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(resolved_path))
                logger.info(f"Loaded configuration from: {resolved_path}")
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}")
            except IOError as e:
                raise ConfigurationError(f"Cannot read config file: {e}")
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")
    else:
        default_config_path = get_retro_home() / CONFIG_FILENAME
        if default_config_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(default_config_path))
                logger.info(f"Loaded configuration from: {default_config_path}")
            except yaml.YAMLError as e:
                logger.warning(f"Invalid YAML in default config (ignoring): {e}")
            except IOError as e:
                logger.warning(f"Cannot read default config (ignoring): {e}")
        else:
            logger.debug("No config file found, using defaults")

    log_level_override = os.environ.get("RETRO_LOG_LEVEL")
    if log_level_override:
        config["server"]["log_level"] = log_level_override.upper()

    return config


def save_config(config: Dict[str, Any], config_path: Optional[Path] = None) -> Path:
    """Write configuration to YAML, creating the parent directory if needed."""
    path = config_path or get_retro_home() / CONFIG_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
    return path


def get_confidence_threshold(config: Dict[str, Any]) -> float:
    """Minimum confidence for a pattern to qualify for generation."""
    return float(config.get("analysis", {}).get("confidence_threshold", 0.7))


def get_hooks_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the auto-mode (hooks) section with defaults filled in."""
    return _deep_merge(DEFAULT_CONFIG["hooks"], config.get("hooks", {}))


def get_ai_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the AI backend section with defaults filled in."""
    return _deep_merge(DEFAULT_CONFIG["ai"], config.get("ai", {}))


def get_claude_dir(config: Dict[str, Any]) -> Path:
    """Resolve the agent home directory, expanding ~."""
    return expand_tilde(config.get("paths", {}).get("claude_dir", "~/.claude"))


def get_analysis_window_days(config: Dict[str, Any]) -> int:
    """Days of session activity considered by analysis."""
    return int(config.get("analysis", {}).get("window_days", 14))
