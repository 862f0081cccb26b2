"""
Configuration Management

Load and validate configuration from YAML and environment variables.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_DB_PATH = str(PROJECT_ROOT / 'data' / 'swipelink.db')


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    env_path: Optional[Union[str, Path]] = None
) -> Dict[str, Any]:
    """
    Load configuration from YAML file and environment variables.

    Environment variables override YAML values.

    Args:
        config_path: Path to YAML config file (default: config/config.yaml)
        env_path: Path to .env file (default: config/.env, then .env)

    Returns:
        Configuration dictionary
    """
    if env_path is None:
        env_path = PROJECT_ROOT / "config" / ".env"
    else:
        env_path = Path(env_path)

    if config_path is None:
        config_path = PROJECT_ROOT / "config" / "config.yaml"
    else:
        config_path = Path(config_path)

    if env_path.exists():
        load_dotenv(env_path)
    else:
        root_env = PROJECT_ROOT / ".env"
        if root_env.exists():
            load_dotenv(root_env)

    config = {}
    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

    # Expand environment variable references in config
    config = _expand_env_vars(config)

    # Override with direct environment variables
    config = _apply_env_overrides(config)

    # Ensure defaults
    config.setdefault('database', {})
    config['database'].setdefault('path', DEFAULT_DB_PATH)
    config.setdefault('logging', {})
    config['logging'].setdefault('level', 'INFO')
    config.setdefault('automation', {})

    return config


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} references in config values."""
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith('${') and obj.endswith('}'):
        var_name = obj[2:-1]
        return os.environ.get(var_name, obj)
    return obj


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply direct environment variable overrides."""

    if os.environ.get('SWIPELINK_DB_PATH'):
        config.setdefault('database', {})['path'] = os.environ['SWIPELINK_DB_PATH']

    if os.environ.get('SWIPELINK_LOG_LEVEL'):
        config.setdefault('logging', {})['level'] = os.environ['SWIPELINK_LOG_LEVEL']

    if os.environ.get('SWIPELINK_LOG_FILE'):
        config.setdefault('logging', {})['file'] = os.environ['SWIPELINK_LOG_FILE']

    if os.environ.get('SWIPELINK_TASK_COOLDOWN_HOURS'):
        config.setdefault('automation', {})['task_cooldown_hours'] = int(
            os.environ['SWIPELINK_TASK_COOLDOWN_HOURS']
        )

    return config


def get_db_path(config: Dict[str, Any]) -> str:
    """Get database path from config."""
    return config.get('database', {}).get('path', DEFAULT_DB_PATH)

