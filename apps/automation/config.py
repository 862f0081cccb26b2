"""
Automation Configuration

Centralized settings for task automation.
Settings can be configured via:
1. Database (system_settings table) - preferred for runtime changes
2. Environment variables (SWIPELINK_<KEY>) - fallback
3. Defaults - hardcoded fallback
"""

import logging
import os
import sqlite3
from typing import Any, Dict, Iterable
from dotenv import load_dotenv

from apps.automation.rules import AUTOMATION_RULES, DEFAULT_COOLDOWN_HOURS, AutomationRule

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

ENV_PREFIX = 'SWIPELINK_'

DEFAULT_SETTINGS: Dict[str, Any] = {
    'rules_engine_enabled': True,
    'task_cooldown_hours': DEFAULT_COOLDOWN_HOURS,
}

_MISSING = object()


def _convert_env_value(env_value: str, default: Any) -> Any:
    """Convert an environment string based on the type of the default."""
    if isinstance(default, bool):
        return env_value.lower() in ('true', '1', 'yes')
    elif isinstance(default, int):
        return int(env_value)
    elif isinstance(default, float):
        return float(env_value)
    return env_value


def get_db_setting(db, key: str, default: Any = None) -> Any:
    """
    Get a setting from the database with fallback to environment variable and default.

    Priority order:
    1. Database system_settings table
    2. Environment variable (SWIPELINK_ + uppercase key)
    3. Provided default value

    Args:
        db: CRMDatabase instance, or None to skip the database lookup
        key: Setting key (e.g., 'task_cooldown_hours')
        default: Default value if not found anywhere

    Returns:
        Setting value converted to appropriate type
    """
    if db is not None:
        try:
            value = db.get_setting(key, _MISSING)
        except sqlite3.Error as e:
            logger.warning(f"Could not read setting {key} from database: {e}")
            value = _MISSING
        if value is not _MISSING:
            return value

    env_value = os.getenv(ENV_PREFIX + key.upper())
    if env_value is not None:
        try:
            return _convert_env_value(env_value, default)
        except ValueError:
            logger.warning(f"Ignoring invalid {ENV_PREFIX + key.upper()}={env_value!r}")

    return default


def automation_settings(db, rules: Iterable[AutomationRule] = AUTOMATION_RULES) -> Dict[str, Any]:
    """Resolve every setting the rules engine reads."""
    settings = {key: get_db_setting(db, key, default) for key, default in DEFAULT_SETTINGS.items()}

    for rule in rules:
        settings[rule.enabled_key] = get_db_setting(db, rule.enabled_key, True)
        cooldown = get_db_setting(db, rule.cooldown_key, None)
        if cooldown is None:
            continue
        try:
            settings[rule.cooldown_key] = float(cooldown)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid {rule.cooldown_key}={cooldown!r}")

    return settings
