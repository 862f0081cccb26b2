"""
SwipeLink Utilities Package

Shared utilities:
- Configuration management
- Logging setup
"""

from src.utils.config import load_config
from src.utils.logging import setup_logging

__all__ = ["load_config", "setup_logging"]
