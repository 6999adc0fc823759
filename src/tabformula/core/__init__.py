"""Core configuration and utilities for tabformula."""

from tabformula.core.config import NullMode, get_settings, settings
from tabformula.core.logging import get_logger, setup_logging

__all__ = ["NullMode", "get_settings", "settings", "get_logger", "setup_logging"]
