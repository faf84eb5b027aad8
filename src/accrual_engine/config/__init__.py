"""Configuration module for the accrual engine."""

from accrual_engine.config.logging import configure_logging
from accrual_engine.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging"]
