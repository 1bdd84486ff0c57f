"""
Stack configuration.
"""

from moraine.config.settings import SettingsError, StackSettings, load_settings

__all__ = ["StackSettings", "SettingsError", "load_settings"]
