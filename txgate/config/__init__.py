"""Configuration loading and settings management."""

from .settings import REQUIRED_ENV_VARS, AuthSettings, EmailSettings, Settings, load_settings

__all__ = ["REQUIRED_ENV_VARS", "AuthSettings", "EmailSettings", "Settings", "load_settings"]
