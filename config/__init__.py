"""Configuration module for loading and managing application settings.

Settings are read once per process from settings.conf and handed to the
components that need them (webhook verifiers, payment gateway, order manager),
so request handlers never read configuration on their own.
"""
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .lib.load_settings_conf import load_settings_conf, SettingsError

__all__ = ['Settings', 'get_settings', 'set_settings', 'load_config', 'SettingsError']

class Settings(BaseModel):
    """Immutable process-wide settings."""
    model_config = ConfigDict(frozen=True)

    db_url: str
    stripe_secret_key: str = ''
    stripe_webhook_secret: str = ''
    stripe_webhook_tolerance: int = 300
    alchemy_signing_key: str = ''
    chain_id: int = 11155111
    currency: str = 'usd'
    order_expiration_minutes: int = 30
    crypto_order_expiration_minutes: int = 1440
    jwt_secret: str = ''
    jwt_algorithm: str = 'HS256'

_settings: Optional[Settings] = None

def load_config(settings_path: Optional[str] = None) -> Settings:
    """Load settings from a directory containing settings.conf.

    Args:
        settings_path: Optional directory. Falls back to the MARKETPLACE_SETTINGS_DIR
                       environment variable, then the current directory.

    Returns:
        Validated Settings

    Raises:
        SettingsError: If the file is missing or invalid
    """
    path = settings_path or os.environ.get('MARKETPLACE_SETTINGS_DIR', '.')
    try:
        return Settings(**load_settings_conf(path))
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please ensure settings.conf is properly configured.\n"
            "See settings.conf.example for the available keys."
        )

def get_settings() -> Settings:
    """Get process settings, loading them on first use."""
    global _settings

    if _settings is None:
        _settings = load_config()
    return _settings

def set_settings(settings: Optional[Settings]) -> None:
    """Replace process settings (used at startup and by tests)."""
    global _settings
    _settings = settings
