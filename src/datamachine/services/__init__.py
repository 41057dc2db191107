"""Configuration services."""

from .settings import ProviderSettings, SecretVault, Settings, SettingsStore, redact_secret

__all__ = ["ProviderSettings", "SecretVault", "Settings", "SettingsStore", "redact_secret"]
