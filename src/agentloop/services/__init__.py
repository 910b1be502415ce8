"""Service layer helpers (settings persistence, secrets)."""

from .settings import (
    ContextSettings,
    PricingSettings,
    RuntimeSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
)

__all__ = [
    "ContextSettings",
    "PricingSettings",
    "RuntimeSettings",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]
