"""
Shared utilities for raindrop-mfa.

This package provides:
- Configuration management
- Secrets management
"""
from .secrets import get_secret, mask_secret
from .config import Settings, get_settings, has_valid_client_options

__all__ = [
    "get_secret",
    "mask_secret",
    "Settings",
    "get_settings",
    "has_valid_client_options",
]
