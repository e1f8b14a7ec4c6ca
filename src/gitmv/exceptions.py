"""
Custom exception classes for the gitmv migration tool.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class ConfigurationError(MigrationError):
    """Raised when required settings are missing or invalid."""


class ProviderError(MigrationError):
    """Raised when a Git provider API call fails."""


class CacheBuildError(MigrationError):
    """Raised when the destination inventory could not be cached completely."""
