"""
gitmv: GitLab to GitHub migration tool

Copies repositories, issues, comments, labels and wikis from GitLab to
GitHub. Runs are idempotent: whatever already exists at the destination is
left alone, so an interrupted run can simply be started again.
"""

from __future__ import annotations

from .cli import main
from .exceptions import CacheBuildError, ConfigurationError, MigrationError, ProviderError
from .orchestrator import Migrator
from .results import MigrationResult
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "CacheBuildError",
    "ConfigurationError",
    "MigrationError",
    "MigrationResult",
    "Migrator",
    "ProviderError",
    "main",
    "setup_logging",
]
