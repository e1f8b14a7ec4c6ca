"""
Run configuration assembled from command line flags and environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final
from urllib.parse import urlparse

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    import argparse
    from collections.abc import Mapping

logger: logging.Logger = logging.getLogger(__name__)

GITHUB_TOKEN_ENV_VAR: Final[str] = "GITHUB_TOKEN"  # noqa: S105
GITLAB_TOKEN_ENV_VAR: Final[str] = "GITLAB_TOKEN"  # noqa: S105
GITLAB_USER_ENV_VAR: Final[str] = "GITLAB_USER"
GITHUB_ORG_ENV_VAR: Final[str] = "GHORG"
GITLAB_URL_ENV_VAR: Final[str] = "GITLAB_URL"

DEFAULT_MAX_WORKERS: Final[int] = 8
HOSTED_GITLAB_URLS: Final[frozenset[str]] = frozenset({"https://gitlab.com", "http://gitlab.com"})


@dataclass(frozen=True)
class MigrationConfig:
    """Immutable settings of one migration run."""

    github_token: str
    gitlab_token: str
    gitlab_user: str = ""
    org: str = ""
    gitlab_url: str = ""
    debug: bool = False
    dry_run: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS

    def __repr__(self) -> str:
        return (
            f"MigrationConfig(org={self.org!r}, gitlab_url={self.gitlab_url!r}, gitlab_user={self.gitlab_user!r}, "
            f"debug={self.debug}, dry_run={self.dry_run}, max_workers={self.max_workers})"
        )


def is_hosted(url: str) -> bool:
    """Check if the URL points to the hosted gitlab.com service (empty means hosted)."""
    url = url.strip().rstrip("/")
    return url == "" or url in HOSTED_GITLAB_URLS


def _validate_gitlab_url(url: str) -> None:
    if is_hosted(url):
        return
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        msg = f"Invalid GitLab URL: {url!r}. Expected an absolute http(s) URL."
        raise ConfigurationError(msg)


def _pick(flag_value: str | None, environ: Mapping[str, str], env_var: str) -> str:
    """Flags take precedence over environment variables."""
    if flag_value:
        return flag_value.strip()
    return environ.get(env_var, "").strip()


def load_config(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> MigrationConfig:
    """Build the run configuration from parsed CLI arguments and the environment.

    Args:
        args: Parsed global CLI arguments
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated MigrationConfig

    Raises:
        ConfigurationError: If a token is missing or a value is invalid
    """
    env: Mapping[str, str] = os.environ if environ is None else environ

    github_token = _pick(getattr(args, "github_token", None), env, GITHUB_TOKEN_ENV_VAR)
    if not github_token:
        msg = f"GitHub token cannot be empty (use --github-token or {GITHUB_TOKEN_ENV_VAR})"
        raise ConfigurationError(msg)

    gitlab_token = _pick(getattr(args, "gitlab_token", None), env, GITLAB_TOKEN_ENV_VAR)
    if not gitlab_token:
        msg = f"GitLab token cannot be empty (use --gitlab-token or {GITLAB_TOKEN_ENV_VAR})"
        raise ConfigurationError(msg)

    gitlab_url = _pick(getattr(args, "url", None), env, GITLAB_URL_ENV_VAR)
    _validate_gitlab_url(gitlab_url)

    max_workers: int | None = getattr(args, "max_workers", None)
    if max_workers is None:
        max_workers = DEFAULT_MAX_WORKERS
    if max_workers < 1:
        msg = f"Worker count must be positive, got {max_workers}"
        raise ConfigurationError(msg)

    config = MigrationConfig(
        github_token=github_token,
        gitlab_token=gitlab_token,
        gitlab_user=_pick(getattr(args, "gitlab_user", None), env, GITLAB_USER_ENV_VAR),
        org=_pick(getattr(args, "org", None), env, GITHUB_ORG_ENV_VAR),
        gitlab_url=gitlab_url,
        debug=bool(getattr(args, "debug", False)),
        dry_run=bool(getattr(args, "dry_run", False)),
        max_workers=max_workers,
    )
    logger.debug(f"Loaded configuration: {config!r}")
    return config
