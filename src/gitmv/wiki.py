"""Wiki repository transfer from source to destination using the git CLI."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Final

from .exceptions import MigrationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import ProviderAuth, Repository

    WikiTransfer = Callable[[Repository, ProviderAuth, ProviderAuth], bool]

logger: logging.Logger = logging.getLogger(__name__)

# Wiki repositories only carry branches; force-push them like a fresh mirror
_WIKI_REFSPEC: Final[str] = "+refs/heads/*:refs/heads/*"


def _inject_token(url: str, token: str | None, prefix: str = "") -> str:
    """Inject authentication token into HTTPS URL.

    Args:
        url: The URL to modify
        token: Token to inject (if None, returns original URL)
        prefix: Prefix before token (e.g., "oauth2:" for GitLab)

    Returns:
        URL with token injected, or original if not HTTPS or no token
    """
    if not token or not url.startswith("https://"):
        return url
    return url.replace("https://", f"https://{prefix}{token}@", 1)


def _sanitize_error(error: str, tokens: list[str | None]) -> str:
    """Remove tokens from error message to prevent leakage."""
    result = error
    for token in tokens:
        if token:
            result = result.replace(token, "***TOKEN***")
    return result


def wiki_url(repository_url: str) -> str:
    """Return the wiki repository URL belonging to a repository clone URL."""
    return repository_url.removesuffix("/").removesuffix(".git") + ".wiki.git"


def destination_wiki_url(repository: Repository, destination_auth: ProviderAuth) -> str:
    return f"{destination_auth.url.rstrip('/')}/{destination_auth.owner}/{repository.name}.wiki.git"


def _git(args: list[str], cwd: str | None = None) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy() | {"GIT_TERMINAL_PROMPT": "0"}
    return subprocess.run(  # noqa: S603
        ["git", *args],  # noqa: S607
        cwd=cwd,
        check=False,
        capture_output=True,
        text=True,
        env=env,
    )


def migrate_wiki(repository: Repository, source_auth: ProviderAuth, destination_auth: ProviderAuth) -> bool:
    """Copy the wiki of ``repository`` to the destination.

    GitHub only accepts wiki pushes after the wiki was initialized once in
    the web UI. A rejected push is therefore logged, not raised.

    Args:
        repository: Source repository whose wiki is copied
        source_auth: Credentials of the source provider
        destination_auth: Credentials and owner of the destination provider

    Returns:
        True if the wiki was pushed, False if there was nothing to push or
        the destination wiki does not exist yet

    Raises:
        MigrationError: If the source wiki cannot be cloned
    """
    tokens = [source_auth.token, destination_auth.token]
    target_wiki = destination_wiki_url(repository, destination_auth)
    source_url = _inject_token(wiki_url(repository.clone_url), source_auth.token, prefix="oauth2:")
    target_url = _inject_token(target_wiki, destination_auth.token)
    temp_clone_path: str | None = None

    try:
        temp_clone_path = tempfile.mkdtemp(prefix="gitmv_wiki_")

        result = _git(["clone", "--mirror", source_url, temp_clone_path])
        if result.returncode != 0:
            msg = f"Failed to clone wiki of {repository.name}: {_sanitize_error(result.stderr.strip(), tokens)}"
            raise MigrationError(msg)

        refs = _git(["for-each-ref", "--count=1", "refs/heads"], cwd=temp_clone_path)
        if refs.returncode == 0 and not refs.stdout.strip():
            logger.debug(f"Wiki of {repository.name} is empty, nothing to migrate")
            return False

        result = _git(["push", target_url, _WIKI_REFSPEC], cwd=temp_clone_path)
        if result.returncode != 0:
            logger.warning(f"Need to create wiki for: {target_wiki}")
            logger.debug(f"Wiki push error: {_sanitize_error(result.stderr.strip(), tokens)}")
            return False

        logger.info(f"Wiki of {repository.name} migrated to {target_wiki}")
        return True

    except OSError as e:
        msg = f"Failed to migrate wiki of {repository.name}: {_sanitize_error(str(e), tokens)}"
        raise MigrationError(msg) from e
    finally:
        if temp_clone_path and Path(temp_clone_path).exists():
            shutil.rmtree(temp_clone_path, ignore_errors=True)
