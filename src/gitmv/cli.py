"""
Command-line interface for the gitmv migration tool.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import TYPE_CHECKING

from .config import DEFAULT_MAX_WORKERS, load_config
from .exceptions import ConfigurationError, MigrationError
from .fake_provider import FakeProvider
from .github_provider import GithubProvider
from .gitlab_provider import GitlabProvider
from .orchestrator import Migrator
from .utils import setup_logging
from .wiki import migrate_wiki

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from .config import MigrationConfig
    from .protocols import GitProvider
    from .results import MigrationResult

logger: logging.Logger = logging.getLogger(__name__)

# Subcommand -> (include_repositories, include_issues, include_wikis)
SCOPES: dict[str, tuple[bool, bool, bool]] = {
    "repos": (True, True, True),
    "issues": (False, True, False),
    "wikis": (False, False, True),
}


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="gitmv", description="Migrate GitLab repositories, issues, labels and wikis to GitHub"
    )

    _ = parser.add_argument("--github-token", help="GitHub API token (default: $GITHUB_TOKEN)")
    _ = parser.add_argument("--gitlab-token", help="GitLab API token (default: $GITLAB_TOKEN)")
    _ = parser.add_argument("--gitlab-user", help="GitLab user owning the projects (default: $GITLAB_USER)")
    _ = parser.add_argument("--org", help="Destination GitHub organization (default: $GHORG, else your account)")
    _ = parser.add_argument("--url", "-u", help="Custom GitLab base URL (default: $GITLAB_URL, else gitlab.com)")
    _ = parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    _ = parser.add_argument(
        "--dry-run", action="store_true", help="Write to an in-memory destination instead of GitHub"
    )
    _ = parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help=f"Number of concurrent workers (default: {DEFAULT_MAX_WORKERS})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _ = subparsers.add_parser("repos", help="Migrate repositories, then their issues, labels and wikis")
    _ = subparsers.add_parser("issues", help="Migrate issues, comments and labels of existing repositories")
    _ = subparsers.add_parser("wikis", help="Migrate wikis of existing repositories")

    return parser.parse_args(argv)


def _install_signal_handlers(cancel_event: threading.Event) -> None:
    def _handler(signum: int, _frame: FrameType | None) -> None:
        logger.warning(
            f"Received {signal.Signals(signum).name}, finishing running work and stopping (send it again to abort)"
        )
        cancel_event.set()
        # A second signal aborts immediately
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _build_providers(config: MigrationConfig) -> tuple[GitProvider, GitProvider]:
    source = GitlabProvider(config.gitlab_token, url=config.gitlab_url, user=config.gitlab_user)
    destination: GitProvider
    if config.dry_run:
        logger.info("Dry run: writing to an in-memory destination, wikis are not transferred")
        destination = FakeProvider()
    else:
        destination = GithubProvider(config.github_token, org=config.org)

    source.validate_access()
    destination.validate_access()
    return source, destination


def _print_report(result: MigrationResult) -> None:
    """Print a summary of a migration run."""
    print("\n" + "=" * 50)
    print("MIGRATION REPORT")
    print("=" * 50)
    print(f"Status: {'PASSED' if result.success else 'FAILED'}")
    print("\nStatistics:")
    for key, value in result.stats.as_dict().items():
        print(f"  {key.replace('_', ' ').capitalize()}: {value}")
    if result.failures:
        print(f"\nErrors ({len(result.failures)}):")
        for failure in result.failures:
            print(f"  - {failure}")
    print("=" * 50)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)

    verbose: bool = getattr(args, "debug", False)
    setup_logging(verbose=verbose)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        logger.error(str(e))  # noqa: TRY400
        sys.exit(1)

    cancel_event = threading.Event()
    _install_signal_handlers(cancel_event)

    include_repositories, include_issues, include_wikis = SCOPES[args.command]

    try:
        source, destination = _build_providers(config)
        migrator = Migrator(
            source,
            destination,
            max_workers=config.max_workers,
            cancel_event=cancel_event,
            wiki_transfer=None if config.dry_run else migrate_wiki,
        )
        result = migrator.run(
            include_repositories=include_repositories,
            include_issues=include_issues,
            include_wikis=include_wikis,
        )
    except MigrationError:
        logger.exception("Migration failed")
        sys.exit(1)

    _print_report(result)
    sys.exit(0 if result.success else 1)
