"""Migration coordinator that fans repository work out to worker threads.

The Migrator is the top-level orchestrator of a run. It:
1. Reads the source inventory and snapshots the destination (cache)
2. Dispatches one processing unit per eligible repository onto a
   bounded worker pool
3. Tracks repository imports on a second bounded pool
4. Joins both pools and reports every failure at the end

Run Flow
--------
Phase 1: Preparation
    - Fetch all source repositories
    - Build the destination cache (full barrier, fatal on failure)
    - Drop forks and empty repositories

Phase 2: Processing units (pool of ``max_workers`` threads)
    For each repository, sequentially:
        a. Ensure the repository exists (create + start import if missing)
        b. Hand the import to an import-tracking unit
        c. Reconcile issues and their comments
        d. Reconcile labels
        e. Transfer the wiki

Phase 3: Import tracking units (second pool)
    Poll import progress with capped exponential backoff. These run
    concurrently with phase 2: issues and labels only need the destination
    repository to exist, not its imported content.

Phase 4: Report
    Both pools are joined before the error queue is drained. Any failure
    makes the whole run unsuccessful even if most entities migrated.

Concurrency Model
-----------------
    source repos ──► repo pool (bounded) ──► Reconciler ──► destination
                          │
                          └──► import pool (bounded) ──► wait_for_import()

    failures from every unit ──► queue.Queue ──► drained after join

The pools are bounded so the destination API's rate limit is respected no
matter how many repositories the source has.

Cancellation
------------
The cancel event (set on SIGINT/SIGTERM) stops units that have not started
yet and wakes import trackers out of their backoff sleep. Units already
running finish their current repository.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from .cache import build_cache
from .config import DEFAULT_MAX_WORKERS
from .exceptions import MigrationError, ProviderError
from .import_tracker import ImportOutcome, wait_for_import
from .reconcile import Reconciler
from .results import MigrationFailure, MigrationResult, MigrationStats

if TYPE_CHECKING:
    from .models import Repository
    from .protocols import GitProvider
    from .wiki import WikiTransfer

logger: logging.Logger = logging.getLogger(__name__)


class Migrator:
    """Orchestrates migration from a source provider to a destination provider.

    Usage:
        source = GitlabProvider(gitlab_token, url)
        destination = GithubProvider(github_token, org)
        migrator = Migrator(source, destination, max_workers=8, wiki_transfer=migrate_wiki)
        result = migrator.run()

    The migrator keeps no state between runs; everything a run learns is
    returned in MigrationResult.
    """

    _source: GitProvider
    _destination: GitProvider

    def __init__(
        self,
        source: GitProvider,
        destination: GitProvider,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cancel_event: threading.Event | None = None,
        wiki_transfer: WikiTransfer | None = None,
    ) -> None:
        """Initialize the migrator.

        Args:
            source: Provider to migrate from
            destination: Provider to migrate to
            max_workers: Size of each worker pool
            cancel_event: Set to stop dispatching new work
            wiki_transfer: Callable copying a repository wiki; None skips wikis
        """
        self._source = source
        self._destination = destination
        self._max_workers: int = max_workers
        self._cancel_event: threading.Event = cancel_event or threading.Event()
        self._wiki_transfer: WikiTransfer | None = wiki_transfer

    def run(
        self,
        *,
        include_repositories: bool = True,
        include_issues: bool = True,
        include_wikis: bool = True,
    ) -> MigrationResult:
        """Execute a migration run.

        Args:
            include_repositories: Create (and import) repositories missing at
                the destination; otherwise such repositories are skipped
            include_issues: Reconcile issues, comments and labels
            include_wikis: Transfer wikis

        Returns:
            MigrationResult with statistics and every recorded failure

        Raises:
            MigrationError: If the source inventory cannot be read or the
                destination cache cannot be built
        """
        try:
            repositories = self._source.get_repositories()
        except ProviderError as e:
            msg = f"Failed to retrieve source repositories: {e}"
            raise MigrationError(msg) from e

        cache = build_cache(self._destination, max_workers=self._max_workers)

        eligible = [repository for repository in repositories if repository.migratable]
        for repository in repositories:
            if not repository.migratable:
                logger.debug(f"Skipping {repository.name} (fork={repository.fork}, empty={repository.empty})")
        logger.info(f"Migrating {len(eligible)} of {len(repositories)} source repositories")

        errors: queue.Queue[MigrationFailure] = queue.Queue()
        stats = MigrationStats()
        reconciler = Reconciler(self._source, self._destination, cache, errors=errors, stats=stats)

        start = time.monotonic()
        # Exiting each block joins its pool: processing first, then import tracking
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="import") as import_pool:
            with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="repo") as repo_pool:
                for repository in eligible:
                    repo_pool.submit(
                        self._process_repository,
                        repository,
                        reconciler,
                        import_pool,
                        errors,
                        stats,
                        include_repositories=include_repositories,
                        include_issues=include_issues,
                        include_wikis=include_wikis,
                    )
            logger.info(f"Processed {len(eligible)} repositories in {time.monotonic() - start:.1f}s")
        logger.info("Done waiting for repository imports")

        failures: list[MigrationFailure] = []
        while not errors.empty():
            failures.append(errors.get_nowait())
        for failure in failures:
            logger.error(str(failure))
        if failures:
            logger.error(f"{len(failures)} errors occurred during migration")

        return MigrationResult(success=not failures, stats=stats, failures=failures)

    def _process_repository(
        self,
        repository: Repository,
        reconciler: Reconciler,
        import_pool: ThreadPoolExecutor,
        errors: queue.Queue[MigrationFailure],
        stats: MigrationStats,
        *,
        include_repositories: bool,
        include_issues: bool,
        include_wikis: bool,
    ) -> None:
        """Processing unit of one repository. Never raises."""
        if self._cancel_event.is_set():
            logger.info(f"Run cancelled, not processing {repository.name}")
            return

        try:
            cached_repo, import_started = reconciler.ensure_repository(repository, create=include_repositories)
            if cached_repo is None:
                return
            if import_started:
                import_pool.submit(self._track_import, repository.name, errors, stats)

            if include_issues:
                reconciler.reconcile_issues(repository, cached_repo)
                reconciler.reconcile_labels(repository, cached_repo)

            if include_wikis:
                self._transfer_wiki(repository, errors, stats)
        except Exception as e:
            # Nothing escapes a worker unit
            logger.exception(f"Unexpected error while processing {repository.name}")
            errors.put(MigrationFailure(repository.name, "repository", f"unexpected error: {e}"))

    def _track_import(self, repository_name: str, errors: queue.Queue[MigrationFailure], stats: MigrationStats) -> None:
        """Import tracking unit of one repository. Never raises."""
        try:
            outcome = wait_for_import(self._destination, repository_name, self._cancel_event)
        except Exception as e:
            logger.exception(f"Unexpected error while tracking the import of {repository_name}")
            errors.put(MigrationFailure(repository_name, "import", f"unexpected error: {e}"))
            return

        if outcome is ImportOutcome.COMPLETE:
            stats.increment("imports_completed")
        elif outcome is ImportOutcome.FAILED:
            errors.put(MigrationFailure(repository_name, "import", "repository import failed"))

    def _transfer_wiki(
        self, repository: Repository, errors: queue.Queue[MigrationFailure], stats: MigrationStats
    ) -> None:
        if self._wiki_transfer is None:
            logger.debug(f"Wiki transfer disabled, skipping wiki of {repository.name}")
            return
        if not repository.wiki_enabled:
            logger.debug(f"{repository.name} has its wiki disabled, skipping")
            return
        try:
            migrated = self._wiki_transfer(repository, self._source.get_auth(), self._destination.get_auth())
        except MigrationError as e:
            failure = MigrationFailure(repository.name, "wiki", str(e))
            logger.error(f"Failed: {failure}")
            errors.put(failure)
            return
        if migrated:
            stats.increment("wikis_migrated")
