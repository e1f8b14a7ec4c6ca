"""Snapshot of the destination provider's inventory.

The cache is filled once, before any reconciliation decision is made, so
existence checks are dictionary lookups instead of API calls and nothing
gets created twice. Its layout is three nested indices:

    repository name -> CachedRepository
        labels: lowercase label name -> Label
        issues: title -> CachedIssues (plus a source-number index)
            comments: creation timestamp -> Comment

Filling is a full barrier: build_cache() returns only once every
repository, label, issue and comment is cached, and any single fetch
failure aborts the whole build, since reconciling against a partial
snapshot would create duplicates.

After the fill phase the cache is read-mostly. The reconciler inserts
entries for repositories, issues and comments it creates; every map has
its own lock, so workers on different repositories or issues never
contend.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from .exceptions import CacheBuildError, MigrationError

if TYPE_CHECKING:
    from datetime import datetime

    from .models import Comment, Issue, Label, Repository
    from .protocols import GitProvider

logger: logging.Logger = logging.getLogger(__name__)


class CachedIssue:
    """A destination issue with its comments keyed by creation timestamp."""

    def __init__(self, issue: Issue, comments: list[Comment] | None = None) -> None:
        self.issue: Issue = issue
        # Source issue this destination issue stands for, once known
        self.source_number: int | None = issue.source_number
        self._lock: threading.Lock = threading.Lock()
        self._comments: dict[datetime, Comment] = {}
        for comment in comments or []:
            self.add_comment(comment)

    def add_comment(self, comment: Comment) -> None:
        with self._lock:
            self._comments[comment.created_at] = comment

    def has_comment(self, created_at: datetime) -> bool:
        with self._lock:
            return created_at in self._comments

    @property
    def comment_count(self) -> int:
        with self._lock:
            return len(self._comments)


class CachedRepository:
    """A destination repository with its labels and issues."""

    def __init__(self, repository: Repository) -> None:
        self.repository: Repository = repository
        self._label_lock: threading.Lock = threading.Lock()
        self._labels: dict[str, Label] = {}
        self._issue_lock: threading.Lock = threading.Lock()
        self._issues: dict[str, list[CachedIssue]] = {}
        self._issues_by_source_number: dict[int, CachedIssue] = {}

    @property
    def name(self) -> str:
        return self.repository.name

    def add_label(self, label: Label) -> None:
        with self._label_lock:
            self._labels[label.name.lower()] = label

    def has_label(self, name: str) -> bool:
        """Check for a label by name, case-insensitively as GitHub does."""
        with self._label_lock:
            return name.lower() in self._labels

    def add_issue(self, cached_issue: CachedIssue) -> CachedIssue:
        with self._issue_lock:
            self._issues.setdefault(cached_issue.issue.title, []).append(cached_issue)
            if cached_issue.source_number is not None:
                self._issues_by_source_number[cached_issue.source_number] = cached_issue
        return cached_issue

    def find_issue(self, title: str, source_number: int | None = None) -> CachedIssue | None:
        """Find a destination issue by source issue number, then by title.

        A title match that was migrated from a different source issue is not
        a match: it is another issue with the same title. An unmarked title
        match (created by hand, or before migration headers existed) is bound
        to ``source_number``, so a second source issue with the same title
        does not match it again.
        """
        with self._issue_lock:
            if source_number is not None and source_number in self._issues_by_source_number:
                return self._issues_by_source_number[source_number]
            for candidate in self._issues.get(title, []):
                if source_number is None:
                    return candidate
                if candidate.source_number is None:
                    candidate.source_number = source_number
                    self._issues_by_source_number[source_number] = candidate
                    return candidate
        return None

    @property
    def label_count(self) -> int:
        with self._label_lock:
            return len(self._labels)

    @property
    def issue_count(self) -> int:
        with self._issue_lock:
            return sum(len(same_title) for same_title in self._issues.values())


class DestinationCache:
    """Destination repositories keyed by name."""

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._repositories: dict[str, CachedRepository] = {}

    def add_repository(self, repository: Repository) -> CachedRepository:
        """Insert an empty entry for ``repository``, keeping an existing one."""
        with self._lock:
            cached = self._repositories.get(repository.name)
            if cached is None:
                cached = CachedRepository(repository)
                self._repositories[repository.name] = cached
            return cached

    def get(self, name: str) -> CachedRepository | None:
        with self._lock:
            return self._repositories.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._repositories

    def __len__(self) -> int:
        with self._lock:
            return len(self._repositories)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._repositories)


class _CacheBuilder:
    """Fills a DestinationCache from a provider using two bounded pools.

    Repository tasks run on one pool and queue their leaf fetches (labels
    and per-issue comments) on a second one. Leaf tasks never wait on other
    tasks, so a bounded pool cannot deadlock.
    """

    def __init__(self, provider: GitProvider, max_workers: int) -> None:
        self._provider: GitProvider = provider
        self._max_workers: int = max_workers
        self._failed: threading.Event = threading.Event()

    def build(self) -> DestinationCache:
        cache = DestinationCache()
        repositories = self._provider.get_repositories()

        with (
            ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="cache-repo") as repo_pool,
            ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="cache-fetch") as fetch_pool,
        ):
            futures = [
                repo_pool.submit(self._fill_repository, cache.add_repository(repository), fetch_pool)
                for repository in repositories
            ]
            try:
                self._raise_first_error(futures)
            except BaseException:
                for pool in (repo_pool, fetch_pool):
                    pool.shutdown(wait=False, cancel_futures=True)
                raise

        return cache

    def _fill_repository(self, cached_repo: CachedRepository, fetch_pool: ThreadPoolExecutor) -> None:
        if self._failed.is_set():
            return
        repository = cached_repo.repository
        futures: list[Future[None]] = [fetch_pool.submit(self._fill_labels, cached_repo)]

        for issue in self._provider.get_issues(repository.pid, repository.name):
            cached_issue = cached_repo.add_issue(CachedIssue(issue))
            futures.append(fetch_pool.submit(self._fill_comments, cached_repo, cached_issue))

        self._raise_first_error(futures)
        logger.debug(
            f"Cached {repository.name}: {cached_repo.issue_count} issues, {cached_repo.label_count} labels"
        )

    def _fill_labels(self, cached_repo: CachedRepository) -> None:
        if self._failed.is_set():
            return
        repository = cached_repo.repository
        for label in self._provider.get_labels(repository.pid, repository.name):
            cached_repo.add_label(label)

    def _fill_comments(self, cached_repo: CachedRepository, cached_issue: CachedIssue) -> None:
        if self._failed.is_set():
            return
        repository = cached_repo.repository
        for comment in self._provider.get_comments(repository.pid, cached_issue.issue.number, repository.name):
            cached_issue.add_comment(comment)

    def _raise_first_error(self, futures: list[Future[None]]) -> None:
        """Wait for ``futures`` and re-raise the first failure.

        Queued tasks check the failure flag and return without fetching.
        """
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        for future in done:
            error = future.exception()
            if error is not None:
                self._failed.set()
                raise error


def build_cache(provider: GitProvider, *, max_workers: int) -> DestinationCache:
    """Cache the provider's complete repository/label/issue/comment inventory.

    Blocks until everything is cached.

    Args:
        provider: Destination provider to snapshot
        max_workers: Upper bound of concurrent fetches per pool

    Returns:
        The filled DestinationCache

    Raises:
        CacheBuildError: If any fetch fails; no partial cache is returned
    """
    start = time.monotonic()
    try:
        cache = _CacheBuilder(provider, max_workers).build()
    except MigrationError as e:
        msg = f"Failed to cache destination inventory: {e}"
        raise CacheBuildError(msg) from e

    logger.info(f"Cached {len(cache)} destination repositories in {time.monotonic() - start:.1f}s")
    return cache
