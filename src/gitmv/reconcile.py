"""Reconciliation of one source repository against the destination cache.

For every source repository the Reconciler makes sure the repository
exists at the destination and then creates each label, issue and comment
the destination cache does not know yet:

1. Repository: look the name up in the cache. If missing, create it and
   start a server-side import of its content using the source token.
2. Issues: look each source issue up by source number, then by title.
   Missing issues are created and a fresh cache entry (without comments)
   is inserted.
   An existing issue that is still open while its source is closed gets
   closed.
3. Comments: for every issue, pre-existing or new, create each source
   comment whose creation timestamp the cached issue does not have.
   Comments always target the destination issue number.
4. Labels: create each source label missing by (case-insensitive) name.

A failure on one entity is recorded with its context and the reconciler
moves on to the next entity, so one bad issue never blocks the rest.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from .cache import CachedIssue
from .exceptions import ProviderError
from .results import MigrationFailure

if TYPE_CHECKING:
    import queue

    from .cache import CachedRepository, DestinationCache
    from .models import Issue, Repository
    from .protocols import GitProvider
    from .results import MigrationStats

logger: logging.Logger = logging.getLogger(__name__)


class Reconciler:
    """Creates at the destination whatever exists only at the source.

    One Reconciler is shared by all worker units of a run. Each repository
    is handled by exactly one unit at a time, and the cache entries it
    mutates are lock-protected.
    """

    def __init__(
        self,
        source: GitProvider,
        destination: GitProvider,
        cache: DestinationCache,
        *,
        errors: queue.Queue[MigrationFailure],
        stats: MigrationStats,
    ) -> None:
        self._source: GitProvider = source
        self._destination: GitProvider = destination
        self._cache: DestinationCache = cache
        self._errors: queue.Queue[MigrationFailure] = errors
        self._stats: MigrationStats = stats

    def _record(self, repository: str, entity: str, error: Exception) -> None:
        failure = MigrationFailure(repository=repository, entity=entity, message=str(error))
        logger.error(f"Failed: {failure}")
        self._errors.put(failure)

    def ensure_repository(self, repository: Repository, *, create: bool = True) -> tuple[CachedRepository | None, bool]:
        """Make sure ``repository`` exists at the destination.

        Args:
            repository: Source repository
            create: Whether to create (and import) missing repositories

        Returns:
            The cached destination repository (None if it does not exist and
            could not be created) and whether an import job was started
        """
        cached = self._cache.get(repository.name)
        if cached is not None:
            return cached, False

        self._stats.increment("repositories_missing")
        if not create:
            logger.warning(f"Repository {repository.name} does not exist at the destination, skipping")
            return None, False

        logger.info(f"Missing repo: {repository.name}")
        try:
            created = self._destination.create_repository(repository)
        except ProviderError as e:
            self._record(repository.name, "repository", e)
            return None, False
        self._stats.increment("repositories_created")
        cached = self._cache.add_repository(replace(created, name=repository.name))

        try:
            status = self._destination.migrate_repo(repository, self._source.get_auth().token)
        except ProviderError as e:
            self._record(repository.name, "import", e)
            return cached, False
        self._stats.increment("imports_started")
        logger.info(f"Importing repo {repository.name} from {repository.clone_url}: {status}")
        return cached, True

    def reconcile_labels(self, repository: Repository, cached_repo: CachedRepository) -> None:
        try:
            labels = self._source.get_labels(repository.pid, repository.name)
        except ProviderError as e:
            self._record(repository.name, "labels", e)
            return

        for label in labels:
            if cached_repo.has_label(label.name):
                continue
            logger.info(f"Missing label: {repository.name}/{label.name}")
            try:
                created = self._destination.create_label(replace(label, repo=cached_repo.name))
            except ProviderError as e:
                self._record(repository.name, f"label '{label.name}'", e)
                continue
            cached_repo.add_label(created)
            self._stats.increment("labels_created")

    def reconcile_issues(self, repository: Repository, cached_repo: CachedRepository) -> None:
        """Create missing issues, then reconcile the comments of every issue."""
        try:
            issues = self._source.get_issues(repository.pid, repository.name)
        except ProviderError as e:
            self._record(repository.name, "issues", e)
            return

        for issue in issues:
            cached_issue = cached_repo.find_issue(issue.title, source_number=issue.number)
            if cached_issue is None:
                logger.info(f"Missing issue: {repository.name}: {issue.title}")
                try:
                    created = self._destination.create_issue(replace(issue, repo=cached_repo.name))
                except ProviderError as e:
                    self._record(repository.name, f"issue '{issue.title}'", e)
                    continue
                self._stats.increment("issues_created")
                cached_issue = cached_repo.add_issue(CachedIssue(created))
                if created.state != issue.state:
                    error = ProviderError(f"created as #{created.number} but left {created.state}")
                    self._record(repository.name, f"state of issue '{issue.title}'", error)
            elif issue.state == "closed" and cached_issue.issue.state != "closed":
                self._close_issue(repository, issue, cached_issue)

            self.reconcile_comments(repository, issue, cached_issue)

    def _close_issue(self, repository: Repository, issue: Issue, cached_issue: CachedIssue) -> None:
        destination_issue = cached_issue.issue
        logger.info(f"Closing issue: {repository.name}#{destination_issue.number}: {issue.title}")
        try:
            self._destination.close_issue(destination_issue.repo, destination_issue.number)
        except ProviderError as e:
            self._record(repository.name, f"state of issue '{issue.title}'", e)
            return
        destination_issue.state = "closed"
        self._stats.increment("issues_closed")

    def reconcile_comments(self, repository: Repository, issue: Issue, cached_issue: CachedIssue) -> None:
        """Create the comments of source ``issue`` that ``cached_issue`` lacks."""
        try:
            comments = self._source.get_comments(repository.pid, issue.number, repository.name)
        except ProviderError as e:
            self._record(repository.name, f"comments of issue '{issue.title}'", e)
            return

        destination_issue = cached_issue.issue
        for comment in comments:
            if cached_issue.has_comment(comment.created_at):
                continue
            logger.info(
                f"Missing comment: {repository.name}#{destination_issue.number} by {comment.user.login} "
                f"created {comment.created_at.isoformat()}"
            )
            target = replace(comment, repo=destination_issue.repo, issue_number=destination_issue.number)
            try:
                self._destination.create_issue_comment(target)
            except ProviderError as e:
                self._record(
                    repository.name,
                    f"comment created {comment.created_at.isoformat()} on issue '{issue.title}'",
                    e,
                )
                continue
            cached_issue.add_comment(target)
            self._stats.increment("comments_created")
