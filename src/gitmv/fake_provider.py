"""In-memory Git provider used for dry runs and tests.

Implements the full GitProvider protocol against thread-safe dictionaries,
so a dry run exercises the same reconciliation code as a real migration
without touching any remote state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Final

from .exceptions import ProviderError
from .models import Comment, Issue, Label, ProviderAuth, Repository

if TYPE_CHECKING:
    from collections.abc import Iterable

logger: logging.Logger = logging.getLogger(__name__)

FAKE_AUTH: Final[ProviderAuth] = ProviderAuth(url="https://git.example.com", token="test-token", owner="fakeorg")  # noqa: S106


@dataclass
class FakeIssue:
    """A stored issue with its comments."""

    issue: Issue
    comments: list[Comment] = field(default_factory=list)


@dataclass
class FakeRepository:
    """A stored repository with its labels and issues keyed by number."""

    repository: Repository
    private: bool = True
    labels: list[Label] = field(default_factory=list)
    issues: dict[int, FakeIssue] = field(default_factory=dict)
    import_status: str | None = None

    @property
    def next_issue_number(self) -> int:
        return len(self.issues) + 1


class FakeProvider:
    """Thread-safe in-memory implementation of GitProvider."""

    def __init__(self, repositories: Iterable[Repository] = ()) -> None:
        self._lock: threading.Lock = threading.Lock()
        self.repositories: dict[str, FakeRepository] = {
            repository.name: FakeRepository(repository) for repository in repositories
        }

    def _get_repository(self, name: str) -> FakeRepository:
        """Look up a repository. Caller must hold the lock."""
        fake_repo = self.repositories.get(name)
        if fake_repo is None:
            msg = f"repository '{name}' not found"
            raise ProviderError(msg)
        return fake_repo

    def validate_access(self) -> None:
        logger.debug("Fake provider access validated")

    def get_auth(self) -> ProviderAuth:
        return FAKE_AUTH

    def get_repositories(self) -> list[Repository]:
        with self._lock:
            return [fake_repo.repository for fake_repo in self.repositories.values()]

    def get_issues(self, repository_id: int, repository_name: str) -> list[Issue]:
        with self._lock:
            fake_repo = self._get_repository(repository_name)
            return [fake_issue.issue for fake_issue in fake_repo.issues.values()]

    def get_comments(self, repository_id: int, issue_number: int, repository_name: str) -> list[Comment]:
        with self._lock:
            fake_repo = self._get_repository(repository_name)
            fake_issue = fake_repo.issues.get(issue_number)
            if fake_issue is None:
                msg = f"issue number '{issue_number}' does not exist for {repository_name}"
                raise ProviderError(msg)
            return list(fake_issue.comments)

    def get_labels(self, repository_id: int, repository_name: str) -> list[Label]:
        with self._lock:
            return list(self._get_repository(repository_name).labels)

    def get_import_progress(self, repository_name: str) -> str:
        with self._lock:
            fake_repo = self._get_repository(repository_name)
            if fake_repo.import_status is None:
                msg = f"no import started for {repository_name}"
                raise ProviderError(msg)
            fake_repo.import_status = "complete"
            return fake_repo.import_status

    def create_repository(self, repository: Repository) -> Repository:
        with self._lock:
            if repository.name in self.repositories:
                msg = f"repository {repository.name} already exists"
                raise ProviderError(msg)
            created = Repository(
                name=repository.name,
                description=repository.description,
                owner=FAKE_AUTH.owner,
                pid=len(self.repositories) + 1,
            )
            self.repositories[repository.name] = FakeRepository(created)
        return created

    def create_issue(self, issue: Issue) -> Issue:
        with self._lock:
            fake_repo = self._get_repository(issue.repo)
            created = replace(
                issue,
                number=fake_repo.next_issue_number,
                pid=fake_repo.repository.pid,
                labels=list(issue.labels),
                assignees=list(issue.assignees),
                source_number=issue.number,
            )
            fake_repo.issues[created.number] = FakeIssue(created)
        return created

    def create_issue_comment(self, comment: Comment) -> None:
        with self._lock:
            fake_repo = self._get_repository(comment.repo)
            fake_issue = fake_repo.issues.get(comment.issue_number)
            if fake_issue is None:
                msg = f"issue number '{comment.issue_number}' does not exist for {comment.repo}"
                raise ProviderError(msg)
            fake_issue.comments.append(comment)

    def close_issue(self, repository_name: str, issue_number: int) -> None:
        with self._lock:
            fake_repo = self._get_repository(repository_name)
            fake_issue = fake_repo.issues.get(issue_number)
            if fake_issue is None:
                msg = f"issue number '{issue_number}' does not exist for {repository_name}"
                raise ProviderError(msg)
            fake_issue.issue.state = "closed"

    def create_label(self, label: Label) -> Label:
        with self._lock:
            fake_repo = self._get_repository(label.repo)
            fake_repo.labels.append(label)
        return label

    def migrate_repo(self, repository: Repository, auth_token: str) -> str:
        with self._lock:
            fake_repo = self._get_repository(repository.name)
            fake_repo.import_status = "importing"
            return fake_repo.import_status
