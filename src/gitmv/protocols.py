"""Protocol defining the contract every Git hosting provider implements.

The migration architecture separates concerns into three parts:

1. GitProvider: reads from and writes to one hosting service (GitLab, GitHub,
   or the in-memory fake used for dry runs)
2. DestinationCache: a snapshot of the destination's inventory
3. Migrator / Reconciler: diff the source against the cache and create
   whatever is missing

The reconciliation code depends only on this protocol, never on a concrete
provider class, so source and destination are interchangeable and every
component can be tested against the fake provider.

Depagination, JSON mapping and token handling are the provider's business:
read methods return complete, normalized lists.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import Comment, Issue, Label, ProviderAuth, Repository


class GitProvider(Protocol):
    """Capability interface of a remote Git hosting service.

    Every method may raise ProviderError. Callers must propagate or record
    it, never silently drop it.
    """

    def validate_access(self) -> None:
        """Validate API access with one cheap authenticated call.

        Raises:
            ProviderError: If the credentials or base URL are unusable
        """
        ...

    def get_auth(self) -> ProviderAuth:
        """Return the credentials this provider authenticates with."""
        ...

    # Read methods

    def get_repositories(self) -> list[Repository]:
        """Return the full repository inventory."""
        ...

    def get_issues(self, repository_id: int, repository_name: str) -> list[Issue]:
        """Return all issues of a repository, closed ones included."""
        ...

    def get_comments(self, repository_id: int, issue_number: int, repository_name: str) -> list[Comment]:
        """Return all comments of an issue in chronological order."""
        ...

    def get_labels(self, repository_id: int, repository_name: str) -> list[Label]:
        """Return all labels of a repository."""
        ...

    def get_import_progress(self, repository_name: str) -> str:
        """Return the status string of a repository import job (e.g. "complete")."""
        ...

    # Create methods

    def create_repository(self, repository: Repository) -> Repository:
        """Create a repository.

        Callers must check existence first. Creating a name that already
        exists either raises or returns the existing repository, depending
        on the provider.
        """
        ...

    def create_issue(self, issue: Issue) -> Issue:
        """Create an issue and return it with its destination number."""
        ...

    def create_issue_comment(self, comment: Comment) -> None:
        """Add a comment to issue ``comment.issue_number`` of ``comment.repo``."""
        ...

    def close_issue(self, repository_name: str, issue_number: int) -> None:
        """Close destination issue ``issue_number``."""
        ...

    def create_label(self, label: Label) -> Label:
        """Create a label in ``label.repo``."""
        ...

    def migrate_repo(self, repository: Repository, auth_token: str) -> str:
        """Start an asynchronous server-side import of the repository content.

        Args:
            repository: Source repository; its clone URL is imported
            auth_token: Token used as the VCS password for the clone

        Returns:
            The initial import status (e.g. "importing")
        """
        ...
