"""GitHub implementation of the GitProvider protocol (migration destination)."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Final

import requests
from github import Auth, Github, GithubException, UnknownObjectException

from .exceptions import ProviderError
from .issue_builder import build_comment_body, build_issue_body, parse_created_at, parse_source_number
from .models import Comment, Issue, Label, ProviderAuth, Repository, User, label_names

if TYPE_CHECKING:
    from github.AuthenticatedUser import AuthenticatedUser
    from github.Issue import Issue as GithubIssue
    from github.IssueComment import IssueComment as GithubIssueComment
    from github.Label import Label as GithubLabel
    from github.NamedUser import NamedUser
    from github.Organization import Organization
    from github.Repository import Repository as GithubRepository

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

GITHUB_URL: Final[str] = "https://github.com"
PER_PAGE: Final[int] = 100
# Username GitLab accepts together with a personal access token
DEFAULT_VCS_USERNAME: Final[str] = "oauth2"


def _is_already_exists_error(exc: GithubException) -> bool:
    """Check if a GithubException is a 422 'already_exists' validation error."""
    if exc.status != 422 or not isinstance(exc.data, dict):
        return False
    errors: object = exc.data.get("errors")  # pyright: ignore[reportUnknownVariableType]
    if not isinstance(errors, list):
        return False
    return any(isinstance(e, dict) and e.get("code") == "already_exists" for e in errors)  # pyright: ignore[reportUnknownArgumentType,reportUnknownVariableType]


def _from_github_user(user: NamedUser | None) -> User | None:
    # Only the login is part of list payloads; other attributes cost a request each
    if user is None:
        return None
    return User(login=user.login)


def _from_github_label(repo: str, label: GithubLabel) -> Label:
    return Label(repo=repo, name=label.name, color=label.color or "", description=label.description or "")


def _from_github_repo(repo: GithubRepository) -> Repository:
    return Repository(
        name=repo.name,
        description=repo.description or "",
        clone_url=repo.clone_url,
        ssh_url=repo.ssh_url,
        owner=repo.owner.login,
        archived=repo.archived,
        fork=repo.fork,
        empty=repo.size == 0,
        pid=repo.id,
    )


def _from_github_issue(repo: GithubRepository, issue: GithubIssue) -> Issue:
    user = _from_github_user(issue.user)
    return Issue(
        repo=repo.name,
        pid=repo.id,
        number=issue.number,
        title=issue.title,
        body=issue.body or "",
        state="closed" if issue.state == "closed" else "open",
        labels=[_from_github_label(repo.name, label) for label in issue.labels],
        user=user,
        assignees=[u for u in map(_from_github_user, issue.assignees) if u is not None],
        created_at=issue.created_at,
        source_number=parse_source_number(issue.body),
    )


def _from_github_comment(repo: str, issue_number: int, comment: GithubIssueComment) -> Comment:
    """Convert a GitHub comment, restoring the source timestamp from its migration header."""
    return Comment(
        repo=repo,
        issue_number=issue_number,
        user=_from_github_user(comment.user) or User(login=""),
        body=comment.body or "",
        created_at=parse_created_at(comment.body) or comment.created_at,
        updated_at=comment.updated_at,
    )


def _api_error(action: str, e: Exception) -> ProviderError:
    if isinstance(e, GithubException):
        return ProviderError(f"GitHub API error while trying to {action}: {e.status} {e.data}")
    return ProviderError(f"GitHub request failed while trying to {action}: {e}")


class GithubProvider:
    """Reads and writes repositories, issues, comments and labels on GitHub.

    Repositories live under ``org`` or, without an org, under the
    authenticated user. All list calls are depaginated by PyGithub.
    """

    def __init__(self, token: str, org: str = "", client: Github | None = None) -> None:
        self._token: str = token
        self._org: str = org
        self._client: Github = client or Github(auth=Auth.Token(token), per_page=PER_PAGE)
        self._lock: threading.Lock = threading.Lock()
        self._owner_login: str | None = org or None
        self._member_logins: dict[str, str] | None = None

    @property
    def owner(self) -> str:
        """Login of the organization or user that owns the destination repositories."""
        with self._lock:
            if self._owner_login is None:
                try:
                    self._owner_login = self._client.get_user().login
                except (GithubException, requests.RequestException) as e:
                    raise _api_error("get the authenticated user", e) from e
            return self._owner_login

    def _get_owner(self) -> Organization | AuthenticatedUser:
        if self._org:
            return self._client.get_organization(self._org)
        return self._client.get_user()  # type: ignore[return-value]

    def _get_repo(self, name: str) -> GithubRepository:
        return self._client.get_repo(f"{self.owner}/{name}", lazy=True)

    def validate_access(self) -> None:
        try:
            login = self._client.get_user().login
            logger.info(f"GitHub API access validated as {login}")
            if self._org:
                _ = self._client.get_organization(self._org).login
        except UnknownObjectException as e:
            msg = f"GitHub organization '{self._org}' not found"
            raise ProviderError(msg) from e
        except (GithubException, requests.RequestException) as e:
            raise _api_error("validate access", e) from e

    def get_auth(self) -> ProviderAuth:
        return ProviderAuth(url=GITHUB_URL, token=self._token, owner=self.owner)

    def get_repositories(self) -> list[Repository]:
        """List the owner's repositories.

        Without an org, /user/repos also returns repositories the user only
        collaborates on or sees through an organization; those belong to
        other owners and are left out.
        """
        try:
            if self._org:
                repos = self._client.get_organization(self._org).get_repos()
            else:
                repos = self._client.get_user().get_repos(affiliation="owner")
            owner = self.owner.lower()
            return [_from_github_repo(repo) for repo in repos if repo.owner.login.lower() == owner]
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"list repositories of {self.owner}", e) from e

    def get_issues(self, repository_id: int, repository_name: str) -> list[Issue]:
        try:
            repo = self._client.get_repo(f"{self.owner}/{repository_name}")
            # The issues endpoint also lists pull requests
            return [
                _from_github_issue(repo, issue)
                for issue in repo.get_issues(state="all")
                if issue.pull_request is None
            ]
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"list issues of {repository_name}", e) from e

    def get_comments(self, repository_id: int, issue_number: int, repository_name: str) -> list[Comment]:
        try:
            issue = self._get_repo(repository_name).get_issue(issue_number)
            return [_from_github_comment(repository_name, issue_number, comment) for comment in issue.get_comments()]
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"list comments of {repository_name}#{issue_number}", e) from e

    def get_labels(self, repository_id: int, repository_name: str) -> list[Label]:
        try:
            return [_from_github_label(repository_name, label) for label in self._get_repo(repository_name).get_labels()]
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"list labels of {repository_name}", e) from e

    def get_import_progress(self, repository_name: str) -> str:
        try:
            source_import = self._get_repo(repository_name).get_source_import()
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"get import progress of {repository_name}", e) from e
        if source_import is None:
            msg = f"No import found for {self.owner}/{repository_name}"
            raise ProviderError(msg)
        return source_import.status

    def _find_repo(self, name: str) -> GithubRepository | None:
        try:
            return self._client.get_repo(f"{self.owner}/{name}")
        except UnknownObjectException:
            return None

    def create_repository(self, repository: Repository) -> Repository:
        """Create a private repository, or return the existing one with that name."""
        name = repository.name.strip()
        try:
            existing = self._find_repo(name)
            if existing is not None:
                logger.debug(f"Repository {self.owner}/{name} already exists")
                return _from_github_repo(existing)

            created = self._get_owner().create_repo(
                name=name,
                description=repository.description.strip(),
                private=True,
                has_issues=True,
                has_wiki=True,
            )
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"create repository {self.owner}/{name}", e) from e
        return _from_github_repo(created)

    def _resolve_assignees(self, assignees: list[User]) -> list[str]:
        """Map source users to member logins of the destination owner; unknown users are dropped."""
        if not assignees:
            return []
        with self._lock:
            if self._member_logins is None:
                if self._org:
                    members = self._client.get_organization(self._org).get_members()
                    self._member_logins = {member.login.lower(): member.login for member in members}
                else:
                    login = self._client.get_user().login
                    self._member_logins = {login.lower(): login}
            member_logins = self._member_logins

        resolved: list[str] = []
        for user in assignees:
            login = member_logins.get(user.login.lower())
            if login is None:
                logger.debug(f"Assignee {user.login} is not a member of {self.owner}, skipping")
                continue
            resolved.append(login)
        return resolved

    def create_issue(self, issue: Issue) -> Issue:
        try:
            repo = self._client.get_repo(f"{self.owner}/{issue.repo}")
            github_issue = repo.create_issue(
                title=issue.title.strip(),
                body=build_issue_body(issue),
                labels=label_names(issue.labels),
                assignees=self._resolve_assignees(issue.assignees),
            )
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"create issue '{issue.title}' in {issue.repo}", e) from e

        created = _from_github_issue(repo, github_issue)
        created.source_number = issue.number
        if issue.state == "closed":
            # The issue exists either way; a failed close leaves it open for the caller to report
            try:
                github_issue.edit(state="closed")
                created.state = "closed"
            except (GithubException, requests.RequestException) as e:
                logger.error(f"Created {issue.repo}#{created.number} but failed to close it: {e}")
        return created

    def close_issue(self, repository_name: str, issue_number: int) -> None:
        try:
            self._get_repo(repository_name).get_issue(issue_number).edit(state="closed")
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"close issue {repository_name}#{issue_number}", e) from e

    def create_issue_comment(self, comment: Comment) -> None:
        try:
            issue = self._get_repo(comment.repo).get_issue(comment.issue_number)
            issue.create_comment(build_comment_body(comment))
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"create comment on {comment.repo}#{comment.issue_number}", e) from e

    def create_label(self, label: Label) -> Label:
        name = label.name.strip()
        try:
            repo = self._get_repo(label.repo)
            github_label = repo.create_label(
                name=name,
                color=label.color.strip().lstrip("#"),
                description=label.description.strip(),
            )
        except GithubException as e:
            if not _is_already_exists_error(e):
                raise _api_error(f"create label '{name}' in {label.repo}", e) from e
            # Label appeared since the cache was built, e.g. auto-created by an issue with default colour
            try:
                github_label = repo.get_label(name)
                color = label.color.strip().lstrip("#") or github_label.color
                description = label.description.strip()
                if color.lower() != github_label.color.lower() or description != (github_label.description or ""):
                    github_label.edit(name=github_label.name, color=color, description=description)
                    logger.debug(f"Updated existing label {label.repo}/{github_label.name} to #{color}")
            except (GithubException, requests.RequestException) as lookup_error:
                raise _api_error(f"update label '{name}' in {label.repo}", lookup_error) from lookup_error
            logger.debug(f"Label already existed: {label.repo}/{github_label.name}")
        except requests.RequestException as e:
            raise _api_error(f"create label '{name}' in {label.repo}", e) from e
        return _from_github_label(label.repo, github_label)

    def migrate_repo(self, repository: Repository, auth_token: str) -> str:
        """Start a GitHub source import of ``repository.clone_url``.

        The destination repository must exist before the import starts.
        """
        try:
            source_import = self._get_repo(repository.name).create_source_import(
                vcs="git",
                vcs_url=repository.clone_url,
                vcs_username=repository.owner or DEFAULT_VCS_USERNAME,
                vcs_password=auth_token,
            )
        except (GithubException, requests.RequestException) as e:
            raise _api_error(f"start import of {repository.name}", e) from e
        return source_import.status
