"""GitLab implementation of the GitProvider protocol (migration source)."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import TYPE_CHECKING, Any

import gitlab
import requests
from gitlab.exceptions import GitlabError

from .config import is_hosted
from .exceptions import ProviderError
from .models import Comment, Issue, Label, ProviderAuth, Repository, User, to_labels

if TYPE_CHECKING:
    from gitlab.v4.objects import Project, ProjectIssue, ProjectLabel, ProjectNote

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_EPOCH: dt.datetime = dt.datetime.fromtimestamp(0, tz=dt.UTC)


def get_client(token: str, url: str = "") -> gitlab.Gitlab:
    """Get a GitLab client for gitlab.com or the self-hosted instance at ``url``."""
    if is_hosted(url):
        return gitlab.Gitlab(private_token=token)
    return gitlab.Gitlab(url=url.rstrip("/"), private_token=token)


def _parse_datetime(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    try:
        return dt.datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Unparseable GitLab timestamp: {value!r}")
        return None


def _from_gitlab_user(data: dict[str, Any] | None) -> User | None:
    if not data:
        return None
    return User(login=data.get("username", ""), name=data.get("name", ""), email=data.get("email") or "")


def _from_gitlab_project(project: Project, default_owner: str) -> Repository:
    attrs: dict[str, Any] = project.attributes
    owner: dict[str, Any] = attrs.get("owner") or {}
    statistics: dict[str, Any] = attrs.get("statistics") or {}

    if "empty_repo" in attrs:
        empty = bool(attrs["empty_repo"])
    else:
        empty = statistics.get("commit_count") == 0

    # wiki_access_level replaced the deprecated wiki_enabled flag
    if "wiki_access_level" in attrs:
        wiki_enabled = attrs["wiki_access_level"] != "disabled"
    else:
        wiki_enabled = bool(attrs.get("wiki_enabled", True))

    return Repository(
        name=attrs["path"],
        description=attrs.get("description") or "",
        clone_url=attrs.get("http_url_to_repo", ""),
        ssh_url=attrs.get("ssh_url_to_repo", ""),
        owner=owner.get("username") or default_owner,
        archived=bool(attrs.get("archived", False)),
        fork=attrs.get("forked_from_project") is not None,
        empty=empty,
        wiki_enabled=wiki_enabled,
        pid=attrs["id"],
    )


def _from_gitlab_label(repo: str, label: ProjectLabel) -> Label:
    return Label(
        repo=repo,
        name=label.name,
        color=(label.color or "").lstrip("#"),
        description=label.description or "",
    )


def _from_gitlab_note(repo: str, issue_number: int, note: ProjectNote) -> Comment:
    return Comment(
        repo=repo,
        issue_number=issue_number,
        user=_from_gitlab_user(note.author) or User(login=""),
        body=note.body or "",
        created_at=_parse_datetime(note.created_at) or _EPOCH,
        updated_at=_parse_datetime(note.updated_at),
    )


def _api_error(action: str, e: Exception) -> ProviderError:
    if isinstance(e, GitlabError):
        return ProviderError(f"GitLab API error while trying to {action}: {e.response_code} {e.error_message}")
    return ProviderError(f"GitLab request failed while trying to {action}: {e}")


def _not_supported(operation: str) -> ProviderError:
    return ProviderError(f"gitlab {operation} not supported: GitLab is only used as migration source")


class GitlabProvider:
    """Reads repositories, issues, comments and labels from GitLab.

    All list calls are depaginated by python-gitlab (``get_all=True``).
    GitLab is only ever the migration source, so write operations raise
    ProviderError.
    """

    def __init__(self, token: str, url: str = "", user: str = "", client: gitlab.Gitlab | None = None) -> None:
        self._token: str = token
        self._user: str = user
        self._client: gitlab.Gitlab = client or get_client(token, url)
        self._users_lock: threading.Lock = threading.Lock()
        self._users: dict[int, User | None] = {}

    def validate_access(self) -> None:
        try:
            self._client.auth()
        except (GitlabError, requests.RequestException) as e:
            raise _api_error(f"authenticate against {self._client.url}", e) from e
        username = self._client.user.username if self._client.user else "unknown"
        logger.info(f"GitLab API access validated as {username}")

    def get_auth(self) -> ProviderAuth:
        return ProviderAuth(url=self._client.url, token=self._token, owner=self._user)

    def get_user_by_id(self, user_id: int) -> User | None:
        """Look up a user by id, caching results.

        Emails are only visible to administrators, so the lookup is
        best-effort: failures return None and callers fall back to the
        user data embedded in the payload.
        """
        with self._users_lock:
            if user_id in self._users:
                return self._users[user_id]
        try:
            gitlab_user = self._client.users.get(user_id)
            user: User | None = User(
                login=gitlab_user.username,
                name=getattr(gitlab_user, "name", "") or "",
                email=getattr(gitlab_user, "email", None) or getattr(gitlab_user, "public_email", None) or "",
            )
        except (GitlabError, requests.RequestException) as e:
            logger.debug(f"Could not look up GitLab user {user_id}: {e}")
            user = None
        with self._users_lock:
            self._users[user_id] = user
        return user

    def _resolve_user(self, data: dict[str, Any] | None) -> User | None:
        if not data:
            return None
        user_id = data.get("id")
        looked_up = self.get_user_by_id(user_id) if isinstance(user_id, int) else None
        return looked_up or _from_gitlab_user(data)

    def _from_gitlab_issue(self, repo: str, pid: int, issue: ProjectIssue) -> Issue:
        assignees = [self._resolve_user(a) for a in getattr(issue, "assignees", None) or []]
        return Issue(
            repo=repo,
            pid=pid,
            number=issue.iid,
            title=issue.title,
            body=issue.description or "",
            state="closed" if issue.state == "closed" else "open",
            labels=to_labels(repo, issue.labels),
            user=self._resolve_user(issue.author),
            assignees=[a for a in assignees if a is not None],
            created_at=_parse_datetime(issue.created_at),
        )

    def get_repositories(self) -> list[Repository]:
        try:
            projects = self._client.projects.list(get_all=True, membership=True, statistics=True)
        except (GitlabError, requests.RequestException) as e:
            raise _api_error("list projects", e) from e
        return [_from_gitlab_project(project, self._user) for project in projects]

    def get_issues(self, repository_id: int, repository_name: str) -> list[Issue]:
        try:
            project = self._client.projects.get(repository_id, lazy=True)
            issues = project.issues.list(get_all=True, order_by="created_at", sort="asc")
        except (GitlabError, requests.RequestException) as e:
            raise _api_error(f"list issues of {repository_name}", e) from e
        return [self._from_gitlab_issue(repository_name, repository_id, issue) for issue in issues]

    def get_comments(self, repository_id: int, issue_number: int, repository_name: str) -> list[Comment]:
        try:
            project = self._client.projects.get(repository_id, lazy=True)
            issue = project.issues.get(issue_number, lazy=True)
            notes = issue.notes.list(get_all=True, order_by="created_at", sort="asc")
        except (GitlabError, requests.RequestException) as e:
            raise _api_error(f"list comments of {repository_name}#{issue_number}", e) from e
        # System notes record events such as label changes, not discussion
        return [
            _from_gitlab_note(repository_name, issue_number, note)
            for note in notes
            if not getattr(note, "system", False)
        ]

    def get_labels(self, repository_id: int, repository_name: str) -> list[Label]:
        try:
            project = self._client.projects.get(repository_id, lazy=True)
            labels = project.labels.list(get_all=True)
        except (GitlabError, requests.RequestException) as e:
            raise _api_error(f"list labels of {repository_name}", e) from e
        return [_from_gitlab_label(repository_name, label) for label in labels]

    def get_import_progress(self, repository_name: str) -> str:
        raise _not_supported("GetImportProgress")

    def create_repository(self, repository: Repository) -> Repository:
        raise _not_supported("CreateRepository")

    def create_issue(self, issue: Issue) -> Issue:
        raise _not_supported("CreateIssue")

    def create_issue_comment(self, comment: Comment) -> None:
        raise _not_supported("CreateIssueComment")

    def close_issue(self, repository_name: str, issue_number: int) -> None:
        raise _not_supported("CloseIssue")

    def create_label(self, label: Label) -> Label:
        raise _not_supported("CreateLabel")

    def migrate_repo(self, repository: Repository, auth_token: str) -> str:
        raise _not_supported("MigrateRepo")
