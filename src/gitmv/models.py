"""Data models exchanged between Git providers and the migration engine.

These models are the normalized, provider-agnostic form of the entities a
provider returns. Every run rebuilds them from live API responses; nothing
is persisted locally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime


@dataclass(frozen=True)
class User:
    """A user referenced for attribution only."""

    login: str
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class ProviderAuth:
    """Credentials and scope of a provider connection.

    For GitHub the owner is the destination organization (or user), for
    GitLab it is the user whose token is used for imports.
    """

    url: str
    token: str = field(repr=False)
    owner: str = ""


@dataclass
class Repository:
    """A repository. Identity key is ``name`` within one destination owner."""

    name: str
    description: str = ""
    clone_url: str = ""
    ssh_url: str = ""
    owner: str = ""
    archived: bool = False
    fork: bool = False
    empty: bool = False
    wiki_enabled: bool = True
    pid: int = 0  # Provider-internal numeric ID

    @property
    def migratable(self) -> bool:
        """Forks and empty repositories are never migrated."""
        return not (self.fork or self.empty)


@dataclass
class Label:
    """A label belonging to one repository. Identity key is ``name``."""

    repo: str
    name: str
    color: str = ""  # Hex color without '#' prefix (e.g., "ff0000")
    description: str = ""


@dataclass
class Issue:
    """An issue belonging to one repository.

    ``number`` is the issue number at the provider the issue was read from.
    ``source_number`` is only set on destination issues that were created by
    a previous migration and carry the source issue number in their body.
    """

    repo: str
    pid: int
    number: int
    title: str
    body: str = ""
    state: Literal["open", "closed"] = "open"
    labels: list[Label] = field(default_factory=list)
    user: User | None = None
    assignees: list[User] = field(default_factory=list)
    created_at: datetime | None = None
    source_number: int | None = None


@dataclass
class Comment:
    """A comment on an issue. Identity key within the issue is ``created_at``."""

    repo: str
    issue_number: int
    user: User
    body: str
    created_at: datetime
    updated_at: datetime | None = None


def to_labels(repo: str, names: Iterable[str]) -> list[Label]:
    """Convert label names into Label objects for ``repo``."""
    return [Label(repo=repo, name=name) for name in names]


def label_names(labels: Iterable[Label]) -> list[str]:
    """Return the non-empty names of ``labels``."""
    return [label.name for label in labels if label.name]


def user_logins(users: Iterable[User]) -> list[str]:
    return [user.login for user in users]
