"""Statistics and failures collected while a migration runs."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, fields


@dataclass(frozen=True)
class MigrationFailure:
    """A failure tied to one entity, with enough context to retry it manually."""

    repository: str
    entity: str  # e.g. "repository", "label 'bug'", "issue 'Crash on save'"
    message: str

    def __str__(self) -> str:
        return f"{self.repository}: {self.entity}: {self.message}"


@dataclass
class MigrationStats:
    """Counters updated concurrently by the worker units of a run."""

    repositories_missing: int = 0
    repositories_created: int = 0
    imports_started: int = 0
    imports_completed: int = 0
    labels_created: int = 0
    issues_created: int = 0
    issues_closed: int = 0
    comments_created: int = 0
    wikis_migrated: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def as_dict(self) -> dict[str, int]:
        with self._lock:
            return {f.name: getattr(self, f.name) for f in fields(self) if not f.name.startswith("_")}


@dataclass
class MigrationResult:
    """Result of a migration run. A run succeeds only if nothing failed."""

    success: bool
    stats: MigrationStats
    failures: list[MigrationFailure] = field(default_factory=list)
