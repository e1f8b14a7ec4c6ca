"""Tests for reconciliation of one repository against the destination cache."""

from __future__ import annotations

import datetime as dt
import queue
from dataclasses import replace
from unittest.mock import Mock

import pytest

from gitmv.cache import build_cache
from gitmv.exceptions import ProviderError
from gitmv.fake_provider import FakeProvider
from gitmv.models import Comment, Issue, Label, Repository, User
from gitmv.reconcile import Reconciler
from gitmv.results import MigrationFailure, MigrationStats

CREATED = dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.UTC)
APP = Repository(name="app", clone_url="https://gitlab.com/jdoe/app.git", owner="jdoe", pid=1)


def _comment(issue_number: int, minute: int) -> Comment:
    return Comment(
        repo="app",
        issue_number=issue_number,
        user=User(login="jdoe"),
        body=f"comment {minute}",
        created_at=CREATED + dt.timedelta(minutes=minute),
    )


def _source() -> FakeProvider:
    source = FakeProvider([APP])
    for title in ("Crash on save", "Slow startup"):
        issue = source.create_issue(Issue(repo="app", pid=1, number=0, title=title, labels=[Label("app", "bug")]))
        source.create_issue_comment(_comment(issue.number, 0))
        source.create_issue_comment(_comment(issue.number, 1))
    source.create_label(Label(repo="app", name="bug", color="ff0000"))
    source.create_label(Label(repo="app", name="Feature"))
    return source


class _Run:
    """One reconciliation pass over APP, like a worker unit performs it."""

    def __init__(self, source: FakeProvider, destination: FakeProvider) -> None:
        self.errors: queue.Queue[MigrationFailure] = queue.Queue()
        self.stats = MigrationStats()
        self.cache = build_cache(destination, max_workers=2)
        self.reconciler = Reconciler(source, destination, self.cache, errors=self.errors, stats=self.stats)

    def __call__(self, *, create: bool = True) -> None:
        cached_repo, _ = self.reconciler.ensure_repository(APP, create=create)
        if cached_repo is not None:
            self.reconciler.reconcile_issues(APP, cached_repo)
            self.reconciler.reconcile_labels(APP, cached_repo)

    def failures(self) -> list[MigrationFailure]:
        return list(self.errors.queue)


@pytest.mark.unit
class TestEnsureRepository:
    def test_missing_repository_is_created_and_imported(self) -> None:
        destination = FakeProvider()
        run = _Run(_source(), destination)

        cached_repo, import_started = run.reconciler.ensure_repository(APP)

        assert cached_repo is not None
        assert cached_repo.name == "app"
        assert import_started
        assert destination.repositories["app"].import_status == "importing"
        assert run.stats.as_dict()["repositories_created"] == 1
        assert run.stats.as_dict()["imports_started"] == 1

    def test_existing_repository_is_left_alone(self) -> None:
        destination = FakeProvider([Repository(name="app")])
        run = _Run(_source(), destination)

        cached_repo, import_started = run.reconciler.ensure_repository(APP)

        assert cached_repo is run.cache.get("app")
        assert not import_started
        assert destination.repositories["app"].import_status is None

    def test_missing_repository_skipped_without_create(self) -> None:
        run = _Run(_source(), FakeProvider())

        assert run.reconciler.ensure_repository(APP, create=False) == (None, False)
        assert run.stats.as_dict()["repositories_missing"] == 1
        assert run.failures() == []

    def test_create_failure_is_recorded(self) -> None:
        destination = Mock(wraps=FakeProvider())
        destination.create_repository.side_effect = ProviderError("quota exceeded")
        run = _Run(_source(), destination)

        assert run.reconciler.ensure_repository(APP) == (None, False)
        assert [str(f) for f in run.failures()] == ["app: repository: quota exceeded"]

    def test_import_uses_source_token(self) -> None:
        source = _source()
        destination = Mock(wraps=FakeProvider())
        run = _Run(source, destination)

        run.reconciler.ensure_repository(APP)

        destination.migrate_repo.assert_called_once_with(APP, source.get_auth().token)


@pytest.mark.unit
class TestReconcile:
    def test_everything_is_created(self) -> None:
        destination = FakeProvider()
        run = _Run(_source(), destination)

        run()

        stored = destination.repositories["app"]
        assert [fake.issue.title for fake in stored.issues.values()] == ["Crash on save", "Slow startup"]
        assert all(len(fake.comments) == 2 for fake in stored.issues.values())
        assert sorted(label.name for label in stored.labels) == ["Feature", "bug"]
        assert run.failures() == []
        stats = run.stats.as_dict()
        assert (stats["issues_created"], stats["comments_created"], stats["labels_created"]) == (2, 4, 2)

    def test_second_run_is_idempotent(self) -> None:
        source, destination = _source(), FakeProvider()
        _Run(source, destination)()

        second = _Run(source, destination)
        second()

        stats = second.stats.as_dict()
        assert sum(stats.values()) == 0
        assert len(destination.repositories["app"].issues) == 2

    def test_only_new_comments_are_added(self) -> None:
        source, destination = _source(), FakeProvider()
        _Run(source, destination)()
        source.create_issue_comment(_comment(1, 5))

        second = _Run(source, destination)
        second()

        assert second.stats.as_dict()["comments_created"] == 1
        assert len(destination.repositories["app"].issues[1].comments) == 3

    def test_comments_target_destination_issue_number(self) -> None:
        source = FakeProvider([APP])
        issue = source.create_issue(Issue(repo="app", pid=1, number=0, title="first"))
        source.create_issue(Issue(repo="app", pid=1, number=0, title="second"))
        source.create_issue_comment(_comment(issue.number, 0))
        destination = FakeProvider([Repository(name="app")])
        # "second" was migrated before, so "first" becomes destination issue 2
        destination.create_issue(Issue(repo="app", pid=1, number=2, title="second"))

        run = _Run(source, destination)
        run()

        stored = destination.repositories["app"].issues
        assert stored[2].issue.title == "first"
        assert [c.issue_number for c in stored[2].comments] == [2]
        assert stored[1].comments == []
        assert run.failures() == []

    def test_issues_with_same_title_are_both_migrated(self) -> None:
        source = FakeProvider([APP])
        source.create_issue(Issue(repo="app", pid=1, number=0, title="Flaky test"))
        source.create_issue(Issue(repo="app", pid=1, number=0, title="Flaky test"))
        destination = FakeProvider()

        _Run(source, destination)()
        second = _Run(source, destination)
        second()

        assert len(destination.repositories["app"].issues) == 2
        assert second.stats.as_dict()["issues_created"] == 0

    def test_unmarked_title_match_is_used_only_once(self) -> None:
        source = FakeProvider([APP])
        for _ in range(2):
            issue = source.create_issue(Issue(repo="app", pid=1, number=0, title="Crash on save"))
            source.create_issue_comment(_comment(issue.number, issue.number))
        destination = FakeProvider([Repository(name="app")])
        destination.create_issue(Issue(repo="app", pid=1, number=0, title="Crash on save"))
        # Opened by hand at the destination, so it carries no migration header
        destination.repositories["app"].issues[1].issue.source_number = None
        run = _Run(source, destination)

        run()

        stored = destination.repositories["app"].issues
        assert len(stored) == 2
        assert [c.created_at for c in stored[1].comments] == [_comment(1, 1).created_at]
        assert [c.created_at for c in stored[2].comments] == [_comment(2, 2).created_at]
        assert run.stats.as_dict()["issues_created"] == 1

    def test_close_failure_is_recorded_and_comments_still_migrate(self) -> None:
        source = FakeProvider([APP])
        issue = source.create_issue(Issue(repo="app", pid=1, number=0, title="Crash on save", state="closed"))
        source.create_issue_comment(_comment(issue.number, 0))
        destination = Mock(wraps=FakeProvider([Repository(name="app")]))
        real_create_issue = destination.create_issue
        destination.create_issue = Mock(side_effect=lambda i: replace(real_create_issue(i), state="open"))
        run = _Run(source, destination)

        run()

        assert [str(f) for f in run.failures()] == ["app: state of issue 'Crash on save': created as #1 but left open"]
        assert run.stats.as_dict()["comments_created"] == 1

    def test_open_destination_issue_is_closed_on_rerun(self) -> None:
        source = FakeProvider([APP])
        source.create_issue(Issue(repo="app", pid=1, number=0, title="Crash on save", state="closed"))
        destination = FakeProvider([Repository(name="app")])
        destination.create_issue(Issue(repo="app", pid=1, number=1, title="Crash on save"))
        run = _Run(source, destination)

        run()

        assert destination.repositories["app"].issues[1].issue.state == "closed"
        assert run.stats.as_dict()["issues_closed"] == 1
        assert run.failures() == []

    def test_label_matching_is_case_insensitive(self) -> None:
        destination = FakeProvider([Repository(name="app")])
        destination.create_label(Label(repo="app", name="BUG"))
        run = _Run(_source(), destination)

        run()

        assert sorted(label.name for label in destination.repositories["app"].labels) == ["BUG", "Feature"]

    def test_renamed_issue_is_found_by_source_number(self) -> None:
        source, destination = _source(), FakeProvider()
        _Run(source, destination)()
        source.repositories["app"].issues[1].issue.title = "Crash on save (renamed)"

        second = _Run(source, destination)
        second()

        assert second.stats.as_dict()["issues_created"] == 0

    def test_entity_failure_does_not_stop_other_entities(self) -> None:
        destination = Mock(wraps=FakeProvider([Repository(name="app")]))
        real_create_issue = destination.create_issue

        def create_issue(issue: Issue) -> Issue:
            if issue.title == "Crash on save":
                raise ProviderError("validation failed")
            return real_create_issue(issue)

        destination.create_issue = Mock(side_effect=create_issue)
        run = _Run(_source(), destination)

        run()

        assert [str(f) for f in run.failures()] == ["app: issue 'Crash on save': validation failed"]
        stats = run.stats.as_dict()
        assert (stats["issues_created"], stats["comments_created"], stats["labels_created"]) == (1, 2, 2)

    def test_source_read_failure_is_recorded(self) -> None:
        source = _source()
        source.get_issues = Mock(side_effect=ProviderError("timeout"))  # type: ignore[method-assign]
        run = _Run(source, FakeProvider([Repository(name="app")]))

        run()

        assert [str(f) for f in run.failures()] == ["app: issues: timeout"]
        assert run.stats.as_dict()["labels_created"] == 2
