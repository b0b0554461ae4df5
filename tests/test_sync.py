"""Tests for the sync orchestrator."""

import asyncio
from datetime import timedelta

import pytest
from conftest import NOW, FakeProvider, make_issue

from gh_notes_sync.config import (
    AssigneeFilter,
    AssigneeFilterMode,
    KindTracking,
    RepositoryTracking,
    Settings,
)
from gh_notes_sync.exceptions import GitHubAPIError, SyncInProgressError
from gh_notes_sync.models import IssueState, ItemKind, SyncAction
from gh_notes_sync.store import DocumentStore
from gh_notes_sync.sync import IssueSync, SyncGuard, SyncState, run_sync

WIDGETS = ("acme/widgets", ItemKind.ISSUE)
PATH = "GitHub/acme/widgets/Issue - 7.md"


class FailingProvider(FakeProvider):
    """Provider that fails for one repository."""

    def __init__(self, failing: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failing = failing

    async def fetch_items(self, repo, kind, closed_since=None):
        if repo == self.failing:
            raise GitHubAPIError("Not Found", 404)
        return await super().fetch_items(repo, kind, closed_since)


def _sync(provider, store: DocumentStore, settings: Settings, **kwargs) -> IssueSync:
    return IssueSync(provider, store, settings, now=lambda: NOW, **kwargs)


def _assigned_to_me_settings() -> Settings:
    repo = RepositoryTracking(
        repository="acme/widgets",
        issues=KindTracking(
            assignee_filter=AssigneeFilter(enabled=True, mode=AssigneeFilterMode.ASSIGNED_TO_ME)
        ),
    )
    return Settings(repositories=[repo])


class TestSyncAll:
    def test_creates_document(self, store: DocumentStore, settings: Settings) -> None:
        provider = FakeProvider({WIDGETS: [make_issue(7, title="Crash on save")]})

        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert report.created == 1
        assert report.all_errors == []
        assert store.exists(PATH)
        assert "# Crash on save" in store.read(PATH)
        # Untracked pull requests are neither fetched nor reported
        assert provider.fetch_calls == [WIDGETS]
        assert [(r.repository, r.kind) for r in report.results] == [WIDGETS]

    def test_second_pass_is_a_no_op(self, store: DocumentStore, settings: Settings) -> None:
        provider = FakeProvider({WIDGETS: [make_issue(7)]})
        syncer = _sync(provider, store, settings)

        asyncio.run(syncer.sync_all())
        first = store.read(PATH)
        report = asyncio.run(syncer.sync_all())

        assert report.writes == 0
        assert report.skipped == 1
        assert store.read(PATH) == first

    def test_comments_fetched_only_for_writes(
        self, store: DocumentStore, settings: Settings, sample_comment
    ) -> None:
        provider = FakeProvider({WIDGETS: [make_issue(7)]}, comments={7: [sample_comment]})
        syncer = _sync(provider, store, settings)

        asyncio.run(syncer.sync_all())
        asyncio.run(syncer.sync_all())

        assert provider.comment_calls == [7]
        assert "This is a test comment." in store.read(PATH)

    def test_dry_run_touches_nothing(
        self, store: DocumentStore, settings: Settings, sample_comment
    ) -> None:
        store.write("GitHub/acme/widgets/Issue - 3.md", "---\nnumber: 3\nallowDelete: true\n---\n")
        provider = FakeProvider({WIDGETS: [make_issue(7)]}, comments={7: [sample_comment]})

        report = asyncio.run(_sync(provider, store, settings, dry_run=True).sync_all())

        assert report.dry_run
        assert (report.created, report.deleted) == (1, 1)
        assert not store.exists(PATH)
        assert store.exists("GitHub/acme/widgets/Issue - 3.md")
        assert provider.comment_calls == []

    def test_failing_repository_does_not_abort(
        self, store: DocumentStore, settings: Settings
    ) -> None:
        settings.repositories.insert(0, RepositoryTracking(repository="acme/broken"))
        provider = FailingProvider("acme/broken", items={WIDGETS: [make_issue(7)]})

        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert len(report.all_errors) == 1
        assert report.all_errors[0].startswith("acme/broken (issues)")
        assert store.exists(PATH)

    def test_malformed_repository_reported(
        self, store: DocumentStore, settings: Settings
    ) -> None:
        settings.repositories.append(RepositoryTracking(repository="not-a-repo"))
        provider = FakeProvider({WIDGETS: [make_issue(7)]})

        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert len(report.errors) == 1
        assert report.errors[0].startswith("not-a-repo")
        assert report.created == 1

    def test_assigned_to_me_uses_current_user(self, store: DocumentStore) -> None:
        provider = FakeProvider(
            {WIDGETS: [make_issue(1, assignees=["testuser"]), make_issue(2, assignees=["bob"])]}
        )

        asyncio.run(_sync(provider, store, _assigned_to_me_settings()).sync_all())

        assert store.list_documents("GitHub/acme/widgets") == ["GitHub/acme/widgets/Issue - 1.md"]

    def test_unknown_current_user_skips_repository(self, store: DocumentStore) -> None:
        settings = _assigned_to_me_settings()
        items = {WIDGETS: [make_issue(1, assignees=["testuser"])]}
        asyncio.run(_sync(FakeProvider(items), store, settings).sync_all())

        provider = FakeProvider(items, user=None)
        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert report.deleted == 0
        assert len(report.all_errors) == 1
        assert report.all_errors[0].startswith("acme/widgets (issues)")
        assert provider.fetch_calls == []
        assert store.exists("GitHub/acme/widgets/Issue - 1.md")


class TestRetentionAndCleanup:
    def _closed(self, days_ago: int):
        closed_at = NOW - timedelta(days=days_ago)
        return make_issue(5, state=IssueState.CLOSED, closed_at=closed_at, updated_at=closed_at)

    def _doc(self, store: DocumentStore, allow_delete: str = "true") -> str:
        path = "GitHub/acme/widgets/Issue - 5.md"
        store.write(path, f"---\nnumber: 5\nallowDelete: {allow_delete}\n---\n")
        return path

    def test_old_closed_item_trashed(self, store: DocumentStore, settings: Settings) -> None:
        path = self._doc(store)
        provider = FakeProvider({WIDGETS: [self._closed(40)]})

        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert report.deleted == 1
        assert not store.exists(path)
        assert store.exists(f".trash/{path}")

    def test_recently_closed_item_kept(self, store: DocumentStore, settings: Settings) -> None:
        path = self._doc(store)
        provider = FakeProvider({WIDGETS: [self._closed(10)]})

        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert report.kept == 1
        assert store.exists(path)

    def test_delete_not_allowed(self, store: DocumentStore, settings: Settings) -> None:
        path = self._doc(store, allow_delete="false")
        provider = FakeProvider({WIDGETS: [self._closed(40)]})

        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert report.deleted == 0
        assert store.exists(path)

    def test_empty_folders_removed(self, store: DocumentStore, settings: Settings) -> None:
        self._doc(store)
        provider = FakeProvider()

        report = asyncio.run(_sync(provider, store, settings).sync_all())

        assert report.removed_folders == ["GitHub/acme/widgets", "GitHub/acme"]
        assert not store.exists("GitHub/acme")
        assert store.is_folder("GitHub")

    def test_untracked_kind_cleaned(self, store: DocumentStore, settings: Settings) -> None:
        path = "GitHub Pull Requests/acme/widgets/PR - 2.md"
        store.write(path, "---\nnumber: 2\nallowDelete: true\n---\n")

        report = asyncio.run(_sync(FakeProvider(), store, settings).sync_all())

        assert [(e.kind, e.action) for e in report.entries] == [
            (ItemKind.PULL_REQUEST, SyncAction.DELETE)
        ]
        assert not store.exists(path)


class TestSyncGuard:
    def test_states(self) -> None:
        guard = SyncGuard()
        assert guard.state == SyncState.IDLE
        with guard.hold():
            assert guard.is_syncing
        assert guard.state == SyncState.IDLE

    def test_overlapping_pass_rejected(self, store: DocumentStore, settings: Settings) -> None:
        guard = SyncGuard()
        syncer = _sync(FakeProvider({WIDGETS: [make_issue(7)]}), store, settings, guard=guard)

        guard.acquire()
        try:
            with pytest.raises(SyncInProgressError):
                asyncio.run(syncer.sync_all())
        finally:
            guard.release()

        assert not store.exists(PATH)
        asyncio.run(syncer.sync_all())
        assert store.exists(PATH)

    def test_released_after_failure(self, store: DocumentStore, settings: Settings) -> None:
        class BrokenProvider(FakeProvider):
            async def fetch_items(self, repo, kind, closed_since=None):
                raise RuntimeError("boom")

        guard = SyncGuard()
        syncer = _sync(BrokenProvider(), store, settings, guard=guard)

        with pytest.raises(RuntimeError):
            asyncio.run(syncer.sync_all())

        assert guard.state == SyncState.IDLE


class TestRunPeriodic:
    def test_runs_until_max_runs(self, store: DocumentStore, settings: Settings) -> None:
        syncer = _sync(FakeProvider({WIDGETS: [make_issue(7)]}), store, settings)
        reports = []

        asyncio.run(syncer.run_periodic(0.0001, max_runs=2, on_report=reports.append))

        assert [r.created for r in reports] == [1, 0]

    def test_busy_tick_skipped(self, store: DocumentStore, settings: Settings) -> None:
        guard = SyncGuard()
        syncer = _sync(FakeProvider(), store, settings, guard=guard)
        reports = []

        guard.acquire()
        try:
            asyncio.run(syncer.run_periodic(1, max_runs=1, on_report=reports.append))
        finally:
            guard.release()

        assert reports == []

    @pytest.mark.parametrize("interval", [0, -5])
    def test_rejects_non_positive_interval(
        self, store: DocumentStore, settings: Settings, interval: int
    ) -> None:
        syncer = _sync(FakeProvider(), store, settings)
        with pytest.raises(ValueError):
            asyncio.run(syncer.run_periodic(interval))


class TestRunSync:
    def test_closes_provider(self, vault, settings: Settings) -> None:
        provider = FakeProvider({WIDGETS: [make_issue(7)]})

        report = run_sync(settings, vault, provider=provider)

        assert report.created == 1
        assert provider.closed
        assert (vault / PATH).exists()
