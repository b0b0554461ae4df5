"""
Main sync orchestrator.

This module coordinates a sync pass:
1. Fetch open and recently closed items from the provider
2. Filter the open items by label and assignee
3. Plan the changes against the documents in the vault
4. Render and write documents, trash the ones that are no longer needed
5. Remove folders left empty
"""

import asyncio
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path

from pydantic import ValidationError

from .config import (
    EffectivePolicy,
    Settings,
    effective_policy,
)
from .exceptions import (
    DocumentError,
    GitHubClientError,
    GitHubNotesSyncError,
    InvalidRepositoryError,
    SyncInProgressError,
)
from .filters import filter_items, needs_current_user
from .github_client import GitHubClient
from .models import Comment, ItemKind, SyncAction, SyncReport, SyncResult
from .provider import IssueProvider
from .reconciler import PlannedStep, ReconcilePlan, Reconciler
from .store import DocumentStore

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncGuard:
    """
    Single-slot guard against overlapping sync passes.

    Acquiring never waits: a caller arriving while a pass is running gets
    :class:`SyncInProgressError` immediately. Manual runs and the periodic
    runner share one guard.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state == SyncState.SYNCING

    def acquire(self) -> None:
        """
        Move from idle to syncing.

        Raises:
            SyncInProgressError: If a pass is already running
        """
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError
        self._state = SyncState.SYNCING

    def release(self) -> None:
        self._state = SyncState.IDLE
        self._lock.release()

    @contextmanager
    def hold(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()


class IssueSync:
    """
    Orchestrates the sync between an issue provider and a vault.

    This is the main entry point for sync operations, coordinating the
    provider, the filters, the reconciler and the document store.
    """

    def __init__(
        self,
        provider: IssueProvider,
        store: DocumentStore,
        settings: Settings,
        dry_run: bool = False,
        guard: SyncGuard | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the sync orchestrator.

        Args:
            provider: Issue provider
            store: Vault document store
            settings: Settings, read-only during a pass
            dry_run: Plan and report without touching the vault
            guard: Shared sync guard (a private one if None)
            now: Clock, for tests
        """
        self.provider = provider
        self.store = store
        self.settings = settings
        self.dry_run = dry_run
        self.guard = guard or SyncGuard()
        self._clock = now or (lambda: datetime.now(UTC))

    def _policies(self) -> Iterator[tuple[str, EffectivePolicy | None, str | None]]:
        """
        Effective policies of every configured (repository, kind) pair.

        Yields (repository, policy, None), or (repository, None, error) once
        for a malformed repository identifier.
        """
        defaults = self.settings.global_defaults
        for repo in self.settings.repositories:
            for kind in ItemKind:
                try:
                    policy = effective_policy(repo, kind, defaults)
                except InvalidRepositoryError as e:
                    yield repo.repository, None, e.message
                    break
                yield repo.repository, policy, None

    def _needs_current_user(self) -> bool:
        return any(
            policy is not None and needs_current_user(policy)
            for _, policy, _ in self._policies()
        )

    async def sync_all(self) -> SyncReport:
        """
        Run one full sync pass over every configured repository.

        Returns:
            SyncReport with per-repository results and errors

        Raises:
            SyncInProgressError: If another pass is running
        """
        with self.guard.hold():
            return await self._sync_all()

    async def _sync_all(self) -> SyncReport:
        report = SyncReport(dry_run=self.dry_run)
        now = self._clock()
        reconciler = Reconciler(self.store, self.settings, now=now)

        logger.info(f"Starting sync of {len(self.settings.repositories)} repositories")
        if self.dry_run:
            logger.info("Dry run - no documents will be written")

        current_user = None
        if self._needs_current_user():
            current_user = await self.provider.fetch_authenticated_user()

        for repository, policy, error in self._policies():
            if policy is None:
                message = f"{repository}: {error}"
                logger.error(message)
                report.errors.append(message)
                continue

            label = f"{repository} ({policy.kind.label}s)"
            try:
                result = await self.sync_repository(reconciler, policy, now, current_user)
            except GitHubNotesSyncError as e:
                logger.error(f"{label}: {e}")
                report.errors.append(f"{label}: {e.message}")
                continue
            except ValidationError as e:
                logger.error(f"{label}: unexpected API response: {e}")
                report.errors.append(f"{label}: unexpected API response")
                continue

            if policy.track or result.entries:
                report.results.append(result)

        if not self.dry_run:
            self.cleanup_empty_folders(report)

        logger.info(
            f"Sync finished: {report.created} created, {report.updated} updated, "
            f"{report.appended} appended, {report.deleted} deleted"
        )
        return report

    async def sync_repository(
        self,
        reconciler: Reconciler,
        policy: EffectivePolicy,
        now: datetime,
        current_user: str | None = None,
    ) -> SyncResult:
        """
        Sync one (repository, kind) pair.

        Raises:
            GitHubClientError: If fetching the items fails, or the current
                user needed by an assigned-to-me filter is unknown
            DocumentError: If the vault folder cannot be read
        """
        result = SyncResult(repository=policy.repository, kind=policy.kind)

        if not policy.track:
            plan = reconciler.plan_untracked_cleanup(policy)
            await self._execute(reconciler, plan, result)
            return result

        # Never reconcile an assigned-to-me policy without its user
        if needs_current_user(policy) and not current_user:
            raise GitHubClientError(
                "Cannot determine the authenticated user for the 'assigned-to-me' filter",
                "Check the token; the repository is skipped until the user can be resolved",
            )

        closed_since = now - timedelta(days=self.settings.cleanup_closed_days)
        history = await self.provider.fetch_items(policy.repository, policy.kind, closed_since)
        open_items = filter_items(
            [item for item in history if item.is_open],
            policy,
            current_user,
        )

        plan = reconciler.plan(policy, open_items, history)
        if plan.writes and not self.dry_run:
            self.store.ensure_folder(policy.target_folder)

        await self._execute(reconciler, plan, result)
        return result

    async def _execute(
        self,
        reconciler: Reconciler,
        plan: ReconcilePlan,
        result: SyncResult,
    ) -> None:
        """Carry out a plan, recording every step in the result."""
        result.total_remote_items = plan.total_remote_items
        result.total_documents = plan.total_documents

        for step in plan.steps:
            try:
                await self._apply(reconciler, plan.policy, step)
            except (DocumentError, GitHubClientError) as e:
                message = f"{step.path}: {e.message}"
                logger.error(message)
                result.errors.append(message)
                continue
            result.add_entry(step.number, step.path, step.action, step.reason)

    async def _apply(
        self,
        reconciler: Reconciler,
        policy: EffectivePolicy,
        step: PlannedStep,
    ) -> None:
        if step.action.writes and step.item is not None:
            if self.dry_run:
                logger.info(f"Would {step.action.value} {step.path}")
                return

            comments: list[Comment] = []
            if policy.include_comments:
                comments = await self.provider.fetch_comments(policy.repository, step.item)
            text = reconciler.render(policy, step, comments)

            if step.action == SyncAction.CREATE:
                self.store.create(step.path, text)
                logger.info(f"Created {step.path}")
            elif step.action == SyncAction.UPDATE:
                self.store.write(step.path, text)
                logger.info(f"Updated {step.path}")
            else:
                self.store.write(step.path, text)
                logger.info(f"Appended to {step.path}")

        elif step.action == SyncAction.DELETE:
            if self.dry_run:
                logger.info(f"Would delete {step.path} ({step.reason})")
                return
            self.store.trash(step.path)
            logger.info(f"Deleted {step.path} ({step.reason})")

        else:
            logger.debug(f"{step.action.value.title()} {step.path}: {step.reason}")

    def cleanup_empty_folders(self, report: SyncReport) -> None:
        """
        Remove repository and owner folders left empty.

        Only hierarchical layouts are cleaned; custom folders are never
        removed.
        """
        seen: set[str] = set()
        for _, policy, _ in self._policies():
            if policy is None or not policy.hierarchical:
                continue
            for folder in (policy.target_folder, policy.owner_folder):
                if folder in seen:
                    continue
                seen.add(folder)
                if self.store.remove_folder(folder):
                    logger.info(f"Removed empty folder {folder}")
                    report.removed_folders.append(folder)

    async def run_periodic(
        self,
        interval_minutes: float,
        max_runs: int | None = None,
        on_report: Callable[[SyncReport], None] | None = None,
    ) -> None:
        """
        Run sync passes on a fixed interval.

        A tick that finds a pass still running is skipped.

        Args:
            interval_minutes: Minutes between passes (must be positive)
            max_runs: Stop after this many ticks (None runs forever)
            on_report: Callback receiving each finished report

        Raises:
            ValueError: If the interval is not positive
        """
        if interval_minutes <= 0:
            raise ValueError("Sync interval must be positive")

        runs = 0
        while max_runs is None or runs < max_runs:
            try:
                report = await self.sync_all()
            except SyncInProgressError:
                logger.warning("Sync already in progress, skipping this run")
            else:
                if on_report is not None:
                    on_report(report)

            runs += 1
            if max_runs is not None and runs >= max_runs:
                break
            await asyncio.sleep(interval_minutes * 60)


def run_sync(
    settings: Settings,
    vault: str | Path,
    token: str | None = None,
    dry_run: bool = False,
    provider: IssueProvider | None = None,
) -> SyncReport:
    """
    Synchronous wrapper for IssueSync.sync_all().

    Args:
        settings: Loaded settings
        vault: Vault root folder
        token: GitHub token (overrides the settings file)
        dry_run: Don't touch the vault
        provider: Issue provider (a GitHubClient if None)

    Returns:
        SyncReport of the pass
    """

    async def _run() -> SyncReport:
        client = provider or GitHubClient(token=token or settings.github_token)
        try:
            syncer = IssueSync(client, DocumentStore(vault), settings, dry_run=dry_run)
            return await syncer.sync_all()
        finally:
            await client.close()

    return asyncio.run(_run())
