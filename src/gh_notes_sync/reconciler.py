"""
Reconciliation of remote items with the documents in the vault.

For one (repository, kind) pair the reconciler:

1. Indexes the documents in the target folder by item number, read from
   the frontmatter or recovered from the filename.
2. Plans one step per open item (create, update, append or skip) and one
   step per document that no longer matches an open item (delete or keep).
3. Renders the final text of every step that writes, merging persist
   blocks forward when a document is overwritten.

Planning never touches the vault; executing the plan is the sync
orchestrator's job.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .config import EffectivePolicy, Settings
from .exceptions import DocumentError, TemplateError
from .frontmatter import replace_header_value
from .models import (
    Comment,
    Issue,
    LocalDocument,
    PullRequest,
    SyncAction,
    UpdateMode,
)
from .persist import extract_persist_blocks, merge_persist_blocks
from .store import DocumentStore
from .templates import (
    TemplateRenderer,
    default_content_template,
    extract_number_from_filename,
)

logger = logging.getLogger(__name__)


class DocumentIndex(BaseModel):
    """Documents of one target folder keyed by item number."""

    by_number: dict[int, LocalDocument] = Field(default_factory=dict)
    unresolved: list[LocalDocument] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.by_number) + len(self.unresolved)


class PlannedStep(BaseModel):
    """A single planned action on one document."""

    model_config = ConfigDict(frozen=True)

    action: SyncAction
    number: int | None
    path: str
    item: Issue | PullRequest | None = None
    reason: str | None = None


class ReconcilePlan(BaseModel):
    """Every step planned for one (repository, kind) pair."""

    policy: EffectivePolicy
    steps: list[PlannedStep] = Field(default_factory=list)
    total_remote_items: int = 0
    total_documents: int = 0

    @property
    def writes(self) -> list[PlannedStep]:
        return [s for s in self.steps if s.action.writes]

    @property
    def deletions(self) -> list[PlannedStep]:
        return [s for s in self.steps if s.action == SyncAction.DELETE]


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


class Reconciler:
    """
    Plans and renders document changes for tracked repositories.

    One reconciler serves a whole sync pass; custom content templates are
    read once per pass and cached.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings,
        renderer: TemplateRenderer | None = None,
        now: datetime | None = None,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            store: Vault document store
            settings: Settings of the current pass
            renderer: Template renderer (built from settings if None)
            now: Fixed current time, for tests
        """
        self.store = store
        self.settings = settings
        self.renderer = renderer or TemplateRenderer(
            date_format=settings.date_format,
            escape_mode=settings.escape_mode,
        )
        self._now = now
        self._templates: dict[str, str] = {}

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(UTC)

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.settings.cleanup_closed_days)

    # Document index

    def load_documents(self, policy: EffectivePolicy) -> DocumentIndex:
        """
        Index the documents in a policy's target folder.

        Only the frontmatter of each document is read. The item number
        comes from the ``number`` key, or failing that from matching the
        filename against the filename template. Documents whose ``type``
        names the other item kind are ignored.
        """
        index = DocumentIndex()

        for path in self.store.list_documents(policy.target_folder):
            try:
                header = self.store.read_frontmatter(path)
            except DocumentError as e:
                logger.warning(f"Skipping unreadable document {path}: {e.message}")
                continue

            document = LocalDocument(path=path, header=header)

            if document.header_kind is not None and document.header_kind != policy.kind:
                continue

            number = document.header_number
            if number is None:
                recovered = extract_number_from_filename(
                    document.filename, policy.filename_template
                )
                number = int(recovered) if recovered is not None else None

            if number is None:
                logger.info(
                    f"Cannot determine the {policy.kind.label} number of {path}, "
                    "leaving it untouched"
                )
                index.unresolved.append(document)
                continue

            if number in index.by_number:
                logger.warning(
                    f"Duplicate document for {policy.repository} #{number}: {path} "
                    f"(using {index.by_number[number].path})"
                )
                continue

            index.by_number[number] = document

        return index

    # Planning

    def document_path(self, policy: EffectivePolicy, item: Issue | PullRequest) -> str:
        """Vault path a new document for ``item`` is created at."""
        data = self.renderer.build_data(item, policy)
        filename = self.renderer.render_filename(policy.filename_template, data)
        folder = policy.target_folder
        return f"{folder}/{filename}" if folder else filename

    def parse_stored_date(self, value: Any) -> datetime | None:
        """
        Parse the ``updated`` value stored in a document header.

        Accepts datetimes and dates (YAML timestamps), ISO 8601 strings and
        strings in the configured date format. Naive ISO values are taken as
        UTC; values in the configured format as local time.
        """
        if isinstance(value, datetime):
            return _as_utc(value)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=UTC)
        if not isinstance(value, str) or not value.strip():
            return None

        text = value.strip()
        try:
            return _as_utc(datetime.fromisoformat(text))
        except ValueError:
            pass

        if self.settings.date_format:
            try:
                return datetime.strptime(text, self.settings.date_format).astimezone(UTC)
            except ValueError:
                pass

        logger.debug(f"Unparsable stored date: {value!r}")
        return None

    def is_stale(self, item: Issue | PullRequest, document: LocalDocument) -> bool:
        """True when the remote item changed after the document was written."""
        stored = self.parse_stored_date(document.header_updated)
        if stored is None:
            return True
        return _as_utc(item.updated_at) > stored

    def plan(
        self,
        policy: EffectivePolicy,
        open_items: Sequence[Issue | PullRequest],
        history: Sequence[Issue | PullRequest],
        index: DocumentIndex | None = None,
    ) -> ReconcilePlan:
        """
        Plan the steps for one (repository, kind) pair.

        Args:
            policy: Effective policy
            open_items: Open items that passed the filters
            history: Open items plus closed items inside the retention
                window, unfiltered
            index: Pre-loaded document index (loaded if None)

        Returns:
            Plan with one step per open item and per leftover document
        """
        if index is None:
            index = self.load_documents(policy)

        plan = ReconcilePlan(
            policy=policy,
            total_remote_items=len(open_items),
            total_documents=len(index),
        )

        open_numbers: set[int] = set()
        for item in sorted(open_items, key=lambda i: i.number):
            open_numbers.add(item.number)
            plan.steps.append(self._plan_item(policy, item, index.by_number.get(item.number)))

        history_by_number = {item.number: item for item in history}
        for number, document in sorted(index.by_number.items()):
            if number in open_numbers:
                continue
            plan.steps.append(
                self._plan_leftover(policy, number, document, history_by_number.get(number))
            )

        for document in index.unresolved:
            plan.steps.append(
                PlannedStep(
                    action=SyncAction.UNRESOLVED,
                    number=None,
                    path=document.path,
                    reason="number could not be determined",
                )
            )

        return plan

    def _plan_item(
        self,
        policy: EffectivePolicy,
        item: Issue | PullRequest,
        document: LocalDocument | None,
    ) -> PlannedStep:
        if document is None:
            path = self.document_path(policy, item)
            if self.store.exists(path):
                logger.warning(f"{path} exists but is not linked to #{item.number}, not overwriting")
                return PlannedStep(
                    action=SyncAction.SKIP,
                    number=item.number,
                    path=path,
                    item=item,
                    reason="file exists but is not linked to this item",
                )
            return PlannedStep(action=SyncAction.CREATE, number=item.number, path=path, item=item)

        mode = document.header_update_mode
        if mode is None:
            logger.warning(
                f"{document.path} has no valid updateMode, using '{policy.update_mode.value}'"
            )
            mode = policy.update_mode

        if mode == UpdateMode.NONE:
            return PlannedStep(
                action=SyncAction.SKIP,
                number=item.number,
                path=document.path,
                item=item,
                reason="update mode is none",
            )

        if not self.is_stale(item, document):
            return PlannedStep(
                action=SyncAction.SKIP,
                number=item.number,
                path=document.path,
                item=item,
                reason="not modified",
            )

        action = SyncAction.APPEND if mode == UpdateMode.APPEND else SyncAction.UPDATE
        return PlannedStep(action=action, number=item.number, path=document.path, item=item)

    def _plan_leftover(
        self,
        policy: EffectivePolicy,
        number: int,
        document: LocalDocument,
        item: Issue | PullRequest | None,
    ) -> PlannedStep:
        """Decide the fate of a document that matches no open item."""
        if item is None:
            reason = "no longer exists remotely"
        elif item.is_open:
            # Open upstream but not in the open set: removed by the filters
            reason = "no longer tracked"
        else:
            closed_at = item.closed_at
            if closed_at is not None and self.now - _as_utc(closed_at) <= self.retention:
                return PlannedStep(
                    action=SyncAction.KEEP,
                    number=number,
                    path=document.path,
                    item=item,
                    reason="closed within retention window",
                )
            reason = f"closed more than {self.settings.cleanup_closed_days} days ago"

        allow_delete = document.header_allow_delete
        if allow_delete is None:
            allow_delete = policy.allow_delete

        if not allow_delete:
            return PlannedStep(
                action=SyncAction.KEEP,
                number=number,
                path=document.path,
                item=item,
                reason=f"deletion not allowed ({reason})",
            )

        return PlannedStep(
            action=SyncAction.DELETE,
            number=number,
            path=document.path,
            item=item,
            reason=reason,
        )

    def plan_untracked_cleanup(self, policy: EffectivePolicy) -> ReconcilePlan:
        """
        Plan the removal of documents of a kind that is no longer tracked.

        Only the hierarchical folder is considered, and only documents whose
        header explicitly sets ``allowDelete: true`` are removed.
        """
        plan = ReconcilePlan(policy=policy)
        if policy.track or not policy.hierarchical:
            return plan

        index = self.load_documents(policy)
        plan.total_documents = len(index)
        for number, document in sorted(index.by_number.items()):
            if document.header_allow_delete is True:
                plan.steps.append(
                    PlannedStep(
                        action=SyncAction.DELETE,
                        number=number,
                        path=document.path,
                        reason=f"{policy.kind.label}s no longer tracked",
                    )
                )
        return plan

    # Rendering

    def load_content_template(self, policy: EffectivePolicy) -> str:
        """
        Read the custom content template of a policy from the vault.

        Raises:
            TemplateError: If the template file is missing or unreadable
        """
        path = policy.content_template.strip()
        if path in self._templates:
            return self._templates[path]
        try:
            if not self.store.exists(path):
                raise TemplateError(path, "file not found")
            template = self.store.read(path)
        except DocumentError as e:
            raise TemplateError(path, e.message) from e
        self._templates[path] = template
        return template

    def content_template(self, policy: EffectivePolicy) -> str:
        """Content template for a policy, falling back to the built-in one."""
        if not policy.content_template.strip():
            return default_content_template(policy.kind)
        try:
            return self.load_content_template(policy)
        except TemplateError as e:
            logger.warning(f"{e.message}; using the default template")
            return default_content_template(policy.kind)

    def render(
        self,
        policy: EffectivePolicy,
        step: PlannedStep,
        comments: Sequence[Comment] = (),
    ) -> str:
        """
        Render the final document text of a writing step.

        Args:
            policy: Effective policy
            step: A create, update or append step
            comments: Comment thread of the step's item

        Returns:
            Complete document text

        Raises:
            ValueError: If the step does not write
            DocumentReadError: If the existing document cannot be read
        """
        if not step.action.writes or step.item is None:
            raise ValueError(f"Step {step.action.value} for {step.path} does not write")

        if not policy.include_comments:
            comments = ()
        data = self.renderer.build_data(step.item, policy, comments)

        if step.action == SyncAction.APPEND:
            existing = self.store.read(step.path)
            text = existing + "\n\n" + self.renderer.render_append_fragment(data)
            return replace_header_value(text, "updated", f'"{data["updated_iso"]}"')

        content = self.renderer.render_content(self.content_template(policy), data)

        if step.action == SyncAction.UPDATE:
            existing = self.store.read(step.path)
            blocks = extract_persist_blocks(existing)
            if blocks:
                logger.debug(f"Carrying {len(blocks)} persist block(s) into {step.path}")
            content = merge_persist_blocks(content, existing, blocks)

        return content
