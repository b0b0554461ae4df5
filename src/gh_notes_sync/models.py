"""
Pydantic models for remote issue-tracker items and local documents.

This module defines the data models used throughout the application,
providing strong typing, validation, and serialization capabilities.
Remote items form a closed tagged union (``Issue | PullRequest``) so the
rest of the package never has to deal with untyped API payloads.
"""

from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class IssueState(str, Enum):
    """Remote item state."""

    OPEN = "open"
    CLOSED = "closed"


class ItemKind(str, Enum):
    """Kind of tracked remote item."""

    ISSUE = "issue"
    PULL_REQUEST = "pr"

    @property
    def label(self) -> str:
        """Human-readable name used in log messages."""
        return "issue" if self is ItemKind.ISSUE else "pull request"


class UpdateMode(str, Enum):
    """How an existing document reacts to remote changes."""

    NONE = "none"
    UPDATE = "update"
    APPEND = "append"


class User(BaseModel):
    """GitHub user representation."""

    model_config = ConfigDict(frozen=True)

    login: str
    url: HttpUrl | None = None


class Label(BaseModel):
    """GitHub issue label."""

    model_config = ConfigDict(frozen=True)

    name: str
    color: str | None = None
    description: str | None = None


class Milestone(BaseModel):
    """GitHub milestone."""

    model_config = ConfigDict(frozen=True)

    title: str
    number: int
    state: str = "open"
    due_on: datetime | None = None


class Comment(BaseModel):
    """Issue comment or pull request review comment."""

    model_config = ConfigDict(frozen=True)

    id: int
    author: User
    body: str
    created_at: datetime
    updated_at: datetime | None = None
    url: HttpUrl | None = None
    is_review_comment: bool = False
    path: str | None = None
    line: int | None = None


class RateLimit(BaseModel):
    """Core API rate limit status."""

    model_config = ConfigDict(frozen=True)

    limit: int
    remaining: int
    reset_at: datetime


class RemoteItemBase(BaseModel):
    """Fields shared by issues and pull requests."""

    model_config = ConfigDict(frozen=True)

    kind: str
    number: int
    title: str
    body: str | None = None
    state: IssueState
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    author: User
    assignees: list[User] = Field(default_factory=list)
    labels: list[Label] = Field(default_factory=list)
    milestone: Milestone | None = None
    url: str = ""
    comments_count: int = 0
    locked: bool = False
    lock_reason: str | None = None

    @property
    def label_names(self) -> list[str]:
        """Get list of label names."""
        return [label.name for label in self.labels]

    @property
    def assignee_logins(self) -> list[str]:
        """Get list of assignee login names."""
        return [a.login for a in self.assignees]

    @property
    def is_open(self) -> bool:
        return self.state == IssueState.OPEN

    @property
    def item_kind(self) -> ItemKind:
        return ItemKind(self.kind)


class Issue(RemoteItemBase):
    """A GitHub issue snapshot."""

    kind: Literal["issue"] = "issue"


class PullRequest(RemoteItemBase):
    """
    A GitHub pull request snapshot.

    Carries the merge and branch information that only pull requests have,
    plus the list of requested reviewers.
    """

    kind: Literal["pr"] = "pr"
    merged: bool = False
    merged_at: datetime | None = None
    mergeable: bool | None = None
    base_branch: str | None = None
    head_branch: str | None = None
    requested_reviewers: list[User] = Field(default_factory=list)

    @property
    def reviewer_logins(self) -> list[str]:
        return [r.login for r in self.requested_reviewers]


RemoteItem = Annotated[Issue | PullRequest, Field(discriminator="kind")]


class LocalDocument(BaseModel):
    """
    A rendered document inside the vault.

    ``header`` holds the parsed frontmatter; the ``header_*`` properties
    expose the keys the reconciler relies on, returning ``None`` when a key
    is missing or malformed so callers can fall back to policy defaults.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    header: dict[str, Any] = Field(default_factory=dict)
    body: str = ""

    @property
    def filename(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def header_number(self) -> int | None:
        """Item number stored in the header, if present and numeric."""
        value = self.header.get("number")
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(str(value).strip().strip("\"'"))
        except ValueError:
            return None

    @property
    def header_update_mode(self) -> UpdateMode | None:
        value = self.header.get("updateMode")
        if value is None:
            return None
        try:
            return UpdateMode(str(value).strip().strip("\"'").lower())
        except ValueError:
            return None

    @property
    def header_allow_delete(self) -> bool | None:
        value = self.header.get("allowDelete")
        if isinstance(value, bool):
            return value
        if value is None:
            return None
        text = str(value).strip().strip("\"'").lower()
        if text in ("true", "false"):
            return text == "true"
        return None

    @property
    def header_kind(self) -> ItemKind | None:
        value = self.header.get("type")
        if value is None:
            return None
        try:
            return ItemKind(str(value).strip().lower())
        except ValueError:
            return None

    @property
    def header_updated(self) -> Any:
        """Raw ``updated`` header value (string, datetime or None)."""
        return self.header.get("updated")


class SyncAction(str, Enum):
    """Type of reconciliation action."""

    CREATE = "create"
    UPDATE = "update"
    APPEND = "append"
    SKIP = "skip"
    DELETE = "delete"
    KEEP = "keep"  # Closed item inside the retention window, or delete not permitted
    UNRESOLVED = "unresolved"  # Document number could not be recovered

    @property
    def writes(self) -> bool:
        """True for actions that write document content."""
        return self in (SyncAction.CREATE, SyncAction.UPDATE, SyncAction.APPEND)


class SyncEntry(BaseModel):
    """Record of a single reconciliation action."""

    model_config = ConfigDict(frozen=True)

    repository: str
    kind: ItemKind
    number: int | None
    path: str
    action: SyncAction
    details: str | None = None


class SyncResult(BaseModel):
    """Result of reconciling one (repository, kind) pair."""

    model_config = ConfigDict(frozen=False)

    repository: str
    kind: ItemKind
    entries: list[SyncEntry] = Field(default_factory=list)
    total_remote_items: int = 0
    total_documents: int = 0
    created: int = 0
    updated: int = 0
    appended: int = 0
    skipped: int = 0
    deleted: int = 0
    kept: int = 0
    unresolved: int = 0
    errors: list[str] = Field(default_factory=list)

    def add_entry(
        self,
        number: int | None,
        path: str,
        action: SyncAction,
        details: str | None = None,
    ) -> None:
        """Add an entry and update counters."""
        self.entries.append(
            SyncEntry(
                repository=self.repository,
                kind=self.kind,
                number=number,
                path=path,
                action=action,
                details=details,
            )
        )
        if action == SyncAction.CREATE:
            self.created += 1
        elif action == SyncAction.UPDATE:
            self.updated += 1
        elif action == SyncAction.APPEND:
            self.appended += 1
        elif action == SyncAction.SKIP:
            self.skipped += 1
        elif action == SyncAction.DELETE:
            self.deleted += 1
        elif action == SyncAction.KEEP:
            self.kept += 1
        elif action == SyncAction.UNRESOLVED:
            self.unresolved += 1

    @property
    def writes(self) -> int:
        """Number of document writes and deletions."""
        return self.created + self.updated + self.appended + self.deleted

    @property
    def has_changes(self) -> bool:
        """Check if any changes were made."""
        return self.writes > 0


class SyncReport(BaseModel):
    """Aggregated result of a full sync pass over all repositories."""

    model_config = ConfigDict(frozen=False)

    results: list[SyncResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    removed_folders: list[str] = Field(default_factory=list)
    dry_run: bool = False

    def _total(self, attr: str) -> int:
        return sum(getattr(r, attr) for r in self.results)

    @property
    def created(self) -> int:
        return self._total("created")

    @property
    def updated(self) -> int:
        return self._total("updated")

    @property
    def appended(self) -> int:
        return self._total("appended")

    @property
    def skipped(self) -> int:
        return self._total("skipped")

    @property
    def deleted(self) -> int:
        return self._total("deleted")

    @property
    def kept(self) -> int:
        return self._total("kept")

    @property
    def unresolved(self) -> int:
        return self._total("unresolved")

    @property
    def writes(self) -> int:
        return self._total("writes")

    @property
    def all_errors(self) -> list[str]:
        errors = list(self.errors)
        for result in self.results:
            errors.extend(result.errors)
        return errors

    @property
    def entries(self) -> list[SyncEntry]:
        return [entry for result in self.results for entry in result.entries]

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            f"Sync complete: {len(self.results)} repository/kind pairs",
            f"  Created: {self.created}",
            f"  Updated: {self.updated}",
            f"  Appended: {self.appended}",
            f"  Skipped: {self.skipped}",
            f"  Deleted: {self.deleted}",
            f"  Kept: {self.kept}",
        ]
        if self.unresolved:
            lines.append(f"  Unresolved: {self.unresolved}")
        errors = self.all_errors
        if errors:
            lines.append(f"  Errors: {len(errors)}")
            for error in errors[:5]:  # Show first 5 errors
                lines.append(f"    - {error}")
            if len(errors) > 5:
                lines.append(f"    ... and {len(errors) - 5} more")
        return "\n".join(lines)
