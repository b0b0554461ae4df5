"""
Settings and per-repository tracking policy.

Settings are stored as a JSON file and validated with Pydantic. Keys may be
written in camelCase (``cleanupClosedDays``) or snake_case (``cleanup_closed_days``).
Before any rendering happens the global defaults and a repository's own
tracking block are merged into an :class:`EffectivePolicy`.
"""

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import InvalidRepositoryError, SettingsFileError
from .models import ItemKind, UpdateMode

logger = logging.getLogger(__name__)

DEFAULT_ISSUE_FILENAME_TEMPLATE = "Issue - {number}"
DEFAULT_PR_FILENAME_TEMPLATE = "PR - {number}"
DEFAULT_ISSUE_FOLDER = "GitHub"
DEFAULT_PR_FOLDER = "GitHub Pull Requests"


class _SettingsModel(BaseModel):
    """Base for settings models: camelCase aliases, snake_case names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class EscapeMode(str, Enum):
    """How remote text is escaped before it lands in a document."""

    DISABLED = "disabled"
    NORMAL = "normal"
    STRICT = "strict"
    VERY_STRICT = "veryStrict"


class NoticeMode(str, Enum):
    """Verbosity of sync notifications."""

    MINIMAL = "minimal"
    NORMAL = "normal"
    EXTENSIVE = "extensive"
    DEBUG = "debug"

    @property
    def log_level(self) -> int:
        return {
            NoticeMode.MINIMAL: logging.WARNING,
            NoticeMode.NORMAL: logging.INFO,
            NoticeMode.EXTENSIVE: logging.INFO,
            NoticeMode.DEBUG: logging.DEBUG,
        }[self]


class LabelFilterMode(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class AssigneeFilterMode(str, Enum):
    ASSIGNED_TO_ME = "assigned-to-me"
    ASSIGNED_TO_SPECIFIC = "assigned-to-specific"
    UNASSIGNED = "unassigned"
    ANY_ASSIGNED = "any-assigned"


class LabelFilter(_SettingsModel):
    """Keep or drop items by label."""

    enabled: bool = False
    mode: LabelFilterMode = LabelFilterMode.INCLUDE
    labels: list[str] = Field(default_factory=list)


class AssigneeFilter(_SettingsModel):
    """Keep items by assignment."""

    enabled: bool = False
    mode: AssigneeFilterMode = AssigneeFilterMode.ASSIGNED_TO_ME
    users: list[str] = Field(default_factory=list)


class KindDefaults(_SettingsModel):
    """Global defaults for one item kind."""

    update_mode: UpdateMode = UpdateMode.NONE
    allow_delete: bool = True
    folder: str = DEFAULT_ISSUE_FOLDER
    filename_template: str = DEFAULT_ISSUE_FILENAME_TEMPLATE
    content_template: str = ""
    include_comments: bool = True


class KindTracking(KindDefaults):
    """Repository-level settings for one item kind."""

    track: bool = True
    use_custom_folder: bool = False
    custom_folder: str = ""
    use_custom_content_template: bool = False
    label_filter: LabelFilter = Field(default_factory=LabelFilter)
    assignee_filter: AssigneeFilter = Field(default_factory=AssigneeFilter)


def _pull_request_defaults() -> KindDefaults:
    return KindDefaults(
        folder=DEFAULT_PR_FOLDER,
        filename_template=DEFAULT_PR_FILENAME_TEMPLATE,
    )


def _pull_request_tracking() -> KindTracking:
    return KindTracking(
        track=False,
        folder=DEFAULT_PR_FOLDER,
        filename_template=DEFAULT_PR_FILENAME_TEMPLATE,
    )


class GlobalDefaults(_SettingsModel):
    """Defaults applied to every repository that does not ignore them."""

    issues: KindDefaults = Field(default_factory=KindDefaults)
    pull_requests: KindDefaults = Field(default_factory=_pull_request_defaults)

    def for_kind(self, kind: ItemKind) -> KindDefaults:
        return self.issues if kind == ItemKind.ISSUE else self.pull_requests


class RepositoryTracking(_SettingsModel):
    """Tracking policy for a single repository."""

    repository: str
    ignore_global_settings: bool = False
    issues: KindTracking = Field(default_factory=KindTracking)
    pull_requests: KindTracking = Field(default_factory=_pull_request_tracking)

    def for_kind(self, kind: ItemKind) -> KindTracking:
        return self.issues if kind == ItemKind.ISSUE else self.pull_requests

    @property
    def owner_and_name(self) -> tuple[str, str]:
        """
        Split the repository identifier into owner and name.

        Raises:
            InvalidRepositoryError: If the identifier is not ``owner/repo``
        """
        return split_repository(self.repository)


class Settings(_SettingsModel):
    """Top-level settings file."""

    github_token: str = ""
    repositories: list[RepositoryTracking] = Field(default_factory=list)
    global_defaults: GlobalDefaults = Field(default_factory=GlobalDefaults)
    date_format: str = ""
    escape_mode: EscapeMode = EscapeMode.STRICT
    notice_mode: NoticeMode = NoticeMode.NORMAL
    cleanup_closed_days: int = Field(default=30, ge=0)
    background_sync_interval: int = Field(default=30, ge=0)


class EffectivePolicy(BaseModel):
    """
    Settings for one (repository, kind) pair after merging global defaults.

    Read-only for the duration of a sync pass.
    """

    model_config = ConfigDict(frozen=True)

    repository: str
    owner: str
    repo_name: str
    kind: ItemKind
    track: bool
    update_mode: UpdateMode
    allow_delete: bool
    folder: str
    use_custom_folder: bool
    custom_folder: str
    filename_template: str
    content_template: str
    include_comments: bool
    label_filter: LabelFilter
    assignee_filter: AssigneeFilter

    @property
    def hierarchical(self) -> bool:
        """True when documents live under ``<folder>/<owner>/<repo>``."""
        return not self.use_custom_folder

    @property
    def owner_folder(self) -> str:
        return _join(self.folder, _clean_segment(self.owner))

    @property
    def target_folder(self) -> str:
        """Vault folder holding the documents of this repository and kind."""
        if self.use_custom_folder:
            return self.custom_folder.strip("/")
        return _join(self.owner_folder, _clean_segment(self.repo_name))


def split_repository(repository: str) -> tuple[str, str]:
    """Validate an ``owner/repo`` identifier and split it."""
    if repository.count("/") != 1:
        raise InvalidRepositoryError(repository)
    owner, name = (part.strip() for part in repository.split("/"))
    if not owner or not name:
        raise InvalidRepositoryError(repository)
    return owner, name


def _clean_segment(segment: str) -> str:
    return segment.replace("/", "-")


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p.strip("/"))


def effective_policy(
    repo: RepositoryTracking,
    kind: ItemKind,
    defaults: GlobalDefaults,
) -> EffectivePolicy:
    """
    Merge global defaults with a repository's own settings for one kind.

    With ``ignore_global_settings`` the repository's values are used as-is.
    Otherwise a custom folder or custom content template set on the
    repository wins, and every other field the global defaults know about
    comes from the global defaults. Tracking flags and filters are always
    repository-level.

    Raises:
        InvalidRepositoryError: If the repository identifier is malformed
    """
    owner, repo_name = repo.owner_and_name
    own = repo.for_kind(kind)

    if repo.ignore_global_settings:
        base: KindDefaults = own
        content_template = own.content_template if own.use_custom_content_template else ""
    else:
        base = defaults.for_kind(kind)
        content_template = (
            own.content_template if own.use_custom_content_template else base.content_template
        )

    return EffectivePolicy(
        repository=repo.repository,
        owner=owner,
        repo_name=repo_name,
        kind=kind,
        track=own.track,
        update_mode=base.update_mode,
        allow_delete=base.allow_delete,
        folder=base.folder,
        use_custom_folder=own.use_custom_folder and bool(own.custom_folder.strip("/")),
        custom_folder=own.custom_folder,
        filename_template=base.filename_template,
        content_template=content_template,
        include_comments=base.include_comments,
        label_filter=own.label_filter,
        assignee_filter=own.assignee_filter,
    )


def load_settings(path: Path | str) -> Settings:
    """
    Load and validate a settings file.

    A missing file yields default settings.

    Raises:
        SettingsFileError: If the file cannot be read or fails validation
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"No settings file at {path}, using defaults")
        return Settings()

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SettingsFileError(str(path), str(e)) from e

    try:
        settings = Settings.model_validate_json(raw)
    except ValidationError as e:
        raise SettingsFileError(str(path), str(e)) from e

    logger.debug(f"Loaded {len(settings.repositories)} repositories from {path}")
    return settings
