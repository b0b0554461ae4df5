"""Pytest configuration and fixtures."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from gh_notes_sync.config import (
    GlobalDefaults,
    RepositoryTracking,
    Settings,
    effective_policy,
)
from gh_notes_sync.models import (
    Comment,
    Issue,
    IssueState,
    ItemKind,
    Label,
    Milestone,
    PullRequest,
    User,
)
from gh_notes_sync.provider import IssueProvider
from gh_notes_sync.store import DocumentStore

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


class FakeProvider(IssueProvider):
    """In-memory provider returning canned items."""

    def __init__(
        self,
        items: dict[tuple[str, ItemKind], list[Issue | PullRequest]] | None = None,
        comments: dict[int, list[Comment]] | None = None,
        user: str | None = "testuser",
    ) -> None:
        self.items = items or {}
        self.comments = comments or {}
        self.user = user
        self.fetch_calls: list[tuple[str, ItemKind]] = []
        self.comment_calls: list[int] = []
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def check_connection(self) -> bool:
        return True

    async def fetch_authenticated_user(self) -> str | None:
        return self.user

    async def fetch_items(self, repo, kind, closed_since=None):
        self.fetch_calls.append((repo, kind))
        items = self.items.get((repo, kind), [])
        if closed_since is None:
            return list(items)
        return [
            item
            for item in items
            if item.is_open or item.closed_at is None or item.closed_at >= closed_since
        ]

    async def fetch_comments(self, repo, item):
        self.comment_calls.append(item.number)
        return self.comments.get(item.number, [])

    async def fetch_labels(self, repo):
        return []

    async def fetch_collaborators(self, repo):
        return []


def make_issue(
    number: int,
    title: str = "Test Issue",
    state: IssueState = IssueState.OPEN,
    labels: list[str] | None = None,
    assignees: list[str] | None = None,
    updated_at: datetime = datetime(2024, 2, 15, 14, 30, tzinfo=UTC),
    closed_at: datetime | None = None,
    body: str = "Issue body.",
) -> Issue:
    return Issue(
        number=number,
        title=title,
        body=body,
        state=state,
        created_at=datetime(2024, 2, 10, 9, 0, tzinfo=UTC),
        updated_at=updated_at,
        closed_at=closed_at,
        author=User(login="reporter"),
        assignees=[User(login=a) for a in assignees or []],
        labels=[Label(name=n) for n in labels or []],
        url=f"https://github.com/acme/widgets/issues/{number}",
    )


@pytest.fixture
def sample_user() -> User:
    """Create a sample GitHub user."""
    return User(login="testuser", url="https://github.com/testuser")


@pytest.fixture
def sample_labels() -> list[Label]:
    """Create sample labels."""
    return [
        Label(name="bug", color="d73a4a"),
        Label(name="help wanted", color="008672"),
    ]


@pytest.fixture
def sample_comment(sample_user: User) -> Comment:
    """Create a sample comment."""
    return Comment(
        id=1,
        author=sample_user,
        body="This is a test comment.",
        created_at=datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
    )


@pytest.fixture
def sample_issue(sample_user: User, sample_labels: list[Label]) -> Issue:
    """Create a sample open issue."""
    return Issue(
        number=123,
        title="Test Issue Title",
        body="This is the issue body.\n\nWith multiple paragraphs.",
        state=IssueState.OPEN,
        created_at=datetime(2024, 1, 10, 9, 0, tzinfo=UTC),
        updated_at=datetime(2024, 1, 15, 14, 30, tzinfo=UTC),
        author=sample_user,
        assignees=[sample_user],
        labels=sample_labels,
        milestone=Milestone(title="v1.0.0", number=1),
        url="https://github.com/acme/widgets/issues/123",
        comments_count=1,
    )


@pytest.fixture
def sample_closed_issue(sample_user: User) -> Issue:
    """Create a sample closed issue."""
    return Issue(
        number=124,
        title="Closed Issue",
        body="This issue is closed.",
        state=IssueState.CLOSED,
        created_at=datetime(2024, 1, 5, 9, 0, tzinfo=UTC),
        updated_at=datetime(2024, 1, 12, 16, 0, tzinfo=UTC),
        closed_at=datetime(2024, 1, 12, 16, 0, tzinfo=UTC),
        author=sample_user,
        url="https://github.com/acme/widgets/issues/124",
    )


@pytest.fixture
def sample_pull_request(sample_user: User) -> PullRequest:
    """Create a sample open pull request."""
    return PullRequest(
        number=45,
        title="Add feature",
        body="Implements the feature.",
        state=IssueState.OPEN,
        created_at=datetime(2024, 1, 20, 9, 0, tzinfo=UTC),
        updated_at=datetime(2024, 1, 21, 9, 0, tzinfo=UTC),
        author=sample_user,
        url="https://github.com/acme/widgets/pull/45",
        base_branch="main",
        head_branch="feature/x",
        requested_reviewers=[User(login="reviewer")],
    )


@pytest.fixture
def repo_tracking() -> RepositoryTracking:
    return RepositoryTracking(repository="acme/widgets")


@pytest.fixture
def settings(repo_tracking: RepositoryTracking) -> Settings:
    return Settings(repositories=[repo_tracking], date_format="%Y-%m-%d")


@pytest.fixture
def issue_policy(repo_tracking: RepositoryTracking):
    return effective_policy(repo_tracking, ItemKind.ISSUE, GlobalDefaults())


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def store(vault: Path) -> DocumentStore:
    return DocumentStore(vault)
