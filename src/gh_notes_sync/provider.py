"""
Abstract provider protocol for remote issue sources.

The sync orchestrator only talks to this interface, so tests can swap in an
in-memory provider and the GitHub client stays an implementation detail.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import Comment, Issue, ItemKind, Label, PullRequest, User


class IssueProvider(ABC):
    """
    Abstract base class for issue providers.

    All methods are coroutines; the orchestrator awaits them one at a time.
    """

    @abstractmethod
    async def close(self) -> None:
        """Close any resources held by the provider."""
        ...

    @abstractmethod
    async def check_connection(self) -> bool:
        """
        Check if the provider is accessible and authenticated.

        Returns:
            True if connection is successful

        Raises:
            GitHubClientError subclasses on failure
        """
        ...

    @abstractmethod
    async def fetch_authenticated_user(self) -> str | None:
        """Login of the authenticated user, or None when unknown."""
        ...

    @abstractmethod
    async def fetch_items(
        self,
        repo: str,
        kind: ItemKind,
        closed_since: datetime | None = None,
    ) -> list[Issue | PullRequest]:
        """
        Fetch the history of one item kind.

        Args:
            repo: Repository in owner/repo format
            kind: Issues or pull requests
            closed_since: Drop closed items closed before this instant
                (None keeps every closed item)

        Returns:
            Open items plus closed items inside the retention window
        """
        ...

    @abstractmethod
    async def fetch_comments(self, repo: str, item: Issue | PullRequest) -> list[Comment]:
        """
        Fetch the comment thread of an item.

        Pull requests include their review comments.
        """
        ...

    @abstractmethod
    async def fetch_labels(self, repo: str) -> list[Label]:
        """Fetch the labels defined in a repository."""
        ...

    @abstractmethod
    async def fetch_collaborators(self, repo: str) -> list[User]:
        """Fetch the users that can be assigned in a repository."""
        ...
