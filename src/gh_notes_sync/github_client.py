"""
GitHub REST API client for fetching issues and pull requests.

This module handles all interactions with the GitHub REST API,
including pagination, comments, review comments and error mapping.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from .exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubClientError,
    GitHubNetworkError,
    GitHubRateLimitError,
    GitHubTimeoutError,
)
from .models import (
    Comment,
    Issue,
    IssueState,
    ItemKind,
    Label,
    Milestone,
    PullRequest,
    RateLimit,
    User,
)
from .provider import IssueProvider

logger = logging.getLogger(__name__)


class GitHubClient(IssueProvider):
    """
    Client for interacting with GitHub via its REST API.

    This client provides async methods for fetching issues, pull requests
    and their comment threads, with error mapping and timeout management.
    """

    DEFAULT_BASE_URL = "https://api.github.com"
    DEFAULT_TIMEOUT = 60  # seconds
    PAGE_SIZE = 100
    MAX_RETRIES = 3  # connection retries done by the transport
    API_VERSION = "2022-11-28"

    def __init__(
        self,
        token: str = "",
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the GitHub client.

        Args:
            token: Personal access token (empty for anonymous access)
            base_url: API base URL (GitHub Enterprise uses its own)
            timeout: Request timeout in seconds
            transport: Custom transport, mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": self.API_VERSION,
                "User-Agent": "gh-notes-sync",
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport or httpx.AsyncHTTPTransport(retries=self.MAX_RETRIES),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make an API request with error handling.

        Args:
            method: HTTP method
            path: API path (without base URL)
            params: Query parameters

        Returns:
            JSON response data

        Raises:
            Various GitHubClientError subclasses based on failure type
        """
        client = await self._get_client()

        try:
            response = await client.request(method, path, params=params)
        except httpx.TimeoutException as e:
            raise GitHubTimeoutError(self.timeout) from e
        except httpx.TransportError as e:
            raise GitHubNetworkError(str(e)) from e

        if response.status_code == 401:
            raise GitHubAuthError("Invalid or expired token")

        if response.status_code in (403, 429):
            if self._is_rate_limited(response):
                raise GitHubRateLimitError(self._rate_limit_reset(response))
            raise GitHubAuthError(f"Access forbidden: {response.text}")

        if response.status_code == 404:
            raise GitHubAPIError(f"Not found: {path}", 404)

        if response.status_code >= 400:
            raise GitHubAPIError(response.text, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise GitHubAPIError(f"Invalid JSON response: {e}", response.status_code) from e

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.headers.get("x-ratelimit-remaining") == "0":
            return True
        return "rate limit" in response.text.lower()

    @staticmethod
    def _rate_limit_reset(response: httpx.Response) -> str | None:
        reset = response.headers.get("x-ratelimit-reset")
        if not reset or not reset.isdigit():
            return None
        return datetime.fromtimestamp(int(reset), UTC).isoformat()

    async def _paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch every page of a list endpoint."""
        results: list[dict[str, Any]] = []
        page = 1

        while True:
            page_params = {**(params or {}), "per_page": self.PAGE_SIZE, "page": page}
            data = await self._request("GET", path, params=page_params)

            if not isinstance(data, list) or not data:
                break

            results.extend(data)

            if len(data) < self.PAGE_SIZE:
                break  # Last page

            page += 1

        return results

    async def check_connection(self) -> bool:
        """
        Check that the API is reachable and the token is accepted.

        Raises:
            GitHubAuthError: If authentication fails
            GitHubNetworkError: If connection fails
        """
        await self._request("GET", "/user")
        return True

    async def validate_token(self) -> bool:
        """Check whether the configured token authenticates."""
        try:
            return await self.check_connection()
        except GitHubAuthError as e:
            logger.debug(f"Token validation failed: {e.message}")
            return False

    async def get_rate_limit(self) -> RateLimit:
        """Fetch the core API rate limit status."""
        data = await self._request("GET", "/rate_limit")
        core = (data.get("resources") or {}).get("core") or data.get("rate") or {}
        return RateLimit(
            limit=core.get("limit", 0),
            remaining=core.get("remaining", 0),
            reset_at=datetime.fromtimestamp(core.get("reset", 0), UTC),
        )

    async def fetch_authenticated_user(self) -> str | None:
        """Login of the token's owner, or None when it cannot be determined."""
        try:
            data = await self._request("GET", "/user")
        except GitHubClientError as e:
            logger.warning(f"Could not determine the authenticated user: {e.message}")
            return None
        return data.get("login")

    def _parse_user(self, data: dict[str, Any] | None) -> User:
        """Parse user data from an API response."""
        if data is None:
            return User(login="unknown")
        return User(
            login=data.get("login", "unknown"),
            url=data.get("html_url"),
        )

    def _parse_label(self, data: dict[str, Any]) -> Label:
        """Parse label data from an API response."""
        return Label(
            name=data.get("name", ""),
            color=data.get("color"),
            description=data.get("description"),
        )

    def _parse_milestone(self, data: dict[str, Any] | None) -> Milestone | None:
        """Parse milestone data from an API response."""
        if not data:
            return None
        return Milestone(
            title=data.get("title", ""),
            number=data.get("number", 0),
            state=data.get("state", "open"),
            due_on=self._parse_datetime(data.get("due_on")),
        )

    def _parse_datetime(self, value: str | None) -> datetime | None:
        """Parse ISO datetime string."""
        if not value:
            return None
        try:
            if value.endswith("Z"):
                value = value[:-1] + "+00:00"
            return datetime.fromisoformat(value)
        except (ValueError, TypeError):
            logger.warning(f"Failed to parse datetime: {value}")
            return None

    def _parse_comment(self, data: dict[str, Any], review: bool = False) -> Comment:
        """Parse an issue comment or a review comment."""
        line = (data.get("line") or data.get("original_line")) if review else None
        return Comment(
            id=data.get("id", 0),
            author=self._parse_user(data.get("user")),
            body=data.get("body") or "",
            created_at=self._parse_datetime(data.get("created_at")) or datetime.now(UTC),
            updated_at=self._parse_datetime(data.get("updated_at")),
            url=data.get("html_url"),
            is_review_comment=review,
            path=data.get("path") if review else None,
            line=line,
        )

    def _common_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        """Fields shared by issue and pull request payloads."""
        state_str = (data.get("state") or "open").lower()
        return {
            "number": data.get("number", 0),
            "title": data.get("title") or "Untitled",
            "body": data.get("body"),
            "state": IssueState.CLOSED if state_str == "closed" else IssueState.OPEN,
            "created_at": self._parse_datetime(data.get("created_at")) or datetime.now(UTC),
            "updated_at": self._parse_datetime(data.get("updated_at")) or datetime.now(UTC),
            "closed_at": self._parse_datetime(data.get("closed_at")),
            "author": self._parse_user(data.get("user")),
            "assignees": [self._parse_user(a) for a in data.get("assignees") or []],
            "labels": [self._parse_label(lbl) for lbl in data.get("labels") or []],
            "milestone": self._parse_milestone(data.get("milestone")),
            "url": data.get("html_url", ""),
            "comments_count": data.get("comments") or 0,
            "locked": bool(data.get("locked")),
            "lock_reason": data.get("active_lock_reason"),
        }

    def _parse_issue(self, data: dict[str, Any]) -> Issue:
        """Parse issue JSON into an Issue model."""
        return Issue(**self._common_fields(data))

    def _parse_pull_request(self, data: dict[str, Any]) -> PullRequest:
        """Parse pull request JSON into a PullRequest model."""
        merged_at = self._parse_datetime(data.get("merged_at"))
        return PullRequest(
            **self._common_fields(data),
            merged=bool(data.get("merged")) or merged_at is not None,
            merged_at=merged_at,
            mergeable=data.get("mergeable"),
            base_branch=(data.get("base") or {}).get("ref"),
            head_branch=(data.get("head") or {}).get("ref"),
            requested_reviewers=[
                self._parse_user(r) for r in data.get("requested_reviewers") or []
            ],
        )

    async def fetch_items(
        self,
        repo: str,
        kind: ItemKind,
        closed_since: datetime | None = None,
    ) -> list[Issue | PullRequest]:
        """
        Fetch issues or pull requests from a repository.

        The issues endpoint also lists pull requests; those are dropped.
        Closed items closed before ``closed_since`` are dropped as well.

        Args:
            repo: Repository in owner/repo format
            kind: Issues or pull requests
            closed_since: Retention cutoff for closed items

        Returns:
            Items sorted by number
        """
        logger.info(f"Fetching {kind.label}s from {repo}")

        items: list[Issue | PullRequest]
        if kind == ItemKind.ISSUE:
            raw = await self._paginate(f"/repos/{repo}/issues", {"state": "all"})
            items = [self._parse_issue(d) for d in raw if "pull_request" not in d]
        else:
            raw = await self._paginate(f"/repos/{repo}/pulls", {"state": "all"})
            items = [self._parse_pull_request(d) for d in raw]

        if closed_since is not None:
            items = [
                item
                for item in items
                if item.is_open or item.closed_at is None or item.closed_at >= closed_since
            ]

        items.sort(key=lambda i: i.number)

        logger.info(f"Fetched {len(items)} {kind.label}s from {repo}")
        return items

    async def fetch_comments(self, repo: str, item: Issue | PullRequest) -> list[Comment]:
        """
        Fetch the comment thread of an issue or pull request.

        Pull requests get their review comments merged into the thread.
        Failures are logged and yield the comments fetched so far.
        """
        comments: list[Comment] = []

        try:
            data = await self._paginate(f"/repos/{repo}/issues/{item.number}/comments")
            comments.extend(self._parse_comment(c) for c in data)

            if isinstance(item, PullRequest):
                data = await self._paginate(f"/repos/{repo}/pulls/{item.number}/comments")
                comments.extend(self._parse_comment(c, review=True) for c in data)

        except GitHubAPIError as e:
            logger.warning(f"Failed to fetch comments for {item.item_kind.label} #{item.number}: {e}")

        return sorted(comments, key=lambda c: c.created_at)

    async def fetch_labels(self, repo: str) -> list[Label]:
        """Fetch all labels of a repository."""
        data = await self._paginate(f"/repos/{repo}/labels")
        return [self._parse_label(d) for d in data]

    async def fetch_collaborators(self, repo: str) -> list[User]:
        """
        Fetch the collaborators of a repository.

        Listing collaborators needs push access; without it the
        contributors list is used instead.
        """
        try:
            data = await self._paginate(f"/repos/{repo}/collaborators")
        except (GitHubAuthError, GitHubAPIError) as e:
            logger.debug(f"Collaborators unavailable for {repo} ({e.message}), using contributors")
            data = await self._paginate(f"/repos/{repo}/contributors")
        return [self._parse_user(d) for d in data]
