"""Tests for the GitHub REST client."""

import asyncio
from datetime import UTC, datetime

import httpx
import pytest

from gh_notes_sync.exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubNetworkError,
    GitHubRateLimitError,
    GitHubTimeoutError,
)
from gh_notes_sync.github_client import GitHubClient
from gh_notes_sync.models import IssueState, ItemKind, PullRequest


def _issue(number: int, state: str = "open", closed_at: str | None = None, **extra) -> dict:
    return {
        "number": number,
        "title": f"Issue {number}",
        "body": "Body",
        "state": state,
        "created_at": "2024-01-10T09:00:00Z",
        "updated_at": "2024-01-15T14:30:00Z",
        "closed_at": closed_at,
        "user": {"login": "reporter", "html_url": "https://github.com/reporter"},
        "assignees": [{"login": "testuser"}],
        "labels": [{"name": "bug", "color": "d73a4a"}],
        "milestone": {"title": "v1.0.0", "number": 1, "state": "open"},
        "html_url": f"https://github.com/acme/widgets/issues/{number}",
        "comments": 2,
        **extra,
    }


def _comment(comment_id: int, created_at: str, **extra) -> dict:
    return {
        "id": comment_id,
        "user": {"login": "commenter"},
        "body": f"Comment {comment_id}",
        "created_at": created_at,
        **extra,
    }


def _client(handler) -> GitHubClient:
    return GitHubClient(token="secret", transport=httpx.MockTransport(handler))


async def _call(client: GitHubClient, method: str, *args):
    try:
        return await getattr(client, method)(*args)
    finally:
        await client.close()


def run(client: GitHubClient, method: str, *args):
    return asyncio.run(_call(client, method, *args))


class TestRequests:
    def test_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"login": "testuser"})

        assert run(_client(handler), "fetch_authenticated_user") == "testuser"
        assert seen[0].headers["Authorization"] == "Bearer secret"
        assert seen[0].headers["Accept"] == "application/vnd.github+json"
        assert seen[0].url.path == "/user"

    def test_pagination(self) -> None:
        pages: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            pages.append(request.url.params["page"])
            if page == 1:
                return httpx.Response(200, json=[_issue(n) for n in range(1, 101)])
            return httpx.Response(200, json=[_issue(101)])

        items = run(_client(handler), "fetch_items", "acme/widgets", ItemKind.ISSUE)

        assert pages == ["1", "2"]
        assert len(items) == 101


class TestFetchItems:
    def test_issues_drop_pull_requests(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/repos/acme/widgets/issues"
            assert request.url.params["state"] == "all"
            return httpx.Response(
                200,
                json=[_issue(2), _issue(1), _issue(3, pull_request={"url": "..."})],
            )

        items = run(_client(handler), "fetch_items", "acme/widgets", ItemKind.ISSUE)

        assert [i.number for i in items] == [1, 2]
        issue = items[0]
        assert issue.author.login == "reporter"
        assert issue.assignee_logins == ["testuser"]
        assert issue.label_names == ["bug"]
        assert issue.milestone is not None and issue.milestone.title == "v1.0.0"
        assert issue.updated_at == datetime(2024, 1, 15, 14, 30, tzinfo=UTC)
        assert issue.comments_count == 2

    def test_closed_items_outside_retention_dropped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[
                    _issue(1),
                    _issue(2, state="closed", closed_at="2024-02-20T00:00:00Z"),
                    _issue(3, state="closed", closed_at="2023-12-01T00:00:00Z"),
                ],
            )

        since = datetime(2024, 2, 1, tzinfo=UTC)
        items = run(_client(handler), "fetch_items", "acme/widgets", ItemKind.ISSUE, since)

        assert [(i.number, i.state) for i in items] == [
            (1, IssueState.OPEN),
            (2, IssueState.CLOSED),
        ]

    def test_pull_requests(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/repos/acme/widgets/pulls"
            return httpx.Response(
                200,
                json=[
                    _issue(
                        45,
                        base={"ref": "main"},
                        head={"ref": "feature/x"},
                        merged_at=None,
                        requested_reviewers=[{"login": "reviewer"}],
                    )
                ],
            )

        items = run(_client(handler), "fetch_items", "acme/widgets", ItemKind.PULL_REQUEST)

        assert len(items) == 1
        pr = items[0]
        assert isinstance(pr, PullRequest)
        assert (pr.base_branch, pr.head_branch) == ("main", "feature/x")
        assert pr.reviewer_logins == ["reviewer"]
        assert not pr.merged


class TestFetchComments:
    def test_pull_request_review_comments_merged(self, sample_pull_request) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/widgets/issues/45/comments":
                return httpx.Response(200, json=[_comment(1, "2024-01-21T12:00:00Z")])
            assert request.url.path == "/repos/acme/widgets/pulls/45/comments"
            return httpx.Response(
                200,
                json=[
                    _comment(
                        2,
                        "2024-01-21T10:00:00Z",
                        path="src/app.py",
                        line=None,
                        original_line=12,
                    )
                ],
            )

        comments = run(_client(handler), "fetch_comments", "acme/widgets", sample_pull_request)

        assert [c.id for c in comments] == [2, 1]
        review = comments[0]
        assert review.is_review_comment
        assert (review.path, review.line) == ("src/app.py", 12)
        assert not comments[1].is_review_comment

    def test_issue_gets_no_review_comments(self, sample_issue) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=[])

        assert run(_client(handler), "fetch_comments", "acme/widgets", sample_issue) == []
        assert paths == ["/repos/acme/widgets/issues/123/comments"]

    def test_failure_is_not_fatal(self, sample_issue) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="Server error")

        assert run(_client(handler), "fetch_comments", "acme/widgets", sample_issue) == []


class TestErrors:
    @staticmethod
    def _fetch(handler):
        return run(_client(handler), "fetch_items", "acme/widgets", ItemKind.ISSUE)

    def test_unauthorized(self) -> None:
        with pytest.raises(GitHubAuthError):
            self._fetch(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))

    def test_forbidden(self) -> None:
        with pytest.raises(GitHubAuthError):
            self._fetch(lambda request: httpx.Response(403, json={"message": "Forbidden"}))

    def test_rate_limited(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1709294400"},
                json={"message": "API rate limit exceeded"},
            )

        with pytest.raises(GitHubRateLimitError):
            self._fetch(handler)

    def test_not_found(self) -> None:
        with pytest.raises(GitHubAPIError) as exc_info:
            self._fetch(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        assert exc_info.value.status_code == 404

    def test_server_error(self) -> None:
        with pytest.raises(GitHubAPIError):
            self._fetch(lambda request: httpx.Response(502, text="Bad gateway"))

    def test_invalid_json(self) -> None:
        with pytest.raises(GitHubAPIError):
            self._fetch(lambda request: httpx.Response(200, text="<html>"))

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GitHubTimeoutError):
            self._fetch(handler)

    def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GitHubNetworkError):
            self._fetch(handler)


class TestAccount:
    def test_validate_token(self) -> None:
        assert run(_client(lambda r: httpx.Response(200, json={"login": "x"})), "validate_token")
        assert not run(_client(lambda r: httpx.Response(401, json={})), "validate_token")

    def test_authenticated_user_unavailable(self) -> None:
        assert run(_client(lambda r: httpx.Response(401, json={})), "fetch_authenticated_user") is None

    def test_rate_limit(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"resources": {"core": {"limit": 5000, "remaining": 4990, "reset": 1709294400}}},
            )

        rate = run(_client(handler), "get_rate_limit")
        assert (rate.limit, rate.remaining) == (5000, 4990)
        assert rate.reset_at == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

    def test_collaborators_fall_back_to_contributors(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/collaborators"):
                return httpx.Response(403, json={"message": "Must have push access"})
            return httpx.Response(200, json=[{"login": "alice"}, {"login": "bob"}])

        users = run(_client(handler), "fetch_collaborators", "acme/widgets")
        assert [u.login for u in users] == ["alice", "bob"]

    def test_labels(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"name": "bug", "color": "d73a4a"}])

        labels = run(_client(handler), "fetch_labels", "acme/widgets")
        assert [label.name for label in labels] == ["bug"]
