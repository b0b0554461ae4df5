"""
Exception hierarchy for gh-notes-sync.

This module defines custom exceptions with clear messages and
actionable guidance for users.
"""


class GitHubNotesSyncError(Exception):
    """Base exception for all gh-notes-sync errors."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n\nHint: {self.hint}"
        return self.message


# GitHub API Errors


class GitHubClientError(GitHubNotesSyncError):
    """Base class for GitHub API related errors."""


class GitHubAuthError(GitHubClientError):
    """GitHub authentication failed or not configured."""

    def __init__(self, details: str = "") -> None:
        message = "GitHub authentication failed"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Set a valid personal access token with --token, GITHUB_TOKEN or the settings file",
        )


class GitHubAPIError(GitHubClientError):
    """GitHub API returned an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        status_info = f" (HTTP {status_code})" if status_code else ""
        super().__init__(
            f"GitHub API error{status_info}: {message}",
            "Check that the repository exists and your token has access to it",
        )


class GitHubNetworkError(GitHubClientError):
    """Network error communicating with GitHub."""

    def __init__(self, details: str = "") -> None:
        message = "Network error connecting to GitHub"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check your internet connection; the next sync pass will retry",
        )


class GitHubRateLimitError(GitHubClientError):
    """GitHub API rate limit exceeded."""

    def __init__(self, reset_time: str | None = None) -> None:
        message = "GitHub API rate limit exceeded"
        hint = "Wait a few minutes and try again"
        if reset_time:
            hint = f"Rate limit resets at {reset_time}. Wait and try again."
        super().__init__(message, hint)


class GitHubTimeoutError(GitHubClientError):
    """GitHub API request timed out."""

    def __init__(self, timeout_seconds: int) -> None:
        super().__init__(
            f"GitHub API request timed out after {timeout_seconds} seconds",
            "Increase --timeout or check your network",
        )


# Document Store Errors


class DocumentError(GitHubNotesSyncError):
    """Base class for local document related errors."""


class DocumentReadError(DocumentError):
    """Failed to read a document from the vault."""

    def __init__(self, file_path: str, details: str = "") -> None:
        message = f"Failed to read document '{file_path}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check that the file exists and is readable UTF-8 text",
        )


class DocumentWriteError(DocumentError):
    """Failed to write a document to the vault."""

    def __init__(self, file_path: str, details: str = "") -> None:
        message = f"Failed to write document '{file_path}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check that you have write permissions in the vault",
        )


class DocumentTrashError(DocumentError):
    """Failed to move a document to the vault trash."""

    def __init__(self, file_path: str, details: str = "") -> None:
        message = f"Failed to move '{file_path}' to the trash"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check disk space and permissions of the .trash folder",
        )


class InvalidPathError(DocumentError):
    """A path points outside the vault."""

    def __init__(self, path: str) -> None:
        super().__init__(
            f"Path escapes the vault: '{path}'",
            "Use folders and template paths relative to the vault root",
        )


# Template Errors


class TemplateError(GitHubNotesSyncError):
    """A content template could not be loaded."""

    def __init__(self, template_path: str, details: str = "") -> None:
        message = f"Failed to load template '{template_path}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "The built-in template is used instead; fix the path in the settings",
        )


# Configuration Errors


class ConfigError(GitHubNotesSyncError):
    """Configuration error."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message, hint)


class InvalidRepositoryError(ConfigError):
    """Invalid repository format."""

    def __init__(self, repo: str) -> None:
        super().__init__(
            f"Invalid repository format: '{repo}'",
            "Use format 'owner/repo', e.g., 'octocat/Hello-World'",
        )


class SettingsFileError(ConfigError):
    """Settings file is missing or invalid."""

    def __init__(self, file_path: str, details: str = "") -> None:
        message = f"Invalid settings file '{file_path}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check the JSON syntax and field names of the settings file",
        )


# Sync Errors


class SyncInProgressError(GitHubNotesSyncError):
    """A sync pass was requested while another one is running."""

    def __init__(self) -> None:
        super().__init__(
            "A sync is already in progress",
            "Wait for the running sync to finish before starting another",
        )
