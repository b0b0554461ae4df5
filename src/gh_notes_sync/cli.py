"""
Command-line interface for gh-notes-sync.

This module provides the Typer-based CLI for mirroring GitHub issues and
pull requests into a folder of Markdown notes.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import (
    DEFAULT_ISSUE_FILENAME_TEMPLATE,
    NoticeMode,
    Settings,
    load_settings,
)
from .exceptions import GitHubNotesSyncError
from .github_client import GitHubClient
from .models import LocalDocument, SyncAction, SyncReport
from .store import DocumentStore
from .sync import IssueSync, run_sync
from .templates import extract_number_from_filename

# Create Typer app
app = typer.Typer(
    name="gh-notes-sync",
    help="Sync GitHub issues and pull requests to Markdown notes",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()
error_console = Console(stderr=True)

DEFAULT_CONFIG = Path("gh-notes-sync.json")


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


ConfigOption = Annotated[
    Path,
    typer.Option("-c", "--config", help="Settings file (JSON)"),
]
VaultOption = Annotated[
    Path,
    typer.Option("--vault", help="Vault root folder"),
]
TokenOption = Annotated[
    str | None,
    typer.Option(
        "--token",
        help="GitHub token (or set GITHUB_TOKEN env var)",
        envvar="GITHUB_TOKEN",
        show_default=False,
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("-v", "--verbose", help="Enable verbose output"),
]
LogLevelOption = Annotated[
    LogLevel | None,
    typer.Option("--log-level", help="Set log level (default follows noticeMode)"),
]


def setup_logging(level: int, verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    if verbose:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_time=False, show_path=False)],
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"gh-notes-sync version {__version__}")
        raise typer.Exit


def _load(config: Path, log_level: LogLevel | None, verbose: bool) -> Settings:
    """Load settings and configure logging from them."""
    try:
        settings = load_settings(config)
    except GitHubNotesSyncError as e:
        setup_logging(logging.INFO, verbose)
        _print_error(e)
        raise typer.Exit(1) from None

    level = (
        getattr(logging, log_level.value.upper())
        if log_level is not None
        else settings.notice_mode.log_level
    )
    setup_logging(level, verbose)
    return settings


def _print_error(error: GitHubNotesSyncError) -> None:
    error_console.print(f"[red]Error:[/red] {error.message}")
    if error.hint:
        error_console.print(f"[dim]Hint: {error.hint}[/dim]")


@app.command()
def sync(
    config: ConfigOption = DEFAULT_CONFIG,
    vault: VaultOption = Path("."),
    token: TokenOption = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            "-n",
            help="Show what would happen without making changes",
        ),
    ] = False,
    verbose: VerboseOption = False,
    log_level: LogLevelOption = None,
    _version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = None,
) -> None:
    """
    Run one sync pass over every configured repository.

    Creates, updates, appends to and trashes notes in the vault according
    to each repository's tracking settings. Content inside persist blocks
    is preserved.

    Examples:

        gh-notes-sync sync --vault ~/Notes

        gh-notes-sync sync -c work.json --dry-run
    """
    settings = _load(config, log_level, verbose)

    if dry_run:
        console.print("[yellow]Dry run mode - no changes will be written[/yellow]")

    console.print(
        f"Syncing [bold]{len(settings.repositories)}[/bold] repositories -> [bold]{vault}[/bold]"
    )

    try:
        report = run_sync(settings, vault, token=token, dry_run=dry_run)
    except GitHubNotesSyncError as e:
        _print_error(e)
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        error_console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(130) from None

    _display_report(report, extensive=verbose or settings.notice_mode == NoticeMode.EXTENSIVE)

    if report.all_errors:
        raise typer.Exit(1)


@app.command()
def watch(
    config: ConfigOption = DEFAULT_CONFIG,
    vault: VaultOption = Path("."),
    token: TokenOption = None,
    interval: Annotated[
        int | None,
        typer.Option(
            "-i",
            "--interval",
            help="Minutes between passes (default: backgroundSyncInterval)",
            min=1,
        ),
    ] = None,
    verbose: VerboseOption = False,
    log_level: LogLevelOption = None,
) -> None:
    """
    Sync periodically until interrupted.
    """
    settings = _load(config, log_level, verbose)
    minutes = interval or settings.background_sync_interval

    if minutes <= 0:
        error_console.print("[red]Error:[/red] Background sync is disabled (interval is 0)")
        raise typer.Exit(1)

    extensive = verbose or settings.notice_mode == NoticeMode.EXTENSIVE
    console.print(f"Syncing every [bold]{minutes}[/bold] minutes, press Ctrl+C to stop")

    async def _watch() -> None:
        client = GitHubClient(token=token or settings.github_token)
        syncer = IssueSync(client, DocumentStore(vault), settings)
        try:
            await syncer.run_periodic(
                minutes,
                on_report=lambda report: _display_report(report, extensive),
            )
        finally:
            await client.close()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        error_console.print("\n[yellow]Stopped[/yellow]")
        raise typer.Exit(130) from None


@app.command()
def check(
    config: ConfigOption = DEFAULT_CONFIG,
    token: TokenOption = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Check the GitHub token and show the API rate limit.
    """
    settings = _load(config, LogLevel.INFO, verbose)
    effective_token = token or settings.github_token

    if not effective_token:
        console.print("[yellow]No token configured, using anonymous access[/yellow]")

    async def _check() -> None:
        client = GitHubClient(token=effective_token)
        try:
            if effective_token:
                if not await client.validate_token():
                    error_console.print("[red]✗[/red] Token was rejected by GitHub")
                    raise typer.Exit(1)
                login = await client.fetch_authenticated_user()
                console.print(f"[green]✓[/green] Authenticated as [bold]{login}[/bold]")

            rate = await client.get_rate_limit()
            reset = rate.reset_at.astimezone().strftime("%X")
            console.print(
                f"[green]✓[/green] Rate limit: {rate.remaining}/{rate.limit} "
                f"remaining (resets at {reset})"
            )
        finally:
            await client.close()

    with console.status("Checking GitHub connection..."):
        try:
            asyncio.run(_check())
        except GitHubNotesSyncError as e:
            _print_error(e)
            raise typer.Exit(1) from None

    console.print("\n[green]All checks passed![/green]")


@app.command()
def inspect(
    folder: Annotated[
        str,
        typer.Argument(help="Folder inside the vault"),
    ],
    vault: VaultOption = Path("."),
    template: Annotated[
        str,
        typer.Option(
            "-t",
            "--template",
            help="Filename template used to recover numbers",
        ),
    ] = DEFAULT_ISSUE_FILENAME_TEMPLATE,
    verbose: VerboseOption = False,
) -> None:
    """
    List the notes in a vault folder and the metadata recovered for each.

    Useful for debugging documents that a sync pass leaves untouched.
    """
    setup_logging(logging.INFO, verbose)

    store = DocumentStore(vault)
    try:
        paths = store.list_documents(folder)
    except GitHubNotesSyncError as e:
        _print_error(e)
        raise typer.Exit(1) from None

    if not paths:
        console.print(f"[yellow]No notes found in {folder}[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"Notes: {folder}")
    table.add_column("File")
    table.add_column("Number", justify="right")
    table.add_column("Source")
    table.add_column("Type", justify="center")
    table.add_column("Update mode", justify="center")
    table.add_column("Allow delete", justify="center")

    unresolved = 0
    for path in paths:
        try:
            document = LocalDocument(path=path, header=store.read_frontmatter(path))
        except GitHubNotesSyncError as e:
            error_console.print(f"[red]✗[/red] {path}: {e.message}")
            continue

        number: int | str | None = document.header_number
        source = "header"
        if number is None:
            number = extract_number_from_filename(document.filename, template)
            source = "filename"
        if number is None:
            source = "-"
            unresolved += 1

        mode = document.header_update_mode
        allow = document.header_allow_delete
        kind = document.header_kind
        table.add_row(
            document.filename,
            str(number) if number is not None else "[red]?[/red]",
            source,
            kind.value if kind else "-",
            mode.value if mode else "-",
            "-" if allow is None else str(allow).lower(),
        )

    console.print(table)
    console.print(f"\nTotal: {len(paths)} notes")
    if unresolved:
        console.print(f"  [yellow]Without a number: {unresolved}[/yellow]")


_ACTION_STYLES = {
    SyncAction.CREATE: "green",
    SyncAction.UPDATE: "yellow",
    SyncAction.APPEND: "yellow",
    SyncAction.DELETE: "red",
    SyncAction.KEEP: "blue",
    SyncAction.SKIP: "dim",
    SyncAction.UNRESOLVED: "magenta",
}


def _display_report(report: SyncReport, extensive: bool = False) -> None:
    """Display a sync report as a summary panel (and an entry table)."""
    action_word = "Would sync" if report.dry_run else "Synced"
    errors = report.all_errors

    if extensive and report.entries:
        table = Table(title="Documents")
        table.add_column("Repository")
        table.add_column("#", justify="right")
        table.add_column("Action", justify="center")
        table.add_column("Path")
        table.add_column("Details", style="dim")
        for entry in report.entries:
            style = _ACTION_STYLES.get(entry.action, "")
            table.add_row(
                entry.repository,
                str(entry.number) if entry.number is not None else "-",
                f"[{style}]{entry.action.value}[/{style}]",
                entry.path,
                entry.details or "",
            )
        console.print(table)

    # Summary panel
    summary = Table.grid(padding=(0, 2))
    summary.add_column(style="bold")
    summary.add_column()

    summary.add_row("Repositories:", str(len({r.repository for r in report.results})))
    summary.add_row("Created:", f"[green]{report.created}[/green]")
    summary.add_row("Updated:", f"[yellow]{report.updated}[/yellow]")
    summary.add_row("Appended:", f"[yellow]{report.appended}[/yellow]")
    summary.add_row("Skipped:", str(report.skipped))
    summary.add_row("Deleted:", f"[red]{report.deleted}[/red]")
    summary.add_row("Kept:", f"[blue]{report.kept}[/blue]")

    if report.unresolved:
        summary.add_row("Unresolved:", f"[magenta]{report.unresolved}[/magenta]")
    if report.removed_folders:
        summary.add_row("Folders removed:", str(len(report.removed_folders)))
    if errors:
        summary.add_row("Errors:", f"[red]{len(errors)}[/red]")

    panel = Panel(
        summary,
        title=f"{action_word} Results",
        border_style="green" if not errors else "yellow",
    )
    console.print(panel)

    # Show errors if any
    if errors:
        error_console.print("\n[red]Errors:[/red]")
        for error in errors[:10]:
            error_console.print(f"  - {error}")
        if len(errors) > 10:
            error_console.print(f"  ... and {len(errors) - 10} more")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
