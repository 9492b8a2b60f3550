"""CLI interface for relboard."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from relboard.config import Config
from relboard.core.aggregate import RepositoryState
from relboard.core.models import LoadStatus
from relboard.core.session import Session
from relboard.core.settings import Settings, SettingsError
from relboard.core.store import LocalStore
from relboard.github.models import ApiResult, IssueType, ReleasePhase, ReviewStatus, WorkflowRun
from relboard.github.service import WORKFLOW_RUNS_TTL_MS
from relboard.utils.repo_ref import RepoReferenceError, parse_repo_reference

__version__ = "0.1.0"

T = TypeVar("T")

app = typer.Typer(
    name="relboard",
    help="Track releases, pull requests, issues and CI runs of a GitHub repository.",
    no_args_is_help=True,
)
console = Console()

PHASE_COLORS = {
    ReleasePhase.DEVELOPMENT: "yellow",
    ReleasePhase.STAGING: "blue",
    ReleasePhase.PRODUCTION: "green",
}

REVIEW_COLORS = {
    ReviewStatus.APPROVED: "green",
    ReviewStatus.CHANGES_REQUESTED: "red",
    ReviewStatus.REVIEW_REQUIRED: "yellow",
    ReviewStatus.COMMENTED: "cyan",
    ReviewStatus.NO_REVIEW: "dim",
    ReviewStatus.DRAFT: "dim",
}

ISSUE_TYPE_COLORS = {
    IssueType.BUG: "red",
    IssueType.ENHANCEMENT: "cyan",
    IssueType.DOCUMENTATION: "blue",
    IssueType.QUESTION: "magenta",
    IssueType.OTHER: "dim",
}

LOG_COLORS = {"info": "dim", "success": "green", "warning": "yellow", "error": "red"}


class _Context:
    config: Config = Config()


_context = _Context()


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file (default: ~/.relboard/config.yaml)"),
    ] = None,
) -> None:
    """Track releases, pull requests, issues and CI runs of a GitHub repository."""
    config = Config.load(config_path)
    _context.config = config
    level = logging.DEBUG if verbose else getattr(logging, config.log_level)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _store() -> LocalStore:
    return LocalStore(_context.config.db_path)


def _run(fn: Callable[[Session], Awaitable[T]]) -> T:
    """Run a coroutine against a fresh session and close it afterwards."""

    async def runner() -> T:
        async with Session(_context.config, _store()) as session:
            return await fn(session)

    return asyncio.run(runner())


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _check(result: ApiResult[Any]) -> None:
    """Exit with the envelope's message if it reports a failure."""
    if result.success:
        return
    console.print(f"[red]{result.error}[/red]")
    if result.rate_limit is not None:
        console.print(f"[yellow]Rate limit resets at {result.rate_limit.reset_at}[/yellow]")
    raise typer.Exit(1)


def _data(result: ApiResult[T]) -> T:
    """Exit unless the envelope succeeded and carries data."""
    _check(result)
    if result.data is None:
        _fail("GitHub returned an empty response")
    return result.data


def _state(session: Session) -> RepositoryState:
    if session.state is None:
        _fail("Not logged in. Run 'relboard login TOKEN' first.")
    return session.state


def _selection(session: Session) -> tuple[str, str]:
    selection = session.store.get_selected_repo()
    if selection is None:
        _fail("No repository selected. Run 'relboard select OWNER/REPO' first.")
    return selection


async def _authenticated(session: Session) -> None:
    _check(await session.resume())


async def _loaded(session: Session) -> tuple[str, str]:
    """Resume the session and bring the selected repository into memory.

    A fresh stored snapshot is used when available; otherwise the
    repository is fetched again.
    """
    await _authenticated(session)
    selection = _selection(session)
    state = _state(session)

    if state.restore_snapshot(*selection):
        stored_at = session.store.snapshot_time(*selection, "repository")
        if stored_at is not None:
            console.print(f"[dim]Using data stored at {stored_at:%Y-%m-%d %H:%M:%S} (run 'relboard clear-cache' to refetch)[/dim]")
    else:
        await state.select_repository(*selection)
        if state.status is LoadStatus.FAILED:
            _fail(state.error or "Failed to load repository")
    return selection


def _print_fetch_logs(session: Session) -> None:
    for entry in _state(session).fetch_logs:
        color = LOG_COLORS.get(entry.level, "white")
        console.print(f"  [{color}]{entry.timestamp.strftime('%H:%M:%S')} {entry.message}[/{color}]")


# =============================================================================
# Session
# =============================================================================


@app.command()
def login(
    token: Annotated[str, typer.Argument(help="GitHub personal access token")],
) -> None:
    """Validate a GitHub token and remember it."""

    async def do(session: Session) -> None:
        user = _data(await session.login(token))
        console.print(f"[green]Logged in as {user.login}[/green]")

    _run(do)


@app.command()
def logout() -> None:
    """Forget the token, the selected repository and all cached data."""

    async def do(session: Session) -> None:
        await session.logout()
        session.store.clear_snapshots()

    _run(do)
    console.print("[green]Logged out[/green]")


# =============================================================================
# Repository
# =============================================================================


@app.command()
def select(
    reference: Annotated[str, typer.Argument(help="owner/repo or https://github.com/owner/repo")],
    wait_reviews: Annotated[
        bool,
        typer.Option("--wait-reviews", "-w", help="Wait for review data before exiting"),
    ] = False,
) -> None:
    """Select a repository and load its data."""
    try:
        ref = parse_repo_reference(reference)
    except RepoReferenceError as e:
        _fail(str(e))

    async def do(session: Session) -> None:
        await _authenticated(session)
        state = _state(session)
        with console.status(f"Loading {ref}..."):
            await state.select_repository(ref.owner, ref.repo)
            if wait_reviews and state.is_ready:
                await state.wait_for_background()
        _print_fetch_logs(session)
        if state.status is LoadStatus.FAILED:
            _fail(state.error or "Failed to load repository")

        snapshot = state.snapshot
        console.print(f"\n[bold]{ref}[/bold]")
        if snapshot.repository is not None and snapshot.repository.description:
            console.print(f"  {snapshot.repository.description}")
        console.print(f"  Releases: {len(snapshot.releases)}")
        console.print(f"  Pull requests: {len(snapshot.pull_requests)}")
        console.print(f"  Issues: {len(snapshot.issues)}")
        console.print(f"  Labels: {len(snapshot.labels)}")
        if snapshot.review_statuses:
            console.print(f"  Review statuses: {', '.join(snapshot.review_statuses)}")

    _run(do)


@app.command()
def releases() -> None:
    """List releases of the selected repository."""

    async def do(session: Session) -> None:
        owner, repo = await _loaded(session)
        state = _state(session)

        table = Table(title=f"Releases of {owner}/{repo}")
        table.add_column("ID")
        table.add_column("Tag")
        table.add_column("Name")
        table.add_column("Phase")
        table.add_column("Issues")
        table.add_column("Created")

        for release in state.snapshot.releases:
            color = PHASE_COLORS.get(release.phase, "white")
            table.add_row(
                str(release.id),
                release.tag_name,
                release.name or "",
                f"[{color}]{release.phase.value}[/{color}]",
                str(release.issue_count),
                release.created_at.strftime("%Y-%m-%d") if release.created_at else "",
            )

        console.print(table)

    _run(do)


@app.command()
def prs(
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Only show PRs with this review status"),
    ] = None,
) -> None:
    """List pull requests with their review status."""

    async def do(session: Session) -> None:
        owner, repo = await _loaded(session)
        state = _state(session)

        table = Table(title=f"Pull requests of {owner}/{repo}")
        table.add_column("#")
        table.add_column("Title")
        table.add_column("Author")
        table.add_column("Review")
        table.add_column("Labels")

        for pr in state.snapshot.pull_requests:
            if status and pr.review_status.value != status:
                continue
            color = REVIEW_COLORS.get(pr.review_status, "white")
            table.add_row(
                str(pr.number),
                pr.title[:60] + "..." if len(pr.title) > 60 else pr.title,
                pr.user.login if pr.user else "",
                f"[{color}]{pr.review_status.value}[/{color}]",
                ", ".join(pr.label_names),
            )

        console.print(table)

    _run(do)


@app.command()
def issues(
    issue_type: Annotated[
        str | None,
        typer.Option("--type", "-t", help="Only show issues of this type"),
    ] = None,
) -> None:
    """List issues with their inferred type."""

    async def do(session: Session) -> None:
        owner, repo = await _loaded(session)
        state = _state(session)

        table = Table(title=f"Issues of {owner}/{repo}")
        table.add_column("#")
        table.add_column("Title")
        table.add_column("State")
        table.add_column("Type")
        table.add_column("Milestone")

        for issue in state.snapshot.issues:
            if issue_type and issue.issue_type.value != issue_type:
                continue
            color = ISSUE_TYPE_COLORS.get(issue.issue_type, "white")
            table.add_row(
                str(issue.number),
                issue.title[:60] + "..." if len(issue.title) > 60 else issue.title,
                issue.state,
                f"[{color}]{issue.issue_type.value}[/{color}]",
                issue.milestone.title if issue.milestone else "",
            )

        console.print(table)

    _run(do)


@app.command()
def phase(
    release_id: Annotated[int, typer.Argument(help="Release ID (see 'relboard releases')")],
    target: Annotated[str, typer.Argument(help="development, staging or production")],
) -> None:
    """Move a release to another phase."""

    async def do(session: Session) -> None:
        await _loaded(session)
        state = _state(session)
        result = await state.set_release_phase(release_id, target)
        _check(result)
        console.print(f"[green]Release {release_id} moved to {target.lower()}[/green]")

    _run(do)


@app.command()
def label(
    number: Annotated[int, typer.Argument(help="Issue or pull request number")],
    name: Annotated[str, typer.Argument(help="Label name")],
    remove: Annotated[
        bool,
        typer.Option("--remove", "-r", help="Remove the label instead of adding it"),
    ] = False,
) -> None:
    """Add a label to (or remove it from) an issue or pull request."""

    async def do(session: Session) -> None:
        await _loaded(session)
        state = _state(session)
        if remove:
            _check(await state.remove_label(number, name))
            console.print(f"[green]Removed '{name}' from #{number}[/green]")
        else:
            _check(await state.add_label(number, name))
            console.print(f"[green]Added '{name}' to #{number}[/green]")

    _run(do)


# =============================================================================
# Actions
# =============================================================================


@app.command()
def workflows(
    workflow: Annotated[
        str | None,
        typer.Option("--workflow", "-w", help="Only show runs of this workflow ID or file name"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Number of runs to show"),
    ] = 20,
) -> None:
    """Show workflows and their most recent runs."""

    async def do(session: Session) -> None:
        await _authenticated(session)
        owner, repo = _selection(session)

        workflows_result = await session.service.get_workflows(owner, repo)
        _check(workflows_result)
        names = {wf.id: wf.name for wf in workflows_result.data or []}

        kind = f"workflow_runs:{workflow or 'all'}"
        stored = session.store.load_snapshot(owner, repo, kind)
        if stored is not None:
            runs = [WorkflowRun.model_validate(item) for item in stored]
        else:
            runs_result = await session.service.get_workflow_runs(owner, repo, workflow)
            _check(runs_result)
            runs = runs_result.data or []
            session.store.save_snapshot(
                owner,
                repo,
                kind,
                [run.model_dump(mode="json") for run in runs],
                WORKFLOW_RUNS_TTL_MS / 1000,
            )

        table = Table(title=f"Workflow runs of {owner}/{repo}")
        table.add_column("Workflow")
        table.add_column("Run")
        table.add_column("Branch")
        table.add_column("Status")
        table.add_column("Started")

        conclusion_colors = {"success": "green", "failure": "red", "cancelled": "dim"}
        for run in runs[:limit]:
            outcome = run.conclusion or run.status or ""
            color = conclusion_colors.get(outcome, "yellow")
            table.add_row(
                names.get(run.workflow_id, run.name or "") if run.workflow_id else run.name or "",
                str(run.run_number or run.id),
                run.head_branch or "",
                f"[{color}]{outcome}[/{color}]",
                run.created_at.strftime("%Y-%m-%d %H:%M") if run.created_at else "",
            )

        console.print(table)
        console.print(f"[dim]{len(runs)} runs across {len(names)} workflows[/dim]")

    _run(do)


@app.command(name="rate-limit")
def rate_limit() -> None:
    """Show the remaining GitHub API quota."""

    async def do(session: Session) -> None:
        await _authenticated(session)
        rate = _data(await session.service.get_rate_limit())
        color = "green" if rate.remaining > 100 else "yellow" if rate.remaining > 10 else "red"
        console.print(f"Remaining: [{color}]{rate.remaining}[/{color}] / {rate.limit}")
        console.print(f"Resets at: {rate.reset_at.strftime('%Y-%m-%d %H:%M:%S')}")

    _run(do)


# =============================================================================
# Settings & Cache
# =============================================================================


@app.command()
def settings(
    cache_ttl: Annotated[
        str | None,
        typer.Option("--cache-ttl", help="Default cache lifetime in minutes"),
    ] = None,
    item_limit: Annotated[
        str | None,
        typer.Option("--item-limit", help="Max PRs/issues to fetch, or 'none' for no limit"),
    ] = None,
) -> None:
    """Show or change settings."""
    current = Settings.load(_store())
    try:
        if cache_ttl is not None:
            current.set_cache_expiry_minutes(cache_ttl)
        if item_limit is not None:
            current.set_item_limit(item_limit)
    except SettingsError as e:
        _fail(str(e))

    console.print(f"Cache expiry: {current.cache_expiry_minutes} minutes")
    console.print(f"Item limit: {current.item_limit if current.item_limit is not None else 'none'}")
    if item_limit is not None:
        console.print("[dim]Cached snapshots were fetched with the previous limit; run 'relboard clear-cache' to refetch.[/dim]")


@app.command(name="clear-cache")
def clear_cache(
    all_repos: Annotated[
        bool,
        typer.Option("--all", "-a", help="Clear snapshots of every repository"),
    ] = False,
) -> None:
    """Delete stored snapshots so the next command fetches fresh data."""
    store = _store()
    if all_repos:
        store.clear_snapshots()
        console.print("[green]Cleared all stored data[/green]")
        return

    selection = store.get_selected_repo()
    if selection is None:
        _fail("No repository selected. Use --all to clear everything.")
    count = store.delete_snapshots(*selection)
    console.print(f"[green]Cleared {count} stored entries for {selection[0]}/{selection[1]}[/green]")


@app.command()
def version() -> None:
    """Show the relboard version."""
    console.print(f"relboard {__version__}")

