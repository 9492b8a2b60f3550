"""Repository aggregate state.

RepositoryState owns the in-memory snapshot of the selected repository and
drives the load sequence that fills it:

    repository -> releases -> milestones -> issue types -> pull requests
    -> issues (+ release association) -> labels

Pull requests are loaded twice: a quick pass with synthetic review statuses
so the snapshot is usable immediately, then a full pass with review data in
a background task. Every await is followed by a check that the load (or
background fetch) still targets the current selection before anything is
merged into the snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relboard.core.models import FetchLogEntry, LoadStatus, LogLevel, RepositorySnapshot
from relboard.core.releases import count_release_issues, parse_phase, phase_flags
from relboard.github.models import ApiResult, ErrorKind, PullRequest, Release, ReleasePhase
from relboard.github.reviews import order_statuses
from relboard.utils.repo_ref import RepoReferenceError, validate_repo_parts

if TYPE_CHECKING:
    from relboard.core.settings import Settings
    from relboard.core.store import LocalStore
    from relboard.github.service import GitHubService

logger = logging.getLogger(__name__)

# Item caps used when no item limit is configured
QUICK_PR_LIMIT = 100
FULL_PR_LIMIT = 200
ISSUE_LIMIT = 500

SNAPSHOT_KINDS = tuple(RepositorySnapshot.model_fields)


class _LoadAborted(Exception):
    """Raised inside a load to stop it and move to FAILED."""

    def __init__(self, message: str, details: str | None = None, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.details = details
        self.kind = kind


@dataclass
class BackgroundFetch:
    """A full pull request fetch running behind a completed quick load.

    The handle remembers which repository and load it was started for; its
    result is merged only if both are still current when it completes.
    """

    owner: str
    repo: str
    generation: int
    task: asyncio.Task[ApiResult[list[PullRequest]]]

    @property
    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> None:
        if not self.task.done():
            self.task.cancel()


class RepositoryState:
    """Single authoritative snapshot of the selected repository.

    State machine: IDLE -> LOADING -> READY | FAILED. A load is never
    started while another one is running; the trigger is a no-op.
    """

    def __init__(
        self,
        service: GitHubService,
        settings: Settings,
        store: LocalStore | None = None,
    ) -> None:
        """Initialize the repository state.

        Args:
            service: Authenticated GitHub service.
            settings: Observable settings; item limit changes trigger a reload.
            store: Optional persistence for the selection and snapshots.
        """
        self.service = service
        self.settings = settings
        self.store = store

        self.owner: str | None = None
        self.repo: str | None = None
        self.status = LoadStatus.IDLE
        self.error: str | None = None
        self.error_kind: ErrorKind | None = None
        self.snapshot = RepositorySnapshot()
        self.fetch_logs: list[FetchLogEntry] = []

        self._generation = 0
        self._limit_used: int | None = None
        self._stale = False
        self._background: BackgroundFetch | None = None
        self._refresh_task: asyncio.Task[bool] | None = None
        self._unsubscribe = settings.subscribe(self._on_setting_changed)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_loading(self) -> bool:
        return self.status is LoadStatus.LOADING

    @property
    def is_ready(self) -> bool:
        return self.status is LoadStatus.READY

    @property
    def full_name(self) -> str | None:
        if self.owner is None or self.repo is None:
            return None
        return f"{self.owner}/{self.repo}"

    @property
    def background(self) -> BackgroundFetch | None:
        """The most recent background pull request fetch, if any."""
        return self._background

    def _is_current(self, owner: str, repo: str, generation: int) -> bool:
        return generation == self._generation and (owner, repo) == (self.owner, self.repo)

    def _log(self, message: str, level: LogLevel = "info") -> None:
        self.fetch_logs.append(FetchLogEntry(message, level))
        if level == "error":
            logger.error(message)
        elif level == "warning":
            logger.warning(message)
        else:
            logger.info(message)

    # =========================================================================
    # Selection & Loading
    # =========================================================================

    async def select_repository(self, owner: str, repo: str) -> bool:
        """Select a repository and load it.

        Returns:
            True if the load completed (READY), False if it failed or was
            skipped because another load is in progress.

        Raises:
            RepoReferenceError: If owner or repo is not a valid name.
        """
        ref = validate_repo_parts(owner, repo)

        if self.is_loading:
            logger.info(f"Load already in progress for {self.full_name}; ignoring request for {ref}")
            return False

        if (ref.owner, ref.repo) != (self.owner, self.repo):
            self._cancel_background()
            self.snapshot = RepositorySnapshot()
            self.owner, self.repo = ref.owner, ref.repo

        return await self._load()

    async def restore(self) -> bool:
        """Reload the persisted selection, if any."""
        if self.store is None:
            return False
        selection = self.store.get_selected_repo()
        if selection is None:
            return False
        try:
            return await self.select_repository(*selection)
        except RepoReferenceError as e:
            logger.warning(f"Ignoring stored repository selection: {e}")
            self.store.clear_selected_repo()
            return False

    async def refresh(self) -> bool:
        """Reload the selected repository.

        If a load is already running, the refresh is deferred until it
        finishes; it is never run concurrently.
        """
        if self.owner is None or self.repo is None:
            return False
        if self.is_loading:
            self._stale = True
            return False
        return await self._load()

    def _needs_refresh(self) -> bool:
        return self.is_ready and (self._stale or self.settings.item_limit != self._limit_used)

    async def _load(self) -> bool:
        ok = await self._load_once()
        while self._needs_refresh():
            self._log("Settings or data changed during load, refreshing")
            ok = await self._load_once()
        return ok

    async def _load_once(self) -> bool:
        owner, repo = self.owner, self.repo
        if owner is None or repo is None:
            raise RuntimeError("No repository selected")

        self._generation += 1
        generation = self._generation
        self._cancel_background()
        self.status = LoadStatus.LOADING
        self.error = None
        self.error_kind = None
        self._stale = False
        self.fetch_logs = []
        item_limit = self.settings.item_limit
        if item_limit != self._limit_used:
            # Cached lists were fetched with the old cap
            self.service.clear_repo_cache(owner, repo)
        self._limit_used = item_limit

        try:
            completed = await self._run_load(owner, repo, generation, item_limit)
        except _LoadAborted as e:
            if self._is_current(owner, repo, generation):
                self._fail(str(e), e.details, e.kind)
            return False
        except Exception as e:
            logger.exception(f"Unexpected error while loading {owner}/{repo}")
            if self._is_current(owner, repo, generation):
                self._fail("An error occurred while fetching repository data.", str(e), ErrorKind.TRANSIENT)
            return False

        if not completed:
            logger.info(f"Load of {owner}/{repo} superseded")
            return False

        self.status = LoadStatus.READY
        self._log("Repository data loaded successfully!", "success")
        self._save_snapshot(owner, repo)
        return True

    def _check(self, result: ApiResult[Any], what: str) -> bool:
        """Log a sub-fetch failure; auth failures abort the whole load."""
        if result.success:
            return True
        if result.error_kind is ErrorKind.AUTH:
            raise _LoadAborted("Authentication failed. Please log in again.", result.error, ErrorKind.AUTH)
        self._log(f"Failed to fetch {what}: {result.error}", "error")
        return False

    async def _run_load(self, owner: str, repo: str, generation: int, item_limit: int | None) -> bool:
        """Run the load sequence. Returns False if superseded mid-way."""
        service = self.service

        self._log(f"Fetching main repository data for {owner}/{repo}")
        repo_result = await service.get_repository(owner, repo)
        if not self._is_current(owner, repo, generation):
            return False
        if not repo_result.success:
            raise _LoadAborted(
                "Failed to fetch repository. Please check repository details.",
                repo_result.error,
                repo_result.error_kind,
            )
        self._log("Repository information retrieved successfully")
        self.snapshot.repository = repo_result.data
        if self.store is not None:
            self.store.set_selected_repo(owner, repo)

        self._log(f"Fetching releases for {owner}/{repo}")
        releases_result = await service.get_releases(owner, repo)
        if not self._is_current(owner, repo, generation):
            return False
        releases: list[Release] = []
        if self._check(releases_result, "releases"):
            releases = [release.model_copy(update={"issue_count": 0}) for release in releases_result.data or []]
            self._log(f"Found {len(releases)} releases")
        self.snapshot.releases = releases

        self._log(f"Fetching milestones for {owner}/{repo}")
        milestones_result = await service.get_milestones(owner, repo)
        if not self._is_current(owner, repo, generation):
            return False
        self.snapshot.milestones = []
        if self._check(milestones_result, "milestones"):
            self.snapshot.milestones = milestones_result.data or []
            self._log(f"Found {len(self.snapshot.milestones)} milestones")

        self._log("Determining issue types based on repository labels")
        types_result = await service.get_issue_types(owner, repo)
        if not self._is_current(owner, repo, generation):
            return False
        self.snapshot.issue_types = []
        if self._check(types_result, "issue types"):
            self.snapshot.issue_types = types_result.data or []
            self._log(f"Identified {len(self.snapshot.issue_types)} issue types")

        self._log(f"Fetching basic pull request data for {owner}/{repo}")
        quick_result = await service.get_pull_requests(
            owner,
            repo,
            skip_review_data=True,
            max_items=item_limit or QUICK_PR_LIMIT,
        )
        if not self._is_current(owner, repo, generation):
            return False
        self.snapshot.pull_requests = []
        self.snapshot.review_statuses = []
        if self._check(quick_result, "pull requests"):
            prs = quick_result.data or []
            self._log(f"Found {len(prs)} pull requests (basic data)")
            self.snapshot.pull_requests = prs
            self.snapshot.review_statuses = order_statuses(pr.review_status for pr in prs)
            if quick_result.incomplete:
                self._log("Starting background fetch of detailed PR data...")
                self._start_background(owner, repo, generation, item_limit or FULL_PR_LIMIT)

        self._log(f"Fetching issues for {owner}/{repo}")
        issues_result = await service.get_issues(owner, repo, max_items=item_limit or ISSUE_LIMIT)
        if not self._is_current(owner, repo, generation):
            return False
        self.snapshot.issues = []
        if self._check(issues_result, "issues"):
            issues = issues_result.data or []
            self._log(f"Found {len(issues)} issues")
            self.snapshot.issues = issues
            if releases:
                self._log("Associating issues with releases")
                self.snapshot.releases, associations = count_release_issues(releases, issues)
                self._log(f"Associated {associations} issues with releases")

        self._log(f"Fetching labels for {owner}/{repo}")
        labels_result = await service.get_labels(owner, repo)
        if not self._is_current(owner, repo, generation):
            return False
        self.snapshot.labels = []
        if self._check(labels_result, "labels"):
            self.snapshot.labels = labels_result.data or []
            self._log(f"Found {len(self.snapshot.labels)} labels")

        return True

    def _fail(self, message: str, details: str | None, kind: ErrorKind | None) -> None:
        """Enter FAILED, discarding everything loaded so far."""
        self._log(message, "error")
        if details:
            self._log(f"Error details: {details}", "error")
        self._cancel_background()
        self.snapshot = RepositorySnapshot()
        if self.owner and self.repo:
            self.service.clear_repo_cache(self.owner, self.repo)
        if self.store is not None:
            self.store.clear_selected_repo()
        self.status = LoadStatus.FAILED
        self.error = message
        self.error_kind = kind

    # =========================================================================
    # Background Pull Request Fetch
    # =========================================================================

    def _start_background(self, owner: str, repo: str, generation: int, max_items: int) -> None:
        task = asyncio.create_task(self._fetch_full_pull_requests(owner, repo, generation, max_items))
        self._background = BackgroundFetch(owner=owner, repo=repo, generation=generation, task=task)

    async def _fetch_full_pull_requests(
        self,
        owner: str,
        repo: str,
        generation: int,
        max_items: int,
    ) -> ApiResult[list[PullRequest]]:
        try:
            result = await self.service.get_pull_requests(owner, repo, max_items=max_items)
        except Exception as e:
            self._log(f"Background PR data fetch encountered an error: {e}", "error")
            return ApiResult.fail(str(e))

        if not self._is_current(owner, repo, generation):
            logger.info(f"Discarding detailed PR data for {owner}/{repo}: selection changed")
            return result

        if not result.success:
            self._log(f"Background PR data fetch failed: {result.error}", "warning")
            return result

        prs = result.data or []
        self.snapshot.pull_requests = prs
        self.snapshot.review_statuses = order_statuses(pr.review_status for pr in prs)
        self._log(f"Completed detailed PR data fetch ({len(prs)} PRs with review data)")
        if self.is_ready:
            self._save_snapshot(owner, repo, kinds=("pull_requests", "review_statuses"))
        return result

    async def wait_for_background(self) -> ApiResult[list[PullRequest]] | None:
        """Wait for the running background fetch, if any, and return its result."""
        background = self._background
        if background is None:
            return None
        try:
            return await background.task
        except asyncio.CancelledError:
            return None

    def _cancel_background(self) -> None:
        if self._background is not None:
            self._background.cancel()

    # =========================================================================
    # Mutations
    # =========================================================================

    def _require_selection(self) -> tuple[str, str]:
        if self.owner is None or self.repo is None or self.snapshot.repository is None:
            raise RepoReferenceError("No repository loaded")
        return self.owner, self.repo

    async def create_release(
        self,
        tag_name: str,
        name: str | None = None,
        body: str | None = None,
        draft: bool = False,
        prerelease: bool = False,
    ) -> ApiResult[Release]:
        """Create a release and add it to the front of the snapshot's list."""
        try:
            owner, repo = self._require_selection()
        except RepoReferenceError as e:
            return ApiResult.fail(str(e), ErrorKind.VALIDATION)

        result = await self.service.create_release(owner, repo, tag_name, name, body, draft, prerelease)
        if not result.success or result.data is None:
            self._log(f"Failed to create release: {result.error}", "error")
            return result

        release = result.data.model_copy(update={"issue_count": 0})
        if (owner, repo) == (self.owner, self.repo):
            self.snapshot.releases = [release, *self.snapshot.releases]
        return ApiResult.ok(release)

    async def set_release_phase(self, release_id: int, phase: str | ReleasePhase) -> ApiResult[Release]:
        """Move a release to a phase by updating its draft/prerelease flags."""
        try:
            owner, repo = self._require_selection()
            target = parse_phase(phase)
        except ValueError as e:
            return ApiResult.fail(str(e), ErrorKind.VALIDATION)

        updates = phase_flags(target)
        result = await self.service.update_release(owner, repo, release_id, **updates)
        if not result.success:
            self._log(f"Failed to update release phase: {result.error}", "error")
            return result

        updated: Release | None = None
        if (owner, repo) == (self.owner, self.repo):
            releases = []
            for release in self.snapshot.releases:
                if release.id == release_id:
                    release = release.model_copy(update=updates)
                    updated = release
                releases.append(release)
            self.snapshot.releases = releases
        return ApiResult.ok(updated or result.data)

    async def add_label(self, number: int, label: str) -> ApiResult[Any]:
        """Add a label to an issue or PR, then reload the repository."""
        try:
            owner, repo = self._require_selection()
        except RepoReferenceError as e:
            return ApiResult.fail(str(e), ErrorKind.VALIDATION)

        result = await self.service.add_label_to_issue(owner, repo, number, label)
        if not result.success:
            self._log(f"Failed to add label: {result.error}", "error")
            return result
        self._stale = True
        await self.refresh()
        return result

    async def remove_label(self, number: int, label: str) -> ApiResult[Any]:
        """Remove a label from an issue or PR, then reload the repository."""
        try:
            owner, repo = self._require_selection()
        except RepoReferenceError as e:
            return ApiResult.fail(str(e), ErrorKind.VALIDATION)

        result = await self.service.remove_label_from_issue(owner, repo, number, label)
        if not result.success:
            self._log(f"Failed to remove label: {result.error}", "error")
            return result
        self._stale = True
        await self.refresh()
        return result

    # =========================================================================
    # Settings
    # =========================================================================

    def _on_setting_changed(self, name: str, old: Any, new: Any) -> None:
        if name != "item_limit" or not self.is_ready or new == self._limit_used:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next refresh() call picks up the new limit
            self._stale = True
            return
        logger.info(f"Item limit changed from {old} to {new}, triggering data refresh")
        self._refresh_task = loop.create_task(self._refresh_if_unchanged(self._generation))

    async def _refresh_if_unchanged(self, generation: int) -> bool:
        # A load started since the change already applied the new limit
        if generation != self._generation:
            logger.debug("Skipping queued refresh: repository was reloaded in the meantime")
            return False
        return await self.refresh()

    async def wait_for_refresh(self) -> bool | None:
        """Wait for a settings-triggered refresh, if one is pending."""
        if self._refresh_task is None:
            return None
        return await self._refresh_task

    # =========================================================================
    # Snapshots
    # =========================================================================

    def _save_snapshot(self, owner: str, repo: str, kinds: tuple[str, ...] = SNAPSHOT_KINDS) -> None:
        if self.store is None:
            return
        ttl_seconds = self.settings.cache_expiry_minutes * 60
        data = self.snapshot.model_dump(mode="json", include=set(kinds))
        for kind in kinds:
            self.store.save_snapshot(owner, repo, kind, data[kind], ttl_seconds)

    def restore_snapshot(self, owner: str, repo: str) -> bool:
        """Fill the state from stored snapshots without any network call.

        Only succeeds when every part of the snapshot is present and fresh.
        """
        if self.store is None or self.is_loading:
            return False

        data: dict[str, Any] = {}
        for kind in SNAPSHOT_KINDS:
            value = self.store.load_snapshot(owner, repo, kind)
            if value is None:
                return False
            data[kind] = value

        try:
            snapshot = RepositorySnapshot.model_validate(data)
        except ValueError as e:
            logger.warning(f"Discarding stored snapshot for {owner}/{repo}: {e}")
            self.store.delete_snapshots(owner, repo)
            return False

        self._cancel_background()
        self._generation += 1
        self.owner, self.repo = owner, repo
        self.snapshot = snapshot
        self.status = LoadStatus.READY
        self._limit_used = self.settings.item_limit
        logger.info(f"Restored {owner}/{repo} from stored snapshot")
        return True

    # =========================================================================
    # Teardown
    # =========================================================================

    def clear(self) -> None:
        """Forget the selected repository, its snapshot and its cached data."""
        self._generation += 1
        self._cancel_background()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        if self.owner and self.repo:
            self.service.clear_repo_cache(self.owner, self.repo)
            if self.store is not None:
                self.store.delete_snapshots(self.owner, self.repo)
        if self.store is not None:
            self.store.clear_selected_repo()

        self.owner = None
        self.repo = None
        self.snapshot = RepositorySnapshot()
        self.status = LoadStatus.IDLE
        self.error = None
        self.error_kind = None
        self.fetch_logs = []
        self._stale = False

    def dispose(self) -> None:
        """Stop background work and stop listening to settings.

        Persisted selection and snapshots are kept; use clear() to forget them.
        """
        self._generation += 1
        self._cancel_background()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._unsubscribe()
