"""Sync cycle orchestration.

One cycle fetches the authenticated user, their teams and recent
notifications once, then syncs every monitored repository strictly one after
another. A failing repository only marks its own ``last_sync_result`` as
failed; its last successful result and all other repositories are kept.
Persisting results and sweeping obsolete blocks run in the background.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .blocks import (
    BlockSet,
    collect_comment_blocks,
    collect_my_pr_blocks,
    collect_review_request_blocks,
    should_collect_garbage,
)
from .config import Settings
from .errors import RateLimitError
from .github_client import GitHubClient
from .models import (
    Comment,
    GitHubUser,
    MyPR,
    Notification,
    OpenPull,
    Repo,
    RepoState,
    RepoSyncResult,
    ReviewRequest,
    SyncStatus,
)
from .status import overall_status
from .store import KeyValueStore
from .turn_state import (
    build_my_pr,
    build_review_request,
    build_single_comment_request,
    build_team_review_request,
    find_turn_comment_in_thread,
    find_turn_issue_comment,
    group_review_threads,
    is_acknowledged,
    is_lone_comment_review,
    is_review_requested_from,
    latest_review_requested_at,
    previous_request_for,
    single_comment_candidates,
    to_comment,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CycleReport:
    """Summary of one completed sync cycle."""

    started_at: int
    duration_millis: int
    calls: int
    repo_states: Dict[str, RepoState]
    status: Optional[SyncStatus]
    failed_repos: Tuple[str, ...] = ()
    rate_limited: bool = False


class RepoSyncOrchestrator:
    """Syncs a single repository into a new ``RepoState``."""

    def __init__(self, client: GitHubClient, clock: Clock = now_millis) -> None:
        self._client = client
        self._clock = clock

    async def sync_repo(
        self,
        repo: Repo,
        state: RepoState,
        user: GitHubUser,
        notifications: Sequence[Notification],
        settings: Settings,
    ) -> Tuple[RepoState, Optional[Exception]]:
        """Sync ``repo`` and return its new state plus the error, if it failed.

        Any error fails only this repository: ``last_sync_result`` records the
        error text while ``last_successful_sync_result`` is left untouched.
        """
        started_at = self._clock()
        try:
            requests_for_my_review, my_pulls = await self._sync_requests_for_my_review(
                repo, user, state.last_successful_sync_result, started_at
            )
            my_prs: List[MyPR] = []
            for pull in my_pulls:
                my_prs.append(await self._sync_my_pr(repo, pull, user))
            comments = await self._sync_comments(notifications, user, settings, started_at)
        except Exception as exc:
            logger.warning(
                "Error syncing repository, keeping its last successful result",
                extra={"repo": repo.full_name, "error": str(exc)},
                exc_info=True,
            )
            failed = RepoSyncResult(
                sync_started_at=started_at,
                error_msg=str(exc) or type(exc).__name__,
                ignored_comments_more_than_x_days_old=settings.ignore_comments_more_than_x_days_old,
            )
            return replace(state, last_sync_result=failed), exc

        result = RepoSyncResult(
            sync_started_at=started_at,
            requests_for_my_review=tuple(requests_for_my_review),
            my_prs=tuple(my_prs),
            comments=tuple(comments),
            ignored_comments_more_than_x_days_old=settings.ignore_comments_more_than_x_days_old,
        )
        logger.debug(
            "Synced repository",
            extra={
                "repo": repo.full_name,
                "review_requests": len(result.requests_for_my_review),
                "my_prs": len(result.my_prs),
                "comments": len(result.comments),
            },
        )
        return RepoState(full_name=repo.full_name, last_sync_result=result, last_successful_sync_result=result), None

    async def _sync_requests_for_my_review(
        self,
        repo: Repo,
        user: GitHubUser,
        previous: Optional[RepoSyncResult],
        now: int,
    ) -> Tuple[List[ReviewRequest], List[OpenPull]]:
        """Collect review requests on others' PRs and return my own open PRs."""
        requests_for_my_review: List[ReviewRequest] = []
        my_pulls: List[OpenPull] = []
        for pull in await self._client.list_open_pulls(repo.owner, repo.name):
            if pull.pr.author_id == user.id:
                my_pulls.append(pull)
                continue

            if is_review_requested_from(pull, user):
                events = await self._client.list_issue_events(repo.owner, repo.name, pull.number)
                requests_for_my_review.append(build_review_request(pull, events, user, previous, now))
            else:
                previous_request = previous_request_for(previous, pull.pr.url)
                if previous_request is not None:
                    request = await self._maybe_single_comment_request(repo, pull, user, previous_request, now)
                    if request is not None:
                        requests_for_my_review.append(request)

            team_request = build_team_review_request(pull, user)
            if team_request is not None:
                requests_for_my_review.append(team_request)
        return requests_for_my_review, my_pulls

    async def _maybe_single_comment_request(
        self,
        repo: Repo,
        pull: OpenPull,
        user: GitHubUser,
        previous_request: ReviewRequest,
        now: int,
    ) -> Optional[ReviewRequest]:
        """Re-create a review request GitHub dropped because I left a single comment."""
        events = await self._client.list_issue_events(repo.owner, repo.name, pull.number)
        requested_at = latest_review_requested_at(events, user.id)
        reviews = await self._client.list_reviews(repo.owner, repo.name, pull.number)
        candidates = single_comment_candidates(reviews, user.id, requested_at)
        if candidates is None:
            return None
        for review in candidates:
            review_comments = await self._client.list_comments_for_review(
                repo.owner, repo.name, pull.number, review.id
            )
            if not is_lone_comment_review(review, len(review_comments)):
                return None
        logger.debug(
            "Review request likely dropped by a single comment",
            extra={"repo": repo.full_name, "pr_url": pull.pr.url},
        )
        return build_single_comment_request(pull, requested_at, previous_request, now)

    async def _sync_my_pr(self, repo: Repo, pull: OpenPull, user: GitHubUser) -> MyPR:
        reviews = await self._client.list_reviews(repo.owner, repo.name, pull.number)
        return build_my_pr(pull, reviews, user.id)

    async def _sync_comments(
        self,
        notifications: Sequence[Notification],
        user: GitHubUser,
        settings: Settings,
        now: int,
    ) -> List[Comment]:
        min_created_at = settings.min_comment_created_at(now)
        if min_created_at is None:
            return []

        comments: List[Comment] = []
        seen: Set[str] = set()
        for notification in notifications:
            if notification.subject_type != "PullRequest" or notification.subject_url in seen:
                continue
            seen.add(notification.subject_url)
            comments.extend(await self._sync_review_comments(notification, user, min_created_at))
            issue_comment = await self._sync_issue_comment(notification, user, min_created_at)
            if issue_comment is not None:
                comments.append(issue_comment)
        return comments

    async def _sync_review_comments(
        self,
        notification: Notification,
        user: GitHubUser,
        min_created_at: int,
    ) -> List[Comment]:
        owner, name, number = notification.repo_owner, notification.repo_name, notification.pr_number
        found: List[Comment] = []
        for thread in group_review_threads(await self._client.list_review_comments(owner, name, number)):
            candidate = find_turn_comment_in_thread(thread, user, min_created_at)
            if candidate is None:
                continue
            reactions = await self._client.list_review_comment_reactions(owner, name, candidate.id)
            if is_acknowledged(reactions, user.id):
                continue
            found.append(to_comment(candidate, notification.subject_title))
        return found

    async def _sync_issue_comment(
        self,
        notification: Notification,
        user: GitHubUser,
        min_created_at: int,
    ) -> Optional[Comment]:
        owner, name, number = notification.repo_owner, notification.repo_name, notification.pr_number
        candidate = find_turn_issue_comment(
            await self._client.list_issue_comments(owner, name, number), user, min_created_at
        )
        if candidate is None:
            return None
        reactions = await self._client.list_issue_comment_reactions(owner, name, candidate.id)
        if is_acknowledged(reactions, user.id):
            return None
        return to_comment(candidate, notification.subject_title)


class SyncRunner:
    """Runs sync cycles, never more than one at a time.

    Background work (persisting repo states, block garbage collection) is
    tracked and can be awaited with ``drain()``.
    """

    def __init__(
        self,
        client: GitHubClient,
        store: KeyValueStore,
        clock: Clock = now_millis,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._client = client
        self._store = store
        self._clock = clock
        self._rng = rng
        self._orchestrator = RepoSyncOrchestrator(client, clock)
        self._in_progress = False
        self._background: Set["asyncio.Task[Any]"] = set()

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    async def try_sync(self) -> Optional[CycleReport]:
        """Run one cycle, or return ``None`` when a cycle is already running."""
        if self._in_progress:
            logger.info("Another sync in progress. Skipping.")
            return None
        self._in_progress = True
        try:
            return await self.run_cycle()
        finally:
            self._in_progress = False

    async def run_cycle(self) -> CycleReport:
        """Sync every monitored repository once.

        Raises:
            AuthenticationError: If the user cannot be fetched with the token.
            ApiError: If the user, team or notification fetch fails.
        """
        logger.info("Starting sync")
        blocks_at_start = self._store.get_blocks()
        self._client.reset_calls_counter()
        started_at = self._clock()

        settings = self._store.get_settings()
        all_repos = self._store.get_repos()
        repos = [repo for repo in all_repos if repo.monitoring_enabled]
        previous_states = self._store.get_repo_states()

        user = await self._load_user()
        notifications: List[Notification] = []
        min_comment_created_at = settings.min_comment_created_at(started_at)
        if min_comment_created_at is not None:
            notifications = await self._client.list_notifications(min_comment_created_at)

        states: Dict[str, RepoState] = {}
        failed_repos: List[str] = []
        rate_limited = False
        for repo in repos:
            state = previous_states.get(repo.full_name) or RepoState(full_name=repo.full_name)
            repo_notifications = [n for n in notifications if n.repo_full_name.lower() == repo.full_name.lower()]
            new_state, error = await self._orchestrator.sync_repo(repo, state, user, repo_notifications, settings)
            states[repo.full_name] = new_state
            if error is not None:
                failed_repos.append(repo.full_name)
                rate_limited = rate_limited or isinstance(error, RateLimitError)

        self._spawn(asyncio.to_thread(self._store.save_repo_states, dict(states)))
        disabled_repos = [repo for repo in all_repos if not repo.monitoring_enabled]
        self._spawn(
            asyncio.to_thread(
                self._collect_garbage, list(states.values()), blocks_at_start, disabled_repos, self._clock()
            )
        )

        duration = self._clock() - started_at
        self._store.save_last_cycle_duration(duration)
        calls = self._client.calls
        logger.info(
            "Sync finished",
            extra={"calls": calls, "duration_millis": duration, "repos": len(repos), "failed": len(failed_repos)},
        )

        status = overall_status(all_repos, states, self._store.get_blocks(), settings, self._clock(), duration)
        return CycleReport(
            started_at=started_at,
            duration_millis=duration,
            calls=calls,
            repo_states=states,
            status=status,
            failed_repos=tuple(failed_repos),
            rate_limited=rate_limited,
        )

    async def _load_user(self) -> GitHubUser:
        user = await self._client.get_authenticated_user()
        teams = await self._client.list_user_teams()
        return replace(user, team_ids=tuple(team.id for team in teams))

    def _collect_garbage(
        self,
        repo_states: List[RepoState],
        blocks_at_start: BlockSet,
        disabled_repos: List[Repo],
        now: int,
    ) -> None:
        """Sweep obsolete blocks of each kind, unless the user added one meanwhile."""
        my_pr_blocks = self._store.get_my_pr_blocks()
        if len(my_pr_blocks) == len(blocks_at_start.my_pr_blocks) and should_collect_garbage(repo_states, self._rng):
            pruned = collect_my_pr_blocks(repo_states, my_pr_blocks, disabled_repos)
            if pruned is not None:
                self._store.save_my_pr_blocks(pruned)

        review_request_blocks = self._store.get_review_request_blocks()
        if len(review_request_blocks) == len(blocks_at_start.review_request_blocks) and should_collect_garbage(
            repo_states, self._rng
        ):
            pruned_requests = collect_review_request_blocks(repo_states, review_request_blocks, disabled_repos, now)
            if pruned_requests is not None:
                self._store.save_review_request_blocks(pruned_requests)

        comment_blocks = self._store.get_comment_blocks()
        if len(comment_blocks) == len(blocks_at_start.comment_blocks) and should_collect_garbage(
            repo_states, self._rng
        ):
            pruned_comments = collect_comment_blocks(repo_states, comment_blocks, disabled_repos)
            if pruned_comments is not None:
                self._store.save_comment_blocks(pruned_comments)

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: "asyncio.Task[Any]") -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for all background persistence and garbage collection."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
