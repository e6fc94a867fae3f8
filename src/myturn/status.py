"""Status aggregation and report helpers.

This module provides utilities for:
- Deciding whether a repo's last successful sync is still fresh.
- Rolling per-repo results into one ``SyncStatus`` severity signal.
- Flattening un-suppressed review requests, PRs and comments into
  presentation records.
- Building a human-readable report of everything that is my turn.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from .blocks import BlockSet
from .config import Settings
from .models import Repo, RepoState, RepoSyncResult, SyncStatus
from .turn_state import comment_is_my_turn, my_pr_is_my_turn, my_pr_status, review_request_is_my_turn

DEFAULT_FRESHNESS_MILLIS = 5 * 60 * 1000
FRESHNESS_CYCLE_MULTIPLIER = 5
SNIPPET_LENGTH = 80


@dataclass(frozen=True)
class AttentionItem:
    """One signal the presentation layer should show to the user."""

    repo_full_name: str
    kind: str
    url: str
    title: str
    author: Optional[str]
    timestamp: Optional[int]
    detail: str = ""


def freshness_window(last_cycle_duration: Optional[int]) -> int:
    """Return how long (millis) a successful sync stays trustworthy.

    The window is 5 minutes or 5 times the last full-cycle duration,
    whichever is longer.
    """
    return max(DEFAULT_FRESHNESS_MILLIS, FRESHNESS_CYCLE_MULTIPLIER * (last_cycle_duration or 0))


def fresh_successful_result(
    state: Optional[RepoState],
    settings: Settings,
    now: int,
    last_cycle_duration: Optional[int],
) -> Optional[RepoSyncResult]:
    """Return the repo's last successful result if it may be shown to the user.

    A result computed with a narrower comment age threshold than the current
    setting is incomplete and therefore not fresh either.
    """
    if state is None or state.last_successful_sync_result is None:
        return None
    result = state.last_successful_sync_result
    if result.sync_started_at < now - freshness_window(last_cycle_duration):
        return None
    if settings.ignore_comments_more_than_x_days_old > result.ignored_comments_more_than_x_days_old:
        return None
    return result


def repo_status(
    state: Optional[RepoState],
    blocks: BlockSet,
    settings: Settings,
    now: int,
    last_cycle_duration: Optional[int],
) -> SyncStatus:
    """Compute the severity of a single repo.

    Red for a personal review request, yellow for a team review request, a PR
    of mine waiting on me or an unanswered comment, green otherwise. Grey when
    the last successful sync is not fresh.
    """
    result = fresh_successful_result(state, settings, now, last_cycle_duration)
    if result is None:
        return SyncStatus.GREY

    requests = [
        request for request in result.requests_for_my_review if review_request_is_my_turn(request, blocks, settings, now)
    ]
    if any(not request.is_team_request for request in requests):
        return SyncStatus.RED
    if requests:
        return SyncStatus.YELLOW
    if any(my_pr_is_my_turn(my_pr, blocks, settings) for my_pr in result.my_prs):
        return SyncStatus.YELLOW
    if any(comment_is_my_turn(comment, blocks, settings, now) for comment in result.comments):
        return SyncStatus.YELLOW
    return SyncStatus.GREEN


def overall_status(
    repos: Sequence[Repo],
    states: Mapping[str, RepoState],
    blocks: BlockSet,
    settings: Settings,
    now: int,
    last_cycle_duration: Optional[int],
) -> Optional[SyncStatus]:
    """Return the most severe status across monitored repos.

    Returns ``None`` when no repo is monitored: there is nothing to show,
    which is different from green.
    """
    enabled = [repo for repo in repos if repo.monitoring_enabled]
    if not enabled:
        return None
    return max(
        repo_status(states.get(repo.full_name), blocks, settings, now, last_cycle_duration) for repo in enabled
    )


def _snippet(text: str) -> str:
    flat = " ".join((text or "").split())
    if len(flat) <= SNIPPET_LENGTH:
        return flat
    return flat[: SNIPPET_LENGTH - 3] + "..."


def collect_attention_items(
    repos: Sequence[Repo],
    states: Mapping[str, RepoState],
    blocks: BlockSet,
    settings: Settings,
    now: int,
    last_cycle_duration: Optional[int],
) -> List[AttentionItem]:
    """List every un-suppressed signal of fresh, monitored repos."""
    items: List[AttentionItem] = []
    for repo in repos:
        if not repo.monitoring_enabled:
            continue
        result = fresh_successful_result(states.get(repo.full_name), settings, now, last_cycle_duration)
        if result is None:
            continue

        for request in result.requests_for_my_review:
            if not review_request_is_my_turn(request, blocks, settings, now):
                continue
            if request.is_team_request:
                kind, detail = "team_review_request", f"team {request.team_name}"
            else:
                kind, detail = "review_request", request.reason.value if request.reason else ""
            items.append(
                AttentionItem(
                    repo_full_name=repo.full_name,
                    kind=kind,
                    url=request.pr.url,
                    title=request.pr.title,
                    author=request.pr.author_login,
                    timestamp=request.first_observed_at,
                    detail=detail,
                )
            )

        for my_pr in result.my_prs:
            if not my_pr_is_my_turn(my_pr, blocks, settings):
                continue
            items.append(
                AttentionItem(
                    repo_full_name=repo.full_name,
                    kind="my_pr",
                    url=my_pr.pr.url,
                    title=my_pr.pr.title,
                    author=my_pr.pr.author_login,
                    timestamp=my_pr.last_review_submitted_at or None,
                    detail=my_pr_status(my_pr, settings).value,
                )
            )

        for comment in result.comments:
            if not comment_is_my_turn(comment, blocks, settings, now):
                continue
            items.append(
                AttentionItem(
                    repo_full_name=repo.full_name,
                    kind="comment",
                    url=comment.url,
                    title=_snippet(comment.body),
                    author=comment.author_login,
                    timestamp=comment.created_at,
                    detail=comment.pr.title,
                )
            )
    return items


def format_timestamp(value: Optional[int]) -> str:
    """Format unix millis as ``YYYY-MM-DD HH:MM`` UTC, or ``n/a``."""
    if not value:
        return "n/a"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


_KIND_LABELS: Dict[str, str] = {
    "review_request": "Review requested",
    "team_review_request": "Team review requested",
    "my_pr": "My PR",
    "comment": "Comment",
}


def render_report(
    status: Optional[SyncStatus],
    items: Sequence[AttentionItem],
    states: Mapping[str, RepoState],
) -> str:
    """Generate a human-readable report of the current turn state.

    Failed repos are listed with their last error message.
    """
    if status is None:
        return "No monitored repositories. Add one with --repo OWNER/NAME."

    lines = [f"Status: {status.name}", ""]
    if items:
        lines.append("My turn:")
        for item in items:
            lines.append(f"  [{_KIND_LABELS.get(item.kind, item.kind)}] {item.repo_full_name}: {item.title}")
            extra = f" ({item.detail})" if item.detail else ""
            lines.append(f"      {item.url} by {item.author or 'n/a'} at {format_timestamp(item.timestamp)}{extra}")
    else:
        lines.append("Nothing is waiting for you.")

    failures = [
        (name, state.last_sync_result.error_msg)
        for name, state in sorted(states.items())
        if state.last_sync_result is not None and state.last_sync_result.error_msg
    ]
    if failures:
        lines.append("")
        lines.append("Sync errors:")
        for name, error_msg in failures:
            lines.append(f"  {name}: {error_msg}")

    return "\n".join(lines)
