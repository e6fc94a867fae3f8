"""Suppression ("block"/snooze) matching and garbage collection.

A block stays valid only while the fingerprint recorded at creation time still
matches the observed state:

- ``MyPrBlock`` holds until a review newer than ``last_review_submitted_at``
  arrives on the PR.
- ``ReviewRequestBlock`` holds for one specific request instance and, when it
  carries ``expire_at``, only until then (a snooze).
- ``CommentBlock`` permanently dismisses a single comment.

Garbage collection is conservative: a block is dropped only when no entity of
the current cycle references it and it does not belong to a repo whose
monitoring is merely disabled.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from .models import (
    Comment,
    CommentBlock,
    MyPR,
    MyPrBlock,
    Repo,
    RepoState,
    ReviewRequest,
    ReviewRequestBlock,
)

logger = logging.getLogger(__name__)

GC_PROBABILITY = 0.01

B = TypeVar("B", bound=Hashable)


@dataclass(frozen=True)
class BlockSet:
    """The three independently persisted block lists."""

    my_pr_blocks: Tuple[MyPrBlock, ...] = ()
    review_request_blocks: Tuple[ReviewRequestBlock, ...] = ()
    comment_blocks: Tuple[CommentBlock, ...] = ()


def my_pr_blocked_by(my_pr: MyPR, block: MyPrBlock) -> bool:
    return block.pr_url == my_pr.pr.url and block.last_review_submitted_at >= my_pr.last_review_submitted_at


def is_expired(block: ReviewRequestBlock, now: int) -> bool:
    return block.expire_at is not None and block.expire_at <= now


def review_request_blocked_by(request: ReviewRequest, block: ReviewRequestBlock, now: int) -> bool:
    if is_expired(block, now):
        return False
    return block.pr_url == request.pr.url and block.review_requested_at == (request.first_observed_at or 0)


def comment_blocked_by(comment: Comment, block: CommentBlock) -> bool:
    return block.comment_url == comment.url


def block_for_my_pr(my_pr: MyPR) -> MyPrBlock:
    """Build the block a user creates to dismiss ``my_pr`` in its current state."""
    return MyPrBlock(pr_url=my_pr.pr.url, last_review_submitted_at=my_pr.last_review_submitted_at)


def block_for_review_request(request: ReviewRequest, expire_at: Optional[int] = None) -> ReviewRequestBlock:
    return ReviewRequestBlock(
        pr_url=request.pr.url,
        review_requested_at=request.first_observed_at or 0,
        expire_at=expire_at,
    )


def block_for_comment(comment: Comment) -> CommentBlock:
    return CommentBlock(comment_url=comment.url)


def should_collect_garbage(
    repo_states: Iterable[RepoState],
    rng: Callable[[], float] = random.random,
    probability: float = GC_PROBABILITY,
) -> bool:
    """Decide whether this cycle sweeps blocks.

    Sweeps run with ``probability`` and never when any repo of the cycle
    failed, since an incomplete picture would drop blocks still in use.
    """
    if rng() >= probability:
        return False
    for state in repo_states:
        result = state.last_sync_result
        if result is None or not result.succeeded:
            return False
    return True


def _under_repo(url: str, repo: Repo) -> bool:
    return f"/{repo.full_name.lower()}/" in url.lower()


def _reconcile(
    stored: Sequence[B],
    referenced: Set[B],
    url_of: Callable[[B], str],
    disabled_repos: Sequence[Repo],
) -> Optional[List[B]]:
    kept = list(
        dict.fromkeys(
            block
            for block in stored
            if block in referenced or any(_under_repo(url_of(block), repo) for repo in disabled_repos)
        )
    )
    if len(kept) == len(stored):
        return None
    logger.info(
        "Collected obsolete blocks",
        extra={"stored": len(stored), "kept": len(kept)},
    )
    return kept


def collect_my_pr_blocks(
    repo_states: Sequence[RepoState],
    stored: Sequence[MyPrBlock],
    disabled_repos: Sequence[Repo],
) -> Optional[List[MyPrBlock]]:
    """Return the pruned list to persist, or ``None`` when nothing changes."""
    referenced = {
        block
        for state in repo_states
        if state.last_sync_result is not None
        for my_pr in state.last_sync_result.my_prs
        for block in stored
        if my_pr_blocked_by(my_pr, block)
    }
    return _reconcile(stored, referenced, lambda block: block.pr_url, disabled_repos)


def collect_review_request_blocks(
    repo_states: Sequence[RepoState],
    stored: Sequence[ReviewRequestBlock],
    disabled_repos: Sequence[Repo],
    now: int,
) -> Optional[List[ReviewRequestBlock]]:
    """Return the pruned list to persist, or ``None`` when nothing changes.

    Expired snoozes are never referenced, so they are swept here.
    """
    referenced = {
        block
        for state in repo_states
        if state.last_sync_result is not None
        for request in state.last_sync_result.requests_for_my_review
        for block in stored
        if review_request_blocked_by(request, block, now)
    }
    return _reconcile(stored, referenced, lambda block: block.pr_url, disabled_repos)


def collect_comment_blocks(
    repo_states: Sequence[RepoState],
    stored: Sequence[CommentBlock],
    disabled_repos: Sequence[Repo],
) -> Optional[List[CommentBlock]]:
    """Return the pruned list to persist, or ``None`` when nothing changes."""
    referenced = {
        block
        for state in repo_states
        if state.last_sync_result is not None
        for comment in state.last_sync_result.comments
        for block in stored
        if comment_blocked_by(comment, block)
    }
    return _reconcile(stored, referenced, lambda block: block.comment_url, disabled_repos)
