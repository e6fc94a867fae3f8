"""Tests for block predicates and garbage collection of obsolete blocks."""

import sys
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from myturn.blocks import (
    block_for_comment,
    block_for_my_pr,
    block_for_review_request,
    collect_comment_blocks,
    collect_my_pr_blocks,
    collect_review_request_blocks,
    is_expired,
    should_collect_garbage,
)
from myturn.models import (
    Comment,
    CommentBlock,
    MyPR,
    MyPrBlock,
    PullRequest,
    Repo,
    RepoState,
    RepoSyncResult,
    ReviewerState,
    ReviewRequest,
    ReviewRequestBlock,
    ReviewState,
)


def _pr(repo: str, number: int) -> PullRequest:
    return PullRequest(url=f"https://github.com/{repo}/pull/{number}", title=f"PR {number}")


def _state(full_name: str, result: RepoSyncResult) -> RepoState:
    return RepoState(full_name=full_name, last_sync_result=result, last_successful_sync_result=result)


def test_block_builders_record_current_fingerprint():
    """Verify blocks capture the state they were created for."""
    my_pr = MyPR(
        pr=_pr("octo/repo", 1),
        reviewer_states=(ReviewerState(reviewer_id=2, state=ReviewState.APPROVED, submitted_at=50),),
    )
    request = ReviewRequest(pr=_pr("octo/repo", 2), first_observed_at=70)
    team_request = ReviewRequest(pr=_pr("octo/repo", 3), first_observed_at=None, team_name="core")
    comment = Comment(
        url="https://github.com/octo/repo/pull/2#issuecomment-9",
        pr=_pr("octo/repo", 2),
        body="@me",
        author_id=2,
        author_login="bob",
        created_at=1,
    )

    assert block_for_my_pr(my_pr) == MyPrBlock(pr_url=my_pr.pr.url, last_review_submitted_at=50)
    assert block_for_review_request(request, expire_at=99) == ReviewRequestBlock(
        pr_url=request.pr.url, review_requested_at=70, expire_at=99
    )
    assert block_for_review_request(team_request).review_requested_at == 0
    assert block_for_comment(comment) == CommentBlock(comment_url=comment.url)


def test_is_expired():
    block = ReviewRequestBlock(pr_url="u", review_requested_at=1, expire_at=10)

    assert not is_expired(block, 9)
    assert is_expired(block, 10)
    assert not is_expired(ReviewRequestBlock(pr_url="u", review_requested_at=1), 10**12)


def test_should_collect_garbage_is_probabilistic():
    states = [_state("octo/repo", RepoSyncResult(sync_started_at=1))]

    assert should_collect_garbage(states, rng=lambda: 0.0)
    assert not should_collect_garbage(states, rng=lambda: 0.5)


def test_should_collect_garbage_skips_when_any_repo_failed():
    """Verify an incomplete picture never sweeps blocks."""
    states = [
        _state("octo/repo", RepoSyncResult(sync_started_at=1)),
        RepoState(full_name="octo/other", last_sync_result=RepoSyncResult(sync_started_at=1, error_msg="boom")),
    ]

    assert not should_collect_garbage(states, rng=lambda: 0.0)


def test_collect_my_pr_blocks_drops_unreferenced_and_keeps_disabled_repo_blocks():
    """Verify referenced blocks and blocks of paused repos survive a sweep."""
    my_pr = MyPR(
        pr=_pr("octo/repo", 1),
        reviewer_states=(ReviewerState(reviewer_id=2, state=ReviewState.APPROVED, submitted_at=50),),
    )
    referenced = MyPrBlock(pr_url=my_pr.pr.url, last_review_submitted_at=50)
    invalidated = MyPrBlock(pr_url=my_pr.pr.url, last_review_submitted_at=40)
    closed_pr = MyPrBlock(pr_url=_pr("octo/repo", 9).url, last_review_submitted_at=1)
    paused = MyPrBlock(pr_url=_pr("octo/paused", 3).url, last_review_submitted_at=1)
    states = [_state("octo/repo", RepoSyncResult(sync_started_at=1, my_prs=(my_pr,)))]

    kept = collect_my_pr_blocks(states, [referenced, invalidated, closed_pr, paused], [Repo("octo", "paused", False)])

    assert kept == [referenced, paused]


def test_disabled_repo_blocks_match_regardless_of_name_case():
    """Verify a paused repo typed in lower case still protects canonical-case block URLs."""
    block = MyPrBlock(pr_url="https://github.com/Octo/Repo/pull/3", last_review_submitted_at=1)

    assert collect_my_pr_blocks([], [block], [Repo("octo", "repo", False)]) is None


def test_collect_blocks_returns_none_when_nothing_changes():
    request = ReviewRequest(pr=_pr("octo/repo", 2), first_observed_at=70)
    block = ReviewRequestBlock(pr_url=request.pr.url, review_requested_at=70)
    states = [_state("octo/repo", RepoSyncResult(sync_started_at=1, requests_for_my_review=(request,)))]

    assert collect_review_request_blocks(states, [block], [], now=100) is None


def test_collect_review_request_blocks_sweeps_expired_snoozes():
    """Verify an expired snooze is no longer referenced and gets dropped."""
    request = ReviewRequest(pr=_pr("octo/repo", 2), first_observed_at=70)
    expired = ReviewRequestBlock(pr_url=request.pr.url, review_requested_at=70, expire_at=50)
    states = [_state("octo/repo", RepoSyncResult(sync_started_at=1, requests_for_my_review=(request,)))]

    assert collect_review_request_blocks(states, [expired], [], now=100) == []


def test_collect_comment_blocks_deduplicates():
    comment = Comment(
        url="https://github.com/octo/repo/pull/2#discussion_r5",
        pr=_pr("octo/repo", 2),
        body="",
        author_id=2,
        author_login="bob",
        created_at=1,
    )
    block = CommentBlock(comment_url=comment.url)
    states = [_state("octo/repo", RepoSyncResult(sync_started_at=1, comments=(comment,)))]

    assert collect_comment_blocks(states, [block, block], []) == [block]
