"""Turn detection: is it my turn to act on a PR, review request or comment?

Every function here is pure. Callers fetch data through the GitHub client and
pass it in together with an explicit ``now`` (unix millis), so identical
inputs always produce identical verdicts.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence

from .blocks import BlockSet, comment_blocked_by, my_pr_blocked_by, review_request_blocked_by
from .config import Settings
from .errors import DataInconsistencyError
from .models import (
    Comment,
    DiscussionComment,
    GitHubUser,
    IssueEvent,
    MyPR,
    MyPRReviewStatus,
    OpenPull,
    PullRequest,
    Reaction,
    ReasonNotIgnored,
    RepoSyncResult,
    Review,
    ReviewerState,
    ReviewRequest,
    ReviewState,
)

logger = logging.getLogger(__name__)

_SUBMITTED_REVIEW_STATES = {
    ReviewState.COMMENTED.value,
    ReviewState.CHANGES_REQUESTED.value,
    ReviewState.APPROVED.value,
}

# Review requests


def is_review_requested_from(pull: OpenPull, user: GitHubUser) -> bool:
    return user.id in pull.requested_reviewer_ids


def latest_review_requested_at(events: Iterable[IssueEvent], reviewer_id: int) -> Optional[int]:
    """Return the time of the most recent ``review_requested`` event naming ``reviewer_id``."""
    timestamps = [
        event.created_at
        for event in events
        if event.event == "review_requested" and event.requested_reviewer_id == reviewer_id
    ]
    return max(timestamps, default=None)


def previous_request_for(previous: Optional[RepoSyncResult], pr_url: str) -> Optional[ReviewRequest]:
    """Return last cycle's personal review request for ``pr_url``, if any."""
    if previous is None:
        return None
    for request in previous.requests_for_my_review:
        if request.pr.url == pr_url and not request.is_team_request:
            return request
    return None


def resolve_first_observed_at(
    requested_at: Optional[int],
    previous_request: Optional[ReviewRequest],
    now: int,
) -> int:
    """Pick the best-known request time: exact event, then last cycle's value, then now."""
    if requested_at:
        return requested_at
    if previous_request is not None and previous_request.first_observed_at:
        return previous_request.first_observed_at
    return now


def build_review_request(
    pull: OpenPull,
    events: Sequence[IssueEvent],
    user: GitHubUser,
    previous: Optional[RepoSyncResult],
    now: int,
) -> ReviewRequest:
    first_observed_at = resolve_first_observed_at(
        latest_review_requested_at(events, user.id),
        previous_request_for(previous, pull.pr.url),
        now,
    )
    return ReviewRequest(pr=pull.pr, first_observed_at=first_observed_at)


def build_team_review_request(pull: OpenPull, user: GitHubUser) -> Optional[ReviewRequest]:
    """Return one review request for ``pull`` if any of my teams is requested.

    Several matching teams still produce a single request, tagged with the
    last matching team.
    """
    team_name: Optional[str] = None
    for team in pull.requested_teams:
        if team.id in user.team_ids:
            team_name = team.name
    if team_name is None:
        return None
    return ReviewRequest(pr=pull.pr, first_observed_at=None, team_name=team_name)


def single_comment_candidates(
    reviews: Sequence[Review],
    user_id: int,
    since: Optional[int],
) -> Optional[List[Review]]:
    """Return my reviews since ``since`` that could be a lone "Add single comment".

    GitHub drops my review request as soon as I post a single comment. Returns
    ``None`` when I posted nothing since, or posted a real review (a body or a
    state other than ``COMMENTED``). Otherwise the caller must confirm each
    candidate carries exactly one review comment.
    """
    mine = [
        review
        for review in reviews
        if review.user_id == user_id
        and review.submitted_at is not None
        and review.submitted_at > (since or 0)
    ]
    if not mine:
        return None
    for review in mine:
        if review.body or review.state != ReviewState.COMMENTED.value:
            return None
    return mine


def is_lone_comment_review(review: Review, comment_count: int) -> bool:
    return not review.body and review.state == ReviewState.COMMENTED.value and comment_count == 1


def build_single_comment_request(
    pull: OpenPull,
    requested_at: Optional[int],
    previous_request: Optional[ReviewRequest],
    now: int,
) -> ReviewRequest:
    return ReviewRequest(
        pr=pull.pr,
        first_observed_at=resolve_first_observed_at(requested_at, previous_request, now),
        reason=ReasonNotIgnored.LIKELY_JUST_SINGLE_COMMENT,
    )


def review_request_is_my_turn(
    request: ReviewRequest,
    blocks: BlockSet,
    settings: Settings,
    now: int,
) -> bool:
    if settings.single_comment_is_review and request.reason is ReasonNotIgnored.LIKELY_JUST_SINGLE_COMMENT:
        return False
    return not any(review_request_blocked_by(request, block, now) for block in blocks.review_request_blocks)


# My PRs


def fold_reviewer_state(reviews: Sequence[Review]) -> Optional[ReviewState]:
    """Fold one reviewer's chronological reviews into a single state.

    The first review seeds the state. Later reviews override it only when
    they approve or request changes, so a later comment never demotes a
    resolved state. This matches what the GitHub UI shows.
    """
    result: Optional[ReviewState] = None
    for review in reviews:
        state = ReviewState(review.state)
        if result is None or state in (ReviewState.APPROVED, ReviewState.CHANGES_REQUESTED):
            result = state
    return result


def build_my_pr(pull: OpenPull, reviews: Sequence[Review], my_user_id: int) -> MyPR:
    """Aggregate requested reviewers and submitted reviews into a ``MyPR``.

    An open review request for a reviewer takes precedence over their review
    history. My own reviews are excluded.
    """
    submitted = sorted(
        (review for review in reviews if review.state in _SUBMITTED_REVIEW_STATES and review.submitted_at is not None),
        key=lambda review: review.submitted_at or 0,
    )
    reviews_by_reviewer: Dict[int, List[Review]] = {}
    for review in submitted:
        reviews_by_reviewer.setdefault(review.user_id, []).append(review)

    reviewer_ids = set(reviews_by_reviewer) | set(pull.requested_reviewer_ids)
    reviewer_ids.discard(my_user_id)

    states: List[ReviewerState] = []
    for reviewer_id in sorted(reviewer_ids):
        if reviewer_id in pull.requested_reviewer_ids:
            states.append(ReviewerState(reviewer_id=reviewer_id, state=ReviewState.REQUESTED))
            continue
        reviewer_reviews = reviews_by_reviewer[reviewer_id]
        states.append(
            ReviewerState(
                reviewer_id=reviewer_id,
                state=fold_reviewer_state(reviewer_reviews) or ReviewState.COMMENTED,
                submitted_at=reviewer_reviews[-1].submitted_at or 0,
            )
        )
    return MyPR(pr=pull.pr, reviewer_states=tuple(states))


def my_pr_status(my_pr: MyPR, settings: Settings) -> MyPRReviewStatus:
    """Compute the review status of my PR, ignoring blocks.

    When every reviewer only commented the PR is treated as
    ``CHANGES_REQUESTED``. GitHub does not define what such a state means;
    this is a policy assumption.
    """
    states = [
        ReviewState.CHANGES_REQUESTED
        if state.state is ReviewState.COMMENTED and settings.comment_equals_changes_requested
        else state.state
        for state in my_pr.reviewer_states
    ]
    if not states:
        return MyPRReviewStatus.NONE

    if ReviewState.CHANGES_REQUESTED in states:
        return MyPRReviewStatus.CHANGES_REQUESTED

    if ReviewState.REQUESTED in states and settings.no_pending_reviews_to_be_merge_ready:
        return MyPRReviewStatus.NONE

    if all(state is ReviewState.COMMENTED for state in states):
        return MyPRReviewStatus.CHANGES_REQUESTED

    if ReviewState.COMMENTED in states:
        if ReviewState.APPROVED in states:
            return MyPRReviewStatus.APPROVED_AND_COMMENTED
        return MyPRReviewStatus.COMMENTED

    if all(state is ReviewState.REQUESTED for state in states):
        return MyPRReviewStatus.NONE

    return MyPRReviewStatus.APPROVED


def my_pr_is_my_turn(my_pr: MyPR, blocks: BlockSet, settings: Settings) -> bool:
    if any(my_pr_blocked_by(my_pr, block) for block in blocks.my_pr_blocks):
        return False
    return my_pr_status(my_pr, settings) not in (MyPRReviewStatus.NONE, MyPRReviewStatus.COMMENTED)


# Comments


def mentions(body: str, login: str) -> bool:
    """Whether ``body`` @-mentions ``login`` as a whole handle."""
    if not login:
        return False
    pattern = r"(?<![A-Za-z0-9_])@" + re.escape(login) + r"(?![A-Za-z0-9-])"
    return re.search(pattern, body or "", re.IGNORECASE) is not None


def _thread_root(comment: DiscussionComment, root_by_id: Dict[int, int]) -> int:
    if comment.in_reply_to_id is None:
        return comment.id
    root = root_by_id.get(comment.in_reply_to_id)
    if root is None:
        raise DataInconsistencyError(
            f"Reply {comment.id} refers to comment {comment.in_reply_to_id} which was not fetched"
        )
    return root


def group_review_threads(comments: Sequence[DiscussionComment]) -> List[List[DiscussionComment]]:
    """Group review comments by reply chain, each thread ordered by creation time.

    Replies whose parent is missing from the fetched comments are dropped.
    """
    root_by_id: Dict[int, int] = {}
    threads: Dict[int, List[DiscussionComment]] = {}
    for comment in sorted(comments, key=lambda c: c.id):
        try:
            root = _thread_root(comment, root_by_id)
        except DataInconsistencyError as exc:
            logger.warning("Dropping orphaned review comment: %s", exc, extra={"comment_id": comment.id})
            continue
        root_by_id[comment.id] = root
        threads.setdefault(root, []).append(comment)
    return [sorted(thread, key=lambda c: (c.created_at, c.id)) for _, thread in sorted(threads.items())]


def _recent(comments: Iterable[DiscussionComment], min_created_at: Optional[int]) -> List[DiscussionComment]:
    if min_created_at is None:
        return list(comments)
    return [comment for comment in comments if comment.created_at >= min_created_at]


def find_turn_comment_in_thread(
    thread: Sequence[DiscussionComment],
    user: GitHubUser,
    min_created_at: Optional[int],
) -> Optional[DiscussionComment]:
    """Return the comment making it my turn in a review thread, if any.

    A comment from someone else makes it my turn when I already posted in the
    thread before it, or when it mentions me. Any later comment of mine
    resolves it.
    """
    i_commented = False
    candidate: Optional[DiscussionComment] = None
    for comment in _recent(thread, min_created_at):
        if comment.user_id == user.id:
            i_commented = True
            candidate = None
        elif i_commented or mentions(comment.body, user.login):
            candidate = comment
    return candidate


def find_turn_issue_comment(
    comments: Sequence[DiscussionComment],
    user: GitHubUser,
    min_created_at: Optional[int],
) -> Optional[DiscussionComment]:
    """Return the PR-level comment making it my turn, if any.

    Only mentions count here: PR-level conversations are full of automation.
    """
    candidate: Optional[DiscussionComment] = None
    ordered = sorted(_recent(comments, min_created_at), key=lambda c: (c.created_at, c.id))
    for comment in ordered:
        if comment.user_id == user.id:
            candidate = None
        elif mentions(comment.body, user.login):
            candidate = comment
    return candidate


def is_acknowledged(reactions: Iterable[Reaction], user_id: int) -> bool:
    """A reaction of mine on a comment counts as having answered it."""
    return any(reaction.user_id == user_id for reaction in reactions)


def to_comment(comment: DiscussionComment, pr_title: str) -> Comment:
    return Comment(
        url=comment.html_url,
        pr=PullRequest(url=comment.pr_url, title=pr_title),
        body=comment.body,
        author_id=comment.user_id,
        author_login=comment.user_login,
        created_at=comment.created_at,
    )


def comment_is_my_turn(comment: Comment, blocks: BlockSet, settings: Settings, now: int) -> bool:
    min_created_at = settings.min_comment_created_at(now)
    if min_created_at is None or comment.created_at < min_created_at:
        return False
    return not any(comment_blocked_by(comment, block) for block in blocks.comment_blocks)
