"""Domain models for GitHub turn detection.

All timestamps are unix milliseconds. Records are immutable; sequences are
tuples so that results computed from identical inputs compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Tuple

from .errors import ConfigurationError


class ReviewState(str, Enum):
    """Most authoritative review status of one reviewer on one PR."""

    REQUESTED = "REQUESTED"
    COMMENTED = "COMMENTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"


class MyPRReviewStatus(str, Enum):
    # NONE: the ball is still in the reviewers' court.
    NONE = "NONE"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    APPROVED_AND_COMMENTED = "APPROVED_AND_COMMENTED"
    COMMENTED = "COMMENTED"


class ReasonNotIgnored(str, Enum):
    """Why a review request that GitHub no longer reports is still tracked."""

    LIKELY_JUST_SINGLE_COMMENT = "LIKELY_JUST_SINGLE_COMMENT"


class SyncStatus(IntEnum):
    """Severity signal, ordered from least to most severe."""

    GREEN = 0
    YELLOW = 1
    RED = 2
    GREY = 3


@dataclass(frozen=True, slots=True)
class Repo:
    """A monitored repository; identity is ``owner/name``."""

    owner: str
    name: str
    monitoring_enabled: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_full_name(cls, full_name: str, monitoring_enabled: bool = True) -> "Repo":
        owner, sep, name = full_name.strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ConfigurationError(f"Repository name must look like 'owner/name' but got '{full_name}'.")
        return cls(owner=owner, name=name, monitoring_enabled=monitoring_enabled)


@dataclass(frozen=True, slots=True)
class GitHubUser:
    """The watched user as resolved at the start of a sync cycle."""

    id: int
    login: str
    team_ids: Tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class PullRequest:
    """A pull request reference; identity is ``url``."""

    url: str
    title: str
    author_id: Optional[int] = None
    author_login: Optional[str] = None
    is_draft: bool = False


@dataclass(frozen=True, slots=True)
class ReviewRequest:
    """An open ask for me (or my team) to review ``pr``.

    ``first_observed_at`` is ``None`` for team review requests, which carry
    ``team_name`` instead.
    """

    pr: PullRequest
    first_observed_at: Optional[int]
    reason: Optional[ReasonNotIgnored] = None
    team_name: Optional[str] = None

    @property
    def is_team_request(self) -> bool:
        return self.team_name is not None


@dataclass(frozen=True, slots=True)
class ReviewerState:
    reviewer_id: int
    state: ReviewState
    # 0 for REQUESTED.
    submitted_at: int = 0


@dataclass(frozen=True, slots=True)
class MyPR:
    """A PR authored by me, aggregated across all other reviewers."""

    pr: PullRequest
    reviewer_states: Tuple[ReviewerState, ...] = ()

    @property
    def last_review_submitted_at(self) -> int:
        return max((state.submitted_at for state in self.reviewer_states), default=0)


@dataclass(frozen=True, slots=True)
class Comment:
    """A review-thread or PR-level comment waiting for my reaction."""

    url: str
    pr: PullRequest
    body: str
    author_id: int
    author_login: str
    created_at: int


@dataclass(frozen=True, slots=True)
class MyPrBlock:
    pr_url: str
    last_review_submitted_at: int


@dataclass(frozen=True, slots=True)
class ReviewRequestBlock:
    """Suppresses one review request instance; with ``expire_at`` it is a snooze."""

    pr_url: str
    # 0 for team review requests.
    review_requested_at: int
    expire_at: Optional[int] = None


@dataclass(frozen=True, slots=True)
class CommentBlock:
    comment_url: str


@dataclass(frozen=True, slots=True)
class RepoSyncResult:
    """Outcome of one repo sync attempt, successful or failed."""

    sync_started_at: int
    requests_for_my_review: Tuple[ReviewRequest, ...] = ()
    my_prs: Tuple[MyPR, ...] = ()
    comments: Tuple[Comment, ...] = ()
    error_msg: Optional[str] = None
    ignored_comments_more_than_x_days_old: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error_msg is None


@dataclass(frozen=True, slots=True)
class RepoState:
    """Per-repo memory carried across sync cycles."""

    full_name: str
    last_sync_result: Optional[RepoSyncResult] = None
    last_successful_sync_result: Optional[RepoSyncResult] = None


# Fetched payloads. These model only the GitHub fields turn detection needs.


@dataclass(frozen=True, slots=True)
class Team:
    id: int
    name: str


@dataclass(frozen=True, slots=True)
class OpenPull:
    """An open pull request as returned by the pulls listing."""

    number: int
    pr: PullRequest
    requested_reviewer_ids: Tuple[int, ...] = ()
    requested_teams: Tuple[Team, ...] = ()


@dataclass(frozen=True, slots=True)
class Review:
    id: int
    user_id: int
    state: str
    body: str
    submitted_at: Optional[int]


@dataclass(frozen=True, slots=True)
class IssueEvent:
    event: str
    created_at: int
    requested_reviewer_id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class Notification:
    reason: str
    subject_type: str
    subject_title: str
    subject_url: str
    repo_owner: str
    repo_name: str

    @property
    def repo_full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    @property
    def pr_number(self) -> int:
        return int(self.subject_url.rstrip("/").rsplit("/", 1)[-1])


@dataclass(frozen=True, slots=True)
class DiscussionComment:
    """A review comment (threaded via ``in_reply_to_id``) or an issue comment."""

    id: int
    user_id: int
    user_login: str
    body: str
    created_at: int
    html_url: str
    in_reply_to_id: Optional[int] = None

    @property
    def pr_url(self) -> str:
        return self.html_url.split("#", 1)[0]


@dataclass(frozen=True, slots=True)
class Reaction:
    user_id: int
    content: str
