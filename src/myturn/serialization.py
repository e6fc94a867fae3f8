"""Conversion between domain records and plain JSON-compatible dicts.

Stored values are plain records; these functions rebuild the immutable
dataclasses explicitly. Unknown keys are ignored and missing optional keys
fall back to defaults, so state written by older versions still loads.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

from .config import Settings
from .models import (
    Comment,
    CommentBlock,
    MyPR,
    MyPrBlock,
    PullRequest,
    ReasonNotIgnored,
    Repo,
    RepoState,
    RepoSyncResult,
    ReviewerState,
    ReviewRequest,
    ReviewRequestBlock,
    ReviewState,
)


def to_dict(record: Any) -> Dict[str, Any]:
    """Convert any domain dataclass into a JSON-compatible dict."""
    return _plain(asdict(record))


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, (ReviewState, ReasonNotIgnored)):
        return value.value
    return value


def repo_from_dict(data: Dict[str, Any]) -> Repo:
    return Repo(
        owner=str(data["owner"]),
        name=str(data["name"]),
        monitoring_enabled=bool(data.get("monitoring_enabled", True)),
    )


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    defaults = Settings()
    return Settings(
        no_pending_reviews_to_be_merge_ready=bool(
            data.get("no_pending_reviews_to_be_merge_ready", defaults.no_pending_reviews_to_be_merge_ready)
        ),
        comment_equals_changes_requested=bool(
            data.get("comment_equals_changes_requested", defaults.comment_equals_changes_requested)
        ),
        single_comment_is_review=bool(data.get("single_comment_is_review", defaults.single_comment_is_review)),
        ignore_comments_more_than_x_days_old=int(
            data.get("ignore_comments_more_than_x_days_old", defaults.ignore_comments_more_than_x_days_old)
        ),
    )


def pull_request_from_dict(data: Dict[str, Any]) -> PullRequest:
    return PullRequest(
        url=str(data["url"]),
        title=str(data.get("title") or ""),
        author_id=data.get("author_id"),
        author_login=data.get("author_login"),
        is_draft=bool(data.get("is_draft", False)),
    )


def review_request_from_dict(data: Dict[str, Any]) -> ReviewRequest:
    reason = data.get("reason")
    return ReviewRequest(
        pr=pull_request_from_dict(data["pr"]),
        first_observed_at=data.get("first_observed_at"),
        reason=ReasonNotIgnored(reason) if reason else None,
        team_name=data.get("team_name"),
    )


def my_pr_from_dict(data: Dict[str, Any]) -> MyPR:
    return MyPR(
        pr=pull_request_from_dict(data["pr"]),
        reviewer_states=tuple(
            ReviewerState(
                reviewer_id=int(state["reviewer_id"]),
                state=ReviewState(state["state"]),
                submitted_at=int(state.get("submitted_at") or 0),
            )
            for state in data.get("reviewer_states") or []
        ),
    )


def comment_from_dict(data: Dict[str, Any]) -> Comment:
    return Comment(
        url=str(data["url"]),
        pr=pull_request_from_dict(data["pr"]),
        body=str(data.get("body") or ""),
        author_id=int(data["author_id"]),
        author_login=str(data.get("author_login") or ""),
        created_at=int(data["created_at"]),
    )


def repo_sync_result_from_dict(data: Dict[str, Any]) -> RepoSyncResult:
    return RepoSyncResult(
        sync_started_at=int(data["sync_started_at"]),
        requests_for_my_review=tuple(review_request_from_dict(v) for v in data.get("requests_for_my_review") or []),
        my_prs=tuple(my_pr_from_dict(v) for v in data.get("my_prs") or []),
        comments=tuple(comment_from_dict(v) for v in data.get("comments") or []),
        error_msg=data.get("error_msg"),
        ignored_comments_more_than_x_days_old=int(data.get("ignored_comments_more_than_x_days_old") or 0),
    )


def _optional_result(data: Optional[Dict[str, Any]]) -> Optional[RepoSyncResult]:
    return repo_sync_result_from_dict(data) if data else None


def repo_state_from_dict(data: Dict[str, Any]) -> RepoState:
    return RepoState(
        full_name=str(data["full_name"]),
        last_sync_result=_optional_result(data.get("last_sync_result")),
        last_successful_sync_result=_optional_result(data.get("last_successful_sync_result")),
    )


def my_pr_block_from_dict(data: Dict[str, Any]) -> MyPrBlock:
    return MyPrBlock(pr_url=str(data["pr_url"]), last_review_submitted_at=int(data["last_review_submitted_at"]))


def review_request_block_from_dict(data: Dict[str, Any]) -> ReviewRequestBlock:
    expire_at = data.get("expire_at")
    return ReviewRequestBlock(
        pr_url=str(data["pr_url"]),
        review_requested_at=int(data.get("review_requested_at") or 0),
        expire_at=int(expire_at) if expire_at is not None else None,
    )


def comment_block_from_dict(data: Dict[str, Any]) -> CommentBlock:
    return CommentBlock(comment_url=str(data["comment_url"]))
