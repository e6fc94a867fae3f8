"""Configuration parsing and validation for the my-turn PR review monitor."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .errors import AuthenticationError, ConfigurationError

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_STATE_FILE = "~/.my-turn/state.json"
DEFAULT_IGNORE_COMMENTS_DAYS = 14

_MILLIS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the sync host."""

    token: str
    api_url: str
    state_file: str
    timeout_seconds: int
    interval_seconds: int


@dataclass(frozen=True)
class Settings:
    """User settings that shape turn detection and status aggregation.

    Attributes:
        no_pending_reviews_to_be_merge_ready: Treat any still-requested
            reviewer on my PR as blocking, so the PR is not my turn yet.
        comment_equals_changes_requested: Promote ``COMMENTED`` reviews on my
            PRs to ``CHANGES_REQUESTED``.
        single_comment_is_review: Treat a review request that vanished because
            I left a single comment as fulfilled.
        ignore_comments_more_than_x_days_old: Comment age threshold in days;
            ``0`` disables comment tracking entirely.
    """

    no_pending_reviews_to_be_merge_ready: bool = False
    comment_equals_changes_requested: bool = False
    single_comment_is_review: bool = False
    ignore_comments_more_than_x_days_old: int = DEFAULT_IGNORE_COMMENTS_DAYS

    def __post_init__(self) -> None:
        if self.ignore_comments_more_than_x_days_old < 0:
            raise ConfigurationError(
                "Invalid value for 'ignore_comments_more_than_x_days_old': "
                "expected an integer greater than or equal to 0."
            )

    @property
    def comments_enabled(self) -> bool:
        return self.ignore_comments_more_than_x_days_old > 0

    def min_comment_created_at(self, now: int) -> Optional[int]:
        """Return the oldest comment creation time (unix millis) still considered.

        Returns ``None`` when comment tracking is disabled.
        """
        if not self.comments_enabled:
            return None
        return now - self.ignore_comments_more_than_x_days_old * _MILLIS_PER_DAY


def load_config(
    state_file: str = DEFAULT_STATE_FILE,
    api_url: str = DEFAULT_API_URL,
    timeout_seconds: int = 30,
    interval_seconds: int = 0,
) -> Config:
    """Build and validate application configuration.

    Args:
        state_file: Path of the JSON file holding repos, repo states and blocks.
        api_url: Base URL of the GitHub REST API.
        timeout_seconds: Per-request timeout in seconds.
        interval_seconds: Seconds between sync cycles; ``0`` runs a single cycle.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If the timeout or interval is out of range.
        AuthenticationError: If ``GITHUB_TOKEN`` is not configured.
    """
    if timeout_seconds <= 0:
        raise ConfigurationError("Invalid value for 'timeout': expected an integer greater than 0.")
    if interval_seconds < 0:
        raise ConfigurationError("Invalid value for 'interval': expected an integer greater than or equal to 0.")

    token: str = os.getenv("GITHUB_TOKEN", "").strip()
    if not token:
        raise AuthenticationError(
            "Missing required GitHub personal access token. "
            "Set the 'GITHUB_TOKEN' environment variable before running a sync."
        )

    return Config(
        token=token,
        api_url=api_url.rstrip("/"),
        state_file=os.path.expanduser(state_file),
        timeout_seconds=timeout_seconds,
        interval_seconds=interval_seconds,
    )
