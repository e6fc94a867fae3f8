"""Command-line argument parsing for the my-turn PR review monitor."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from .config import DEFAULT_API_URL, DEFAULT_STATE_FILE


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Args:
        value: Raw command-line argument value.

    Returns:
        The validated positive integer.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("must be greater than or equal to 0")

    return parsed


def _repo_full_name(value: str) -> str:
    owner, _, name = value.strip().partition("/")
    if not owner or not name:
        raise argparse.ArgumentTypeError("must look like OWNER/NAME")
    return f"{owner}/{name}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for a sync run.

    Settings flags default to ``None``, meaning "keep the stored value".

    Returns:
        Parsed CLI arguments.
    """
    parser = argparse.ArgumentParser(
        prog="my-turn",
        description=(
            "Watch GitHub repositories and report every pull request, review "
            "request and comment where it is your turn to act."
        ),
    )

    repos = parser.add_argument_group("repositories")
    repos.add_argument(
        "--repo",
        action="append",
        default=[],
        type=_repo_full_name,
        metavar="OWNER/NAME",
        help="Repository to monitor (repeatable).",
    )
    repos.add_argument(
        "--disable-repo",
        action="append",
        default=[],
        type=_repo_full_name,
        metavar="OWNER/NAME",
        help="Pause monitoring of a repository, keeping its dismissals (repeatable).",
    )
    repos.add_argument(
        "--enable-repo",
        action="append",
        default=[],
        type=_repo_full_name,
        metavar="OWNER/NAME",
        help="Resume monitoring of a paused repository (repeatable).",
    )

    dismissals = parser.add_argument_group("dismissals")
    dismissals.add_argument(
        "--dismiss",
        action="append",
        default=[],
        metavar="URL",
        help="Dismiss the PR, review request or comment at URL from the last results (repeatable).",
    )
    dismissals.add_argument(
        "--snooze-hours",
        type=_positive_int,
        default=None,
        help="Make review request dismissals expire after this many hours.",
    )

    settings = parser.add_argument_group("settings")
    settings.add_argument(
        "--no-pending-reviews-to-be-merge-ready",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Do not treat my PR as actionable while a requested reviewer has not reviewed yet.",
    )
    settings.add_argument(
        "--comment-equals-changes-requested",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Treat a commented review on my PR as a change request.",
    )
    settings.add_argument(
        "--single-comment-is-review",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Treat leaving a single comment as fulfilling a review request.",
    )
    settings.add_argument(
        "--ignore-comments-older-than-days",
        type=_non_negative_int,
        default=None,
        help="Ignore comments older than this many days; 0 disables comment tracking (default: 14).",
    )

    parser.add_argument(
        "--state-file",
        default=DEFAULT_STATE_FILE,
        help=f"JSON file holding repos, results and dismissals (default: {DEFAULT_STATE_FILE}).",
    )
    parser.add_argument(
        "--api-url",
        default=DEFAULT_API_URL,
        help=f"GitHub REST API base URL (default: {DEFAULT_API_URL}).",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_int,
        default=30,
        help="Per-request timeout in seconds (default: 30).",
    )
    parser.add_argument(
        "--interval",
        type=_non_negative_int,
        default=0,
        help="Seconds between sync cycles; 0 runs a single cycle (default: 0).",
    )
    parser.add_argument(
        "--no-sync",
        action="store_true",
        help="Only apply repository, dismissal and settings changes.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser.parse_args(argv)
