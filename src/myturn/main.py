"""Application entry point for the my-turn PR review monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from typing import Optional, Sequence

from .blocks import block_for_comment, block_for_my_pr, block_for_review_request
from .cli import parse_args
from .config import Config, Settings, load_config
from .errors import ApiError, AuthenticationError, ConfigurationError
from .github_client import GitHubClient
from .models import Repo
from .status import collect_attention_items, render_report
from .store import JsonFileBackend, KeyValueStore
from .sync import SyncRunner, now_millis

logger = logging.getLogger(__name__)

_MILLIS_PER_HOUR = 60 * 60 * 1000


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_repo_changes(store: KeyValueStore, args: argparse.Namespace) -> None:
    for full_name in args.repo:
        store.add_repo(Repo.from_full_name(full_name))
    for full_name in args.enable_repo:
        store.set_monitoring_enabled(full_name, True)
    for full_name in args.disable_repo:
        store.set_monitoring_enabled(full_name, False)


def apply_settings_overrides(store: KeyValueStore, args: argparse.Namespace) -> Settings:
    """Persist settings given on the command line and return the effective settings."""
    settings = store.get_settings()
    overrides = {
        "no_pending_reviews_to_be_merge_ready": args.no_pending_reviews_to_be_merge_ready,
        "comment_equals_changes_requested": args.comment_equals_changes_requested,
        "single_comment_is_review": args.single_comment_is_review,
        "ignore_comments_more_than_x_days_old": args.ignore_comments_older_than_days,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if overrides:
        settings = replace(settings, **overrides)
        store.save_settings(settings)
    return settings


def _warn_snooze_ignored(url: str, snooze_hours: Optional[int]) -> None:
    if snooze_hours:
        logger.warning(
            "Only review requests can be snoozed, dismissing permanently",
            extra={"url": url, "snooze_hours": snooze_hours},
        )


def dismiss(store: KeyValueStore, url: str, now: int, snooze_hours: Optional[int] = None) -> None:
    """Block the signal at ``url`` as it was seen in the last successful sync.

    Raises:
        ConfigurationError: If no review request, PR or comment has that URL.
    """
    for state in store.get_repo_states().values():
        result = state.last_successful_sync_result
        if result is None:
            continue
        for request in result.requests_for_my_review:
            if request.pr.url == url:
                expire_at = now + snooze_hours * _MILLIS_PER_HOUR if snooze_hours else None
                store.add_review_request_block(block_for_review_request(request, expire_at=expire_at))
                logger.info("Dismissed review request", extra={"url": url, "expire_at": expire_at})
                return
        for my_pr in result.my_prs:
            if my_pr.pr.url == url:
                _warn_snooze_ignored(url, snooze_hours)
                store.add_my_pr_block(block_for_my_pr(my_pr))
                logger.info("Dismissed pull request", extra={"url": url})
                return
        for comment in result.comments:
            if comment.url == url:
                _warn_snooze_ignored(url, snooze_hours)
                store.add_comment_block(block_for_comment(comment))
                logger.info("Dismissed comment", extra={"url": url})
                return
    raise ConfigurationError(f"Nothing to dismiss at '{url}' in the last sync results.")


async def run_sync(config: Config, store: KeyValueStore) -> int:
    """Run one cycle, or cycles every ``config.interval_seconds``, and print reports.

    When polling, a cycle that fails with an ``ApiError`` (rate limit or
    exhausted retries) is logged and retried on the next tick; authentication
    errors still end the run.

    Returns:
        ``4`` when the last cycle hit the GitHub rate limit or failed with an
        API error, ``0`` otherwise.
    """
    runner = SyncRunner(GitHubClient(config=config), store)
    api_failed = False
    try:
        while True:
            try:
                report = await runner.try_sync()
            except ApiError as exc:
                if config.interval_seconds == 0:
                    raise
                logger.error("Sync failed, retrying on the next cycle: %s", exc)
                api_failed = True
                report = None
            if report is not None:
                api_failed = report.rate_limited
                now = now_millis()
                items = collect_attention_items(
                    store.get_repos(),
                    report.repo_states,
                    store.get_blocks(),
                    store.get_settings(),
                    now,
                    report.duration_millis,
                )
                print(render_report(report.status, items, report.repo_states))
                print(f"\n{report.calls} GitHub API calls in {report.duration_millis / 1000:.1f}s.")
            if config.interval_seconds == 0:
                break
            await asyncio.sleep(config.interval_seconds)
    finally:
        await runner.drain()
    return 4 if api_failed else 0


def orchestrate_sync(argv: Optional[Sequence[str]] = None) -> int:
    """Run the end-to-end flow and map failures to exit codes.

    Exit codes:
        0: Success.
        1: Unexpected error.
        2: Configuration or CLI validation error.
        3: Authentication error.
        4: GitHub API error, including rate limiting.
    """
    try:
        args = parse_args(argv)
        configure_logging(args.verbose)

        config: Optional[Config] = None
        if args.no_sync:
            store = KeyValueStore(JsonFileBackend(os.path.expanduser(args.state_file)))
        else:
            config = load_config(
                state_file=args.state_file,
                api_url=args.api_url,
                timeout_seconds=args.timeout,
                interval_seconds=args.interval,
            )
            store = KeyValueStore(JsonFileBackend(config.state_file))

        apply_repo_changes(store, args)
        apply_settings_overrides(store, args)
        for url in args.dismiss:
            dismiss(store, url, now_millis(), args.snooze_hours)

        if config is None:
            return 0
        return asyncio.run(run_sync(config, store))
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except AuthenticationError as exc:
        logger.error("Authentication error: %s", exc)
        return 3
    except ApiError as exc:
        logger.error("GitHub API error: %s", exc)
        return 4
    except Exception:
        logger.exception("Unexpected error while syncing")
        return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    return orchestrate_sync(argv)


if __name__ == "__main__":
    sys.exit(main())
