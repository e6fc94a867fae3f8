"""Tests for GitHub API client behavior with mocked HTTP."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from myturn.config import Config
from myturn.errors import ApiError, AuthenticationError, RateLimitError, TransientNetworkError
from myturn.fetcher import Fetcher, RateLimiter
from myturn.github_client import GitHubClient


async def _no_sleep(_seconds):
    return None


def _build_client() -> GitHubClient:
    config = Config(
        token="gh-token",
        api_url="https://api.github.com",
        state_file="/tmp/my-turn-state.json",
        timeout_seconds=30,
        interval_seconds=0,
    )
    fetcher = Fetcher(RateLimiter(min_spacing_seconds=0, sleep=_no_sleep), sleep=_no_sleep)
    return GitHubClient(config=config, fetcher=fetcher)


def _response(status_code: int, payload=None, text: str = "", headers: dict | None = None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


def _pull_item(number: int, author_id: int = 7, reviewers=(), teams=()) -> dict:
    return {
        "number": number,
        "html_url": f"https://github.com/octo/repo/pull/{number}",
        "title": f"PR {number}",
        "draft": False,
        "user": {"id": author_id, "login": "author"},
        "requested_reviewers": [{"id": reviewer} for reviewer in reviewers],
        "requested_teams": [{"id": team_id, "name": name} for team_id, name in teams],
    }


def test_session_sends_auth_and_cache_busting_headers():
    """Verify every request carries the token and asks for fresh data."""
    client = _build_client()
    headers = client._session.headers

    assert headers["Authorization"] == "Bearer gh-token"
    assert headers["Accept"] == "application/vnd.github+json"
    assert headers["If-None-Match"] == ""
    assert headers["Cache-Control"] == "no-cache"


def test_list_open_pulls_parses_reviewers_and_teams():
    """Verify open pulls are parsed into typed records with requested reviewers and teams."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(200, payload=[_pull_item(5, reviewers=[1, 2], teams=[(10, "core")])])
    )

    pulls = asyncio.run(client.list_open_pulls("octo", "repo"))

    assert len(pulls) == 1
    pull = pulls[0]
    assert pull.number == 5
    assert pull.pr.url == "https://github.com/octo/repo/pull/5"
    assert pull.pr.author_id == 7
    assert pull.requested_reviewer_ids == (1, 2)
    assert pull.requested_teams[0].name == "core"
    client._session.get.assert_called_once_with(
        "https://api.github.com/repos/octo/repo/pulls",
        params={"state": "open", "page": 1, "per_page": 100},
        timeout=30,
    )


def test_list_open_pulls_exact_page_fetches_empty_next_page():
    """Verify a full page of pulls triggers one more (empty) page request."""
    client = _build_client()
    full_page = [_pull_item(number) for number in range(1, 101)]
    client._session.get = Mock(side_effect=[_response(200, payload=full_page), _response(200, payload=[])])

    pulls = asyncio.run(client.list_open_pulls("octo", "repo"))

    assert len(pulls) == 100
    assert client._session.get.call_count == 2
    assert client.calls == 2


def test_list_open_pulls_missing_fields_raise_api_error():
    """Verify a pull without an author fails instead of being misclassified."""
    client = _build_client()
    item = _pull_item(1)
    item["user"] = None
    client._session.get = Mock(return_value=_response(200, payload=[item]))

    with pytest.raises(ApiError):
        asyncio.run(client.list_open_pulls("octo", "repo"))


def test_bad_credentials_are_not_retried():
    """Verify HTTP 401 raises AuthenticationError with GitHub's message after one call."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(401, payload={"message": "Bad credentials"}))

    with pytest.raises(AuthenticationError, match="^Bad credentials$"):
        asyncio.run(client.get_authenticated_user())

    assert client._session.get.call_count == 1


def test_exhausted_rate_limit_raises_rate_limit_error():
    """Verify HTTP 403 with no remaining quota is reported as a rate limit."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(
            403,
            payload={"message": "API rate limit exceeded"},
            text="API rate limit exceeded",
            headers={"X-RateLimit-Remaining": "0"},
        )
    )

    with pytest.raises(RateLimitError):
        asyncio.run(client.list_open_pulls("octo", "repo"))

    assert client._session.get.call_count == 1


def test_server_error_is_retried_and_succeeds():
    """Verify a 5xx response is retried and a later success is returned."""
    client = _build_client()
    client._session.get = Mock(
        side_effect=[
            _response(502, text="Bad gateway"),
            _response(200, payload={"id": 3, "login": "me"}),
        ]
    )

    user = asyncio.run(client.get_authenticated_user())

    assert user.id == 3
    assert user.login == "me"
    assert client._session.get.call_count == 2


def test_network_failure_exhausts_retries():
    """Verify connection failures are retried 3 times then surface as TransientNetworkError."""
    client = _build_client()
    client._session.get = Mock(side_effect=requests.ConnectionError("connection reset"))

    with pytest.raises(TransientNetworkError):
        asyncio.run(client.list_user_teams())

    assert client._session.get.call_count == 4


def test_invalid_json_raises_api_error():
    """Verify an unparsable payload fails with ApiError."""
    client = _build_client()
    response = _response(200)
    response.json.side_effect = ValueError("invalid")
    client._session.get = Mock(return_value=response)

    with pytest.raises(ApiError, match="invalid JSON"):
        asyncio.run(client.get_authenticated_user())


def test_unexpected_list_payload_is_retried():
    """Verify a non-list page goes through the retry policy like other API errors."""
    client = _build_client()
    client._session.get = Mock(
        side_effect=[
            _response(200, payload={"message": "Server Error"}),
            _response(200, payload=[{"id": 9, "name": "core"}]),
        ]
    )

    teams = asyncio.run(client.list_user_teams())

    assert [team.name for team in teams] == ["core"]
    assert client._session.get.call_count == 2


def test_unexpected_list_payload_exhausts_retries():
    client = _build_client()
    client._session.get = Mock(return_value=_response(200, payload={"message": "Server Error"}))

    with pytest.raises(ApiError, match="unexpected payload shape"):
        asyncio.run(client.list_user_teams())

    assert client._session.get.call_count == 4


def test_list_reviews_skips_reviews_without_user():
    """Verify reviews by deleted accounts are ignored."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(
            200,
            payload=[
                {"id": 1, "user": None, "state": "APPROVED", "body": "", "submitted_at": "2026-01-01T00:00:00Z"},
                {
                    "id": 2,
                    "user": {"id": 9},
                    "state": "COMMENTED",
                    "body": "nit",
                    "submitted_at": "1970-01-01T00:00:01Z",
                },
            ],
        )
    )

    reviews = asyncio.run(client.list_reviews("octo", "repo", 5))

    assert [review.id for review in reviews] == [2]
    assert reviews[0].submitted_at == 1000
    assert reviews[0].state == "COMMENTED"


def test_list_issue_events_reads_requested_reviewer():
    """Verify review_requested events keep the reviewer id and time in millis."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(
            200,
            payload=[
                {"event": "review_requested", "created_at": "1970-01-01T00:00:02Z", "requested_reviewer": {"id": 4}},
                {"event": "labeled", "created_at": "1970-01-01T00:00:03Z"},
            ],
        )
    )

    events = asyncio.run(client.list_issue_events("octo", "repo", 5))

    assert events[0].event == "review_requested"
    assert events[0].created_at == 2000
    assert events[0].requested_reviewer_id == 4
    assert events[1].requested_reviewer_id is None


def test_list_notifications_keeps_relevant_reasons_only():
    """Verify notifications are requested since the cut-off and filtered by reason."""
    client = _build_client()

    def notification(reason):
        return {
            "reason": reason,
            "subject": {
                "type": "PullRequest",
                "title": "Fix bug",
                "url": "https://api.github.com/repos/octo/repo/pulls/12",
            },
            "repository": {"name": "repo", "owner": {"login": "octo"}},
        }

    client._session.get = Mock(
        return_value=_response(200, payload=[notification("mention"), notification("subscribed")])
    )

    notifications = asyncio.run(client.list_notifications(since=0))

    assert len(notifications) == 1
    assert notifications[0].repo_full_name == "octo/repo"
    assert notifications[0].pr_number == 12
    params = client._session.get.call_args.kwargs["params"]
    assert params["since"] == "1970-01-01T00:00:00Z"
    assert params["participating"] == "true"
    assert params["per_page"] == 50


def test_list_review_comments_parses_reply_chain():
    """Verify review comments keep their reply parent and PR url."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(
            200,
            payload=[
                {
                    "id": 11,
                    "user": {"id": 1, "login": "alice"},
                    "body": "why?",
                    "created_at": "1970-01-01T00:00:01Z",
                    "html_url": "https://github.com/octo/repo/pull/5#discussion_r11",
                },
                {
                    "id": 12,
                    "in_reply_to_id": 11,
                    "user": {"id": 2, "login": "bob"},
                    "body": "because",
                    "created_at": "1970-01-01T00:00:02Z",
                    "html_url": "https://github.com/octo/repo/pull/5#discussion_r12",
                },
            ],
        )
    )

    comments = asyncio.run(client.list_review_comments("octo", "repo", 5))

    assert comments[0].in_reply_to_id is None
    assert comments[1].in_reply_to_id == 11
    assert comments[1].pr_url == "https://github.com/octo/repo/pull/5"
    assert comments[1].user_login == "bob"


def test_list_issue_comment_reactions_parses_users():
    """Verify reactions carry the reacting user's id."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(200, payload=[{"user": {"id": 3}, "content": "+1"}, {"user": None, "content": "eyes"}])
    )

    reactions = asyncio.run(client.list_issue_comment_reactions("octo", "repo", 99))

    assert [(reaction.user_id, reaction.content) for reaction in reactions] == [(3, "+1")]
    assert client._session.get.call_args.args[0] == "https://api.github.com/repos/octo/repo/issues/comments/99/reactions"
