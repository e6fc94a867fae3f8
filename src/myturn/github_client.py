"""GitHub REST API client for turn-detection data retrieval."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .config import Config
from .errors import ApiError, AuthenticationError, RateLimitError, TransientNetworkError
from .fetcher import Attempt, Fetcher, RateLimiter, fetch_all_pages
from .models import (
    DiscussionComment,
    GitHubUser,
    IssueEvent,
    Notification,
    OpenPull,
    PullRequest,
    Reaction,
    Review,
    Team,
)

# Notification reasons that can make it my turn on a PR.
_RELEVANT_NOTIFICATION_REASONS = frozenset({"author", "review_requested", "mention"})


class GitHubClient:
    """Small, typed, asynchronous client for the GitHub pull request APIs.

    Each HTTP request runs in a worker thread; pacing and retries are delegated
    to the shared ``Fetcher``.
    """

    _API_VERSION = "2022-11-28"
    _PER_PAGE = 100
    _NOTIFICATIONS_PER_PAGE = 50

    def __init__(
        self,
        config: Config,
        fetcher: Optional[Fetcher] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize an authenticated GitHub API client.

        Args:
            config: Validated runtime configuration including the token.
            fetcher: Rate limiter and retry policy shared by all calls.
            session: Optional pre-built HTTP session.
        """
        self._config = config
        self._timeout_seconds = config.timeout_seconds
        self._base_url = config.api_url
        self._fetcher = fetcher or Fetcher(RateLimiter())

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": self._API_VERSION,
                # Always ask for current data.
                "If-None-Match": "",
                "Cache-Control": "no-cache",
            }
        )

    @property
    def calls(self) -> int:
        """Number of call attempts made through the shared rate limiter."""
        return self._fetcher.calls

    def reset_calls_counter(self) -> None:
        self._fetcher.rate_limiter.reset_counter()

    def _build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    @staticmethod
    def _format_timestamp(value: int) -> str:
        """Format unix millis as UTC ISO8601 suitable for GitHub query params."""
        utc_value = datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(microsecond=0)
        return utc_value.isoformat().replace("+00:00", "Z")

    @staticmethod
    def _parse_timestamp(value: Optional[str]) -> Optional[int]:
        """Parse GitHub ISO8601 timestamps into unix millis."""
        if not value:
            return None

        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(normalized)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return response.text

    @staticmethod
    def _is_rate_limited(response: requests.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        return "rate limit" in (response.text or "").lower()

    def _request_once(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        expect_list: bool = False,
    ) -> Attempt[Any]:
        """Execute a single GET request and classify its outcome.

        Never raises; failures are returned as ``Attempt.failure`` carrying an
        ``AuthenticationError``, ``RateLimitError``, ``TransientNetworkError``
        or ``ApiError``.
        """
        url = self._build_url(path)
        try:
            response = self._session.get(url, params=params or {}, timeout=self._timeout_seconds)
        except requests.RequestException as exc:
            return Attempt.failure(TransientNetworkError(f"GitHub request failed: GET {url}: {exc}"))

        status_code = response.status_code
        if status_code == 401:
            return Attempt.failure(AuthenticationError(self._error_message(response)))

        if status_code in (403, 429) and self._is_rate_limited(response):
            return Attempt.failure(
                RateLimitError(f"GitHub rate limit exceeded: GET {url} - {self._error_message(response)}")
            )

        if status_code >= 400:
            return Attempt.failure(
                ApiError(f"GitHub API request failed: GET {url} returned {status_code} - {response.text}")
            )

        try:
            payload = response.json()
        except ValueError:
            return Attempt.failure(ApiError(f"GitHub API returned invalid JSON: GET {url}"))

        if expect_list and not isinstance(payload, list):
            return Attempt.failure(ApiError(f"GitHub API returned unexpected payload shape: GET {url}"))

        return Attempt.success(payload)

    async def _get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        expect_list: bool = False,
    ) -> Any:
        """Execute a GET request under the shared rate limit and retry policy."""
        return await self._fetcher.call(
            lambda: asyncio.to_thread(self._request_once, path, params, expect_list),
            description=f"GET {path}",
        )

    async def _list(
        self,
        path: str,
        per_page: int = _PER_PAGE,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch every page of a list endpoint."""

        async def page_operation(page: int, size: int) -> List[Dict[str, Any]]:
            query: Dict[str, Any] = dict(params or {})
            query["page"] = page
            query["per_page"] = size
            return await self._get_json(path, params=query, expect_list=True)

        return await fetch_all_pages(page_operation, per_page)

    async def get_authenticated_user(self) -> GitHubUser:
        """Return the user owning the configured token, without team memberships."""
        payload = await self._get_json("user")
        if not isinstance(payload, dict) or payload.get("id") is None or not payload.get("login"):
            raise ApiError(f"GitHub user payload is missing required fields: payload={payload}")
        return GitHubUser(id=int(payload["id"]), login=str(payload["login"]))

    async def list_user_teams(self) -> List[Team]:
        """List teams the authenticated user belongs to."""
        teams: List[Team] = []
        for item in await self._list("user/teams"):
            team_id = item.get("id")
            if team_id is None:
                continue
            teams.append(Team(id=int(team_id), name=str(item.get("name") or item.get("slug") or team_id)))
        return teams

    async def list_open_pulls(self, owner: str, name: str) -> List[OpenPull]:
        """List open pull requests for a repository."""
        pulls: List[OpenPull] = []
        for item in await self._list(f"repos/{owner}/{name}/pulls", params={"state": "open"}):
            number = item.get("number")
            html_url = item.get("html_url")
            user = item.get("user") or {}
            if number is None or not html_url or user.get("id") is None:
                raise ApiError(
                    "GitHub pull request payload is missing required fields: "
                    f"repo={owner}/{name}, payload={item}"
                )

            pr = PullRequest(
                url=str(html_url),
                title=str(item.get("title") or ""),
                author_id=int(user["id"]),
                author_login=user.get("login"),
                is_draft=item.get("draft") is True,
            )
            pulls.append(
                OpenPull(
                    number=int(number),
                    pr=pr,
                    requested_reviewer_ids=tuple(
                        int(reviewer["id"])
                        for reviewer in item.get("requested_reviewers") or []
                        if reviewer.get("id") is not None
                    ),
                    requested_teams=tuple(
                        Team(id=int(team["id"]), name=str(team.get("name") or team.get("slug") or team["id"]))
                        for team in item.get("requested_teams") or []
                        if team.get("id") is not None
                    ),
                )
            )
        return pulls

    async def list_reviews(self, owner: str, name: str, number: int) -> List[Review]:
        """List submitted reviews on a pull request."""
        reviews: List[Review] = []
        for item in await self._list(f"repos/{owner}/{name}/pulls/{number}/reviews"):
            user = item.get("user") or {}
            if item.get("id") is None or user.get("id") is None:
                # Reviews by deleted accounts have no user.
                continue
            reviews.append(
                Review(
                    id=int(item["id"]),
                    user_id=int(user["id"]),
                    state=str(item.get("state") or ""),
                    body=str(item.get("body") or ""),
                    submitted_at=self._parse_timestamp(item.get("submitted_at")),
                )
            )
        return reviews

    async def list_comments_for_review(
        self, owner: str, name: str, number: int, review_id: int
    ) -> List[DiscussionComment]:
        """List the review comments attached to a single review."""
        return self._parse_comments(
            await self._list(f"repos/{owner}/{name}/pulls/{number}/reviews/{review_id}/comments")
        )

    async def list_issue_events(self, owner: str, name: str, number: int) -> List[IssueEvent]:
        """List the issue event log (review requests and others) of a pull request."""
        events: List[IssueEvent] = []
        for item in await self._list(f"repos/{owner}/{name}/issues/{number}/events"):
            created_at = self._parse_timestamp(item.get("created_at"))
            if not item.get("event") or created_at is None:
                continue
            reviewer = item.get("requested_reviewer") or {}
            events.append(
                IssueEvent(
                    event=str(item["event"]),
                    created_at=created_at,
                    requested_reviewer_id=int(reviewer["id"]) if reviewer.get("id") is not None else None,
                )
            )
        return events

    async def list_notifications(self, since: int) -> List[Notification]:
        """List participating notifications since ``since`` that can make it my turn."""
        notifications: List[Notification] = []
        items = await self._list(
            "notifications",
            per_page=self._NOTIFICATIONS_PER_PAGE,
            params={"all": "true", "participating": "true", "since": self._format_timestamp(since)},
        )
        for item in items:
            if item.get("reason") not in _RELEVANT_NOTIFICATION_REASONS:
                continue
            subject = item.get("subject") or {}
            repository = item.get("repository") or {}
            owner = (repository.get("owner") or {}).get("login")
            if not subject.get("url") or not owner or not repository.get("name"):
                continue
            notifications.append(
                Notification(
                    reason=str(item["reason"]),
                    subject_type=str(subject.get("type") or ""),
                    subject_title=str(subject.get("title") or ""),
                    subject_url=str(subject["url"]),
                    repo_owner=str(owner),
                    repo_name=str(repository["name"]),
                )
            )
        return notifications

    async def list_review_comments(self, owner: str, name: str, number: int) -> List[DiscussionComment]:
        """List review (diff) comments of a pull request, ordered by id ascending."""
        return self._parse_comments(await self._list(f"repos/{owner}/{name}/pulls/{number}/comments"))

    async def list_issue_comments(self, owner: str, name: str, number: int) -> List[DiscussionComment]:
        """List PR-level (issue) comments of a pull request."""
        return self._parse_comments(await self._list(f"repos/{owner}/{name}/issues/{number}/comments"))

    async def list_review_comment_reactions(self, owner: str, name: str, comment_id: int) -> List[Reaction]:
        return self._parse_reactions(await self._list(f"repos/{owner}/{name}/pulls/comments/{comment_id}/reactions"))

    async def list_issue_comment_reactions(self, owner: str, name: str, comment_id: int) -> List[Reaction]:
        return self._parse_reactions(await self._list(f"repos/{owner}/{name}/issues/comments/{comment_id}/reactions"))

    def _parse_comments(self, items: List[Dict[str, Any]]) -> List[DiscussionComment]:
        comments: List[DiscussionComment] = []
        for item in items:
            user = item.get("user") or {}
            created_at = self._parse_timestamp(item.get("created_at"))
            if item.get("id") is None or user.get("id") is None or created_at is None:
                continue
            in_reply_to_id = item.get("in_reply_to_id")
            comments.append(
                DiscussionComment(
                    id=int(item["id"]),
                    user_id=int(user["id"]),
                    user_login=str(user.get("login") or ""),
                    body=str(item.get("body") or ""),
                    created_at=created_at,
                    html_url=str(item.get("html_url") or ""),
                    in_reply_to_id=int(in_reply_to_id) if in_reply_to_id is not None else None,
                )
            )
        return comments

    @staticmethod
    def _parse_reactions(items: List[Dict[str, Any]]) -> List[Reaction]:
        reactions: List[Reaction] = []
        for item in items:
            user = item.get("user") or {}
            if user.get("id") is None:
                continue
            reactions.append(Reaction(user_id=int(user["id"]), content=str(item.get("content") or "")))
        return reactions
