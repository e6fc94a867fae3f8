"""Custom exception types for the my-turn PR review monitor."""


class MyTurnError(Exception):
    """Base exception for all recoverable my-turn errors."""


class ConfigurationError(MyTurnError):
    """Raised when runtime configuration values or user settings are invalid."""


class AuthenticationError(MyTurnError):
    """Raised when GitHub credentials are missing or rejected ("Bad credentials")."""


class ApiError(MyTurnError):
    """Raised when a GitHub API request fails or returns an unexpected response."""


class TransientNetworkError(ApiError):
    """Raised when a request could not complete because of a network-level failure."""


class RateLimitError(ApiError):
    """Raised when GitHub reports the primary or secondary rate limit as exhausted."""


class DataInconsistencyError(MyTurnError):
    """Raised when fetched data contradicts itself, e.g. a reply to an unknown comment."""
