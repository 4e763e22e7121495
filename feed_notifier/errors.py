"""Error types for feed_notifier.

Storage, fetch and subscription code raise these; the tool layer turns them
into user-facing responses.
"""

from typing import Optional


class FeedNotifierError(Exception):
    """Base class for all feed_notifier errors."""


class NotFoundError(FeedNotifierError):
    """The requested row does not exist."""

    def __init__(self, message: str = "not found"):
        super().__init__(message)


class AlreadyExistsError(FeedNotifierError):
    """A uniqueness constraint was violated."""

    def __init__(self, message: str = "already exists"):
        super().__init__(message)


class NotAValidFeedError(FeedNotifierError):
    """The response body could not be recognized as an RSS/Atom feed."""

    def __init__(self, message: str = "not a valid feed"):
        super().__init__(message)


class EmptyFeedError(FeedNotifierError):
    """The feed has no ingested articles."""

    def __init__(self, message: str = "empty feed"):
        super().__init__(message)


class InvalidLinkError(FeedNotifierError):
    """The feed link is not an absolute http(s) URL."""


class DeliveryError(FeedNotifierError):
    """A notification could not be delivered to its destination."""


class HTTPStatusError(FeedNotifierError):
    """A feed fetch returned a non-2xx status code."""

    def __init__(self, status_code: int, reason: Optional[str] = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__((reason or f"http status {status_code}").lower())

    @property
    def category(self) -> str:
        """Coarse category used to pick the user-facing message."""
        if self.status_code == 401:
            return "auth-required"
        if self.status_code == 403:
            return "forbidden"
        if self.status_code == 404:
            return "not-found"
        if self.status_code >= 500:
            return "server-error"
        return "other"
