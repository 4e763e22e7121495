"""Feed fetch service.

This module downloads feed documents. It does not interpret status codes;
callers decide what a non-2xx response means for them.
"""

import logging
from dataclasses import dataclass

import httpx


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0
USER_AGENT = "FeedNotifier/1.0 (RSS Feed Notifier)"


@dataclass
class FetchedFeed:
    """Raw result of fetching a feed link."""

    url: str
    status_code: int
    headers: httpx.Headers
    content: bytes

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


async def fetch_feed(url: str, timeout: float = DEFAULT_TIMEOUT) -> FetchedFeed:
    """Fetch a feed link.

    Args:
        url: Feed URL
        timeout: Per-request timeout in seconds

    Returns:
        FetchedFeed with status, headers and body

    Raises:
        httpx.HTTPError: On transport failures (timeouts, connection errors)
    """
    logger.debug(f"Fetching feed: {url}")

    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
    ) as client:
        response = await client.get(url)

    return FetchedFeed(
        url=url,
        status_code=response.status_code,
        headers=httpx.Headers(response.headers),
        content=response.content,
    )
