"""Subscription service.

This module implements subscribing a destination to a feed, unsubscribing,
and looking up the latest article of a collection.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from feed_notifier.errors import (
    AlreadyExistsError,
    EmptyFeedError,
    HTTPStatusError,
    InvalidLinkError,
    NotFoundError,
)
from feed_notifier.models.schemas import ZERO_TIME, Feed, Subscription
from feed_notifier.services.crawler import DEFAULT_CACHE_SECONDS, calculate_not_until, ingest_items
from feed_notifier.services.feed_parser import parse_feed
from feed_notifier.services.fetcher import DEFAULT_TIMEOUT, fetch_feed
from feed_notifier.storage import database


logger = logging.getLogger(__name__)


def validate_link(link: str) -> str:
    """Check that a feed link is an absolute http(s) URL.

    Returns:
        The link with surrounding whitespace removed

    Raises:
        InvalidLinkError: If the link is not usable
    """
    link = link.strip()
    parsed = urlparse(link)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidLinkError(f"'{link}' is not a valid http(s) URL")
    return link


async def _register_feed(
    link: str,
    now: datetime,
    timeout: float,
    default_cache: int,
) -> Feed:
    """Fetch, validate and store a feed seen for the first time.

    Every item is backfilled; no notifications result because new
    subscriptions start with a watermark of `now`.
    """
    fetched = await fetch_feed(link, timeout=timeout)

    if not fetched.is_success:
        raise HTTPStatusError(fetched.status_code)

    items = parse_feed(fetched.content)

    try:
        feed = await database.create_feed(link, calculate_not_until(fetched.headers, now, default_cache))
    except AlreadyExistsError:
        # Registered by a concurrent subscribe
        return await database.get_feed_by_link(link)

    added = await ingest_items(feed, items, ZERO_TIME)
    logger.info(f"Registered feed [{feed.id}] at {link} with {added} articles")
    return feed


async def subscribe(
    link: str,
    server_id: str,
    channel_id: str,
    collection_name: str,
    now: Optional[datetime] = None,
    timeout: float = DEFAULT_TIMEOUT,
    default_cache: int = DEFAULT_CACHE_SECONDS,
) -> Subscription:
    """Subscribe a destination channel to a feed.

    Args:
        link: Feed URL
        server_id: Destination server
        channel_id: Channel that receives notifications
        collection_name: Name for the subscription, unique per server
        now: Subscription time, which becomes the initial watermark
        timeout: Per-request fetch timeout in seconds
        default_cache: Cool-down ceiling in seconds

    Returns:
        The created Subscription

    Raises:
        InvalidLinkError: If the link is not an http(s) URL
        HTTPStatusError: If the feed responded with a non-2xx status
        NotAValidFeedError: If the response is not a feed
        AlreadyExistsError: If the collection name is taken on this server
        httpx.HTTPError: If the feed could not be fetched
    """
    link = validate_link(link)
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        feed = await database.get_feed_by_link(link)
    except NotFoundError:
        feed = await _register_feed(link, now, timeout, default_cache)

    subscription = await database.create_subscription(
        feed.id, server_id, channel_id, collection_name, now
    )
    logger.info(
        f"Subscribed server {server_id} channel {channel_id} to feed [{feed.id}] "
        f"as '{collection_name}'"
    )
    return subscription


async def unsubscribe(server_id: str, collection_name: str) -> Subscription:
    """Remove a subscription by collection name.

    Raises:
        NotFoundError: If the server has no such collection
    """
    subscription = await database.get_subscription_by_collection_name(server_id, collection_name)
    await database.delete_subscription(subscription.id)
    logger.info(f"Removed subscription [{subscription.id}] '{collection_name}'")
    return subscription


async def latest_link(server_id: str, collection_name: str) -> str:
    """Get the link of the newest article in a collection.

    Raises:
        NotFoundError: If the server has no such collection
        EmptyFeedError: If the collection's feed has no articles
    """
    subscription = await database.get_subscription_by_collection_name(server_id, collection_name)

    try:
        article = await database.latest_article(subscription.feed_id)
    except NotFoundError as e:
        raise EmptyFeedError() from e

    return article.link
