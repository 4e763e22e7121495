"""Crawler service.

This module refreshes every feed whose cool-down has elapsed and ingests the
items that are newer than the feed's latest stored article.

Cool-down policy: the next crawl time is recomputed after every fetch that
produced a response, whatever its status, and before the body is parsed.
A failing or malformed feed is therefore retried no sooner than its caching
directives (capped by the default) allow.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

import httpx

from feed_notifier.errors import AlreadyExistsError, NotAValidFeedError, NotFoundError
from feed_notifier.models.schemas import ZERO_TIME, Feed, FeedItem
from feed_notifier.services.feed_parser import parse_feed
from feed_notifier.services.fetcher import DEFAULT_TIMEOUT, fetch_feed
from feed_notifier.storage import database


logger = logging.getLogger(__name__)

# Upper bound for the crawl interval, in seconds (6 hours)
DEFAULT_CACHE_SECONDS = 21600


def _parse_seconds(value: str) -> int:
    try:
        return int(value.strip().strip('"'))
    except ValueError:
        return 0


def calculate_not_until(
    headers: httpx.Headers,
    now: datetime,
    default_cache: int = DEFAULT_CACHE_SECONDS,
) -> datetime:
    """Compute the earliest time a feed may be fetched again.

    Reads ``max-age`` and ``s-maxage`` from every Cache-Control header.
    ``max-age`` wins over ``s-maxage``; either one is capped at
    ``default_cache``, and ``default_cache`` is used when neither is a
    positive integer.

    Args:
        headers: Response headers
        now: Time of the fetch
        default_cache: Ceiling (and fallback) in seconds

    Returns:
        now plus the chosen interval
    """
    max_age = 0
    s_max_age = 0

    for value in headers.get_list("Cache-Control"):
        for directive in value.split(","):
            key, sep, raw = directive.partition("=")
            if not sep:
                continue

            key = key.strip().lower()
            if key == "max-age":
                max_age = _parse_seconds(raw)
            elif key == "s-maxage":
                s_max_age = _parse_seconds(raw)

    seconds = default_cache
    if max_age > 0:
        seconds = min(default_cache, max_age)
    elif s_max_age > 0:
        seconds = min(default_cache, s_max_age)

    return now + timedelta(seconds=seconds)


async def ingest_items(feed: Feed, items: Iterable[FeedItem], since: datetime) -> int:
    """Store the items published strictly after `since`.

    Items are processed oldest first. Items without a publication date are
    skipped and articles that are already stored are silently ignored.

    Args:
        feed: Owning feed
        items: Parsed feed items in any order
        since: Ingestion floor

    Returns:
        Number of articles actually added
    """
    dated = sorted(
        (item for item in items if item.published is not None),
        key=lambda item: item.published,
    )

    added_count = 0
    for item in dated:
        if item.published <= since:
            continue

        try:
            article = await database.create_article(
                feed.id, item.title, item.link, item.published
            )
        except AlreadyExistsError:
            continue
        except Exception as e:
            logger.error(f"Add new article for feed [{feed.id}]: {e}")
            continue

        logger.info(f"Added article [{article.id}] for feed [{feed.id}]")
        added_count += 1

    return added_count


async def refresh_feed(
    feed: Feed,
    now: datetime,
    timeout: float = DEFAULT_TIMEOUT,
    default_cache: int = DEFAULT_CACHE_SECONDS,
) -> int:
    """Crawl one feed.

    Returns:
        Number of new articles

    Raises:
        httpx.HTTPError: If the fetch fails at the transport level
    """
    fetched = await fetch_feed(feed.link, timeout=timeout)

    feed.not_until = calculate_not_until(fetched.headers, now, default_cache)
    await database.update_feed(feed)

    if not fetched.is_success:
        logger.warning(
            f"GET [{feed.link}] returned {fetched.status_code}, "
            f"retrying after {feed.not_until.isoformat()}"
        )
        return 0

    try:
        items = parse_feed(fetched.content)
    except NotAValidFeedError as e:
        logger.error(f"Parse feed [{feed.id}] at {feed.link}: {e}")
        return 0

    try:
        since = (await database.latest_article(feed.id)).published
    except NotFoundError:
        since = ZERO_TIME

    return await ingest_items(feed, items, since)


async def refresh_feeds(
    now: Optional[datetime] = None,
    timeout: float = DEFAULT_TIMEOUT,
    default_cache: int = DEFAULT_CACHE_SECONDS,
) -> Dict[str, Any]:
    """Crawl every feed whose cool-down has elapsed.

    A failure on one feed is logged and never stops the cycle.

    Args:
        now: Cycle time (defaults to the current UTC time)
        timeout: Per-request fetch timeout in seconds
        default_cache: Cool-down ceiling in seconds

    Returns:
        Dictionary with:
        - feeds_refreshed: number of ready feeds processed
        - total_new_articles: articles added across all feeds
        - results: per-feed link, new_articles count and errors
    """
    if now is None:
        now = datetime.now(timezone.utc)

    feeds = await database.list_ready_feeds(now)

    if not feeds:
        logger.info("No eligible feeds to refresh")
        return {"feeds_refreshed": 0, "total_new_articles": 0, "results": []}

    logger.info(f"Refreshing {len(feeds)} eligible feeds")

    results = []
    total_new = 0

    for feed in feeds:
        result = {"feed": feed.link, "new_articles": 0, "errors": []}

        try:
            added = await refresh_feed(feed, now, timeout, default_cache)
            result["new_articles"] = added
            total_new += added
        except httpx.HTTPError as e:
            logger.warning(f"GET [{feed.link}]: {e}")
            result["errors"].append(str(e))
        except Exception as e:
            logger.error(f"Error refreshing feed [{feed.id}] at {feed.link}: {e}")
            result["errors"].append(str(e))

        results.append(result)

    return {
        "feeds_refreshed": len(feeds),
        "total_new_articles": total_new,
        "results": results,
    }
