"""Feed parser service.

This module parses RSS/Atom documents into feed items.
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

import feedparser

from feed_notifier.errors import NotAValidFeedError
from feed_notifier.models.schemas import FeedItem


logger = logging.getLogger(__name__)


def parse_feed(content: bytes) -> List[FeedItem]:
    """Parse an RSS/Atom document and extract its items.

    Items keep document order, which is not guaranteed to be chronological.

    Args:
        content: Raw response body

    Returns:
        List of FeedItem objects

    Raises:
        NotAValidFeedError: If the document is not a recognizable feed
    """
    feed = feedparser.parse(content)

    if not feed.get("version") and not feed.entries:
        logger.warning(f"Feed type not detected: {feed.get('bozo_exception')}")
        raise NotAValidFeedError()

    items = []
    for entry in feed.entries:
        url = entry.get("link", "").strip()
        if not url:
            # Try alternate link
            for link in entry.get("links", []):
                if link.get("rel") == "alternate" and link.get("href"):
                    url = link["href"].strip()
                    break

        if not url:
            continue

        items.append(FeedItem(
            title=entry.get("title", "").strip(),
            link=url,
            published=_parse_date(entry),
        ))

    logger.debug(f"Parsed {len(items)} items from feed")
    return items


def _parse_date(entry: dict) -> Optional[datetime]:
    """Parse the publication date from a feed entry.

    Args:
        entry: Feed entry dict

    Returns:
        Timezone-aware UTC datetime if parsed successfully, None otherwise
    """
    for field in ["published", "updated", "created"]:
        # feedparser normalizes *_parsed values to UTC
        parsed = entry.get(f"{field}_parsed")
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (ValueError, TypeError):
                pass

        date_str = entry.get(field, "")
        if not date_str:
            continue

        # Try RFC 2822 format (common in RSS)
        try:
            return _as_utc(parsedate_to_datetime(date_str))
        except (ValueError, TypeError):
            pass

        # Try ISO format
        try:
            return _as_utc(datetime.fromisoformat(date_str.replace("Z", "+00:00")))
        except (ValueError, AttributeError):
            pass

    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
