"""Data models for feed_notifier.

This module defines the core data structures for feeds, articles,
subscriptions and the notifications derived from them.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


# Floor used when a feed has no articles yet
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass
class Feed:
    """Represents a feed source and its crawl cool-down."""

    id: int
    link: str
    not_until: datetime


@dataclass
class Article:
    """Represents one ingested item from a feed."""

    id: int
    feed_id: int
    title: str
    link: str
    published: datetime


@dataclass
class Subscription:
    """Represents a feed bound to a destination under a collection name."""

    id: int
    feed_id: int
    server_id: str
    channel_id: str
    collection_name: str
    last_pub_date: datetime


@dataclass
class Notification:
    """A pending (subscription, article) pair.

    Not persisted; computed by joining subscriptions to articles.
    """

    subscription_id: int
    server_id: str
    channel_id: str
    collection_name: str
    article_id: int
    title: str
    link: str
    pub_date: datetime


@dataclass
class FeedItem:
    """Represents a parsed item from a feed document."""

    title: str
    link: str
    published: Optional[datetime]
