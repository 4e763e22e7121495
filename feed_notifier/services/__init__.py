"""Services for feed_notifier."""

from .autocomplete import CollectionSearchCache, Haystack
from .crawler import calculate_not_until, ingest_items, refresh_feeds
from .delivery import Delivery, LogDelivery, WebhookDelivery
from .feed_parser import parse_feed
from .fetcher import FetchedFeed, fetch_feed
from .notifier import send_pending_notifications
from .rate_limiter import RateLimiter
from .subscriptions import latest_link, subscribe, unsubscribe

__all__ = [
    "CollectionSearchCache",
    "Haystack",
    "calculate_not_until",
    "ingest_items",
    "refresh_feeds",
    "Delivery",
    "LogDelivery",
    "WebhookDelivery",
    "parse_feed",
    "FetchedFeed",
    "fetch_feed",
    "send_pending_notifications",
    "RateLimiter",
    "latest_link",
    "subscribe",
    "unsubscribe",
]
