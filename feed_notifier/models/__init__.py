"""Data models for feed_notifier."""

from .schemas import ZERO_TIME, Article, Feed, FeedItem, Notification, Subscription

__all__ = [
    "ZERO_TIME",
    "Article",
    "Feed",
    "FeedItem",
    "Notification",
    "Subscription",
]
