"""Storage layer for feed_notifier."""

from .database import (
    get_database,
    init_database,
    close_database,
    create_feed,
    get_feed_by_link,
    list_ready_feeds,
    update_feed,
    delete_feed,
    create_article,
    latest_article,
    list_articles,
    create_subscription,
    get_subscription_by_collection_name,
    list_subscriptions,
    delete_subscription,
    update_last_pub_date,
    get_collection_names,
    pending_notifications,
)

__all__ = [
    "get_database",
    "init_database",
    "close_database",
    "create_feed",
    "get_feed_by_link",
    "list_ready_feeds",
    "update_feed",
    "delete_feed",
    "create_article",
    "latest_article",
    "list_articles",
    "create_subscription",
    "get_subscription_by_collection_name",
    "list_subscriptions",
    "delete_subscription",
    "update_last_pub_date",
    "get_collection_names",
    "pending_notifications",
]
