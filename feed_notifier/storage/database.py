"""Database storage for feed_notifier.

This module provides async SQLite database operations for feeds, articles and
subscriptions.
Database location: ~/.feed_notifier/feed_notifier.db (or FEED_NOTIFIER_DB_PATH env var)

Uniqueness violations are reported as AlreadyExistsError and missing rows as
NotFoundError; every other database error reaches the caller unchanged.
"""

import os
import aiosqlite
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from feed_notifier.errors import AlreadyExistsError, NotFoundError
from feed_notifier.models.schemas import Article, Feed, Notification, Subscription


def _get_db_path() -> Path:
    """Get the database path, respecting FEED_NOTIFIER_DB_PATH env var for testing."""
    env_path = os.environ.get("FEED_NOTIFIER_DB_PATH")
    if env_path:
        return Path(env_path)
    return Path.home() / ".feed_notifier" / "feed_notifier.db"


# Singleton connection
_db_connection: Optional[aiosqlite.Connection] = None


async def get_database() -> aiosqlite.Connection:
    """Get or create a singleton database connection.

    Returns:
        Active database connection
    """
    global _db_connection

    if _db_connection is None:
        db_path = _get_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)

        _db_connection = await aiosqlite.connect(db_path)
        _db_connection.row_factory = aiosqlite.Row
        await init_database(_db_connection)

    return _db_connection


async def init_database(db: Optional[aiosqlite.Connection] = None) -> None:
    """Initialize database tables if they don't exist.

    Args:
        db: Optional database connection (uses singleton if not provided)
    """
    if db is None:
        db = await get_database()

    await db.execute("PRAGMA foreign_keys = ON")

    await db.execute("""
        CREATE TABLE IF NOT EXISTS feeds (
            id INTEGER PRIMARY KEY,
            link TEXT NOT NULL UNIQUE,
            not_until TIMESTAMP NOT NULL
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS articles (
            id INTEGER PRIMARY KEY,
            feed_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            link TEXT NOT NULL,
            pub_date TIMESTAMP NOT NULL,
            UNIQUE (feed_id, link),
            FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS subscriptions (
            id INTEGER PRIMARY KEY,
            feed_id INTEGER NOT NULL,
            server_id TEXT NOT NULL,
            channel_id TEXT NOT NULL,
            collection_name TEXT NOT NULL,
            last_pub_date TIMESTAMP NOT NULL,
            UNIQUE (server_id, collection_name),
            FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_feeds_not_until ON feeds(not_until)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_articles_feed_pub_date ON articles(feed_id, pub_date)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_subscriptions_feed_id ON subscriptions(feed_id)
    """)

    await db.commit()


def _to_db(value: datetime) -> str:
    """Format a timestamp so that string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_unique_violation(error: aiosqlite.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(error)


def _row_to_feed(row: aiosqlite.Row) -> Feed:
    return Feed(
        id=row["id"],
        link=row["link"],
        not_until=_from_db(row["not_until"]),
    )


def _row_to_article(row: aiosqlite.Row) -> Article:
    return Article(
        id=row["id"],
        feed_id=row["feed_id"],
        title=row["title"],
        link=row["link"],
        published=_from_db(row["pub_date"]),
    )


def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
    return Subscription(
        id=row["id"],
        feed_id=row["feed_id"],
        server_id=row["server_id"],
        channel_id=row["channel_id"],
        collection_name=row["collection_name"],
        last_pub_date=_from_db(row["last_pub_date"]),
    )


# Feeds


async def create_feed(link: str, not_until: datetime) -> Feed:
    """Register a new feed.

    Args:
        link: Feed URL
        not_until: Earliest time the feed may be crawled

    Returns:
        The created Feed object

    Raises:
        AlreadyExistsError: If the link is already registered
    """
    db = await get_database()

    try:
        cursor = await db.execute(
            "INSERT INTO feeds (link, not_until) VALUES (?, ?)",
            (link, _to_db(not_until)),
        )
        await db.commit()
    except aiosqlite.IntegrityError as e:
        await db.rollback()
        if _is_unique_violation(e):
            raise AlreadyExistsError(f"Feed '{link}' already exists") from e
        raise

    return Feed(id=cursor.lastrowid, link=link, not_until=not_until)


async def get_feed_by_link(link: str) -> Feed:
    """Get a feed by its link.

    Raises:
        NotFoundError: If no feed has this link
    """
    db = await get_database()

    cursor = await db.execute("SELECT * FROM feeds WHERE link = ?", (link,))
    row = await cursor.fetchone()

    if row is None:
        raise NotFoundError(f"Feed '{link}' not found")

    return _row_to_feed(row)


async def list_ready_feeds(as_of: datetime) -> List[Feed]:
    """List feeds whose cool-down has elapsed at `as_of`."""
    db = await get_database()

    cursor = await db.execute(
        "SELECT * FROM feeds WHERE not_until <= ? ORDER BY id",
        (_to_db(as_of),),
    )

    return [_row_to_feed(row) async for row in cursor]


async def update_feed(feed: Feed) -> None:
    """Persist a feed's link and cool-down."""
    db = await get_database()

    await db.execute(
        "UPDATE feeds SET link = ?, not_until = ? WHERE id = ?",
        (feed.link, _to_db(feed.not_until), feed.id),
    )
    await db.commit()


async def delete_feed(feed_id: int) -> None:
    """Remove a feed along with its articles and subscriptions.

    Maintenance helper: feeds are never removed by the running service,
    unsubscribing leaves the feed in place.
    """
    db = await get_database()

    await db.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
    await db.commit()


# Articles


async def create_article(feed_id: int, title: str, link: str, published: datetime) -> Article:
    """Add one article to the store.

    Args:
        feed_id: ID of the owning feed
        title: Article title
        link: Canonical article URL
        published: Publication time

    Returns:
        The created Article object

    Raises:
        AlreadyExistsError: If the feed already has an article with this link
    """
    db = await get_database()

    try:
        cursor = await db.execute(
            """
            INSERT INTO articles (feed_id, title, link, pub_date)
            VALUES (?, ?, ?, ?)
            """,
            (feed_id, title, link, _to_db(published)),
        )
        await db.commit()
    except aiosqlite.IntegrityError as e:
        await db.rollback()
        if _is_unique_violation(e):
            raise AlreadyExistsError(f"Article '{link}' already exists") from e
        raise

    return Article(
        id=cursor.lastrowid,
        feed_id=feed_id,
        title=title,
        link=link,
        published=published,
    )


async def latest_article(feed_id: int) -> Article:
    """Get the most recently published article of a feed.

    Raises:
        NotFoundError: If the feed has no articles
    """
    db = await get_database()

    cursor = await db.execute(
        """
        SELECT * FROM articles
        WHERE feed_id = ?
        ORDER BY pub_date DESC, id DESC
        LIMIT 1
        """,
        (feed_id,),
    )
    row = await cursor.fetchone()

    if row is None:
        raise NotFoundError(f"Feed {feed_id} has no articles")

    return _row_to_article(row)


async def list_articles(feed_id: int) -> List[Article]:
    """List a feed's articles, oldest first.

    Maintenance and test helper; the crawl and notify cycles do not use it.
    """
    db = await get_database()

    cursor = await db.execute(
        "SELECT * FROM articles WHERE feed_id = ? ORDER BY pub_date ASC, id ASC",
        (feed_id,),
    )

    return [_row_to_article(row) async for row in cursor]


# Subscriptions


async def create_subscription(
    feed_id: int,
    server_id: str,
    channel_id: str,
    collection_name: str,
    last_pub_date: datetime,
) -> Subscription:
    """Bind a feed to a destination under a collection name.

    Raises:
        AlreadyExistsError: If the server already uses this collection name
    """
    db = await get_database()

    try:
        cursor = await db.execute(
            """
            INSERT INTO subscriptions (feed_id, server_id, channel_id, collection_name, last_pub_date)
            VALUES (?, ?, ?, ?, ?)
            """,
            (feed_id, server_id, channel_id, collection_name, _to_db(last_pub_date)),
        )
        await db.commit()
    except aiosqlite.IntegrityError as e:
        await db.rollback()
        if _is_unique_violation(e):
            raise AlreadyExistsError(
                f"Collection '{collection_name}' already exists"
            ) from e
        raise

    return Subscription(
        id=cursor.lastrowid,
        feed_id=feed_id,
        server_id=server_id,
        channel_id=channel_id,
        collection_name=collection_name,
        last_pub_date=last_pub_date,
    )


async def get_subscription_by_collection_name(server_id: str, collection_name: str) -> Subscription:
    """Get a subscription by server and collection name.

    Raises:
        NotFoundError: If no such subscription exists
    """
    db = await get_database()

    cursor = await db.execute(
        "SELECT * FROM subscriptions WHERE server_id = ? AND collection_name = ?",
        (server_id, collection_name),
    )
    row = await cursor.fetchone()

    if row is None:
        raise NotFoundError(f"Collection '{collection_name}' not found")

    return _row_to_subscription(row)


async def list_subscriptions(server_id: Optional[str] = None) -> List[Subscription]:
    """List subscriptions, optionally for one server only.

    Maintenance and test helper; the tools address subscriptions by
    collection name instead.
    """
    db = await get_database()

    query = "SELECT * FROM subscriptions"
    params: List = []

    if server_id is not None:
        query += " WHERE server_id = ?"
        params.append(server_id)

    query += " ORDER BY id"
    cursor = await db.execute(query, params)

    return [_row_to_subscription(row) async for row in cursor]


async def delete_subscription(subscription_id: int) -> None:
    """Remove a subscription."""
    db = await get_database()

    await db.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
    await db.commit()


async def update_last_pub_date(subscription_id: int, last_pub_date: datetime) -> None:
    """Move a subscription's watermark forward.

    An older value than the stored one is ignored, so the watermark never
    moves backwards.
    """
    db = await get_database()

    value = _to_db(last_pub_date)
    await db.execute(
        "UPDATE subscriptions SET last_pub_date = ? WHERE id = ? AND last_pub_date < ?",
        (value, subscription_id, value),
    )
    await db.commit()


async def get_collection_names(server_id: str) -> List[str]:
    """Get every collection name used by a server."""
    db = await get_database()

    cursor = await db.execute(
        "SELECT collection_name FROM subscriptions WHERE server_id = ? ORDER BY id",
        (server_id,),
    )

    return [row["collection_name"] async for row in cursor]


async def pending_notifications() -> List[Notification]:
    """Compute every article newer than its subscription's watermark.

    The result is ordered by publication time across all subscriptions.
    """
    db = await get_database()

    cursor = await db.execute("""
        SELECT
            s.id AS subscription_id,
            s.server_id,
            s.channel_id,
            s.collection_name,
            a.id AS article_id,
            a.title,
            a.link,
            a.pub_date
        FROM subscriptions s
        INNER JOIN articles a ON s.feed_id = a.feed_id
        WHERE a.pub_date > s.last_pub_date
        ORDER BY a.pub_date ASC, s.id ASC, a.id ASC
    """)

    notifications = []
    async for row in cursor:
        notifications.append(Notification(
            subscription_id=row["subscription_id"],
            server_id=row["server_id"],
            channel_id=row["channel_id"],
            collection_name=row["collection_name"],
            article_id=row["article_id"],
            title=row["title"],
            link=row["link"],
            pub_date=_from_db(row["pub_date"]),
        ))

    return notifications


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    if _db_connection is not None:
        await _db_connection.close()
        _db_connection = None
