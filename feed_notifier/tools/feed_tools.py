"""Feed notifier MCP tools.

This module provides MCP tools for managing feed subscriptions of a destination
server, plus manual triggers for the crawl and notify cycles.

NOTE: Never use Optional parameters in MCP tools - they break MCP clients.
Use empty string "" for optional strings and 0 for optional integers.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List

import httpx
from mcp.server.fastmcp import Context

from feed_notifier.config import ServerConfig
from feed_notifier.errors import (
    AlreadyExistsError,
    EmptyFeedError,
    HTTPStatusError,
    InvalidLinkError,
    NotAValidFeedError,
    NotFoundError,
)
from feed_notifier.services import crawler, notifier, subscriptions
from feed_notifier.services.autocomplete import CollectionSearchCache
from feed_notifier.services.delivery import Delivery, LogDelivery, WebhookDelivery
from feed_notifier.services.rate_limiter import RateLimiter


logger = logging.getLogger(__name__)

INTERNAL_ERROR = "I ran into an issue processing this request. This might be a bug."

HTTP_ERROR_MESSAGES = {
    "auth-required": "The website requires authorization to view that page.",
    "forbidden": "The website said viewing that resource is forbidden.",
    "not-found": "The website said there's nothing to be found at that URL.",
    "server-error": "That website seems to be having issues, try adding this again later.",
    "other": "I couldn't fetch that feed, this could be a bug.",
}


def _failure(category: str, error: str) -> Dict[str, Any]:
    return {"success": False, "category": category, "error": error}


class FeedTools:
    """Tool implementations bound to the shared runtime components.

    The rate limiter, search cache and cycle lock are shared with the
    scheduled cycles. Every crawl or notify cycle, scheduled or manual,
    holds `cycle_lock` while it runs.
    """

    def __init__(
        self,
        config: ServerConfig,
        delivery: Delivery,
        rate_limiter: RateLimiter,
        search_cache: CollectionSearchCache,
    ):
        self.config = config
        self.delivery = delivery
        self.rate_limiter = rate_limiter
        self.search_cache = search_cache
        self.cycle_lock = asyncio.Lock()

    async def crawl_cycle(self) -> Dict[str, Any]:
        """Run one crawl cycle; callers hold `cycle_lock`."""
        return await crawler.refresh_feeds(
            timeout=self.config.fetch_timeout,
            default_cache=self.config.default_cache_seconds,
        )

    async def notify_cycle(self) -> Dict[str, Any]:
        """Run one notify cycle; callers hold `cycle_lock`."""
        return await notifier.send_pending_notifications(self.delivery, self.rate_limiter)

    @classmethod
    def from_config(cls, config: ServerConfig) -> "FeedTools":
        """Build the tools and their components from configuration."""
        if config.webhook_url:
            delivery: Delivery = WebhookDelivery(
                config.webhook_url,
                timeout=config.fetch_timeout,
                token=config.webhook_token,
            )
        else:
            delivery = LogDelivery()

        return cls(
            config=config,
            delivery=delivery,
            rate_limiter=RateLimiter(interval=config.send_interval_secs),
            search_cache=CollectionSearchCache(
                ttl=timedelta(seconds=config.autocomplete_ttl_secs),
                limit=config.autocomplete_limit,
            ),
        )

    @property
    def tools(self) -> List[Callable]:
        """Tool callables in registration order."""
        return [
            self.subscribe,
            self.unsubscribe,
            self.test_collection,
            self.complete_collection_name,
            self.refresh_feeds,
            self.send_notifications,
        ]

    async def subscribe(
        self,
        feed: str,
        server_id: str,
        channel_id: str,
        collection: str,
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Subscribe a channel to an RSS/Atom feed under a collection name.

        New items published after the subscription is created are announced
        to the channel. Items already in the feed are never announced.

        Args:
            feed: URL of the RSS/Atom feed (http or https)
            server_id: Destination server identifier
            channel_id: Channel that receives new item announcements
            collection: Name for this subscription, unique within the server
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - subscription: object with id, feed_id, server_id, channel_id, collection_name
            - message: confirmation string if successful
            - category: error category if success is False (invalid-link, already-exists,
              not-a-feed, auth-required, forbidden, not-found, server-error, other, internal)
            - error: user-facing error message if success is False
        """
        logger.info(f"subscribe called: feed={feed}, server_id={server_id}, collection={collection}")

        try:
            subscription = await subscriptions.subscribe(
                feed,
                server_id,
                channel_id,
                collection,
                timeout=self.config.fetch_timeout,
                default_cache=self.config.default_cache_seconds,
            )
        except InvalidLinkError:
            return _failure("invalid-link", "Is that a valid URL?")
        except AlreadyExistsError:
            return _failure("already-exists", f"The collection '{collection}' already exists.")
        except NotAValidFeedError:
            return _failure("not-a-feed", "There doesn't seem to be a valid RSS feed at that URL.")
        except HTTPStatusError as e:
            return _failure(e.category, HTTP_ERROR_MESSAGES[e.category])
        except httpx.HTTPError as e:
            logger.warning(f"GET [{feed}]: {e}")
            return _failure("other", HTTP_ERROR_MESSAGES["other"])
        except Exception as e:
            logger.error(f"subscribe failed: {e}", exc_info=True)
            return _failure("internal", INTERNAL_ERROR)

        self.search_cache.clear()

        return {
            "success": True,
            "subscription": {
                "id": subscription.id,
                "feed_id": subscription.feed_id,
                "server_id": subscription.server_id,
                "channel_id": subscription.channel_id,
                "collection_name": subscription.collection_name,
            },
            "message": f"I'll send new items in the '{collection}' collection to {channel_id}",
        }

    async def unsubscribe(
        self,
        server_id: str,
        collection: str,
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Remove a subscription by its collection name.

        Args:
            server_id: Destination server identifier
            collection: Collection name of the subscription (case-sensitive)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - message: confirmation string if successful
            - category: not-found or internal if success is False
            - error: user-facing error message if success is False
        """
        logger.info(f"unsubscribe called: server_id={server_id}, collection={collection}")

        try:
            await subscriptions.unsubscribe(server_id, collection)
        except NotFoundError:
            return _failure(
                "not-found",
                f"I couldn't find a subscription with the collection name '{collection}'",
            )
        except Exception as e:
            logger.error(f"unsubscribe failed: {e}", exc_info=True)
            return _failure("internal", INTERNAL_ERROR)

        self.search_cache.clear()

        return {
            "success": True,
            "message": f"I removed the subscription to '{collection}'",
        }

    async def test_collection(
        self,
        server_id: str,
        collection: str,
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Show the latest item of a collection to check that its feed works.

        Subject to the same send rate limit as regular announcements.

        Args:
            server_id: Destination server identifier
            collection: Collection name to test
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - link: URL of the latest item if successful
            - message: text of the test announcement
            - category: not-found, empty-feed, canceled or internal if success is False
            - error: user-facing error message if success is False
        """
        logger.info(f"test_collection called: server_id={server_id}, collection={collection}")

        try:
            link = await subscriptions.latest_link(server_id, collection)
        except NotFoundError:
            return _failure("not-found", "Did not find a collection with that name.")
        except EmptyFeedError:
            return _failure("empty-feed", "There are no items in that RSS feed.")
        except Exception as e:
            logger.error(f"test_collection failed: {e}", exc_info=True)
            return _failure("internal", INTERNAL_ERROR)

        if not await self.rate_limiter.wait():
            return _failure("canceled", "The request was canceled before I could reply.")

        return {
            "success": True,
            "link": link,
            "message": f"Here's the latest item from the '{collection}' collection: {link}",
        }

    async def complete_collection_name(
        self,
        server_id: str,
        partial: str = "",
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Suggest collection names of a server that contain the typed text.

        Matching is case-insensitive and literal. Suggestions may lag behind
        the registry by a few seconds.

        Args:
            server_id: Destination server identifier
            partial: Text typed so far (empty string lists every collection)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - count: number of suggestions
            - choices: list of collection names (at most the configured limit)
        """
        try:
            choices = await self.search_cache.collection_names(server_id, partial)
        except Exception as e:
            logger.error(f"complete_collection_name failed: {e}", exc_info=True)
            return _failure("internal", INTERNAL_ERROR)

        return {
            "success": True,
            "count": len(choices),
            "choices": choices,
        }

    async def refresh_feeds(self, ctx: Context = None) -> Dict[str, Any]:
        """Crawl every feed whose cool-down has elapsed, now.

        Runs the same cycle as the hourly schedule. Feeds still cooling down
        are left alone.

        Args:
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - feeds_refreshed: number of feeds crawled
            - total_new_articles: number of articles added
            - results: per-feed link, new_articles count and errors
        """
        logger.info("refresh_feeds called")

        async with self.cycle_lock:
            report = await self.crawl_cycle()
        return {"success": True, **report}

    async def send_notifications(self, ctx: Context = None) -> Dict[str, Any]:
        """Announce all pending new items, now.

        Runs the same cycle as the notify schedule.

        Args:
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - pending, delivered, failed, deferred: notification counts
            - canceled: whether the cycle stopped early
        """
        logger.info("send_notifications called")

        async with self.cycle_lock:
            report = await self.notify_cycle()
        return {"success": True, **report}
