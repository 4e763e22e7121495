"""Feed Tools Integration Tests.

This test suite drives the feed notifier tools end to end: subscribe, crawl,
announce and autocomplete against an in-memory database, with the network
replaced by canned feed documents.
"""

import asyncio
import dataclasses
import pytest
import httpx
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from feed_notifier.config import ServerConfig
from feed_notifier.errors import DeliveryError
from feed_notifier.models.schemas import ZERO_TIME
from feed_notifier.server.app import create_mcp_server, create_scheduler
from feed_notifier.services.autocomplete import CollectionSearchCache
from feed_notifier.services.delivery import LogDelivery, WebhookDelivery
from feed_notifier.services.fetcher import FetchedFeed
from feed_notifier.services.rate_limiter import RateLimiter
from feed_notifier.storage.database import create_article, get_feed_by_link, update_feed
from feed_notifier.tools.feed_tools import FeedTools

from tests.helpers import mock_http_client, mock_response, rss_document


# Use anyio instead of pytest-asyncio to match SDK approach
pytestmark = pytest.mark.anyio

FEED_URL = "https://go.dev/blog/feed.atom"

OLD_ITEMS = [
    ("Go 1.21", "https://go.dev/blog/go1.21", "Tue, 08 Aug 2023 12:00:00 GMT"),
]
NEW_ITEMS = OLD_ITEMS + [
    ("Future post", "https://go.dev/blog/future", "Fri, 01 Jan 2100 00:00:00 GMT"),
]


class RecordingDelivery:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, channel_id, text):
        if self.fail:
            raise DeliveryError("channel unavailable")
        self.sent.append((channel_id, text))


def fetched(items=OLD_ITEMS, status_code=200):
    return FetchedFeed(
        url=FEED_URL,
        status_code=status_code,
        headers=httpx.Headers({"Cache-Control": "max-age=60"}),
        content=rss_document(items) if status_code == 200 else b"",
    )


def patch_fetch(result):
    """Patch the fetch used by both subscription and crawl paths."""
    mock = AsyncMock(return_value=result) if not isinstance(result, Exception) else AsyncMock(side_effect=result)
    return (
        patch("feed_notifier.services.subscriptions.fetch_feed", mock),
        patch("feed_notifier.services.crawler.fetch_feed", mock),
    )


async def make_feed_ready():
    feed = await get_feed_by_link(FEED_URL)
    await update_feed(dataclasses.replace(feed, not_until=ZERO_TIME))


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def feed_tools(delivery):
    return FeedTools(
        config=ServerConfig(),
        delivery=delivery,
        rate_limiter=RateLimiter(interval=0.001, burst=100),
        search_cache=CollectionSearchCache(),
    )


async def subscribe(feed_tools, result=None, collection="Go Blog", server_id="server"):
    subs_patch, crawl_patch = patch_fetch(result or fetched())
    with subs_patch, crawl_patch:
        return await feed_tools.subscribe(FEED_URL, server_id, "channel", collection)


class TestToolRegistration:
    """Test that the MCP server exposes the feed tools."""

    async def test_all_feed_tools_registered(self, feed_tools):
        server = create_mcp_server(ServerConfig(), feed_tools)

        tools = await server.list_tools()
        tool_names = [tool.name for tool in tools]

        assert tool_names == [
            "subscribe",
            "unsubscribe",
            "test_collection",
            "complete_collection_name",
            "refresh_feeds",
            "send_notifications",
        ]

    async def test_context_not_in_tool_schemas(self, feed_tools):
        server = create_mcp_server(ServerConfig(), feed_tools)

        for tool in await server.list_tools():
            properties = tool.inputSchema.get("properties", {})
            assert "ctx" not in properties, f"{tool.name} exposes ctx"
            assert "kwargs" not in properties, f"{tool.name} exposes kwargs"

    def test_from_config_picks_delivery(self):
        assert isinstance(FeedTools.from_config(ServerConfig()).delivery, LogDelivery)

        tools = FeedTools.from_config(ServerConfig(webhook_url="https://hooks.test/send"))
        assert isinstance(tools.delivery, WebhookDelivery)


class TestSubscribeTool:
    async def test_subscribe_success(self, in_memory_db, feed_tools):
        result = await subscribe(feed_tools)

        assert result["success"] is True
        assert result["subscription"]["collection_name"] == "Go Blog"
        assert result["subscription"]["channel_id"] == "channel"
        assert "Go Blog" in result["message"]

    async def test_subscribe_duplicate_collection(self, in_memory_db, feed_tools):
        await subscribe(feed_tools)

        result = await subscribe(feed_tools)

        assert result["success"] is False
        assert result["category"] == "already-exists"

    async def test_subscribe_invalid_link(self, in_memory_db, feed_tools):
        result = await feed_tools.subscribe("not a url", "server", "channel", "Go Blog")

        assert result == {
            "success": False,
            "category": "invalid-link",
            "error": "Is that a valid URL?",
        }

    @pytest.mark.parametrize(
        "status, category",
        [(401, "auth-required"), (403, "forbidden"), (404, "not-found"), (502, "server-error"), (418, "other")],
    )
    async def test_subscribe_http_error(self, in_memory_db, feed_tools, status, category):
        result = await subscribe(feed_tools, fetched(status_code=status))

        assert result["success"] is False
        assert result["category"] == category

    async def test_subscribe_not_a_feed(self, in_memory_db, feed_tools):
        page = FetchedFeed(FEED_URL, 200, httpx.Headers(), b"<html><body>Hi</body></html>")

        result = await subscribe(feed_tools, page)

        assert result["category"] == "not-a-feed"

    async def test_subscribe_network_error(self, in_memory_db, feed_tools):
        result = await subscribe(feed_tools, httpx.ConnectError("connection refused"))

        assert result["success"] is False
        assert result["category"] == "other"


class TestUnsubscribeTool:
    async def test_unsubscribe(self, in_memory_db, feed_tools):
        await subscribe(feed_tools)

        result = await feed_tools.unsubscribe("server", "Go Blog")

        assert result["success"] is True
        assert (await feed_tools.complete_collection_name("server"))["choices"] == []

    async def test_unsubscribe_unknown(self, in_memory_db, feed_tools):
        result = await feed_tools.unsubscribe("server", "Missing")

        assert result["success"] is False
        assert result["category"] == "not-found"

    async def test_collection_names_are_case_sensitive(self, in_memory_db, feed_tools):
        await subscribe(feed_tools)

        result = await feed_tools.unsubscribe("server", "go blog")

        assert result["category"] == "not-found"


class TestTestCollectionTool:
    async def test_latest_item(self, in_memory_db, feed_tools):
        await subscribe(feed_tools, fetched(NEW_ITEMS))

        result = await feed_tools.test_collection("server", "Go Blog")

        assert result["success"] is True
        assert result["link"] == "https://go.dev/blog/future"

    async def test_unknown_collection(self, in_memory_db, feed_tools):
        result = await feed_tools.test_collection("server", "Missing")

        assert result["category"] == "not-found"

    async def test_empty_feed(self, in_memory_db, feed_tools):
        await subscribe(feed_tools, fetched([]))

        result = await feed_tools.test_collection("server", "Go Blog")

        assert result["category"] == "empty-feed"

    async def test_canceled_rate_limit_wait(self, in_memory_db, feed_tools):
        await subscribe(feed_tools, fetched(NEW_ITEMS))
        feed_tools.rate_limiter.wait = AsyncMock(return_value=False)

        result = await feed_tools.test_collection("server", "Go Blog")

        assert result["success"] is False
        assert result["category"] == "canceled"
        assert "link" not in result


class TestCompleteCollectionNameTool:
    async def test_suggestions(self, in_memory_db, feed_tools):
        await subscribe(feed_tools, collection="The Official Go Blog")
        await subscribe(feed_tools, collection="Kubernetes Feed")

        result = await feed_tools.complete_collection_name("server", "go")

        assert result == {"success": True, "count": 1, "choices": ["The Official Go Blog"]}

    async def test_other_servers_not_suggested(self, in_memory_db, feed_tools):
        await subscribe(feed_tools, collection="Go Blog", server_id="other")

        result = await feed_tools.complete_collection_name("server", "")

        assert result["choices"] == []

    async def test_new_subscription_visible_immediately(self, in_memory_db, feed_tools):
        await subscribe(feed_tools, collection="News")
        assert (await feed_tools.complete_collection_name("server"))["choices"] == ["News"]

        await subscribe(feed_tools, collection="Blog")

        assert (await feed_tools.complete_collection_name("server"))["choices"] == ["News", "Blog"]


class TestCrawlAndNotify:
    """Tests for the full subscribe, crawl and announce pipeline."""

    async def test_only_items_after_subscription_are_announced(self, in_memory_db, feed_tools, delivery):
        await subscribe(feed_tools, fetched(OLD_ITEMS))
        await make_feed_ready()

        subs_patch, crawl_patch = patch_fetch(fetched(NEW_ITEMS))
        with subs_patch, crawl_patch:
            crawl = await feed_tools.refresh_feeds()
        notify = await feed_tools.send_notifications()

        assert crawl["success"] is True
        assert crawl["feeds_refreshed"] == 1
        assert crawl["total_new_articles"] == 1
        assert notify["delivered"] == 1
        assert delivery.sent == [
            ("channel", 'New item from collection "Go Blog": https://go.dev/blog/future'),
        ]

    async def test_items_announced_once(self, in_memory_db, feed_tools, delivery):
        await subscribe(feed_tools, fetched(OLD_ITEMS))
        await make_feed_ready()
        subs_patch, crawl_patch = patch_fetch(fetched(NEW_ITEMS))
        with subs_patch, crawl_patch:
            await feed_tools.refresh_feeds()

        await feed_tools.send_notifications()
        second = await feed_tools.send_notifications()

        assert second["pending"] == 0
        assert len(delivery.sent) == 1

    async def test_failed_delivery_is_retried(self, in_memory_db, feed_tools, delivery):
        await subscribe(feed_tools, fetched(OLD_ITEMS))
        await make_feed_ready()
        subs_patch, crawl_patch = patch_fetch(fetched(NEW_ITEMS))
        with subs_patch, crawl_patch:
            await feed_tools.refresh_feeds()

        delivery.fail = True
        first = await feed_tools.send_notifications()
        delivery.fail = False
        second = await feed_tools.send_notifications()

        assert first["failed"] == 1
        assert second["delivered"] == 1
        assert len(delivery.sent) == 1

    async def test_cooling_down_feed_not_crawled(self, in_memory_db, feed_tools):
        await subscribe(feed_tools)

        subs_patch, crawl_patch = patch_fetch(fetched(NEW_ITEMS))
        with subs_patch, crawl_patch as fetch:
            result = await feed_tools.refresh_feeds()

        assert result["feeds_refreshed"] == 0
        fetch.assert_not_called()

    async def test_crawl_sets_cool_down(self, in_memory_db, feed_tools):
        await subscribe(feed_tools)
        await make_feed_ready()

        subs_patch, crawl_patch = patch_fetch(fetched(NEW_ITEMS))
        with subs_patch, crawl_patch:
            await feed_tools.refresh_feeds()

        feed = await get_feed_by_link(FEED_URL)
        assert feed.not_until > ZERO_TIME + timedelta(days=1)


class SlowDelivery(RecordingDelivery):
    async def send(self, channel_id, text):
        await asyncio.sleep(0.01)
        await super().send(channel_id, text)


class TestCycleLocking:
    """Manual and scheduled cycles share one lock."""

    async def pending_articles(self, feed_tools, count=3):
        await subscribe(feed_tools)
        feed = await get_feed_by_link(FEED_URL)
        published = datetime(2100, 1, 1, tzinfo=timezone.utc)
        for i in range(count):
            await create_article(feed.id, f"Post {i}", f"https://n.test/{i}", published + timedelta(minutes=i))

    async def test_manual_and_scheduled_notify_send_each_item_once(self, in_memory_db):
        delivery = SlowDelivery()
        feed_tools = FeedTools(
            config=ServerConfig(),
            delivery=delivery,
            rate_limiter=RateLimiter(interval=0.001, burst=100),
            search_cache=CollectionSearchCache(),
        )
        await self.pending_articles(feed_tools)
        scheduler = create_scheduler(ServerConfig(), feed_tools)

        _, manual = await asyncio.gather(
            scheduler.run_notify_cycle(),
            feed_tools.send_notifications(),
        )

        links = [text.rsplit(" ", 1)[1] for _, text in delivery.sent]
        assert links == ["https://n.test/0", "https://n.test/1", "https://n.test/2"]
        assert manual["success"] is True

    async def test_concurrent_manual_notify_calls(self, in_memory_db):
        delivery = SlowDelivery()
        feed_tools = FeedTools(
            config=ServerConfig(),
            delivery=delivery,
            rate_limiter=RateLimiter(interval=0.001, burst=100),
            search_cache=CollectionSearchCache(),
        )
        await self.pending_articles(feed_tools)

        first, second = await asyncio.gather(
            feed_tools.send_notifications(),
            feed_tools.send_notifications(),
        )

        assert first["delivered"] + second["delivered"] == 3
        assert len(delivery.sent) == 3

    async def test_scheduler_uses_tools_lock(self, feed_tools):
        scheduler = create_scheduler(ServerConfig(), feed_tools)

        assert scheduler.lock is feed_tools.cycle_lock


class TestWebhookDelivery:
    async def test_posts_message(self):
        client = mock_http_client(mock_response(200))
        delivery = WebhookDelivery("https://hooks.test/send", token="secret")

        with patch("feed_notifier.services.delivery.httpx.AsyncClient", return_value=client) as client_cls:
            await delivery.send("channel", "hello")

        client.post.assert_awaited_once_with(
            "https://hooks.test/send",
            json={"channel_id": "channel", "content": "hello"},
        )
        assert client_cls.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"

    async def test_http_error_becomes_delivery_error(self):
        client = mock_http_client(side_effect=httpx.ConnectError("connection refused"))
        delivery = WebhookDelivery("https://hooks.test/send")

        with patch("feed_notifier.services.delivery.httpx.AsyncClient", return_value=client):
            with pytest.raises(DeliveryError):
                await delivery.send("channel", "hello")
